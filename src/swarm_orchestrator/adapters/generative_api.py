"""Adapter for a generateContent-style generative AI REST API."""

from typing import Dict, Any, Optional, Tuple
import asyncio
import math
import re

import httpx

from ..config import AdapterSettings
from ..exceptions import AdapterError, AdapterTimeout, InvalidResponse
from ..models.profiles import BackendProfile
from ..utils.logging import get_logger
from .base import Adapter, AdapterResult, AdapterCapabilities

logger = get_logger(__name__)

_FENCE = re.compile(r"```([\w+#-]*)\n(.*?)```", re.DOTALL)
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _optional_int(value) -> Optional[int]:
    return int(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else None


def extract_code(text: str) -> Tuple[str, str]:
    """Return (code, language) from the first fenced block, or the raw text."""
    match = _FENCE.search(text)
    if not match:
        return text.strip(), "unknown"
    language = match.group(1).lower() or "unknown"
    return match.group(2).strip(), language


class GenerativeApiAdapter(Adapter):
    """Calls one model of a generative AI HTTP API."""

    def __init__(
        self,
        profile: BackendProfile,
        config: AdapterSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay_seconds: float = 1.0,
    ):
        self.profile = profile
        self.config = config
        self.retry_delay_seconds = retry_delay_seconds

        self.http_client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout_seconds),
            headers={"content-type": "application/json"},
            transport=transport,
        )
        self._model_metadata: Optional[Dict[str, Any]] = None

    def capabilities(self) -> AdapterCapabilities:
        """
        Limits and flags reported by the models endpoint.

        Empty until refresh_capabilities() has run. The API does not publish
        pricing, so prices stay unreported.
        """
        meta = self._model_metadata or {}
        thinking = meta.get("thinking")
        return AdapterCapabilities(
            name=self.profile.backend_id,
            version=meta.get("version"),
            supports_extended_reasoning=thinking if isinstance(thinking, bool) else None,
            max_context_units=_optional_int(meta.get("inputTokenLimit")),
            max_output_units=_optional_int(meta.get("outputTokenLimit")),
            supported_languages=["python", "rust", "javascript", "typescript", "go"],
        )

    async def refresh_capabilities(self):
        """Read model metadata (token limits, thinking support) from the API."""

        path = f"/models/{self.profile.backend_id}"
        try:
            response = await self.http_client.get(path, params=self._params())
        except httpx.TimeoutException as e:
            raise AdapterTimeout(f"{self.profile.backend_id} metadata request timed out: {e}")
        except httpx.TransportError as e:
            raise AdapterError(f"Network error reading {self.profile.backend_id} metadata: {e}")

        if response.status_code >= 400:
            raise AdapterError(
                f"{self.profile.backend_id} metadata returned HTTP {response.status_code}"
            )
        try:
            data = response.json()
        except ValueError:
            raise InvalidResponse("model metadata is not JSON")
        if not isinstance(data, dict):
            raise InvalidResponse("model metadata is not an object")

        self._model_metadata = data
        logger.debug("adapter_capabilities_refreshed", backend=self.profile.backend_id,
                     input_limit=data.get("inputTokenLimit"), thinking=data.get("thinking"))

    def _params(self) -> Optional[Dict[str, str]]:
        return {"key": self.config.api_key} if self.config.api_key else None

    async def execute(self, task_text: str) -> AdapterResult:
        payload = {"contents": [{"role": "user", "parts": [{"text": task_text}]}]}
        path = f"/models/{self.profile.backend_id}:generateContent"
        params = self._params()

        last_error: Optional[Exception] = None
        for attempt in range(1, self.config.max_attempts + 1):
            try:
                response = await self.http_client.post(path, json=payload, params=params)
            except httpx.TimeoutException as e:
                last_error = AdapterTimeout(f"{self.profile.backend_id} timed out after {self.config.timeout_seconds}s")
                logger.warning("adapter_timeout", backend=self.profile.backend_id, attempt=attempt, error=str(e))
            except httpx.TransportError as e:
                last_error = AdapterError(f"Network error calling {self.profile.backend_id}: {e}")
                logger.warning("adapter_transport_error", backend=self.profile.backend_id, attempt=attempt, error=str(e))
            else:
                if response.status_code in _RETRYABLE_STATUS:
                    last_error = AdapterError(
                        f"{self.profile.backend_id} returned HTTP {response.status_code}"
                    )
                    logger.warning("adapter_retryable_status", backend=self.profile.backend_id,
                                   attempt=attempt, status=response.status_code)
                elif response.status_code >= 400:
                    raise AdapterError(
                        f"{self.profile.backend_id} returned HTTP {response.status_code}: {response.text[:200]}"
                    )
                else:
                    return self._parse_response(response, attempt)

            if attempt < self.config.max_attempts:
                await asyncio.sleep(self.retry_delay_seconds * attempt)

        raise last_error

    def _parse_response(self, response: httpx.Response, attempts: int) -> AdapterResult:
        try:
            data: Dict[str, Any] = response.json()
        except ValueError:
            raise InvalidResponse("body is not JSON")

        candidates = data.get("candidates") or []
        if not candidates:
            raise InvalidResponse("no candidates in response")

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text.strip():
            raise InvalidResponse(f"candidate has no text (finishReason={candidate.get('finishReason')})")

        code, language = extract_code(text)
        usage = data.get("usageMetadata") or {}

        # Only a reported log-probability counts as a confidence measurement
        avg_logprobs = candidate.get("avgLogprobs")
        confidence = math.exp(avg_logprobs) if isinstance(avg_logprobs, (int, float)) else 0.0

        return AdapterResult(
            code=code,
            language=language,
            confidence=max(0.0, min(confidence, 1.0)),
            verification_passed=False,
            input_units=int(usage.get("promptTokenCount", 0)),
            output_units=int(usage.get("candidatesTokenCount", 0)),
            attempts=attempts,
            model=data.get("modelVersion", self.profile.backend_id),
        )

    async def aclose(self):
        await self.http_client.aclose()
