"""Explicit adapter registry, built once at startup."""

from typing import Dict, List

from ..exceptions import AdapterError, AdapterNotFound, InvalidResponse
from ..models.profiles import BackendProfile
from ..utils.logging import get_logger
from .base import Adapter

logger = get_logger(__name__)


class AdapterRegistry:
    """Maps backend ids to adapter instances."""

    def __init__(self):
        self._adapters: Dict[str, Adapter] = {}

    def register(self, backend_id: str, adapter: Adapter):
        if backend_id in self._adapters:
            logger.warning("adapter_replaced", backend=backend_id)
        self._adapters[backend_id] = adapter
        logger.info("adapter_registered", backend=backend_id, adapter=type(adapter).__name__)

    def get(self, backend_id: str) -> Adapter:
        try:
            return self._adapters[backend_id]
        except KeyError:
            raise AdapterNotFound(backend_id) from None

    def __contains__(self, backend_id: str) -> bool:
        return backend_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    @property
    def backends(self) -> List[str]:
        return sorted(self._adapters)

    async def refresh_capabilities(self) -> List[str]:
        """Ask every adapter for fresh capability data. Returns ids that failed."""

        failed = []
        for backend_id, adapter in self._adapters.items():
            try:
                await adapter.refresh_capabilities()
            except (AdapterError, InvalidResponse) as e:
                logger.warning("adapter_capabilities_unavailable", backend=backend_id, error=str(e))
                failed.append(backend_id)
        return failed

    def validate_profiles(self, profiles: Dict[str, BackendProfile]) -> List[str]:
        """Compare what adapters report about themselves with the static profile table."""

        issues = []
        for backend_id, adapter in self._adapters.items():
            profile = profiles.get(backend_id)
            if profile is None:
                issues.append(f"{backend_id}: registered adapter has no backend profile")
                continue

            caps = adapter.capabilities()
            if (caps.cost_per_million_input is not None
                    and abs(caps.cost_per_million_input - profile.cost_per_million_input) > 1e-9):
                issues.append(
                    f"{backend_id}: input price {caps.cost_per_million_input} "
                    f"!= profile {profile.cost_per_million_input}"
                )
            if (caps.cost_per_million_output is not None
                    and abs(caps.cost_per_million_output - profile.cost_per_million_output) > 1e-9):
                issues.append(
                    f"{backend_id}: output price {caps.cost_per_million_output} "
                    f"!= profile {profile.cost_per_million_output}"
                )
            if (caps.supports_extended_reasoning is not None
                    and caps.supports_extended_reasoning != profile.supports_extended_reasoning):
                issues.append(
                    f"{backend_id}: extended reasoning {caps.supports_extended_reasoning} "
                    f"!= profile {profile.supports_extended_reasoning}"
                )
            if caps.max_context_units and profile.max_context and caps.max_context_units != profile.max_context:
                issues.append(
                    f"{backend_id}: context {caps.max_context_units} != profile {profile.max_context}"
                )

        for issue in issues:
            logger.warning("adapter_profile_mismatch", issue=issue)

        return issues

    async def aclose(self):
        for adapter in self._adapters.values():
            await adapter.aclose()
