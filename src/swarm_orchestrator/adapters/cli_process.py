"""Adapter that runs an external generative CLI once per task."""

from typing import List, Optional
import asyncio
import shlex

from ..config import AdapterSettings
from ..exceptions import AdapterError, AdapterTimeout, InvalidResponse
from ..models.profiles import BackendProfile
from ..utils.logging import get_logger
from .base import Adapter, AdapterResult, AdapterCapabilities
from .generative_api import extract_code

logger = get_logger(__name__)


class CliProcessAdapter(Adapter):
    """
    Spawns `<cli_command> --model <backend> --prompt <task>` and reads stdout.

    The CLI does not report token usage, so volumes are estimated from text
    length and confidence is left unmeasured (0.0).
    """

    def __init__(self, profile: BackendProfile, config: AdapterSettings, chars_per_unit: int = 4):
        self.profile = profile
        self.config = config
        self.chars_per_unit = chars_per_unit

    def capabilities(self) -> AdapterCapabilities:
        # The CLI exposes no pricing or limits to compare against
        return AdapterCapabilities(
            name=f"{self.config.cli_command}:{self.profile.backend_id}",
            version="cli",
        )

    def build_command(self, task_text: str) -> List[str]:
        return shlex.split(self.config.cli_command) + [
            "--model", self.profile.backend_id,
            "--prompt", task_text,
        ]

    async def execute(self, task_text: str) -> AdapterResult:
        command = self.build_command(task_text)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise AdapterError(f"Failed to start '{command[0]}': {e}")

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise AdapterTimeout(
                f"{command[0]} timed out after {self.config.timeout_seconds}s"
            )

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[:200]
            logger.warning("cli_process_failed", backend=self.profile.backend_id,
                           returncode=process.returncode, stderr=detail)
            raise AdapterError(f"{command[0]} exited with {process.returncode}: {detail}")

        text = stdout.decode(errors="replace")
        if not text.strip():
            raise InvalidResponse("CLI produced no output")

        code, language = extract_code(text)
        return AdapterResult(
            code=code,
            language=language,
            confidence=0.0,
            verification_passed=False,
            input_units=self._estimate_units(task_text),
            output_units=self._estimate_units(text),
            model=self.profile.backend_id,
        )

    def _estimate_units(self, text: Optional[str]) -> int:
        return len(text or "") // self.chars_per_unit
