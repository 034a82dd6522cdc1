"""Backend adapters and the registry factory."""

from typing import Dict

from ..config import AdapterMode, Settings
from ..models.profiles import BackendProfile
from ..utils.logging import get_logger
from .base import Adapter, AdapterResult, AdapterCapabilities
from .registry import AdapterRegistry
from .generative_api import GenerativeApiAdapter
from .cli_process import CliProcessAdapter

logger = get_logger(__name__)


def build_registry(settings: Settings, profiles: Dict[str, BackendProfile]) -> AdapterRegistry:
    """Create one adapter per backend profile for the configured mode."""

    registry = AdapterRegistry()
    mode = settings.adapter.mode

    if mode == AdapterMode.API and not settings.adapter.api_key:
        logger.warning("adapter_api_key_missing", hint="set SWARM_ADAPTER_API_KEY")

    for backend_id, profile in profiles.items():
        if mode == AdapterMode.CLI:
            adapter = CliProcessAdapter(profile, settings.adapter, settings.backend.chars_per_unit)
        else:
            adapter = GenerativeApiAdapter(profile, settings.adapter)
        registry.register(backend_id, adapter)

    return registry


__all__ = [
    "Adapter",
    "AdapterResult",
    "AdapterCapabilities",
    "AdapterRegistry",
    "GenerativeApiAdapter",
    "CliProcessAdapter",
    "build_registry",
]
