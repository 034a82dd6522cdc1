"""Contract every code-generation backend adapter fulfils."""

from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict
from abc import ABC, abstractmethod


@dataclass
class AdapterResult:
    """Successful answer from a backend."""

    code: str
    language: str = "unknown"
    confidence: float = 0.0
    verification_passed: bool = False
    # No adapter runs a verifier yet, so verification_passed carries no signal
    verification_measured: bool = False
    input_units: int = 0
    output_units: int = 0
    attempts: int = 1
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AdapterCapabilities:
    """
    Self-description used to validate the static profile table.

    Fields left as None were not reported by the backend and are not
    compared against the profile.
    """

    name: str
    version: Optional[str] = None
    cost_per_million_input: Optional[float] = None
    cost_per_million_output: Optional[float] = None
    supports_extended_reasoning: Optional[bool] = None
    max_context_units: Optional[int] = None
    max_output_units: Optional[int] = None
    supported_languages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Adapter(ABC):
    """Abstract backend adapter."""

    @abstractmethod
    async def execute(self, task_text: str) -> AdapterResult:
        """
        Run the task on the backend.

        Raises AdapterError (AdapterTimeout on timeout) or InvalidResponse.
        Retries, if any, happen inside the adapter.
        """
        pass

    @abstractmethod
    def capabilities(self) -> AdapterCapabilities:
        """Describe pricing and limits of this backend."""
        pass

    async def refresh_capabilities(self):
        """Fetch capability data from the backend itself. No-op by default."""
        return None

    async def aclose(self):
        """Release any held resources."""
        return None
