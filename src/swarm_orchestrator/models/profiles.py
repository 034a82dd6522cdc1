"""Static backend pricing and capability profiles."""

from dataclasses import dataclass, field
from typing import Dict, Any, FrozenSet, Optional

from ..config import BackendConfig
from ..exceptions import ConfigurationError


@dataclass(frozen=True)
class BackendProfile:
    """Pricing and capability record for one backend/model."""

    backend_id: str
    cost_per_million_input: float
    cost_per_million_output: float
    capability_score: float
    supports_extended_reasoning: bool = False
    max_context: int = 0
    specializations: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def blended_cost(self) -> float:
        """Input plus output price per million units, used for ordering."""
        return self.cost_per_million_input + self.cost_per_million_output

    @classmethod
    def from_spec(cls, backend_id: str, spec: Dict[str, Any]) -> "BackendProfile":
        try:
            cost_in = float(spec["cost_per_million_input"])
            cost_out = float(spec["cost_per_million_output"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid pricing for backend '{backend_id}': {e}")

        if cost_in < 0 or cost_out < 0:
            raise ConfigurationError(f"Negative pricing for backend '{backend_id}'")

        capability = float(spec.get("capability_score", 0.0))
        capability = max(0.0, min(capability, 1.0))

        return cls(
            backend_id=backend_id,
            cost_per_million_input=cost_in,
            cost_per_million_output=cost_out,
            capability_score=capability,
            supports_extended_reasoning=bool(spec.get("supports_extended_reasoning", False)),
            max_context=int(spec.get("max_context", 0)),
            specializations=frozenset(spec.get("specializations", ())),
        )


def load_profiles(config: BackendConfig) -> Dict[str, BackendProfile]:
    """Build the read-only profile table and check every routing role resolves."""

    if not config.profiles:
        raise ConfigurationError("No backend profiles configured")

    profiles = {
        backend_id: BackendProfile.from_spec(backend_id, spec)
        for backend_id, spec in config.profiles.items()
    }

    roles = {
        "default_backend": config.default_backend,
        "mid_general_backend": config.mid_general_backend,
        "mid_reasoning_backend": config.mid_reasoning_backend,
        "code_backend": config.code_backend,
    }
    if config.reference_backend:
        roles["reference_backend"] = config.reference_backend

    for role, backend_id in roles.items():
        if backend_id not in profiles:
            raise ConfigurationError(f"{role} '{backend_id}' has no backend profile")

    return profiles


def cheapest(profiles: Dict[str, BackendProfile]) -> BackendProfile:
    return min(profiles.values(), key=lambda p: (p.blended_cost, -p.capability_score, p.backend_id))


def most_expensive(profiles: Dict[str, BackendProfile]) -> BackendProfile:
    return max(profiles.values(), key=lambda p: (p.blended_cost, p.capability_score, p.backend_id))


def most_capable(
    profiles: Dict[str, BackendProfile],
    extended_reasoning: bool = False
) -> Optional[BackendProfile]:
    """Highest capability profile; only reasoning-capable ones when requested."""
    candidates = [
        p for p in profiles.values()
        if p.supports_extended_reasoning or not extended_reasoning
    ]
    if not candidates:
        return None
    # Ties resolve to the cheaper backend, then by id
    return max(candidates, key=lambda p: (p.capability_score, -p.blended_cost, p.backend_id))
