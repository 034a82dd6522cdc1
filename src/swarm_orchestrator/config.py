"""Configuration management for the task orchestrator."""

from typing import Optional, Dict, Any
from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PriorityLevel(str, Enum):
    """Caller priority, ordered LOW < BALANCED < HIGH < CRITICAL."""
    LOW = "low"
    BALANCED = "balanced"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, PriorityLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, PriorityLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, PriorityLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, PriorityLevel):
            return NotImplemented
        return self.rank >= other.rank


_PRIORITY_ORDER = [
    PriorityLevel.LOW,
    PriorityLevel.BALANCED,
    PriorityLevel.HIGH,
    PriorityLevel.CRITICAL,
]


class AdapterMode(str, Enum):
    """How backends are reached."""
    API = "api"
    CLI = "cli"


class BackendConfig(BaseSettings):
    """Static pricing/capability table and routing roles."""

    model_config = SettingsConfigDict(env_prefix="SWARM_BACKEND_", env_file=".env", extra="ignore")

    # Routing roles (cheapest, best general and best reasoning are derived from the table)
    default_backend: str = Field(default="gemini-1.5-pro")
    mid_general_backend: str = Field(default="gemini-1.5-pro")
    mid_reasoning_backend: str = Field(default="gemini-2.0-flash-thinking")
    code_backend: str = Field(default="gemini-2.5-flash")
    reference_backend: Optional[str] = Field(default=None)

    # Volume estimation before execution
    expected_output_units: int = Field(default=2000, ge=0)
    chars_per_unit: int = Field(default=4, ge=1)

    # Costs are USD per million units
    profiles: Dict[str, Dict[str, Any]] = Field(default_factory=lambda: {
        "gemini-1.5-flash": {
            "cost_per_million_input": 0.075,
            "cost_per_million_output": 0.30,
            "capability_score": 0.60,
            "supports_extended_reasoning": False,
            "max_context": 1048576,
            "specializations": ["simple_tasks", "summarization"],
        },
        "gemini-1.5-pro": {
            "cost_per_million_input": 1.25,
            "cost_per_million_output": 5.00,
            "capability_score": 0.80,
            "supports_extended_reasoning": False,
            "max_context": 2097152,
            "specializations": ["analysis", "general"],
        },
        "gemini-2.0-flash-thinking": {
            "cost_per_million_input": 0.10,
            "cost_per_million_output": 0.40,
            "capability_score": 0.78,
            "supports_extended_reasoning": True,
            "max_context": 1048576,
            "specializations": ["reasoning"],
        },
        "gemini-2.5-flash": {
            "cost_per_million_input": 0.30,
            "cost_per_million_output": 2.50,
            "capability_score": 0.85,
            "supports_extended_reasoning": False,
            "max_context": 1048576,
            "specializations": ["code_generation"],
        },
        "gemini-2.5-pro": {
            "cost_per_million_input": 1.25,
            "cost_per_million_output": 10.00,
            "capability_score": 0.95,
            "supports_extended_reasoning": True,
            "max_context": 1048576,
            "specializations": ["reasoning", "analysis", "code_generation"],
        },
    })


class CostConfig(BaseSettings):
    """Cost ceilings and usage-history policy."""

    model_config = SettingsConfigDict(env_prefix="SWARM_COST_", env_file=".env", extra="ignore")

    max_cost_per_task: Optional[float] = Field(default=None, gt=0)
    budget_ceiling: Optional[float] = Field(default=None, gt=0)
    budget_period_hours: float = Field(default=24.0, gt=0)
    priority: PriorityLevel = Field(default=PriorityLevel.BALANCED)

    history_capacity: int = Field(default=1000, ge=1)

    # Recommendation heuristics
    cheaper_backend_threshold: float = Field(default=0.05, ge=0)
    failed_reasoning_threshold: int = Field(default=2, ge=0)
    budget_warning_ratio: float = Field(default=0.8, gt=0, le=1)
    low_satisfaction_threshold: float = Field(default=3.0, ge=0, le=5)


class MonitoringConfig(BaseSettings):
    """Monitoring, alerting and logging configuration."""

    model_config = SettingsConfigDict(env_prefix="SWARM_MONITORING_", env_file=".env", extra="ignore")

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    enable_prometheus: bool = Field(default=True)

    window_minutes: float = Field(default=60.0, gt=0)
    history_capacity: int = Field(default=1000, ge=1)

    # Alert thresholds
    min_success_rate: float = Field(default=0.95, ge=0, le=1)
    max_response_time_ms: float = Field(default=5000.0, gt=0)
    max_cost_per_task: float = Field(default=0.10, ge=0)
    min_tokens_per_second: float = Field(default=10.0, ge=0)

    @field_validator("log_format")
    @classmethod
    def check_log_format(cls, v):
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v


class AdapterSettings(BaseSettings):
    """Connection settings for the external code-generation backends."""

    model_config = SettingsConfigDict(env_prefix="SWARM_ADAPTER_", env_file=".env", extra="ignore")

    mode: AdapterMode = Field(default=AdapterMode.API)
    api_key: Optional[str] = Field(default=None)
    base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    cli_command: str = Field(default="gemini")


class ServerConfig(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="SWARM_SERVER_", env_file=".env", extra="ignore")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    backend: BackendConfig = Field(default_factory=BackendConfig)
    cost: CostConfig = Field(default_factory=CostConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    adapter: AdapterSettings = Field(default_factory=AdapterSettings)
    server: ServerConfig = Field(default_factory=ServerConfig)


# Global settings instance
settings = Settings()
