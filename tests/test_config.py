"""Tests for settings and the backend profile table."""

import pytest
from pydantic import ValidationError

from swarm_orchestrator.config import (
    BackendConfig,
    CostConfig,
    MonitoringConfig,
    PriorityLevel,
)
from swarm_orchestrator.exceptions import ConfigurationError
from swarm_orchestrator.models.profiles import (
    BackendProfile,
    cheapest,
    load_profiles,
    most_capable,
    most_expensive,
)


class TestPriorityLevel:
    def test_ordering(self):
        assert PriorityLevel.LOW < PriorityLevel.BALANCED < PriorityLevel.HIGH < PriorityLevel.CRITICAL
        assert max(PriorityLevel) == PriorityLevel.CRITICAL

    def test_from_string(self):
        assert PriorityLevel("critical") is PriorityLevel.CRITICAL


class TestSettings:
    """Test environment driven configuration."""

    def test_defaults(self):
        cost = CostConfig()

        assert cost.priority == PriorityLevel.BALANCED
        assert cost.history_capacity == 1000
        assert cost.max_cost_per_task is None
        assert MonitoringConfig().window_minutes == 60

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("SWARM_COST_PRIORITY", "low")
        monkeypatch.setenv("SWARM_COST_MAX_COST_PER_TASK", "0.25")

        cost = CostConfig()

        assert cost.priority == PriorityLevel.LOW
        assert cost.max_cost_per_task == 0.25

    def test_invalid_log_format(self):
        with pytest.raises(ValidationError):
            MonitoringConfig(log_format="xml")


class TestProfiles:
    """Test the static profile table."""

    def test_default_table_loads(self):
        profiles = load_profiles(BackendConfig())

        assert len(profiles) == 5
        assert all(isinstance(p, BackendProfile) for p in profiles.values())
        assert "code_generation" in profiles["gemini-2.5-flash"].specializations

    def test_profiles_are_frozen(self):
        profile = load_profiles(BackendConfig())["gemini-1.5-pro"]

        with pytest.raises(AttributeError):
            profile.capability_score = 1.0

    def test_role_without_profile(self):
        with pytest.raises(ConfigurationError):
            load_profiles(BackendConfig(code_backend="missing-model"))

    def test_empty_table(self):
        with pytest.raises(ConfigurationError):
            load_profiles(BackendConfig(profiles={}))

    def test_negative_pricing(self):
        with pytest.raises(ConfigurationError):
            BackendProfile.from_spec("bad", {"cost_per_million_input": -1, "cost_per_million_output": 1})

    def test_missing_pricing(self):
        with pytest.raises(ConfigurationError):
            BackendProfile.from_spec("bad", {"capability_score": 0.5})

    def test_capability_clamped(self):
        profile = BackendProfile.from_spec("x", {
            "cost_per_million_input": 1,
            "cost_per_million_output": 1,
            "capability_score": 1.7,
        })

        assert profile.capability_score == 1.0

    def test_role_helpers(self):
        profiles = load_profiles(BackendConfig())

        assert cheapest(profiles).backend_id == "gemini-1.5-flash"
        assert most_expensive(profiles).backend_id == "gemini-2.5-pro"
        assert most_capable(profiles, extended_reasoning=True).supports_extended_reasoning

    def test_no_reasoning_profile(self):
        profiles = {
            "only": BackendProfile.from_spec("only", {
                "cost_per_million_input": 1,
                "cost_per_million_output": 1,
            })
        }

        assert most_capable(profiles, extended_reasoning=True) is None
