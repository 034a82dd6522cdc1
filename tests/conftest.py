"""Shared fixtures for orchestrator tests."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from swarm_orchestrator.adapters import Adapter, AdapterResult, AdapterCapabilities, AdapterRegistry
from swarm_orchestrator.config import Settings, BackendConfig, CostConfig, MonitoringConfig
from swarm_orchestrator.models.router import BackendSelector
from swarm_orchestrator.monitoring.metrics import PerformanceMonitor
from swarm_orchestrator.orchestrator import TaskOrchestrator


SIMPLE_TASK = "write a simple function to add two numbers"
REASONING_TASK = (
    "analyze this complex distributed consensus algorithm "
    "and explain your reasoning step by step"
)


def default_result(**overrides) -> AdapterResult:
    values = dict(
        code="def add(a, b):\n    return a + b",
        language="python",
        confidence=0.9,
        verification_passed=True,
        verification_measured=True,
        input_units=100,
        output_units=200,
    )
    values.update(overrides)
    return AdapterResult(**values)


class FakeAdapter(Adapter):
    """Scriptable adapter: returns results or raises, in order."""

    def __init__(self, backend_id="fake", outcomes=None, block=False, delay=0.0):
        self.backend_id = backend_id
        self.outcomes = list(outcomes or [])
        self.block = block
        self.delay = delay
        self.prompts = []

    async def execute(self, task_text):
        self.prompts.append(task_text)
        if self.block:
            await asyncio.Event().wait()
        if self.delay:
            await asyncio.sleep(self.delay)

        outcome = self.outcomes.pop(0) if self.outcomes else default_result()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def capabilities(self):
        return AdapterCapabilities(
            name=self.backend_id,
            version="test",
            cost_per_million_input=0.0,
            cost_per_million_output=0.0,
            supports_extended_reasoning=False,
        )


class FakeClock:
    """Manually advanced clock for deterministic windows."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_settings(backend=None, cost=None, monitoring=None) -> Settings:
    return Settings(
        backend=backend or BackendConfig(),
        cost=cost or CostConfig(),
        monitoring=monitoring or MonitoringConfig(),
    )


def make_orchestrator(settings=None, adapter=None, clock=None):
    """Orchestrator whose every backend is served by the same fake adapter."""
    settings = settings or make_settings()
    adapter = adapter or FakeAdapter()
    selector = BackendSelector(settings.backend, settings.cost)
    monitor = PerformanceMonitor(settings.monitoring, clock=clock)

    registry = AdapterRegistry()
    for backend_id in selector.profiles:
        registry.register(backend_id, adapter)

    return TaskOrchestrator(registry, selector=selector, monitor=monitor, settings=settings)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def selector():
    return BackendSelector(BackendConfig(), CostConfig())


@pytest.fixture
def monitor(clock):
    return PerformanceMonitor(MonitoringConfig(), clock=clock)


@pytest.fixture
def fake_adapter():
    return FakeAdapter()


@pytest.fixture
def orchestrator(fake_adapter):
    return make_orchestrator(adapter=fake_adapter)
