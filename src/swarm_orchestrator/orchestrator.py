"""Main orchestrator that integrates all components."""

from typing import Dict, Any, Optional, List, Union
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from collections import deque
from enum import Enum
import asyncio
import json
import threading
import time
import uuid

import numpy as np

from .adapters import AdapterRegistry, AdapterResult, build_registry
from .config import PriorityLevel, Settings, settings as default_settings
from .cost_optimization.cost_tracker import UsageRecord, Recommendation
from .exceptions import AdapterError, AdapterNotFound, AdapterTimeout, InvalidResponse, OrchestrationError
from .models.complexity import TaskComplexity, analyze_task_complexity
from .models.router import BackendSelector
from .monitoring.metrics import PerformanceMonitor, PerformanceMetrics, TaskOutcome
from .utils.logging import get_logger, configure_logging, is_configured

logger = get_logger(__name__)

THINKING_PROMPT = (
    "Think through this task step by step. Lay out your reasoning before "
    "giving the final answer.\n\nTask:\n{task}"
)

ADAPTIVE_MIN_HISTORY = 10
ADAPTIVE_RECENT_WINDOW = 5
ADAPTIVE_SCORE_FLOOR = 0.6


@dataclass
class ExecutionRequest:
    """Request for task execution."""

    description: str
    priority: Optional[PriorityLevel] = None
    max_cost: Optional[float] = None
    thinking: Optional[bool] = None
    user_rating: Optional[float] = None
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class ExecutionResult:
    """Structured outcome returned to the caller."""

    task_id: str
    success: bool
    backend_used: str
    cost_actual: float = 0.0
    cost_estimated: float = 0.0
    cost_saved: float = 0.0
    performance_score: float = 0.0
    execution_time_ms: float = 0.0
    thinking_mode: bool = False
    # Reasoning traces are not captured from any backend yet
    reasoning_trace_measured: bool = False
    complexity: Dict[str, Any] = field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionStats:
    """Orchestrator-level counters for this session."""

    session_id: str
    total_tasks: int
    successful_tasks: int
    success_rate: float
    average_performance_score: float
    registered_adapters: int
    active_tasks: int
    uptime_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def calculate_performance_score(result: AdapterResult, execution_time_ms: float) -> float:
    """Blend verification, confidence, attempt efficiency and speed into [0, 1]."""

    # Only a verification that actually ran earns credit
    score = 0.4 if result.verification_measured and result.verification_passed else 0.0
    score += max(0.0, min(result.confidence, 1.0)) * 0.3

    efficiency = 1.0 - (max(result.attempts, 1) - 1) / 10.0
    score += max(efficiency, 0.0) * 0.2

    score += 0.1 if execution_time_ms < 5000 else 0.05
    return min(score, 1.0)


def _json_default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, np.generic):
        return value.item()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class TaskOrchestrator:
    """
    Composition root for cost-aware task execution.

    Per task: analyze complexity, select a backend, estimate cost, veto on
    cost, track the execution, call the adapter, then feed the outcome back
    into usage history and performance metrics.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        selector: Optional[BackendSelector] = None,
        monitor: Optional[PerformanceMonitor] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or default_settings
        self.registry = registry
        self.selector = selector or BackendSelector(self.settings.backend, self.settings.cost)
        self.monitor = monitor or PerformanceMonitor(self.settings.monitoring)

        self.session_id = str(uuid.uuid4())
        self.started_at = time.time()

        # Statistics
        self.total_tasks = 0
        self.successful_tasks = 0
        self.performance_scores: deque = deque(maxlen=self.settings.monitoring.history_capacity)
        self._lock = threading.Lock()

        logger.info("task_orchestrator_initialized", session_id=self.session_id,
                    adapters=registry.backends)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        registry: Optional[AdapterRegistry] = None
    ) -> "TaskOrchestrator":
        settings = settings or default_settings
        if not is_configured():
            configure_logging(settings.monitoring.log_level, settings.monitoring.log_format)

        selector = BackendSelector(settings.backend, settings.cost)
        if registry is None:
            registry = build_registry(settings, selector.profiles)
        return cls(registry=registry, selector=selector, settings=settings)

    async def validate_backends(self) -> List[str]:
        """Refresh adapter capabilities and report mismatches with the profile table."""
        await self.registry.refresh_capabilities()
        return self.registry.validate_profiles(self.selector.profiles)

    async def execute_task(
        self,
        description: str,
        priority: Optional[Union[PriorityLevel, str]] = None,
        max_cost: Optional[float] = None,
        thinking: Optional[bool] = None,
        user_rating: Optional[float] = None,
    ) -> ExecutionResult:
        """Convenience entry point; see execute() for error semantics."""
        request = ExecutionRequest(
            description=description,
            priority=PriorityLevel(priority) if priority is not None else None,
            max_cost=max_cost,
            thinking=thinking,
            user_rating=user_rating,
        )
        return await self.execute(request)

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """
        Execute a task end to end.

        Raises CostLimitExceeded or AdapterNotFound before anything is
        tracked. Adapter failures are recorded first and then re-raised with
        the failed ExecutionResult attached as ``error.result``.
        """

        start = time.perf_counter()

        complexity = analyze_task_complexity(request.description)
        if request.thinking is not None:
            complexity = replace(complexity, thinking_needed=request.thinking)

        constraints = self.selector.constraints.with_overrides(
            priority=request.priority,
            max_cost_per_task=request.max_cost,
        )
        backend_id = self.selector.select_backend(complexity, constraints)

        estimate = self.selector.estimate_cost(
            backend_id,
            self.selector.estimate_units(request.description),
            self.settings.backend.expected_output_units,
        )
        reservation = self.selector.reserve_budget(estimate.estimated_cost, constraints)
        try:
            adapter = self.registry.get(backend_id)
        except AdapterNotFound:
            self.selector.release_budget(reservation)
            raise

        prompt = request.description
        if complexity.thinking_needed:
            prompt = THINKING_PROMPT.format(task=request.description)

        logger.info(
            "task_dispatched",
            task_id=request.task_id,
            backend=backend_id,
            priority=constraints.priority.value,
            estimated_cost=estimate.estimated_cost,
            thinking=complexity.thinking_needed,
        )

        handle = self.monitor.start_task(request.task_id, backend_id, complexity.overall_score)
        try:
            result = await adapter.execute(prompt)
            if not isinstance(result, AdapterResult) or not (result.code or "").strip():
                raise InvalidResponse("adapter returned no content")
        except asyncio.CancelledError:
            self.monitor.complete_task(handle, TaskOutcome.cancelled_outcome())
            self.selector.release_budget(reservation)
            self._record_completion(success=False, score=None)
            logger.warning("task_cancelled", task_id=request.task_id, backend=backend_id)
            raise
        except (AdapterError, InvalidResponse) as e:
            self._record_failure(request, complexity, backend_id, estimate.estimated_cost, reservation, handle, e, start)
            raise
        except asyncio.TimeoutError as e:
            error = AdapterTimeout(f"{backend_id} timed out")
            self._record_failure(request, complexity, backend_id, estimate.estimated_cost, reservation, handle, error, start)
            raise error from e
        except Exception as e:
            error = AdapterError(f"{type(e).__name__}: {e}")
            self._record_failure(request, complexity, backend_id, estimate.estimated_cost, reservation, handle, error, start)
            raise error from e

        execution_time_ms = (time.perf_counter() - start) * 1000.0
        actual_cost = self.selector.estimate_cost(
            backend_id, result.input_units, result.output_units
        ).estimated_cost

        self.monitor.complete_task(
            handle,
            TaskOutcome(
                success=True,
                input_units=result.input_units,
                output_units=result.output_units,
                cost=actual_cost,
            ),
            rating=request.user_rating,
        )
        self.selector.record_usage(UsageRecord(
            timestamp=datetime.now(timezone.utc),
            backend_id=backend_id,
            complexity=complexity,
            cost=actual_cost,
            success=True,
            satisfaction=request.user_rating,
        ), reservation=reservation)

        reference_cost = self.selector.estimate_cost(
            self.selector.reference_backend, result.input_units, result.output_units
        ).estimated_cost
        performance_score = calculate_performance_score(result, execution_time_ms)
        self._record_completion(success=True, score=performance_score)

        logger.info(
            "task_succeeded",
            task_id=request.task_id,
            backend=backend_id,
            cost=actual_cost,
            performance_score=round(performance_score, 3),
            execution_time_ms=round(execution_time_ms, 1),
        )

        return ExecutionResult(
            task_id=request.task_id,
            success=True,
            backend_used=backend_id,
            cost_actual=actual_cost,
            cost_estimated=estimate.estimated_cost,
            cost_saved=max(reference_cost - actual_cost, 0.0),
            performance_score=performance_score,
            execution_time_ms=execution_time_ms,
            thinking_mode=complexity.thinking_needed,
            complexity=complexity.to_dict(),
            output=result.to_dict(),
        )

    def _record_failure(
        self,
        request: ExecutionRequest,
        complexity: TaskComplexity,
        backend_id: str,
        estimated_cost: float,
        reservation: float,
        handle,
        error: OrchestrationError,
        start: float,
    ):
        self.monitor.complete_task(handle, TaskOutcome.failure(str(error)), rating=request.user_rating)
        self.selector.record_usage(UsageRecord(
            timestamp=datetime.now(timezone.utc),
            backend_id=backend_id,
            complexity=complexity,
            cost=0.0,
            success=False,
            satisfaction=request.user_rating,
        ), reservation=reservation)
        self._record_completion(success=False, score=0.0)

        logger.error("task_failed", task_id=request.task_id, backend=backend_id,
                     error_type=error.kind, error=str(error))

        error.result = ExecutionResult(
            task_id=request.task_id,
            success=False,
            backend_used=backend_id,
            cost_estimated=estimated_cost,
            execution_time_ms=(time.perf_counter() - start) * 1000.0,
            thinking_mode=complexity.thinking_needed,
            complexity=complexity.to_dict(),
            error=str(error),
            error_type=error.kind,
        )

    def _record_completion(self, success: bool, score: Optional[float]):
        with self._lock:
            self.total_tasks += 1
            if success:
                self.successful_tasks += 1
            if score is not None:
                self.performance_scores.append(score)
            scores = list(self.performance_scores)

        if len(scores) >= ADAPTIVE_MIN_HISTORY:
            recent = float(np.mean(scores[-ADAPTIVE_RECENT_WINDOW:]))
            if recent < ADAPTIVE_SCORE_FLOOR:
                logger.warning("performance_degraded", recent_average_score=round(recent, 3),
                               floor=ADAPTIVE_SCORE_FLOOR)

    def get_performance_metrics(self, window=None) -> PerformanceMetrics:
        return self.monitor.current_metrics(window)

    def set_performance_baseline(self, baseline: Optional[PerformanceMetrics] = None) -> Optional[PerformanceMetrics]:
        return self.monitor.set_baseline(baseline)

    def get_stats(self) -> SessionStats:
        with self._lock:
            total = self.total_tasks
            successful = self.successful_tasks
            scores = list(self.performance_scores)

        return SessionStats(
            session_id=self.session_id,
            total_tasks=total,
            successful_tasks=successful,
            success_rate=successful / total if total else 0.0,
            average_performance_score=float(np.mean(scores)) if scores else 0.0,
            registered_adapters=len(self.registry),
            active_tasks=self.monitor.active_count,
            uptime_seconds=time.time() - self.started_at,
        )

    def get_recommendations(self, alerts=None) -> List[Recommendation]:
        recommendations = self.selector.recommendations()
        for alert in alerts or []:
            recommendations.append(Recommendation(
                category=alert.category.value,
                message=alert.recommendation,
                confidence=0.5,
            ))
        return recommendations

    def get_performance_report(self) -> Dict[str, Any]:
        """Metrics, alerts and recommendations plus supporting aggregates."""

        metrics = self.monitor.current_metrics()
        alerts = self.monitor.check_alerts(metrics)
        stats = self.get_stats()

        return {
            "timestamp": datetime.now(timezone.utc),
            "total_tasks_executed": stats.total_tasks,
            "metrics": metrics.to_dict(),
            "alerts": [alert.to_dict() for alert in alerts],
            "recommendations": [r.to_dict() for r in self.get_recommendations(alerts)],
            "usage_stats": self.selector.usage_stats().to_dict(),
            "backend_performance": self.monitor.get_backend_performance(),
            "trends": self.monitor.get_trends(hours=24),
            "baseline": self.monitor.baseline.to_dict() if self.monitor.baseline else None,
            "session": stats.to_dict(),
        }

    def export_metrics(self) -> str:
        """Serialize the full report as JSON."""
        report = self.get_performance_report()
        payload = {
            "session_id": self.session_id,
            "timestamp": datetime.now(timezone.utc),
            "total_tasks_executed": report["total_tasks_executed"],
            "report": report,
        }
        return json.dumps(payload, default=_json_default)

    async def aclose(self):
        await self.registry.aclose()
