"""Task performance monitoring, rolling metrics and alerting."""

from typing import Dict, Any, Optional, List, Callable
from dataclasses import dataclass, field, asdict
from enum import Enum
from datetime import datetime, timedelta, timezone
from collections import deque
import math
import threading
import uuid

import numpy as np
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest

from ..config import MonitoringConfig, settings
from ..utils.logging import get_logger

logger = get_logger(__name__)


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertCategory(str, Enum):
    """What an alert is about."""
    RESPONSE_TIME = "response_time"
    SUCCESS_RATE = "success_rate"
    COST = "cost"
    THROUGHPUT = "throughput"


class TrendDirection(str, Enum):
    IMPROVING = "improving"
    DEGRADING = "degrading"
    STABLE = "stable"


ALERT_RECOMMENDATIONS = {
    AlertCategory.RESPONSE_TIME: "Cache frequent responses or route simple tasks to a faster backend",
    AlertCategory.SUCCESS_RATE: "Inspect adapter errors for recurring failures and check backend availability",
    AlertCategory.COST: "Lower task priority or set a per-task cost ceiling to favour cheaper backends",
    AlertCategory.THROUGHPUT: "Check backend rate limits and reduce output volume per task",
}


@dataclass
class AlertThresholds:
    """Limits that trigger alerts when breached."""

    min_success_rate: float = 0.95
    max_response_time_ms: float = 5000.0
    max_cost_per_task: float = 0.10
    min_tokens_per_second: float = 10.0

    @classmethod
    def from_config(cls, config: MonitoringConfig) -> "AlertThresholds":
        return cls(
            min_success_rate=config.min_success_rate,
            max_response_time_ms=config.max_response_time_ms,
            max_cost_per_task=config.max_cost_per_task,
            min_tokens_per_second=config.min_tokens_per_second,
        )


@dataclass
class Alert:
    """Threshold breach, regenerated on every evaluation."""

    severity: AlertSeverity
    category: AlertCategory
    message: str
    current_value: float
    threshold: float
    recommendation: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TaskOutcome:
    """Result reported back when a tracked task finishes."""

    success: bool
    error: Optional[str] = None
    input_units: int = 0
    output_units: int = 0
    cost: float = 0.0
    cancelled: bool = False

    @classmethod
    def cancelled_outcome(cls) -> "TaskOutcome":
        return cls(success=False, error="cancelled", cancelled=True)

    @classmethod
    def failure(cls, error: str) -> "TaskOutcome":
        return cls(success=False, error=error)


@dataclass
class TaskExecution:
    """One tracked task from start to completion."""

    task_id: str
    backend_id: str
    start_time: datetime
    complexity_score: float = 0.0
    end_time: Optional[datetime] = None
    success: bool = False
    error: Optional[str] = None
    input_units: int = 0
    output_units: int = 0
    cost: float = 0.0
    user_rating: Optional[float] = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return max((self.end_time - self.start_time).total_seconds() * 1000.0, 0.0)

    @property
    def tokens_per_second(self) -> Optional[float]:
        duration = self.duration_ms
        if not duration:
            return None
        return (self.input_units + self.output_units) / (duration / 1000.0)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["duration_ms"] = self.duration_ms
        return data


@dataclass(frozen=True)
class TaskHandle:
    """Opaque token returned by start_task."""

    task_id: str
    token: str


@dataclass
class ModelPerformance:
    """Running per-backend aggregates, updated in O(1) per task."""

    backend_id: str
    total_tasks: int = 0
    successful_tasks: int = 0
    avg_latency_ms: float = 0.0
    avg_cost: float = 0.0
    total_cost: float = 0.0
    avg_rating: float = 0.0
    rated_tasks: int = 0
    last_updated: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        if self.total_tasks == 0:
            return 0.0
        return self.successful_tasks / self.total_tasks

    def update(self, execution: TaskExecution):
        self.total_tasks += 1
        if execution.success:
            self.successful_tasks += 1

        n = self.total_tasks
        self.avg_latency_ms += ((execution.duration_ms or 0.0) - self.avg_latency_ms) / n
        self.avg_cost += (execution.cost - self.avg_cost) / n
        self.total_cost += execution.cost

        if execution.user_rating is not None:
            self.rated_tasks += 1
            self.avg_rating += (execution.user_rating - self.avg_rating) / self.rated_tasks

        self.last_updated = execution.end_time

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["success_rate"] = self.success_rate
        return data


@dataclass
class PerformanceMetrics:
    """Snapshot over the trailing window. Never contains NaN or Inf."""

    timestamp: datetime
    window_seconds: float
    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    success_rate: float = 0.0
    avg_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0
    total_cost: float = 0.0
    avg_cost_per_task: float = 0.0
    cost_efficiency: float = 0.0
    avg_tokens_per_second: float = 0.0
    throughput_per_hour: float = 0.0
    speed_improvement_factor: float = 1.0

    @classmethod
    def empty(cls, timestamp: datetime, window_seconds: float) -> "PerformanceMetrics":
        return cls(timestamp=timestamp, window_seconds=window_seconds)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _finite(value: float) -> float:
    value = float(value)
    return value if math.isfinite(value) else 0.0


class PerformanceMonitor:
    """
    Records task executions and derives rolling metrics.

    Features:
    - Bounded ring buffer of completed executions
    - Per-backend running aggregates
    - Windowed success rate, latency, cost and throughput
    - Threshold alerts and hourly trends
    - Prometheus metrics export
    """

    def __init__(
        self,
        config: Optional[MonitoringConfig] = None,
        thresholds: Optional[AlertThresholds] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or settings.monitoring
        self.thresholds = thresholds or AlertThresholds.from_config(self.config)
        self.window = timedelta(minutes=self.config.window_minutes)
        self.baseline: Optional[PerformanceMetrics] = None

        self.executions: deque = deque(maxlen=self.config.history_capacity)
        self.model_performance: Dict[str, ModelPerformance] = {}
        self._active: Dict[str, TaskExecution] = {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()

        self.enable_prometheus = self.config.enable_prometheus
        if self.enable_prometheus:
            self.registry = CollectorRegistry()
            self._init_prometheus_metrics()

    def _init_prometheus_metrics(self):
        """Initialize Prometheus metrics."""

        self.task_counter = Counter(
            'swarm_tasks_total',
            'Total number of completed tasks',
            ['backend', 'status'],
            registry=self.registry
        )

        self.task_duration = Histogram(
            'swarm_task_duration_seconds',
            'Task duration in seconds',
            ['backend'],
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
            registry=self.registry
        )

        self.task_cost = Counter(
            'swarm_task_cost_dollars',
            'Total cost in dollars by backend',
            ['backend'],
            registry=self.registry
        )

        self.task_tokens = Counter(
            'swarm_tokens_total',
            'Total units processed',
            ['backend', 'type'],  # type: input/output
            registry=self.registry
        )

        self.active_tasks = Gauge(
            'swarm_active_tasks',
            'Number of tasks in flight',
            registry=self.registry
        )

    def start_task(self, task_id: str, backend_id: str, complexity_score: float = 0.0) -> TaskHandle:
        """Open a tracked execution. The handle must be completed exactly once."""

        handle = TaskHandle(task_id=task_id, token=uuid.uuid4().hex)
        execution = TaskExecution(
            task_id=task_id,
            backend_id=backend_id,
            start_time=self._clock(),
            complexity_score=complexity_score,
        )

        with self._lock:
            self._active[handle.token] = execution
            if self.enable_prometheus:
                self.active_tasks.set(len(self._active))

        logger.debug("task_started", task_id=task_id, backend=backend_id)
        return handle

    def complete_task(
        self,
        handle: TaskHandle,
        outcome: TaskOutcome,
        rating: Optional[float] = None
    ) -> Optional[TaskExecution]:
        """Close a tracked execution and fold it into the aggregates."""

        with self._lock:
            execution = self._active.pop(handle.token, None)
            if execution is None:
                logger.warning("task_completion_ignored", task_id=handle.task_id,
                               reason="unknown or already completed handle")
                return None

            execution.end_time = self._clock()
            execution.success = outcome.success
            execution.error = outcome.error
            execution.input_units = max(int(outcome.input_units), 0)
            execution.output_units = max(int(outcome.output_units), 0)
            execution.cost = max(_finite(outcome.cost), 0.0)
            if rating is not None:
                execution.user_rating = max(0.0, min(float(rating), 5.0))

            self.executions.append(execution)

            performance = self.model_performance.get(execution.backend_id)
            if performance is None:
                performance = ModelPerformance(backend_id=execution.backend_id)
                self.model_performance[execution.backend_id] = performance
            performance.update(execution)

            if self.enable_prometheus:
                self._record_prometheus(execution, outcome)

        log = logger.info if execution.success else logger.warning
        log(
            "task_completed",
            task_id=execution.task_id,
            backend=execution.backend_id,
            success=execution.success,
            cancelled=outcome.cancelled,
            duration_ms=execution.duration_ms,
            cost=execution.cost,
            error=execution.error,
        )
        return execution

    def _record_prometheus(self, execution: TaskExecution, outcome: TaskOutcome):
        if outcome.cancelled:
            status = "cancelled"
        else:
            status = "success" if execution.success else "failure"

        self.task_counter.labels(backend=execution.backend_id, status=status).inc()
        self.task_duration.labels(backend=execution.backend_id).observe((execution.duration_ms or 0.0) / 1000.0)
        self.task_cost.labels(backend=execution.backend_id).inc(execution.cost)
        self.task_tokens.labels(backend=execution.backend_id, type="input").inc(execution.input_units)
        self.task_tokens.labels(backend=execution.backend_id, type="output").inc(execution.output_units)
        self.active_tasks.set(len(self._active))

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def _window_executions(self, window: timedelta, now: datetime) -> List[TaskExecution]:
        cutoff = now - window
        with self._lock:
            return [
                e for e in self.executions
                if e.end_time is not None and e.end_time >= cutoff
            ]

    def current_metrics(self, window: Optional[timedelta] = None) -> PerformanceMetrics:
        """Aggregate the executions that ended within the trailing window."""

        if window is None:
            window = self.window
        now = self._clock()
        window_seconds = window.total_seconds()
        executions = self._window_executions(window, now)

        if not executions:
            return PerformanceMetrics.empty(now, window_seconds)

        total = len(executions)
        successful = sum(1 for e in executions if e.success)
        latencies = [e.duration_ms for e in executions]
        rates = [e.tokens_per_second for e in executions if e.tokens_per_second is not None]
        total_cost = sum(e.cost for e in executions)
        window_hours = window_seconds / 3600.0

        avg_latency = _finite(np.mean(latencies))
        if self.baseline is not None and self.baseline.avg_latency_ms > 0:
            speed_factor = self.baseline.avg_latency_ms / max(avg_latency, 1.0)
        else:
            speed_factor = 1.0

        return PerformanceMetrics(
            timestamp=now,
            window_seconds=window_seconds,
            total_tasks=total,
            successful_tasks=successful,
            failed_tasks=total - successful,
            success_rate=successful / total,
            avg_latency_ms=avg_latency,
            p95_latency_ms=_finite(np.percentile(latencies, 95)),
            total_cost=total_cost,
            avg_cost_per_task=total_cost / total,
            cost_efficiency=total_cost / successful if successful else 0.0,
            avg_tokens_per_second=_finite(np.mean(rates)) if rates else 0.0,
            throughput_per_hour=total / window_hours if window_hours > 0 else 0.0,
            speed_improvement_factor=_finite(speed_factor),
        )

    def set_baseline(self, baseline: Optional[PerformanceMetrics] = None) -> Optional[PerformanceMetrics]:
        """
        Pin the snapshot used for the speed improvement factor.

        A snapshot without measured latency is refused and the previous
        baseline, if any, stays in place. Returns the pinned baseline or None.
        """
        candidate = baseline or self.current_metrics()
        if candidate.total_tasks == 0 or candidate.avg_latency_ms <= 0:
            logger.warning("performance_baseline_rejected", total_tasks=candidate.total_tasks,
                           avg_latency_ms=candidate.avg_latency_ms)
            return None

        self.baseline = candidate
        logger.info("performance_baseline_set", avg_latency_ms=self.baseline.avg_latency_ms)
        return self.baseline

    def clear_baseline(self):
        self.baseline = None

    def check_alerts(self, metrics: Optional[PerformanceMetrics] = None) -> List[Alert]:
        """One alert per breached threshold. An empty window raises nothing."""

        metrics = metrics or self.current_metrics()
        if metrics.total_tasks == 0:
            return []

        alerts = []

        if metrics.avg_latency_ms > self.thresholds.max_response_time_ms:
            alerts.append(Alert(
                severity=AlertSeverity.HIGH,
                category=AlertCategory.RESPONSE_TIME,
                message=(
                    f"Average response time {metrics.avg_latency_ms:.0f}ms exceeds "
                    f"{self.thresholds.max_response_time_ms:.0f}ms"
                ),
                current_value=metrics.avg_latency_ms,
                threshold=self.thresholds.max_response_time_ms,
                recommendation=ALERT_RECOMMENDATIONS[AlertCategory.RESPONSE_TIME],
            ))

        if metrics.success_rate < self.thresholds.min_success_rate:
            alerts.append(Alert(
                severity=AlertSeverity.CRITICAL,
                category=AlertCategory.SUCCESS_RATE,
                message=(
                    f"Success rate {metrics.success_rate:.1%} is below "
                    f"{self.thresholds.min_success_rate:.1%}"
                ),
                current_value=metrics.success_rate,
                threshold=self.thresholds.min_success_rate,
                recommendation=ALERT_RECOMMENDATIONS[AlertCategory.SUCCESS_RATE],
            ))

        if metrics.avg_cost_per_task > self.thresholds.max_cost_per_task:
            alerts.append(Alert(
                severity=AlertSeverity.MEDIUM,
                category=AlertCategory.COST,
                message=(
                    f"Average cost per task ${metrics.avg_cost_per_task:.4f} exceeds "
                    f"${self.thresholds.max_cost_per_task:.4f}"
                ),
                current_value=metrics.avg_cost_per_task,
                threshold=self.thresholds.max_cost_per_task,
                recommendation=ALERT_RECOMMENDATIONS[AlertCategory.COST],
            ))

        if metrics.avg_tokens_per_second < self.thresholds.min_tokens_per_second:
            alerts.append(Alert(
                severity=AlertSeverity.LOW,
                category=AlertCategory.THROUGHPUT,
                message=(
                    f"Throughput {metrics.avg_tokens_per_second:.1f} tokens/s is below "
                    f"{self.thresholds.min_tokens_per_second:.1f}"
                ),
                current_value=metrics.avg_tokens_per_second,
                threshold=self.thresholds.min_tokens_per_second,
                recommendation=ALERT_RECOMMENDATIONS[AlertCategory.THROUGHPUT],
            ))

        for alert in alerts:
            logger.warning(
                "alert_triggered",
                category=alert.category.value,
                severity=alert.severity.value,
                current_value=alert.current_value,
                threshold=alert.threshold,
            )

        return alerts

    def get_trends(self, hours: int = 24) -> Dict[str, Any]:
        """Hourly buckets (oldest first) and a first-vs-last classification."""

        hours = max(int(hours), 1)
        now = self._clock()
        executions = self._window_executions(timedelta(hours=hours), now)

        buckets = []
        for i in range(hours):
            start = now - timedelta(hours=hours - i)
            end = start + timedelta(hours=1)
            bucket = [
                e for e in executions
                if start <= e.end_time < end or (i == hours - 1 and e.end_time == end)
            ]
            count = len(bucket)
            buckets.append({
                "hour_start": start,
                "task_count": count,
                "success_rate": sum(1 for e in bucket if e.success) / count if count else 0.0,
                "avg_latency_ms": _finite(np.mean([e.duration_ms for e in bucket])) if count else 0.0,
            })

        return {
            "hours": hours,
            "buckets": buckets,
            "direction": self._classify_trend(buckets).value,
        }

    @staticmethod
    def _classify_trend(buckets: List[Dict[str, Any]]) -> TrendDirection:
        non_empty = [b for b in buckets if b["task_count"] > 0]
        if len(non_empty) < 2:
            return TrendDirection.STABLE

        first, last = non_empty[0], non_empty[-1]
        success_delta = last["success_rate"] - first["success_rate"]
        latency_change = (last["avg_latency_ms"] - first["avg_latency_ms"]) / max(first["avg_latency_ms"], 1.0)

        if success_delta < -0.05 or latency_change > 0.10:
            return TrendDirection.DEGRADING
        if success_delta > 0.05 or latency_change < -0.10:
            return TrendDirection.IMPROVING
        return TrendDirection.STABLE

    def get_backend_performance(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {
                backend_id: performance.to_dict()
                for backend_id, performance in self.model_performance.items()
            }

    def recent_executions(self, limit: int = 10) -> List[TaskExecution]:
        with self._lock:
            return list(self.executions)[-limit:]

    def get_prometheus_metrics(self) -> bytes:
        """Export metrics in Prometheus format."""
        if self.enable_prometheus:
            return generate_latest(self.registry)
        return b""
