"""
Cost constraints and usage history tracking.

This module keeps the bounded, append-only log of task outcomes used by the
backend selector:
- Per-task and per-period cost ceilings
- Usage records with FIFO eviction at capacity
- Aggregate statistics over the retained history
- Advisory recommendations derived from those statistics
"""

from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timedelta, timezone
from collections import deque, Counter

from ..config import PriorityLevel
from ..models.complexity import TaskComplexity
from ..utils.logging import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CostConstraints:
    """Per-orchestrator spending limits and priority."""

    max_cost_per_task: Optional[float] = None
    budget_ceiling: Optional[float] = None
    period_spent: float = 0.0
    # Estimates held by tasks that passed the veto and have not finished
    reserved: float = 0.0
    priority: PriorityLevel = PriorityLevel.BALANCED
    budget_period: timedelta = timedelta(hours=24)
    period_started: datetime = field(default_factory=_utcnow)

    def with_overrides(
        self,
        priority: Optional[PriorityLevel] = None,
        max_cost_per_task: Optional[float] = None
    ) -> "CostConstraints":
        """Copy with per-task overrides; self is not modified."""
        changes = {}
        if priority is not None:
            changes["priority"] = priority
        if max_cost_per_task is not None:
            changes["max_cost_per_task"] = max_cost_per_task
        return replace(self, **changes)

    def roll_period(self, now: datetime) -> bool:
        """Reset period spend once the budget period has elapsed. Reservations carry over."""
        if now - self.period_started >= self.budget_period:
            self.period_started = now
            self.period_spent = 0.0
            return True
        return False


@dataclass(frozen=True)
class CostEstimate:
    """Predicted (or actual) cost of running a volume on a backend."""

    backend_id: str
    input_units: int
    output_units: int
    estimated_cost: float
    known_backend: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UsageRecord:
    """One completed task outcome, read-only once appended."""

    timestamp: datetime
    backend_id: str
    complexity: TaskComplexity
    cost: float
    success: bool
    satisfaction: Optional[float] = None

    def __post_init__(self):
        if self.satisfaction is not None:
            object.__setattr__(self, "satisfaction", max(0.0, min(float(self.satisfaction), 5.0)))
        if self.cost < 0:
            object.__setattr__(self, "cost", 0.0)


@dataclass
class OptimizationStats:
    """Aggregate view of the whole retained usage history."""

    total_tasks: int = 0
    successful_tasks: int = 0
    total_cost: float = 0.0
    success_rate: float = 0.0
    avg_satisfaction: float = 0.0
    cost_per_successful_task: float = 0.0
    period_spent: float = 0.0
    backend_usage: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Recommendation:
    """Advisory suggestion produced from usage statistics."""

    category: str
    message: str
    suggested_backend: Optional[str] = None
    confidence: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class UsageTracker:
    """Bounded FIFO usage history with aggregate statistics."""

    def __init__(self, capacity: int = 1000):
        self.capacity = capacity
        self.history: deque = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self.history)

    def append(self, record: UsageRecord):
        self.history.append(record)

    def records(self) -> List[UsageRecord]:
        return list(self.history)

    def stats(self, period_spent: float = 0.0) -> OptimizationStats:
        """Compute statistics; every ratio is 0.0 when its denominator is empty."""

        total = len(self.history)
        if total == 0:
            return OptimizationStats(period_spent=period_spent)

        successes = [r for r in self.history if r.success]
        rated = [r.satisfaction for r in self.history if r.satisfaction is not None]
        total_cost = sum(r.cost for r in self.history)

        return OptimizationStats(
            total_tasks=total,
            successful_tasks=len(successes),
            total_cost=total_cost,
            success_rate=len(successes) / total,
            avg_satisfaction=sum(rated) / len(rated) if rated else 0.0,
            cost_per_successful_task=total_cost / len(successes) if successes else 0.0,
            period_spent=period_spent,
            backend_usage=dict(Counter(r.backend_id for r in self.history)),
        )

    def failed_reasoning_tasks(self, reasoning_threshold: float = 0.6) -> int:
        return sum(
            1 for r in self.history
            if not r.success and r.complexity.reasoning_required > reasoning_threshold
        )

    def recommendations(
        self,
        constraints: CostConstraints,
        cheapest_backend: str,
        reasoning_backend: Optional[str],
        capable_backend: str,
        cheaper_backend_threshold: float = 0.05,
        failed_reasoning_threshold: int = 2,
        budget_warning_ratio: float = 0.8,
        low_satisfaction_threshold: float = 3.0,
    ) -> List[Recommendation]:
        """Heuristic suggestions. No side effects."""

        stats = self.stats(constraints.period_spent)
        recommendations = []

        if stats.success_rate > 0.9 and stats.cost_per_successful_task > cheaper_backend_threshold:
            recommendations.append(Recommendation(
                category="cost",
                message=(
                    f"Success rate is {stats.success_rate:.0%} at "
                    f"${stats.cost_per_successful_task:.4f} per successful task; "
                    f"a cheaper backend is likely sufficient"
                ),
                suggested_backend=cheapest_backend,
                confidence=0.7,
            ))

        failed_reasoning = self.failed_reasoning_tasks()
        if failed_reasoning > failed_reasoning_threshold and reasoning_backend:
            recommendations.append(Recommendation(
                category="reasoning",
                message=(
                    f"{failed_reasoning} high-reasoning tasks failed; "
                    f"enable extended reasoning for these tasks"
                ),
                suggested_backend=reasoning_backend,
                confidence=0.8,
            ))

        rated = [r for r in self.history if r.satisfaction is not None]
        if len(rated) >= 5 and stats.avg_satisfaction < low_satisfaction_threshold:
            recommendations.append(Recommendation(
                category="quality",
                message=(
                    f"Average satisfaction is {stats.avg_satisfaction:.1f}/5; "
                    f"consider raising priority or using a more capable backend"
                ),
                suggested_backend=capable_backend,
                confidence=0.6,
            ))

        if constraints.budget_ceiling:
            used = constraints.period_spent / constraints.budget_ceiling
            if used >= budget_warning_ratio:
                recommendations.append(Recommendation(
                    category="budget",
                    message=(
                        f"{used:.0%} of the period budget "
                        f"(${constraints.budget_ceiling:.2f}) is consumed; "
                        f"lower task priority to stay within budget"
                    ),
                    suggested_backend=cheapest_backend,
                    confidence=0.9,
                ))

        return recommendations
