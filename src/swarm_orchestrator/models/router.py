"""Cost-aware backend selection."""

from typing import Dict, Any, Optional, List
from datetime import datetime, timedelta, timezone
import threading

from ..config import BackendConfig, CostConfig, PriorityLevel, settings
from ..cost_optimization.cost_tracker import (
    CostConstraints,
    CostEstimate,
    UsageRecord,
    UsageTracker,
    OptimizationStats,
    Recommendation,
)
from ..exceptions import CostLimitExceeded
from ..utils.logging import get_logger
from .complexity import TaskComplexity
from .profiles import BackendProfile, load_profiles, cheapest, most_capable, most_expensive

logger = get_logger(__name__)


class BackendSelector:
    """
    Deterministic backend selection with cost enforcement.

    The selector owns the static profile table, the cost constraints and the
    bounded usage history. All mutation happens under one lock and never
    spans an external call.
    """

    def __init__(
        self,
        backend_config: Optional[BackendConfig] = None,
        cost_config: Optional[CostConfig] = None,
        constraints: Optional[CostConstraints] = None,
        clock=None,
    ):
        self.backend_config = backend_config or settings.backend
        self.cost_config = cost_config or settings.cost
        self.profiles: Dict[str, BackendProfile] = load_profiles(self.backend_config)

        self.constraints = constraints or CostConstraints(
            max_cost_per_task=self.cost_config.max_cost_per_task,
            budget_ceiling=self.cost_config.budget_ceiling,
            priority=self.cost_config.priority,
            budget_period=timedelta(hours=self.cost_config.budget_period_hours),
        )
        self.usage = UsageTracker(capacity=self.cost_config.history_capacity)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()

        self.cheapest_backend = cheapest(self.profiles).backend_id
        self.best_general_backend = most_capable(self.profiles).backend_id
        best_reasoning = most_capable(self.profiles, extended_reasoning=True)
        self.best_reasoning_backend = best_reasoning.backend_id if best_reasoning else None
        self.reference_backend = (
            self.backend_config.reference_backend
            or most_expensive(self.profiles).backend_id
        )

        logger.info(
            "backend_selector_initialized",
            backends=sorted(self.profiles),
            cheapest=self.cheapest_backend,
            best_general=self.best_general_backend,
            best_reasoning=self.best_reasoning_backend,
        )

    def select_backend(
        self,
        complexity: TaskComplexity,
        constraints: Optional[CostConstraints] = None
    ) -> str:
        """
        Pick a backend id. Rules are evaluated in order; the first match wins.

        1. Critical priority: most capable backend meeting the reasoning need.
        2. Low priority with overall score < 0.3: cheapest backend.
        3. Thinking needed: best reasoning backend above 0.7, else mid-tier reasoning.
        4. Code-dominant task above 0.6: code backend.
        5. Balanced priority: best general above 0.7, mid above 0.4, else cheapest.
        6. Default backend.
        """
        constraints = constraints or self.constraints
        priority = constraints.priority
        score = complexity.overall_score

        if priority == PriorityLevel.CRITICAL:
            profile = most_capable(self.profiles, extended_reasoning=complexity.thinking_needed)
            if profile is None:
                # No reasoning-capable backend configured
                profile = most_capable(self.profiles)
            backend, rule = profile.backend_id, "critical_priority"
        elif priority == PriorityLevel.LOW and score < 0.3:
            backend, rule = self.cheapest_backend, "low_priority_simple"
        elif complexity.thinking_needed:
            if score > 0.7 and self.best_reasoning_backend:
                backend, rule = self.best_reasoning_backend, "thinking_complex"
            else:
                backend, rule = self.backend_config.mid_reasoning_backend, "thinking"
        elif complexity.code_dominant and score > 0.6:
            backend, rule = self.backend_config.code_backend, "code_heavy"
        elif priority == PriorityLevel.BALANCED:
            if score > 0.7:
                backend, rule = self.best_general_backend, "balanced_high"
            elif score > 0.4:
                backend, rule = self.backend_config.mid_general_backend, "balanced_mid"
            else:
                backend, rule = self.cheapest_backend, "balanced_low"
        else:
            backend, rule = self.backend_config.default_backend, "default"

        logger.debug(
            "backend_selected",
            backend=backend,
            rule=rule,
            priority=priority.value,
            overall_score=round(score, 4),
            thinking_needed=complexity.thinking_needed,
        )
        return backend

    def estimate_cost(self, backend_id: str, input_units: int, output_units: int) -> CostEstimate:
        """Linear price estimate; unknown backends yield a flagged zero estimate."""

        input_units = max(int(input_units), 0)
        output_units = max(int(output_units), 0)

        profile = self.profiles.get(backend_id)
        if profile is None:
            logger.warning("cost_estimate_unknown_backend", backend=backend_id)
            return CostEstimate(
                backend_id=backend_id,
                input_units=input_units,
                output_units=output_units,
                estimated_cost=0.0,
                known_backend=False,
            )

        input_cost = (input_units / 1_000_000) * profile.cost_per_million_input
        output_cost = (output_units / 1_000_000) * profile.cost_per_million_output

        return CostEstimate(
            backend_id=backend_id,
            input_units=input_units,
            output_units=output_units,
            estimated_cost=input_cost + output_cost,
        )

    def estimate_units(self, description: str) -> int:
        """Rough input volume from text length."""
        return len(description or "") // self.backend_config.chars_per_unit

    def check_constraints(
        self,
        estimated_cost: float,
        constraints: Optional[CostConstraints] = None
    ) -> None:
        """Pre-execution veto. Raises CostLimitExceeded, returns None when allowed."""

        with self._lock:
            self.constraints.roll_period(self._clock())
            self._check_locked(estimated_cost, constraints or self.constraints)

    def reserve_budget(
        self,
        estimated_cost: float,
        constraints: Optional[CostConstraints] = None
    ) -> float:
        """
        Veto and hold the estimate against the period budget in one step.

        Returns the reserved amount, to be handed back through
        record_usage() or release_budget() when the task ends.
        """
        with self._lock:
            self.constraints.roll_period(self._clock())
            self._check_locked(estimated_cost, constraints or self.constraints)
            reservation = max(estimated_cost, 0.0)
            self.constraints.reserved += reservation
        return reservation

    def release_budget(self, reservation: float):
        """Drop a reservation for a task that never ran or did not complete."""
        with self._lock:
            self._release_locked(reservation)

    def _release_locked(self, reservation: float):
        self.constraints.reserved = max(self.constraints.reserved - reservation, 0.0)

    def _check_locked(self, estimated_cost: float, active: CostConstraints):
        # Caller holds self._lock
        committed = self.constraints.period_spent + self.constraints.reserved

        if active.max_cost_per_task is not None and estimated_cost > active.max_cost_per_task:
            logger.warning(
                "cost_limit_exceeded",
                estimated_cost=estimated_cost,
                limit=active.max_cost_per_task,
                reason="per_task",
            )
            raise CostLimitExceeded(active.max_cost_per_task, estimated_cost, reason="per_task")

        if active.budget_ceiling is not None and committed + estimated_cost > active.budget_ceiling:
            logger.warning(
                "cost_limit_exceeded",
                estimated_cost=estimated_cost,
                period_spent=self.constraints.period_spent,
                reserved=self.constraints.reserved,
                limit=active.budget_ceiling,
                reason="budget_period",
            )
            raise CostLimitExceeded(active.budget_ceiling, estimated_cost, reason="budget_period")

    def record_usage(self, record: UsageRecord, reservation: float = 0.0):
        """Append to the bounded history and charge the period budget in place of the reservation."""
        with self._lock:
            self.constraints.roll_period(self._clock())
            self._release_locked(reservation)
            self.usage.append(record)
            self.constraints.period_spent += record.cost

    def usage_stats(self) -> OptimizationStats:
        with self._lock:
            return self.usage.stats(self.constraints.period_spent)

    def recommendations(self) -> List[Recommendation]:
        with self._lock:
            self.constraints.roll_period(self._clock())
            return self.usage.recommendations(
                constraints=self.constraints,
                cheapest_backend=self.cheapest_backend,
                reasoning_backend=self.best_reasoning_backend,
                capable_backend=self.best_general_backend,
                cheaper_backend_threshold=self.cost_config.cheaper_backend_threshold,
                failed_reasoning_threshold=self.cost_config.failed_reasoning_threshold,
                budget_warning_ratio=self.cost_config.budget_warning_ratio,
                low_satisfaction_threshold=self.cost_config.low_satisfaction_threshold,
            )

    def history(self) -> List[UsageRecord]:
        with self._lock:
            return self.usage.records()

    def get_routing_stats(self) -> Dict[str, Any]:
        """Snapshot of selector state for reports."""
        stats = self.usage_stats()
        return {
            "usage": stats.to_dict(),
            "constraints": {
                "priority": self.constraints.priority.value,
                "max_cost_per_task": self.constraints.max_cost_per_task,
                "budget_ceiling": self.constraints.budget_ceiling,
                "period_spent": self.constraints.period_spent,
                "reserved": self.constraints.reserved,
                "period_started": self.constraints.period_started.isoformat(),
            },
            "roles": {
                "cheapest": self.cheapest_backend,
                "best_general": self.best_general_backend,
                "best_reasoning": self.best_reasoning_backend,
                "reference": self.reference_backend,
                "default": self.backend_config.default_backend,
            },
        }
