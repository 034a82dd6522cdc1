"""Error taxonomy for task orchestration."""

from typing import Optional, Any


class OrchestrationError(Exception):
    """Base class for all orchestration failures."""

    kind = "orchestration_error"

    def __init__(self, message: str, result: Optional[Any] = None):
        super().__init__(message)
        # Failed ExecutionResult, attached once the task was recorded
        self.result = result

    def to_dict(self):
        return {"error": self.kind, "detail": str(self)}


class ConfigurationError(OrchestrationError):
    """Invalid backend table or routing configuration."""

    kind = "configuration_error"


class CostLimitExceeded(OrchestrationError):
    """Raised by the pre-execution veto; nothing has been spent."""

    kind = "cost_limit_exceeded"

    def __init__(self, limit: float, estimated_cost: float = 0.0, reason: str = "per_task"):
        super().__init__(
            f"Cost limit exceeded: estimated ${estimated_cost:.4f} > limit ${limit:.4f} ({reason})"
        )
        self.limit = limit
        self.estimated_cost = estimated_cost
        self.reason = reason

    def to_dict(self):
        data = super().to_dict()
        data.update({
            "limit": self.limit,
            "estimated_cost": self.estimated_cost,
            "reason": self.reason,
        })
        return data


class AdapterNotFound(OrchestrationError):
    """Selection produced a backend without a registered adapter."""

    kind = "adapter_not_found"

    def __init__(self, backend_id: str):
        super().__init__(f"Adapter not found: {backend_id}")
        self.backend_id = backend_id


class AdapterError(OrchestrationError):
    """Failure reported by the external backend."""

    kind = "adapter_error"

    def __init__(self, detail: str, result: Optional[Any] = None):
        super().__init__(detail, result=result)
        self.detail = detail


class AdapterTimeout(AdapterError):
    """The backend did not answer within its timeout."""

    kind = "adapter_timeout"


class InvalidResponse(OrchestrationError):
    """The backend answered with something that cannot be interpreted."""

    kind = "invalid_response"

    def __init__(self, detail: str, result: Optional[Any] = None):
        super().__init__(f"Invalid response from backend: {detail}", result=result)
        self.detail = detail
