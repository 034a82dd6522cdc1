"""Cost-aware task orchestration across code-generation backends."""

from .orchestrator import TaskOrchestrator, ExecutionRequest, ExecutionResult
from .config import PriorityLevel, Settings, settings

__version__ = "0.1.0"

__all__ = [
    "TaskOrchestrator",
    "ExecutionRequest",
    "ExecutionResult",
    "PriorityLevel",
    "Settings",
    "settings",
]
