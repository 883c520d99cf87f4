"""External executor integration."""

from photoai.services.executor.base import DispatchResult, Executor, ExecutorResult
from photoai.services.executor.replicate_client import ReplicateExecutor, classify_error

__all__ = [
    "DispatchResult",
    "Executor",
    "ExecutorResult",
    "ReplicateExecutor",
    "classify_error",
]
