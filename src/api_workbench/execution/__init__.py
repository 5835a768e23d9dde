from api_workbench.execution.executor import ExecutionHandle, Executor, classify_failure
from api_workbench.execution.models import ExecutionResult, Failure, FailureKind, Response

__all__ = [
    "ExecutionHandle",
    "ExecutionResult",
    "Executor",
    "Failure",
    "FailureKind",
    "Response",
    "classify_failure",
]
