"""
Error types for model comparisons.

Submission errors (``InvalidConfig``, ``UnknownModel``) are raised to the
caller. Run errors (``RunError`` subclasses) are raised inside the runner and
captured on the session that owns the run.
"""

from typing import Iterable, List, Optional


class ComparisonError(Exception):
    """Base class for all comparison errors."""


class InvalidConfig(ComparisonError):
    """Comparison configuration rejected at submission."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__("Invalid comparison config: " + "; ".join(self.errors))


class UnknownModel(ComparisonError):
    """Model id is not present in the registry."""

    def __init__(self, model_id: str):
        self.model_id = model_id
        super().__init__(f"Unknown model: {model_id!r}")


class InvalidTransition(ComparisonError):
    """Session asked to move to a state it cannot reach."""


class RunError(ComparisonError):
    """Failure of one model's benchmark unit."""

    kind = "run_error"

    def __init__(self, side: str, model_id: str, cause: Optional[str] = None):
        self.side = side
        self.model_id = model_id
        self.cause = cause
        super().__init__(self.describe())

    def describe(self) -> str:
        message = f"Model {self.side} ({self.model_id}): {self.kind.replace('_', ' ')}"
        if self.cause:
            message += f": {self.cause}"
        return message


class ModelUnavailable(RunError):
    """Registered model could not be loaded into an executable backend."""

    kind = "model_unavailable"


class RunFailed(RunError):
    """An inference pass kept failing after its retries were exhausted."""

    kind = "run_failed"


class RunTimeout(RunError):
    """Unit exceeded its per-model run budget."""

    kind = "run_timeout"


class RunCancelled(RunError):
    """Caller stopped the comparison."""

    kind = "run_cancelled"
