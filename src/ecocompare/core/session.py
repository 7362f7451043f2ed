"""
Comparison session: the lifecycle record of one comparison job.

    pending -> running -> completed
                       -> failed

Terminal sessions never change again.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence

from .benchmark_runner import SIDE_A, SIDE_B, SIDES, RunOutcome
from .comparator import ComparisonResult, compare
from .config import ComparisonConfig
from .errors import InvalidTransition, RunCancelled, RunError
from .metrics import MetricSample, ModelDescriptor

logger = logging.getLogger(__name__)


class SessionStatus(Enum):
    """Session lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


@dataclass(frozen=True)
class SessionFailure:
    """Why a session failed and which side caused it."""
    side: str
    model_id: str
    kind: str
    message: str

    @property
    def cancelled(self) -> bool:
        return self.kind == RunCancelled.kind

    @classmethod
    def from_error(cls, error: RunError) -> "SessionFailure":
        return cls(side=error.side, model_id=error.model_id, kind=error.kind, message=str(error))


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ComparisonSession:
    """
    Aggregate binding a job configuration, its two models, their samples,
    the comparator output and the lifecycle status.

    All mutation goes through the transition methods, which hold the
    session lock; readers get immutable values (samples, result, failure).
    """

    def __init__(
        self,
        config: ComparisonConfig,
        model_a: ModelDescriptor,
        model_b: ModelDescriptor,
        criteria: Optional[Sequence[str]] = None,
        session_id: Optional[str] = None,
        comparator: Callable[..., ComparisonResult] = compare,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.config = config
        self.model_a = model_a
        self.model_b = model_b
        self.criteria = tuple(criteria) if criteria is not None else None

        self._comparator = comparator
        self._lock = threading.RLock()
        self._terminal = threading.Event()
        self._cancel_event = threading.Event()

        self._status = SessionStatus.PENDING
        self._samples: Dict[str, Optional[MetricSample]] = {SIDE_A: None, SIDE_B: None}
        self._result: Optional[ComparisonResult] = None
        self._failure: Optional[SessionFailure] = None

        self.created_at = _now()
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f"ComparisonSession(id={self.id!r}, {self.model_a.name} vs {self.model_b.name}, "
            f"status={self._status.value})"
        )

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def sample_a(self) -> Optional[MetricSample]:
        return self._samples[SIDE_A]

    @property
    def sample_b(self) -> Optional[MetricSample]:
        return self._samples[SIDE_B]

    @property
    def result(self) -> Optional[ComparisonResult]:
        return self._result

    @property
    def failure(self) -> Optional[SessionFailure]:
        return self._failure

    @property
    def cancel_event(self) -> threading.Event:
        """Event the runner units poll between passes."""
        return self._cancel_event

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def model(self, side: str) -> ModelDescriptor:
        return self.model_a if side == SIDE_A else self.model_b

    def mark_running(self) -> None:
        """pending -> running."""
        with self._lock:
            if self._status is not SessionStatus.PENDING:
                raise InvalidTransition(
                    f"Session {self.id} cannot start from {self._status.value}"
                )
            self._status = SessionStatus.RUNNING
            self.started_at = _now()
        logger.info(f"Session {self.id} running: {self.model_a.name} vs {self.model_b.name}")

    def record_sample(self, side: str, sample: MetricSample) -> None:
        """Publish one side's sample. Each side is written once."""
        if side not in SIDES:
            raise ValueError(f"Unknown side: {side}")

        with self._lock:
            if self._status is not SessionStatus.RUNNING:
                raise InvalidTransition(
                    f"Session {self.id} cannot accept samples while {self._status.value}"
                )
            if self._samples[side] is not None:
                raise InvalidTransition(f"Session {self.id} already has a sample for {side}")
            self._samples[side] = sample

    def request_cancel(self) -> bool:
        """
        Ask a running session to stop.

        Returns:
            True if the request was accepted; no-op (False) when the session
            is pending or already terminal
        """
        with self._lock:
            if self._status is not SessionStatus.RUNNING:
                return False
            self._cancel_event.set()
        logger.info(f"Session {self.id} cancellation requested")
        return True

    def finish(self, outcome: RunOutcome) -> SessionStatus:
        """
        Join point once both units reported. Completes the session (running
        the comparator) when both sides succeeded and no cancellation was
        requested; fails it otherwise.
        """
        with self._lock:
            if self._status is not SessionStatus.RUNNING:
                raise InvalidTransition(
                    f"Session {self.id} cannot finish from {self._status.value}"
                )

            for side in SIDES:
                sample = outcome.sample(side)
                if sample is not None and self._samples[side] is None:
                    self._samples[side] = sample

            if self._cancel_event.is_set():
                cancelled = [e for e in outcome.errors if isinstance(e, RunCancelled)]
                error = cancelled[0] if cancelled else RunCancelled(
                    SIDE_A, self.model_a.id, "cancelled by caller"
                )
                self._fail(error)
            elif outcome.errors:
                self._fail(outcome.errors[0])
            elif self._samples[SIDE_A] is None or self._samples[SIDE_B] is None:
                missing = SIDE_A if self._samples[SIDE_A] is None else SIDE_B
                self._fail(RunError(missing, self.model(missing).id, "no sample produced"))
            else:
                try:
                    self._result = self._comparator(
                        self._samples[SIDE_A], self._samples[SIDE_B], self.criteria
                    )
                except Exception as e:
                    self._fail(RunError(SIDE_A, self.model_a.id, f"comparison failed: {e}"))
                else:
                    self._status = SessionStatus.COMPLETED
                    self.finished_at = _now()
                    self._terminal.set()
                    logger.info(
                        f"Session {self.id} completed: overall winner {self._result.overall.value}"
                    )

            return self._status

    def fail(self, error: RunError) -> None:
        """Fail a running session directly (e.g. the runner itself crashed)."""
        with self._lock:
            if self._status is not SessionStatus.RUNNING:
                raise InvalidTransition(f"Session {self.id} cannot fail from {self._status.value}")
            self._fail(error)

    def _fail(self, error: RunError) -> None:
        self._failure = SessionFailure.from_error(error)
        self._status = SessionStatus.FAILED
        self.finished_at = _now()
        self._terminal.set()
        logger.warning(f"Session {self.id} failed: {self._failure.message}")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the session is terminal. Returns False on timeout."""
        return self._terminal.wait(timeout)

    def as_dict(self) -> Dict[str, Any]:
        """Export payload for report generation."""
        with self._lock:
            return {
                "id": self.id,
                "status": self._status.value,
                "model_a": _descriptor_dict(self.model_a),
                "model_b": _descriptor_dict(self.model_b),
                "config": {
                    "workload": self.config.workload,
                    "batch_size": self.config.batch_size,
                    "iterations": self.config.iterations,
                    "include_carbon_metrics": self.config.include_carbon_metrics,
                    "include_memory_metrics": self.config.include_memory_metrics,
                },
                "sample_a": self.sample_a.as_dict() if self.sample_a else None,
                "sample_b": self.sample_b.as_dict() if self.sample_b else None,
                "result": self._result.as_dict() if self._result else None,
                "failure": {
                    "side": self._failure.side,
                    "model_id": self._failure.model_id,
                    "kind": self._failure.kind,
                    "message": self._failure.message,
                } if self._failure else None,
                "created_at": self.created_at.isoformat(),
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            }


def _descriptor_dict(descriptor: ModelDescriptor) -> Dict[str, Any]:
    return {
        "id": descriptor.id,
        "name": descriptor.name,
        "framework": descriptor.framework.value,
        "size_mb": descriptor.size_mb,
    }
