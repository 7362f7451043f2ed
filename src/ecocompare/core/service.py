"""
Comparison service: the entry point for presentation and export layers.

    submit -> session id      (InvalidConfig / UnknownModel raised here)
    get / list_sessions       (poll session state and results)
    cancel                    (cooperative stop of a running session)
    subscribe_telemetry       (live system gauges)
"""

import json
import logging
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .benchmark_runner import SIDE_A, BenchmarkRunner
from .config import AppConfig, ComparisonConfig, WorkloadConfig
from .errors import InvalidConfig, RunFailed
from .registry import InMemoryModelRegistry, ModelRegistry
from .session import ComparisonSession, SessionStatus
from .telemetry import TelemetryFeed, TelemetrySnapshot, get_feed, init_feed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DashboardSummary:
    """Aggregate figures for the dashboard."""
    total_models: int
    total_comparisons: int
    comparisons_by_status: Dict[str, int] = field(default_factory=dict)
    mean_accuracy: float = 0.0
    carbon_saved_g: float = 0.0
    framework_distribution: Dict[str, int] = field(default_factory=dict)


class ComparisonService:
    """Owns sessions and schedules their runs on a worker pool."""

    def __init__(
        self,
        registry: ModelRegistry,
        runner: BenchmarkRunner,
        feed: Optional[TelemetryFeed] = None,
        workloads: Optional[Iterable[str]] = None,
        max_concurrent_sessions: int = 4,
        results_dir: str = "./results",
    ):
        """
        Args:
            registry: Model lookup
            runner: Benchmark runner (anything with a compatible ``run``)
            feed: Telemetry feed (defaults to the process-wide feed)
            workloads: Accepted workload names (None accepts any)
            max_concurrent_sessions: Sessions run in parallel
            results_dir: Default directory for ``save_results``
        """
        self.registry = registry
        self.runner = runner
        self.results_dir = results_dir
        self._feed = feed if feed is not None else get_feed()
        self._workloads = frozenset(workloads) if workloads is not None else None

        self._sessions: Dict[str, ComparisonSession] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_sessions,
            thread_name_prefix="ecocompare-session",
        )

    @classmethod
    def from_config(cls, config: AppConfig, time_scale: float = 1.0) -> "ComparisonService":
        """
        Wire registry, runner, workloads and the process-wide feed from an AppConfig.

        Args:
            config: Application configuration
            time_scale: Pass-time multiplier for the simulated engine
        """
        from ..backends import create_backend
        from ..datasets import create_workload

        errors = config.validate()
        if errors:
            raise ValueError("Invalid configuration: " + "; ".join(errors))

        registry = InMemoryModelRegistry.from_catalog(config.models)
        workloads: Dict[str, WorkloadConfig] = dict(config.workloads)

        def backend_factory(descriptor, batch_size):
            return create_backend(
                descriptor,
                batch_size=batch_size,
                openvino_config=config.openvino,
                time_scale=time_scale,
            )

        def workload_factory(name: str, input_shape: Tuple[int, ...]):
            workload_config = workloads[name]
            if len(input_shape) == 3:
                workload_config = replace(workload_config, input_shape=tuple(input_shape))
            return create_workload(workload_config)

        runner = BenchmarkRunner(
            backend_factory=backend_factory,
            workload_factory=workload_factory,
            config=config.runner,
            energy_config=config.energy,
        )

        feed = init_feed(config.telemetry, config.energy)

        return cls(
            registry=registry,
            runner=runner,
            feed=feed,
            workloads=workloads.keys(),
            max_concurrent_sessions=config.max_concurrent_sessions,
            results_dir=config.results_dir,
        )

    def submit(
        self,
        config: ComparisonConfig,
        model_a_id: str,
        model_b_id: str,
        criteria: Optional[Sequence[str]] = None,
    ) -> str:
        """
        Create a session and schedule its run.

        Raises:
            InvalidConfig: bounds violated or unknown workload
            UnknownModel: either model id is not registered
        """
        errors = config.validate()
        if self._workloads is not None and config.workload not in self._workloads:
            errors.append(
                f"Unknown workload {config.workload!r} "
                f"(available: {', '.join(sorted(self._workloads))})"
            )
        if errors:
            raise InvalidConfig(errors)

        model_a = self.registry.resolve(model_a_id)
        model_b = self.registry.resolve(model_b_id)

        session = ComparisonSession(config, model_a, model_b, criteria=criteria)
        with self._lock:
            self._sessions[session.id] = session
        logger.info(f"Session {session.id} submitted: {model_a.label()} vs {model_b.label()}")

        self._report_counts()
        self._executor.submit(self._execute, session)
        return session.id

    def _execute(self, session: ComparisonSession) -> None:
        session.mark_running()
        self._report_counts()

        start = time.perf_counter()
        try:
            outcome = self.runner.run(
                session.config,
                session.model_a,
                session.model_b,
                cancel_event=session.cancel_event,
                on_sample=session.record_sample,
            )
            session.finish(outcome)
        except Exception as e:
            logger.exception(f"Session {session.id}: runner crashed")
            if not session.status.is_terminal:
                session.fail(RunFailed(SIDE_A, session.model_a.id, f"runner error: {e}"))
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            self._feed.record_response(elapsed_ms, failed=session.status is SessionStatus.FAILED)
            self._report_counts()

    def _report_counts(self) -> None:
        with self._lock:
            statuses = [s.status for s in self._sessions.values()]
        self._feed.report_sessions(
            active=statuses.count(SessionStatus.RUNNING),
            queued=statuses.count(SessionStatus.PENDING),
        )

    def get(self, session_id: str) -> ComparisonSession:
        """Look up a session (KeyError if unknown)."""
        with self._lock:
            return self._sessions[session_id]

    def cancel(self, session_id: str) -> bool:
        """Cancel a running session. No-op for pending or terminal sessions."""
        return self.get(session_id).request_cancel()

    def wait(self, session_id: str, timeout: Optional[float] = None) -> ComparisonSession:
        """Block until the session is terminal or the timeout passes."""
        session = self.get(session_id)
        session.wait(timeout)
        return session

    def list_sessions(self, status: Optional[SessionStatus] = None) -> List[ComparisonSession]:
        """Sessions, newest first, optionally filtered by status."""
        with self._lock:
            sessions = list(self._sessions.values())
        if status is not None:
            sessions = [s for s in sessions if s.status is status]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    def subscribe_telemetry(self, timeout: Optional[float] = None) -> Iterator[TelemetrySnapshot]:
        """Live telemetry snapshots; close the iterator to unsubscribe."""
        return self._feed.subscribe(timeout=timeout)

    def summary(self) -> DashboardSummary:
        """Dashboard figures over the sessions held by this service."""
        sessions = self.list_sessions()
        by_status = Counter(s.status.value for s in sessions)

        accuracies = []
        carbon_saved = 0.0
        for session in sessions:
            if session.status is not SessionStatus.COMPLETED:
                continue
            accuracies.extend([session.sample_a.accuracy, session.sample_b.accuracy])
            carbon = session.result.criterion("carbon")
            if carbon is not None:
                carbon_saved += carbon.margin

        return DashboardSummary(
            total_models=len(self.registry.list_models()),
            total_comparisons=len(sessions),
            comparisons_by_status=dict(by_status),
            mean_accuracy=float(np.mean(accuracies)) if accuracies else 0.0,
            carbon_saved_g=carbon_saved,
            framework_distribution=self.registry.framework_distribution(),
        )

    def save_results(self, session_id: str, output_path: Optional[str] = None) -> str:
        """Save a session's export payload as JSON."""
        session = self.get(session_id)
        if output_path is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            output_path = Path(self.results_dir) / f"comparison_{session.id[:8]}_{timestamp}.json"

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w") as f:
            json.dump(session.as_dict(), f, indent=2, default=str)

        logger.info(f"Results saved to {output_path}")
        return str(output_path)

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop the worker pool.

        Queued sessions are dropped and stay pending. Running sessions are
        cancelled.
        """
        # Drop the queue first so no worker picks up a new session
        self._executor.shutdown(wait=False, cancel_futures=True)

        dropped = self.list_sessions(SessionStatus.PENDING)
        if dropped:
            logger.info(f"Shutdown dropped {len(dropped)} queued session(s)")

        for session in self.list_sessions(SessionStatus.RUNNING):
            session.request_cancel()

        if wait:
            self._executor.shutdown(wait=True)
