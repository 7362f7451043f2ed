"""
Benchmark runner for ecocompare.

Runs one comparison job as two independent units of work, one per model.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
import psutil

try:
    from tqdm import tqdm
    TQDM_AVAILABLE = True
except ImportError:
    TQDM_AVAILABLE = False
    tqdm = None

from .config import ComparisonConfig, EnergyConfig, RunnerConfig
from .energy import EnergyEstimator
from .errors import ModelUnavailable, RunCancelled, RunError, RunFailed, RunTimeout
from .metrics import MetricSample, ModelDescriptor

logger = logging.getLogger(__name__)

SIDE_A = "A"
SIDE_B = "B"
SIDES = (SIDE_A, SIDE_B)

_MB = 1024 * 1024

# (descriptor, batch_size) -> unloaded backend
BackendFactory = Callable[[ModelDescriptor, int], "BaseBackend"]
# (workload name, (C, H, W)) -> fresh workload instance
WorkloadFactory = Callable[[str, Tuple[int, ...]], "BaseWorkload"]


@dataclass
class RunOutcome:
    """Terminal result of both units of a run."""
    sample_a: Optional[MetricSample] = None
    sample_b: Optional[MetricSample] = None
    error_a: Optional[RunError] = None
    error_b: Optional[RunError] = None

    def sample(self, side: str) -> Optional[MetricSample]:
        return self.sample_a if side == SIDE_A else self.sample_b

    def error(self, side: str) -> Optional[RunError]:
        return self.error_a if side == SIDE_A else self.error_b

    def set_sample(self, side: str, sample: MetricSample) -> None:
        if side == SIDE_A:
            self.sample_a = sample
        else:
            self.sample_b = sample

    def set_error(self, side: str, error: RunError) -> None:
        if side == SIDE_A:
            self.error_a = error
        else:
            self.error_b = error

    @property
    def errors(self) -> List[RunError]:
        """Errors in side order (A first)."""
        return [e for e in (self.error_a, self.error_b) if e is not None]

    @property
    def succeeded(self) -> bool:
        return not self.errors and self.sample_a is not None and self.sample_b is not None


class BenchmarkRunner:
    """
    Executes a comparison job against two models and a shared workload.

    Each unit of work:
    - loads the model's backend (``ModelUnavailable`` on failure)
    - runs ``iterations`` timed passes in batches of ``batch_size``,
      retrying a failed pass ``max_retries`` times (``RunFailed`` after that)
    - checks cancellation (``RunCancelled``) and its deadline
      (``RunTimeout``) between passes
    - produces a MetricSample with throughput = iterations / wall time
    """

    def __init__(
        self,
        backend_factory: BackendFactory,
        workload_factory: WorkloadFactory,
        config: Optional[RunnerConfig] = None,
        energy_config: Optional[EnergyConfig] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """
        Initialize the benchmark runner.

        Args:
            backend_factory: Builds an unloaded backend for a model
            workload_factory: Builds a workload instance for a unit
            config: Runner configuration
            energy_config: Power model for energy/carbon estimation
            clock: Monotonic clock in seconds
        """
        self.config = config or RunnerConfig()
        self.energy_config = energy_config or EnergyConfig()
        self._backend_factory = backend_factory
        self._workload_factory = workload_factory
        self._clock = clock

    def run(
        self,
        config: ComparisonConfig,
        model_a: ModelDescriptor,
        model_b: ModelDescriptor,
        cancel_event: Optional[threading.Event] = None,
        on_sample: Optional[Callable[[str, MetricSample], None]] = None,
    ) -> RunOutcome:
        """
        Run both units concurrently and wait for both terminal outcomes.

        A failure on one side does not stop the other side. A unit still
        busy when the run budget expires, or when cancel is requested, is
        abandoned: its outcome is recorded here and the worker thread is
        left to notice its stop event at the next pass boundary.
        """
        if cancel_event is None:
            cancel_event = threading.Event()

        descriptors: Dict[str, ModelDescriptor] = {SIDE_A: model_a, SIDE_B: model_b}
        stop_events = {side: threading.Event() for side in SIDES}
        outcome = RunOutcome()

        deadline = self._clock() + self.unit_timeout(config)

        # No context manager: leaving it would join a worker stuck in a pass
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="ecocompare-unit")
        try:
            futures = {
                executor.submit(
                    self.run_unit, side, descriptor, config, cancel_event, stop_events[side]
                ): side
                for side, descriptor in descriptors.items()
            }

            pending = set(futures)
            while pending:
                remaining = deadline - self._clock()
                if remaining <= 0 or cancel_event.is_set():
                    for future in pending:
                        if future.done():
                            self._collect(futures[future], future, descriptors, outcome, on_sample)
                            continue
                        side = futures[future]
                        stop_events[side].set()
                        if cancel_event.is_set():
                            error = RunCancelled(side, descriptors[side].id, "cancelled by caller")
                        else:
                            error = RunTimeout(
                                side, descriptors[side].id,
                                "pass did not return within the per-model run budget",
                            )
                        logger.warning(str(error))
                        outcome.set_error(side, error)
                    break

                done, pending = wait(
                    pending,
                    timeout=min(remaining, self.config.poll_interval_s),
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    self._collect(futures[future], future, descriptors, outcome, on_sample)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return outcome

    def _collect(
        self,
        side: str,
        future: Future,
        descriptors: Dict[str, ModelDescriptor],
        outcome: RunOutcome,
        on_sample: Optional[Callable[[str, MetricSample], None]],
    ) -> None:
        try:
            sample = future.result()
        except RunError as e:
            logger.warning(str(e))
            outcome.set_error(side, e)
        except Exception as e:
            logger.exception(f"Unexpected error in unit {side}")
            outcome.set_error(side, RunFailed(side, descriptors[side].id, str(e)))
        else:
            outcome.set_sample(side, sample)
            if on_sample is not None:
                on_sample(side, sample)

    def unit_timeout(self, config: ComparisonConfig) -> float:
        """Per-model run budget in seconds."""
        return config.timeout_s or self.config.default_timeout(config.iterations)

    def run_unit(
        self,
        side: str,
        descriptor: ModelDescriptor,
        config: ComparisonConfig,
        cancel_event: Optional[threading.Event] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> MetricSample:
        """
        Benchmark one model. Raises a RunError subclass on failure.

        ``stop_event`` is set by ``run()`` once it has stopped waiting for this unit.
        """
        if cancel_event is None:
            cancel_event = threading.Event()
        if stop_event is None:
            stop_event = threading.Event()

        deadline = self._clock() + self.unit_timeout(config)

        process = psutil.Process()
        baseline_rss = process.memory_info().rss

        try:
            backend = self._backend_factory(descriptor, config.batch_size)
            backend.load()
        except Exception as e:
            raise ModelUnavailable(side, descriptor.id, str(e)) from e

        logger.info(f"Model {side} ({descriptor.name}) loaded, running {config.iterations} iterations")

        try:
            try:
                workload = self._workload_factory(config.workload, backend.input_shape)
                workload.load()
                batches = workload.batches(config.batch_size)
            except Exception as e:
                raise RunFailed(side, descriptor.id, f"workload {config.workload}: {e}") from e

            for _ in range(self.config.warmup_iterations):
                self._check_continue(side, descriptor, cancel_event, stop_event, deadline)
                self._run_pass(side, descriptor, backend, next(batches))

            latencies: List[float] = []
            confidences: List[np.ndarray] = []
            objects_detected = 0
            peak_rss = baseline_rss

            estimator = EnergyEstimator(self.energy_config)
            estimator.begin()

            progress = None
            if self.config.show_progress and TQDM_AVAILABLE:
                progress = tqdm(total=config.iterations, desc=f"Model {side}", unit="it")

            run_start = self._clock()
            try:
                for _ in range(config.iterations):
                    self._check_continue(side, descriptor, cancel_event, stop_event, deadline)
                    batch = next(batches)

                    pass_start = self._clock()
                    result = self._run_pass(side, descriptor, backend, batch)
                    latencies.append(self._clock() - pass_start)

                    objects_detected += result.objects_detected
                    if result.confidences.size:
                        confidences.append(result.confidences)

                    if config.include_memory_metrics:
                        peak_rss = max(peak_rss, process.memory_info().rss)

                    if progress is not None:
                        progress.update(1)
            finally:
                if progress is not None:
                    progress.close()

            wall_time = self._clock() - run_start
            # The last pass may have run past the budget
            self._check_continue(side, descriptor, cancel_event, stop_event, deadline)

            footprint = backend.memory_footprint_mb()
            quality = backend.quality_metrics()
        finally:
            backend.close()

        if config.include_memory_metrics:
            if footprint is None:
                footprint = max(peak_rss - baseline_rss, 0) / _MB
            memory_mb = float(footprint)
        else:
            memory_mb = 0.0

        if config.include_carbon_metrics:
            reading = estimator.estimate(float(np.sum(latencies)))
            energy_wh, carbon_g = reading.energy_wh, reading.carbon_g
        else:
            energy_wh, carbon_g = 0.0, 0.0

        precision = float(quality.get("precision", 0.0))
        recall = float(quality.get("recall", 0.0))
        f1 = quality.get("f1")
        if f1 is None:
            f1 = 2 * precision * recall / (precision + recall) if precision + recall > 0 else 0.0

        confidence = 0.0
        if confidences:
            confidence = float(np.clip(np.mean(np.concatenate(confidences)), 0.0, 1.0))

        sample = MetricSample(
            accuracy=float(quality.get("accuracy", 0.0)),
            throughput_fps=config.iterations / wall_time if wall_time > 0 else 0.0,
            memory_mb=memory_mb,
            carbon_g=carbon_g,
            energy_wh=energy_wh,
            latency_ms=float(np.mean(latencies)) * 1000.0,
            precision=precision,
            recall=recall,
            f1=float(f1),
            confidence=confidence,
            objects_detected=objects_detected,
            processing_time_s=wall_time,
            carbon_collected=config.include_carbon_metrics,
            memory_collected=config.include_memory_metrics,
        )

        logger.info(
            f"Model {side} ({descriptor.name}): {sample.throughput_fps:.2f} it/s, "
            f"{sample.latency_ms:.2f} ms mean latency"
        )
        return sample

    def _check_continue(
        self,
        side: str,
        descriptor: ModelDescriptor,
        cancel_event: threading.Event,
        stop_event: threading.Event,
        deadline: float,
    ) -> None:
        if cancel_event.is_set():
            raise RunCancelled(side, descriptor.id, "cancelled by caller")
        if stop_event.is_set():
            raise RunTimeout(side, descriptor.id, "abandoned after the per-model run budget")
        if self._clock() > deadline:
            raise RunTimeout(side, descriptor.id, "exceeded the per-model run budget")

    def _run_pass(self, side: str, descriptor: ModelDescriptor, backend, batch: np.ndarray):
        """Run one inference pass, retrying up to ``max_retries`` times."""
        attempts = self.config.max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                return backend.predict_batch(batch)
            except Exception as e:
                last_error = e
                if attempt + 1 < attempts:
                    logger.warning(f"Model {side} ({descriptor.id}): pass failed ({e}), retrying")

        raise RunFailed(
            side, descriptor.id, f"{type(last_error).__name__}: {last_error}"
        ) from last_error
