"""
Tests for the benchmark runner.
"""

import threading
import time

import numpy as np
import pytest

from ecocompare.backends.base import BaseBackend, BatchResult
from ecocompare.core.benchmark_runner import SIDE_A, SIDE_B, BenchmarkRunner
from ecocompare.core.config import ComparisonConfig, EnergyConfig, RunnerConfig
from ecocompare.core.errors import (
    ModelUnavailable,
    RunCancelled,
    RunFailed,
    RunTimeout,
)
from ecocompare.core.metrics import Framework, ModelDescriptor
from ecocompare.datasets import SyntheticWorkload

PASS_SECONDS = 0.01


class FakeClock:
    """Clock that only moves when a fake backend runs a pass."""

    def __init__(self):
        self.now = 1000.0
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class FakeBackend(BaseBackend):
    """Backend with scripted pass failures and fixed outputs."""

    def __init__(self, clock, fail_passes=(), fail_load=False, on_pass=None, footprint=256.0):
        super().__init__(None)
        self.clock = clock
        self.fail_passes = set(fail_passes)
        self.fail_load = fail_load
        self.on_pass = on_pass
        self.footprint = footprint
        self.calls = 0
        self.closed = False

    def load(self):
        if self.fail_load:
            raise RuntimeError("corrupt artifact")
        self._loaded = True

    def predict_batch(self, batch):
        self.calls += 1
        if self.calls in self.fail_passes:
            raise RuntimeError(f"pass {self.calls} exploded")
        self.clock.advance(PASS_SECONDS)
        if self.on_pass is not None:
            self.on_pass(self.calls)
        return BatchResult(
            objects_detected=2 * batch.shape[0],
            confidences=np.array([0.5, 0.7] * batch.shape[0], dtype=np.float32),
        )

    @property
    def input_shape(self):
        return (3, 16, 16)

    def quality_metrics(self):
        return {"accuracy": 85.2, "precision": 0.8, "recall": 0.6}

    def memory_footprint_mb(self):
        return self.footprint

    def close(self):
        self.closed = True
        super().close()


def descriptor(model_id: str) -> ModelDescriptor:
    return ModelDescriptor(id=model_id, name=f"model-{model_id}",
                           framework=Framework.ONNX, size_mb=6.2)


def workload_factory(name, input_shape):
    return SyntheticWorkload(name, num_samples=4, seed=1, input_shape=input_shape)


def make_runner(clock, backends, **runner_kwargs):
    """Runner whose factory hands out the given backend per model id."""
    runner_kwargs.setdefault("warmup_iterations", 0)
    return BenchmarkRunner(
        backend_factory=lambda desc, batch_size: backends[desc.id],
        workload_factory=workload_factory,
        config=RunnerConfig(**runner_kwargs),
        energy_config=EnergyConfig(device_power_watts=36.0, carbon_intensity_g_kwh=500.0),
        clock=clock,
    )


class TestRunUnit:
    """Tests for a single model's unit of work."""

    def test_sample_from_passes(self):
        """Test throughput, latency and detection figures."""
        clock = FakeClock()
        backend = FakeBackend(clock)
        runner = make_runner(clock, {"1": backend})

        sample = runner.run_unit(SIDE_A, descriptor("1"), ComparisonConfig(iterations=10))

        assert sample.throughput_fps == pytest.approx(100.0)
        assert sample.latency_ms == pytest.approx(10.0)
        assert sample.processing_time_s == pytest.approx(0.1)
        assert sample.objects_detected == 20
        assert sample.confidence == pytest.approx(0.6)
        assert sample.accuracy == 85.2
        assert sample.f1 == pytest.approx(2 * 0.8 * 0.6 / 1.4)
        assert sample.memory_mb == 256.0
        assert backend.closed

    def test_throughput_is_iterations_over_wall_time(self):
        """Test that batch size does not scale throughput."""
        clock = FakeClock()
        runner = make_runner(clock, {"1": FakeBackend(clock)})

        sample = runner.run_unit(
            SIDE_A, descriptor("1"), ComparisonConfig(iterations=20, batch_size=4)
        )

        assert sample.throughput_fps == pytest.approx(100.0)
        assert sample.objects_detected == 20 * 8

    def test_energy_and_carbon(self):
        """Test power x busy time and the grid intensity conversion."""
        clock = FakeClock()
        runner = make_runner(clock, {"1": FakeBackend(clock)})

        sample = runner.run_unit(SIDE_A, descriptor("1"), ComparisonConfig(iterations=10))

        # 36 W for 0.1 s
        assert sample.energy_wh == pytest.approx(0.001)
        assert sample.carbon_g == pytest.approx(0.0005)
        assert sample.carbon_collected

    def test_carbon_not_collected(self):
        """Test that the carbon toggle zero-fills and marks energy and carbon."""
        clock = FakeClock()
        runner = make_runner(clock, {"1": FakeBackend(clock)})

        sample = runner.run_unit(
            SIDE_A, descriptor("1"),
            ComparisonConfig(iterations=10, include_carbon_metrics=False),
        )

        assert sample.carbon_g == 0.0
        assert sample.energy_wh == 0.0
        assert not sample.carbon_collected
        assert not sample.is_collected("energy_wh")

    def test_memory_not_collected(self):
        clock = FakeClock()
        runner = make_runner(clock, {"1": FakeBackend(clock)})

        sample = runner.run_unit(
            SIDE_A, descriptor("1"),
            ComparisonConfig(iterations=10, include_memory_metrics=False),
        )

        assert sample.memory_mb == 0.0
        assert not sample.memory_collected

    def test_memory_falls_back_to_rss(self):
        """Test that a backend without a footprint gets a measured value."""
        clock = FakeClock()
        runner = make_runner(clock, {"1": FakeBackend(clock, footprint=None)})

        sample = runner.run_unit(SIDE_A, descriptor("1"), ComparisonConfig(iterations=10))

        assert sample.memory_collected
        assert sample.memory_mb >= 0.0

    def test_single_retry_succeeds(self):
        """Test that one failed pass is retried transparently."""
        clock = FakeClock()
        backend = FakeBackend(clock, fail_passes={3})
        runner = make_runner(clock, {"1": backend})

        sample = runner.run_unit(SIDE_A, descriptor("1"), ComparisonConfig(iterations=10))

        assert backend.calls == 11
        assert sample.objects_detected == 20

    def test_exhausted_retries_raise_run_failed(self):
        """Test that a pass failing on its retry fails the unit."""
        clock = FakeClock()
        backend = FakeBackend(clock, fail_passes={3, 4})
        runner = make_runner(clock, {"1": backend})

        with pytest.raises(RunFailed) as exc_info:
            runner.run_unit(SIDE_B, descriptor("1"), ComparisonConfig(iterations=10))

        error = exc_info.value
        assert error.side == SIDE_B
        assert error.model_id == "1"
        assert "pass 4 exploded" in str(error)
        assert backend.closed

    def test_zero_retries(self):
        clock = FakeClock()
        runner = make_runner(clock, {"1": FakeBackend(clock, fail_passes={1})}, max_retries=0)

        with pytest.raises(RunFailed):
            runner.run_unit(SIDE_A, descriptor("1"), ComparisonConfig(iterations=10))

    def test_load_failure_is_model_unavailable(self):
        clock = FakeClock()
        runner = make_runner(clock, {"1": FakeBackend(clock, fail_load=True)})

        with pytest.raises(ModelUnavailable, match="corrupt artifact"):
            runner.run_unit(SIDE_A, descriptor("1"), ComparisonConfig(iterations=10))

    def test_factory_failure_is_model_unavailable(self):
        clock = FakeClock()
        runner = make_runner(clock, {})

        with pytest.raises(ModelUnavailable):
            runner.run_unit(SIDE_A, descriptor("missing"), ComparisonConfig(iterations=10))

    def test_cancel_before_start(self):
        clock = FakeClock()
        backend = FakeBackend(clock)
        runner = make_runner(clock, {"1": backend})
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(RunCancelled):
            runner.run_unit(SIDE_A, descriptor("1"), ComparisonConfig(iterations=10), cancel_event)

        assert backend.calls == 0

    def test_cancel_between_passes(self):
        """Test that cancellation stops the unit at the next pass boundary."""
        clock = FakeClock()
        cancel_event = threading.Event()
        backend = FakeBackend(clock, on_pass=lambda n: cancel_event.set() if n == 5 else None)
        runner = make_runner(clock, {"1": backend})

        with pytest.raises(RunCancelled):
            runner.run_unit(SIDE_A, descriptor("1"), ComparisonConfig(iterations=100), cancel_event)

        assert backend.calls == 5

    def test_timeout(self):
        """Test that the per-model budget is enforced between passes."""
        clock = FakeClock()
        backend = FakeBackend(clock)
        runner = make_runner(clock, {"1": backend})

        with pytest.raises(RunTimeout):
            runner.run_unit(
                SIDE_A, descriptor("1"), ComparisonConfig(iterations=100, timeout_s=0.045)
            )

        assert backend.calls == 5

    def test_last_pass_over_budget(self):
        """Test that a run finishing past its budget fails instead of reporting a sample."""
        clock = FakeClock()
        backend = FakeBackend(clock)
        runner = make_runner(clock, {"1": backend})

        with pytest.raises(RunTimeout):
            runner.run_unit(
                SIDE_A, descriptor("1"), ComparisonConfig(iterations=10, timeout_s=0.095)
            )

        assert backend.calls == 10
        assert backend.closed

    def test_single_slow_pass_over_budget(self):
        clock = FakeClock()
        backend = FakeBackend(clock, on_pass=lambda n: clock.advance(100.0) if n == 10 else None)
        runner = make_runner(clock, {"1": backend})

        with pytest.raises(RunTimeout):
            runner.run_unit(
                SIDE_A, descriptor("1"), ComparisonConfig(iterations=10, timeout_s=5.0)
            )

    def test_default_timeout_from_iterations(self):
        """Test the budget derived from the iteration count."""
        clock = FakeClock()
        backend = FakeBackend(clock)
        runner = make_runner(clock, {"1": backend},
                             per_iteration_budget_s=0.001, load_budget_s=0.0)

        with pytest.raises(RunTimeout):
            runner.run_unit(SIDE_A, descriptor("1"), ComparisonConfig(iterations=100))

    def test_warmup_passes_untimed(self):
        clock = FakeClock()
        backend = FakeBackend(clock)
        runner = make_runner(clock, {"1": backend}, warmup_iterations=3)

        sample = runner.run_unit(SIDE_A, descriptor("1"), ComparisonConfig(iterations=10))

        assert backend.calls == 13
        assert sample.objects_detected == 20
        assert sample.processing_time_s == pytest.approx(0.1)

    def test_unknown_workload_is_run_failed(self):
        clock = FakeClock()

        def failing_workloads(name, input_shape):
            raise KeyError(name)

        runner = BenchmarkRunner(
            backend_factory=lambda desc, batch_size: FakeBackend(clock),
            workload_factory=failing_workloads,
            config=RunnerConfig(warmup_iterations=0),
            clock=clock,
        )

        with pytest.raises(RunFailed, match="workload"):
            runner.run_unit(SIDE_A, descriptor("1"), ComparisonConfig(iterations=10))


class TestRun:
    """Tests for running both units."""

    def test_both_sides_succeed(self):
        clock = FakeClock()
        runner = make_runner(clock, {"1": FakeBackend(clock), "2": FakeBackend(clock)})
        reported = []

        outcome = runner.run(
            ComparisonConfig(iterations=10), descriptor("1"), descriptor("2"),
            on_sample=lambda side, sample: reported.append(side),
        )

        assert outcome.succeeded
        assert outcome.errors == []
        assert sorted(reported) == [SIDE_A, SIDE_B]

    def test_one_side_failure_does_not_block_other(self):
        """Test that a failing unit leaves the other unit's sample intact."""
        clock = FakeClock()
        runner = make_runner(clock, {
            "1": FakeBackend(clock, fail_load=True),
            "2": FakeBackend(clock),
        })
        reported = []

        outcome = runner.run(
            ComparisonConfig(iterations=10), descriptor("1"), descriptor("2"),
            on_sample=lambda side, sample: reported.append(side),
        )

        assert not outcome.succeeded
        assert isinstance(outcome.error(SIDE_A), ModelUnavailable)
        assert outcome.sample(SIDE_A) is None
        assert outcome.sample(SIDE_B) is not None
        assert reported == [SIDE_B]

    def test_unexpected_error_wrapped(self):
        """Test that non-run errors from a unit become RunFailed."""
        clock = FakeClock()
        runner = make_runner(clock, {"1": FakeBackend(clock), "2": FakeBackend(clock)})
        runner.run_unit = _explode_on_b(runner.run_unit)

        outcome = runner.run(ComparisonConfig(iterations=10), descriptor("1"), descriptor("2"))

        assert outcome.sample(SIDE_A) is not None
        assert isinstance(outcome.error(SIDE_B), RunFailed)


def _explode_on_b(run_unit):
    def wrapper(side, *args, **kwargs):
        if side == SIDE_B:
            raise MemoryError("out of memory")
        return run_unit(side, *args, **kwargs)
    return wrapper


class StuckBackend(FakeBackend):
    """Backend whose passes block until released."""

    def __init__(self, clock):
        super().__init__(clock)
        self.release = threading.Event()

    def predict_batch(self, batch):
        self.release.wait(10.0)
        return super().predict_batch(batch)


def wait_until(predicate, timeout=5.0):
    end = time.perf_counter() + timeout
    while time.perf_counter() < end:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestRunBudget:
    """Tests for the budget enforced while waiting on both units."""

    def test_stuck_pass_times_out(self):
        """Test that a pass that never returns fails its side once the budget expires."""
        stuck = StuckBackend(FakeClock())
        runner = make_runner(time.perf_counter, {"1": stuck, "2": FakeBackend(FakeClock())},
                             poll_interval_s=0.01)

        start = time.perf_counter()
        try:
            outcome = runner.run(
                ComparisonConfig(iterations=10, timeout_s=0.5), descriptor("1"), descriptor("2")
            )
            elapsed = time.perf_counter() - start
        finally:
            stuck.release.set()

        assert isinstance(outcome.error(SIDE_A), RunTimeout)
        assert outcome.sample(SIDE_A) is None
        assert outcome.sample(SIDE_B) is not None
        assert elapsed < 5.0

        # The abandoned worker stops at its next pass boundary and releases the model
        assert wait_until(lambda: stuck.closed)
        assert stuck.calls == 1

    def test_cancel_abandons_stuck_pass(self):
        backends = {"1": StuckBackend(FakeClock()), "2": StuckBackend(FakeClock())}
        runner = make_runner(time.perf_counter, backends, poll_interval_s=0.01)
        cancel_event = threading.Event()
        timer = threading.Timer(0.05, cancel_event.set)

        start = time.perf_counter()
        timer.start()
        try:
            outcome = runner.run(
                ComparisonConfig(iterations=10, timeout_s=30.0), descriptor("1"), descriptor("2"),
                cancel_event=cancel_event,
            )
            elapsed = time.perf_counter() - start
        finally:
            timer.cancel()
            for backend in backends.values():
                backend.release.set()

        assert isinstance(outcome.error(SIDE_A), RunCancelled)
        assert isinstance(outcome.error(SIDE_B), RunCancelled)
        assert elapsed < 5.0

    def test_sides_within_budget_collected(self):
        """Test that sides finishing within the budget are collected normally."""
        clock = FakeClock()
        runner = make_runner(clock, {"1": FakeBackend(clock), "2": FakeBackend(clock)})

        outcome = runner.run(
            ComparisonConfig(iterations=10, timeout_s=1.0), descriptor("1"), descriptor("2")
        )

        assert outcome.succeeded
