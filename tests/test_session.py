"""
Tests for the comparison session state machine.
"""

import pytest

from ecocompare.core.benchmark_runner import SIDE_A, SIDE_B, RunOutcome
from ecocompare.core.comparator import Winner
from ecocompare.core.config import ComparisonConfig
from ecocompare.core.errors import InvalidTransition, ModelUnavailable, RunCancelled, RunTimeout
from ecocompare.core.metrics import Framework, MetricSample, ModelDescriptor
from ecocompare.core.session import ComparisonSession, SessionStatus


def make_sample(**overrides) -> MetricSample:
    values = dict(accuracy=85.2, throughput_fps=120.0, memory_mb=512.0, carbon_g=2.1,
                  energy_wh=4.4, latency_ms=8.3)
    values.update(overrides)
    return MetricSample(**values)


SAMPLE_A = make_sample()
SAMPLE_B = make_sample(accuracy=88.7, throughput_fps=95.0, memory_mb=1024.0, carbon_g=3.8)


@pytest.fixture
def session():
    model_a = ModelDescriptor(id="1", name="YOLOv8n", framework=Framework.ONNX, size_mb=6.2)
    model_b = ModelDescriptor(id="2", name="YOLOv8s", framework=Framework.ONNX, size_mb=22.6)
    return ComparisonSession(ComparisonConfig(), model_a, model_b)


@pytest.fixture
def running(session):
    session.mark_running()
    return session


class TestTransitions:
    """Tests for lifecycle transitions."""

    def test_starts_pending(self, session):
        assert session.status is SessionStatus.PENDING
        assert session.result is None
        assert session.sample_a is None
        assert not session.wait(timeout=0)

    def test_completes_with_both_samples(self, running):
        """Test pending -> running -> completed."""
        status = running.finish(RunOutcome(sample_a=SAMPLE_A, sample_b=SAMPLE_B))

        assert status is SessionStatus.COMPLETED
        assert running.result.criterion("accuracy").winner is Winner.B
        assert running.sample_a is SAMPLE_A
        assert running.finished_at is not None
        assert running.wait(timeout=0)

    def test_partial_samples_observable(self, running):
        running.record_sample(SIDE_B, SAMPLE_B)

        assert running.status is SessionStatus.RUNNING
        assert running.sample_b is SAMPLE_B
        assert running.sample_a is None

    def test_never_completes_with_one_sample(self, running):
        """Test that a missing sample fails the session."""
        status = running.finish(RunOutcome(sample_a=SAMPLE_A))

        assert status is SessionStatus.FAILED
        assert running.result is None
        assert running.failure.side == SIDE_B

    def test_first_error_fails_session(self, running):
        outcome = RunOutcome(sample_b=SAMPLE_B)
        outcome.set_error(SIDE_A, ModelUnavailable(SIDE_A, "1", "file missing"))

        running.finish(outcome)

        assert running.status is SessionStatus.FAILED
        assert running.failure.kind == "model_unavailable"
        assert running.failure.model_id == "1"
        assert "Model A (1)" in running.failure.message
        # The surviving side's sample stays visible
        assert running.sample_b is SAMPLE_B

    def test_error_on_both_sides_reports_a(self, running):
        outcome = RunOutcome()
        outcome.set_error(SIDE_B, RunTimeout(SIDE_B, "2"))
        outcome.set_error(SIDE_A, RunTimeout(SIDE_A, "1"))

        running.finish(outcome)

        assert running.failure.side == SIDE_A

    def test_cannot_finish_from_pending(self, session):
        with pytest.raises(InvalidTransition):
            session.finish(RunOutcome(sample_a=SAMPLE_A, sample_b=SAMPLE_B))

    def test_cannot_start_twice(self, running):
        with pytest.raises(InvalidTransition):
            running.mark_running()

    def test_terminal_is_final(self, running):
        """Test that a failed session never reaches completed."""
        running.finish(RunOutcome(sample_a=SAMPLE_A))

        with pytest.raises(InvalidTransition):
            running.finish(RunOutcome(sample_a=SAMPLE_A, sample_b=SAMPLE_B))
        with pytest.raises(InvalidTransition):
            running.record_sample(SIDE_B, SAMPLE_B)

        assert running.status is SessionStatus.FAILED
        assert running.result is None

    def test_sample_written_once(self, running):
        running.record_sample(SIDE_A, SAMPLE_A)

        with pytest.raises(InvalidTransition):
            running.record_sample(SIDE_A, SAMPLE_B)

    def test_sample_rejected_while_pending(self, session):
        with pytest.raises(InvalidTransition):
            session.record_sample(SIDE_A, SAMPLE_A)

    def test_unknown_side(self, running):
        with pytest.raises(ValueError):
            running.record_sample("C", SAMPLE_A)

    def test_criteria_subset(self, session):
        session.criteria = ("accuracy", "speed")
        session.mark_running()

        session.finish(RunOutcome(sample_a=SAMPLE_A, sample_b=SAMPLE_B))

        assert session.result.criterion_names == ("accuracy", "speed")

    def test_comparator_error_fails_session(self, session):
        session.criteria = ("bogus",)
        session.mark_running()

        session.finish(RunOutcome(sample_a=SAMPLE_A, sample_b=SAMPLE_B))

        assert session.status is SessionStatus.FAILED
        assert "comparison failed" in session.failure.message


class TestCancel:
    """Tests for cancellation."""

    def test_cancel_pending_is_noop(self, session):
        assert session.request_cancel() is False
        assert session.status is SessionStatus.PENDING
        assert not session.cancel_requested

    def test_cancel_terminal_is_noop(self, running):
        running.finish(RunOutcome(sample_a=SAMPLE_A, sample_b=SAMPLE_B))

        assert running.request_cancel() is False
        assert running.status is SessionStatus.COMPLETED

    def test_cancel_running_fails_with_run_cancelled(self, running):
        assert running.request_cancel() is True
        assert running.cancel_event.is_set()

        outcome = RunOutcome(sample_a=SAMPLE_A)
        outcome.set_error(SIDE_B, RunCancelled(SIDE_B, "2", "cancelled by caller"))
        running.finish(outcome)

        assert running.status is SessionStatus.FAILED
        assert running.failure.cancelled
        assert running.failure.side == SIDE_B

    def test_cancel_wins_over_completed_units(self, running):
        """Test that a cancel arriving after both units finished still fails the session."""
        running.request_cancel()

        running.finish(RunOutcome(sample_a=SAMPLE_A, sample_b=SAMPLE_B))

        assert running.status is SessionStatus.FAILED
        assert running.failure.kind == RunCancelled.kind
        assert running.result is None

    def test_cancel_wins_over_other_errors(self, running):
        running.request_cancel()
        outcome = RunOutcome()
        outcome.set_error(SIDE_A, ModelUnavailable(SIDE_A, "1"))
        outcome.set_error(SIDE_B, RunCancelled(SIDE_B, "2"))

        running.finish(outcome)

        assert running.failure.cancelled


class TestExport:
    """Tests for the export payload."""

    def test_completed_as_dict(self, running):
        running.finish(RunOutcome(sample_a=SAMPLE_A, sample_b=SAMPLE_B))

        data = running.as_dict()

        assert data["status"] == "completed"
        assert data["model_a"]["name"] == "YOLOv8n"
        assert data["config"]["iterations"] == 100
        assert data["result"]["criteria"][0]["criterion"] == "accuracy"
        assert data["failure"] is None

    def test_failed_as_dict(self, running):
        running.finish(RunOutcome(sample_a=SAMPLE_A))

        data = running.as_dict()

        assert data["status"] == "failed"
        assert data["result"] is None
        assert data["failure"]["side"] == SIDE_B
