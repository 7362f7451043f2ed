"""
Live telemetry feed.

A process-wide aggregate of system gauges, refreshed on a fixed interval by a
single writer thread. Each refresh builds a new immutable TelemetrySnapshot
and publishes it with a single reference assignment, so readers never see a
partially updated snapshot and need no lock to read.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields, replace
from typing import Dict, Iterator, Optional, Tuple

import numpy as np
import psutil

from .config import EnergyConfig, TelemetryConfig, TelemetryMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GaugeSpec:
    """Valid range of a gauge and its largest per-refresh change."""
    low: float
    high: float
    max_step: float

    def clamp(self, value: float) -> float:
        return float(min(max(value, self.low), self.high))


GAUGES: Dict[str, GaugeSpec] = {
    "active_comparisons": GaugeSpec(0.0, 10_000.0, 2.0),
    "queue_length": GaugeSpec(0.0, 100_000.0, 3.0),
    "system_load_pct": GaugeSpec(0.0, 100.0, 5.0),
    "carbon_g_per_hour": GaugeSpec(0.0, 1_000_000.0, 25.0),
    "energy_kwh": GaugeSpec(0.0, 1e12, 0.05),
    "uptime_pct": GaugeSpec(90.0, 100.0, 0.05),
    "mean_response_ms": GaugeSpec(0.0, 60_000.0, 20.0),
    "error_rate_pct": GaugeSpec(0.0, 100.0, 0.5),
}

# Gauges that only ever grow
MONOTONIC_GAUGES = frozenset({"energy_kwh"})
# Gauges reported by sessions rather than estimated
COUNT_GAUGES = frozenset({"active_comparisons", "queue_length"})


@dataclass(frozen=True)
class TelemetrySnapshot:
    """Point-in-time reading of the system gauges."""
    sequence: int
    timestamp: float
    active_comparisons: float = 0.0
    queue_length: float = 0.0
    system_load_pct: float = 35.0
    carbon_g_per_hour: float = 120.0
    energy_kwh: float = 0.0
    uptime_pct: float = 99.9
    mean_response_ms: float = 250.0
    error_rate_pct: float = 0.5

    def gauges(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name in GAUGES}

    def within_bounds(self) -> bool:
        return all(GAUGES[name].low <= value <= GAUGES[name].high
                   for name, value in self.gauges().items())

    def as_dict(self) -> Dict[str, float]:
        data = self.gauges()
        data["sequence"] = self.sequence
        data["timestamp"] = self.timestamp
        return data


def clamp_gauges(values: Dict[str, float]) -> Dict[str, float]:
    return {name: GAUGES[name].clamp(value) for name, value in values.items()}


class TelemetrySource(ABC):
    """Derives the next gauge values from the previous snapshot."""

    @abstractmethod
    def next_values(self, previous: TelemetrySnapshot, elapsed_s: float) -> Dict[str, float]:
        """Return new values for any subset of the gauges (unclamped)."""
        pass


class RandomWalkSource(TelemetrySource):
    """Bounded random-walk deltas, for demos and dashboards without a host probe."""

    def __init__(self, seed: Optional[int] = None):
        self._rng = np.random.default_rng(seed)

    def next_values(self, previous: TelemetrySnapshot, elapsed_s: float) -> Dict[str, float]:
        values = {}
        for name, spec in GAUGES.items():
            if name in COUNT_GAUGES:
                continue
            current = getattr(previous, name)
            if name in MONOTONIC_GAUGES:
                delta = self._rng.uniform(0.0, spec.max_step)
            else:
                delta = self._rng.uniform(-spec.max_step, spec.max_step)
            values[name] = current + delta
        return values


class HostMetricsSource(TelemetrySource):
    """Measured deltas: CPU load from psutil, energy and carbon from the power model."""

    def __init__(self, energy_config: Optional[EnergyConfig] = None):
        self.energy_config = energy_config or EnergyConfig()
        psutil.cpu_percent(interval=None)

    def next_values(self, previous: TelemetrySnapshot, elapsed_s: float) -> Dict[str, float]:
        cfg = self.energy_config
        load = psutil.cpu_percent(interval=None)
        power = cfg.idle_power_watts + (cfg.device_power_watts - cfg.idle_power_watts) * load / 100.0
        energy_kwh = previous.energy_kwh + power * max(elapsed_s, 0.0) / 3_600_000.0

        return {
            "system_load_pct": load,
            "energy_kwh": energy_kwh,
            "carbon_g_per_hour": power / 1000.0 * cfg.carbon_intensity_g_kwh,
        }


class TelemetryFeed:
    """
    Single-writer, many-reader telemetry aggregate.

    The refresh loop is the only writer of the published snapshot. Sessions
    report counts and response times into a small inbox the writer drains on
    each refresh.
    """

    def __init__(
        self,
        config: Optional[TelemetryConfig] = None,
        source: Optional[TelemetrySource] = None,
        clock=time.time,
    ):
        self.config = config or TelemetryConfig()
        self.source = source or RandomWalkSource(self.config.seed)
        self._clock = clock

        self._snapshot = TelemetrySnapshot(sequence=0, timestamp=self._clock())
        self._published = threading.Condition()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._inbox_lock = threading.Lock()
        self._session_counts: Optional[Tuple[int, int]] = None
        self._responses = []

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the refresh loop."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._refresh_loop, name="ecocompare-telemetry", daemon=True
        )
        self._thread.start()
        logger.info(f"Telemetry feed started (interval={self.config.interval_s}s)")

    def stop(self) -> None:
        """Stop the refresh loop and release subscribers."""
        self._stop_event.set()
        with self._published:
            self._published.notify_all()
        if self._thread is not None:
            self._thread.join(timeout=self.config.interval_s * 2)
            self._thread = None
        logger.info("Telemetry feed stopped")

    def _refresh_loop(self) -> None:
        while not self._stop_event.wait(self.config.interval_s):
            try:
                self.refresh()
            except Exception:
                logger.exception("Telemetry refresh failed")

    def refresh(self) -> TelemetrySnapshot:
        """Derive and publish the next snapshot."""
        previous = self._snapshot
        now = self._clock()

        values = self.source.next_values(previous, now - previous.timestamp)

        with self._inbox_lock:
            counts, self._session_counts = self._session_counts, None
            responses, self._responses = self._responses, []

        if counts is not None:
            values["active_comparisons"], values["queue_length"] = counts

        if responses:
            durations = [ms for ms, _ in responses]
            failures = sum(1 for _, failed in responses if failed)
            values["mean_response_ms"] = float(np.mean(durations))
            values["error_rate_pct"] = 100.0 * failures / len(responses)

        snapshot = replace(
            previous,
            sequence=previous.sequence + 1,
            timestamp=now,
            **clamp_gauges(values),
        )

        with self._published:
            self._snapshot = snapshot
            self._published.notify_all()
        return snapshot

    def latest(self) -> TelemetrySnapshot:
        """Most recent complete snapshot."""
        return self._snapshot

    def subscribe(self, timeout: Optional[float] = None) -> Iterator[TelemetrySnapshot]:
        """
        Yield the current snapshot, then each newly published one.

        Ends when the feed stops, or when no snapshot arrives within
        ``timeout`` seconds. Close the generator to unsubscribe.
        """
        last = self._snapshot
        yield last

        while not self._stop_event.is_set():
            with self._published:
                arrived = self._published.wait_for(
                    lambda: self._snapshot.sequence > last.sequence or self._stop_event.is_set(),
                    timeout=timeout,
                )
            if not arrived or self._stop_event.is_set():
                return
            last = self._snapshot
            yield last

    def report_sessions(self, active: int, queued: int) -> None:
        """Report session counts, applied on the next refresh."""
        with self._inbox_lock:
            self._session_counts = (max(active, 0), max(queued, 0))

    def record_response(self, duration_ms: float, failed: bool = False) -> None:
        """Report one finished comparison, applied on the next refresh."""
        with self._inbox_lock:
            self._responses.append((float(duration_ms), bool(failed)))


_feed: Optional[TelemetryFeed] = None
_feed_lock = threading.Lock()


def init_feed(
    config: Optional[TelemetryConfig] = None,
    energy_config: Optional[EnergyConfig] = None,
    start: bool = True,
) -> TelemetryFeed:
    """Create the process-wide feed (idempotent while one is live)."""
    global _feed
    with _feed_lock:
        if _feed is None:
            config = config or TelemetryConfig()
            if config.mode == TelemetryMode.HOST:
                source = HostMetricsSource(energy_config)
            else:
                source = RandomWalkSource(config.seed)
            _feed = TelemetryFeed(config, source)
        if start:
            _feed.start()
        return _feed


def get_feed() -> TelemetryFeed:
    """Return the process-wide feed, creating it with defaults if needed."""
    if _feed is None:
        return init_feed()
    return _feed


def shutdown_feed() -> None:
    """Stop and discard the process-wide feed."""
    global _feed
    with _feed_lock:
        if _feed is not None:
            _feed.stop()
            _feed = None
