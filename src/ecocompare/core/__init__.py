"""Core components for ecocompare."""

from .config import (
    AppConfig,
    ComparisonConfig,
    EnergyConfig,
    OpenVINOConfig,
    RunnerConfig,
    TelemetryConfig,
    TelemetryMode,
    WorkloadConfig,
    WorkloadKind,
)
from .errors import (
    ComparisonError,
    InvalidConfig,
    InvalidTransition,
    ModelUnavailable,
    RunCancelled,
    RunError,
    RunFailed,
    RunTimeout,
    UnknownModel,
)
from .metrics import Framework, MetricSample, ModelDescriptor
from .comparator import ComparisonResult, CriterionResult, Winner, compare
from .benchmark_runner import BenchmarkRunner, RunOutcome
from .session import ComparisonSession, SessionFailure, SessionStatus
from .telemetry import TelemetryFeed, TelemetrySnapshot
from .registry import InMemoryModelRegistry, ModelRegistry

__all__ = [
    "AppConfig",
    "ComparisonConfig",
    "EnergyConfig",
    "OpenVINOConfig",
    "RunnerConfig",
    "TelemetryConfig",
    "TelemetryMode",
    "WorkloadConfig",
    "WorkloadKind",
    "ComparisonError",
    "InvalidConfig",
    "InvalidTransition",
    "ModelUnavailable",
    "RunCancelled",
    "RunError",
    "RunFailed",
    "RunTimeout",
    "UnknownModel",
    "Framework",
    "MetricSample",
    "ModelDescriptor",
    "ComparisonResult",
    "CriterionResult",
    "Winner",
    "compare",
    "BenchmarkRunner",
    "RunOutcome",
    "ComparisonSession",
    "SessionFailure",
    "SessionStatus",
    "TelemetryFeed",
    "TelemetrySnapshot",
    "InMemoryModelRegistry",
    "ModelRegistry",
]
