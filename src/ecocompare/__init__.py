"""
ecocompare
==========

Head-to-head benchmarking of two inference models on a shared workload,
with sustainability metrics.

Each comparison measures, per model:
- Accuracy, precision, recall, F1 and detection confidence
- Throughput, latency and memory footprint
- Energy consumption and carbon output

and derives per-criterion, overall, sustainability and cost verdicts.
A live telemetry feed reports system-wide load, queue and energy gauges.
"""

__version__ = "0.1.0"

from .core.config import AppConfig, ComparisonConfig
from .core.comparator import compare
from .core.service import ComparisonService

__all__ = [
    "AppConfig",
    "ComparisonConfig",
    "ComparisonService",
    "compare",
    "__version__",
]
