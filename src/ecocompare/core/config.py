"""Configuration for ecocompare."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import InvalidConfig

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 32
MIN_ITERATIONS = 10
MAX_ITERATIONS = 1000

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off", ""}


def _is_int(value: Any) -> bool:
    # bool is a subclass of int
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_flag(value: Any) -> bool:
    """Interpret a toggle from YAML, JSON or form input."""
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise InvalidConfig([f"expected a boolean flag, got {value!r}"])
    return bool(value)


class WorkloadKind(Enum):
    """Supported workload sources."""
    SYNTHETIC = "synthetic"
    IMAGES = "images"
    FRAMES = "frames"


class TelemetryMode(Enum):
    """Where telemetry deltas come from."""
    SIMULATED = "simulated"
    HOST = "host"


@dataclass(frozen=True)
class ComparisonConfig:
    """Per-comparison job configuration. Immutable once submitted."""
    workload: str = "coco_val"
    batch_size: int = 1
    iterations: int = 100
    include_carbon_metrics: bool = True
    include_memory_metrics: bool = True
    timeout_s: Optional[float] = None

    def validate(self) -> List[str]:
        """Validate bounds and return list of errors."""
        errors = []

        if not _is_int(self.batch_size) or not (
            MIN_BATCH_SIZE <= self.batch_size <= MAX_BATCH_SIZE
        ):
            errors.append(
                f"batch_size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}, "
                f"got {self.batch_size}"
            )

        if not _is_int(self.iterations) or not (
            MIN_ITERATIONS <= self.iterations <= MAX_ITERATIONS
        ):
            errors.append(
                f"iterations must be between {MIN_ITERATIONS} and {MAX_ITERATIONS}, "
                f"got {self.iterations}"
            )

        if not self.workload:
            errors.append("workload must not be empty")

        if self.timeout_s is not None and self.timeout_s <= 0:
            errors.append(f"timeout_s must be positive, got {self.timeout_s}")

        return errors

    def check(self) -> "ComparisonConfig":
        """Raise InvalidConfig if the config is out of bounds."""
        errors = self.validate()
        if errors:
            raise InvalidConfig(errors)
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComparisonConfig":
        """Build from a dict, accepting both snake_case and the UI's camelCase keys."""
        def pick(*keys, default=None):
            for key in keys:
                if key in data:
                    return data[key]
            return default

        timeout = pick("timeout_s", "timeoutS")
        return cls(
            workload=pick("workload", "testDataset", default="coco_val"),
            batch_size=pick("batch_size", "batchSize", default=1),
            iterations=pick("iterations", default=100),
            include_carbon_metrics=_parse_flag(pick("include_carbon_metrics", "includeCarbonMetrics",
                                                    "carbon", default=True)),
            include_memory_metrics=_parse_flag(pick("include_memory_metrics", "includeMemoryMetrics",
                                                    "memory", default=True)),
            timeout_s=float(timeout) if timeout is not None else None,
        )


@dataclass
class RunnerConfig:
    """Benchmark runner configuration."""
    max_retries: int = 1
    warmup_iterations: int = 2
    # Default timeout = iterations * per_iteration_budget_s + load_budget_s
    per_iteration_budget_s: float = 2.0
    load_budget_s: float = 60.0
    # How often run() checks the budget and cancel flag while units are busy
    poll_interval_s: float = 0.1
    show_progress: bool = False

    def default_timeout(self, iterations: int) -> float:
        """Per-model run budget derived from the iteration count."""
        return iterations * self.per_iteration_budget_s + self.load_budget_s


@dataclass
class EnergyConfig:
    """Power model used to estimate energy and carbon."""
    device_power_watts: float = 65.0
    idle_power_watts: float = 10.0
    # Grid carbon intensity, g CO2 per kWh (global average)
    carbon_intensity_g_kwh: float = 475.0
    # Scale power by measured CPU utilization (psutil) instead of assuming full load
    use_cpu_utilization: bool = False


@dataclass
class TelemetryConfig:
    """Live telemetry feed configuration."""
    interval_s: float = 5.0
    mode: TelemetryMode = TelemetryMode.SIMULATED
    seed: Optional[int] = None


@dataclass
class OpenVINOConfig:
    """OpenVINO runtime configuration."""
    device: str = "CPU"
    num_streams: str = "AUTO"
    num_threads: int = 0  # 0 = auto-detect
    performance_hint: str = "LATENCY"  # THROUGHPUT or LATENCY
    cache_dir: str = "./cache"
    score_threshold: float = 0.5

    def get_device_prefix(self) -> str:
        """Get the device prefix (e.g., 'GPU' from 'GPU.0')."""
        device = self.device.upper()
        if "." in device:
            return device.split(".")[0]
        return device


@dataclass
class WorkloadConfig:
    """Workload (dataset or decoded video) configuration."""
    name: str
    kind: WorkloadKind = WorkloadKind.SYNTHETIC
    path: Optional[str] = None
    num_samples: int = 64
    input_shape: Tuple[int, int, int] = (3, 640, 640)  # (channels, height, width)
    seed: int = 0


def _default_workloads() -> Dict[str, WorkloadConfig]:
    return {
        "coco_val": WorkloadConfig(name="coco_val", seed=2017),
        "coco_test": WorkloadConfig(name="coco_test", seed=2014),
        "custom": WorkloadConfig(name="custom", seed=0),
    }


def _default_models() -> List[Dict[str, Any]]:
    # Demo catalog served by the simulated engine
    return [
        {"id": "1", "name": "YOLOv8n", "framework": "onnx", "size": "6.2MB", "engine": "simulated",
         "reference": {"accuracy": 85.2, "precision": 0.86, "recall": 0.81, "fps": 120.0,
                       "memory_mb": 512.0, "detections_per_frame": 4.0}},
        {"id": "2", "name": "YOLOv8s", "framework": "onnx", "size": "22.6MB", "engine": "simulated",
         "reference": {"accuracy": 88.7, "precision": 0.89, "recall": 0.85, "fps": 95.0,
                       "memory_mb": 1024.0, "detections_per_frame": 5.0}},
        {"id": "3", "name": "YOLOv8m", "framework": "onnx", "size": "52.2MB", "engine": "simulated",
         "reference": {"accuracy": 91.3, "precision": 0.91, "recall": 0.88, "fps": 65.0,
                       "memory_mb": 2048.0, "detections_per_frame": 5.5}},
        {"id": "4", "name": "YOLOv8l", "framework": "onnx", "size": "87.7MB", "engine": "simulated",
         "reference": {"accuracy": 93.1, "precision": 0.93, "recall": 0.90, "fps": 45.0,
                       "memory_mb": 3072.0, "detections_per_frame": 6.0}},
        {"id": "5", "name": "YOLOv8x", "framework": "onnx", "size": "136.7MB", "engine": "simulated",
         "reference": {"accuracy": 94.2, "precision": 0.94, "recall": 0.91, "fps": 30.0,
                       "memory_mb": 4096.0, "detections_per_frame": 6.2}},
        {"id": "6", "name": "Custom YOLO v9", "framework": "pytorch", "size": "45.3MB",
         "engine": "simulated",
         "reference": {"accuracy": 89.5, "precision": 0.90, "recall": 0.86, "fps": 70.0,
                       "memory_mb": 1800.0, "detections_per_frame": 5.2}},
    ]


@dataclass
class AppConfig:
    """Main application configuration."""

    runner: RunnerConfig = field(default_factory=RunnerConfig)
    energy: EnergyConfig = field(default_factory=EnergyConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    openvino: OpenVINOConfig = field(default_factory=OpenVINOConfig)
    workloads: Dict[str, WorkloadConfig] = field(default_factory=_default_workloads)
    models: List[Dict[str, Any]] = field(default_factory=_default_models)

    max_concurrent_sessions: int = 4
    results_dir: str = "./results"

    @classmethod
    def default(cls) -> "AppConfig":
        """Create default configuration with the demo model catalog."""
        return cls()

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "AppConfig":
        """Load configuration from YAML file."""
        with open(yaml_path, "r") as f:
            data = yaml.safe_load(f) or {}

        runner_data = data.get("runner", {})
        runner = RunnerConfig(
            max_retries=runner_data.get("max_retries", 1),
            warmup_iterations=runner_data.get("warmup_iterations", 2),
            per_iteration_budget_s=runner_data.get("per_iteration_budget_s", 2.0),
            load_budget_s=runner_data.get("load_budget_s", 60.0),
            poll_interval_s=runner_data.get("poll_interval_s", 0.1),
            show_progress=runner_data.get("show_progress", False),
        )

        energy_data = data.get("energy", {})
        energy = EnergyConfig(
            device_power_watts=energy_data.get("device_power_watts", 65.0),
            idle_power_watts=energy_data.get("idle_power_watts", 10.0),
            carbon_intensity_g_kwh=energy_data.get("carbon_intensity_g_kwh", 475.0),
            use_cpu_utilization=energy_data.get("use_cpu_utilization", False),
        )

        telemetry_data = data.get("telemetry", {})
        telemetry = TelemetryConfig(
            interval_s=telemetry_data.get("interval_s", 5.0),
            mode=TelemetryMode(telemetry_data.get("mode", "simulated")),
            seed=telemetry_data.get("seed"),
        )

        ov_data = data.get("openvino", {})
        openvino_config = OpenVINOConfig(
            device=ov_data.get("device", "CPU"),
            num_streams=str(ov_data.get("num_streams", "AUTO")),
            num_threads=ov_data.get("num_threads", 0),
            performance_hint=ov_data.get("performance_hint", "LATENCY"),
            cache_dir=ov_data.get("cache_dir", "./cache"),
            score_threshold=ov_data.get("score_threshold", 0.5),
        )

        workloads_data = data.get("workloads")
        if workloads_data is None:
            workloads = _default_workloads()
        else:
            workloads = {}
            for name, wl_data in workloads_data.items():
                wl_data = wl_data or {}
                workloads[name] = WorkloadConfig(
                    name=name,
                    kind=WorkloadKind(wl_data.get("kind", "synthetic")),
                    path=wl_data.get("path"),
                    num_samples=wl_data.get("num_samples", 64),
                    input_shape=tuple(wl_data.get("input_shape", [3, 640, 640])),
                    seed=wl_data.get("seed", 0),
                )

        models = data.get("models")
        if models is None:
            models = _default_models()

        output_data = data.get("output", {})

        return cls(
            runner=runner,
            energy=energy,
            telemetry=telemetry,
            openvino=openvino_config,
            workloads=workloads,
            models=list(models),
            max_concurrent_sessions=data.get("max_concurrent_sessions", 4),
            results_dir=output_data.get("results_dir", "./results"),
        )

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if self.runner.max_retries < 0:
            errors.append(f"runner.max_retries must be >= 0, got {self.runner.max_retries}")

        if self.telemetry.interval_s <= 0:
            errors.append(f"telemetry.interval_s must be positive, got {self.telemetry.interval_s}")

        if self.max_concurrent_sessions < 1:
            errors.append("max_concurrent_sessions must be at least 1")

        for name, workload in self.workloads.items():
            if workload.kind != WorkloadKind.SYNTHETIC:
                if not workload.path:
                    errors.append(f"Workload {name} ({workload.kind.value}) requires a path")
                elif not Path(workload.path).exists():
                    errors.append(f"Workload path not found: {workload.path}")

        seen = set()
        for model in self.models:
            model_id = str(model.get("id", ""))
            if not model_id:
                errors.append(f"Model entry without id: {model}")
            elif model_id in seen:
                errors.append(f"Duplicate model id: {model_id}")
            seen.add(model_id)

        return errors
