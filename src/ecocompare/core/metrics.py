"""Model descriptors and per-run metric samples."""

import math
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union


class Framework(Enum):
    """Model framework tags."""
    ONNX = "onnx"
    PYTORCH = "pytorch"
    TENSORFLOW = "tensorflow"
    YOLO = "yolo"
    CUSTOM = "custom"

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "Framework":
        """Detect the framework from an artifact file name."""
        name = Path(path).name.lower()
        suffix = Path(path).suffix.lower()

        if "yolo" in name and suffix in (".pt", ".pth"):
            return cls.YOLO
        if suffix == ".onnx":
            return cls.ONNX
        if suffix in (".pt", ".pth"):
            return cls.PYTORCH
        if suffix in (".pb", ".h5", ".keras", ".tflite"):
            return cls.TENSORFLOW
        if "yolo" in name:
            return cls.YOLO
        return cls.CUSTOM


_SIZE_PATTERN = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(KB|MB|GB)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"KB": 1.0 / 1024, "MB": 1.0, "GB": 1024.0}


def parse_size(value: Union[str, int, float]) -> float:
    """Parse a declared model size ("6.2MB", "1.5 GB", 22.6) into megabytes."""
    if isinstance(value, (int, float)):
        return float(value)

    match = _SIZE_PATTERN.match(value)
    if not match:
        raise ValueError(f"Unrecognised model size: {value!r}")

    unit = (match.group(2) or "MB").upper()
    return float(match.group(1)) * _SIZE_UNITS[unit]


@dataclass(frozen=True)
class ModelDescriptor:
    """Registered identity of a comparable inference model."""
    id: str
    name: str
    framework: Framework
    size_mb: float
    artifact_path: Optional[str] = None
    engine: str = "openvino"
    # Declared figures (accuracy, precision, recall, fps, memory_mb, ...)
    reference: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        if not self.id:
            raise ValueError("Model id must not be empty")
        if self.size_mb < 0:
            raise ValueError(f"Model size must be non-negative, got {self.size_mb}")

    def __hash__(self) -> int:
        return hash(self.id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelDescriptor":
        """Build a descriptor from a catalog entry."""
        artifact = data.get("artifact_path")
        framework = data.get("framework")
        if framework is None or framework == "auto":
            framework = Framework.from_path(artifact) if artifact else Framework.CUSTOM
        else:
            framework = Framework(str(framework).lower())

        return cls(
            id=str(data["id"]),
            name=data.get("name", str(data["id"])),
            framework=framework,
            size_mb=parse_size(data.get("size", 0.0)),
            artifact_path=artifact,
            engine=data.get("engine", "openvino"),
            reference=dict(data.get("reference", {})),
        )

    def label(self) -> str:
        """Short human-readable label, e.g. 'YOLOv8n (onnx, 6.2MB)'."""
        return f"{self.name} ({self.framework.value}, {self.size_mb:g}MB)"


RATIO_FIELDS = ("precision", "recall", "f1", "confidence")
CARBON_FIELDS = ("carbon_g", "energy_wh")
MEMORY_FIELDS = ("memory_mb",)


@dataclass(frozen=True)
class MetricSample:
    """
    One model's measured statistics for one comparison run.

    Carbon/energy and memory fields are zero-filled when their collection
    toggle is off; ``carbon_collected`` / ``memory_collected`` record whether
    a zero means "measured zero" or "not collected".
    """
    accuracy: float
    throughput_fps: float
    memory_mb: float
    carbon_g: float
    energy_wh: float
    latency_ms: float
    precision: float = 0.0
    recall: float = 0.0
    f1: float = 0.0
    confidence: float = 0.0
    objects_detected: int = 0
    processing_time_s: float = 0.0
    carbon_collected: bool = True
    memory_collected: bool = True

    def __post_init__(self):
        for name, value in asdict(self).items():
            if isinstance(value, bool):
                continue
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value}")
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")

        if self.accuracy > 100:
            raise ValueError(f"accuracy must be within [0, 100], got {self.accuracy}")

        for name in RATIO_FIELDS:
            if getattr(self, name) > 1:
                raise ValueError(f"{name} must be within [0, 1], got {getattr(self, name)}")

        if not self.carbon_collected and (self.carbon_g or self.energy_wh):
            raise ValueError("carbon_g/energy_wh must be zero when carbon is not collected")
        if not self.memory_collected and self.memory_mb:
            raise ValueError("memory_mb must be zero when memory is not collected")

    def is_collected(self, field_name: str) -> bool:
        """Check whether a field carries a measurement."""
        if field_name in CARBON_FIELDS:
            return self.carbon_collected
        if field_name in MEMORY_FIELDS:
            return self.memory_collected
        return True

    def as_dict(self) -> Dict[str, Any]:
        """Serialize, reporting uncollected fields as None."""
        data = asdict(self)
        for name in CARBON_FIELDS + MEMORY_FIELDS:
            if not self.is_collected(name):
                data[name] = None
        return data
