"""Inference backends for ecocompare."""

from typing import Optional

from .base import BaseBackend, BatchResult
from .openvino_backend import OPENVINO_AVAILABLE, OpenVINOBackend, decode_detections
from .simulated_backend import SimulatedBackend
from ..core.config import OpenVINOConfig
from ..core.metrics import ModelDescriptor


def create_backend(
    descriptor: ModelDescriptor,
    batch_size: int = 1,
    openvino_config: Optional[OpenVINOConfig] = None,
    time_scale: float = 1.0,
) -> BaseBackend:
    """
    Create the backend that executes a registered model.

    Raises:
        ValueError: if the descriptor names an engine that does not exist
    """
    if descriptor.engine == "simulated":
        return SimulatedBackend(
            reference=descriptor.reference,
            batch_size=batch_size,
            time_scale=time_scale,
        )
    elif descriptor.engine == "openvino":
        if not descriptor.artifact_path:
            raise ValueError(f"Model {descriptor.id} has no artifact path")
        return OpenVINOBackend(
            model_path=descriptor.artifact_path,
            config=openvino_config,
            batch_size=batch_size,
            reference=descriptor.reference,
        )
    else:
        raise ValueError(f"Unsupported engine: {descriptor.engine}")


__all__ = [
    "BaseBackend",
    "BatchResult",
    "OpenVINOBackend",
    "OPENVINO_AVAILABLE",
    "SimulatedBackend",
    "create_backend",
    "decode_detections",
]
