"""
OpenVINO backend implementation for ecocompare.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

try:
    import openvino as ov
    from openvino import Core, CompiledModel, InferRequest
    OPENVINO_AVAILABLE = True
except ImportError:
    OPENVINO_AVAILABLE = False
    Core = None
    CompiledModel = None
    InferRequest = None

from .base import BaseBackend, BatchResult
from ..core.config import OpenVINOConfig

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".onnx", ".xml")


def decode_detections(output: np.ndarray, score_threshold: float) -> np.ndarray:
    """
    Extract per-detection confidence scores from a raw detector output.

    Handles the two common layouts:
    - YOLOv8 style ``(N, 4 + num_classes, num_anchors)``: score is the best class score
    - SSD/DetectionOutput style ``(N, K, 5+)``: score is column 4

    Returns:
        Flat array of scores above the threshold
    """
    output = np.asarray(output, dtype=np.float32)
    if output.ndim == 2:
        output = output[np.newaxis]
    if output.ndim != 3:
        return np.zeros(0, dtype=np.float32)

    if output.shape[1] > 4 and output.shape[1] < output.shape[2]:
        scores = output[:, 4:, :].max(axis=1)
    elif output.shape[2] >= 5:
        scores = output[:, :, 4]
    else:
        return np.zeros(0, dtype=np.float32)

    scores = scores.reshape(-1)
    return scores[scores >= score_threshold]


class OpenVINOBackend(BaseBackend):
    """
    OpenVINO backend for inference.

    This backend supports:
    - ONNX models (converted on-the-fly)
    - OpenVINO IR models (.xml/.bin)

    OpenVINO cannot score detections without ground truth, so quality metrics
    are the model's declared reference figures.
    """

    def __init__(
        self,
        model_path: str,
        config: Optional[OpenVINOConfig] = None,
        batch_size: int = 1,
        reference: Optional[Dict[str, float]] = None,
        **kwargs
    ):
        """Initialize OpenVINO backend."""
        if not OPENVINO_AVAILABLE:
            raise ImportError(
                "OpenVINO is not installed. Please install it with: "
                "pip install openvino"
            )

        super().__init__(model_path, **kwargs)

        self.config = config or OpenVINOConfig()
        self.batch_size = batch_size
        self.reference = dict(reference or {})
        self._core: Optional[Core] = None
        self._model: Optional[ov.Model] = None
        self._compiled_model: Optional[CompiledModel] = None
        self._infer_request: Optional[InferRequest] = None

        self._input_name: str = ""
        self._output_names: List[str] = []
        self._input_shape: Tuple[int, ...] = ()

    def load(self) -> None:
        """Load and compile the model."""
        if self._loaded:
            logger.warning("Model already loaded, skipping...")
            return

        model_path = Path(self.model_path)
        if not model_path.exists():
            raise FileNotFoundError(f"Model file not found: {model_path}")
        if model_path.suffix.lower() not in SUPPORTED_SUFFIXES:
            raise ValueError(f"Unsupported model format: {model_path.suffix}")

        logger.info(f"Loading model from {self.model_path}")

        self._core = Core()

        if self.config.cache_dir:
            cache_path = Path(self.config.cache_dir)
            cache_path.mkdir(parents=True, exist_ok=True)
            self._core.set_property({"CACHE_DIR": str(cache_path)})

        self._model = self._core.read_model(str(model_path))
        self._reshape_model_for_batch(max(self.batch_size, 1))
        self._extract_model_info()

        logger.debug(f"Compiling model for device: {self.config.device}")
        self._compiled_model = self._core.compile_model(
            self._model,
            self.config.device,
            self._build_compile_properties()
        )
        self._infer_request = self._compiled_model.create_infer_request()

        self._loaded = True

    def _build_compile_properties(self) -> Dict[str, Any]:
        """Build compilation properties from config."""
        properties = {}

        if self.config.performance_hint:
            hint_enum = getattr(ov.properties.hint.PerformanceMode,
                                self.config.performance_hint, None)
            if hint_enum:
                properties[ov.properties.hint.performance_mode()] = hint_enum

        if self.config.num_streams != "AUTO":
            try:
                properties[ov.properties.hint.num_requests()] = int(self.config.num_streams)
            except ValueError:
                pass  # Use AUTO

        if self.config.num_threads > 0:
            properties[ov.properties.inference_num_threads()] = self.config.num_threads

        return properties

    def _reshape_model_for_batch(self, batch_size: int) -> None:
        """Reshape model inputs to the specified batch size."""
        new_shapes = {}
        for input_node in self._model.inputs:
            name = input_node.any_name
            current_shape = input_node.partial_shape

            new_dims = []
            for i, dim in enumerate(current_shape):
                if i == 0:
                    new_dims.append(batch_size)
                else:
                    if dim.is_static:
                        new_dims.append(dim.get_length())
                    else:
                        new_dims.append(-1)

            new_shapes[name] = new_dims

        self._model.reshape(new_shapes)
        logger.debug(f"Model reshaped for batch_size={batch_size}")

    def _extract_model_info(self) -> None:
        """Extract input/output information from the model."""
        input_node = self._model.inputs[0]
        self._input_name = input_node.any_name

        shape = tuple(input_node.partial_shape.get_min_shape())
        # Dynamic dims fall back to 640 (typical detector input)
        self._input_shape = tuple(d if d > 0 else 640 for d in shape[1:])

        self._output_names = [node.any_name for node in self._model.outputs]

    def predict_batch(self, batch: np.ndarray) -> BatchResult:
        """Run synchronous inference on one batch."""
        if not self._loaded:
            self.load()

        self._infer_request.set_tensor(
            self._input_name, ov.Tensor(np.ascontiguousarray(batch, dtype=np.float32))
        )
        self._infer_request.infer()

        output = self._infer_request.get_tensor(self._output_names[0]).data.copy()
        scores = decode_detections(output, self.config.score_threshold)
        return BatchResult(objects_detected=int(scores.size), confidences=scores)

    def quality_metrics(self) -> Dict[str, float]:
        return {
            key: float(self.reference[key])
            for key in ("accuracy", "precision", "recall", "f1")
            if key in self.reference
        }

    @property
    def input_shape(self) -> Tuple[int, ...]:
        return self._input_shape

    def close(self) -> None:
        self._infer_request = None
        self._compiled_model = None
        self._model = None
        super().close()

    def get_info(self) -> Dict[str, Any]:
        """Get backend information."""
        info = super().get_info()

        if OPENVINO_AVAILABLE:
            info["openvino_version"] = ov.__version__

        if self._loaded:
            info.update({
                "device": self.config.device,
                "performance_hint": self.config.performance_hint,
            })

            if self._core:
                try:
                    info["device_full_name"] = self._core.get_property(
                        self.config.device,
                        "FULL_DEVICE_NAME"
                    )
                except Exception:
                    pass

        return info
