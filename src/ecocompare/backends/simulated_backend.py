"""
Simulated backend driven by a model's declared reference figures.

Used for the demo catalog and for dry runs on machines without an inference
engine: each pass sleeps for the time the declared throughput implies and
emits detections drawn from the declared density.
"""

import logging
import time
from typing import Dict, Optional, Tuple

import numpy as np

from .base import BaseBackend, BatchResult

logger = logging.getLogger(__name__)


class SimulatedBackend(BaseBackend):
    """Backend that emulates a model from its reference profile."""

    def __init__(
        self,
        reference: Dict[str, float],
        batch_size: int = 1,
        input_shape: Tuple[int, int, int] = (3, 640, 640),
        time_scale: float = 1.0,
        seed: Optional[int] = None,
        **kwargs
    ):
        """
        Args:
            reference: Declared figures (fps, accuracy, precision, recall,
                memory_mb, detections_per_frame, failure_rate)
            batch_size: Frames per pass
            input_shape: (C, H, W) frame shape
            time_scale: Multiplier on simulated pass time (0 disables sleeping)
            seed: Random seed for detections and injected failures
        """
        super().__init__(None, **kwargs)
        self.reference = dict(reference)
        self.batch_size = batch_size
        self.time_scale = time_scale
        self._input_shape = tuple(input_shape)
        self._rng = np.random.default_rng(seed)

    def load(self) -> None:
        if self._loaded:
            return

        fps = self.reference.get("fps", 0.0)
        if fps <= 0:
            raise ValueError("Simulated model requires a positive reference fps")

        logger.debug(f"Simulated model loaded (fps={fps}, batch_size={self.batch_size})")
        self._loaded = True

    def predict_batch(self, batch: np.ndarray) -> BatchResult:
        if not self._loaded:
            self.load()

        failure_rate = self.reference.get("failure_rate", 0.0)
        if failure_rate > 0 and self._rng.random() < failure_rate:
            raise RuntimeError("simulated inference failure")

        frames = batch.shape[0]
        if self.time_scale > 0:
            time.sleep(frames / self.reference["fps"] * self.time_scale)

        density = self.reference.get("detections_per_frame", 0.0)
        count = int(self._rng.poisson(density * frames)) if density > 0 else 0

        # Confidence centred on the declared precision
        precision = float(np.clip(self.reference.get("precision", 0.8), 0.05, 0.95))
        concentration = 20.0
        confidences = self._rng.beta(
            precision * concentration, (1.0 - precision) * concentration, size=count
        ).astype(np.float32)

        return BatchResult(objects_detected=count, confidences=confidences)

    def quality_metrics(self) -> Dict[str, float]:
        return {
            key: float(self.reference[key])
            for key in ("accuracy", "precision", "recall", "f1")
            if key in self.reference
        }

    def memory_footprint_mb(self) -> Optional[float]:
        if "memory_mb" in self.reference:
            return float(self.reference["memory_mb"])
        return None

    @property
    def input_shape(self) -> Tuple[int, ...]:
        return self._input_shape
