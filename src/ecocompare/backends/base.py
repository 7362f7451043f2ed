"""
Base backend interface for ecocompare.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np


@dataclass
class BatchResult:
    """Outcome of one inference pass."""
    objects_detected: int = 0
    confidences: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))


class BaseBackend(ABC):
    """Abstract base class for inference backends."""

    def __init__(self, model_path: Optional[str], **kwargs):
        """
        Initialize the backend.

        Args:
            model_path: Path to the model artifact (None for engines without one)
            **kwargs: Backend-specific options
        """
        self.model_path = model_path
        self.options = kwargs
        self._loaded = False

    @abstractmethod
    def load(self) -> None:
        """Load the model into memory."""
        pass

    @abstractmethod
    def predict_batch(self, batch: np.ndarray) -> BatchResult:
        """
        Run one inference pass.

        Args:
            batch: NCHW float32 array

        Returns:
            Detections produced by the pass
        """
        pass

    @property
    @abstractmethod
    def input_shape(self) -> Tuple[int, ...]:
        """Get the (C, H, W) frame shape the model expects."""
        pass

    def quality_metrics(self) -> Dict[str, float]:
        """
        Quality figures for the run: accuracy (0-100), precision, recall and
        optionally f1 (0-1). Engines that cannot score their outputs report
        their declared reference figures.
        """
        return {}

    def memory_footprint_mb(self) -> Optional[float]:
        """Engine-reported memory footprint, or None to measure process RSS."""
        return None

    @property
    def is_loaded(self) -> bool:
        """Check if the model is loaded."""
        return self._loaded

    def close(self) -> None:
        """Release engine resources."""
        self._loaded = False

    def get_info(self) -> Dict[str, Any]:
        """
        Get information about the backend and model.

        Returns:
            Dictionary with backend information
        """
        return {
            "backend": self.__class__.__name__,
            "model_path": self.model_path,
            "loaded": self._loaded,
            "input_shape": self.input_shape if self._loaded else (),
        }

    def __enter__(self):
        """Context manager entry."""
        self.load()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
