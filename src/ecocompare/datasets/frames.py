"""
Decoded video workload.

Frames are stored as a ``.npy`` array of shape (N, H, W, C) or (N, C, H, W),
uint8 or float. Decoding the video itself happens upstream.
"""

import logging
from pathlib import Path

import numpy as np

from .base import BaseWorkload

logger = logging.getLogger(__name__)


class VideoFramesWorkload(BaseWorkload):
    """Frames memory-mapped from a numpy file."""

    def __init__(self, name: str, data_path: str, **kwargs):
        super().__init__(name, **kwargs)
        self.data_path = data_path
        self._frames = None
        self._channels_last = False

    def load(self) -> None:
        if self._loaded:
            return

        path = Path(self.data_path)
        if not path.exists():
            raise FileNotFoundError(f"Frame file not found: {path}")

        frames = np.load(str(path), mmap_mode="r")
        if frames.ndim != 4:
            raise ValueError(f"Expected 4D frame array, got shape {frames.shape}")

        channels = self.input_shape[0]
        self._channels_last = frames.shape[-1] == channels and frames.shape[1] != channels
        self._frames = frames
        self._items = list(range(frames.shape[0]))

        logger.info(f"Workload {self.name}: {len(self._items)} frames from {path}")
        self._loaded = True

    def get_sample(self, index: int) -> np.ndarray:
        if not self._loaded:
            self.load()

        frame = np.asarray(self._frames[index], dtype=np.float32)
        if self._channels_last:
            frame = np.transpose(frame, (2, 0, 1))
        if self._frames.dtype == np.uint8:
            frame = frame / 255.0

        _, h, w = self.input_shape
        if frame.shape[1:] != (h, w):
            # Nearest-neighbour resize
            rows = (np.arange(h) * frame.shape[1] // h).astype(np.intp)
            cols = (np.arange(w) * frame.shape[2] // w).astype(np.intp)
            frame = frame[:, rows][:, :, cols]
        return frame
