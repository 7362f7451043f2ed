"""
Synthetic frame workload.

Produces deterministic pseudo-random frames so both models see identical
inputs without any files on disk.
"""

import numpy as np

from .base import BaseWorkload


class SyntheticWorkload(BaseWorkload):
    """Seeded random frames in [0, 1]."""

    def __init__(self, name: str, num_samples: int = 64, seed: int = 0, **kwargs):
        super().__init__(name, count=num_samples, **kwargs)
        self.num_samples = num_samples
        self.seed = seed
        self._frames = None

    def load(self) -> None:
        if self._loaded:
            return

        rng = np.random.default_rng(self.seed)
        # Generated at reduced resolution and upsampled to keep memory small
        c, h, w = self.input_shape
        small_h, small_w = max(1, h // 8), max(1, w // 8)
        base = rng.random((self.num_samples, c, small_h, small_w), dtype=np.float32)
        self._frames = base
        self._items = list(range(self.num_samples))
        self._loaded = True

    def get_sample(self, index: int) -> np.ndarray:
        if not self._loaded:
            self.load()

        c, h, w = self.input_shape
        small = self._frames[index]
        rep_h = -(-h // small.shape[1])
        rep_w = -(-w // small.shape[2])
        frame = np.repeat(np.repeat(small, rep_h, axis=1), rep_w, axis=2)
        return frame[:, :h, :w]
