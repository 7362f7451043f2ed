"""
Base workload interface for ecocompare.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterator, List, Optional, Tuple

import numpy as np


class BaseWorkload(ABC):
    """
    Abstract base class for workloads.

    A workload is the shared input (dataset images or decoded video frames)
    both models are benchmarked against. Each runner unit gets its own
    instance, so implementations keep per-instance state only.
    """

    def __init__(
        self,
        name: str,
        input_shape: Tuple[int, int, int] = (3, 640, 640),
        count: Optional[int] = None,
        **kwargs
    ):
        """
        Initialize the workload.

        Args:
            name: Workload name
            input_shape: Frame shape as (channels, height, width)
            count: Number of samples to use (None = all)
            **kwargs: Workload-specific options
        """
        self.name = name
        self.input_shape = tuple(input_shape)
        self.count = count
        self.options = kwargs

        self._loaded = False
        self._items: List[Any] = []

    @abstractmethod
    def load(self) -> None:
        """Index the workload samples."""
        pass

    @abstractmethod
    def get_sample(self, index: int) -> np.ndarray:
        """
        Get a preprocessed frame by index.

        Args:
            index: Sample index

        Returns:
            Frame as float32 array of shape (C, H, W)
        """
        pass

    def get_samples(self, indices: List[int]) -> np.ndarray:
        """
        Get multiple preprocessed frames stacked into an NCHW batch.

        Args:
            indices: List of sample indices

        Returns:
            Batch of shape (len(indices), C, H, W)
        """
        return np.stack([self.get_sample(i) for i in indices]).astype(np.float32)

    def batches(self, batch_size: int) -> Iterator[np.ndarray]:
        """Yield batches forever, wrapping around the workload."""
        if not self._loaded:
            self.load()

        total = self.sample_count
        if total == 0:
            raise ValueError(f"Workload {self.name} has no samples")

        position = 0
        while True:
            indices = [(position + i) % total for i in range(batch_size)]
            position = (position + batch_size) % total
            yield self.get_samples(indices)

    @property
    def total_count(self) -> int:
        """Get total number of samples."""
        return len(self._items)

    @property
    def sample_count(self) -> int:
        """Get number of samples to use (respects count limit)."""
        if self.count is None:
            return self.total_count
        return min(self.count, self.total_count)

    @property
    def is_loaded(self) -> bool:
        """Check if workload is loaded."""
        return self._loaded

    def __len__(self) -> int:
        return self.sample_count
