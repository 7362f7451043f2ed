"""Workloads for ecocompare."""

from .base import BaseWorkload
from .synthetic import SyntheticWorkload
from .images import ImageFolderWorkload
from .frames import VideoFramesWorkload
from ..core.config import WorkloadConfig, WorkloadKind


def create_workload(config: WorkloadConfig) -> BaseWorkload:
    """Create a fresh workload instance from its configuration."""
    if config.kind == WorkloadKind.SYNTHETIC:
        return SyntheticWorkload(
            name=config.name,
            num_samples=config.num_samples,
            seed=config.seed,
            input_shape=config.input_shape,
        )
    elif config.kind == WorkloadKind.IMAGES:
        return ImageFolderWorkload(
            name=config.name,
            data_path=config.path,
            input_shape=config.input_shape,
            count=config.num_samples if config.num_samples > 0 else None,
        )
    elif config.kind == WorkloadKind.FRAMES:
        return VideoFramesWorkload(
            name=config.name,
            data_path=config.path,
            input_shape=config.input_shape,
            count=config.num_samples if config.num_samples > 0 else None,
        )
    else:
        raise ValueError(f"Unsupported workload kind: {config.kind}")


__all__ = [
    "BaseWorkload",
    "SyntheticWorkload",
    "ImageFolderWorkload",
    "VideoFramesWorkload",
    "create_workload",
]
