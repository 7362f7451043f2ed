"""
Image-folder workload (e.g. a COCO validation split on disk).
"""

import logging
from pathlib import Path
from typing import Dict

import numpy as np
from PIL import Image

from .base import BaseWorkload

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".bmp"}


class ImageFolderWorkload(BaseWorkload):
    """Images read from a directory, resized to the model input and scaled to [0, 1]."""

    def __init__(self, name: str, data_path: str, cache: bool = True, **kwargs):
        super().__init__(name, **kwargs)
        self.data_path = data_path
        self.cache = cache
        self._cache: Dict[int, np.ndarray] = {}

    def load(self) -> None:
        """Scan the directory for image files."""
        if self._loaded:
            return

        data_path = Path(self.data_path)
        if not data_path.is_dir():
            raise FileNotFoundError(f"Workload directory not found: {data_path}")

        for img_file in sorted(data_path.iterdir()):
            if img_file.suffix.lower() in IMAGE_EXTENSIONS:
                self._items.append(str(img_file))

        logger.info(f"Workload {self.name}: {len(self._items)} images in {data_path}")
        self._loaded = True

    def _preprocess_image(self, image_path: str) -> np.ndarray:
        """Load an image as a float32 CHW array resized to the input shape."""
        _, h, w = self.input_shape

        img = Image.open(image_path).convert("RGB")
        img = img.resize((w, h), Image.Resampling.BILINEAR)

        img_array = np.asarray(img, dtype=np.float32) / 255.0
        # HWC -> CHW
        return np.transpose(img_array, (2, 0, 1))

    def get_sample(self, index: int) -> np.ndarray:
        if not self._loaded:
            self.load()

        if index in self._cache:
            return self._cache[index]

        frame = self._preprocess_image(self._items[index])
        if self.cache:
            self._cache[index] = frame
        return frame
