"""
Model registry.

The comparison core only consumes ``resolve(model_id)``; storage of the
catalog belongs to the caller. ``InMemoryModelRegistry`` backs the CLI and
tests.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Dict, Iterable, List

from .errors import UnknownModel
from .metrics import ModelDescriptor

logger = logging.getLogger(__name__)


class ModelRegistry(ABC):
    """Lookup of registered model descriptors."""

    @abstractmethod
    def resolve(self, model_id: str) -> ModelDescriptor:
        """
        Look up a model.

        Raises:
            UnknownModel: if the id is not registered
        """
        pass

    @abstractmethod
    def list_models(self) -> List[ModelDescriptor]:
        """All registered models."""
        pass

    def framework_distribution(self) -> Dict[str, int]:
        """Number of registered models per framework tag."""
        return dict(Counter(d.framework.value for d in self.list_models()))


class InMemoryModelRegistry(ModelRegistry):
    """Thread-safe registry kept in a dict."""

    def __init__(self, models: Iterable[ModelDescriptor] = ()):
        self._models: Dict[str, ModelDescriptor] = {}
        self._lock = threading.Lock()
        for descriptor in models:
            self.register(descriptor)

    @classmethod
    def from_catalog(cls, entries: Iterable[Dict[str, Any]]) -> "InMemoryModelRegistry":
        """Build from catalog entries (see ``AppConfig.models``)."""
        return cls(ModelDescriptor.from_dict(entry) for entry in entries)

    def register(self, descriptor: ModelDescriptor) -> None:
        with self._lock:
            if descriptor.id in self._models:
                raise ValueError(f"Model {descriptor.id} is already registered")
            self._models[descriptor.id] = descriptor
        logger.debug(f"Registered model {descriptor.label()}")

    def resolve(self, model_id: str) -> ModelDescriptor:
        try:
            return self._models[model_id]
        except KeyError:
            raise UnknownModel(model_id) from None

    def list_models(self) -> List[ModelDescriptor]:
        with self._lock:
            return list(self._models.values())

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._models
