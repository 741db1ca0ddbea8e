"""Interfaces of the external detector/embedder primitives.

Each backend wraps native model state and is a scoped resource: acquire it by
constructing it, release it exactly once with `close()` (or a `with` block).
"""

from abc import ABC, abstractmethod

import numpy as np

from facegallery.exceptions import InvalidDetectorOrEmbedder


class _ScopedBackend(ABC):
    name = "backend"

    def __init__(self):
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _require_open(self) -> None:
        if self._closed:
            raise InvalidDetectorOrEmbedder(f"{self.name} has already been released")

    def close(self) -> None:
        """Release native model state. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._release()

    @abstractmethod
    def _release(self) -> None:
        pass

    def __enter__(self):
        self._require_open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class DetectorBackend(_ScopedBackend):
    """Fixed-input-size face detector."""

    name = "detector"

    @abstractmethod
    def configure(self, width: int, height: int) -> None:
        """Set the detector input size; must match the next image passed to `detect`."""

    @abstractmethod
    def detect(self, image: np.ndarray) -> np.ndarray:
        """Return raw detections as an (N, 15) float32 array.

        Columns: x, y, w, h, right eye, left eye, nose tip, right mouth corner,
        left mouth corner (x, y each), detection score.
        """


class EmbedderBackend(_ScopedBackend):
    """Face feature extractor plus its native similarity function."""

    name = "embedder"

    @property
    @abstractmethod
    def identifier(self) -> str:
        """Stable id of the model; embeddings from different ids are not comparable."""

    @abstractmethod
    def align_crop(self, image: np.ndarray, row: np.ndarray) -> np.ndarray:
        """Align and crop the face described by a (1, 15) detection row."""

    @abstractmethod
    def extract_feature(self, aligned: np.ndarray) -> np.ndarray:
        """Feature vector of an aligned face crop."""

    @abstractmethod
    def similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        """Higher means more alike."""
