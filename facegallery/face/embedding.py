from __future__ import annotations

from typing import Iterable, List, Union

import numpy as np

from facegallery.exceptions import InvalidDetectorOrEmbedder, InvalidRegion
from facegallery.face.backends.base import EmbedderBackend
from facegallery.face.region import ROW_WIDTH, Region
from facegallery.utils.image import ensure_image


class EmbeddingExtractor:
    """Align/crop one region with the embedder and return its feature vector."""

    def __init__(self, embedder: EmbedderBackend):
        if embedder is None:
            raise InvalidDetectorOrEmbedder("Face embedder is None")
        self.embedder = embedder

    @staticmethod
    def _as_row(region: Union[Region, np.ndarray]) -> np.ndarray:
        if isinstance(region, Region):
            return region.to_row()
        if region is None:
            raise InvalidRegion("Region is None")
        arr = np.asarray(region, dtype=np.float32)
        # exactly one face: (15,) or (1, 15)
        if arr.shape == (ROW_WIDTH,):
            return arr.reshape(1, ROW_WIDTH)
        if arr.shape == (1, ROW_WIDTH):
            return arr
        raise InvalidRegion(f"Region must describe exactly one face (1, {ROW_WIDTH}), got {arr.shape}")

    def extract(self, image: np.ndarray, region: Union[Region, np.ndarray]) -> np.ndarray:
        image = ensure_image(image)
        row = self._as_row(region)
        if getattr(self.embedder, "closed", False):
            raise InvalidDetectorOrEmbedder("Face embedder has already been released")

        aligned = self.embedder.align_crop(image, row)
        if aligned is None or np.asarray(aligned).size == 0:
            raise InvalidRegion("Alignment produced an empty face crop")
        feature = self.embedder.extract_feature(aligned)
        if feature is None or np.asarray(feature).size == 0:
            raise InvalidDetectorOrEmbedder("Embedder returned an empty feature vector")
        # native embedders may reuse their output buffer across calls
        return np.array(feature, dtype=np.float32, copy=True).reshape(-1)

    def extract_all(self, image: np.ndarray, regions: Iterable[Region]) -> List[np.ndarray]:
        return [self.extract(image, region) for region in regions]
