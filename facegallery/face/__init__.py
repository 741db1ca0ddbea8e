"""Face recognition building blocks (region/detector/gallery/matcher).

`FaceRecognizer` wires them into one scoped session; the pieces stay usable on
their own with any `DetectorBackend` / `EmbedderBackend`.
"""

from facegallery.face.region import MatchResult, Region, UNMATCHED_SCORE, rescale_detections
from facegallery.face.detector import MultiScaleDetector, dedupe_detections
from facegallery.face.embedding import EmbeddingExtractor
from facegallery.face.gallery import Gallery, GalleryBuilder, GalleryConfig
from facegallery.face.matcher import IdentityMatcher, MatcherConfig
from facegallery.face.recognizer import FaceRecognizer

__all__ = [
    "Region",
    "MatchResult",
    "UNMATCHED_SCORE",
    "rescale_detections",
    "MultiScaleDetector",
    "dedupe_detections",
    "EmbeddingExtractor",
    "Gallery",
    "GalleryBuilder",
    "GalleryConfig",
    "IdentityMatcher",
    "MatcherConfig",
    "FaceRecognizer",
]
