"""facegallery: multi-scale face detection and gallery-based identification.

Detection and embedding are delegated to external models (OpenCV YuNet/SFace by
default); this package orchestrates the detection passes, builds the per-subject
gallery and decides identities.
"""

from facegallery.config import MatchPolicy, RecognizerConfig
from facegallery.exceptions import (
    EmptyGallery,
    FaceGalleryError,
    InvalidDetector,
    InvalidDetectorOrEmbedder,
    InvalidImage,
    InvalidRegion,
)

__version__ = "0.1.0"

__all__ = [
    "MatchPolicy",
    "RecognizerConfig",
    "FaceGalleryError",
    "InvalidImage",
    "InvalidRegion",
    "InvalidDetector",
    "InvalidDetectorOrEmbedder",
    "EmptyGallery",
]
