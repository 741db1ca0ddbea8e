"""Error taxonomy shared by detection, gallery building and matching.

Lower-level I/O and native (cv2 / onnxruntime) failures are wrapped into these
types at the boundary where they occur and then propagate unchanged.
"""


class FaceGalleryError(Exception):
    """Base class for every error raised by facegallery."""


class InvalidImage(FaceGalleryError, ValueError):
    """Image is missing, empty, zero-sized or cannot be decoded."""


class InvalidRegion(FaceGalleryError, ValueError):
    """A detection row or batch does not have the expected (N, 15) shape."""


class InvalidDetectorOrEmbedder(FaceGalleryError, RuntimeError):
    """A native detector/embedder handle is unusable (bad model path, closed, failed inference)."""


InvalidDetector = InvalidDetectorOrEmbedder


class EmptyGallery(FaceGalleryError, RuntimeError):
    """A gallery directory walk produced zero usable embeddings."""
