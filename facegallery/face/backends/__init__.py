"""External detector/embedder primitives.

Available backends:
- opencv: YuNet detection + SFace recognition (default; threshold 0.363 is calibrated for it)
- insightface: SCRFD detection + ArcFace recognition (pip install facegallery[insightface])
"""

from __future__ import annotations

from typing import Tuple

from facegallery.config import RecognizerConfig
from facegallery.face.backends.base import DetectorBackend, EmbedderBackend
from facegallery.face.backends.opencv import SFaceEmbedder, YuNetDetector

BACKENDS = ("opencv", "insightface")


def create_backends(config: RecognizerConfig) -> Tuple[DetectorBackend, EmbedderBackend]:
    """Acquire a detector and an embedder for one session.

    The caller owns both handles and must close them. If the embedder fails to
    load, the already acquired detector is released before the error propagates.
    """
    backend = str(config.backend).lower()
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend: {config.backend}. Available: {list(BACKENDS)}")

    if backend == "insightface":
        # Lazy import: insightface/torch are only needed for this backend
        from facegallery.face.backends.insightface import ArcFaceEmbedder, ScrfdDetector

        detector = ScrfdDetector(config.insightface_model, device=config.device)
        try:
            embedder = ArcFaceEmbedder(config.insightface_model, device=config.device)
        except BaseException:
            detector.close()
            raise
        return detector, embedder

    detector = YuNetDetector(
        config.detector_model_path,
        score_threshold=config.score_threshold,
        nms_threshold=config.nms_threshold,
        top_k=config.top_k,
    )
    try:
        embedder = SFaceEmbedder(config.recognizer_model_path)
    except BaseException:
        detector.close()
        raise
    return detector, embedder


__all__ = [
    "BACKENDS",
    "DetectorBackend",
    "EmbedderBackend",
    "YuNetDetector",
    "SFaceEmbedder",
    "create_backends",
]
