"""OpenCV DNN backends: YuNet face detection and SFace face recognition.

Models: https://github.com/opencv/opencv_zoo (face_detection_yunet, face_recognition_sface).
Both need OpenCV >= 4.8.
"""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np

from facegallery.exceptions import InvalidDetectorOrEmbedder, InvalidRegion
from facegallery.face.backends.base import DetectorBackend, EmbedderBackend
from facegallery.face.region import ROW_WIDTH, as_detections
from facegallery.utils.log import get_logger

logger = get_logger(__name__)


def _require_model_file(model_path: str, what: str) -> str:
    if not model_path or not Path(model_path).is_file():
        raise InvalidDetectorOrEmbedder(f"{what} model not found: {model_path}")
    return str(model_path)


def _as_bgr(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image


class YuNetDetector(DetectorBackend):
    name = "yunet"

    def __init__(
        self,
        model_path: str,
        score_threshold: float = 0.9,
        nms_threshold: float = 0.3,
        top_k: int = 5000,
    ):
        super().__init__()
        self.model_path = _require_model_file(model_path, "YuNet detector")
        self._input_size = (320, 320)
        try:
            self._model = cv2.FaceDetectorYN.create(
                self.model_path,
                "",
                self._input_size,
                float(score_threshold),
                float(nms_threshold),
                int(top_k),
            )
        except cv2.error as e:
            raise InvalidDetectorOrEmbedder(f"Failed to load YuNet model {self.model_path}: {e}") from e
        logger.debug(f"Loaded YuNet detector: {self.model_path}")

    def configure(self, width: int, height: int) -> None:
        self._require_open()
        if int(width) <= 0 or int(height) <= 0:
            raise ValueError(f"Invalid detector input size {width}x{height}")
        self._input_size = (int(width), int(height))
        self._model.setInputSize(self._input_size)

    def detect(self, image: np.ndarray) -> np.ndarray:
        self._require_open()
        image = _as_bgr(image)
        h, w = image.shape[:2]
        if (w, h) != self._input_size:
            raise ValueError(f"Detector configured for {self._input_size}, got image {w}x{h}")
        try:
            _, faces = self._model.detect(image)
        except cv2.error as e:
            raise InvalidDetectorOrEmbedder(f"YuNet inference failed: {e}") from e
        return as_detections(faces)

    def _release(self) -> None:
        self._model = None


class SFaceEmbedder(EmbedderBackend):
    name = "sface"

    def __init__(self, model_path: str):
        super().__init__()
        self.model_path = _require_model_file(model_path, "SFace recognizer")
        try:
            self._model = cv2.FaceRecognizerSF.create(self.model_path, "")
        except cv2.error as e:
            raise InvalidDetectorOrEmbedder(f"Failed to load SFace model {self.model_path}: {e}") from e
        logger.debug(f"Loaded SFace recognizer: {self.model_path}")

    @property
    def identifier(self) -> str:
        return f"sface:{Path(self.model_path).name}"

    def align_crop(self, image: np.ndarray, row: np.ndarray) -> np.ndarray:
        self._require_open()
        box = np.asarray(row, dtype=np.float32).reshape(1, ROW_WIDTH)
        try:
            return self._model.alignCrop(_as_bgr(image), box)
        except cv2.error as e:
            raise InvalidRegion(f"SFace alignCrop failed: {e}") from e

    def extract_feature(self, aligned: np.ndarray) -> np.ndarray:
        self._require_open()
        try:
            return self._model.feature(aligned)
        except cv2.error as e:
            raise InvalidDetectorOrEmbedder(f"SFace feature extraction failed: {e}") from e

    def similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        self._require_open()
        fa = np.asarray(a, dtype=np.float32).reshape(1, -1)
        fb = np.asarray(b, dtype=np.float32).reshape(1, -1)
        return float(self._model.match(fa, fb, cv2.FaceRecognizerSF_FR_COSINE))

    def _release(self) -> None:
        self._model = None
