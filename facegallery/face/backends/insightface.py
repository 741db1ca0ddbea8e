"""InsightFace backends: SCRFD detection + ArcFace recognition (optional extra).

ArcFace cosine scores live on a different scale than SFace FR_COSINE, so the
acceptance threshold in `RecognizerConfig` must be recalibrated for this backend.
"""

from __future__ import annotations

import io

from contextlib import redirect_stderr, redirect_stdout
from typing import List, Tuple

import numpy as np
import torch

from insightface.app import FaceAnalysis
from insightface.utils import face_align

from facegallery.exceptions import InvalidDetectorOrEmbedder, InvalidRegion
from facegallery.face.backends.base import DetectorBackend, EmbedderBackend
from facegallery.face.region import ROW_WIDTH, empty_detections
from facegallery.utils.log import get_logger, suppress_fds
from facegallery.utils.math import cosine_similarity, l2_normalize

logger = get_logger(__name__)


def _select_providers(device: str) -> Tuple[List[str], int]:
    """Map auto/cpu/gpu to onnxruntime providers and an InsightFace ctx_id."""
    if device == "auto":
        try:
            device = "gpu" if torch.cuda.is_available() else "cpu"
        except Exception:
            device = "cpu"
    if device == "gpu":
        return ["CUDAExecutionProvider"], 0
    return ["CPUExecutionProvider"], -1


def _load_face_analysis(model_name: str, device: str) -> Tuple[FaceAnalysis, int]:
    providers, ctx_id = _select_providers(device)
    try:
        with suppress_fds():
            app = FaceAnalysis(
                name=model_name,
                providers=providers,
                allowed_modules=["detection", "recognition"],
            )
        buf = io.StringIO()
        with redirect_stdout(buf), redirect_stderr(buf):
            app.prepare(ctx_id=ctx_id, det_size=(640, 640))
    except Exception as e:
        raise InvalidDetectorOrEmbedder(f"Failed to load InsightFace model '{model_name}': {e}") from e
    logger.info(f"已加载 InsightFace 模型: {model_name} ({providers[0]})")
    return app, ctx_id


def _round_up(value: int, multiple: int = 32) -> int:
    return int(((int(value) + multiple - 1) // multiple) * multiple)


class ScrfdDetector(DetectorBackend):
    name = "scrfd"

    def __init__(self, model_name: str = "buffalo_l", device: str = "auto"):
        super().__init__()
        self.model_name = model_name
        self._app, self.ctx_id = _load_face_analysis(model_name, device)
        self._det_model = getattr(self._app, "det_model", None)
        if self._det_model is None:
            raise InvalidDetectorOrEmbedder(f"InsightFace pack '{model_name}' has no detection model")
        self._input_size = (640, 640)

    def configure(self, width: int, height: int) -> None:
        self._require_open()
        if int(width) <= 0 or int(height) <= 0:
            raise ValueError(f"Invalid detector input size {width}x{height}")
        # SCRFD anchor grids need sides divisible by the largest stride
        self._input_size = (_round_up(width), _round_up(height))

    def detect(self, image: np.ndarray) -> np.ndarray:
        self._require_open()
        try:
            bboxes, kpss = self._det_model.detect(image, input_size=self._input_size, max_num=0, metric="default")
        except Exception as e:
            raise InvalidDetectorOrEmbedder(f"SCRFD inference failed: {e}") from e

        if bboxes is None or getattr(bboxes, "shape", (0,))[0] == 0:
            return empty_detections()
        if kpss is None:
            raise InvalidRegion("SCRFD model returned boxes without landmarks")

        n = int(bboxes.shape[0])
        rows = np.zeros((n, ROW_WIDTH), dtype=np.float32)
        rows[:, 0] = bboxes[:, 0]
        rows[:, 1] = bboxes[:, 1]
        rows[:, 2] = bboxes[:, 2] - bboxes[:, 0]
        rows[:, 3] = bboxes[:, 3] - bboxes[:, 1]
        # kps order already matches: image-left eye (subject's right) first, then nose, mouth corners
        rows[:, 4:14] = np.asarray(kpss, dtype=np.float32).reshape(n, 10)
        rows[:, 14] = bboxes[:, 4]
        return rows

    def _release(self) -> None:
        self._det_model = None
        self._app = None


class ArcFaceEmbedder(EmbedderBackend):
    name = "arcface"

    def __init__(self, model_name: str = "buffalo_l", device: str = "auto"):
        super().__init__()
        self.model_name = model_name
        self._app, self.ctx_id = _load_face_analysis(model_name, device)
        self._rec_model = getattr(self._app, "models", {}).get("recognition")
        if self._rec_model is None or not hasattr(self._rec_model, "get_feat"):
            raise InvalidDetectorOrEmbedder(f"InsightFace pack '{model_name}' has no recognition model")

    @property
    def identifier(self) -> str:
        return f"arcface:{self.model_name}"

    def align_crop(self, image: np.ndarray, row: np.ndarray) -> np.ndarray:
        self._require_open()
        r = np.asarray(row, dtype=np.float32).reshape(-1)
        if r.shape[0] != ROW_WIDTH:
            raise InvalidRegion(f"Expected a {ROW_WIDTH}-column detection row, got {r.shape[0]}")
        kps = r[4:14].reshape(5, 2)
        size = int(getattr(self._rec_model, "input_size", (112, 112))[0])
        return face_align.norm_crop(image, landmark=kps, image_size=size)

    def extract_feature(self, aligned: np.ndarray) -> np.ndarray:
        self._require_open()
        try:
            feats = self._rec_model.get_feat([aligned])
        except Exception as e:
            raise InvalidDetectorOrEmbedder(f"ArcFace feature extraction failed: {e}") from e
        return l2_normalize(np.asarray(feats, dtype=np.float32).reshape(-1))

    def similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        return cosine_similarity(a, b)

    def _release(self) -> None:
        self._rec_model = None
        self._app = None
