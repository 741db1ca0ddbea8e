from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

# 图库样本支持的图像格式（与 cv2.imread 可解码的格式保持一致）
ACCEPTED_FORMATS = frozenset(
    {
        "bmp",
        "dib",
        "jpeg",
        "jpg",
        "jpe",
        "jp2",
        "png",
        "webp",
        "avif",
        "pbm",
        "pgm",
        "ppm",
        "pxm",
        "pnm",
        "pfm",
        "sr",
        "ras",
        "tiff",
        "tif",
        "exr",
        "hdr",
        "pic",
    }
)

DEFAULT_DETECTOR_MODEL = "models/face_detection_yunet_2023mar.onnx"
DEFAULT_RECOGNIZER_MODEL = "models/face_recognition_sface_2021dec.onnx"
DEFAULT_INSIGHTFACE_MODEL = "buffalo_l"

# SFace FR_COSINE 尺度上的经验阈值；更换 embedder 后需要重新标定
SFACE_COSINE_THRESHOLD = 0.363

GALLERY_CACHE_FILENAME = "gallery_embeddings.pkl"

# 常见系统字体候选（macOS/Windows/Linux），按需扩展
FONT_LIST = [
    # macOS
    "/System/Library/Fonts/STHeiti Medium.ttc",
    "/System/Library/Fonts/STHeiti Light.ttc",
    "/Library/Fonts/Arial Unicode.ttf",
    # Windows
    "C:\\Windows\\Fonts\\msyh.ttc",
    "C:\\Windows\\Fonts\\arialuni.ttf",
    "C:\\Windows\\Fonts\\arial.ttf",
    # Linux：CJK 字体放在前面，否则会优先命中 DejaVuSans
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/wqy/wqy-zenhei.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
]


class MatchPolicy(str, Enum):
    # Every detected region receives its own best label; a subject may label several regions.
    PER_REGION = "per_region"
    # Each subject labels at most one region: the one with the highest averaged score.
    UNIQUE_SUBJECT = "unique_subject"


@dataclass
class RecognizerConfig:
    """Explicit configuration for one recognition session.

    Model locations and the decision threshold are passed in here rather than read
    from the environment, so several sessions with different models can coexist.
    """

    backend: str = "opencv"
    detector_model_path: str = DEFAULT_DETECTOR_MODEL
    recognizer_model_path: str = DEFAULT_RECOGNIZER_MODEL
    # InsightFace model pack name (only used by backend="insightface")
    insightface_model: str = DEFAULT_INSIGHTFACE_MODEL
    device: str = "auto"

    threshold: float = SFACE_COSINE_THRESHOLD
    match_policy: MatchPolicy = MatchPolicy.PER_REGION

    # Multi-scale detection: faces are reliably found between ~10px and ~window px.
    detection_window: int = 300
    scale_step: float = 0.2
    min_scale: float = 0.3
    # Optional IoU-NMS over the aggregated passes; None keeps every raw detection.
    dedupe_iou: Optional[float] = None

    # YuNet parameters
    score_threshold: float = 0.9
    nms_threshold: float = 0.3
    top_k: int = 5000

    gallery_cache_filename: str = GALLERY_CACHE_FILENAME
