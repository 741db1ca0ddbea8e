"""Image decode/resize helpers.

Every helper rejects empty or zero-sized results with `InvalidImage` instead of
silently handing an empty array to the detector.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

import cv2
import numpy as np

from facegallery.config import ACCEPTED_FORMATS
from facegallery.exceptions import InvalidImage


def ensure_image(image: Optional[np.ndarray], what: str = "image") -> np.ndarray:
    if image is None:
        raise InvalidImage(f"{what} is None")
    arr = np.asarray(image)
    if arr.ndim not in (2, 3) or arr.size == 0 or arr.shape[0] <= 0 or arr.shape[1] <= 0:
        raise InvalidImage(f"{what} is empty or has invalid shape {arr.shape}")
    return arr


def is_supported_image(path: Union[str, Path], formats: Iterable[str] = ACCEPTED_FORMATS) -> bool:
    """True when the file extension is in `formats` (case-insensitive)."""
    return Path(path).suffix.lower().lstrip(".") in formats


def read_image(path: Union[str, Path]) -> np.ndarray:
    """Decode an image file into a BGR array."""
    fp = Path(path)
    if not fp.is_file():
        raise InvalidImage(f"Image file not found: {fp}")
    try:
        image = cv2.imread(str(fp), cv2.IMREAD_COLOR)
    except cv2.error as e:
        raise InvalidImage(f"Failed to decode {fp}: {e}") from e
    return ensure_image(image, what=f"decoded image {fp.name}")


def decode_image(data: bytes) -> np.ndarray:
    """Decode encoded image bytes (e.g. an uploaded file) into a BGR array."""
    if not data:
        raise InvalidImage("Image byte buffer is empty")
    buf = np.frombuffer(data, dtype=np.uint8)
    try:
        image = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    except cv2.error as e:
        raise InvalidImage(f"Failed to decode image bytes: {e}") from e
    return ensure_image(image, what="decoded image bytes")


def resize_image(
    image: np.ndarray,
    scale: Optional[float] = None,
    size: Optional[Tuple[int, int]] = None,
) -> np.ndarray:
    """Resize by a scale factor or to an explicit (width, height).

    Returns a copy when the requested size equals the source size.
    """
    src = ensure_image(image)
    h, w = src.shape[:2]

    if (scale is None) == (size is None):
        raise ValueError("Pass exactly one of scale or size")

    if scale is not None:
        if scale <= 0:
            raise ValueError("Scale must be a positive value")
        if scale == 1.0:
            return src.copy()
        new_w = int(round(w * float(scale)))
        new_h = int(round(h * float(scale)))
    else:
        new_w, new_h = int(size[0]), int(size[1])
        if new_w <= 0 or new_h <= 0:
            raise ValueError("New width and height must be positive")

    if new_w == w and new_h == h:
        return src.copy()
    if new_w <= 0 or new_h <= 0:
        raise InvalidImage(f"Resizing {w}x{h} by {scale} yields an empty image")

    interpolation = cv2.INTER_AREA if new_w < w else cv2.INTER_LINEAR
    resized = cv2.resize(src, (new_w, new_h), interpolation=interpolation)
    return ensure_image(resized, what="resized image")
