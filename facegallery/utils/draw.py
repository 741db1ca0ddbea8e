from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Sequence, Tuple

import warnings

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from facegallery.config import FONT_LIST

MATCH_COLOR = (0, 0, 255)  # BGR red
UNMATCHED_COLOR = (160, 160, 160)

_WARNED_NO_UNICODE_FONT = False


@lru_cache(maxsize=128)
def _load_font(font_path: str, font_size: int) -> ImageFont.FreeTypeFont:
    return ImageFont.truetype(font_path, font_size)


@lru_cache(maxsize=64)
def _get_best_font(font_size: int) -> ImageFont.ImageFont:
    """First loadable entry of FONT_LIST at this size, else PIL's default font."""
    for p in FONT_LIST:
        try:
            return _load_font(p, int(font_size))
        except OSError:
            continue
    return ImageFont.load_default()


def _warn_once_if_no_font(texts: Iterable[str]) -> None:
    global _WARNED_NO_UNICODE_FONT
    if _WARNED_NO_UNICODE_FONT:
        return
    if not any(any(ord(ch) > 127 for ch in t) for t in texts):
        return
    for p in FONT_LIST:
        try:
            _load_font(p, 16)
            return
        except OSError:
            continue
    _WARNED_NO_UNICODE_FONT = True
    warnings.warn(
        "No font in FONT_LIST could be loaded; non-ASCII subject names may render as boxes. "
        "Install fonts-noto-cjk or add a font path to facegallery/config.py FONT_LIST.",
        RuntimeWarning,
    )


def draw_texts(
    img: np.ndarray,
    items: Sequence[Tuple[str, Tuple[int, int], int, Tuple[int, int, int]]],
) -> None:
    """Draw unicode texts onto a BGR image in place with a single PIL conversion.

    Args:
        img: OpenCV BGR image, modified in-place.
        items: sequence of (text, (x, y), font_size_px, bgr_color)
    """
    if img is None or len(items) == 0:
        return

    _warn_once_if_no_font([t for (t, _, _, _) in items])

    try:
        pil_img = Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
    except cv2.error:
        # Not a 3-channel image: fall back to OpenCV text (unicode may be lost)
        for text, org, font_size, bgr in items:
            font_scale = max(0.3, int(font_size) / 24.0)
            cv2.putText(img, str(text), tuple(org), cv2.FONT_HERSHEY_SIMPLEX, font_scale, bgr, 1, cv2.LINE_AA)
        return

    draw = ImageDraw.Draw(pil_img)
    for text, org, font_size, bgr in items:
        font = _get_best_font(int(font_size))
        # PIL uses RGB
        draw.text(tuple(org), str(text), font=font, fill=(int(bgr[2]), int(bgr[1]), int(bgr[0])))
    img[:] = cv2.cvtColor(np.array(pil_img), cv2.COLOR_RGB2BGR)


@lru_cache(maxsize=4096)
def measure_text(text: str, font_size: int = 14) -> Tuple[int, int]:
    """Pixel (width, height) of `text` rendered with the chosen font."""
    font = _get_best_font(int(font_size))
    dummy = ImageDraw.Draw(Image.new("RGB", (10, 10)))
    x1, y1, x2, y2 = dummy.textbbox((0, 0), str(text), font=font)
    return int(x2 - x1), int(y2 - y1)


def draw_matches(image: np.ndarray, results: Sequence) -> np.ndarray:
    """Return a copy of `image` with one box (and a `label (score)` tag) per `MatchResult`.

    Stroke width and font size scale with the image's shorter side.
    """
    out = np.ascontiguousarray(image).copy()
    if out.ndim == 2:
        out = cv2.cvtColor(out, cv2.COLOR_GRAY2BGR)

    h, w = out.shape[:2]
    stroke = max(1, min(h, w) // 300)
    font_size = max(12, stroke * 10)

    texts = []
    for result in results:
        x, y, bw, bh = result.region.bbox
        color = MATCH_COLOR if result.matched else UNMATCHED_COLOR
        cv2.rectangle(out, (x, y), (x + bw, y + bh), color, stroke)
        if not result.matched:
            continue
        label = f"{result.label} ({result.score:.3f})"
        _, text_h = measure_text(label, font_size)
        texts.append((label, (x, max(0, y - text_h - stroke * 2)), font_size, color))

    draw_texts(out, texts)
    return out
