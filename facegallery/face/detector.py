from __future__ import annotations

from typing import List, Optional

import numpy as np

from facegallery.exceptions import InvalidDetectorOrEmbedder
from facegallery.face.backends.base import DetectorBackend
from facegallery.face.region import Region, as_detections, empty_detections, regions_from_detections, rescale_detections
from facegallery.utils.image import ensure_image, resize_image
from facegallery.utils.log import get_logger
from facegallery.utils.math import bbox_iou_xyxy

logger = get_logger(__name__)


def dedupe_detections(rows: np.ndarray, iou_thresh: float) -> np.ndarray:
    """Greedy IoU-NMS over raw detections, highest detection score first.

    A box is dropped when its IoU with an already kept box is >= `iou_thresh`.
    Kept rows are returned in descending score order.
    """
    arr = as_detections(rows)
    if arr.shape[0] <= 1:
        return arr

    order = np.argsort(-arr[:, 14], kind="stable")
    keep: List[int] = []
    keep_boxes: List[tuple] = []
    thr = float(iou_thresh)

    for idx in order:
        x, y, w, h = [float(v) for v in arr[idx, :4]]
        box = (x, y, x + w, y + h)
        if any(bbox_iou_xyxy(box, kb) >= thr for kb in keep_boxes):
            continue
        keep.append(int(idx))
        keep_boxes.append(box)

    return arr[keep]


class MultiScaleDetector:
    """Runs a fixed-input-size detector over progressively downscaled copies of an image.

    The wrapped detector only finds faces whose footprint is roughly 10..`window`
    pixels. Pass 0 runs at full resolution; every following pass resizes the
    *original* image by a smaller factor, detects, and maps coordinates back by
    dividing by that factor. All passes are concatenated row-wise.

    The same physical face is usually found at several scales. Those overlapping
    rows are kept unless `dedupe_iou` is set, in which case an IoU-NMS post-pass
    removes them (this changes the number of returned regions).
    """

    def __init__(
        self,
        detector: DetectorBackend,
        window: int = 300,
        scale_step: float = 0.2,
        min_scale: float = 0.3,
        dedupe_iou: Optional[float] = None,
    ):
        if detector is None:
            raise InvalidDetectorOrEmbedder("Face detector is None")
        if scale_step <= 0 or scale_step >= 1:
            raise ValueError("scale_step must be in (0, 1)")
        if min_scale <= 0 or min_scale >= 1:
            raise ValueError("min_scale must be in (0, 1)")
        if dedupe_iou is not None and not 0 < float(dedupe_iou) <= 1:
            raise ValueError("dedupe_iou must be in (0, 1]")
        self.detector = detector
        self.window = int(window)
        self.scale_step = float(scale_step)
        self.min_scale = float(min_scale)
        self.dedupe_iou = dedupe_iou

    def scales_for(self, width: int, height: int) -> List[float]:
        """Scale factors of every pass for an image of the given size."""
        scales = [1.0]
        scale = 1.0
        while int(width) > self.window and int(height) > self.window:
            scale = round(scale - self.scale_step, 6)
            if scale <= self.min_scale:
                break
            scales.append(scale)
        return scales

    def detect_rows(self, image: np.ndarray) -> np.ndarray:
        """Aggregated raw detections in original-image coordinates, shape (N, 15)."""
        image = ensure_image(image)
        if getattr(self.detector, "closed", False):
            raise InvalidDetectorOrEmbedder("Face detector has already been released")

        h, w = image.shape[:2]
        batches: List[np.ndarray] = []

        for scale in self.scales_for(w, h):
            current = image if scale == 1.0 else resize_image(image, scale=scale)
            ch, cw = current.shape[:2]
            self.detector.configure(cw, ch)
            rows = as_detections(self.detector.detect(current))
            if scale != 1.0:
                rows = rescale_detections(rows, scale)
            logger.debug(f"pass scale={scale:.2f} size={cw}x{ch}: {rows.shape[0]} faces")
            if rows.shape[0]:
                batches.append(rows)

        aggregated = np.vstack(batches) if batches else empty_detections()

        if self.dedupe_iou is not None and aggregated.shape[0] > 1:
            before = aggregated.shape[0]
            aggregated = dedupe_detections(aggregated, self.dedupe_iou)
            logger.debug(f"multi-scale dedupe: {before} -> {aggregated.shape[0]}")

        return aggregated

    def detect(self, image: np.ndarray) -> List[Region]:
        return regions_from_detections(self.detect_rows(image))
