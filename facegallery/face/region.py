from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from facegallery.exceptions import InvalidRegion

# One detection row: x, y, w, h, 5 x (landmark x, landmark y), score
ROW_WIDTH = 15
COORD_COLUMNS = 14
SCORE_COLUMN = 14

UNMATCHED_SCORE = -1.0

Point = Tuple[float, float]


def empty_detections() -> np.ndarray:
    return np.zeros((0, ROW_WIDTH), dtype=np.float32)


def as_detections(rows) -> np.ndarray:
    """Validate a raw detection batch and return it as an (N, 15) float32 array.

    `None` means "no faces" (this is what cv2.FaceDetectorYN returns); anything
    else that is not N x 15 is a malformed batch, never zero faces.
    """
    if rows is None:
        return empty_detections()
    arr = np.asarray(rows, dtype=np.float32)
    if arr.ndim == 1 and arr.shape[0] == ROW_WIDTH:
        arr = arr.reshape(1, ROW_WIDTH)
    if arr.ndim != 2 or arr.shape[1] != ROW_WIDTH:
        raise InvalidRegion(f"Expected detections of shape (N, {ROW_WIDTH}), got {arr.shape}")
    return arr


def rescale_detections(rows: np.ndarray, scale: float) -> np.ndarray:
    """Map detections found on an image resized by `scale` back to the original image.

    Every coordinate column (box and all five landmarks) is divided by `scale` and
    rounded to the nearest pixel. The detection score is left untouched.
    """
    if scale <= 0:
        raise ValueError("Scale must be a positive value")
    out = as_detections(rows).copy()
    if scale == 1.0 or out.shape[0] == 0:
        return out
    out[:, :COORD_COLUMNS] = np.round(out[:, :COORD_COLUMNS] / float(scale))
    return out


@dataclass(frozen=True)
class Region:
    """One detected face: box, five landmarks and detector confidence.

    Coordinates are in the pixel space of the image the region was detected on
    (after multi-scale rescaling, the original image).
    """

    x: float
    y: float
    width: float
    height: float
    landmarks: Tuple[Point, Point, Point, Point, Point]
    score: float

    @classmethod
    def from_detections(cls, rows: np.ndarray, index: int) -> "Region":
        arr = as_detections(rows)
        if not 0 <= int(index) < arr.shape[0]:
            raise InvalidRegion(f"Row index {index} out of range for {arr.shape[0]} detections")
        r = arr[int(index)]
        landmarks = tuple((float(r[4 + 2 * k]), float(r[5 + 2 * k])) for k in range(5))
        return cls(
            x=float(r[0]),
            y=float(r[1]),
            width=float(r[2]),
            height=float(r[3]),
            landmarks=landmarks,
            score=float(r[SCORE_COLUMN]),
        )

    def to_row(self) -> np.ndarray:
        """The (1, 15) float32 row expected by the embedder's align/crop primitive."""
        values = [self.x, self.y, self.width, self.height]
        for lx, ly in self.landmarks:
            values.extend((lx, ly))
        values.append(self.score)
        return np.asarray(values, dtype=np.float32).reshape(1, ROW_WIDTH)

    @property
    def bbox(self) -> Tuple[int, int, int, int]:
        return int(self.x), int(self.y), int(self.width), int(self.height)

    @property
    def xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.width, self.y + self.height

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)


def regions_from_detections(rows: np.ndarray) -> list:
    arr = as_detections(rows)
    return [Region.from_detections(arr, i) for i in range(arr.shape[0])]


@dataclass
class MatchResult:
    """Identity annotation for one region, produced by the matcher."""

    region: Region
    label: str = ""
    score: float = UNMATCHED_SCORE

    @property
    def matched(self) -> bool:
        return bool(self.label) and self.score != UNMATCHED_SCORE
