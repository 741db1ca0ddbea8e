from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Tuple

import sys

import cv2
import numpy as np
import pytest

# Ensure repo root is on sys.path so tests can import `facegallery` and `face_recognizer`
# without an editable install.
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from facegallery.exceptions import InvalidDetectorOrEmbedder
from facegallery.face.backends.base import DetectorBackend, EmbedderBackend
from facegallery.utils.math import cosine_similarity

BLUE = (255, 0, 0)
GREEN = (0, 255, 0)
RED = (0, 0, 255)


class _DummyDetector(DetectorBackend):
    """Treats every bright connected blob as one face.

    Works on whatever (possibly downscaled) image it is given, so multi-scale
    passes see the blobs shrink exactly like real faces would.
    """

    name = "dummy-detector"

    def __init__(self, score: float = 0.95):
        super().__init__()
        self.score = float(score)
        self.calls = []
        self._size: Optional[Tuple[int, int]] = None

    def configure(self, width: int, height: int) -> None:
        self._require_open()
        self._size = (int(width), int(height))

    def detect(self, image: np.ndarray) -> np.ndarray:
        self._require_open()
        h, w = image.shape[:2]
        if (w, h) != self._size:
            raise ValueError(f"Detector configured for {self._size}, got image {w}x{h}")
        self.calls.append((w, h))

        gray = image.max(axis=2) if image.ndim == 3 else image
        mask = (gray > 127).astype(np.uint8)
        num, _, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)

        rows = []
        for i in range(1, num):
            x, y, bw, bh = [float(v) for v in stats[i, :4]]
            rows.append(
                [
                    x, y, bw, bh,
                    x + 0.3 * bw, y + 0.4 * bh,
                    x + 0.7 * bw, y + 0.4 * bh,
                    x + 0.5 * bw, y + 0.6 * bh,
                    x + 0.35 * bw, y + 0.8 * bh,
                    x + 0.65 * bw, y + 0.8 * bh,
                    self.score,
                ]
            )
        if not rows:
            return None
        return np.asarray(rows, dtype=np.float32)

    def _release(self) -> None:
        self._size = None


class _DummyEmbedder(EmbedderBackend):
    """Embedding = mean BGR colour of the face box, compared by cosine.

    `extract_feature` deliberately returns one shared buffer, like native
    embedders that reuse their output blob.
    """

    name = "dummy-embedder"

    def __init__(self, fail_on_color: Optional[Sequence[int]] = None):
        super().__init__()
        self.fail_on_color = None if fail_on_color is None else np.asarray(fail_on_color, dtype=np.float32)
        self.feature_calls = 0
        self._buffer = np.zeros(3, dtype=np.float32)

    @property
    def identifier(self) -> str:
        return "dummy:mean-bgr"

    def align_crop(self, image: np.ndarray, row: np.ndarray) -> np.ndarray:
        self._require_open()
        x, y, w, h = [int(v) for v in np.asarray(row).reshape(-1)[:4]]
        x0, y0 = max(0, x), max(0, y)
        return image[y0 : y + h, x0 : x + w]

    def extract_feature(self, aligned: np.ndarray) -> np.ndarray:
        self._require_open()
        self.feature_calls += 1
        mean = aligned.reshape(-1, aligned.shape[-1]).astype(np.float32).mean(axis=0)
        if self.fail_on_color is not None and np.allclose(mean, self.fail_on_color, atol=1.0):
            raise InvalidDetectorOrEmbedder("dummy embedder failure")
        self._buffer[:] = mean
        return self._buffer

    def similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        self._require_open()
        return cosine_similarity(a, b)

    def _release(self) -> None:
        self._buffer = None


def draw_faces(size: Tuple[int, int], squares: Sequence[Tuple[int, int, int, Tuple[int, int, int]]]) -> np.ndarray:
    """Black BGR image of (width, height) with solid squares (x, y, side, bgr)."""
    w, h = size
    img = np.zeros((h, w, 3), dtype=np.uint8)
    for x, y, side, color in squares:
        img[y : y + side, x : x + side] = color
    return img


@pytest.fixture
def dummy_detector():
    det = _DummyDetector()
    yield det
    det.close()


@pytest.fixture
def dummy_embedder():
    emb = _DummyEmbedder()
    yield emb
    emb.close()


@pytest.fixture
def make_embedder():
    created = []

    def _make(**kwargs):
        emb = _DummyEmbedder(**kwargs)
        created.append(emb)
        return emb

    yield _make
    for emb in created:
        emb.close()


@pytest.fixture
def face_image():
    return draw_faces


@pytest.fixture
def write_image():
    def _write(path: Path, image: np.ndarray) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        assert cv2.imwrite(str(path), image), f"failed to write {path}"
        return path

    return _write


@pytest.fixture
def known_faces(tmp_path: Path, write_image):
    """alice (blue, 2 samples, one with two faces) and bob (green, 1 sample)."""
    root = tmp_path / "known-faces"
    write_image(root / "alice" / "1.png", draw_faces((120, 120), [(30, 30, 60, BLUE)]))
    write_image(root / "alice" / "2.png", draw_faces((240, 120), [(10, 20, 60, BLUE), (150, 20, 60, BLUE)]))
    write_image(root / "bob" / "1.png", draw_faces((120, 120), [(20, 20, 70, GREEN)]))
    return root
