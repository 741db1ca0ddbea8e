from __future__ import annotations

import numpy as np
import pytest

from facegallery.exceptions import InvalidDetectorOrEmbedder, InvalidImage, InvalidRegion
from facegallery.face.backends.base import DetectorBackend
from facegallery.face.detector import MultiScaleDetector, dedupe_detections
from conftest import BLUE, GREEN


class _GarbageDetector(DetectorBackend):
    def configure(self, width, height):
        pass

    def detect(self, image):
        return np.zeros((2, 7), dtype=np.float32)

    def _release(self):
        pass


@pytest.mark.parametrize(
    "size, expected",
    [
        ((300, 300), [1.0]),
        ((1000, 300), [1.0]),
        ((300, 1000), [1.0]),
        ((301, 301), [1.0, 0.8, 0.6, 0.4]),
        ((1000, 800), [1.0, 0.8, 0.6, 0.4]),
    ],
)
def test_scale_schedule(dummy_detector, size, expected):
    ms = MultiScaleDetector(dummy_detector)
    assert ms.scales_for(*size) == pytest.approx(expected)


def test_small_image_is_a_single_pass(dummy_detector, face_image):
    img = face_image((200, 150), [(20, 20, 50, BLUE), (110, 40, 60, GREEN)])
    ms = MultiScaleDetector(dummy_detector)

    rows = ms.detect_rows(img)

    assert dummy_detector.calls == [(200, 150)]
    assert rows.shape == (2, 15)
    assert rows[:, :4].tolist() == [[20, 20, 50, 50], [110, 40, 60, 60]]


def test_each_pass_resizes_the_original(dummy_detector, face_image):
    img = face_image((1000, 800), [(100, 100, 200, BLUE)])
    ms = MultiScaleDetector(dummy_detector)

    rows = ms.detect_rows(img)

    assert dummy_detector.calls == [(1000, 800), (800, 640), (600, 480), (400, 320)]
    # one face, found once per pass
    assert rows.shape == (4, 15)


def test_coordinates_are_mapped_back_to_original(dummy_detector, face_image):
    img = face_image((1000, 800), [(100, 100, 200, BLUE)])
    rows = MultiScaleDetector(dummy_detector).detect_rows(img)

    for row in rows:
        assert np.all(np.abs(row[:4] - np.array([100, 100, 200, 200])) <= 1)
        # right eye landmark sits at (x + 0.3w, y + 0.4h) in every pass
        assert abs(row[4] - 160) <= 1
        assert abs(row[5] - 180) <= 1
        # detection score is never rescaled
        assert row[14] == pytest.approx(0.95)


def test_same_face_from_several_passes_is_kept_by_default(dummy_detector, face_image):
    img = face_image((1000, 800), [(100, 100, 200, BLUE)])
    assert len(MultiScaleDetector(dummy_detector).detect(img)) == 4


def test_optional_dedupe_collapses_overlapping_passes(dummy_detector, face_image):
    img = face_image((1000, 800), [(100, 100, 200, BLUE), (600, 300, 150, GREEN)])
    regions = MultiScaleDetector(dummy_detector, dedupe_iou=0.5).detect(img)
    assert sorted(r.bbox[:2] for r in regions) == [(100, 100), (600, 300)]


def test_dedupe_keeps_highest_score_first():
    rows = np.zeros((3, 15), dtype=np.float32)
    rows[0, :4] = [0, 0, 10, 10]
    rows[0, 14] = 0.7
    rows[1, :4] = [1, 1, 10, 10]
    rows[1, 14] = 0.9
    rows[2, :4] = [50, 50, 10, 10]
    rows[2, 14] = 0.8

    kept = dedupe_detections(rows, 0.3)

    assert kept[:, 14].tolist() == pytest.approx([0.9, 0.8])


def test_no_faces_returns_empty_batch(dummy_detector, face_image):
    img = face_image((640, 480), [])
    rows = MultiScaleDetector(dummy_detector).detect_rows(img)
    assert rows.shape == (0, 15)


def test_grayscale_input_is_accepted(dummy_detector, face_image):
    img = face_image((200, 200), [(50, 50, 40, (255, 255, 255))])[:, :, 0]
    regions = MultiScaleDetector(dummy_detector).detect(img)
    assert [r.bbox for r in regions] == [(50, 50, 40, 40)]


@pytest.mark.parametrize("bad", [None, np.zeros((0, 0, 3), dtype=np.uint8), np.zeros((4,), dtype=np.uint8)])
def test_invalid_image(dummy_detector, bad):
    with pytest.raises(InvalidImage):
        MultiScaleDetector(dummy_detector).detect_rows(bad)


def test_malformed_detector_output():
    with pytest.raises(InvalidRegion):
        MultiScaleDetector(_GarbageDetector()).detect_rows(np.zeros((64, 64, 3), dtype=np.uint8))


def test_missing_or_released_detector(dummy_detector):
    with pytest.raises(InvalidDetectorOrEmbedder):
        MultiScaleDetector(None)

    ms = MultiScaleDetector(dummy_detector)
    dummy_detector.close()
    with pytest.raises(InvalidDetectorOrEmbedder):
        ms.detect_rows(np.zeros((64, 64, 3), dtype=np.uint8))


def test_invalid_parameters(dummy_detector):
    with pytest.raises(ValueError):
        MultiScaleDetector(dummy_detector, scale_step=0)
    with pytest.raises(ValueError):
        MultiScaleDetector(dummy_detector, dedupe_iou=1.5)
