from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from facegallery.config import DEFAULT_DETECTOR_MODEL, DEFAULT_RECOGNIZER_MODEL, RecognizerConfig
from facegallery.exceptions import InvalidDetectorOrEmbedder
from facegallery.face.backends import create_backends
from facegallery.face.backends.opencv import SFaceEmbedder, YuNetDetector
from facegallery.face.recognizer import FaceRecognizer

repo_root = Path(__file__).resolve().parents[1]
detector_model = repo_root / DEFAULT_DETECTOR_MODEL
recognizer_model = repo_root / DEFAULT_RECOGNIZER_MODEL

needs_models = pytest.mark.skipif(
    not (detector_model.is_file() and recognizer_model.is_file()),
    reason="OpenCV YuNet/SFace models not found under models/",
)


def test_missing_model_is_reported(tmp_path):
    with pytest.raises(InvalidDetectorOrEmbedder):
        YuNetDetector(str(tmp_path / "yunet.onnx"))
    with pytest.raises(InvalidDetectorOrEmbedder):
        SFaceEmbedder(str(tmp_path / "sface.onnx"))


@needs_models
def test_yunet_on_blank_image_finds_nothing():
    with YuNetDetector(str(detector_model)) as det:
        det.configure(320, 240)
        rows = det.detect(np.zeros((240, 320, 3), dtype=np.uint8))
    assert rows.shape == (0, 15)


@needs_models
def test_yunet_rejects_size_mismatch():
    with YuNetDetector(str(detector_model)) as det:
        det.configure(320, 240)
        with pytest.raises(ValueError):
            det.detect(np.zeros((100, 100, 3), dtype=np.uint8))


@needs_models
def test_sface_self_similarity():
    row = np.array([[20, 20, 72, 72, 40, 50, 72, 50, 56, 66, 44, 80, 68, 80, 0.99]], dtype=np.float32)
    img = np.random.default_rng(0).integers(0, 255, size=(112, 112, 3), dtype=np.uint8)

    with SFaceEmbedder(str(recognizer_model)) as emb:
        feature = np.array(emb.extract_feature(emb.align_crop(img, row)), copy=True)
        assert emb.similarity(feature, feature) == pytest.approx(1.0, abs=1e-4)
        assert emb.identifier == f"sface:{recognizer_model.name}"


@needs_models
def test_session_with_real_models_on_blank_image():
    config = RecognizerConfig(detector_model_path=str(detector_model), recognizer_model_path=str(recognizer_model))
    with FaceRecognizer(config) as rec:
        assert rec.detect_faces(np.zeros((640, 480, 3), dtype=np.uint8)) == []


@needs_models
def test_create_backends_returns_open_pair():
    config = RecognizerConfig(detector_model_path=str(detector_model), recognizer_model_path=str(recognizer_model))
    det, emb = create_backends(config)
    try:
        assert not det.closed and not emb.closed
    finally:
        det.close()
        emb.close()
    assert det.closed and emb.closed
