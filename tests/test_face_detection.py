# tests/test_face_detection.py
import numpy as np
import pytest
from botocore.exceptions import ClientError

from kyc.domain.errors import ModelError
from kyc.infrastructure.detection.face_coverage import OvalFaceCoverageEstimator, OvalGuide, coverage_ratio
from kyc.infrastructure.detection.rekognition_face_detector import RekognitionFaceDetector, relbox_to_pixels


def test_oval_box():
    assert OvalGuide().box(100, 100) == pytest.approx((15.0, 3.0, 85.0, 83.0))


def test_coverage_ratio():
    oval = (15.0, 3.0, 85.0, 83.0)
    assert coverage_ratio(oval, oval) == 1.0
    assert coverage_ratio((15.0, 3.0, 50.0, 83.0), oval) == pytest.approx(0.5)
    assert coverage_ratio((0.0, 0.0, 10.0, 2.0), oval) == 0.0


class _Detector:
    def __init__(self, bbox):
        self.bbox = bbox

    def detect(self, img):
        return {"bbox": self.bbox} if self.bbox else None


def test_estimator_uses_detected_box():
    img = np.zeros((100, 100, 3), dtype=np.uint8)
    assert OvalFaceCoverageEstimator(_Detector((15, 3, 50, 83))).estimate(img) == pytest.approx(0.5)
    assert OvalFaceCoverageEstimator(_Detector(None)).estimate(img) == 0.0


def test_relbox_to_pixels_clamps():
    assert relbox_to_pixels({"Left": 0.1, "Top": 0.2, "Width": 0.5, "Height": 0.5}, 100, 200) == (10, 40, 60, 140)
    assert relbox_to_pixels({"Left": -0.1, "Top": 0.9, "Width": 1.5, "Height": 0.5}, 100, 100) == (0, 90, 100, 100)


class _Rekognition:
    def __init__(self, faces=None, error=None):
        self.faces = faces or []
        self.error = error

    def detect_faces(self, Image, Attributes):
        if self.error:
            raise self.error
        return {"FaceDetails": self.faces}


def _face(left, top, size, confidence=99.0):
    return {"BoundingBox": {"Left": left, "Top": top, "Width": size, "Height": size}, "Confidence": confidence}


def test_rekognition_picks_largest_confident_face():
    client = _Rekognition([_face(0.1, 0.1, 0.2), _face(0.5, 0.5, 0.4), _face(0.0, 0.0, 0.9, confidence=10.0)])
    det = RekognitionFaceDetector(client=client).detect(np.zeros((100, 100, 3), dtype=np.uint8))
    assert det["bbox"] == (50, 50, 90, 90)
    assert det["area_rel"] == pytest.approx(0.16)


def test_rekognition_ignores_tiny_faces():
    det = RekognitionFaceDetector(client=_Rekognition([_face(0.1, 0.1, 0.05)])).detect(
        np.zeros((100, 100, 3), dtype=np.uint8))
    assert det is None


def test_rekognition_errors_become_model_errors():
    err = ClientError({"Error": {"Code": "ThrottlingException", "Message": "slow"}}, "DetectFaces")
    with pytest.raises(ModelError):
        RekognitionFaceDetector(client=_Rekognition(error=err)).detect(np.zeros((10, 10, 3), dtype=np.uint8))
