# kyc/infrastructure/detection/face_coverage.py
from dataclasses import dataclass
from typing import Optional, Tuple
import numpy as np

from ...domain.interfaces import FaceDetector

Box = Tuple[float, float, float, float]  # (x1, y1, x2, y2)


@dataclass(frozen=True)
class OvalGuide:
    """Caja del óvalo guía relativa al frame (0..1)."""
    width_rel: float = 0.70
    height_rel: float = 0.80
    top_rel: float = 0.03

    def box(self, width: int, height: int) -> Box:
        w = self.width_rel * width
        h = self.height_rel * height
        x1 = (width - w) / 2.0
        y1 = self.top_rel * height
        return (x1, y1, x1 + w, min(float(height), y1 + h))


def _area(b: Box) -> float:
    return max(0.0, b[2] - b[0]) * max(0.0, b[3] - b[1])


def coverage_ratio(face: Box, oval: Box) -> float:
    """area(rostro ∩ óvalo) / area(óvalo)."""
    inter = (max(face[0], oval[0]), max(face[1], oval[1]), min(face[2], oval[2]), min(face[3], oval[3]))
    oval_area = _area(oval)
    if oval_area <= 0:
        return 0.0
    return max(0.0, min(1.0, _area(inter) / oval_area))


class OvalFaceCoverageEstimator:
    def __init__(self, detector: FaceDetector, guide: Optional[OvalGuide] = None):
        self.detector = detector
        self.guide = guide or OvalGuide()

    def estimate(self, img_bgr: np.ndarray) -> float:
        h, w = img_bgr.shape[:2]
        det = self.detector.detect(img_bgr)
        if not det or not det.get("bbox"):
            return 0.0
        return coverage_ratio(tuple(float(v) for v in det["bbox"]), self.guide.box(w, h))
