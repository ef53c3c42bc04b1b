# kyc/infrastructure/detection/rekognition_face_detector.py
import os
import io
import cv2
import boto3
import logging
from typing import Optional, Dict, List, Tuple
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image

from ...domain.errors import ModelError

logger = logging.getLogger("kyc.verify")


def to_jpg_bytes(img_bgr, quality: int = 90) -> bytes:
    rgb = cv2.cvtColor(img_bgr, cv2.COLOR_BGR2RGB)
    buf = io.BytesIO()
    Image.fromarray(rgb).save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def relbox_to_pixels(rel_box: Dict[str, float], width: int, height: int) -> Tuple[int, int, int, int]:
    x1 = int(round(rel_box["Left"] * width))
    y1 = int(round(rel_box["Top"] * height))
    x2 = int(round((rel_box["Left"] + rel_box["Width"]) * width))
    y2 = int(round((rel_box["Top"] + rel_box["Height"]) * height))
    x1 = max(0, min(x1, width - 1)); y1 = max(0, min(y1, height - 1))
    x2 = max(0, min(x2, width)); y2 = max(0, min(y2, height))
    if x2 <= x1: x2 = min(width, x1 + 1)
    if y2 <= y1: y2 = min(height, y1 + 1)
    return (x1, y1, x2, y2)


def _landmarks_to_pixels(landmarks: List[Dict[str, float]], width: int, height: int) -> List[Tuple[int, int]]:
    pts = []
    for lm in landmarks or []:
        x = int(round(lm["X"] * width)); y = int(round(lm["Y"] * height))
        pts.append((max(0, min(x, width - 1)), max(0, min(y, height - 1))))
    return pts


class RekognitionFaceDetector:
    """
    FaceDetector con AWS Rekognition DetectFaces (elige el rostro más grande).
    Retorna {"bbox": (x1,y1,x2,y2), "landmarks": [...] | None, "confidence", "area_rel"}
    o None si no hay rostro válido. Errores de AWS -> ModelError.
    """
    def __init__(
        self,
        region: Optional[str] = None,
        min_confidence: float = 70.0,
        min_face_rel_size: float = 0.015,  # rostros pequeños en documentos
        client=None,
    ):
        self.client = client or boto3.client("rekognition", region_name=region or os.getenv("AWS_REGION", "us-east-1"))
        self.min_confidence = float(min_confidence)
        self.min_face_rel_size = float(min_face_rel_size)

    def detect(self, img_bgr) -> Optional[dict]:
        h, w = img_bgr.shape[:2]
        try:
            resp = self.client.detect_faces(Image={"Bytes": to_jpg_bytes(img_bgr)}, Attributes=["DEFAULT"])
        except (ClientError, BotoCoreError) as e:
            raise ModelError(f"Rekognition DetectFaces: {e}") from e
        faces = resp.get("FaceDetails", []) or []

        candidates = [
            f for f in faces
            if f.get("BoundingBox")
            and float(f.get("Confidence", 0.0)) >= self.min_confidence
            and f["BoundingBox"]["Width"] * f["BoundingBox"]["Height"] >= self.min_face_rel_size
        ]
        if not candidates:
            logger.info({"event": "rek_face_detect", "faces_total": len(faces), "candidates": 0})
            return None

        best = max(candidates, key=lambda f: f["BoundingBox"]["Width"] * f["BoundingBox"]["Height"])
        bbox = relbox_to_pixels(best["BoundingBox"], w, h)
        area_rel = float(best["BoundingBox"]["Width"] * best["BoundingBox"]["Height"])
        confidence = float(best.get("Confidence", 0.0))
        landmarks = _landmarks_to_pixels(best.get("Landmarks"), w, h)

        logger.info({
            "event": "rek_face_detect",
            "faces_total": len(faces),
            "candidates": len(candidates),
            "chosen_area_pct": round(100.0 * area_rel, 2),
            "confidence": round(confidence, 2),
            "bbox_pixels": bbox,
        })
        return {
            "bbox": bbox,
            "landmarks": landmarks or None,
            "confidence": confidence,
            "area_rel": area_rel,
        }
