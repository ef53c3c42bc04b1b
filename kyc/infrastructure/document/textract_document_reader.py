# kyc/infrastructure/document/textract_document_reader.py
import os
import logging
from typing import Dict, List, Optional

import boto3
import cv2
import numpy as np
from botocore.exceptions import BotoCoreError, ClientError

from ...application.document_policy import canonical_fields
from ...domain.errors import ReadError
from ...domain.interfaces import FaceDetector
from ...domain.value_objects import DocumentScan
from ..detection.rekognition_face_detector import to_jpg_bytes
from .id_text_fields import parse_id_lines

logger = logging.getLogger("kyc.verify")

PROFILE_SIZE = (224, 224)
PROFILE_EXPAND = 0.03


def crop_profile_photo(img_bgr: np.ndarray, bbox, expand: float = PROFILE_EXPAND) -> Optional[np.ndarray]:
    """Recorta el rostro del documento ampliando la caja un 3% y lo lleva a 224x224."""
    h, w = img_bgr.shape[:2]
    x1, y1, x2, y2 = map(float, bbox)
    dx, dy = (x2 - x1) * expand, (y2 - y1) * expand
    X1, Y1 = max(0, int(x1 - dx)), max(0, int(y1 - dy))
    X2, Y2 = min(w, int(round(x2 + dx))), min(h, int(round(y2 + dy)))
    if X2 <= X1 or Y2 <= Y1:
        return None
    crop = img_bgr[Y1:Y2, X1:X2]
    return cv2.resize(crop, PROFILE_SIZE, interpolation=cv2.INTER_AREA)


def _analyze_id_fields(resp: dict) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for doc in resp.get("IdentityDocuments", []) or []:
        for f in doc.get("IdentityDocumentFields", []) or []:
            key = ((f.get("Type") or {}).get("Text") or "").strip()
            vd = f.get("ValueDetection") or {}
            normalized = (vd.get("NormalizedValue") or {}).get("Value")
            value = (normalized.split("T")[0] if normalized else (vd.get("Text") or "")).strip()
            if key and value:
                out.setdefault(key, value)
    return out


def _lines(resp: dict) -> List[str]:
    return [b.get("Text", "") for b in resp.get("Blocks", []) or [] if b.get("BlockType") == "LINE"]


class TextractDocumentReader:
    """
    DocumentReader con AWS Textract:
      1) AnalyzeID para campos estructurados,
      2) DetectDocumentText + parser de líneas para completar lo que falte,
      3) foto del titular vía FaceDetector.
    """
    def __init__(self, face_detector: FaceDetector, region: Optional[str] = None, client=None):
        self.face_detector = face_detector
        self.client = client or boto3.client("textract", region_name=region or os.getenv("AWS_REGION", "us-east-1"))

    def read(self, img_bgr: np.ndarray) -> DocumentScan:
        if img_bgr is None or getattr(img_bgr, "ndim", 0) != 3:
            raise ReadError("Imagen de documento inválida")
        jpg = to_jpg_bytes(img_bgr)
        try:
            fields = canonical_fields(_analyze_id_fields(self.client.analyze_id(DocumentPages=[{"Bytes": jpg}])))
            lines = _lines(self.client.detect_document_text(Document={"Bytes": jpg}))
        except (ClientError, BotoCoreError) as e:
            raise ReadError(f"Textract: {e}") from e

        if not fields and not lines:
            raise ReadError("No se encontró texto en el documento")
        for key, value in parse_id_lines(lines).items():
            fields.setdefault(key, value)

        photo = None
        det = self.face_detector.detect(img_bgr)
        if det and det.get("bbox"):
            photo = crop_profile_photo(img_bgr, det["bbox"])

        logger.info({
            "event": "document_read",
            "fields": sorted(fields.keys()),
            "lines": len(lines),
            "has_photo": photo is not None,
        })
        return DocumentScan(fields=fields, photo=photo)
