# kyc/domain/interfaces.py
from __future__ import annotations
from typing import Protocol, Optional, Tuple
import numpy as np

from .value_objects import Embedding, LivenessVerdict, DocumentScan

# ---- ML (puertos) ----

class ImageEmbeddingExtractor(Protocol):
    def extract(self, img_bgr: np.ndarray) -> Embedding:
        """Embedding facial de longitud fija. ExtractionError si la imagen no sirve."""
        ...

class AudioEmbeddingExtractor(Protocol):
    def extract(self, samples: np.ndarray) -> Embedding:
        """Embedding de voz (mono float32). ExtractionError si el snippet no sirve."""
        ...

class EmbeddingClassifier(Protocol):
    """Clasificador real/fake sobre un embedding (liveness, clon de imagen, clon de audio)."""
    def classify(self, embedding: Embedding) -> LivenessVerdict:
        ...

# ---- Visión / documentos (puertos) ----

class FaceDetector(Protocol):
    def detect(self, img_bgr: np.ndarray) -> Optional[dict]:
        """
        Debe devolver:
        {
          "bbox": (x1, y1, x2, y2),
          "landmarks": List[Tuple[float, float]]  # opcional
        }
        o None si no hay rostro.
        """
        ...

class FaceCoverageEstimator(Protocol):
    def estimate(self, img_bgr: np.ndarray) -> float:
        """Fracción 0..1 del óvalo guía cubierta por el rostro."""
        ...

class DocumentReader(Protocol):
    def read(self, img_bgr: np.ndarray) -> DocumentScan:
        """Campos del documento + foto del titular (si existe). ReadError si no se puede leer."""
        ...

# ---- Almacenamiento (puertos) ----

class SecretBackend(Protocol):
    """Bytes por (namespace, key) en un almacén privado / cifrado."""
    def get(self, namespace: str, key: str) -> Optional[bytes]:
        ...
    def put(self, namespace: str, key: str, data: bytes) -> None:
        ...
    def delete(self, namespace: str, key: str) -> None:
        ...
    def purge(self, namespace: str) -> None:
        """Borrado sin remanentes recuperables de todo el namespace."""
        ...

class ImageRepository(Protocol):
    """Obtiene UNA imagen desde una URI (ruta local, s3://, https://...)."""
    def fetch_image(self, uri: str) -> Optional[np.ndarray]:
        ...

# ---- Media (puertos) ----

class Recording(Protocol):
    @property
    def duration(self) -> float:
        ...
    def frame_at(self, seconds: float) -> Optional[np.ndarray]:
        """Frame BGR más cercano a `seconds`, o None si no se pudo leer."""
        ...
    def audio(self) -> Tuple[np.ndarray, int]:
        """(muestras mono float32, sample_rate)."""
        ...

class RecordingLoader(Protocol):
    def load(self, uri: str) -> Recording:
        ...
