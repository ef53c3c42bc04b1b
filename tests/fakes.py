# tests/fakes.py
import math
from typing import Dict, Optional

import numpy as np

from kyc.application.liveness_policy import verdict_from_probabilities
from kyc.domain.errors import BackendError, ExtractionError, ReadError
from kyc.domain.value_objects import DocumentScan

DIM = 4

SELFIE_VEC = [1.0, 0.0, 0.0, 0.0]
# coseno 0.85 contra SELFIE_VEC
CLOSE_VEC = [0.85, math.sqrt(1 - 0.85 ** 2), 0.0, 0.0]
OTHER_VEC = [0.0, 1.0, 0.0, 0.0]


def image(value: int, size: int = 8) -> np.ndarray:
    """Imagen BGR sólida; el valor del pixel identifica la "cara" para los fakes."""
    return np.full((size, size, 3), value, dtype=np.uint8)


class FakeExtractor:
    def __init__(self, vectors: Dict[int, list]):
        self.vectors = vectors
        self.calls = 0

    def extract(self, img_bgr):
        self.calls += 1
        key = int(np.asarray(img_bgr).reshape(-1)[0])
        if key not in self.vectors:
            raise ExtractionError(f"sin rostro en imagen {key}")
        return np.asarray(self.vectors[key], dtype=np.float64)


class FakeClassifier:
    def __init__(self, real_prob: float = 0.95, threshold: float = 0.75):
        self.real_prob = real_prob
        self.threshold = threshold

    def classify(self, embedding):
        return verdict_from_probabilities(self.real_prob, 1.0 - self.real_prob, self.threshold)


class FakeDocumentReader:
    def __init__(self, fields: Optional[Dict[str, str]] = None, photo=None, error: Exception = None):
        self.fields = fields or {}
        self.photo = photo
        self.error = error

    def read(self, img_bgr):
        if self.error is not None:
            raise self.error
        return DocumentScan(fields=dict(self.fields), photo=self.photo)


class UnreadableDocumentReader(FakeDocumentReader):
    def __init__(self):
        super().__init__(error=ReadError("documento ilegible"))


class FakeCoverage:
    def __init__(self, value: float = 0.6):
        self.value = value

    def estimate(self, img_bgr):
        return self.value


class MemorySecretBackend:
    def __init__(self):
        self.data: Dict[tuple, bytes] = {}
        self.fail_puts = False

    def get(self, namespace, key):
        return self.data.get((namespace, key))

    def put(self, namespace, key, data):
        if self.fail_puts:
            raise BackendError("almacén no disponible")
        self.data[(namespace, key)] = bytes(data)

    def delete(self, namespace, key):
        self.data.pop((namespace, key), None)

    def purge(self, namespace):
        for k in [k for k in self.data if k[0] == namespace]:
            del self.data[k]


class FakeRecording:
    def __init__(self, duration: float, sample_rate: int = 16000, unreadable=(), samples=None):
        self._duration = duration
        self.sample_rate = sample_rate
        self.unreadable = set(unreadable)
        if samples is None:
            samples = np.linspace(-1.0, 1.0, int(duration * sample_rate), dtype=np.float32)
        self.samples = samples
        self.closed = False

    @property
    def duration(self):
        return self._duration

    def frame_at(self, seconds):
        if seconds in self.unreadable:
            return None
        return np.full((48, 64, 3), int(seconds) % 256, dtype=np.uint8)

    def audio(self):
        return self.samples, self.sample_rate

    def close(self):
        self.closed = True


class FakeRecordingLoader:
    def __init__(self, recording):
        self.recording = recording

    def load(self, path):
        return self.recording


class ConstantExtractor:
    def __init__(self, vector=(1.0, 1.0)):
        self.vector = list(vector)

    def extract(self, data):
        return np.asarray(self.vector, dtype=np.float64)
