# kyc/domain/value_objects.py
from __future__ import annotations

import datetime
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

import numpy as np

from .errors import ExtractionError

Embedding = np.ndarray

SELFIE_KEY = "selfie"
ID_PROFILE_KEY = "idProfile"


def as_embedding(values, expected_length: Optional[int] = None) -> Embedding:
    """
    Normaliza cualquier secuencia numérica a un embedding inmutable (float64, 1-D, read-only).
    Lanza ExtractionError si no es un vector no vacío de valores finitos con la longitud esperada.
    """
    try:
        arr = np.array(values, dtype=np.float64).reshape(-1) if values is not None else None
    except (TypeError, ValueError) as e:
        raise ExtractionError(f"Embedding no numérico: {e}") from e
    if arr is None or arr.size == 0:
        raise ExtractionError("Embedding vacío")
    if expected_length is not None and arr.size != expected_length:
        raise ExtractionError(f"Embedding length {arr.size} != expected {expected_length}")
    if not np.all(np.isfinite(arr)):
        raise ExtractionError("Embedding con valores no finitos (NaN/inf)")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class Thresholds:
    liveness: float = 0.75
    match: float = 0.70         # umbral genérico del comparador
    auth_match: float = 0.80    # selfie vs foto del documento y re-autenticación
    age: int = 21
    coverage_min: float = 0.50
    coverage_max: float = 0.75


@dataclass(frozen=True)
class SimilarityScore:
    score: float      # -1..1, 2 decimales
    passed: bool


class LivenessLabel(str, Enum):
    REAL = "real"
    FAKE = "fake"


@dataclass(frozen=True)
class LivenessVerdict:
    label: LivenessLabel
    real_prob: float
    fake_prob: float

    @property
    def is_real(self) -> bool:
        return self.label is LivenessLabel.REAL


class AgeVerificationResult(str, Enum):
    INDETERMINATE = "indeterminate"
    ABOVE_21 = "above21"
    BELOW_21 = "below21"
    EXPIRED_ID = "expiredID"
    PROFILE_MISMATCH = "selfieIDProfileMismatch"
    READ_FAILURE = "failedToReadID"
    SELFIE_INACCURATE = "selfieInaccurate"
    INTERNAL_ERROR = "internalError"


class VerificationStep(str, Enum):
    AWAITING_SELFIE = "awaitingSelfie"
    AWAITING_ID = "awaitingID"
    COMPLETE = "complete"


@dataclass(frozen=True)
class DocumentScan:
    """Salida del lector de documentos: campos en texto y, si existe, la foto del titular."""
    fields: Dict[str, str]
    photo: Optional[np.ndarray] = None


@dataclass(frozen=True)
class DocumentIdentity:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    id_number: Optional[str] = None
    date_of_birth: Optional[datetime.date] = None
    expiration_date: Optional[datetime.date] = None

    def age_on(self, today: datetime.date) -> Optional[int]:
        if self.date_of_birth is None:
            return None
        dob = self.date_of_birth
        return today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))

    def is_expired_on(self, today: datetime.date) -> Optional[bool]:
        if self.expiration_date is None:
            return None
        return self.expiration_date < today


@dataclass(frozen=True)
class KYCResult:
    """Snapshot inmutable de la salida de una sesión (superficie pública de resultados)."""
    real_prob: float = 0.0
    fake_prob: float = 0.0
    real_prob_geometric: float = 0.0
    fake_prob_geometric: float = 0.0
    selfie_id_match_prob: float = 0.0
    is_above_age_threshold: Optional[bool] = None
    failure_reason: AgeVerificationResult = AgeVerificationResult.INDETERMINATE
    is_selfie_real: bool = False
    is_two_step: bool = False
    selfie_embedding: Optional[Embedding] = field(default=None, repr=False, compare=False)
    id_profile_embedding: Optional[Embedding] = field(default=None, repr=False, compare=False)

    def public_dict(self) -> Dict[str, object]:
        # sin embeddings: esto es lo que sale por API y a los archivos de flujo
        return {
            "real_prob": round(self.real_prob, 4),
            "fake_prob": round(self.fake_prob, 4),
            "real_prob_geometric": round(self.real_prob_geometric, 4),
            "fake_prob_geometric": round(self.fake_prob_geometric, 4),
            "selfie_id_match_prob": round(self.selfie_id_match_prob, 2),
            "is_above_age_threshold": self.is_above_age_threshold,
            "failure_reason": self.failure_reason.value,
            "is_selfie_real": self.is_selfie_real,
            "is_two_step": self.is_two_step,
        }


# ---------- Video ----------

@dataclass(frozen=True)
class VideoFragment:
    index: int
    time_offset: float           # segundos desde el inicio de la grabación
    still_image: np.ndarray = field(repr=False, compare=False)     # 224x224 BGR
    original_image: np.ndarray = field(repr=False, compare=False)  # frame tal como se capturó
    audio_snippet: np.ndarray = field(repr=False, compare=False)   # mono float32, longitud fija
    is_picture_cloned: bool = False
    is_audio_cloned: bool = False

    @property
    def is_cloned(self) -> bool:
        return self.is_picture_cloned or self.is_audio_cloned

    def with_flags(self, picture: bool, audio: bool) -> "VideoFragment":
        return replace(self, is_picture_cloned=picture, is_audio_cloned=audio)


class CloneCategory(str, Enum):
    NOT_CLONED = "notCloned"
    PICTURE_CLONED = "pictureCloned"
    AUDIO_CLONED = "audioCloned"
    BOTH_CLONED = "bothCloned"


class CloneChannel(str, Enum):
    PICTURE = "picture"
    AUDIO = "audio"


@dataclass(frozen=True)
class CloneVerdict:
    category: CloneCategory
    picture_evidence: FrozenSet[int]
    audio_evidence: FrozenSet[int]
    failed_channels: FrozenSet[Tuple[int, CloneChannel]] = frozenset()
    fragments: Tuple[VideoFragment, ...] = field(default=(), repr=False, compare=False)

    @property
    def is_cloned(self) -> bool:
        return self.category is not CloneCategory.NOT_CLONED

    def public_dict(self) -> Dict[str, object]:
        return {
            "category": self.category.value,
            "picture_evidence": sorted(self.picture_evidence),
            "audio_evidence": sorted(self.audio_evidence),
            "failed_channels": sorted([idx, ch.value] for idx, ch in self.failed_channels),
            "fragments": [
                {
                    "index": f.index,
                    "time_offset": f.time_offset,
                    "is_picture_cloned": f.is_picture_cloned,
                    "is_audio_cloned": f.is_audio_cloned,
                }
                for f in self.fragments
            ],
        }
