# kyc/infrastructure/config.py
import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from ..domain.value_objects import Thresholds, SELFIE_KEY, ID_PROFILE_KEY
from ..application.biometric_store import BiometricStore
from ..application.clone_aggregator import CloneAggregator
from ..application.executors import create_worker_pool
from ..application.verification_orchestrator import VerificationOrchestrator
from ..application.video_segmenter import SegmenterSettings, VideoSegmenter

from .storage.local_secret_backend import LocalSecretBackend
from .storage.s3_secret_backend import S3SecretBackend
from .ml.keras_models import (
    KerasAudioEmbeddingExtractor, KerasImageEmbeddingExtractor, KerasProbabilityClassifier,
)
from .detection.face_coverage import OvalFaceCoverageEstimator
from .detection.rekognition_face_detector import RekognitionFaceDetector
from .document.textract_document_reader import TextractDocumentReader
from .media.recording_loader import OpenCVRecordingLoader

# --- Helpers ENV robustos (soportan "0.80 # comentario") ---
def _env_float(var: str, default: float) -> float:
    raw = os.getenv(var, str(default))
    m = re.search(r"[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?", str(raw))
    return float(m.group(0)) if m else float(default)

def _env_int(var: str, default: int) -> int:
    raw = os.getenv(var, str(default))
    m = re.search(r"[-+]?\d+", str(raw))
    return int(m.group(0)) if m else int(default)

def _env_str(var: str, default: str) -> str:
    return str(os.getenv(var, default)).split("#", 1)[0].strip()

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
_MODELS_DIR = os.path.join(_BASE_DIR, "models")


@dataclass(frozen=True)
class ModelSettings:
    face_model_path: str
    audio_model_path: str
    liveness_model_path: str
    picture_clone_model_path: str
    audio_clone_model_path: str
    face_embedding_dim: int = 512
    audio_embedding_dim: int = 192


@dataclass(frozen=True)
class StoreSettings:
    backend: str = "local"          # local | s3
    directory: str = ""
    bucket: str = ""
    namespace: str = "kyc"
    kms_key_id: Optional[str] = None
    region: str = "us-east-1"


def get_thresholds() -> Thresholds:
    return Thresholds(
        liveness=_env_float("KYC_LIVENESS_TH", 0.75),
        match=_env_float("KYC_MATCH_TH", 0.70),
        auth_match=_env_float("KYC_AUTH_MATCH_TH", 0.80),
        age=_env_int("KYC_AGE_THRESHOLD", 21),
        coverage_min=_env_float("KYC_COVERAGE_MIN", 0.50),
        coverage_max=_env_float("KYC_COVERAGE_MAX", 0.75),
    )

def get_segmenter_settings() -> SegmenterSettings:
    return SegmenterSettings(
        time_slice=_env_float("KYC_TIME_SLICE_S", 3.0),
        snippet_seconds=_env_float("KYC_SNIPPET_S", 5.0),
        sample_rate=_env_int("KYC_SAMPLE_RATE", 16000),
        max_duration=_env_float("KYC_MAX_RECORDING_S", 120.0),
    )

def get_model_settings() -> ModelSettings:
    def path(var: str, name: str) -> str:
        return _env_str(var, os.path.join(_MODELS_DIR, name))
    return ModelSettings(
        face_model_path=path("KYC_FACE_MODEL_PATH", "face_embedding.keras"),
        audio_model_path=path("KYC_AUDIO_MODEL_PATH", "audio_embedding.keras"),
        liveness_model_path=path("KYC_LIVENESS_MODEL_PATH", "liveness.keras"),
        picture_clone_model_path=path("KYC_PICTURE_CLONE_MODEL_PATH", "picture_clone.keras"),
        audio_clone_model_path=path("KYC_AUDIO_CLONE_MODEL_PATH", "audio_clone.keras"),
        face_embedding_dim=_env_int("KYC_FACE_EMBEDDING_DIM", 512),
        audio_embedding_dim=_env_int("KYC_AUDIO_EMBEDDING_DIM", 192),
    )

def get_store_settings() -> StoreSettings:
    return StoreSettings(
        backend=_env_str("KYC_STORE_BACKEND", "local").lower(),
        directory=_env_str("KYC_STORE_DIR", os.path.join(os.getcwd(), "kyc_secure_store")),
        bucket=_env_str("KYC_STORE_BUCKET", ""),
        namespace=_env_str("KYC_STORE_NAMESPACE", "kyc"),
        kms_key_id=_env_str("KYC_STORE_KMS_KEY_ID", "") or None,
        region=_env_str("AWS_REGION", "us-east-1"),
    )

def get_max_workers() -> int:
    return _env_int("KYC_MAX_WORKERS", 0)

def get_flow_log_dir() -> str:
    return _env_str("FLOW_LOG_DIR", os.path.join(os.getcwd(), "kyc_flows"))

def get_session_ttl() -> float:
    # segundos sin actividad antes de descartar una sesión en memoria
    return _env_float("KYC_SESSION_TTL_S", 900.0)


# ---------- builders ----------

def build_secret_backend(settings: Optional[StoreSettings] = None):
    s = settings or get_store_settings()
    if s.backend == "s3":
        return S3SecretBackend(bucket=s.bucket, kms_key_id=s.kms_key_id, region=s.region)
    if s.backend != "local":
        raise ValueError(f"KYC_STORE_BACKEND desconocido: {s.backend}")
    return LocalSecretBackend(s.directory)

def build_biometric_store(settings: Optional[StoreSettings] = None,
                          models: Optional[ModelSettings] = None) -> BiometricStore:
    s = settings or get_store_settings()
    m = models or get_model_settings()
    return BiometricStore(
        backend=build_secret_backend(s),
        namespace=s.namespace,
        expected_lengths={SELFIE_KEY: m.face_embedding_dim, ID_PROFILE_KEY: m.face_embedding_dim},
    )


class KYCRuntime:
    """Colaboradores compartidos por todas las sesiones (modelos, store, pools)."""
    def __init__(self, thresholds: Thresholds, models: ModelSettings, segmenter_settings: SegmenterSettings,
                 store: BiometricStore, pool: ThreadPoolExecutor, step_pool: ThreadPoolExecutor,
                 face_extractor, liveness_classifier, document_reader, coverage, aggregator: CloneAggregator,
                 recording_loader):
        self.thresholds = thresholds
        self.models = models
        self.segmenter_settings = segmenter_settings
        self.store = store
        self.pool = pool
        self.step_pool = step_pool
        self.face_extractor = face_extractor
        self.liveness_classifier = liveness_classifier
        self.document_reader = document_reader
        self.coverage = coverage
        self.aggregator = aggregator
        self.recording_loader = recording_loader

    def new_orchestrator(self, session_id: Optional[str] = None) -> VerificationOrchestrator:
        return VerificationOrchestrator(
            extractor=self.face_extractor,
            liveness=self.liveness_classifier,
            document_reader=self.document_reader,
            store=self.store,
            pool=self.pool,
            step_pool=self.step_pool,
            thresholds=self.thresholds,
            coverage=self.coverage,
            embedding_length=self.models.face_embedding_dim,
            session_id=session_id,
        )

    def new_segmenter(self) -> VideoSegmenter:
        return VideoSegmenter(self.segmenter_settings)


def build_clone_aggregator(pool: ThreadPoolExecutor, models: Optional[ModelSettings] = None,
                           thresholds: Optional[Thresholds] = None, face_extractor=None) -> CloneAggregator:
    m = models or get_model_settings()
    t = thresholds or get_thresholds()
    seg = get_segmenter_settings()
    return CloneAggregator(
        image_extractor=face_extractor or KerasImageEmbeddingExtractor(m.face_model_path, m.face_embedding_dim),
        picture_classifier=KerasProbabilityClassifier(m.picture_clone_model_path, t.liveness, m.face_embedding_dim),
        audio_extractor=KerasAudioEmbeddingExtractor(
            m.audio_model_path, m.audio_embedding_dim, int(seg.snippet_seconds * seg.sample_rate)),
        audio_classifier=KerasProbabilityClassifier(m.audio_clone_model_path, t.liveness, m.audio_embedding_dim),
        pool=pool,
    )


def build_orchestrator(session_id: Optional[str] = None, runtime: Optional[KYCRuntime] = None) -> VerificationOrchestrator:
    return (runtime or get_runtime()).new_orchestrator(session_id)


def build_runtime() -> KYCRuntime:
    thresholds = get_thresholds()
    models = get_model_settings()
    seg = get_segmenter_settings()
    region = get_store_settings().region
    workers = get_max_workers()
    pool = create_worker_pool(workers, name="kyc_infer")
    step_pool = create_worker_pool(workers, name="kyc_step")

    detector = RekognitionFaceDetector(region=region)
    face_extractor = KerasImageEmbeddingExtractor(models.face_model_path, models.face_embedding_dim)
    return KYCRuntime(
        thresholds=thresholds,
        models=models,
        segmenter_settings=seg,
        store=build_biometric_store(models=models),
        pool=pool,
        step_pool=step_pool,
        face_extractor=face_extractor,
        liveness_classifier=KerasProbabilityClassifier(
            models.liveness_model_path, thresholds.liveness, models.face_embedding_dim),
        document_reader=TextractDocumentReader(face_detector=detector, region=region),
        coverage=OvalFaceCoverageEstimator(detector),
        aggregator=build_clone_aggregator(pool, models, thresholds, face_extractor),
        recording_loader=OpenCVRecordingLoader(seg.sample_rate),
    )


_runtime: Optional[KYCRuntime] = None
_runtime_lock = threading.Lock()

def get_runtime() -> KYCRuntime:
    global _runtime
    if _runtime is None:
        with _runtime_lock:
            if _runtime is None:
                _runtime = build_runtime()
    return _runtime
