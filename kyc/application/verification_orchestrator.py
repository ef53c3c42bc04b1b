# kyc/application/verification_orchestrator.py
import datetime
import logging
import queue
import uuid
from concurrent.futures import Executor, Future, wait
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional, Tuple

import numpy as np

from ..domain.errors import (
    KYCError, ExtractionError, ModelError, ReadError, StorageError, BackendError,
    MatchError, FlowError,
)
from ..domain.interfaces import (
    ImageEmbeddingExtractor, EmbeddingClassifier, DocumentReader, FaceCoverageEstimator,
)
from ..domain.value_objects import (
    AgeVerificationResult, Embedding, KYCResult, LivenessVerdict, Thresholds,
    VerificationStep, SELFIE_KEY, ID_PROFILE_KEY, as_embedding,
)
from .biometric_store import BiometricStore
from .document_policy import evaluate_age, identity_from_fields
from .liveness_policy import geometric_probabilities, liveness_message
from .similarity_matcher import SimilarityMatcher

logger = logging.getLogger("kyc.verify")


@dataclass(frozen=True)
class StepOutcome:
    ok: bool
    step: VerificationStep
    failure_reason: Optional[AgeVerificationResult] = None
    error: Optional[KYCError] = None
    message: str = ""

    def public_dict(self) -> Dict[str, object]:
        return {
            "ok": self.ok,
            "step": self.step.value,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "error": type(self.error).__name__ if self.error else None,
            "message": self.message,
        }


class SessionEventKind(str, Enum):
    SELFIE_PROCESSED = "selfieProcessed"
    DOCUMENT_PROCESSED = "documentProcessed"
    REAUTHENTICATED = "reauthenticated"
    STEP_FAILED = "stepFailed"
    COMPLETED = "completed"
    RESET = "reset"


@dataclass(frozen=True)
class SessionEvent:
    session_id: str
    kind: SessionEventKind
    outcome: Optional[StepOutcome] = None
    result: Optional[KYCResult] = None


@dataclass(frozen=True)
class AuthenticationResult:
    max_similarity: float
    passed: bool
    scores: Dict[str, float] = field(default_factory=dict)   # solo claves que contribuyeron
    failed_keys: FrozenSet[str] = frozenset()


def _reason_for(error: KYCError) -> AgeVerificationResult:
    if isinstance(error, ReadError):
        return AgeVerificationResult.READ_FAILURE
    if isinstance(error, (ExtractionError, MatchError)):
        return AgeVerificationResult.SELFIE_INACCURATE
    if isinstance(error, (ModelError, StorageError)):
        return AgeVerificationResult.INTERNAL_ERROR
    return AgeVerificationResult.INDETERMINATE


def _compare_once(baseline: Embedding, test: Embedding, threshold: float):
    matcher = SimilarityMatcher(threshold)
    try:
        matcher.set_baseline(baseline)
        matcher.set_test(test)
        return matcher.compare(threshold)
    finally:
        matcher.clear()


class VerificationOrchestrator:
    """
    Máquina de estados de una sesión KYC:
        AWAITING_SELFIE -> AWAITING_ID -> COMPLETE  (terminal hasta reset()).

    Cada paso devuelve un StepOutcome; los KYCError se convierten en outcome fallido
    sin avanzar de estado. Los outcomes se publican en `events` y el resultado final
    resuelve `completion` una sola vez por ciclo de vida.
    """
    def __init__(
        self,
        extractor: ImageEmbeddingExtractor,
        liveness: EmbeddingClassifier,
        document_reader: DocumentReader,
        store: BiometricStore,
        pool: Executor,
        thresholds: Thresholds = Thresholds(),
        coverage: Optional[FaceCoverageEstimator] = None,
        embedding_length: Optional[int] = 512,
        session_id: Optional[str] = None,
        step_pool: Optional[Executor] = None,
        today: Callable[[], datetime.date] = datetime.date.today,
    ):
        self.extractor = extractor
        self.liveness = liveness
        self.document_reader = document_reader
        self.store = store
        self.pool = pool
        # pasos completos (submit_*) en un pool aparte: authenticate espera ramas en `pool`
        self.step_pool = step_pool or pool
        self.t = thresholds
        self.coverage = coverage
        self.embedding_length = embedding_length
        self.session_id = session_id or str(uuid.uuid4())
        self.today = today

        self.events: "queue.Queue[SessionEvent]" = queue.Queue()
        self.completion: "Future[KYCResult]" = Future()
        self.step = VerificationStep.AWAITING_SELFIE
        self.last_outcome: Optional[StepOutcome] = None
        self._result = KYCResult()

    # ---------- estado ----------

    def result(self) -> KYCResult:
        return self._result

    def reset(self) -> None:
        if not self.completion.done():
            self.completion.cancel()
        self.completion = Future()
        self.step = VerificationStep.AWAITING_SELFIE
        self.last_outcome = None
        self._result = KYCResult()
        logger.info({"session": self.session_id, "event": "session_reset"})
        self.events.put(SessionEvent(self.session_id, SessionEventKind.RESET))

    def release(self) -> None:
        """
        Libera lo que la sesión retiene en memoria al descartarla: los embeddings
        del resultado (también el ya entregado por `completion`) y los eventos sin leer.
        """
        self._result = replace(self._result, selfie_embedding=None, id_profile_embedding=None)
        if self.completion.done() and not self.completion.cancelled():
            released = Future()
            released.set_result(self._result)
            self.completion = released
        while True:
            try:
                self.events.get_nowait()
            except queue.Empty:
                break
        logger.info({"session": self.session_id, "event": "session_released"})

    # ---------- helpers ----------

    def _outcome(self, kind: SessionEventKind, outcome: StepOutcome) -> StepOutcome:
        self.last_outcome = outcome
        self.events.put(SessionEvent(self.session_id, kind, outcome=outcome))
        return outcome

    def _fail(self, error: KYCError, reason: Optional[AgeVerificationResult] = None) -> StepOutcome:
        reason = reason or _reason_for(error)
        logger.info({
            "session": self.session_id,
            "event": "step_failed",
            "step": self.step.value,
            "error": type(error).__name__,
            "detail": str(error),
            "failure_reason": reason.value,
        })
        return self._outcome(
            SessionEventKind.STEP_FAILED,
            StepOutcome(ok=False, step=self.step, failure_reason=reason, error=error, message=str(error)),
        )

    def _require(self, step: VerificationStep) -> Optional[StepOutcome]:
        if self.step is step:
            return None
        return self._fail(FlowError(f"Paso inválido: se esperaba {step.value}, estado actual {self.step.value}"))

    def _complete(self) -> None:
        self.step = VerificationStep.COMPLETE
        result = self._result
        self.completion.set_result(result)
        logger.info({"session": self.session_id, "event": "kyc_completed", **result.public_dict()})
        self.events.put(SessionEvent(self.session_id, SessionEventKind.COMPLETED, result=result))

    def _extract_face(self, img_bgr: np.ndarray) -> Embedding:
        return as_embedding(self.extractor.extract(img_bgr), self.embedding_length)

    def _geometric(self, img_bgr: np.ndarray) -> Tuple[float, float]:
        if self.coverage is None:
            return 0.0, 0.0
        try:
            cov = float(self.coverage.estimate(img_bgr))
        except KYCError as e:
            # solo informativo para la UI; no bloquea el paso
            logger.warning({"session": self.session_id, "event": "face_coverage_error", "error": str(e)})
            return 0.0, 0.0
        return geometric_probabilities(cov, self.t.coverage_min, self.t.coverage_max)

    def _analyze_selfie(self, img_bgr: np.ndarray) -> Tuple[Embedding, LivenessVerdict, Tuple[float, float]]:
        embedding = self._extract_face(img_bgr)
        verdict = self.liveness.classify(embedding)
        return embedding, verdict, self._geometric(img_bgr)

    # ---------- pasos ----------

    def process_selfie(self, img_bgr: np.ndarray) -> StepOutcome:
        bad_state = self._require(VerificationStep.AWAITING_SELFIE)
        if bad_state:
            return bad_state
        try:
            embedding, verdict, geometric = self._analyze_selfie(img_bgr)
            self.store.store(SELFIE_KEY, embedding)
        except KYCError as e:
            return self._fail(e)

        self._result = replace(
            self._result,
            real_prob=verdict.real_prob,
            fake_prob=verdict.fake_prob,
            real_prob_geometric=geometric[0],
            fake_prob_geometric=geometric[1],
            is_selfie_real=verdict.is_real,
            selfie_embedding=embedding,
        )
        self.step = VerificationStep.AWAITING_ID
        message = liveness_message(verdict, geometric, self.t.liveness)
        logger.info({
            "session": self.session_id,
            "event": "selfie_processed",
            "real_prob": round(verdict.real_prob, 4),
            "fake_prob": round(verdict.fake_prob, 4),
            "is_selfie_real": verdict.is_real,
            "geometric": geometric,
        })
        return self._outcome(
            SessionEventKind.SELFIE_PROCESSED,
            StepOutcome(ok=True, step=self.step, message=message),
        )

    def process_document(self, img_bgr: np.ndarray) -> StepOutcome:
        bad_state = self._require(VerificationStep.AWAITING_ID)
        if bad_state:
            return bad_state
        try:
            scan = self.document_reader.read(img_bgr)
            if scan.photo is None:
                return self._fail(ExtractionError("No se encontró la foto del titular en el documento"))
            selfie = self._result.selfie_embedding
            if selfie is None:
                selfie = self.store.retrieve(SELFIE_KEY)
            if selfie is None:
                raise FlowError("No hay selfie registrada para comparar")
            id_embedding = self._extract_face(scan.photo)
            score = _compare_once(selfie, id_embedding, self.t.auth_match)
            self.store.store(ID_PROFILE_KEY, id_embedding)
        except KYCError as e:
            return self._fail(e)

        identity = identity_from_fields(scan.fields)
        reason, is_above = evaluate_age(identity, score.passed, self.today(), self.t.age)
        self._result = replace(
            self._result,
            selfie_id_match_prob=score.score,
            is_above_age_threshold=is_above,
            failure_reason=reason,
            is_two_step=True,
            id_profile_embedding=id_embedding,
        )
        logger.info({
            "session": self.session_id,
            "event": "document_processed",
            "similarity": score.score,
            "match": score.passed,
            "has_dob": identity.date_of_birth is not None,
            "has_expiration": identity.expiration_date is not None,
            "failure_reason": reason.value,
        })
        outcome = self._outcome(
            SessionEventKind.DOCUMENT_PROCESSED,
            StepOutcome(ok=True, step=VerificationStep.COMPLETE, failure_reason=reason),
        )
        self._complete()
        return outcome

    def authenticate(self, probe, threshold: Optional[float] = None) -> AuthenticationResult:
        """
        Compara `probe` contra "selfie" e "idProfile" en paralelo (un matcher por rama).
        Una clave ausente o con error no cancela a la otra ni contribuye al máximo.
        """
        th = self.t.auth_match if threshold is None else float(threshold)
        probe = as_embedding(probe)

        def branch(key: str):
            stored = self.store.retrieve(key)
            if stored is None:
                return None
            return _compare_once(stored, probe, th).score

        futures = {key: self.pool.submit(branch, key) for key in (SELFIE_KEY, ID_PROFILE_KEY)}
        wait(list(futures.values()))

        scores: Dict[str, float] = {}
        failed = set()
        for key, fut in futures.items():
            try:
                score = fut.result()
            except Exception as e:
                # cualquier falla de una rama cuenta como clave fallida, no aborta la otra
                failed.add(key)
                logger.warning({"session": self.session_id, "event": "auth_branch_failed", "key": key,
                                "error": type(e).__name__, "detail": str(e)})
                continue
            if score is not None:
                scores[key] = score

        max_similarity = max(scores.values()) if scores else 0.0
        passed = bool(scores) and max_similarity >= th
        logger.info({"session": self.session_id, "event": "authenticate", "scores": scores,
                     "failed_keys": sorted(failed), "max_similarity": max_similarity, "passed": passed})
        return AuthenticationResult(max_similarity, passed, scores, frozenset(failed))

    def reauthenticate(self, img_bgr: np.ndarray) -> StepOutcome:
        """KYC de un paso: selfie nueva contra las plantillas ya registradas."""
        bad_state = self._require(VerificationStep.AWAITING_SELFIE)
        if bad_state:
            return bad_state
        if not self.store.exists_both(SELFIE_KEY, ID_PROFILE_KEY):
            return self._fail(FlowError("No hay plantillas registradas para re-autenticar"))
        try:
            embedding, verdict, geometric = self._analyze_selfie(img_bgr)
            auth = self.authenticate(embedding)
        except KYCError as e:
            return self._fail(e)
        if not auth.scores and auth.failed_keys:
            return self._fail(BackendError(f"No se pudieron leer las plantillas: {sorted(auth.failed_keys)}"))

        verified = auth.passed and verdict.is_real
        if verified:
            reason = AgeVerificationResult.ABOVE_21
        elif not auth.passed:
            reason = AgeVerificationResult.PROFILE_MISMATCH
        else:
            reason = AgeVerificationResult.SELFIE_INACCURATE

        self._result = replace(
            self._result,
            real_prob=verdict.real_prob,
            fake_prob=verdict.fake_prob,
            real_prob_geometric=geometric[0],
            fake_prob_geometric=geometric[1],
            is_selfie_real=verdict.is_real,
            selfie_embedding=embedding,
            selfie_id_match_prob=auth.max_similarity,
            is_above_age_threshold=True if verified else None,
            failure_reason=reason,
            is_two_step=False,
        )
        outcome = self._outcome(
            SessionEventKind.REAUTHENTICATED,
            StepOutcome(ok=True, step=VerificationStep.COMPLETE, failure_reason=reason,
                        message=liveness_message(verdict, geometric, self.t.liveness)),
        )
        self._complete()
        return outcome

    # ---------- ejecución fuera del hilo llamador ----------

    def submit_selfie(self, img_bgr: np.ndarray) -> "Future[StepOutcome]":
        return self.step_pool.submit(self.process_selfie, img_bgr)

    def submit_document(self, img_bgr: np.ndarray) -> "Future[StepOutcome]":
        return self.step_pool.submit(self.process_document, img_bgr)

    def submit_reauthentication(self, img_bgr: np.ndarray) -> "Future[StepOutcome]":
        return self.step_pool.submit(self.reauthenticate, img_bgr)
