# tests/test_verification_orchestrator.py
import datetime
import math
import queue

import pytest

from kyc.application.verification_orchestrator import SessionEventKind, VerificationOrchestrator
from kyc.domain.errors import ExtractionError, FlowError, ReadError
from kyc.domain.value_objects import AgeVerificationResult, ID_PROFILE_KEY, SELFIE_KEY, VerificationStep

from .fakes import (
    CLOSE_VEC, DIM, OTHER_VEC, SELFIE_VEC,
    FakeClassifier, FakeCoverage, FakeDocumentReader, FakeExtractor, UnreadableDocumentReader, image,
)

TODAY = datetime.date(2026, 10, 17)
SELFIE_IMG = 10
CLOSE_IMG = 20
OTHER_IMG = 30
UNKNOWN_IMG = 99

ADULT_FIELDS = {"DATE_OF_BIRTH": "01/02/1990", "EXPIRATION_DATE": "01/02/2030"}


@pytest.fixture
def make_orch(store, pool, step_pool):
    def factory(reader=None, real_prob=0.95, coverage=None, vectors=None):
        return VerificationOrchestrator(
            extractor=FakeExtractor(vectors or {SELFIE_IMG: SELFIE_VEC, CLOSE_IMG: CLOSE_VEC, OTHER_IMG: OTHER_VEC}),
            liveness=FakeClassifier(real_prob),
            document_reader=reader or FakeDocumentReader(ADULT_FIELDS, photo=image(CLOSE_IMG)),
            store=store,
            pool=pool,
            step_pool=step_pool,
            coverage=coverage,
            embedding_length=DIM,
            today=lambda: TODAY,
        )
    return factory


def _drain(q: queue.Queue):
    kinds = []
    while not q.empty():
        kinds.append(q.get_nowait().kind)
    return kinds


def test_real_selfie_advances_to_awaiting_id(make_orch, store):
    orch = make_orch(coverage=FakeCoverage(0.6))
    outcome = orch.process_selfie(image(SELFIE_IMG))

    assert outcome.ok
    assert orch.step is VerificationStep.AWAITING_ID
    res = orch.result()
    assert res.real_prob == pytest.approx(0.95)
    assert res.is_selfie_real
    assert (res.real_prob_geometric, res.fake_prob_geometric) == (0.99, 0.01)
    assert outcome.message.startswith("Selfie is real.")
    assert store.retrieve(SELFIE_KEY).tolist() == SELFIE_VEC
    assert not orch.completion.done()


def test_fake_selfie_still_advances_but_is_marked(make_orch):
    orch = make_orch(real_prob=0.3)
    outcome = orch.process_selfie(image(SELFIE_IMG))
    assert outcome.ok
    assert orch.step is VerificationStep.AWAITING_ID
    assert not orch.result().is_selfie_real


def test_document_match_above_threshold_completes_session(make_orch, store):
    orch = make_orch()
    orch.process_selfie(image(SELFIE_IMG))
    outcome = orch.process_document(image(1))

    assert outcome.ok
    assert outcome.failure_reason is AgeVerificationResult.ABOVE_21
    assert orch.step is VerificationStep.COMPLETE
    res = orch.completion.result(timeout=1)
    assert res is orch.result()
    assert res.selfie_id_match_prob == 0.85
    assert res.is_above_age_threshold is True
    assert res.is_two_step
    assert store.retrieve(ID_PROFILE_KEY).tolist() == pytest.approx(CLOSE_VEC)


def test_document_photo_mismatch(make_orch):
    orch = make_orch(reader=FakeDocumentReader(ADULT_FIELDS, photo=image(OTHER_IMG)))
    orch.process_selfie(image(SELFIE_IMG))
    outcome = orch.process_document(image(1))

    assert outcome.failure_reason is AgeVerificationResult.PROFILE_MISMATCH
    assert orch.result().is_above_age_threshold is None
    assert orch.result().selfie_id_match_prob == 0.0
    assert orch.step is VerificationStep.COMPLETE


def test_underage_and_expired_documents(make_orch):
    young = make_orch(reader=FakeDocumentReader(
        {"DATE_OF_BIRTH": "01/02/2010", "EXPIRATION_DATE": "01/02/2030"}, photo=image(CLOSE_IMG)))
    young.process_selfie(image(SELFIE_IMG))
    assert young.process_document(image(1)).failure_reason is AgeVerificationResult.BELOW_21
    assert young.result().is_above_age_threshold is False

    expired = make_orch(reader=FakeDocumentReader(
        {"DATE_OF_BIRTH": "01/02/1990", "EXPIRATION_DATE": "01/02/2020"}, photo=image(CLOSE_IMG)))
    expired.process_selfie(image(SELFIE_IMG))
    assert expired.process_document(image(1)).failure_reason is AgeVerificationResult.EXPIRED_ID


def test_selfie_without_face_fails_and_keeps_step(make_orch, store):
    orch = make_orch()
    outcome = orch.process_selfie(image(UNKNOWN_IMG))

    assert not outcome.ok
    assert isinstance(outcome.error, ExtractionError)
    assert outcome.failure_reason is AgeVerificationResult.SELFIE_INACCURATE
    assert orch.step is VerificationStep.AWAITING_SELFIE
    assert store.retrieve(SELFIE_KEY) is None
    assert not orch.completion.done()


def test_document_before_selfie_is_a_flow_error(make_orch):
    orch = make_orch()
    outcome = orch.process_document(image(1))
    assert not outcome.ok
    assert isinstance(outcome.error, FlowError)
    assert orch.step is VerificationStep.AWAITING_SELFIE


def test_unreadable_document(make_orch):
    orch = make_orch(reader=UnreadableDocumentReader())
    orch.process_selfie(image(SELFIE_IMG))
    outcome = orch.process_document(image(1))

    assert isinstance(outcome.error, ReadError)
    assert outcome.failure_reason is AgeVerificationResult.READ_FAILURE
    assert orch.step is VerificationStep.AWAITING_ID


def test_document_without_photo(make_orch):
    orch = make_orch(reader=FakeDocumentReader(ADULT_FIELDS, photo=None))
    orch.process_selfie(image(SELFIE_IMG))
    outcome = orch.process_document(image(1))
    assert outcome.failure_reason is AgeVerificationResult.SELFIE_INACCURATE
    assert orch.step is VerificationStep.AWAITING_ID


def test_storage_failure_is_internal_error(make_orch, backend):
    backend.fail_puts = True
    orch = make_orch()
    outcome = orch.process_selfie(image(SELFIE_IMG))
    assert outcome.failure_reason is AgeVerificationResult.INTERNAL_ERROR
    assert orch.step is VerificationStep.AWAITING_SELFIE


def test_coverage_does_not_gate_selfie(make_orch):
    orch = make_orch(coverage=FakeCoverage(0.1))
    outcome = orch.process_selfie(image(SELFIE_IMG))
    assert outcome.ok
    assert orch.result().fake_prob_geometric == 0.99
    assert outcome.message.startswith("Selfie is printout/fake.")


def test_events_follow_the_session(make_orch):
    orch = make_orch()
    orch.process_document(image(1))
    orch.process_selfie(image(SELFIE_IMG))
    orch.process_document(image(1))
    assert _drain(orch.events) == [
        SessionEventKind.STEP_FAILED,
        SessionEventKind.SELFIE_PROCESSED,
        SessionEventKind.DOCUMENT_PROCESSED,
        SessionEventKind.COMPLETED,
    ]


def test_submitted_steps_run_on_the_pool(make_orch):
    orch = make_orch()
    assert orch.submit_selfie(image(SELFIE_IMG)).result(timeout=5).ok
    outcome = orch.submit_document(image(1)).result(timeout=5)
    assert outcome.failure_reason is AgeVerificationResult.ABOVE_21
    assert orch.completion.result(timeout=1).is_two_step


def test_reset_rearms_completion(make_orch):
    orch = make_orch()
    pending = orch.completion
    orch.process_selfie(image(SELFIE_IMG))
    orch.reset()
    assert pending.cancelled()
    assert orch.step is VerificationStep.AWAITING_SELFIE
    assert orch.result().real_prob == 0.0

    orch.process_selfie(image(SELFIE_IMG))
    orch.process_document(image(1))
    done = orch.completion
    assert done.done()
    orch.reset()
    assert done.result() is not None
    assert not orch.completion.done()
    assert SessionEventKind.RESET in _drain(orch.events)


def test_completed_session_rejects_new_steps(make_orch):
    orch = make_orch()
    orch.process_selfie(image(SELFIE_IMG))
    orch.process_document(image(1))
    outcome = orch.process_selfie(image(SELFIE_IMG))
    assert isinstance(outcome.error, FlowError)
    assert orch.step is VerificationStep.COMPLETE


# ---------- authenticate / reauthenticate ----------

def _enroll(store):
    store.store(SELFIE_KEY, SELFIE_VEC)
    store.store(ID_PROFILE_KEY, CLOSE_VEC)


def test_authenticate_takes_the_best_score(make_orch, store):
    _enroll(store)
    auth = make_orch().authenticate(SELFIE_VEC)
    assert auth.scores == {SELFIE_KEY: 1.0, ID_PROFILE_KEY: 0.85}
    assert auth.max_similarity == 1.0
    assert auth.passed
    assert not auth.failed_keys


def test_authenticate_skips_missing_keys(make_orch, store):
    store.store(ID_PROFILE_KEY, CLOSE_VEC)
    auth = make_orch().authenticate(SELFIE_VEC)
    assert auth.scores == {ID_PROFILE_KEY: 0.85}
    assert auth.passed


def test_authenticate_isolates_a_failing_branch(make_orch, store, backend):
    store.store(SELFIE_KEY, SELFIE_VEC)
    backend.put("test", ID_PROFILE_KEY, b"corrupt")
    auth = make_orch().authenticate(SELFIE_VEC)
    assert auth.scores == {SELFIE_KEY: 1.0}
    assert auth.failed_keys == frozenset({ID_PROFILE_KEY})
    assert auth.passed


def test_authenticate_records_unexpected_branch_error(make_orch, store, backend, monkeypatch):
    _enroll(store)
    real_get = backend.get

    def get(namespace, key):
        if key == ID_PROFILE_KEY:
            raise RuntimeError("conexión reiniciada")
        return real_get(namespace, key)

    monkeypatch.setattr(backend, "get", get)
    auth = make_orch().authenticate(SELFIE_VEC)
    assert auth.scores == {SELFIE_KEY: 1.0}
    assert auth.failed_keys == frozenset({ID_PROFILE_KEY})
    assert auth.passed


def test_authenticate_without_templates_fails(make_orch):
    auth = make_orch().authenticate(SELFIE_VEC)
    assert auth.scores == {}
    assert auth.max_similarity == 0.0
    assert not auth.passed


def test_reauthentication_succeeds_for_enrolled_user(make_orch, store):
    _enroll(store)
    orch = make_orch()
    outcome = orch.reauthenticate(image(SELFIE_IMG))

    assert outcome.ok
    assert outcome.failure_reason is AgeVerificationResult.ABOVE_21
    res = orch.completion.result(timeout=1)
    assert res.selfie_id_match_prob == 1.0
    assert res.is_above_age_threshold is True
    assert not res.is_two_step
    assert orch.step is VerificationStep.COMPLETE


def test_reauthentication_with_other_face(make_orch, store):
    _enroll(store)
    orch = make_orch()
    outcome = orch.reauthenticate(image(OTHER_IMG))
    assert outcome.failure_reason is AgeVerificationResult.PROFILE_MISMATCH
    assert orch.result().is_above_age_threshold is None


def test_reauthentication_with_fake_selfie(make_orch, store):
    _enroll(store)
    orch = make_orch(real_prob=0.2)
    outcome = orch.reauthenticate(image(SELFIE_IMG))
    assert outcome.failure_reason is AgeVerificationResult.SELFIE_INACCURATE
    assert not orch.result().is_selfie_real


def test_reauthentication_requires_enrolled_templates(make_orch, store):
    store.store(SELFIE_KEY, SELFIE_VEC)
    orch = make_orch()
    outcome = orch.reauthenticate(image(SELFIE_IMG))
    assert isinstance(outcome.error, FlowError)
    assert orch.step is VerificationStep.AWAITING_SELFIE
    assert not orch.completion.done()


def test_reauthentication_through_step_pool(make_orch, store):
    _enroll(store)
    orch = make_orch()
    outcome = orch.submit_reauthentication(image(SELFIE_IMG)).result(timeout=5)
    assert outcome.ok
    assert _drain(orch.events) == [SessionEventKind.REAUTHENTICATED, SessionEventKind.COMPLETED]


def test_reauthentication_with_non_finite_embedding_never_matches(make_orch, store):
    _enroll(store)
    orch = make_orch(vectors={SELFIE_IMG: [math.nan, 0.0, 0.0, 0.0]})
    outcome = orch.reauthenticate(image(SELFIE_IMG))
    assert not outcome.ok
    assert isinstance(outcome.error, ExtractionError)
    assert outcome.failure_reason is AgeVerificationResult.SELFIE_INACCURATE
    assert orch.step is VerificationStep.AWAITING_SELFIE
    assert not orch.completion.done()


def test_release_drops_embeddings_and_pending_events(make_orch):
    orch = make_orch()
    orch.process_selfie(image(SELFIE_IMG))
    orch.process_document(image(1))
    assert orch.result().selfie_embedding is not None

    orch.release()
    res = orch.result()
    assert res.selfie_embedding is None
    assert res.id_profile_embedding is None
    assert res.selfie_id_match_prob == 0.85
    assert res.failure_reason is AgeVerificationResult.ABOVE_21
    assert orch.completion.result().selfie_embedding is None
    assert orch.events.empty()
    assert orch.step is VerificationStep.COMPLETE
