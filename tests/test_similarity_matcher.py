# tests/test_similarity_matcher.py
import numpy as np
import pytest

from kyc.application.similarity_matcher import SimilarityMatcher, cosine_similarity
from kyc.domain.errors import ExtractionError, LengthMismatchError, MatchError

from .fakes import CLOSE_VEC, SELFIE_VEC


def _compare(a, b, threshold=None):
    m = SimilarityMatcher()
    m.set_baseline(a)
    m.set_test(b)
    return m.compare(threshold)


def test_identical_vectors_score_one():
    r = _compare([0.3, 0.4, 0.5], [0.3, 0.4, 0.5])
    assert r.score == 1.0
    assert r.passed


def test_orthogonal_vectors_score_zero():
    r = _compare([1, 0, 0], [0, 1, 0])
    assert r.score == 0.0
    assert not r.passed


def test_opposite_vectors_score_minus_one():
    assert _compare([1, 2, 3], [-1, -2, -3]).score == -1.0


def test_score_is_rounded_to_two_decimals():
    assert _compare(SELFIE_VEC, CLOSE_VEC).score == 0.85


def test_zero_vector_never_passes_even_with_negative_threshold():
    r = _compare([0, 0, 0], [1, 2, 3], threshold=-1.0)
    assert r.score == 0.0
    assert not r.passed


def test_score_equal_to_threshold_passes():
    assert _compare(SELFIE_VEC, CLOSE_VEC, threshold=0.85).passed
    assert not _compare(SELFIE_VEC, CLOSE_VEC, threshold=0.86).passed


def test_default_threshold_applies_when_none_given():
    m = SimilarityMatcher(default_threshold=0.9)
    m.set_baseline(SELFIE_VEC)
    m.set_test(CLOSE_VEC)
    assert not m.compare().passed
    assert m.compare(0.8).passed


def test_length_mismatch_raises():
    with pytest.raises(LengthMismatchError) as info:
        _compare([1, 2, 3], [1, 2])
    assert info.value.baseline_len == 3
    assert info.value.test_len == 2


def test_missing_slot_raises_match_error():
    m = SimilarityMatcher()
    m.set_baseline([1, 2])
    with pytest.raises(MatchError):
        m.compare()


def test_clear_empties_both_slots():
    m = SimilarityMatcher()
    m.set_baseline([1, 2])
    m.set_test([1, 2])
    assert m.both_present()
    m.clear()
    assert not m.both_present()


def test_slots_are_not_aliased_to_caller_arrays():
    src = np.array([1.0, 0.0])
    m = SimilarityMatcher()
    m.set_baseline(src)
    m.set_test([1.0, 0.0])
    src[:] = [0.0, 1.0]
    assert m.compare().score == 1.0


def test_cosine_similarity_is_symmetric():
    a = np.array([0.2, 0.9, -0.4])
    b = np.array([0.5, 0.1, 0.3])
    assert cosine_similarity(a, b) == cosine_similarity(b, a)


def test_non_finite_vectors_never_match():
    nan = np.array([np.nan, 0.0, 0.0, 0.0])
    inf = np.array([np.inf, 1.0, 0.0, 0.0])
    base = np.array([1.0, 0.0, 0.0, 0.0])
    assert cosine_similarity(base, nan) == 0.0
    assert cosine_similarity(inf, base) == 0.0


def test_non_finite_embedding_is_rejected():
    m = SimilarityMatcher()
    m.set_baseline([1, 0, 0, 0])
    with pytest.raises(ExtractionError):
        m.set_test([float("nan"), 0, 0, 0])
    with pytest.raises(ExtractionError):
        m.set_test([float("inf"), 0, 0, 0])
    assert not m.both_present()


def test_huge_components_do_not_overflow():
    r = _compare([1e200, 1e200, 0, 0], [1e200, -1e200, 0, 0], threshold=0.8)
    assert r.score == 0.0
    assert not r.passed
    assert _compare([1e200, 0, 0, 0], [3e200, 0, 0, 0]).score == 1.0


def test_non_finite_slot_fails_even_with_permissive_threshold():
    m = SimilarityMatcher()
    m.set_baseline([1, 0, 0, 0])
    m.set_test([1, 0, 0, 0])
    # slot cargado sin pasar por set_test
    m._test = np.array([np.nan, 0.0, 0.0, 0.0])
    r = m.compare(-1.0)
    assert r.score == 0.0
    assert not r.passed
