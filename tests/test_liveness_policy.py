# tests/test_liveness_policy.py
from kyc.application.liveness_policy import (
    GEOMETRIC_FAKE, GEOMETRIC_REAL, geometric_probabilities, liveness_message, verdict_from_probabilities,
)
from kyc.domain.value_objects import LivenessLabel


def test_verdict_requires_threshold_and_majority():
    assert verdict_from_probabilities(0.95, 0.05).is_real
    assert verdict_from_probabilities(0.75, 0.25).is_real
    assert not verdict_from_probabilities(0.74, 0.26).is_real
    assert verdict_from_probabilities(0.8, 0.9).label is LivenessLabel.FAKE


def test_verdict_clamps_probabilities():
    v = verdict_from_probabilities(1.3, -0.2)
    assert v.real_prob == 1.0
    assert v.fake_prob == 0.0


def test_geometric_probabilities_follow_coverage_window():
    assert geometric_probabilities(0.5) == GEOMETRIC_REAL
    assert geometric_probabilities(0.75) == GEOMETRIC_REAL
    assert geometric_probabilities(0.49) == GEOMETRIC_FAKE
    assert geometric_probabilities(0.9) == GEOMETRIC_FAKE


def test_messages():
    real = verdict_from_probabilities(0.95, 0.05)
    assert liveness_message(real, GEOMETRIC_REAL) == "Selfie is real. Probs: 0.95 0.05 0.99 0.01"
    assert liveness_message(real, GEOMETRIC_FAKE).startswith("Selfie is printout/fake.")

    fake = verdict_from_probabilities(0.1, 0.9)
    assert liveness_message(fake, GEOMETRIC_REAL).startswith("Selfie is printout/fake.")

    undecided = verdict_from_probabilities(0.5, 0.5)
    assert liveness_message(undecided, GEOMETRIC_REAL) == "Selfie was not centered in green Oval"
