# kyc/application/liveness_policy.py
from typing import Tuple

from ..domain.value_objects import LivenessLabel, LivenessVerdict

DEFAULT_LIVENESS_TH = 0.75
CONFIDENCE_MARGIN = 0.2

# Probabilidades geométricas (solo UI): rostro bien centrado en el óvalo guía
GEOMETRIC_REAL = (0.99, 0.01)
GEOMETRIC_FAKE = (0.01, 0.99)


def _clamp01(x: float) -> float:
    return max(0.0, min(1.0, float(x)))


def verdict_from_probabilities(real_prob: float, fake_prob: float,
                               threshold: float = DEFAULT_LIVENESS_TH) -> LivenessVerdict:
    """REAL si real >= umbral y real >= fake; en otro caso FAKE."""
    real_prob, fake_prob = _clamp01(real_prob), _clamp01(fake_prob)
    is_real = real_prob >= threshold and real_prob >= fake_prob
    return LivenessVerdict(
        label=LivenessLabel.REAL if is_real else LivenessLabel.FAKE,
        real_prob=real_prob,
        fake_prob=fake_prob,
    )


def geometric_probabilities(coverage: float, coverage_min: float = 0.50,
                            coverage_max: float = 0.75) -> Tuple[float, float]:
    """(real, fake) a partir de la cobertura del óvalo. Nunca participa en decisiones."""
    if coverage_min <= coverage <= coverage_max:
        return GEOMETRIC_REAL
    return GEOMETRIC_FAKE


def liveness_message(verdict: LivenessVerdict, geometric: Tuple[float, float],
                     threshold: float = DEFAULT_LIVENESS_TH,
                     margin: float = CONFIDENCE_MARGIN) -> str:
    """Mensaje para el usuario combinando el modelo y la cobertura del óvalo."""
    real, fake = verdict.real_prob, verdict.fake_prob
    geo_real, geo_fake = geometric
    probs = f"Probs: {real:.2f} {fake:.2f} {geo_real:.2f} {geo_fake:.2f}"
    if real > fake and geo_real > geo_fake and real > threshold:
        return f"Selfie is real. {probs}"
    if geo_fake > geo_real:
        return f"Selfie is printout/fake. {probs}"
    if fake > real and (fake - real) > margin:
        return f"Selfie is printout/fake. {probs}"
    if real > fake and (real - fake) > margin:
        return f"Selfie is real. {probs}"
    return "Selfie was not centered in green Oval"
