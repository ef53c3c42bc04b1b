# kyc/application/similarity_matcher.py
import math
from typing import Optional
import numpy as np
import logging

from ..domain.errors import MatchError, LengthMismatchError
from ..domain.value_objects import Embedding, SimilarityScore, as_embedding

logger = logging.getLogger("kyc.verify")

DEFAULT_MATCH_THRESHOLD = 0.70


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Coseno redondeado a 2 decimales.
    Magnitud cero o valores no finitos en cualquier lado -> 0.0 (nunca match).
    """
    if a.shape != b.shape:
        raise LengthMismatchError(a.size, b.size)
    if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
        return 0.0
    # el coseno no depende de la escala; reescalar evita que la norma desborde a inf
    sa = float(np.max(np.abs(a)))
    sb = float(np.max(np.abs(b)))
    if sa == 0.0 or sb == 0.0:
        return 0.0
    a = a / sa
    b = b / sb
    na = float(np.linalg.norm(a))
    nb = float(np.linalg.norm(b))
    if not (math.isfinite(na) and math.isfinite(nb)) or na == 0.0 or nb == 0.0:
        return 0.0
    score = float(np.dot(a, b)) / (na * nb)
    if not math.isfinite(score):
        return 0.0
    # error de punto flotante puede dejarlo apenas fuera de [-1, 1]
    score = max(-1.0, min(1.0, score))
    return round(score, 2)


class SimilarityMatcher:
    """
    Comparador con dos slots (baseline y test). Cada `compare` consume ambos slots;
    el llamador limpia con `clear()` entre comparaciones independientes.
    No es thread-safe: una instancia por rama concurrente.
    """
    def __init__(self, default_threshold: float = DEFAULT_MATCH_THRESHOLD):
        self.default_threshold = float(default_threshold)
        self._baseline: Optional[Embedding] = None
        self._test: Optional[Embedding] = None

    def set_baseline(self, embedding) -> None:
        self._baseline = as_embedding(embedding)

    def set_test(self, embedding) -> None:
        self._test = as_embedding(embedding)

    def both_present(self) -> bool:
        return self._baseline is not None and self._test is not None

    def clear(self) -> None:
        self._baseline = None
        self._test = None

    def compare(self, threshold: Optional[float] = None) -> SimilarityScore:
        if not self.both_present():
            raise MatchError("Faltan embeddings en el comparador (baseline/test)")
        th = self.default_threshold if threshold is None else float(threshold)
        a, b = self._baseline, self._test
        if a.size != b.size:
            raise LengthMismatchError(a.size, b.size)

        score = cosine_similarity(a, b)
        # con magnitud cero o valores no finitos nunca hay match, aunque el umbral sea <= 0
        degenerate = (
            not np.any(a) or not np.any(b)
            or not np.all(np.isfinite(a)) or not np.all(np.isfinite(b))
        )
        passed = (not degenerate) and score >= th
        logger.debug({"event": "similarity_compare", "score": score, "threshold": th, "passed": passed})
        return SimilarityScore(score=score, passed=passed)
