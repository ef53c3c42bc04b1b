# kyc/application/clone_aggregator.py
import logging
from concurrent.futures import Executor, wait
from typing import Dict, Iterable, Sequence, Set, Tuple

from ..domain.interfaces import AudioEmbeddingExtractor, EmbeddingClassifier, ImageEmbeddingExtractor
from ..domain.value_objects import (
    CloneCategory, CloneChannel, CloneVerdict, VideoFragment, as_embedding,
)

logger = logging.getLogger("kyc.video")


def reduce_flags(fragments: Iterable[VideoFragment],
                 failed_channels: Iterable[Tuple[int, CloneChannel]] = ()) -> CloneVerdict:
    """Reduce fragmentos ya marcados a un veredicto; no re-ejecuta clasificación."""
    fragments = tuple(fragments)
    picture = frozenset(f.index for f in fragments if f.is_picture_cloned)
    audio = frozenset(f.index for f in fragments if f.is_audio_cloned)
    if picture and audio:
        category = CloneCategory.BOTH_CLONED
    elif picture:
        category = CloneCategory.PICTURE_CLONED
    elif audio:
        category = CloneCategory.AUDIO_CLONED
    else:
        category = CloneCategory.NOT_CLONED
    return CloneVerdict(
        category=category,
        picture_evidence=picture,
        audio_evidence=audio,
        failed_channels=frozenset(failed_channels),
        fragments=fragments,
    )


class CloneAggregator:
    """
    Clasifica imagen y audio de cada fragmento (2N ramas en el pool), espera a todas
    y reduce a NOT_CLONED | PICTURE_CLONED | AUDIO_CLONED | BOTH_CLONED.

    Una rama que falla cuenta como "no clonado" para ese canal y queda registrada en
    `failed_channels` del veredicto.
    """
    def __init__(
        self,
        image_extractor: ImageEmbeddingExtractor,
        picture_classifier: EmbeddingClassifier,
        audio_extractor: AudioEmbeddingExtractor,
        audio_classifier: EmbeddingClassifier,
        pool: Executor,
    ):
        self.image_extractor = image_extractor
        self.picture_classifier = picture_classifier
        self.audio_extractor = audio_extractor
        self.audio_classifier = audio_classifier
        self.pool = pool

    def _picture_cloned(self, fragment: VideoFragment) -> bool:
        emb = as_embedding(self.image_extractor.extract(fragment.still_image))
        return not self.picture_classifier.classify(emb).is_real

    def _audio_cloned(self, fragment: VideoFragment) -> bool:
        emb = as_embedding(self.audio_extractor.extract(fragment.audio_snippet))
        return not self.audio_classifier.classify(emb).is_real

    def evaluate(self, fragments: Sequence[VideoFragment]) -> CloneVerdict:
        futures = {}
        for f in fragments:
            futures[(f.index, CloneChannel.PICTURE)] = self.pool.submit(self._picture_cloned, f)
            futures[(f.index, CloneChannel.AUDIO)] = self.pool.submit(self._audio_cloned, f)
        wait(list(futures.values()))

        flags: Dict[Tuple[int, CloneChannel], bool] = {}
        failed: Set[Tuple[int, CloneChannel]] = set()
        for slot, fut in futures.items():
            try:
                flags[slot] = bool(fut.result())
            except Exception as e:
                # canal fallido: default conservador (no clonado), se reporta en failed_channels
                flags[slot] = False
                failed.add(slot)
                logger.warning({"event": "clone_branch_failed", "fragment": slot[0], "channel": slot[1].value,
                                "error": type(e).__name__, "detail": str(e)})

        flagged = [
            f.with_flags(
                picture=flags[(f.index, CloneChannel.PICTURE)],
                audio=flags[(f.index, CloneChannel.AUDIO)],
            )
            for f in fragments
        ]
        verdict = reduce_flags(flagged, failed)
        logger.info({
            "event": "clone_check",
            "fragments": len(flagged),
            "category": verdict.category.value,
            "picture_evidence": sorted(verdict.picture_evidence),
            "audio_evidence": sorted(verdict.audio_evidence),
            "failed_channels": len(failed),
        })
        return verdict
