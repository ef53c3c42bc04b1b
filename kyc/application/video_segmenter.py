# kyc/application/video_segmenter.py
import logging
from dataclasses import dataclass
from typing import List

import cv2
import numpy as np

from ..domain.errors import ExtractionError
from ..domain.interfaces import Recording
from ..domain.value_objects import VideoFragment

logger = logging.getLogger("kyc.video")

STILL_SIZE = (224, 224)


@dataclass(frozen=True)
class SegmenterSettings:
    time_slice: float = 3.0          # segundos entre fragmentos
    snippet_seconds: float = 5.0     # duración del audio por fragmento
    sample_rate: int = 16000
    max_duration: float = 120.0      # grabación acotada


class VideoSegmenter:
    """
    Parte una grabación en fragmentos: un frame + un snippet de audio cada `time_slice`
    segundos desde t=0, mientras t < duración y t <= max_duration.
    """
    def __init__(self, settings: SegmenterSettings = SegmenterSettings()):
        if settings.time_slice <= 0:
            raise ValueError("time_slice debe ser > 0")
        self.s = settings

    def boundaries(self, duration: float) -> List[float]:
        out: List[float] = []
        i = 0
        while True:
            t = i * self.s.time_slice
            if t >= duration or t > self.s.max_duration:
                break
            out.append(t)
            i += 1
        return out

    def _snippet(self, samples: np.ndarray, t: float) -> np.ndarray:
        n = int(round(self.s.snippet_seconds * self.s.sample_rate))
        start = int(round(t * self.s.sample_rate))
        chunk = samples[start:start + n].astype(np.float32, copy=True)
        if chunk.size < n:
            chunk = np.pad(chunk, (0, n - chunk.size))
        return chunk

    def segment(self, recording: Recording) -> List[VideoFragment]:
        samples, sr = recording.audio()
        if int(sr) != int(self.s.sample_rate):
            raise ExtractionError(f"Sample rate {sr} != esperado {self.s.sample_rate}")
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)

        duration = float(recording.duration)
        fragments: List[VideoFragment] = []
        skipped = 0
        for t in self.boundaries(duration):
            frame = recording.frame_at(t)
            if frame is None:
                skipped += 1
                logger.info({"event": "fragment_frame_unreadable", "time_offset": t})
                continue
            still = cv2.resize(frame, STILL_SIZE, interpolation=cv2.INTER_AREA)
            fragments.append(VideoFragment(
                index=len(fragments),
                time_offset=t,
                still_image=still,
                original_image=frame,
                audio_snippet=self._snippet(samples, t),
            ))

        logger.info({
            "event": "video_segmented",
            "duration": round(duration, 2),
            "fragments": len(fragments),
            "skipped": skipped,
            "time_slice": self.s.time_slice,
        })
        return fragments
