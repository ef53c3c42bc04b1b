# kyc/infrastructure/media/recording_loader.py
import os
import shutil
import logging
import subprocess
import tempfile
import threading
from typing import Optional, Tuple

import cv2
import numpy as np

from ...domain.errors import ExtractionError

logger = logging.getLogger("kyc.video")


def extract_audio(video_path: str, sample_rate: int = 16000) -> Tuple[np.ndarray, int]:
    """Audio mono a `sample_rate` vía ffmpeg -> wav temporal -> librosa."""
    import librosa

    if shutil.which("ffmpeg") is None:
        raise ExtractionError("ffmpeg no está disponible en el PATH")
    with tempfile.TemporaryDirectory(prefix="kyc_audio_") as tmpdir:
        wav_path = os.path.join(tmpdir, "audio.wav")
        cmd = ["ffmpeg", "-y", "-i", video_path, "-vn", "-ac", "1", "-ar", str(sample_rate), wav_path]
        proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        if proc.returncode != 0 or not os.path.exists(wav_path):
            # sin pista de audio: ffmpeg falla con "does not contain any stream"
            stderr = proc.stderr.decode("utf-8", errors="ignore")[-300:]
            if "does not contain any stream" in stderr or "Output file is empty" in stderr:
                return np.zeros(0, dtype=np.float32), sample_rate
            raise ExtractionError(f"Extracción de audio fallida: {stderr.strip()}")
        audio, sr = librosa.load(wav_path, sr=sample_rate, mono=True)
    return np.asarray(audio, dtype=np.float32), int(sr)


class OpenCVRecording:
    """Grabación local: frames con cv2.VideoCapture, audio extraído una sola vez."""
    def __init__(self, path: str, sample_rate: int = 16000):
        self.path = path
        self.sample_rate = sample_rate
        self._cap = cv2.VideoCapture(path)
        if not self._cap.isOpened():
            raise ExtractionError(f"No se pudo abrir el video: {path}")
        fps = float(self._cap.get(cv2.CAP_PROP_FPS) or 0.0)
        frames = float(self._cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0)
        self.fps = fps
        self._duration = frames / fps if fps > 0 else 0.0
        self._audio: Optional[Tuple[np.ndarray, int]] = None
        self._lock = threading.Lock()

    @property
    def duration(self) -> float:
        return self._duration

    def frame_at(self, seconds: float) -> Optional[np.ndarray]:
        with self._lock:
            self._cap.set(cv2.CAP_PROP_POS_MSEC, float(seconds) * 1000.0)
            ok, frame = self._cap.read()
        return frame if ok and frame is not None else None

    def audio(self) -> Tuple[np.ndarray, int]:
        if self._audio is None:
            self._audio = extract_audio(self.path, self.sample_rate)
        return self._audio

    def close(self) -> None:
        self._cap.release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class OpenCVRecordingLoader:
    def __init__(self, sample_rate: int = 16000):
        self.sample_rate = sample_rate

    def load(self, path: str) -> OpenCVRecording:
        rec = OpenCVRecording(path, self.sample_rate)
        logger.info({"event": "recording_opened", "path": os.path.basename(path),
                     "duration": round(rec.duration, 2), "fps": round(rec.fps, 2)})
        return rec
