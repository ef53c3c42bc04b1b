# kyc/infrastructure/ml/keras_models.py
import os, threading, logging
from typing import Dict, Optional, Tuple
import numpy as np
import cv2

from ...application.liveness_policy import DEFAULT_LIVENESS_TH, verdict_from_probabilities
from ...domain.errors import ExtractionError, ModelError
from ...domain.value_objects import Embedding, LivenessVerdict, as_embedding

logger = logging.getLogger("kyc.verify")

_models: Dict[str, object] = {}
_model_lock = threading.Lock()

# Normalización CLIP (RGB)
CLIP_MEAN = np.array([0.48145466, 0.4578275, 0.40821073], dtype=np.float32)
CLIP_STD = np.array([0.26862954, 0.26130258, 0.27577711], dtype=np.float32)


def _load_tf_model(path: str):
    # tensorflow es pesado: solo se importa al cargar el primer modelo
    import tensorflow as tf
    try:
        return tf.keras.models.load_model(path, compile=False)
    except (ValueError, TypeError) as e:
        msg = str(e)
        # Parche puntual para modelos con DepthwiseConv2D(groups=..)
        if "DepthwiseConv2D" in msg and "Unrecognized keyword" in msg and "groups" in msg:
            class DepthwiseConv2DPatched(tf.keras.layers.DepthwiseConv2D):
                @classmethod
                def from_config(cls, cfg):
                    cfg.pop("groups", None)
                    return super().from_config(cfg)
            return tf.keras.models.load_model(
                path, compile=False, custom_objects={"DepthwiseConv2D": DepthwiseConv2DPatched}
            )
        raise


def get_model(path: str):
    """Carga perezosa y cacheada por ruta (double-checked locking)."""
    model = _models.get(path)
    if model is None:
        with _model_lock:
            model = _models.get(path)
            if model is None:
                if not path or not os.path.exists(path):
                    raise ModelError(f"Archivo de modelo no encontrado: {path!r}")
                logger.info({"event": "keras_model_loading", "path": path})
                try:
                    model = _load_tf_model(path)
                except Exception as e:
                    raise ModelError(f"No se pudo cargar el modelo {path}: {e}") from e
                logger.info({
                    "event": "keras_model_loaded",
                    "path": path,
                    "input_shape": str(getattr(model, "input_shape", None)),
                    "output_shape": str(getattr(model, "output_shape", None)),
                })
                _models[path] = model
    return model


def _predict(path: str, batch: np.ndarray) -> np.ndarray:
    model = get_model(path)
    try:
        y = model.predict(batch, verbose=0)
    except Exception as e:
        raise ModelError(f"Error en inferencia ({os.path.basename(path)}): {e}") from e
    return np.asarray(y, dtype=np.float32)


class KerasImageEmbeddingExtractor:
    """
    - Entrada: imagen BGR (OpenCV)
    - Preproc: BGR->RGB, resize 224x224, [0,1], normalización CLIP
    - Salida: embedding 1-D de `embedding_dim`
    """
    def __init__(self, model_path: str, embedding_dim: Optional[int] = 512, size: Tuple[int, int] = (224, 224)):
        self.model_path = model_path
        self.embedding_dim = embedding_dim
        self.size = size

    def _prep(self, img_bgr: np.ndarray) -> np.ndarray:
        if img_bgr is None or not isinstance(img_bgr, np.ndarray) or img_bgr.ndim != 3 or img_bgr.shape[2] != 3:
            raise ExtractionError("Se esperaba una imagen BGR HxWx3")
        if img_bgr.shape[0] == 0 or img_bgr.shape[1] == 0:
            raise ExtractionError("Imagen vacía")
        img = cv2.cvtColor(img_bgr, cv2.COLOR_BGR2RGB)
        img = cv2.resize(img, self.size, interpolation=cv2.INTER_AREA)
        img = img.astype("float32") / 255.0
        img = (img - CLIP_MEAN) / CLIP_STD
        return np.expand_dims(img, axis=0)  # (1,H,W,3)

    def extract(self, img_bgr: np.ndarray) -> Embedding:
        y = _predict(self.model_path, self._prep(img_bgr))
        return as_embedding(y.reshape(-1), self.embedding_dim)


class KerasAudioEmbeddingExtractor:
    """Entrada: muestras mono float32 (se recorta/rellena a `num_samples`). Salida: embedding de voz."""
    def __init__(self, model_path: str, embedding_dim: Optional[int] = 192, num_samples: int = 5 * 16000):
        self.model_path = model_path
        self.embedding_dim = embedding_dim
        self.num_samples = int(num_samples)

    def _prep(self, samples: np.ndarray) -> np.ndarray:
        if samples is None:
            raise ExtractionError("Snippet de audio vacío")
        x = np.asarray(samples, dtype=np.float32)
        if x.ndim != 1 or x.size == 0:
            raise ExtractionError("Se esperaba audio mono 1-D no vacío")
        if not np.all(np.isfinite(x)):
            raise ExtractionError("Audio con valores no finitos")
        x = x[: self.num_samples]
        if x.size < self.num_samples:
            x = np.pad(x, (0, self.num_samples - x.size))
        return np.expand_dims(x, axis=0)  # (1,N)

    def extract(self, samples: np.ndarray) -> Embedding:
        y = _predict(self.model_path, self._prep(samples))
        return as_embedding(y.reshape(-1), self.embedding_dim)


class KerasProbabilityClassifier:
    """
    Clasificador real/fake sobre un embedding.
    Salida del modelo: escalar (probabilidad de la clase 1) o vector [p0, p1].
    `real_index` indica qué clase es "real".
    """
    def __init__(self, model_path: str, threshold: float = DEFAULT_LIVENESS_TH,
                 input_dim: Optional[int] = None, real_index: int = 0):
        self.model_path = model_path
        self.threshold = float(threshold)
        self.input_dim = input_dim
        self.real_index = int(real_index)

    def classify(self, embedding: Embedding) -> LivenessVerdict:
        try:
            x = as_embedding(embedding, self.input_dim)
        except ExtractionError as e:
            raise ModelError(f"Entrada inválida para el clasificador: {e}") from e
        y = _predict(self.model_path, x.astype(np.float32).reshape(1, -1)).squeeze()
        if np.ndim(y) == 0:
            probs = np.array([1.0 - float(y), float(y)], dtype=np.float32)
        else:
            probs = np.asarray(y, dtype=np.float32).reshape(-1)
        if probs.size != 2:
            raise ModelError(f"Se esperaban 2 probabilidades, el modelo devolvió {probs.size}")
        real = float(probs[self.real_index])
        fake = float(probs[1 - self.real_index])
        return verdict_from_probabilities(real, fake, self.threshold)
