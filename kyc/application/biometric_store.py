# kyc/application/biometric_store.py
import json
import math
import logging
from typing import Dict, Mapping, Optional

import numpy as np

from ..domain.errors import EncodingError, DecodingError, ExtractionError, StorageError
from ..domain.interfaces import SecretBackend
from ..domain.value_objects import Embedding, as_embedding

logger = logging.getLogger("kyc.store")


class BiometricStore:
    """
    Plantillas biométricas (embeddings) en un namespace privado.

    - Formato persistido: arreglo JSON de floats, una entrada por clave.
    - `retrieve` devuelve None si la clave no existe; datos corruptos -> DecodingError.
    - Escrituras last-writer-wins, sin locking interno: quien llama serializa
      escrituras sobre la misma clave.
    """
    def __init__(
        self,
        backend: SecretBackend,
        namespace: str,
        expected_lengths: Optional[Mapping[str, int]] = None,
    ):
        self.backend = backend
        self.namespace = namespace
        self.expected_lengths: Dict[str, int] = dict(expected_lengths or {})

    def _encode(self, key: str, embedding) -> bytes:
        try:
            arr = np.asarray(embedding, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError) as e:
            raise EncodingError(f"{key}: embedding no numérico") from e
        if arr.size == 0:
            raise EncodingError(f"{key}: embedding vacío")
        values = [float(v) for v in arr]
        if not all(math.isfinite(v) for v in values):
            raise EncodingError(f"{key}: embedding con valores no finitos")
        return json.dumps(values, allow_nan=False).encode("utf-8")

    def _decode(self, key: str, raw: bytes) -> Embedding:
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecodingError(f"{key}: contenido ilegible") from e
        if not isinstance(data, list) or not data:
            raise DecodingError(f"{key}: se esperaba un arreglo no vacío")
        if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in data):
            raise DecodingError(f"{key}: el arreglo contiene valores no numéricos")
        try:
            return as_embedding(data, self.expected_lengths.get(key))
        except ExtractionError as e:
            raise DecodingError(f"{key}: {e}") from e

    def store(self, key: str, embedding) -> None:
        payload = self._encode(key, embedding)
        self.backend.put(self.namespace, key, payload)
        logger.info({"event": "biometric_stored", "namespace": self.namespace, "key": key,
                     "length": len(json.loads(payload))})

    def retrieve(self, key: str) -> Optional[Embedding]:
        raw = self.backend.get(self.namespace, key)
        if raw is None:
            return None
        return self._decode(key, raw)

    def delete(self, key: str) -> None:
        self.backend.delete(self.namespace, key)
        logger.info({"event": "biometric_deleted", "namespace": self.namespace, "key": key})

    def delete_all(self) -> None:
        self.backend.purge(self.namespace)
        logger.info({"event": "biometric_namespace_purged", "namespace": self.namespace})

    def exists_both(self, key_a: str, key_b: str) -> bool:
        for key in (key_a, key_b):
            try:
                if self.retrieve(key) is None:
                    return False
            except StorageError as e:
                logger.warning({"event": "biometric_lookup_error", "key": key, "error": str(e)})
                return False
        return True
