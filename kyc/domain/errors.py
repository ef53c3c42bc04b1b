# kyc/domain/errors.py
from __future__ import annotations


class KYCError(Exception):
    """Base de todos los errores del núcleo de verificación."""


class ExtractionError(KYCError):
    """Entrada con forma inválida para el extractor de embeddings."""


class ModelError(KYCError):
    """Fallo del backend de inferencia."""


class ReadError(KYCError):
    """No se pudo leer el documento de identidad."""


class StorageError(KYCError):
    pass


class EncodingError(StorageError):
    pass


class DecodingError(StorageError):
    pass


class BackendError(StorageError):
    pass


class MatchError(KYCError):
    """Vectores degenerados o slots vacíos en el comparador."""


class LengthMismatchError(MatchError):
    def __init__(self, baseline_len: int, test_len: int):
        super().__init__(f"Embedding length mismatch: baseline={baseline_len} test={test_len}")
        self.baseline_len = baseline_len
        self.test_len = test_len


class FlowError(KYCError):
    """Operación invocada fuera del orden de la máquina de estados."""
