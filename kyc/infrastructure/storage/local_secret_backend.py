# kyc/infrastructure/storage/local_secret_backend.py
import os
import re
import logging
from typing import Optional

from ...domain.errors import BackendError

logger = logging.getLogger("kyc.store")

_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")
_SUFFIX = ".bin"


def _check_name(kind: str, value: str) -> str:
    if not value or value in (".", "..") or not _NAME_RE.match(value):
        raise BackendError(f"{kind} inválido: {value!r}")
    return value


def _shred(path: str) -> None:
    """Sobrescribe con ceros, fsync y borra."""
    size = os.path.getsize(path)
    with open(path, "r+b") as f:
        f.write(b"\x00" * size)
        f.flush()
        os.fsync(f.fileno())
    os.remove(path)


class LocalSecretBackend:
    """
    Un archivo por clave en <root>/<namespace>/<key>.bin.
    Directorios 0700, archivos 0600, escritura atómica (tmp + os.replace).
    """
    def __init__(self, root_dir: str):
        self.root_dir = os.path.abspath(root_dir)

    def _ns_dir(self, namespace: str) -> str:
        return os.path.join(self.root_dir, _check_name("namespace", namespace))

    def _path(self, namespace: str, key: str) -> str:
        return os.path.join(self._ns_dir(namespace), _check_name("key", key) + _SUFFIX)

    def get(self, namespace: str, key: str) -> Optional[bytes]:
        path = self._path(namespace, key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BackendError(f"No se pudo leer {key}: {e}") from e

    def put(self, namespace: str, key: str, data: bytes) -> None:
        path = self._path(namespace, key)
        tmp = f"{path}.tmp"
        try:
            os.makedirs(self._ns_dir(namespace), mode=0o700, exist_ok=True)
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as e:
            raise BackendError(f"No se pudo escribir {key}: {e}") from e

    def delete(self, namespace: str, key: str) -> None:
        path = self._path(namespace, key)
        try:
            _shred(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise BackendError(f"No se pudo borrar {key}: {e}") from e

    def purge(self, namespace: str) -> None:
        ns_dir = self._ns_dir(namespace)
        if not os.path.isdir(ns_dir):
            return
        try:
            for name in os.listdir(ns_dir):
                path = os.path.join(ns_dir, name)
                if os.path.isfile(path):
                    _shred(path)
            os.rmdir(ns_dir)
        except FileNotFoundError:
            return
        except OSError as e:
            raise BackendError(f"No se pudo purgar el namespace {namespace}: {e}") from e
        logger.info({"event": "local_namespace_purged", "namespace": namespace})
