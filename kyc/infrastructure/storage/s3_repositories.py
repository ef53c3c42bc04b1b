# kyc/infrastructure/storage/s3_repositories.py
from __future__ import annotations
from typing import Optional, Tuple
import os, re, shutil, tempfile, logging
import boto3
import numpy as np
from botocore.exceptions import BotoCoreError, ClientError

from .local_repositories import LocalImageRepository, decode_image, strip_file_scheme
from .http_repository import HttpImageRepository, http_get_bytes, is_http_uri

logger = logging.getLogger("kyc.api")

# ---------------------------
# Utilidades para URIs de S3
# ---------------------------
def is_s3_uri(uri: str) -> bool:
    u = (uri or "").strip().lower()
    return u.startswith("s3://") or ".amazonaws.com/" in u

def parse_s3_uri(uri: str) -> Tuple[str, str]:
    """
    Acepta formatos:
      - s3://bucket/key
      - https://<bucket>.s3.<region>.amazonaws.com/key
      - https://s3.<region>.amazonaws.com/<bucket>/key
    Retorna (bucket, key) sin '/' inicial.
    """
    u = (uri or "").strip()

    if u.startswith("s3://"):
        bucket, _, key = u[5:].partition("/")
        return bucket, key.lstrip("/")

    m = re.match(r"https?://([^./]+)\.s3[.-][^/]+\.amazonaws\.com/(.+)", u)
    if m:
        return m.group(1), m.group(2).lstrip("/")

    m = re.match(r"https?://s3[.-][^/]+\.amazonaws\.com/([^/]+)/(.+)", u)
    if m:
        return m.group(1), m.group(2).lstrip("/")

    raise ValueError(f"URI S3 no reconocida: {uri}")

_s3_client = None
def s3_client():
    global _s3_client
    if _s3_client is None:
        _s3_client = boto3.client("s3", region_name=os.getenv("AWS_REGION"))
    return _s3_client

def get_s3_bytes(uri: str) -> Optional[bytes]:
    bucket, key = parse_s3_uri(uri)
    try:
        obj = s3_client().get_object(Bucket=bucket, Key=key)
        return obj["Body"].read()
    except (ClientError, BotoCoreError) as e:
        logger.info({"event": "s3_fetch_error", "bucket": bucket, "key": key, "error": str(e)})
        return None


class S3ImageRepository:
    def fetch_image(self, uri: str) -> Optional[np.ndarray]:
        return decode_image(get_s3_bytes(uri) or b"")

# -------------------------------------------------
# Repo "Smart" que acepta LOCAL, S3 y HTTP transparentes
# -------------------------------------------------
class SmartImageRepository:
    def __init__(self):
        self._local = LocalImageRepository()
        self._s3 = S3ImageRepository()
        self._http = HttpImageRepository()

    def fetch_image(self, uri: str) -> Optional[np.ndarray]:
        if is_s3_uri(uri):
            return self._s3.fetch_image(uri)
        if is_http_uri(uri):
            return self._http.fetch_image(uri)
        return self._local.fetch_image(uri)


class LocalCopy:
    """
    Context manager: deja el recurso (local, S3 o HTTP) como archivo local legible por
    OpenCV/ffmpeg. Los temporales se borran al salir; las rutas locales no se tocan.
    """
    def __init__(self, uri: str):
        self.uri = uri
        self.path: Optional[str] = None
        self._tmp_dir: Optional[str] = None

    def __enter__(self) -> Optional[str]:
        if not (is_s3_uri(self.uri) or is_http_uri(self.uri)):
            path = strip_file_scheme(self.uri)
            self.path = path if os.path.isfile(path) else None
            return self.path
        data = get_s3_bytes(self.uri) if is_s3_uri(self.uri) else http_get_bytes(self.uri, timeout=60)
        if not data:
            return None
        self._tmp_dir = tempfile.mkdtemp(prefix="kyc_media_")
        ext = os.path.splitext(self.uri.split("?", 1)[0])[1] or ".mp4"
        self.path = os.path.join(self._tmp_dir, f"recording{ext}")
        with open(self.path, "wb") as f:
            f.write(data)
        return self.path

    def __exit__(self, exc_type, exc, tb):
        if self._tmp_dir:
            shutil.rmtree(self._tmp_dir, ignore_errors=True)
        return False
