# kyc/infrastructure/storage/http_repository.py
import logging
from typing import Optional
import requests, numpy as np

from .local_repositories import decode_image

logger = logging.getLogger("kyc.api")


def is_http_uri(uri: str) -> bool:
    return (uri or "").strip().lower().startswith(("http://", "https://"))


def http_get_bytes(url: str, timeout: float = 10) -> Optional[bytes]:
    try:
        r = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        logger.info({"event": "http_fetch_error", "url": url, "error": str(e)})
        return None
    if r.status_code != 200:
        logger.info({"event": "http_fetch_status", "url": url, "status": r.status_code})
        return None
    return r.content


class HttpImageRepository:
    def fetch_image(self, url: str) -> Optional[np.ndarray]:
        return decode_image(http_get_bytes(url) or b"")
