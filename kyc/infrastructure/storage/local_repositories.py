# kyc/infrastructure/storage/local_repositories.py
import os
from typing import Optional
import cv2, numpy as np


def decode_image(data: bytes) -> Optional[np.ndarray]:
    if not data:
        return None
    arr = np.frombuffer(data, np.uint8)
    return cv2.imdecode(arr, cv2.IMREAD_COLOR)


def strip_file_scheme(uri: str) -> str:
    u = (uri or "").strip()
    if u.lower().startswith("file://"):
        u = u[7:]
    return os.path.normpath(u)


def load_local_image(path_str: str) -> Optional[np.ndarray]:
    path = strip_file_scheme(path_str)
    if not os.path.isfile(path):
        return None
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError:
        return None
    return decode_image(data)


class LocalImageRepository:
    def fetch_image(self, uri: str) -> Optional[np.ndarray]:
        return load_local_image(uri)
