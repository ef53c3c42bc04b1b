# kyc/application/executors.py
import os
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

logger = logging.getLogger("kyc.verify")


def default_worker_count() -> int:
    return max(1, os.cpu_count() or 1)


def create_worker_pool(max_workers: Optional[int] = None, name: str = "kyc_infer") -> ThreadPoolExecutor:
    """Pool acotado para inferencia bloqueante (extractores, clasificadores, lecturas del store)."""
    workers = max_workers if max_workers and max_workers > 0 else default_worker_count()
    logger.info({"event": "worker_pool_created", "name": name, "max_workers": workers})
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix=name)
