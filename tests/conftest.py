# tests/conftest.py
from concurrent.futures import ThreadPoolExecutor

import pytest

from kyc.application.biometric_store import BiometricStore
from kyc.domain.value_objects import ID_PROFILE_KEY, SELFIE_KEY

from .fakes import DIM, MemorySecretBackend


@pytest.fixture
def pool():
    executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="test_infer")
    yield executor
    executor.shutdown(wait=True)


@pytest.fixture
def step_pool():
    executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="test_step")
    yield executor
    executor.shutdown(wait=True)


@pytest.fixture
def backend():
    return MemorySecretBackend()


@pytest.fixture
def store(backend):
    return BiometricStore(backend, "test", {SELFIE_KEY: DIM, ID_PROFILE_KEY: DIM})
