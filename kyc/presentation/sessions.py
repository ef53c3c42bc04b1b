# kyc/presentation/sessions.py
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from ..application.verification_orchestrator import VerificationOrchestrator

logger = logging.getLogger("kyc.api")

OrchestratorFactory = Callable[[Optional[str]], VerificationOrchestrator]

DEFAULT_SESSION_TTL_S = 900.0


class SessionNotFound(KeyError):
    pass


class _Entry:
    __slots__ = ("orch", "lock", "last_seen")

    def __init__(self, orch: VerificationOrchestrator, now: float):
        self.orch = orch
        self.lock = threading.Lock()
        self.last_seen = now


class SessionRegistry:
    """
    Sesiones vivas en memoria; un lock por sesión serializa las peticiones HTTP.
    Una sesión sin actividad por más de `ttl_seconds` se descarta en el siguiente
    barrido (cada `create`), y al descartarla se liberan sus embeddings.
    """
    def __init__(self, factory: OrchestratorFactory, ttl_seconds: float = DEFAULT_SESSION_TTL_S,
                 clock: Callable[[], float] = time.monotonic):
        self._factory = factory
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._sessions: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def create(self) -> VerificationOrchestrator:
        self.sweep()
        orch = self._factory(None)
        with self._lock:
            self._sessions[orch.session_id] = _Entry(orch, self._clock())
        return orch

    def _touch(self, session_id: str) -> _Entry:
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                raise SessionNotFound(session_id)
            entry.last_seen = self._clock()
            return entry

    def get(self, session_id: str) -> VerificationOrchestrator:
        return self._touch(session_id).orch

    @contextmanager
    def locked(self, session_id: str) -> Iterator[VerificationOrchestrator]:
        entry = self._touch(session_id)
        with entry.lock:
            yield entry.orch

    def discard(self, session_id: str) -> VerificationOrchestrator:
        with self._lock:
            entry = self._sessions.pop(session_id, None)
        if entry is None:
            raise SessionNotFound(session_id)
        # espera a que termine el paso en curso, si lo hay
        with entry.lock:
            entry.orch.release()
        logger.info({"event": "session_discarded", "session": session_id})
        return entry.orch

    def sweep(self) -> List[str]:
        """Descarta las sesiones expiradas que no tienen un paso en curso. Devuelve sus ids."""
        now = self._clock()
        expired: List[_Entry] = []
        with self._lock:
            for sid, entry in list(self._sessions.items()):
                if now - entry.last_seen <= self.ttl_seconds:
                    continue
                # una sesión procesando un paso se revisa en el próximo barrido
                if not entry.lock.acquire(blocking=False):
                    continue
                del self._sessions[sid]
                expired.append(entry)
        for entry in expired:
            try:
                entry.orch.release()
            finally:
                entry.lock.release()
        if expired:
            logger.info({"event": "sessions_expired", "sessions": [e.orch.session_id for e in expired]})
        return [e.orch.session_id for e in expired]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
