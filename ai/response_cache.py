"""In-process TTL cache for successful AI responses."""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 3600


@dataclass
class CachedResponse:
    content: str
    model: str
    provider: str
    stored_at: float


def cache_key(model: str, system_prompt: str, user_prompt: str) -> str:
    digest = hashlib.sha256()
    for part in (model, system_prompt, user_prompt):
        digest.update(part.encode("utf-8"))
        digest.update(b"\x00")
    return digest.hexdigest()


class ResponseCache:
    """
    Successful responses keyed by (model, prompt).

    One instance can be shared by several scorers to reuse answers across
    the runs of a day.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CachedResponse] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CachedResponse]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at > self.ttl_seconds:
                del self._entries[key]
                logger.debug(f"Cache entry expired: {key[:8]}...")
                return None
            return entry

    def put(self, key: str, content: str, model: str, provider: str) -> None:
        with self._lock:
            self._entries[key] = CachedResponse(
                content=content,
                model=model,
                provider=provider,
                stored_at=self._clock(),
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
