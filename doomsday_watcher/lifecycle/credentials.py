"""
Credential resolution for destructive actions.

Precedence: an explicit credential supplied with the request, then one the
caller used earlier in this session, then the watcher's stored default.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from ..errors import CredentialMissing

EXPLICIT = "explicit"
SESSION = "session"
STORED = "stored"


class SessionCredentialCache:
    """In-process TTL cache of credentials keyed by user id."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            credential, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[user_id]
                return None
            return credential

    def put(self, user_id: str, credential: str) -> None:
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
            self._entries[user_id] = (credential, now + self.ttl_seconds)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def forget(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)


@dataclass(frozen=True)
class ResolvedCredential:
    value: str
    source: str


class CredentialResolver:
    def __init__(self, cache: SessionCredentialCache):
        self.cache = cache

    def resolve(
        self,
        user_id: str,
        explicit: Optional[str] = None,
        stored: Optional[str] = None,
    ) -> ResolvedCredential:
        """Pick the credential to use for ``user_id``.

        Raises:
            CredentialMissing: nothing resolved; the client should prompt and retry
        """
        if explicit:
            return ResolvedCredential(explicit, EXPLICIT)
        cached = self.cache.get(user_id)
        if cached:
            return ResolvedCredential(cached, SESSION)
        if stored:
            return ResolvedCredential(stored, STORED)
        raise CredentialMissing(
            "A repository credential is required. Provide one or store a default on the watcher."
        )

    def remember(self, user_id: str, resolved: ResolvedCredential) -> None:
        """Cache an explicit credential after it was used successfully."""
        if resolved.source == EXPLICIT:
            self.cache.put(user_id, resolved.value)
