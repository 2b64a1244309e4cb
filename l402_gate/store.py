"""
In-memory, time-expiring store for L402 sessions and cached challenges.

Sessions are keyed by payment hash; cached challenges by route. Both share
one TTL measured from creation. Expired entries are dropped when read and
swept in bulk every `check_period` seconds.

One store is owned by one gate. Nothing here is process-global.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .lightning.base import Invoice

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600
DEFAULT_CHECK_PERIOD = 600


@dataclass
class Session:
    """Server-side record of an issued challenge."""
    macaroon: str
    invoice: Invoice
    secret_key: bytes
    created_at: float  # seconds since epoch


@dataclass
class CachedChallenge:
    """Last challenge served for a route, for repeated polling."""
    www_authenticate: str
    payment_hash: str
    macaroon: str
    invoice: Invoice
    created_at: float
    expires_at: int = 0   # macaroon deadline, epoch ms; 0 = none


class SessionStore:
    """TTL-bounded cache of sessions (by payment hash) and challenges (by route)."""

    def __init__(
        self,
        ttl: int = DEFAULT_TTL,
        check_period: int = DEFAULT_CHECK_PERIOD,
        clock: Callable[[], float] = time.time,
    ):
        if ttl <= 0:
            raise ValueError("Session TTL must be positive")
        self.ttl = ttl
        self.check_period = check_period
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, Tuple[float, Session]] = {}
        self._challenges: Dict[str, Tuple[float, CachedChallenge]] = {}
        self._last_sweep = clock()
        self._hits = 0
        self._misses = 0

    def _expired(self, created_at: float, now: float) -> bool:
        return now - created_at >= self.ttl

    def _maybe_sweep(self, now: float) -> None:
        # Caller holds the lock
        if now - self._last_sweep < self.check_period:
            return
        self._last_sweep = now
        removed = self._purge(now)
        if removed:
            logger.debug("Evicted %d expired L402 cache entries", removed)

    def _purge(self, now: float) -> int:
        removed = 0
        for table in (self._sessions, self._challenges):
            stale = [k for k, (created, _) in table.items() if self._expired(created, now)]
            for key in stale:
                del table[key]
            removed += len(stale)
        return removed

    def _get(self, table: Dict[str, Tuple[float, Any]], key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            self._maybe_sweep(now)
            entry = table.get(key)
            if entry is None:
                self._misses += 1
                return None
            created, value = entry
            if self._expired(created, now):
                del table[key]
                self._misses += 1
                return None
            self._hits += 1
            return value

    # --- Sessions ---

    def set_session(self, payment_hash: str, session: Session) -> None:
        """Store a session, replacing any existing one for the hash."""
        now = self._clock()
        with self._lock:
            self._maybe_sweep(now)
            self._sessions[payment_hash] = (now, session)

    def get_session(self, payment_hash: str) -> Optional[Session]:
        return self._get(self._sessions, payment_hash)

    def remove_session(self, payment_hash: str) -> None:
        with self._lock:
            self._sessions.pop(payment_hash, None)

    # --- Route challenges ---

    def set_challenge(self, route: str, challenge: CachedChallenge) -> None:
        now = self._clock()
        with self._lock:
            self._maybe_sweep(now)
            self._challenges[route] = (now, challenge)

    def get_challenge(self, route: str) -> Optional[CachedChallenge]:
        return self._get(self._challenges, route)

    def discard_challenges(self, payment_hash: str) -> int:
        """Forget every cached route challenge for a payment hash. Returns how many."""
        with self._lock:
            stale = [
                route for route, (_, challenge) in self._challenges.items()
                if challenge.payment_hash == payment_hash
            ]
            for route in stale:
                del self._challenges[route]
            return len(stale)

    # --- Maintenance ---

    def purge_expired(self) -> int:
        """Drop every expired entry now. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            self._last_sweep = now
            return self._purge(now)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._challenges.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "sessions": len(self._sessions),
                "challenges": len(self._challenges),
                "hits": self._hits,
                "misses": self._misses,
            }
