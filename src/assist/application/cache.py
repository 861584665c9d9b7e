"""
Dry-run preview cache.

Process-local, bounded TTL map from a request fingerprint to a previously
generated assist payload. Lost on restart; the comment marker is the
durable dedupe tier.
"""

import copy
import hashlib
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from src.assist.domain import TicketStateSignature


def preview_key(
    tenant_id: str,
    ticket_id: str,
    top_k: int,
    tone: str,
    signature: TicketStateSignature,
    query: Optional[str] = None,
) -> str:
    """Deterministic fingerprint of an assist request and the ticket state."""
    raw = (
        f"{tenant_id}|{ticket_id}|topK={top_k}|tone={tone}"
        f"|cc={signature.comment_count}|ncm={signature.newest_comment_ms}"
        f"|q={query or ''}"
    )
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class PreviewCache:
    """
    Bounded TTL cache guarded by a lock.

    Once past ``max_items``, expired entries are dropped first, then the
    entries closest to expiry.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_items: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_items = max_items
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            return copy.deepcopy(value)

    def set(self, key: str, value: Dict[str, Any]) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = (now + self.ttl_seconds, copy.deepcopy(value))
            self._evict(now)

    def _evict(self, now: float) -> None:
        if len(self._entries) <= self.max_items:
            return
        for key in [k for k, (exp, _) in self._entries.items() if exp <= now]:
            del self._entries[key]
        overflow = len(self._entries) - self.max_items
        if overflow <= 0:
            return
        oldest = sorted(self._entries.items(), key=lambda item: item[1][0])[:overflow]
        for key, _ in oldest:
            del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
