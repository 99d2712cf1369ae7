"""
In-process cache for resolved capability sets, plus the invalidation
coordinator that mutation endpoints call.

WARNING: This is single-process only. Invalidation reaches every resolver
sharing this cache object, not other server instances; a stale entry on
another instance lives until its TTL elapses.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Hashable, Optional

from loguru import logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CacheEntry:
    key: Hashable
    value: Any
    filled_at: datetime
    valid: bool = True


class CapabilityCache:
    """
    TTL cache keyed by principal id (or role id).

    Every key carries a generation counter. Invalidation bumps it, and a fill
    that started under an older generation is discarded on `put`, so a fill
    racing with an invalidation can never resurrect stale data.
    """

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], datetime] = _utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._generations: Dict[Hashable, int] = {}
        self._global_generation = 0
        self.hits = 0
        self.misses = 0
        self.lock = threading.Lock()

    def _is_expired(self, entry: CacheEntry) -> bool:
        if self.ttl.total_seconds() <= 0:
            return False
        return self.clock() - entry.filled_at >= self.ttl

    def generation(self, key: Hashable) -> tuple:
        """Opaque token to hand back to `put`"""
        with self.lock:
            return (self._global_generation, self._generations.get(key, 0))

    def get(self, key: Hashable) -> Optional[Any]:
        with self.lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if not entry.valid or self._is_expired(entry):
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def put(self, key: Hashable, value: Any, generation: Optional[tuple] = None) -> bool:
        """Store a value; returns False when the fill was invalidated meanwhile"""
        with self.lock:
            current = (self._global_generation, self._generations.get(key, 0))
            if generation is not None and generation != current:
                logger.debug(f"[CACHE] Discarding stale fill for {key}")
                return False
            self._entries[key] = CacheEntry(key=key, value=value, filled_at=self.clock())
            return True

    def invalidate(self, key: Hashable):
        with self.lock:
            entry = self._entries.pop(key, None)
            if entry is not None:
                entry.valid = False
            self._generations[key] = self._generations.get(key, 0) + 1

    def invalidate_all(self):
        with self.lock:
            for entry in self._entries.values():
                entry.valid = False
            self._entries.clear()
            self._generations.clear()
            self._global_generation += 1

    def cleanup_expired(self) -> int:
        """Drop expired entries; returns how many were removed"""
        with self.lock:
            expired = [k for k, e in self._entries.items() if self._is_expired(e)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __len__(self):
        with self.lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "entries": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "ttl_seconds": int(self.ttl.total_seconds()),
            }


class CacheInvalidationCoordinator:
    """
    Explicit invalidation hooks for every mutation that affects access.

    Mutation endpoints call exactly one hook after their transaction commits;
    the next `resolve` that starts afterwards sees fresh data.
    """

    def __init__(self, resolver, workflow_gate=None):
        self.resolver = resolver
        self.workflow_gate = workflow_gate

    def user_roles_changed(self, user_id: str):
        logger.info(f"[INVALIDATE] Role assignments changed for user {user_id}")
        self.resolver.invalidate(user_id)

    def role_capabilities_changed(self, role_id: str):
        # Role membership can change concurrently, so drop every user entry
        logger.info(f"[INVALIDATE] Capabilities changed for role {role_id}")
        self.resolver.invalidate_all()

    def capabilities_changed(self):
        logger.info("[INVALIDATE] Capability definitions changed")
        self.resolver.invalidate_all()

    def workflow_changed(self):
        if self.workflow_gate is not None:
            logger.info("[INVALIDATE] Workflow transition table changed")
            self.workflow_gate.clear_workflow_cache()

    def clear_all(self):
        self.capabilities_changed()
        self.workflow_changed()
