"""
Capability Resolver: computes, caches and answers capability questions for
a principal.

Concurrent resolves of the same uncached principal share one store read. The
read runs on a small worker pool, so every caller (including the first) can
give up after its own timeout without affecting the others.
"""

import asyncio
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Dict, Iterable, Optional

from loguru import logger

from auth.cache_manager import CapabilityCache
from auth.capabilities import CapabilityLike, CapabilityName, CapabilitySet


class CapabilityResolver:

    def __init__(self, store, cache: Optional[CapabilityCache] = None, max_workers: int = 8):
        self.store = store
        self.cache = cache if cache is not None else CapabilityCache()
        self._inflight: Dict[str, Future] = {}
        # Re-entrant: a done-callback may run synchronously while held
        self._inflight_lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="capability-fill")

    # ==================== RESOLUTION ====================

    def _fill(self, user_id: str, generation: tuple) -> CapabilitySet:
        try:
            records = self.store.load_user_capabilities(user_id)
        except Exception as e:
            logger.error(f"[RESOLVE] Capability fill failed for {user_id}: {type(e).__name__}: {e}")
            raise
        capabilities = CapabilitySet.from_records(records)
        if self.cache.put(user_id, capabilities, generation):
            logger.info(f"[RESOLVE] Cached {len(capabilities)} capabilities for user {user_id}")
        return capabilities

    def _release(self, user_id: str, future: Future):
        with self._inflight_lock:
            if self._inflight.get(user_id) is future:
                del self._inflight[user_id]

    def _acquire(self, user_id: str):
        """Return a cached set, or the future of the (possibly shared) fill"""
        with self._inflight_lock:
            cached = self.cache.get(user_id)
            if cached is not None:
                return cached, None

            future = self._inflight.get(user_id)
            # A finished fill whose done-callback has not run yet is not joinable
            if future is None or future.done():
                generation = self.cache.generation(user_id)
                future = self._executor.submit(self._fill, user_id, generation)
                self._inflight[user_id] = future
                future.add_done_callback(lambda f, uid=user_id: self._release(uid, f))
            else:
                logger.debug(f"[RESOLVE] Joining in-flight fill for {user_id}")
            return None, future

    def resolve(self, user_id: Optional[str], timeout: Optional[float] = None) -> CapabilitySet:
        """
        Effective capability set of a user.

        Raises:
            TimeoutError: this caller's timeout elapsed; the shared fill keeps
                running and still populates the cache for later callers.
        """
        if not user_id:
            return CapabilitySet.empty()

        cached, future = self._acquire(user_id)
        if cached is not None:
            return cached

        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            logger.warning(f"[RESOLVE] Timed out after {timeout}s waiting for {user_id}")
            raise TimeoutError(f"Capability resolution for {user_id} timed out")

    async def aresolve(self, user_id: Optional[str], timeout: Optional[float] = None) -> CapabilitySet:
        """Awaitable variant; cancelling the awaiting task leaves the fill running"""
        if not user_id:
            return CapabilitySet.empty()

        cached, future = self._acquire(user_id)
        if cached is not None:
            return cached

        waiter = asyncio.shield(asyncio.wrap_future(future))
        try:
            return await asyncio.wait_for(waiter, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[RESOLVE] Timed out after {timeout}s waiting for {user_id}")
            raise TimeoutError(f"Capability resolution for {user_id} timed out")

    # ==================== CHECKS ====================

    def has_capability(self, user_id: Optional[str], name: CapabilityLike) -> bool:
        token = CapabilityName.require(name)
        return self.resolve(user_id).has(token)

    def has_any(self, user_id: Optional[str], names: Iterable[CapabilityLike]) -> bool:
        tokens = [CapabilityName.require(n) for n in names]
        return self.resolve(user_id).has_any(tokens)

    def has_all(self, user_id: Optional[str], names: Iterable[CapabilityLike]) -> bool:
        tokens = [CapabilityName.require(n) for n in names]
        return self.resolve(user_id).has_all(tokens)

    # ==================== INVALIDATION ====================

    def invalidate(self, user_id: str):
        with self._inflight_lock:
            self._inflight.pop(user_id, None)
            self.cache.invalidate(user_id)

    def invalidate_all(self):
        with self._inflight_lock:
            self._inflight.clear()
            self.cache.invalidate_all()
        logger.info("[RESOLVE] Capability cache cleared")

    def close(self):
        self._executor.shutdown(wait=False)
