"""
In-memory fixed-window rate limiter.

Enforces per-bucket request limits. The caller picks the bucket
granularity (per key, per owner, per route) through the bucket key.

Design decisions:
  • Fixed window — the first request in a bucket opens a window of
    `window_ms`; once `now > reset_at` the entry is replaced (count = 1),
    never incremented.
  • Known boundary behaviour: a caller can pass up to 2 × limit requests
    around a window boundary (end of one window + start of the next).
  • Denied requests do not increment the counter.
  • Per-bucket locks — different buckets never contend; operations on the
    same bucket serialize, so no increment is lost.
  • No implicit TTL — cleanup_expired() is the only thing that frees
    memory and admission never depends on when it last ran.
  • Single process only. Multi-instance deployments need a shared
    RateLimitStore (e.g. Redis) behind the same protocol.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from lynxa.auth.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Admission:
    """Outcome of one admit() call. reset_at is epoch milliseconds."""

    allowed: bool
    remaining: int
    reset_at: int


@dataclass(slots=True)
class _Entry:
    count: int
    reset_at: int


class RateLimitStore(Protocol):
    def admit(
        self, bucket_key: str, limit: int, window_ms: int, now: int,
    ) -> Admission: ...

    def cleanup_expired(self, now: int) -> int: ...


class InMemoryRateLimitStore:
    """Process-local RateLimitStore."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def _bucket_lock(self, bucket_key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(bucket_key)
            if lock is None:
                lock = self._locks[bucket_key] = threading.Lock()
            return lock

    def _acquire(self, bucket_key: str) -> threading.Lock:
        # The sweep may retire a bucket's lock between lookup and acquire;
        # only proceed holding the lock that is still registered.
        while True:
            lock = self._bucket_lock(bucket_key)
            lock.acquire()
            if self._locks.get(bucket_key) is lock:
                return lock
            lock.release()

    def admit(
        self, bucket_key: str, limit: int, window_ms: int, now: int,
    ) -> Admission:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")

        lock = self._acquire(bucket_key)
        try:
            entry = self._entries.get(bucket_key)

            if entry is None or now > entry.reset_at:
                entry = _Entry(count=1, reset_at=now + window_ms)
                self._entries[bucket_key] = entry
                return Admission(True, limit - 1, entry.reset_at)

            if entry.count >= limit:
                return Admission(False, 0, entry.reset_at)

            entry.count += 1
            return Admission(True, limit - entry.count, entry.reset_at)
        finally:
            lock.release()

    def cleanup_expired(self, now: int) -> int:
        """Drop every bucket whose window closed before `now`. Returns count."""
        removed = 0
        for bucket_key in list(self._entries):
            lock = self._acquire(bucket_key)
            try:
                entry = self._entries.get(bucket_key)
                if entry is not None and entry.reset_at < now:
                    del self._entries[bucket_key]
                    with self._registry_lock:
                        self._locks.pop(bucket_key, None)
                    removed += 1
            finally:
                lock.release()

        if removed:
            logger.debug("Rate limiter sweep removed %d bucket(s)", removed)
        return removed


def enforce(
    store: RateLimitStore,
    bucket_key: str,
    limit: int,
    window_ms: int,
    now: int,
) -> Admission:
    """
    Admit one request or raise.

    Raises RateLimitExceeded (with reset_at) when the bucket is exhausted.
    """
    admission = store.admit(bucket_key, limit, window_ms, now)
    if not admission.allowed:
        raise RateLimitExceeded(limit, admission.remaining, admission.reset_at)
    return admission


async def sweep_periodically(
    store: RateLimitStore,
    interval_s: float,
    clock: Callable[[], int],
) -> None:
    """Run cleanup_expired() every `interval_s` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval_s)
        try:
            store.cleanup_expired(clock())
        except Exception:
            logger.exception("Rate limiter sweep failed")
