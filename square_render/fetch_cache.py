from __future__ import annotations

"""
Read-through cache for remote layer bitmaps.

Usage:
    cache = LayerFetchCache(ttl_s=300, max_entries=200)
    png = cache.fetch("https://storage.googleapis.com/.../MAP_0002_Map-Base_H8.png")
    layers = cache.fetch_many([LayerRequest("base", url), ...])   # parallel

A failed fetch (non-200, empty body, timeout, connection error) returns None;
callers decide whether an absent layer is fatal.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Iterable, Optional, Sequence

import requests

from common.logging_setup import get_logger
from common.types import CacheEntry, FetchedLayer, LayerRequest


log = get_logger(__name__)


class LayerFetchCache:
    def __init__(
        self,
        ttl_s: float = 300.0,
        max_entries: int = 200,
        timeout_s: float = 10.0,
        max_workers: int = 8,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Params:
            ttl_s: entries older than this are stale and never served
            max_entries: soft capacity; exceeding it triggers a sweep of stale entries
            timeout_s: per-fetch HTTP timeout
            max_workers: size of the shared fan-out pool
            session: optional requests.Session for connection reuse
            clock: monotonic time source (injectable for tests)
        """
        self.ttl_s = float(ttl_s)
        self.max_entries = int(max_entries)
        self.timeout_s = float(timeout_s)
        self.max_workers = max(1, int(max_workers))
        self.session = session or requests.Session()
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._pool: Optional[ThreadPoolExecutor] = None
        self._pool_lock = threading.Lock()

        self.hits = 0
        self.misses = 0
        self.network_fetches = 0
        self.failures = 0
        self.evictions = 0

    # ----------------------------
    # Public API
    # ----------------------------
    def get_cached(self, url: str) -> Optional[bytes]:
        """Fresh cached bytes for `url`, or None. Never performs I/O."""
        with self._lock:
            entry = self._entries.get(url)
        if entry is None or self._is_stale(entry, self._clock()):
            return None
        return entry.data

    def fetch(self, url: str) -> Optional[bytes]:
        """Cached bytes within TTL, else a network fetch. Returns None on failure."""
        data = self.get_cached(url)
        if data is not None:
            with self._lock:
                self.hits += 1
            return data

        with self._lock:
            self.misses += 1
        data = self._download(url)
        if data is not None:
            self._insert(url, data)
        return data

    def fetch_layer(self, request: LayerRequest) -> FetchedLayer:
        return FetchedLayer(key=request.key, data=self.fetch(request.url))

    def submit(self, layer_requests: Iterable[LayerRequest]) -> Dict[str, "Future[FetchedLayer]"]:
        """Start every fetch on the shared pool; returns futures keyed by request key."""
        pool = self._executor()
        return {r.key: pool.submit(self.fetch_layer, r) for r in layer_requests}

    def fetch_many(self, layer_requests: Sequence[LayerRequest]) -> Dict[str, FetchedLayer]:
        """Fan out all fetches concurrently and wait for all of them."""
        futures = self.submit(layer_requests)
        return {key: fut.result() for key, fut in futures.items()}

    @staticmethod
    def cancel(futures: Iterable["Future[FetchedLayer]"]) -> int:
        """Cancel fetches that have not started yet; returns how many were cancelled."""
        return sum(1 for f in futures if f.cancel())

    def stats(self) -> Dict[str, float]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_s": self.ttl_s,
                "hits": self.hits,
                "misses": self.misses,
                "network_fetches": self.network_fetches,
                "failures": self.failures,
                "evictions": self.evictions,
            }

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def close(self) -> None:
        with self._pool_lock:
            if self._pool is not None:
                self._pool.shutdown(wait=False, cancel_futures=True)
                self._pool = None
        self.session.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ----------------------------
    # Internals
    # ----------------------------
    def _executor(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="layer-fetch")
            return self._pool

    def _is_stale(self, entry: CacheEntry, now: float) -> bool:
        return (now - entry.fetched_at) >= self.ttl_s

    def _download(self, url: str) -> Optional[bytes]:
        with self._lock:
            self.network_fetches += 1
        try:
            r = self.session.get(url, timeout=self.timeout_s)
            if r.status_code != 200 or not r.content:
                log.warning("Layer fetch failed: %s %s", r.status_code, url)
                with self._lock:
                    self.failures += 1
                return None
            return bytes(r.content)
        except requests.RequestException as e:
            log.warning("Layer fetch error: %s", e, extra={"extra": {"url": url}})
            with self._lock:
                self.failures += 1
            return None
        except Exception as e:
            log.exception("Unexpected error fetching layer %s: %s", url, e)
            with self._lock:
                self.failures += 1
            return None

    def _insert(self, url: str, data: bytes) -> None:
        now = self._clock()
        with self._lock:
            self._entries[url] = CacheEntry(data=data, fetched_at=now)
            if len(self._entries) > self.max_entries:
                self._sweep(now)

    def _sweep(self, now: float) -> None:
        # Caller holds self._lock. Soft bound: only stale entries are dropped.
        stale = [u for u, e in self._entries.items() if self._is_stale(e, now)]
        for u in stale:
            del self._entries[u]
        self.evictions += len(stale)
        if stale:
            log.debug("Swept stale layer cache entries", extra={"extra": {"removed": len(stale)}})
