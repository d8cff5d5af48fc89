"""In-memory response cache and per-key request coalescing."""
from __future__ import annotations

import base64
import copy
import json
import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from . import config
from .models import SearchRequest, SearchResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")


def make_search_cache_key(request: SearchRequest) -> str:
    """Key for a normalized request; coordinates are rounded to ~100 m."""
    payload = {
        "lat": round(request.latitude, config.CACHE_COORD_PRECISION),
        "lng": round(request.longitude, config.CACHE_COORD_PRECISION),
        "radius": request.radius,
        "categories": sorted(request.category_values()),
        "mood": request.mood,
        "limit": request.limit,
    }
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


class ResponseCache:
    def __init__(
        self,
        ttl_seconds: float = config.CACHE_TTL_SECONDS,
        max_entries: int = config.CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, int(max_entries))
        self.clock = clock
        self._entries: "OrderedDict[str, Tuple[SearchResponse, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[SearchResponse]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            response, inserted_at = entry
            if self.clock() - inserted_at > self.ttl_seconds:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
        hit = copy.deepcopy(response)
        hit.metadata.cached = True
        return hit

    def set(self, key: str, response: SearchResponse) -> None:
        stored = copy.deepcopy(response)
        stored.metadata.cached = False
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted cache entry %s", evicted)
            self._entries[key] = (stored, self.clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries


class SingleFlight:
    """Run at most one computation per key at a time.

    Callers arriving while a computation is in flight wait for it and get
    the same result, or the same exception.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: Dict[str, Future] = {}

    def do(self, key: str, fn: Callable[[], T]) -> T:
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._calls[key] = future

        if not leader:
            return future.result()

        try:
            result = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._calls.pop(key, None)

    def in_flight(self) -> int:
        with self._lock:
            return len(self._calls)
