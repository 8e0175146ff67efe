# tile_dashboard/cache.py
from __future__ import annotations
import functools
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Mapping, Optional, Tuple

from tile_dashboard.log import get_logger
from tile_dashboard.validation import normalize_params

log = get_logger(__name__)

_MISSING = object()


def _tile_of(key: Hashable) -> Any:
    return key[0] if isinstance(key, tuple) and key else None


def make_key(tile_id: str, params: Optional[Mapping[str, Any]] = None) -> Tuple[str, tuple]:
    return (tile_id, normalize_params(params))


class _Flight:
    """One in-progress computation that late callers wait on."""

    def __init__(self):
        self.done = threading.Event()
        self.value: Any = None
        self.error: Optional[BaseException] = None


class TileCache:
    """
    Thread-safe LRU cache with per-entry TTL.

    Keys are (tile_id, params) tuples as produced by make_key(); invalidate()
    relies on that shape. get_or_compute() is single-flight: concurrent misses
    on one key run the producer once and share its result or exception.
    """

    def __init__(self, maxsize: int = 256, ttl_s: Optional[float] = 300,
                 clock: Callable[[], float] = time.monotonic):
        self.maxsize = int(maxsize)
        self.ttl_s = float(ttl_s) if ttl_s and ttl_s > 0 else None
        self._clock = clock
        self._data: "OrderedDict[Hashable, Tuple[float, Any]]" = OrderedDict()
        self._flights: Dict[Hashable, _Flight] = {}
        # bumped by clear() and invalidate(); a computation started under an
        # older generation does not store its result
        self._generation = 0
        self._tile_generations: Dict[Any, int] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    # ---------- internals (call with lock held) ----------

    def _lookup(self, key: Hashable) -> Any:
        item = self._data.get(key, _MISSING)
        if item is _MISSING:
            return _MISSING
        expires_at, value = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            self._expirations += 1
            return _MISSING
        self._data.move_to_end(key)
        return value

    def _generation_of(self, key: Hashable) -> Tuple[int, int]:
        return self._generation, self._tile_generations.get(_tile_of(key), 0)

    def _store(self, key: Hashable, value: Any) -> None:
        if self.maxsize <= 0:
            return
        expires_at = self._clock() + self.ttl_s if self.ttl_s else None
        self._data[key] = (expires_at, value)
        self._data.move_to_end(key)
        while len(self._data) > self.maxsize:
            old_key, _ = self._data.popitem(last=False)
            self._evictions += 1
            log.debug("evicted %r", old_key)

    # ---------- public API ----------

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            value = self._lookup(key)
            if value is _MISSING:
                self._misses += 1
                return default
            self._hits += 1
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._store(key, value)

    def get_or_compute(self, key: Hashable, fn: Callable[[], Any]) -> Tuple[Any, bool]:
        """Return (value, cached). `cached` is True when fn() was not run by this caller."""
        with self._lock:
            value = self._lookup(key)
            if value is not _MISSING:
                self._hits += 1
                return value, True
            self._misses += 1
            flight = self._flights.get(key)
            owner = flight is None
            if owner:
                flight = self._flights[key] = _Flight()
                generation = self._generation_of(key)

        if not owner:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.value, True

        try:
            flight.value = fn()
        except BaseException as e:
            flight.error = e
            raise
        else:
            with self._lock:
                if self._generation_of(key) == generation:
                    self._store(key, flight.value)
                else:
                    log.debug("dropped result for %r: invalidated while computing", key)
            return flight.value, False
        finally:
            with self._lock:
                if self._flights.get(key) is flight:
                    del self._flights[key]
            flight.done.set()

    def invalidate(self, tile_id: str) -> int:
        with self._lock:
            self._tile_generations[tile_id] = self._tile_generations.get(tile_id, 0) + 1
            for k in [k for k in self._flights if _tile_of(k) == tile_id]:
                del self._flights[k]
            doomed = [k for k in self._data if _tile_of(k) == tile_id]
            for k in doomed:
                del self._data[k]
            return len(doomed)

    def clear(self) -> int:
        with self._lock:
            self._generation += 1
            self._flights.clear()
            n = len(self._data)
            self._data.clear()
            return n

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
                "size": len(self._data),
                "maxsize": self.maxsize,
                "ttl_s": self.ttl_s,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            item = self._data.get(key, _MISSING)
            if item is _MISSING:
                return False
            expires_at, _ = item
            return expires_at is None or self._clock() < expires_at


def memoize(cache: TileCache, tile_id_arg: str = "tile_id"):
    """Cache fn(tile_id, **params) results in `cache` under make_key(tile_id, params)."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            if args:
                tile_id, args = args[0], args[1:]
            else:
                tile_id = kwargs.pop(tile_id_arg)
            if args:
                raise TypeError(f"{fn.__name__}() takes parameters by keyword only")
            value, _ = cache.get_or_compute(
                make_key(tile_id, kwargs), lambda: fn(tile_id, **kwargs)
            )
            return value

        wrapper.cache = cache
        return wrapper

    return decorator
