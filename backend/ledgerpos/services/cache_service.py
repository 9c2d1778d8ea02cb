# Overview: Best-effort response-cache invalidation dispatched after commit.

"""
Cache invalidation is fire-and-forget:

- It is only ever requested AFTER the sale/refund transaction committed.
- It never blocks the response: with CACHE_INVALIDATION_ASYNC it runs on a
  small worker pool.
- Failures are logged and swallowed. A stale cache entry is acceptable; a
  rolled-back or failed sale because the cache was down is not.
"""

from __future__ import annotations

import atexit
import fnmatch
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Protocol

from flask import Flask, current_app

logger = logging.getLogger(__name__)

# Resource -> cached API path patterns affected by a change to it
RESOURCE_PATTERNS: dict[str, tuple[str, ...]] = {
    "sales": ("/sales*", "/stock*"),
    "refunds": ("/refunds*", "/sales*", "/stock*"),
    "stock": ("/stock*", "/products*", "/stores*"),
}


class CacheSink(Protocol):
    def delete_pattern(self, pattern: str) -> int: ...


class NullCacheSink:
    """Default sink when no response cache is deployed."""

    def delete_pattern(self, pattern: str) -> int:
        logger.debug("cache_invalidate_noop pattern=%s", pattern)
        return 0


class InMemoryCacheSink:
    """Process-local key/value cache with glob-style pattern deletion."""

    def __init__(self):
        self._data: dict[str, object] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value) -> None:
        with self._lock:
            self._data[key] = value

    def get(self, key: str, default=None):
        with self._lock:
            return self._data.get(key, default)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
            for k in doomed:
                del self._data[k]
        return len(doomed)


@dataclass
class _InvalidatorState:
    sink: CacheSink
    enabled: bool
    run_async: bool
    key_prefix: str
    executor: ThreadPoolExecutor | None = field(default=None, repr=False)


class CacheInvalidator:
    """Flask extension holding the per-app sink and dispatch policy."""

    extension_name = "cache_invalidator"

    def __init__(self, app: Flask | None = None, sink: CacheSink | None = None):
        self._default_sink = sink
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask, sink: CacheSink | None = None) -> None:
        run_async = bool(app.config.get("CACHE_INVALIDATION_ASYNC", True))
        state = _InvalidatorState(
            sink=sink or self._default_sink or NullCacheSink(),
            enabled=bool(app.config.get("CACHE_INVALIDATION_ENABLED", True)),
            run_async=run_async,
            key_prefix=app.config.get("CACHE_KEY_PREFIX", "api:/api"),
            executor=ThreadPoolExecutor(max_workers=2, thread_name_prefix="cache-invalidate") if run_async else None,
        )
        app.extensions[self.extension_name] = state
        if state.executor is not None:
            atexit.register(_shutdown_state, state)

    def _state(self) -> _InvalidatorState:
        return current_app.extensions[self.extension_name]

    def shutdown(self, wait: bool = True) -> None:
        """Drain the worker pool; later invalidations run inline."""
        _shutdown_state(self._state(), wait=wait)

    def set_sink(self, sink: CacheSink) -> None:
        self._state().sink = sink

    @property
    def sink(self) -> CacheSink:
        return self._state().sink

    def patterns_for(self, *resources: str) -> list[str]:
        prefix = self._state().key_prefix
        patterns: list[str] = []
        for resource in resources:
            for suffix in RESOURCE_PATTERNS.get(resource, (f"/{resource}*",)):
                pattern = f"{prefix}{suffix}"
                if pattern not in patterns:
                    patterns.append(pattern)
        return patterns

    def invalidate(self, *resources: str) -> Future | None:
        """
        Request deletion of every cache key tied to `resources`.

        Returns the Future when dispatched to the worker pool, None otherwise.
        Never raises.
        """
        try:
            state = self._state()
            if not state.enabled:
                return None
            patterns = self.patterns_for(*resources)
            if state.run_async and state.executor is not None:
                return state.executor.submit(_delete_patterns, state.sink, patterns)
            _delete_patterns(state.sink, patterns)
        except Exception:
            logger.exception("cache_invalidate_dispatch_failed resources=%s", ",".join(resources))
        return None


def _delete_patterns(sink: CacheSink, patterns: list[str]) -> int:
    deleted = 0
    for pattern in patterns:
        try:
            deleted += int(sink.delete_pattern(pattern) or 0)
        except Exception:
            logger.warning("cache_invalidate_failed pattern=%s", pattern, exc_info=True)
    logger.debug("cache_invalidated patterns=%s deleted=%s", ",".join(patterns), deleted)
    return deleted


def _shutdown_state(state: _InvalidatorState, wait: bool = True) -> None:
    executor, state.executor = state.executor, None
    if executor is not None:
        executor.shutdown(wait=wait)
