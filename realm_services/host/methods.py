from __future__ import annotations

import asyncio
import functools
import inspect
import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any
from uuid import uuid4

import redis

from realm_services.host.errors import GenerateTimeoutError, MethodCacheError, MethodError

logger = logging.getLogger(__name__)

# How often a waiter re-checks redis while another caller holds the generation lock.
_WAIT_POLL_SECONDS = 0.005

_MISS = object()


@dataclass(frozen=True, slots=True)
class CachePolicy:
    """Memoization settings for a server method, both in milliseconds."""

    expires_in: int | None = None
    generate_timeout: int | None = None


class MethodTable:
    """Server methods grouped by namespace.

    `add("sqs.init", fn)` makes the callable reachable as `table["sqs"]["init"]` and
    `table.get("sqs.init")`. Names are write-once.
    """

    def __init__(self) -> None:
        self._by_namespace: dict[str, dict[str, Callable[..., Any]]] = {}

    @staticmethod
    def _split(name: str) -> tuple[str, str]:
        namespace, _, leaf = name.rpartition(".")
        return namespace, leaf

    def add(self, name: str, fn: Callable[..., Any]) -> None:
        namespace, leaf = self._split(name)
        if not leaf:
            raise MethodError(f"Invalid server method name: {name!r}")

        ns = self._by_namespace.setdefault(namespace, {})
        if leaf in ns:
            raise MethodError(f"Server method function name already exists: {name}")
        ns[leaf] = fn

    def get(self, name: str) -> Callable[..., Any] | None:
        namespace, leaf = self._split(name)
        return self._by_namespace.get(namespace, {}).get(leaf)

    def __getitem__(self, namespace: str) -> Mapping[str, Callable[..., Any]]:
        return MappingProxyType(self._by_namespace[namespace])

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def namespaces(self) -> tuple[str, ...]:
        return tuple(self._by_namespace)


class GenerationLock:
    """Per-key generation lock: SET NX PX with a unique token.

    `release` only deletes the key while it still holds this lock's token, so a
    caller whose lock already expired never removes somebody else's.
    """

    def __init__(self, *, r: redis.Redis, key: str, ttl_ms: int) -> None:
        self._r = r
        self.key = key
        self._ttl_ms = ttl_ms
        self.token = uuid4().hex

    def acquire(self) -> bool:
        return bool(self._r.set(self.key, self.token, nx=True, px=self._ttl_ms))

    def release(self) -> bool:
        with self._r.pipeline() as pipe:
            try:
                pipe.watch(self.key)
                if pipe.get(self.key) != self.token:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.delete(self.key)
                pipe.execute()
            except redis.WatchError:
                logger.debug("Generation lock %s changed hands before release", self.key)
                return False
        return True


def _is_async(fn: Callable[..., Any]) -> bool:
    target = fn
    while isinstance(target, functools.partial):
        target = target.func
    return inspect.iscoroutinefunction(target)


class MethodCache:
    """Redis backed memoization for server methods.

    Values are stored as JSON under `<prefix>:<method name>:<json args>` with a PX
    expiry. When a generate timeout is configured, only one caller computes a given
    key at a time (see `GenerationLock`), and no caller waits longer than the
    timeout for a fresh value: waiters poll until it elapses, and the generating
    caller gets `GenerateTimeoutError` once its computation overruns it.

    Async methods get an async wrapper; an overrunning async computation is
    cancelled. A sync computation cannot be interrupted, so its value is still
    cached for later callers before the overrun is reported.
    """

    def __init__(self, *, r: redis.Redis, prefix: str, default_expires_in_ms: int) -> None:
        self._r = r
        self._prefix = prefix
        self._default_expires_in_ms = default_expires_in_ms

    def _key(self, name: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> str:
        try:
            raw = json.dumps([list(args), kwargs], sort_keys=True, separators=(",", ":"))
        except TypeError as e:
            raise MethodCacheError(f"Arguments to cached method {name} are not JSON serializable") from e
        return f"{self._prefix}:{name}:{raw}"

    def _lookup(self, key: str) -> Any:
        hit = self._r.get(key)
        if hit is None:
            return _MISS
        return json.loads(hit)["value"]

    def _store(self, *, name: str, key: str, value: Any, expires_in: int) -> Any:
        try:
            payload = json.dumps({"value": value})
        except TypeError as e:
            raise MethodCacheError(f"Result of cached method {name} is not JSON serializable") from e
        self._r.set(key, payload, px=expires_in)
        return value

    def _lock(self, key: str, expires_in: int) -> GenerationLock:
        return GenerationLock(r=self._r, key=f"{key}:generating", ttl_ms=expires_in)

    def wrap(self, name: str, fn: Callable[..., Any], policy: CachePolicy) -> Callable[..., Any]:
        expires_in = policy.expires_in or self._default_expires_in_ms
        if _is_async(fn):
            return self._wrap_async(name, fn, policy, expires_in)
        return self._wrap_sync(name, fn, policy, expires_in)

    def _wrap_sync(self, name: str, fn: Callable[..., Any], policy: CachePolicy, expires_in: int) -> Callable[..., Any]:
        timeout_ms = policy.generate_timeout

        @functools.wraps(fn)
        def cached(*args: Any, **kwargs: Any) -> Any:
            key = self._key(name, args, kwargs)
            hit = self._lookup(key)
            if hit is not _MISS:
                return hit

            logger.debug("Cache miss for method %s", name)
            if timeout_ms is None:
                return self._store(name=name, key=key, value=fn(*args, **kwargs), expires_in=expires_in)

            lock = self._lock(key, expires_in)
            if not lock.acquire():
                return self._wait(name=name, key=key, timeout_ms=timeout_ms)

            try:
                started = time.monotonic()
                value = fn(*args, **kwargs)
                elapsed_ms = (time.monotonic() - started) * 1000
                self._store(name=name, key=key, value=value, expires_in=expires_in)
            finally:
                lock.release()

            if elapsed_ms > timeout_ms:
                raise GenerateTimeoutError(f"Method {name} took {elapsed_ms:.0f}ms, over its {timeout_ms}ms generate timeout")
            return value

        return cached

    def _wrap_async(self, name: str, fn: Callable[..., Any], policy: CachePolicy, expires_in: int) -> Callable[..., Any]:
        timeout_ms = policy.generate_timeout

        @functools.wraps(fn)
        async def cached(*args: Any, **kwargs: Any) -> Any:
            key = self._key(name, args, kwargs)
            hit = self._lookup(key)
            if hit is not _MISS:
                return hit

            logger.debug("Cache miss for method %s", name)
            if timeout_ms is None:
                return self._store(name=name, key=key, value=await fn(*args, **kwargs), expires_in=expires_in)

            lock = self._lock(key, expires_in)
            if not lock.acquire():
                return await self._await_value(name=name, key=key, timeout_ms=timeout_ms)

            task = asyncio.ensure_future(fn(*args, **kwargs))
            try:
                done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
                if not done:
                    raise GenerateTimeoutError(f"Method {name} did not generate within {timeout_ms}ms")
                return self._store(name=name, key=key, value=task.result(), expires_in=expires_in)
            finally:
                if not task.done():
                    task.cancel()
                lock.release()

        return cached

    def _wait(self, *, name: str, key: str, timeout_ms: int) -> Any:
        deadline = time.monotonic() + timeout_ms / 1000
        while time.monotonic() < deadline:
            time.sleep(_WAIT_POLL_SECONDS)
            hit = self._lookup(key)
            if hit is not _MISS:
                return hit
        raise GenerateTimeoutError(f"Timed out after {timeout_ms}ms waiting for method {name} to generate")

    async def _await_value(self, *, name: str, key: str, timeout_ms: int) -> Any:
        deadline = time.monotonic() + timeout_ms / 1000
        while time.monotonic() < deadline:
            await asyncio.sleep(_WAIT_POLL_SECONDS)
            hit = self._lookup(key)
            if hit is not _MISS:
                return hit
        raise GenerateTimeoutError(f"Timed out after {timeout_ms}ms waiting for method {name} to generate")
