from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any

import fakeredis
import pytest

from realm_services.core.context import ServiceContext
from realm_services.host.errors import GenerateTimeoutError, MethodCacheError
from realm_services.host.methods import GenerationLock
from realm_services.host.server import Server


def _register_counting(server: Server, calls: list[Any], cache: dict[str, int]) -> None:
    def init(ctx: ServiceContext, value: Any) -> Any:
        calls.append(value)
        return value

    server.register_service_methods({"scope": "sqs", "services": [{"name": "init", "method": init, "cache": cache}]})


def test_cached_service_runs_once_per_arguments_within_expiry(server: Server) -> None:
    calls: list[Any] = []
    _register_counting(server, calls, {"expiresIn": 100, "generateTimeout": 2})

    init = server.methods["sqs"]["init"]
    assert init(True) is True
    assert init(True) is True
    assert calls == [True]

    time.sleep(0.15)
    init(True)
    assert calls == [True, True]


def test_different_arguments_are_cached_separately(server: Server) -> None:
    calls: list[Any] = []
    _register_counting(server, calls, {"expiresIn": 1_000})

    init = server.services()["sqs"]["init"]
    init("a")
    init("b")
    init("a")

    assert calls == ["a", "b"]


def test_services_map_holds_the_memoized_method(server: Server) -> None:
    _register_counting(server, [], {"expiresIn": 1_000})

    assert server.services()["sqs"]["init"] is server.methods.get("sqs.init")
    assert "sqs.init" in server.methods


def test_waiting_for_foreign_generation_times_out(server: Server, redis_client: fakeredis.FakeRedis) -> None:
    calls: list[Any] = []
    _register_counting(server, calls, {"expiresIn": 1_000, "generateTimeout": 20})

    redis_client.set("realm-services:cache:sqs.init:[[1],{}]:generating", "1", px=1_000)

    with pytest.raises(GenerateTimeoutError):
        server.methods["sqs"]["init"](1)
    assert calls == []


def test_cached_value_is_served_while_generation_lock_is_held(
    server: Server,
    redis_client: fakeredis.FakeRedis,
) -> None:
    calls: list[Any] = []
    _register_counting(server, calls, {"expiresIn": 1_000, "generateTimeout": 50})

    key = "realm-services:cache:sqs.init:[[1],{}]"
    redis_client.set(f"{key}:generating", "1", px=1_000)
    redis_client.set(key, '{"value": 42}', px=1_000)

    assert server.methods["sqs"]["init"](1) == 42
    assert calls == []


def test_unserializable_arguments_are_rejected(server: Server) -> None:
    _register_counting(server, [], {"expiresIn": 1_000})

    with pytest.raises(MethodCacheError):
        server.methods["sqs"]["init"](object())


def test_failed_generation_is_not_cached(server: Server) -> None:
    attempts: list[int] = []

    def flaky(ctx: ServiceContext) -> str:
        attempts.append(1)
        if len(attempts) == 1:
            raise TimeoutError("upstream")
        return "ok"

    server.register_service_methods(
        {"scope": "api", "services": [{"name": "fetch", "method": flaky, "cache": {"expiresIn": 1_000, "generateTimeout": 10}}]}
    )

    with pytest.raises(TimeoutError):
        server.methods["api"]["fetch"]()
    assert server.methods["api"]["fetch"]() == "ok"
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_cached_initialize_is_still_a_pre_start_hook(server: Server) -> None:
    calls: list[str] = []

    def initialize(ctx: ServiceContext) -> None:
        calls.append("initialize")

    server.register_service_methods(
        {"scope": "warm", "services": [{"name": "initialize", "method": initialize, "cache": {"expiresIn": 1_000}}]}
    )
    await server.initialize()

    assert calls == ["initialize"]


def _register_async_counting(server: Server, calls: list[Any], cache: dict[str, int], delay: float = 0) -> None:
    async def init(ctx: ServiceContext, value: Any) -> Any:
        calls.append(value)
        await asyncio.sleep(delay)
        return value

    server.register_service_methods({"scope": "sqs", "services": [{"name": "init", "method": init, "cache": cache}]})


@pytest.mark.asyncio
async def test_async_cached_service_runs_once_per_arguments_within_expiry(server: Server) -> None:
    calls: list[Any] = []
    _register_async_counting(server, calls, {"expiresIn": 100, "generateTimeout": 50})

    init = server.methods["sqs"]["init"]
    assert inspect.iscoroutinefunction(init)
    assert await init(True) is True
    assert await init(True) is True
    assert calls == [True]

    await asyncio.sleep(0.15)
    await init(True)
    assert calls == [True, True]


@pytest.mark.asyncio
async def test_async_cached_initialize_runs_on_pre_start(server: Server) -> None:
    calls: list[str] = []

    async def initialize(ctx: ServiceContext) -> None:
        calls.append("initialize")

    server.register_service_methods(
        {"scope": "warm", "services": [{"name": "initialize", "method": initialize, "cache": {"expiresIn": 1_000}}]}
    )
    await server.initialize()

    assert calls == ["initialize"]


@pytest.mark.asyncio
async def test_async_generation_over_generate_timeout_is_cancelled(
    server: Server,
    redis_client: fakeredis.FakeRedis,
) -> None:
    calls: list[Any] = []
    _register_async_counting(server, calls, {"expiresIn": 1_000, "generateTimeout": 10}, delay=0.5)

    started = time.monotonic()
    with pytest.raises(GenerateTimeoutError):
        await server.methods["sqs"]["init"](1)

    assert time.monotonic() - started < 0.3
    assert calls == [1]
    assert redis_client.get("realm-services:cache:sqs.init:[[1],{}]") is None
    assert redis_client.get("realm-services:cache:sqs.init:[[1],{}]:generating") is None


@pytest.mark.asyncio
async def test_async_waiter_times_out_on_foreign_generation(
    server: Server,
    redis_client: fakeredis.FakeRedis,
) -> None:
    calls: list[Any] = []
    _register_async_counting(server, calls, {"expiresIn": 1_000, "generateTimeout": 20})

    redis_client.set("realm-services:cache:sqs.init:[[1],{}]:generating", "other", px=1_000)

    with pytest.raises(GenerateTimeoutError):
        await server.methods["sqs"]["init"](1)
    assert calls == []


def test_sync_generation_over_generate_timeout_is_reported_and_cached(server: Server) -> None:
    calls: list[Any] = []

    def slow(ctx: ServiceContext, value: Any) -> Any:
        calls.append(value)
        time.sleep(0.05)
        return value

    server.register_service_methods(
        {"scope": "slow", "services": [{"name": "get", "method": slow, "cache": {"expiresIn": 1_000, "generateTimeout": 10}}]}
    )

    with pytest.raises(GenerateTimeoutError):
        server.methods["slow"]["get"](7)

    assert server.methods["slow"]["get"](7) == 7
    assert calls == [7]


def test_generation_lock_only_releases_its_own_token(redis_client: fakeredis.FakeRedis) -> None:
    first = GenerationLock(r=redis_client, key="lock:key", ttl_ms=1_000)
    second = GenerationLock(r=redis_client, key="lock:key", ttl_ms=1_000)

    assert first.acquire()
    assert not second.acquire()

    # first's lock lapses and second takes over
    redis_client.delete("lock:key")
    assert second.acquire()

    assert first.release() is False
    assert redis_client.get("lock:key") == second.token
    assert second.release() is True
    assert redis_client.get("lock:key") is None
