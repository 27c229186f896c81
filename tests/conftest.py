from __future__ import annotations

from collections.abc import Callable, Mapping
from types import SimpleNamespace
from typing import Any

import fakeredis
import pytest

from realm_services.config import HostSettings
from realm_services.host.server import Server, create_server
from realm_services.plugin import services_plugin

TEST_SETTINGS = HostSettings(
    redis_url="redis://unused:6379/0",
    cache_prefix="realm-services:cache",
    default_expires_in_ms=60_000,
    log_level="DEBUG",
)

RegisterFn = Callable[[Server, Mapping[str, Any]], None]


@pytest.fixture()
def redis_client() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def bare_server(redis_client: fakeredis.FakeRedis) -> Server:
    """A host without the services plugin registered."""

    return create_server(settings=TEST_SETTINGS, redis_client=redis_client)


@pytest.fixture()
def server(bare_server: Server) -> Server:
    bare_server.register(services_plugin)
    return bare_server


@pytest.fixture()
def make_plugin() -> Callable[..., SimpleNamespace]:
    """Build a throwaway plugin object: `make_plugin("name", register_fn)`."""

    def _make(name: str, register: RegisterFn, *, multiple: bool = False) -> SimpleNamespace:
        return SimpleNamespace(name=name, register=register, multiple=multiple)

    return _make
