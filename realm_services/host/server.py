from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from contextlib import asynccontextmanager
from enum import StrEnum
from typing import Any, Protocol

import redis
from fastapi import FastAPI, Request

from realm_services.config import HostSettings, settings_from_env
from realm_services.host.errors import DecorationError, HostError, PluginRegistrationError
from realm_services.host.methods import CachePolicy, MethodCache, MethodTable
from realm_services.host.realm import Realm
from realm_services.infra.redis_client import create_redis

logger = logging.getLogger(__name__)

EXT_EVENTS = ("on_pre_start", "on_post_stop")
DECORATION_KINDS = ("server", "toolkit", "request")


class Phase(StrEnum):
    stopped = "stopped"
    initialized = "initialized"
    started = "started"


class Plugin(Protocol):
    name: str

    def register(self, server: "Server", options: Mapping[str, Any]) -> None:
        ...


async def _call_hook(fn: Callable[[], Any]) -> None:
    result = fn()
    if inspect.isawaitable(result):
        await result


class HostCore:
    """State shared by every server view of one host."""

    def __init__(self, *, settings: HostSettings, redis_client: redis.Redis | None = None, title: str) -> None:
        self.settings = settings
        self.root = Realm(name="root")
        self.app = FastAPI(title=title, lifespan=self._lifespan)
        self.app.state.host = self
        self.decorations: dict[str, dict[str, Callable[..., Any]]] = {k: {} for k in DECORATION_KINDS}
        self.extensions: dict[str, list[Callable[[], Any]]] = {e: [] for e in EXT_EVENTS}
        self.methods = MethodTable()
        self.registered_plugins: set[str] = set()
        self.phase = Phase.stopped
        # Starlette routes define __eq__ (and so are unhashable); key by id instead.
        self._route_realms: dict[int, Realm] = {}
        self._redis = redis_client
        self._method_cache: MethodCache | None = None

    @property
    def method_cache(self) -> MethodCache:
        if self._method_cache is None:
            r = self._redis if self._redis is not None else create_redis(self.settings)
            self._method_cache = MethodCache(
                r=r,
                prefix=self.settings.cache_prefix,
                default_expires_in_ms=self.settings.default_expires_in_ms,
            )
        return self._method_cache

    def remember_route(self, route: object, realm: Realm) -> None:
        self._route_realms[id(route)] = realm

    def realm_for_route(self, route: object | None) -> Realm:
        if route is None:
            return self.root
        return self._route_realms.get(id(route), self.root)

    @asynccontextmanager
    async def _lifespan(self, _app: FastAPI) -> AsyncIterator[None]:
        server = Server(self, self.root)
        await server.start()
        try:
            yield
        finally:
            await server.stop()


class _Decorated:
    """Resolves host decorations of one kind as bound attributes."""

    _decoration_kind: str

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal attribute lookup fails.
        core = self.__dict__.get("_core")
        fn = core.decorations[self._decoration_kind].get(name) if core is not None else None
        if fn is None:
            raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")
        return functools.partial(fn, self)


class Server(_Decorated):
    """A view of the host bound to one realm.

    Plugins receive their own view on registration, so `server.realm` is always the
    realm of the plugin currently composing.
    """

    _decoration_kind = "server"

    def __init__(self, core: HostCore, realm: Realm) -> None:
        self._core = core
        self.realm = realm

    @property
    def app(self) -> FastAPI:
        return self._core.app

    @property
    def root_realm(self) -> Realm:
        return self._core.root

    @property
    def methods(self) -> MethodTable:
        return self._core.methods

    @property
    def settings(self) -> HostSettings:
        return self._core.settings

    @property
    def phase(self) -> Phase:
        return self._core.phase

    def register(self, plugin: Plugin, options: Mapping[str, Any] | None = None) -> None:
        core = self._core
        if plugin.name in core.registered_plugins and not getattr(plugin, "multiple", False):
            raise PluginRegistrationError(f"Plugin {plugin.name} already registered")

        child = self.realm.add_child(name=plugin.name, options=options)
        core.registered_plugins.add(plugin.name)
        logger.debug("Registering plugin %s under realm %s", plugin.name, self.realm.name)
        plugin.register(Server(core, child), child.options)

    def decorate(self, kind: str, name: str, fn: Callable[..., Any]) -> None:
        if kind not in DECORATION_KINDS:
            raise DecorationError(f"Unknown decoration type: {kind}")
        if name in self._core.decorations[kind] or hasattr(_DECORATED_TYPES[kind], name):
            raise DecorationError(f"{kind} decoration already defined: {name}")
        self._core.decorations[kind][name] = fn

    def has_decoration(self, kind: str, name: str) -> bool:
        return name in self._core.decorations.get(kind, {})

    def route(self, method: str | Iterable[str], path: str, endpoint: Callable[..., Any], **kwargs: Any) -> None:
        methods = [method] if isinstance(method, str) else list(method)
        self.app.add_api_route(path, endpoint, methods=methods, **kwargs)
        self._core.remember_route(self.app.router.routes[-1], self.realm)

    def ext(self, event: str, fn: Callable[[], Any]) -> None:
        if event not in EXT_EVENTS:
            raise HostError(f"Unknown extension point: {event}")
        self._core.extensions[event].append(fn)

    def method(
        self,
        name: str,
        fn: Callable[..., Any],
        *,
        bind: Any = None,
        cache: CachePolicy | None = None,
    ) -> Callable[..., Any]:
        """Add a server method. `bind`, when given, is passed as the first argument."""

        call = functools.partial(fn, bind) if bind is not None else fn
        if cache is not None:
            call = self._core.method_cache.wrap(name, call, cache)
        self._core.methods.add(name, call)
        return call

    async def initialize(self) -> None:
        core = self._core
        if core.phase is not Phase.stopped:
            return

        for fn in core.extensions["on_pre_start"]:
            await _call_hook(fn)
        core.phase = Phase.initialized

    async def start(self) -> None:
        await self.initialize()
        self._core.phase = Phase.started
        logger.info("Host started")

    async def stop(self) -> None:
        core = self._core
        if core.phase is Phase.stopped:
            return
        core.phase = Phase.stopped

        errors: list[Exception] = []
        for fn in core.extensions["on_post_stop"]:
            try:
                await _call_hook(fn)
            except Exception as e:
                logger.exception("on_post_stop hook failed")
                errors.append(e)
        logger.info("Host stopped")
        if errors:
            raise errors[0]


class Toolkit(_Decorated):
    """Per-request response toolkit handed to route handlers."""

    _decoration_kind = "toolkit"

    def __init__(self, core: HostCore, request: Request, realm: Realm) -> None:
        self._core = core
        self.request = request
        self.realm = realm


class RequestContext(_Decorated):
    """Per-request unit of work; `route_realm` is the realm that added the route."""

    _decoration_kind = "request"

    def __init__(self, core: HostCore, request: Request, route_realm: Realm) -> None:
        self._core = core
        self.request = request
        self.route_realm = route_realm


_DECORATED_TYPES: dict[str, type] = {"server": Server, "toolkit": Toolkit, "request": RequestContext}


def create_server(
    *,
    settings: HostSettings | None = None,
    redis_client: redis.Redis | None = None,
    title: str = "realm-services",
) -> Server:
    core = HostCore(settings=settings or settings_from_env(), redis_client=redis_client, title=title)
    return Server(core, core.root)
