from __future__ import annotations

from collections.abc import Mapping
from types import SimpleNamespace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from realm_services.host.server import Server


class ServiceContext(SimpleNamespace):
    """Execution context passed as the first argument to every service method.

    Carries the descriptor's `context` entries plus `server` (the registering server
    view) and `options` (the registering plugin's options). `server` and `options`
    win over same-named context entries.
    """


def build_service_context(*, context: Mapping[str, Any] | None, server: "Server") -> ServiceContext:
    return ServiceContext(**{**(context or {}), "server": server, "options": server.realm.options})
