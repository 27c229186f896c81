from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fastapi import Depends

from realm_services import __version__
from realm_services.api.deps import get_request_context
from realm_services.config import settings_from_env
from realm_services.host.server import RequestContext, Server, create_server
from realm_services.plugin import services_plugin

settings = settings_from_env()

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


class StatusPlugin:
    """Health and introspection routes."""

    name = "status"

    def register(self, server: Server, options: Mapping[str, Any]) -> None:
        server.register(services_plugin)
        server.route("GET", "/healthcheck", healthcheck)
        server.route("GET", "/info", info)


async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


async def info(ctx: RequestContext = Depends(get_request_context)) -> dict[str, Any]:
    scopes = ctx.services(True)
    return {
        "name": "realm-services",
        "version": __version__,
        "scopes": {scope: sorted(names) for scope, names in sorted(scopes.items())},
    }


def build_server() -> Server:
    server = create_server(settings=settings)
    server.register(services_plugin)
    server.register(StatusPlugin())
    return server


server = build_server()
app = server.app
