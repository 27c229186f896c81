from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from realm_services.core.accessor import ServicesAccessor
from realm_services.core.registrar import Registrar
from realm_services.core.state import StateTree
from realm_services.host.realm import Realm
from realm_services.host.server import RequestContext, Server, Toolkit

logger = logging.getLogger(__name__)

PLUGIN_NAME = "realm-services"


class ServicesPlugin:
    """Host plugin adding `register_service_methods()` and `services()`.

    Any plugin may register it, any number of times; the decorations and the state
    tree are installed once per host, in the root realm's plugin slot.
    """

    name = PLUGIN_NAME
    multiple = True

    def register(self, server: Server, options: Mapping[str, Any] | None = None) -> None:
        root = server.root_realm
        if PLUGIN_NAME in root.plugins:
            return

        tree = StateTree(root)
        tree.root_state()
        root.plugins[PLUGIN_NAME] = tree

        registrar = Registrar(tree)
        server.decorate("server", "register_service_methods", registrar.register_service_methods)
        server.decorate("server", "services", ServicesAccessor(tree, _server_realm))
        server.decorate("toolkit", "services", ServicesAccessor(tree, _toolkit_realm))
        server.decorate("request", "services", ServicesAccessor(tree, _request_realm))
        logger.debug("Service registry installed")


def _server_realm(server: Server) -> Realm:
    return server.realm


def _toolkit_realm(toolkit: Toolkit) -> Realm:
    return toolkit.realm


def _request_realm(request: RequestContext) -> Realm:
    return request.route_realm


services_plugin = ServicesPlugin()
