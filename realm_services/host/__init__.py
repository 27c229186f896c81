"""Minimal plugin host: realm tree, server views, extension points and methods.

The service registry in `realm_services.core` only walks these structures; it never
builds them itself.
"""

from realm_services.host.realm import Realm, iter_ancestors
from realm_services.host.server import RequestContext, Server, Toolkit, create_server

__all__ = ["Realm", "RequestContext", "Server", "Toolkit", "create_server", "iter_ancestors"]
