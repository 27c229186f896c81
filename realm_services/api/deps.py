from __future__ import annotations

from fastapi import Request

from realm_services.host.server import HostCore, RequestContext, Toolkit


def get_host(request: Request) -> HostCore:
    return request.app.state.host


def get_request_context(request: Request) -> RequestContext:
    host = get_host(request)
    return RequestContext(host, request, host.realm_for_route(request.scope.get("route")))


def get_toolkit(request: Request) -> Toolkit:
    host = get_host(request)
    return Toolkit(host, request, host.realm_for_route(request.scope.get("route")))
