from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from realm_services.core.context import build_service_context
from realm_services.core.descriptors import DescriptorInput, ServiceDescriptor, ServiceEntry, validate_inputs
from realm_services.core.errors import ScopeCollisionError, ServiceValidationError
from realm_services.core.lifecycle import LifecycleHookBinder
from realm_services.core.state import ServiceState, StateTree
from realm_services.host.realm import Realm

if TYPE_CHECKING:
    from realm_services.host.server import Server

logger = logging.getLogger(__name__)


def check_scope_unique(scope: str, root_state: ServiceState) -> None:
    if root_state.has_scope(scope):
        raise ScopeCollisionError(scope)


def bind_service(
    descriptor: ServiceDescriptor,
    service: ServiceEntry,
    server: "Server",
    hooks: LifecycleHookBinder,
) -> Callable[..., Any]:
    """Close `service.method` over its execution context.

    Cached services go through the host's method table under `scope.name`; the
    returned callable is the memoized wrapper.
    """

    ctx = build_service_context(context=descriptor.context, server=server)

    method: Callable[..., Any]
    if service.cache is not None:
        method = server.method(
            f"{descriptor.scope}.{service.name}",
            service.method,
            bind=ctx,
            cache=service.cache.to_policy(),
        )
    else:
        method = functools.partial(service.method, ctx)

    hooks.bind(scope=descriptor.scope, name=service.name, method=method)
    return method


class Registrar:
    """Implements `register_service_methods` for every realm of one host."""

    def __init__(self, tree: StateTree) -> None:
        self._tree = tree

    def register_service_methods(
        self,
        server: "Server",
        inputs: DescriptorInput | Sequence[DescriptorInput],
        *,
        atomic: bool = False,
    ) -> None:
        """Register one descriptor or a list of them from `server.realm`.

        Descriptors are processed in order. By default a scope collision part way
        through a list leaves the earlier descriptors registered; with `atomic=True`
        every scope of the call is checked before anything is written.
        """

        self._tree.get_or_create_state(server.realm)

        result = validate_inputs(inputs)
        if not result.ok:
            logger.warning("Rejected service descriptor from realm %s: %s", server.realm.name, result.errors[0].message)
            raise ServiceValidationError(result.errors)

        root_state = self._tree.root_state()
        if atomic:
            self._check_all_scopes(result.descriptors, root_state)

        hooks = LifecycleHookBinder(server.ext)
        for descriptor in result.descriptors:
            try:
                check_scope_unique(descriptor.scope, root_state)
            except ScopeCollisionError:
                logger.warning("Scope collision on %s from realm %s", descriptor.scope, server.realm.name)
                raise

            for service in descriptor.services:
                method = bind_service(descriptor, service, server, hooks)
                self.propagate(descriptor.scope, service.name, method, root_state, server.realm)

            logger.info(
                "Registered scope %s (%d services) from realm %s",
                descriptor.scope,
                len(descriptor.services),
                server.realm.name,
            )

    def propagate(
        self,
        scope: str,
        name: str,
        method: Callable[..., Any],
        root_state: ServiceState,
        realm: Realm,
    ) -> None:
        """Write the canonical entry, then mirror it into `realm` and each of its ancestors."""

        root_state.merge(scope, name, method)

        def mirror(node: Realm) -> None:
            if self._tree.is_root(node):
                return
            self._tree.get_or_create_state(node).merge(scope, name, method)

        mirror(realm)
        self._tree.for_each_ancestor(realm, mirror)

    @staticmethod
    def _check_all_scopes(descriptors: Sequence[ServiceDescriptor], root_state: ServiceState) -> None:
        seen: set[str] = set()
        for descriptor in descriptors:
            if root_state.has_scope(descriptor.scope) or descriptor.scope in seen:
                raise ScopeCollisionError(descriptor.scope)
            seen.add(descriptor.scope)
