from __future__ import annotations

from collections.abc import Callable
from types import MappingProxyType
from typing import Any

from realm_services.core.state import ServiceMap, StateTree
from realm_services.host.realm import Realm

_EMPTY: ServiceMap = MappingProxyType({})


def services_view(tree: StateTree, realm: Realm, all: bool = False) -> ServiceMap:
    """Canonical map for the root realm or when `all` is set, else the realm's local view."""

    if all or tree.is_root(realm):
        return tree.root_state().services

    state = tree.state(realm)
    if state is None:
        return _EMPTY
    return state.services


class ServicesAccessor:
    """`services(all=False)` decoration; `resolve_realm` picks the realm for the owner object."""

    def __init__(self, tree: StateTree, resolve_realm: Callable[[Any], Realm]) -> None:
        self._tree = tree
        self._resolve_realm = resolve_realm

    def __call__(self, owner: Any, all: bool = False) -> ServiceMap:
        return services_view(self._tree, self._resolve_realm(owner), all)
