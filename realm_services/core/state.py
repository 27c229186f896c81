from __future__ import annotations

import weakref
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

from realm_services.host.realm import Realm, iter_ancestors

ServiceMap = Mapping[str, Mapping[str, Callable[..., Any]]]


class ServiceState:
    """Mutable service record of one realm.

    `services` is a read-only view and cannot be reassigned; only `merge` writes.
    """

    __slots__ = ("initialized", "_services")

    def __init__(self) -> None:
        self.initialized = False
        self._services: dict[str, dict[str, Callable[..., Any]]] = {}

    @property
    def services(self) -> ServiceMap:
        return MappingProxyType(self._services)

    def has_scope(self, scope: str) -> bool:
        return scope in self._services

    def merge(self, scope: str, name: str, method: Callable[..., Any]) -> None:
        """Add `name` to `scope`, keeping whatever the scope already holds."""

        self._services[scope] = {**self._services.get(scope, {}), name: method}


class StateTree:
    """Per-realm `ServiceState` records for one host, keyed by realm identity.

    Records are created on first access and dropped together with their realm.
    """

    def __init__(self, root: Realm) -> None:
        self.root = root
        self._states: weakref.WeakKeyDictionary[Realm, ServiceState] = weakref.WeakKeyDictionary()

    def is_root(self, realm: Realm) -> bool:
        return realm is self.root

    def state(self, realm: Realm) -> ServiceState | None:
        return self._states.get(realm)

    def get_or_create_state(self, realm: Realm) -> ServiceState:
        state = self._states.get(realm)
        if state is None:
            state = ServiceState()
            state.initialized = True
            self._states[realm] = state
        return state

    def root_state(self) -> ServiceState:
        return self.get_or_create_state(self.root)

    def for_each_ancestor(self, realm: Realm, fn: Callable[[Realm], None]) -> None:
        """Call `fn` for the parent of `realm`, then its parent, up to and including the root."""

        for ancestor in iter_ancestors(realm):
            fn(ancestor)
