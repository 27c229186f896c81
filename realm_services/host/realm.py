from __future__ import annotations

import weakref
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(eq=False)
class Realm:
    """One node of the composition tree.

    Each registered plugin gets its own realm. The parent link is weak: a realm never
    keeps its ancestors alive, ownership only flows downwards through `children`.
    """

    name: str
    options: Mapping[str, Any] = field(default_factory=dict)
    # Per-plugin slots, keyed by plugin name.
    plugins: dict[str, Any] = field(default_factory=dict)
    children: list["Realm"] = field(default_factory=list)
    _parent: weakref.ReferenceType["Realm"] | None = field(default=None, repr=False)

    @property
    def parent(self) -> "Realm | None":
        if self._parent is None:
            return None
        return self._parent()

    def add_child(self, *, name: str, options: Mapping[str, Any] | None = None) -> "Realm":
        child = Realm(name=name, options=dict(options or {}), _parent=weakref.ref(self))
        self.children.append(child)
        return child


def iter_ancestors(realm: Realm) -> Iterator[Realm]:
    """Yield the parent, grandparent, ... up to and including the root."""

    node = realm.parent
    while node is not None:
        yield node
        node = node.parent
