from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)

# Reserved service name -> host extension point.
LIFECYCLE_EVENTS: Mapping[str, str] = MappingProxyType(
    {
        "initialize": "on_pre_start",
        "teardown": "on_post_stop",
    }
)

ExtFn = Callable[[str, Callable[[], Any]], None]


class LifecycleHookBinder:
    """Turns `initialize` / `teardown` services into host lifecycle hooks.

    Every (scope, name) pair becomes its own hook, so several scopes can each
    contribute one and all of them run. Ordering and failure handling belong to
    the host's extension points.
    """

    def __init__(self, ext: ExtFn) -> None:
        self._ext = ext

    def bind(self, *, scope: str, name: str, method: Callable[..., Any]) -> bool:
        event = LIFECYCLE_EVENTS.get(name)
        if event is None:
            return False

        def hook() -> Any:
            logger.info("Running %s hook %s.%s", event, scope, name)
            return method()

        hook.__qualname__ = hook.__name__ = f"{scope}.{name}"
        self._ext(event, hook)
        return True
