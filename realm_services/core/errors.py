from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class FieldError:
    """One descriptor problem. `path` locates it inside the input, e.g. `[1].services[0].name`."""

    path: str
    field: str
    message: str


class ServiceRegistrationError(RuntimeError):
    pass


class ServiceValidationError(ServiceRegistrationError, ValueError):
    def __init__(self, errors: tuple[FieldError, ...]) -> None:
        self.errors = errors
        super().__init__(errors[0].message if errors else "Invalid service descriptor")


class ScopeCollisionError(ServiceRegistrationError):
    def __init__(self, scope: str) -> None:
        self.scope = scope
        super().__init__(f"A service scope of {scope} already exists")
