from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, Strict, ValidationError

from realm_services.core.errors import FieldError
from realm_services.host.methods import CachePolicy

PositiveStrictInt = Annotated[int, Strict(), Field(gt=0)]


class CacheOptions(BaseModel):
    """Memoization settings of one service, in milliseconds. No other keys are accepted."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    expires_in: PositiveStrictInt | None = Field(default=None, alias="expiresIn")
    generate_timeout: PositiveStrictInt | None = Field(default=None, alias="generateTimeout")

    def to_policy(self) -> CachePolicy:
        return CachePolicy(expires_in=self.expires_in, generate_timeout=self.generate_timeout)


class ServiceEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., min_length=1)
    method: Callable[..., Any]
    cache: CacheOptions | None = None


class ServiceDescriptor(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    scope: str = Field(..., min_length=1)
    services: list[ServiceEntry] = Field(..., min_length=1)
    context: dict[str, Any] | None = None


DescriptorInput = ServiceDescriptor | Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class ValidationResult:
    descriptors: tuple[ServiceDescriptor, ...] = ()
    errors: tuple[FieldError, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors


_MESSAGES: dict[str, str] = {
    "missing": "is required",
    "extra_forbidden": "is not allowed",
    "callable_type": "must be callable",
    "string_type": "must be a string",
    "string_too_short": "is not allowed to be empty",
    "too_short": "must contain at least 1 item",
    "list_type": "must be an array",
    "int_type": "must be an integer",
    "greater_than": "must be greater than 0",
    "model_type": "must be of type object",
    "model_attributes_type": "must be of type object",
    "dict_type": "must be of type object",
}


def _format_loc(prefix: str, loc: tuple[int | str, ...]) -> str:
    out = prefix
    for part in loc:
        out += f"[{part}]" if isinstance(part, int) else f".{part}"
    return out.lstrip(".")


def _field_errors(prefix: str, exc: ValidationError) -> list[FieldError]:
    errors: list[FieldError] = []
    for err in exc.errors():
        loc = tuple(err["loc"])
        field = next((p for p in reversed(loc) if isinstance(p, str)), "value")
        text = _MESSAGES.get(err["type"], err["msg"])
        errors.append(FieldError(path=_format_loc(prefix, loc), field=field, message=f'"{field}" {text}'))
    return errors


def validate_inputs(inputs: DescriptorInput | Sequence[DescriptorInput]) -> ValidationResult:
    """Shape-check one descriptor or a list of descriptors.

    Never raises for bad input; problems come back in `ValidationResult.errors`.
    """

    if isinstance(inputs, (list, tuple)):
        items = [(f"[{i}]", item) for i, item in enumerate(inputs)]
    else:
        items = [("", inputs)]

    descriptors: list[ServiceDescriptor] = []
    errors: list[FieldError] = []
    for prefix, item in items:
        try:
            descriptors.append(ServiceDescriptor.model_validate(item))
        except ValidationError as e:
            errors.extend(_field_errors(prefix, e))

    if errors:
        return ValidationResult(errors=tuple(errors))
    return ValidationResult(descriptors=tuple(descriptors))
