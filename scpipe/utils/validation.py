"""Parameter validation helpers shared by the configuration classes."""

from enum import Enum
from typing import Type, TypeVar, Union

from ..errors import ConfigurationError

E = TypeVar("E", bound=Enum)


def coerce_enum(enum_cls: Type[E], value: Union[str, E], field_name: str) -> E:
    """Resolve a method name (case-insensitive) to an enum member.

    Parameters
    ----------
    enum_cls : Type[Enum]
        Target enum class
    value : str or Enum
        Either a member or its string value
    field_name : str
        Name reported in the error message

    Raises
    ------
    ConfigurationError
        If ``value`` does not name a member
    """
    if isinstance(value, enum_cls):
        return value
    key = str(value).strip().lower().replace("-", "_")
    for member in enum_cls:
        if member.value == key or member.name.lower() == key:
            return member
    allowed = ", ".join(m.value for m in enum_cls)
    raise ConfigurationError(
        f"Unknown {field_name} '{value}' (expected one of: {allowed})"
    )


def require_positive(value: float, field_name: str, allow_zero: bool = False) -> None:
    """Raise ConfigurationError unless ``value`` is positive."""
    if value < 0 or (value == 0 and not allow_zero):
        bound = ">= 0" if allow_zero else "> 0"
        raise ConfigurationError(f"{field_name} must be {bound}, got {value}")
