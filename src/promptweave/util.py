import re
from typing import Any

_IDENTIFIER_SEPARATORS = re.compile(r"[\s.\-/]+")


def str_to_bool(value: str | bool | int | None) -> bool:
    """Convert common truthy / falsy strings and values to `bool`."""

    truthy_values = {"true", "1", "yes", "y", "t", "on"}
    falsy_values = {"false", "0", "no", "n", "f", "off"}

    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if not isinstance(value, str):
        raise ValueError(f"Cannot convert '{value}' to a boolean.")

    value = value.strip().lower()

    if value in truthy_values:
        return True
    if value in falsy_values:
        return False
    raise ValueError(f"Cannot convert '{value}' to a boolean.")


def normalise_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def normalise_identifier(value: Any) -> str:
    """Upper-case ``value`` and collapse separators to underscores.

    ``"llama-3.1"`` and ``" Llama 3 1 "`` both become ``"LLAMA_3_1"``.
    """

    text = normalise_text(value).strip().upper()
    return _IDENTIFIER_SEPARATORS.sub("_", text).strip("_")
