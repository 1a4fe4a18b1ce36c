"""Recursive JSON value type.

Schema descriptors and artifacts are open-ended JSON. Rather than passing
raw dicts around and duck-typing them, they can be lifted into this tagged
union. Equality is structural: object key order never matters, array order
always does, and ``True`` is never equal to ``1``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union


@dataclass(frozen=True)
class JsonNull:
    kind: Literal["null"] = "null"

    def to_python(self) -> None:
        return None


@dataclass(frozen=True)
class JsonBoolean:
    value: bool
    kind: Literal["boolean"] = "boolean"

    def to_python(self) -> bool:
        return self.value


@dataclass(frozen=True)
class JsonNumber:
    value: int | float
    kind: Literal["number"] = "number"

    def to_python(self) -> int | float:
        return self.value


@dataclass(frozen=True)
class JsonString:
    value: str
    kind: Literal["string"] = "string"

    def to_python(self) -> str:
        return self.value


@dataclass(frozen=True)
class JsonArray:
    items: tuple[JsonValue, ...] = ()
    kind: Literal["array"] = "array"

    def to_python(self) -> list[Any]:
        return [item.to_python() for item in self.items]


@dataclass(frozen=True, eq=False)
class JsonObject:
    fields: dict[str, JsonValue] = field(default_factory=dict)
    kind: Literal["object"] = "object"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JsonObject):
            return NotImplemented
        # dict equality is insertion-order independent
        return self.fields == other.fields

    def __hash__(self) -> int:
        return hash(frozenset(self.fields.items()))

    def get(self, key: str) -> JsonValue | None:
        return self.fields.get(key)

    def to_python(self) -> dict[str, Any]:
        return {key: value.to_python() for key, value in self.fields.items()}


JsonValue = Union[JsonNull, JsonBoolean, JsonNumber, JsonString, JsonArray, JsonObject]


def from_python(value: Any) -> JsonValue:
    """Lift a decoded JSON value into the tagged union.

    Raises:
        TypeError: if *value* contains something JSON cannot represent.
    """
    if value is None:
        return JsonNull()
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return JsonBoolean(value)
    if isinstance(value, (int, float)):
        return JsonNumber(value)
    if isinstance(value, str):
        return JsonString(value)
    if isinstance(value, (list, tuple)):
        return JsonArray(tuple(from_python(item) for item in value))
    if isinstance(value, dict):
        fields = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"JSON object keys must be strings, got {type(key).__name__}")
            fields[key] = from_python(item)
        return JsonObject(fields)
    raise TypeError(f"Value of type {type(value).__name__} is not JSON-serializable")
