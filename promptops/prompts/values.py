"""Tagged binding values used by the template compiler"""

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

from pydantic import BaseModel


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"


@dataclass(frozen=True)
class Value:
    """A binding converted into one of six kinds"""
    kind: ValueKind
    data: Any = None

    @classmethod
    def of(cls, raw: Any) -> "Value":
        """Convert a plain Python value"""
        if isinstance(raw, Value):
            return raw
        if raw is None:
            return cls(ValueKind.NULL)
        # bool before int: bool is an int subclass
        if isinstance(raw, bool):
            return cls(ValueKind.BOOLEAN, raw)
        if isinstance(raw, (int, float)):
            return cls(ValueKind.NUMBER, raw)
        if isinstance(raw, str):
            return cls(ValueKind.STRING, raw)
        if isinstance(raw, BaseModel):
            return cls(ValueKind.OBJECT, raw.model_dump(mode="json"))
        if isinstance(raw, Mapping):
            return cls(ValueKind.OBJECT, dict(raw))
        if isinstance(raw, (list, tuple, set, frozenset)):
            return cls(ValueKind.ARRAY, list(raw))
        return cls(ValueKind.STRING, str(raw))

    def is_truthy(self) -> bool:
        """Defined, not empty string, not zero, not false"""
        if self.kind is ValueKind.NULL:
            return False
        if self.kind is ValueKind.BOOLEAN:
            return self.data
        if self.kind is ValueKind.NUMBER:
            return self.data != 0 and not math.isnan(self.data)
        if self.kind is ValueKind.STRING:
            return self.data != ""
        return True

    def get(self, prop: str) -> "Value":
        """Property access; non-objects are returned unchanged"""
        if self.kind is ValueKind.OBJECT:
            return Value.of(self.data.get(prop))
        if self.kind is ValueKind.ARRAY and prop.isdigit():
            index = int(prop)
            return Value.of(self.data[index]) if index < len(self.data) else Value(ValueKind.NULL)
        return self

    def items(self) -> Iterator["Value"]:
        if self.kind is ValueKind.ARRAY:
            for item in self.data:
                yield Value.of(item)

    def render(self) -> str:
        if self.kind is ValueKind.NULL:
            return ""
        if self.kind is ValueKind.BOOLEAN:
            return "true" if self.data else "false"
        if self.kind is ValueKind.NUMBER:
            return _render_number(self.data)
        if self.kind is ValueKind.STRING:
            return self.data
        return json.dumps(self.data, separators=(",", ":"), ensure_ascii=False, default=str)


def _render_number(number: Any) -> str:
    if isinstance(number, float):
        if math.isnan(number):
            return "NaN"
        if math.isinf(number):
            return "Infinity" if number > 0 else "-Infinity"
        if number.is_integer():
            return str(int(number))
    return str(number)
