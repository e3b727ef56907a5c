"""
Query parameter types accepted by the Dune API.
Dune supports 4 parameter types; in the end all of them travel
over the wire as JSON strings (or lists of strings for multi-select enums).
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any

from duners.util import postgres_date

if TYPE_CHECKING:
    from datetime import datetime

DuneRecord = dict[str, Any]
QueryParameters = dict[str, str | list[str] | int]


class ParameterType(Enum):
    """
    Enum of the 4 distinct dune parameter types
    """

    TEXT = "text"
    NUMBER = "number"
    DATE = "datetime"
    ENUM = "enum"

    @classmethod
    def from_string(cls, type_str: str) -> ParameterType:
        """
        Attempts to parse Parameter from string.
        raises ValueError when there is no match
        """
        patterns = {
            r"text": cls.TEXT,
            r"number": cls.NUMBER,
            r"date": cls.DATE,
            r"enum": cls.ENUM,
            r"list": cls.ENUM,
        }
        for pattern, param in patterns.items():
            if re.match(pattern, type_str, re.IGNORECASE):
                return param
        raise ValueError(f"could not parse ParameterType from '{type_str}'")


class QueryParameter:
    """Class whose instances are Dune Compatible Query Parameters"""

    def __init__(
        self,
        name: str,
        parameter_type: ParameterType,
        value: Any,
    ):
        self.key: str = name
        self.type: ParameterType = parameter_type
        self.value = value

    def __eq__(self, other: object) -> bool:
        # Parameters are equal when Dune receives the same thing for them,
        # e.g. number_type("n", 1) and number_type("n", "1").
        if not isinstance(other, QueryParameter):
            return NotImplemented
        return all(
            [
                self.key == other.key,
                self.serialized_value() == other.serialized_value(),
                self.type.value == other.type.value,
            ]
        )

    def __hash__(self) -> int:
        value = self.serialized_value()
        if isinstance(value, list):
            value = tuple(value)
        return hash((self.key, value, self.type.value))

    @classmethod
    def text_type(cls, name: str, value: str) -> QueryParameter:
        """Constructs a Query parameter of type text"""
        return cls(name, ParameterType.TEXT, value)

    @classmethod
    def number_type(cls, name: str, value: int | float | str) -> QueryParameter:
        """
        Constructs a Query parameter of type number.
        Strings are accepted to preserve the exact decimal representation.
        """
        return cls(name, ParameterType.NUMBER, value)

    @classmethod
    def date_type(cls, name: str, value: datetime | str) -> QueryParameter:
        """
        Constructs a Query parameter of type date.
        For convenience, we allow proper datetime type, or string
        """
        if isinstance(value, str):
            value = postgres_date(value)
        return cls(name, ParameterType.DATE, value)

    @classmethod
    def enum_type(cls, name: str, value: str | Sequence[str]) -> QueryParameter:
        """Constructs a Query parameter of type enum or multi-select"""
        if isinstance(value, str):
            return cls(name, ParameterType.ENUM, value)
        if isinstance(value, Sequence):
            return cls(name, ParameterType.ENUM, tuple(value))
        raise TypeError(f"Unsupported enum value type for parameter '{name}': {type(value)!r}")

    def serialized_value(self) -> str | list[str]:
        """Returns JSON-ready value of parameter"""
        if self.type in (ParameterType.TEXT, ParameterType.NUMBER, ParameterType.ENUM):
            if isinstance(self.value, Sequence) and not isinstance(self.value, str):
                return [str(v) for v in self.value]
            return str(self.value)
        if self.type == ParameterType.DATE:
            # Dune date precision is to the second.
            return str(self.value.strftime("%Y-%m-%d %H:%M:%S"))
        raise TypeError(f"Type {self.type} not recognized!")

    def to_dict(self) -> dict[str, str | list[str]]:
        """Converts QueryParameter into string json format accepted by Dune API"""
        results: dict[str, str | list[str]] = {
            "key": self.key,
            "type": self.type.value,
            "value": self.serialized_value(),
        }
        return results

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> QueryParameter:
        """Constructs Query Parameters from json."""
        name, value = obj["key"], obj["value"]
        p_type = ParameterType.from_string(obj["type"])
        if p_type == ParameterType.DATE:
            return cls.date_type(name, value)
        if p_type == ParameterType.TEXT:
            assert isinstance(value, str)
            return cls.text_type(name, value)
        if p_type == ParameterType.NUMBER:
            # Numbers arrive as strings, kept verbatim to preserve their precision.
            return cls.number_type(name, value)
        return cls.enum_type(name, value)

    def __str__(self) -> str:
        # For less cryptic logging.
        return f"Parameter(name={self.key}, value={self.value}, type={self.type.value})"

    def __repr__(self) -> str:
        return str(self)
