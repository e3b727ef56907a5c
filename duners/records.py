"""
Conversion of raw result rows into caller declared record types.

Rows arrive as `dict[str, Any]` with loosely typed values (numbers are often
strings, timestamps always are). A record type declares the expected fields:

    @dataclass
    class ResultRow:
        text_field: str
        number_field: float
        date_field: datetime
        list_field: str = "Option 1"

    records = rows_to_records(rows, ResultRow)

Field conversion is looked up by the declared type in a ConverterRegistry.
A single dataclass field may bypass the registry with
`field(metadata={"converter": fn})` and read a differently named column with
`field(metadata={"column": "name in result"})`.
"""

from __future__ import annotations

import dataclasses
import types
import typing
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, TypeVar

from duners.models import DeserializationError
from duners.parse_utils import datetime_from_str, float_from_str

T = TypeVar("T")
Converter = Callable[[Any], Any]

_MISSING = object()


def _to_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or not isinstance(value, int | float | Decimal):
        raise DeserializationError(f"expected a string, got {type(value).__name__}")
    return str(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise DeserializationError(f"expected an integer, got boolean {value}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as err:
            raise DeserializationError(f"'{value}' is not an integer") from err
    raise DeserializationError(f"expected an integer, got {value!r}")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, int | float | str | Decimal):
        raise DeserializationError(f"expected a decimal, got {type(value).__name__}")
    try:
        return Decimal(str(value))
    except InvalidOperation as err:
        raise DeserializationError(f"'{value}' is not a decimal") from err


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise DeserializationError(f"expected a boolean, got {value!r}")


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value) == 10:
        try:
            return date.fromisoformat(value)
        except ValueError as err:
            raise DeserializationError(f"'{value}' is not a date") from err
    return datetime_from_str(value).date()


def _instance_of(kind: type) -> Converter:
    def convert(value: Any) -> Any:
        if not isinstance(value, kind):
            raise DeserializationError(f"expected {kind.__name__}, got {type(value).__name__}")
        return value

    return convert


DEFAULT_CONVERTERS: Mapping[type, Converter] = {
    str: _to_str,
    int: _to_int,
    float: float_from_str,
    Decimal: _to_decimal,
    bool: _to_bool,
    datetime: datetime_from_str,
    date: _to_date,
    list: _instance_of(list),
    dict: _instance_of(dict),
}


class ConverterRegistry:
    """
    Maps target types to functions turning a raw JSON value into that type.
    Converters raise DeserializationError (or ValueError/TypeError) on bad input.
    """

    def __init__(self, converters: Mapping[type, Converter] | None = None):
        self._converters: dict[type, Converter] = dict(
            DEFAULT_CONVERTERS if converters is None else converters
        )

    def register(self, target: type, converter: Converter) -> None:
        """Adds or replaces the converter used for fields declared as `target`"""
        self._converters[target] = converter

    def copy(self) -> ConverterRegistry:
        """Independent registry with the same converters"""
        return ConverterRegistry(self._converters)

    def __contains__(self, target: object) -> bool:
        return target in self._converters

    def convert(self, value: Any, target: Any) -> Any:
        """Converts `value` into `target`, which may be any supported type hint"""
        if target is Any:
            return value
        origin = typing.get_origin(target)
        if origin is typing.Union or origin is types.UnionType:
            return self._convert_union(value, typing.get_args(target))
        if value is None:
            raise DeserializationError("null value for a non optional field")
        if origin is list:
            (item_type,) = typing.get_args(target) or (Any,)
            return [self.convert(item, item_type) for item in self.convert(value, list)]
        if origin is not None:
            return self.convert(value, origin)

        converter = self._converters.get(target)
        if converter is None:
            if isinstance(target, type) and issubclass(target, Enum):
                converter = target
            elif isinstance(target, type) and isinstance(value, target):
                return value
            else:
                raise DeserializationError(f"no converter registered for {target!r}")
        try:
            return converter(value)
        except DeserializationError:
            raise
        except (ValueError, TypeError) as err:
            raise DeserializationError(f"cannot convert {value!r} to {target!r}: {err}") from err

    def _convert_union(self, value: Any, options: tuple[Any, ...]) -> Any:
        if value is None:
            if type(None) in options:
                return None
            raise DeserializationError("null value for a non optional field")
        errors = []
        for option in options:
            if option is type(None):
                continue
            try:
                return self.convert(value, option)
            except DeserializationError as err:
                errors.append(str(err))
        raise DeserializationError("; ".join(errors))


DEFAULT_REGISTRY = ConverterRegistry()


def _record_fields(record_type: type) -> Iterable[tuple[str, str, Any, bool, Converter | None]]:
    """Yields (attribute, column, type hint, required, custom converter) per field"""
    hints = typing.get_type_hints(record_type)
    if dataclasses.is_dataclass(record_type):
        for fld in dataclasses.fields(record_type):
            if not fld.init:
                continue
            required = (
                fld.default is dataclasses.MISSING and fld.default_factory is dataclasses.MISSING
            )
            yield (
                fld.name,
                fld.metadata.get("column", fld.name),
                hints[fld.name],
                required,
                fld.metadata.get("converter"),
            )
    elif issubclass(record_type, tuple) and hasattr(record_type, "_fields"):
        defaults = getattr(record_type, "_field_defaults", {})
        for name in record_type._fields:
            yield name, name, hints.get(name, Any), name not in defaults, None
    else:
        raise TypeError(
            f"unsupported record type {record_type!r}: use a dataclass, NamedTuple or dict"
        )


def row_to_record(
    row: Mapping[str, Any],
    record_type: type[T],
    registry: ConverterRegistry | None = None,
) -> T:
    """
    Converts a single result row into `record_type`.
    Columns not declared by the record are ignored.
    """
    if record_type is dict:
        return dict(row)  # type: ignore[return-value]
    registry = registry or DEFAULT_REGISTRY
    kwargs: dict[str, Any] = {}
    for attribute, column, hint, required, converter in _record_fields(record_type):
        raw = row.get(column, _MISSING)
        if raw is _MISSING:
            if required:
                raise DeserializationError(f"missing field '{column}'")
            continue
        try:
            kwargs[attribute] = converter(raw) if converter else registry.convert(raw, hint)
        except (DeserializationError, ValueError, TypeError) as err:
            raise DeserializationError(f"field '{column}': {err}") from err
    return record_type(**kwargs)


def rows_to_records(
    rows: Iterable[Mapping[str, Any]],
    record_type: type[T],
    registry: ConverterRegistry | None = None,
) -> list[T]:
    """
    Converts result rows into records, preserving row order.
    Fails on the first row that doesn't fit, naming its index.
    """
    records = []
    for index, row in enumerate(rows):
        try:
            records.append(row_to_record(row, record_type, registry))
        except DeserializationError as err:
            raise DeserializationError(f"row {index}: {err}") from err
    return records
