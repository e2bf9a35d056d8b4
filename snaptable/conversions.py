# Licensed to the Apache Software Foundation (ASF) under one
# or more contributor license agreements.  See the NOTICE file
# distributed with this work for additional information
# regarding copyright ownership.  The ASF licenses this file
# to you under the Apache License, Version 2.0 (the
# "License"); you may not use this file except in compliance
# with the License.  You may obtain a copy of the License at
#
#   http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing,
# software distributed under the License is distributed on an
# "AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY
# KIND, either express or implied.  See the License for the
# specific language governing permissions and limitations
# under the License.
"""Utility module for various conversions around PrimitiveType implementations.

This module enables:
    - Converting partition strings to built-in python objects.
    - Converting a value to a byte buffer (the single-value serialization used for column bounds).
    - Converting a byte buffer back to a value.
    - Coercing user supplied literals to the internal representation of a type.

Note:
    Conversion logic varies based on the PrimitiveType subclass. To avoid a long
    chain of if/else checks, the functions are wrapped in ``singledispatch`` and
    the implementations are registered per type. Dates are stored as days since
    epoch and timestamps as microseconds since epoch.
"""

from __future__ import annotations

from datetime import date, datetime
from functools import singledispatch
from struct import Struct
from typing import Any, Optional

from snaptable.typedef import UTF8
from snaptable.types import (
    BinaryType,
    BooleanType,
    DateType,
    DoubleType,
    FloatType,
    IntegerType,
    LongType,
    PrimitiveType,
    StringType,
    TimestampType,
    strtobool,
)
from snaptable.utils.datetime import (
    date_str_to_days,
    date_to_days,
    datetime_to_micros,
    days_to_date,
    micros_to_timestamp,
    timestamp_to_micros,
)

_BOOL_STRUCT = Struct("<?")
_INT_STRUCT = Struct("<i")
_LONG_STRUCT = Struct("<q")
_FLOAT_STRUCT = Struct("<f")
_DOUBLE_STRUCT = Struct("<d")

NULL_PARTITION_VALUE = "null"


def partition_to_py(primitive_type: PrimitiveType, value_str: Optional[str]) -> Any:
    """Convert a partition string to a python built-in.

    Args:
        primitive_type (PrimitiveType): An implementation of the PrimitiveType base class.
        value_str (str): A string representation of a partition value, "null" for a null partition.
    """
    if value_str is None or value_str == NULL_PARTITION_VALUE:
        return None
    return to_py_value(primitive_type, value_str)


def partition_to_str(primitive_type: PrimitiveType, value: Any) -> str:
    """Render a partition value the way it appears in a partition path."""
    if value is None:
        return NULL_PARTITION_VALUE
    if isinstance(primitive_type, DateType):
        return days_to_date(value).isoformat()
    if isinstance(primitive_type, TimestampType):
        return micros_to_timestamp(value).isoformat()
    if isinstance(primitive_type, BinaryType):
        return bytes(value).hex()
    if isinstance(primitive_type, BooleanType):
        return str(value).lower()
    return str(value)


@singledispatch
def to_py_value(primitive_type: PrimitiveType, value: Any) -> Any:
    """Coerce a literal to the internal python representation of a type.

    Args:
        primitive_type (PrimitiveType): An implementation of the PrimitiveType base class.
        value (Any): A python value or its string representation.
    """
    raise TypeError(f"Cannot convert {value!r} to unsupported type: {primitive_type}")


@to_py_value.register(BooleanType)
def _(_: BooleanType, value: Any) -> bool:
    if isinstance(value, str):
        return strtobool(value)
    return bool(value)


@to_py_value.register(IntegerType)
@to_py_value.register(LongType)
def _(_: PrimitiveType, value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError(f"Cannot convert boolean to an integer: {value}")
    return int(value)


@to_py_value.register(FloatType)
@to_py_value.register(DoubleType)
def _(_: PrimitiveType, value: Any) -> float:
    return float(value)


@to_py_value.register(DateType)
def _(_: DateType, value: Any) -> int:
    if isinstance(value, str):
        return date_str_to_days(value)
    elif isinstance(value, datetime):
        return date_to_days(value.date())
    elif isinstance(value, date):
        return date_to_days(value)
    return int(value)


@to_py_value.register(TimestampType)
def _(_: TimestampType, value: Any) -> int:
    if isinstance(value, str):
        return timestamp_to_micros(value)
    elif isinstance(value, datetime):
        return datetime_to_micros(value)
    return int(value)


@to_py_value.register(StringType)
def _(_: StringType, value: Any) -> str:
    return str(value)


@to_py_value.register(BinaryType)
def _(_: BinaryType, value: Any) -> bytes:
    if isinstance(value, str):
        return bytes.fromhex(value)
    return bytes(value)


@singledispatch
def to_bytes(primitive_type: PrimitiveType, _: Any) -> bytes:
    """Convert a built-in python value to bytes.

    This conversion follows the serialization scheme for storing single values as individual
    binary values: fixed width little-endian for numbers, UTF-8 for strings and raw bytes for binary.

    Args:
        primitive_type (PrimitiveType): An implementation of the PrimitiveType base class.
        _: The value to convert to bytes (The type of this value depends on which dispatched function is
            used--check dispatchable functions for type hints).
    """
    raise TypeError(f"Cannot serialize value, type {primitive_type} not supported: {_!r}")


@to_bytes.register(BooleanType)
def _(_: BooleanType, value: bool) -> bytes:
    return _BOOL_STRUCT.pack(1 if value else 0)


@to_bytes.register(IntegerType)
@to_bytes.register(DateType)
def _(_: PrimitiveType, value: int) -> bytes:
    return _INT_STRUCT.pack(value)


@to_bytes.register(LongType)
@to_bytes.register(TimestampType)
def _(_: PrimitiveType, value: int) -> bytes:
    return _LONG_STRUCT.pack(value)


@to_bytes.register(FloatType)
def _(_: FloatType, value: float) -> bytes:
    """Convert a float value into bytes.

    Note: float in python is implemented using a double in C. Therefore this involves a conversion of a 32-bit (single precision)
    float to a 64-bit (double precision) float which introduces some imprecision.
    """
    return _FLOAT_STRUCT.pack(value)


@to_bytes.register(DoubleType)
def _(_: DoubleType, value: float) -> bytes:
    return _DOUBLE_STRUCT.pack(value)


@to_bytes.register(StringType)
def _(_: StringType, value: str) -> bytes:
    return value.encode(UTF8)


@to_bytes.register(BinaryType)
def _(_: PrimitiveType, value: bytes) -> bytes:
    return value


@singledispatch
def from_bytes(primitive_type: PrimitiveType, b: bytes) -> Any:
    """Convert bytes to a built-in python value.

    Args:
        primitive_type (PrimitiveType): An implementation of the PrimitiveType base class.
        b (bytes): The bytes to convert.
    """
    raise TypeError(f"Cannot deserialize bytes, type {primitive_type} not supported: {b!r}")


@from_bytes.register(BooleanType)
def _(_: BooleanType, b: bytes) -> bool:
    return _BOOL_STRUCT.unpack(b)[0] != 0


@from_bytes.register(IntegerType)
@from_bytes.register(DateType)
def _(_: PrimitiveType, b: bytes) -> int:
    return _INT_STRUCT.unpack(b)[0]


@from_bytes.register(LongType)
@from_bytes.register(TimestampType)
def _(_: PrimitiveType, b: bytes) -> int:
    return _LONG_STRUCT.unpack(b)[0]


@from_bytes.register(FloatType)
def _(_: FloatType, b: bytes) -> float:
    return _FLOAT_STRUCT.unpack(b)[0]


@from_bytes.register(DoubleType)
def _(_: DoubleType, b: bytes) -> float:
    return _DOUBLE_STRUCT.unpack(b)[0]


@from_bytes.register(StringType)
def _(_: StringType, b: bytes) -> str:
    return bytes(b).decode(UTF8)


@from_bytes.register(BinaryType)
def _(_: BinaryType, b: bytes) -> bytes:
    return b
