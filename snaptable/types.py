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
"""Data types used in describing table schemas.

Only primitive column types are supported, they are the ones that carry
lower and upper bounds in the data file metrics:

    >>> LongType()
    LongType()
    >>> str(StringType())
    'string'
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import Field, field_validator

from snaptable.typedef import SnaptableBaseModel, SnaptableRootModel


def strtobool(val: str) -> bool:
    """Convert a string representation of truth to true (1) or false (0).

    True values are 'y', 'yes', 't', 'true', 'on', and '1'; false values
    are 'n', 'no', 'f', 'false', 'off', and '0'.  Raises ValueError if
    'val' is anything else.
    """
    val = val.lower()
    if val in ("y", "yes", "t", "true", "on", "1"):
        return True
    elif val in ("n", "no", "f", "false", "off", "0"):
        return False
    else:
        raise ValueError(f"Invalid truth value: {val!r}")


class PrimitiveType(SnaptableRootModel[str]):
    """Base class for all primitive types, serialized as their name."""

    root: str = Field()

    def __repr__(self) -> str:
        """Return the string representation of the PrimitiveType class."""
        return f"{type(self).__name__}()"

    def __str__(self) -> str:
        """Return the string representation of the PrimitiveType class."""
        return self.root


class BooleanType(PrimitiveType):
    root: Literal["boolean"] = Field(default="boolean")


class IntegerType(PrimitiveType):
    """An Integer data type, 32-bit signed integers."""

    root: Literal["int"] = Field(default="int")


class LongType(PrimitiveType):
    """A Long data type, 64-bit signed integers."""

    root: Literal["long"] = Field(default="long")


class FloatType(PrimitiveType):
    """A Float data type, 32-bit IEEE 754 floating point numbers."""

    root: Literal["float"] = Field(default="float")


class DoubleType(PrimitiveType):
    """A Double data type, 64-bit IEEE 754 floating point numbers."""

    root: Literal["double"] = Field(default="double")


class DateType(PrimitiveType):
    """A Date data type, stored as the number of days since 1970-01-01."""

    root: Literal["date"] = Field(default="date")


class TimestampType(PrimitiveType):
    """A Timestamp data type, stored as microseconds since 1970-01-01 00:00:00."""

    root: Literal["timestamp"] = Field(default="timestamp")


class StringType(PrimitiveType):
    """A String data type, arbitrary-length character sequences encoded in UTF-8."""

    root: Literal["string"] = Field(default="string")


class BinaryType(PrimitiveType):
    root: Literal["binary"] = Field(default="binary")


_PRIMITIVE_TYPES: Dict[str, PrimitiveType] = {
    primitive_type.root: primitive_type
    for primitive_type in (
        BooleanType(),
        IntegerType(),
        LongType(),
        FloatType(),
        DoubleType(),
        DateType(),
        TimestampType(),
        StringType(),
        BinaryType(),
    )
}


def primitive_type(name: str) -> PrimitiveType:
    try:
        return _PRIMITIVE_TYPES[name.lower()]
    except KeyError as e:
        raise ValueError(f"Unsupported type: {name}") from e


class NestedField(SnaptableBaseModel):
    """Represents a field of a schema.

    Example:
        >>> str(NestedField(
        ...     field_id=1,
        ...     name='id',
        ...     field_type=LongType(),
        ...     required=True,
        ... ))
        '1: id: required long'
    """

    field_id: int = Field(alias="id")
    name: str = Field()
    field_type: PrimitiveType = Field(alias="type")
    required: bool = Field(default=False)
    doc: Optional[str] = Field(default=None, repr=False)

    def __init__(
        self,
        field_id: Optional[int] = None,
        name: Optional[str] = None,
        field_type: Optional[PrimitiveType] = None,
        required: bool = False,
        doc: Optional[str] = None,
        **data: Any,
    ):
        # We need an init when we want to use positional arguments, but
        # need also to support the aliases.
        data["id"] = data["id"] if "id" in data else field_id
        data["name"] = name if name is not None else data.get("name")
        data["type"] = data["type"] if "type" in data else field_type
        data["required"] = data.get("required", required)
        data["doc"] = data["doc"] if "doc" in data else doc
        super().__init__(**data)

    @field_validator("field_type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return primitive_type(value)
        return value

    @property
    def optional(self) -> bool:
        return not self.required

    def __str__(self) -> str:
        """Return the string representation of the NestedField class."""
        doc = "" if not self.doc else f" ({self.doc})"
        req = "required" if self.required else "optional"
        return f"{self.field_id}: {self.name}: {req} {self.field_type}{doc}"
