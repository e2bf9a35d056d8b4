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

"""Typed accessors for the string valued table properties."""

from typing import (
    Callable,
    Dict,
    Optional,
    TypeVar,
    overload,
)

from snaptable.types import strtobool

T = TypeVar("T")


def _parse_property(properties: Dict[str, str], property_name: str, parse: Callable[[str], T], expected: str) -> Optional[T]:
    # An empty value reads as unset
    if value := properties.get(property_name):
        try:
            return parse(value)
        except ValueError as e:
            raise ValueError(f"Table property {property_name} must be {expected}, got: {value}") from e
    return None


@overload
def property_as_int(properties: Dict[str, str], property_name: str, default: int) -> int: ...


@overload
def property_as_int(properties: Dict[str, str], property_name: str, default: Optional[int] = None) -> Optional[int]: ...


def property_as_int(properties: Dict[str, str], property_name: str, default: Optional[int] = None) -> Optional[int]:
    parsed = _parse_property(properties, property_name, int, "an integer")
    return default if parsed is None else parsed


def property_as_bool(properties: Dict[str, str], property_name: str, default: bool) -> bool:
    parsed = _parse_property(properties, property_name, strtobool, "a boolean")
    return default if parsed is None else parsed
