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
from __future__ import annotations

from functools import cached_property
from typing import Any, Dict, List, Tuple, Union

from pydantic import Field, PrivateAttr

from snaptable.typedef import SnaptableBaseModel
from snaptable.types import NestedField, PrimitiveType

INITIAL_SCHEMA_ID = 0


class Schema(SnaptableBaseModel):
    """A table Schema.

    Example:
        >>> Schema(NestedField(field_id=1, name="id", field_type=LongType(), required=True)).find_field("id").field_id
        1
    """

    type: str = Field(default="struct")
    schema_id: int = Field(alias="schema-id", default=INITIAL_SCHEMA_ID)
    fields: Tuple[NestedField, ...] = Field(default_factory=tuple)

    _name_to_id: Dict[str, int] = PrivateAttr()

    def __init__(self, *fields: NestedField, **data: Any):
        if fields:
            data["fields"] = fields
        super().__init__(**data)
        self._name_to_id = {field.name: field.field_id for field in self.fields}
        if len(self._name_to_id) != len(self.fields):
            raise ValueError(f"Duplicate field names in schema: {[field.name for field in self.fields]}")

    def __str__(self) -> str:
        """Return the string representation of the Schema class."""
        return "table {\n" + "\n".join(["  " + str(field) for field in self.columns]) + "\n}"

    def __repr__(self) -> str:
        """Return the string representation of the Schema class."""
        return f"Schema({', '.join(repr(column) for column in self.columns)}, schema_id={self.schema_id})"

    def __len__(self) -> int:
        """Return the number of top-level fields."""
        return len(self.fields)

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the Schema class."""
        if not other:
            return False

        if not isinstance(other, Schema):
            return False

        if len(self.columns) != len(other.columns):
            return False

        identifier_field_compare = [lhs == rhs for lhs, rhs in zip(self.columns, other.columns)]
        return self.schema_id == other.schema_id and all(identifier_field_compare)

    @property
    def columns(self) -> Tuple[NestedField, ...]:
        """A tuple of the top-level fields."""
        return self.fields

    @cached_property
    def _lazy_id_to_field(self) -> Dict[int, NestedField]:
        return {field.field_id: field for field in self.fields}

    def find_field(self, name_or_id: Union[str, int], case_sensitive: bool = True) -> NestedField:
        """Find a field using a field name or field ID.

        Args:
            name_or_id (Union[str, int]): Either a field name or a field ID.
            case_sensitive (bool, optional): Whether to perform a case-sensitive lookup using a field name. Defaults to True.

        Raises:
            ValueError: When the value cannot be found.

        Returns:
            NestedField: The matched NestedField.
        """
        if isinstance(name_or_id, int):
            if name_or_id not in self._lazy_id_to_field:
                raise ValueError(f"Could not find field with id: {name_or_id}")
            return self._lazy_id_to_field[name_or_id]

        if case_sensitive:
            field_id = self._name_to_id.get(name_or_id)
        else:
            field_id = {name.lower(): field_id for name, field_id in self._name_to_id.items()}.get(name_or_id.lower())

        if field_id is None:
            raise ValueError(f"Could not find field with name {name_or_id}, case_sensitive={case_sensitive}")

        return self._lazy_id_to_field[field_id]

    def find_type(self, name_or_id: Union[str, int], case_sensitive: bool = True) -> PrimitiveType:
        """Find a field type using a field name or field ID."""
        return self.find_field(name_or_id, case_sensitive).field_type

    def find_column_name(self, column_id: int) -> str:
        return self.find_field(column_id).name

    def column_names(self) -> List[str]:
        return [field.name for field in self.fields]

    def highest_field_id(self) -> int:
        return max((field.field_id for field in self.fields), default=0)
