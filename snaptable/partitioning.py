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

from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote_plus, unquote_plus

from pydantic import Field, field_validator

from snaptable.conversions import partition_to_py, partition_to_str
from snaptable.schema import Schema
from snaptable.typedef import Record, SnaptableBaseModel

INITIAL_PARTITION_SPEC_ID = 0
PARTITION_FIELD_ID_START: int = 1000
IDENTITY = "identity"


class PartitionField(SnaptableBaseModel):
    """PartitionField represents how one partition value is derived from the source column via transformation.

    Only the identity transform is supported, the partition value is the value of the source column.

    Attributes:
        source_id(int): The source column id of table's schema.
        field_id(int): The partition field id across all the table partition specs.
        name(str): The name of this partition field.
        transform(str): The transform used to produce partition values from source column.
    """

    source_id: int = Field(alias="source-id")
    field_id: int = Field(alias="field-id")
    name: str = Field()
    transform: str = Field(default=IDENTITY)

    def __init__(
        self,
        source_id: Optional[int] = None,
        field_id: Optional[int] = None,
        name: Optional[str] = None,
        transform: Optional[str] = None,
        **data: Any,
    ):
        if source_id is not None:
            data["source-id"] = source_id
        if field_id is not None:
            data["field-id"] = field_id
        if name is not None:
            data["name"] = name
        if transform is not None:
            data["transform"] = transform
        super().__init__(**data)

    @field_validator("transform")
    @classmethod
    def _only_identity(cls, value: str) -> str:
        if value != IDENTITY:
            raise ValueError(f"Unsupported partition transform: {value}")
        return value

    def __str__(self) -> str:
        """Return the string representation of the PartitionField class."""
        return f"{self.field_id}: {self.name}: {self.transform}({self.source_id})"


class PartitionSpec(SnaptableBaseModel):
    """
    PartitionSpec captures the transformation from table data to partition values.

    Attributes:
        spec_id(int): any change to PartitionSpec will produce a new specId.
        fields(Tuple[PartitionField): list of partition fields to produce partition values.
    """

    spec_id: int = Field(alias="spec-id", default=INITIAL_PARTITION_SPEC_ID)
    fields: Tuple[PartitionField, ...] = Field(default_factory=tuple)

    def __init__(
        self,
        *fields: PartitionField,
        **data: Any,
    ):
        if fields:
            data["fields"] = tuple(fields)
        super().__init__(**data)

    def __str__(self) -> str:
        """Produce a human-readable string representation of PartitionSpec.

        Note:
            Only include list of partition fields in the PartitionSpec's string representation.
        """
        result_str = "["
        if self.fields:
            result_str += "\n  " + "\n  ".join([str(field) for field in self.fields]) + "\n"
        result_str += "]"
        return result_str

    def __repr__(self) -> str:
        """Return the string representation of the PartitionSpec class."""
        fields = f"{', '.join(repr(column) for column in self.fields)}, " if self.fields else ""
        return f"PartitionSpec({fields}spec_id={self.spec_id})"

    def is_unpartitioned(self) -> bool:
        return not self.fields

    def last_assigned_field_id(self) -> int:
        if self.fields:
            return max(pf.field_id for pf in self.fields)
        return PARTITION_FIELD_ID_START - 1

    def fields_by_source_id(self, field_id: int) -> List[PartitionField]:
        return [field for field in self.fields if field.source_id == field_id]

    def partition_from_path(self, path: str, schema: Schema) -> Record:
        """Parse a Hive style partition path, for example ``date=2018-06-08``, into typed partition values.

        Args:
            path: The partition path, segments separated by ``/``.
            schema: The table schema, used to type the values.

        Returns:
            A dict from partition field name to value.

        Raises:
            ValueError: When the path does not match the partition fields of this spec.
        """
        segments = [segment for segment in path.split("/") if segment] if path else []
        if len(segments) != len(self.fields):
            raise ValueError(f"Invalid partition data, expected {len(self.fields)} fields, got {len(segments)}: {path}")

        partition: Record = {}
        for field, segment in zip(self.fields, segments):
            name, sep, value_str = segment.partition("=")
            if not sep or name != field.name:
                raise ValueError(f"Invalid partition data, expected field {field.name}: {segment}")
            source_type = schema.find_type(field.source_id)
            partition[field.name] = partition_to_py(source_type, unquote_plus(value_str))
        return partition

    def partition_to_path(self, partition: Record, schema: Schema) -> str:
        field_strs = []
        for field in self.fields:
            source_type = schema.find_type(field.source_id)
            value_str = quote_plus(partition_to_str(source_type, partition.get(field.name)), safe="")
            field_strs.append(f"{quote_plus(field.name, safe='')}={value_str}")
        return "/".join(field_strs)

    def compatible_with(self, other: PartitionSpec) -> bool:
        """Produce a boolean to return True if two PartitionSpec are considered compatible."""
        if self == other:
            return True
        if len(self.fields) != len(other.fields):
            return False
        return all(
            this_field.source_id == that_field.source_id
            and this_field.transform == that_field.transform
            and this_field.name == that_field.name
            for this_field, that_field in zip(self.fields, other.fields)
        )


UNPARTITIONED_PARTITION_SPEC = PartitionSpec(spec_id=0)


def assign_fresh_partition_spec_ids(spec: PartitionSpec, schema: Schema) -> PartitionSpec:
    """Validate the source columns of a spec against the schema and number the partition fields from 1000."""
    partition_fields = []
    for pos, field in enumerate(spec.fields):
        # Raises when the source column does not exist
        schema.find_field(field.source_id)
        partition_fields.append(
            PartitionField(
                name=field.name,
                source_id=field.source_id,
                field_id=PARTITION_FIELD_ID_START + pos,
                transform=field.transform,
            )
        )
    return PartitionSpec(*partition_fields, spec_id=INITIAL_PARTITION_SPEC_ID)


def identity_partition_values(spec: PartitionSpec, partition: Dict[str, Any]) -> Dict[int, Any]:
    """Map the partition values of a data file onto the source column ids."""
    return {field.source_id: partition.get(field.name) for field in spec.fields}
