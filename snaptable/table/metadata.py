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

import datetime
import uuid
from typing import Any, Collection, Dict, Iterable, List, Optional, Set

from pydantic import Field, field_validator, model_validator

from snaptable.partitioning import PARTITION_FIELD_ID_START, PartitionSpec, assign_fresh_partition_spec_ids
from snaptable.schema import Schema
from snaptable.table.snapshots import Snapshot, SnapshotLogEntry
from snaptable.typedef import EMPTY_DICT, Properties, SnaptableBaseModel
from snaptable.utils.datetime import datetime_to_millis

CURRENT_SNAPSHOT_ID = "current-snapshot-id"
CURRENT_SCHEMA_ID = "current-schema-id"
SCHEMAS = "schemas"
DEFAULT_SPEC_ID = "default-spec-id"
PARTITION_SPEC = "partition-spec"
PARTITION_SPECS = "partition-specs"

INITIAL_SEQUENCE_NUMBER = 0
SUPPORTED_TABLE_FORMAT_VERSION = 1


def cleanup_snapshot_id(data: Dict[str, Any]) -> Dict[str, Any]:
    """Run before validation."""
    if CURRENT_SNAPSHOT_ID in data and data[CURRENT_SNAPSHOT_ID] == -1:
        # We treat -1 and None the same, by cleaning this up
        # in a pre-validator, we can simplify the logic later on
        data[CURRENT_SNAPSHOT_ID] = None
    return data


def check_schemas(table_metadata: TableMetadata) -> TableMetadata:
    """Check if the current-schema-id is actually present in schemas."""
    current_schema_id = table_metadata.current_schema_id

    for schema in table_metadata.schemas:
        if schema.schema_id == current_schema_id:
            return table_metadata

    raise ValueError(f"current-schema-id {current_schema_id} can't be found in the schemas")


def check_partition_specs(table_metadata: TableMetadata) -> TableMetadata:
    """Check if the default-spec-id is present in partition-specs."""
    default_spec_id = table_metadata.default_spec_id

    partition_specs: List[PartitionSpec] = table_metadata.partition_specs
    for spec in partition_specs:
        if spec.spec_id == default_spec_id:
            return table_metadata

    raise ValueError(f"default-spec-id {default_spec_id} can't be found")


def check_current_snapshot(table_metadata: TableMetadata) -> TableMetadata:
    """Check if the current-snapshot-id names one of the snapshots."""
    if table_metadata.current_snapshot_id is not None:
        if table_metadata.snapshot_by_id(table_metadata.current_snapshot_id) is None:
            raise ValueError(f"current-snapshot-id {table_metadata.current_snapshot_id} can't be found in the snapshots")
    return table_metadata


class TableMetadata(SnaptableBaseModel):
    """Metadata for a table.

    Table metadata is immutable, every change produces a new instance. The
    metadata store publishes a new instance by swapping its pointer from the
    instance a change was based on.
    """

    @model_validator(mode="before")
    def cleanup_snapshot_id(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        return cleanup_snapshot_id(data)

    @model_validator(mode="after")
    def construct_refs(self) -> TableMetadata:
        check_schemas(self)
        check_partition_specs(self)
        return check_current_snapshot(self)

    format_version: int = Field(alias="format-version", default=SUPPORTED_TABLE_FORMAT_VERSION)
    """An integer version number for the format."""

    table_uuid: uuid.UUID = Field(alias="table-uuid", default_factory=uuid.uuid4)
    """A UUID that identifies the table, generated when the table is created."""

    location: str = Field()
    """The table's base location. Manifests and metadata files are written
    under this location."""

    last_updated_ms: int = Field(
        alias="last-updated-ms", default_factory=lambda: datetime_to_millis(datetime.datetime.now().astimezone())
    )
    """Timestamp in milliseconds from the unix epoch when the table
    was last updated."""

    last_column_id: int = Field(alias="last-column-id")
    """An integer; the highest assigned column ID for the table."""

    schemas: List[Schema] = Field(default_factory=list)
    """A list of schemas, stored as objects with schema-id."""

    current_schema_id: int = Field(alias="current-schema-id", default=0)
    """ID of the table's current schema."""

    partition_specs: List[PartitionSpec] = Field(alias="partition-specs", default_factory=list)
    """A list of partition specs, stored as full partition spec objects."""

    default_spec_id: int = Field(alias="default-spec-id", default=0)
    """ID of the "current" spec that writers should use by default."""

    last_partition_id: Optional[int] = Field(alias="last-partition-id", default=None)
    """An integer; the highest assigned partition field ID across all
    partition specs for the table."""

    properties: Dict[str, str] = Field(default_factory=dict)
    """A string to string map of table properties. This is used to
    control settings that affect reading and writing and is not intended
    to be used for arbitrary metadata. For example, commit.retry.num-retries
    is used to control the number of commit retries."""

    current_snapshot_id: Optional[int] = Field(alias="current-snapshot-id", default=None)
    """ID of the current table snapshot."""

    snapshots: List[Snapshot] = Field(default_factory=list)
    """A list of valid snapshots. Valid snapshots are snapshots for which
    all data files exist in the file system. A data file must not be
    deleted from the file system until the last snapshot in which it was
    listed is garbage collected."""

    snapshot_log: List[SnapshotLogEntry] = Field(alias="snapshot-log", default_factory=list)
    """A list (optional) of timestamp and snapshot ID pairs that encodes
    changes to the current snapshot for the table. Each time the
    current-snapshot-id is changed, a new entry should be added with the
    last-updated-ms and the new current-snapshot-id. When snapshots are
    expired from the list of valid snapshots, all entries before a snapshot
    that has expired should be removed."""

    @field_validator("properties", mode="before")
    @classmethod
    def transform_properties_dict_value_to_str(cls, properties: Properties) -> Dict[str, str]:
        return {k: str(v) for k, v in properties.items()}

    def schema(self) -> Schema:
        """Return the schema for this table."""
        return next(schema for schema in self.schemas if schema.schema_id == self.current_schema_id)

    def spec(self) -> PartitionSpec:
        """Return the partition spec of this table."""
        return next(spec for spec in self.partition_specs if spec.spec_id == self.default_spec_id)

    def specs(self) -> Dict[int, PartitionSpec]:
        """Return a dict the partition specs this table."""
        return {spec.spec_id: spec for spec in self.partition_specs}

    def snapshot_by_id(self, snapshot_id: int) -> Optional[Snapshot]:
        """Get the snapshot by snapshot_id."""
        return next((snapshot for snapshot in self.snapshots if snapshot.snapshot_id == snapshot_id), None)

    def current_snapshot(self) -> Optional[Snapshot]:
        """Get the current snapshot for this table, or None if there is no current snapshot."""
        if self.current_snapshot_id is not None:
            return self.snapshot_by_id(self.current_snapshot_id)
        return None

    def snapshot_ids(self) -> Set[int]:
        return {snapshot.snapshot_id for snapshot in self.snapshots}

    def add_snapshot(self, snapshot: Snapshot) -> TableMetadata:
        """Return new metadata where the snapshot is added and is the current snapshot.

        Raises:
            ValueError: When a snapshot with the same id already exists, or the parent is unknown.
        """
        if self.snapshot_by_id(snapshot.snapshot_id) is not None:
            raise ValueError(f"Snapshot with the same ID already exists: {snapshot.snapshot_id}")
        if snapshot.parent_snapshot_id is not None and snapshot.parent_snapshot_id != self.current_snapshot_id:
            raise ValueError(
                f"Cannot add snapshot {snapshot.snapshot_id}, its parent {snapshot.parent_snapshot_id} "
                f"is not the current snapshot {self.current_snapshot_id}"
            )

        return self.model_copy(
            update={
                "snapshots": self.snapshots + [snapshot],
                "current_snapshot_id": snapshot.snapshot_id,
                "last_updated_ms": snapshot.timestamp_ms,
                "snapshot_log": self.snapshot_log
                + [SnapshotLogEntry(snapshot_id=snapshot.snapshot_id, timestamp_ms=snapshot.timestamp_ms)],
            }
        )

    def remove_snapshots(self, snapshot_ids: Collection[int]) -> TableMetadata:
        """Return new metadata without the given snapshots.

        Raises:
            ValueError: When one of the snapshots is the current snapshot.
        """
        to_remove = set(snapshot_ids)
        if not to_remove:
            return self
        if self.current_snapshot_id in to_remove:
            raise ValueError(f"Snapshot with ID {self.current_snapshot_id} is protected and cannot be expired.")

        return self.model_copy(
            update={
                "snapshots": [snapshot for snapshot in self.snapshots if snapshot.snapshot_id not in to_remove],
                "snapshot_log": [entry for entry in self.snapshot_log if entry.snapshot_id not in to_remove],
                "last_updated_ms": datetime_to_millis(datetime.datetime.now().astimezone()),
            }
        )

    def update_properties(self, updates: Properties = EMPTY_DICT, removals: Iterable[str] = ()) -> TableMetadata:
        """Return new metadata with the properties set and removed."""
        if overlap := set(updates) & set(removals):
            raise ValueError(f"Cannot set and remove the same properties: {sorted(overlap)}")

        properties = dict(self.properties)
        properties.update({key: str(value) for key, value in updates.items()})
        for key in removals:
            properties.pop(key, None)

        return self.model_copy(
            update={
                "properties": properties,
                "last_updated_ms": datetime_to_millis(datetime.datetime.now().astimezone()),
            }
        )

    def __repr__(self) -> str:
        """Return the string representation of the TableMetadata class."""
        return (
            f"TableMetadata(location={self.location!r}, current_snapshot_id={self.current_snapshot_id}, "
            f"snapshots={[snapshot.snapshot_id for snapshot in self.snapshots]})"
        )


def _generate_snapshot_id() -> int:
    """Generate a new Snapshot ID from a UUID.

    Returns: An 64 bit long
    """
    rnd_uuid = uuid.uuid4()
    snapshot_id = int.from_bytes(
        bytes(lhs ^ rhs for lhs, rhs in zip(rnd_uuid.bytes[0:8], rnd_uuid.bytes[8:16])), byteorder="little", signed=True
    )
    snapshot_id = snapshot_id if snapshot_id >= 0 else snapshot_id * -1

    return snapshot_id


def new_table_metadata(
    schema: Schema,
    partition_spec: PartitionSpec,
    location: str,
    properties: Properties = EMPTY_DICT,
    table_uuid: Optional[uuid.UUID] = None,
) -> TableMetadata:
    """Create the metadata of a new, empty table, with fresh partition field ids."""
    fresh_partition_spec = assign_fresh_partition_spec_ids(partition_spec, schema)

    return TableMetadata(
        location=location.rstrip("/"),
        schemas=[schema],
        last_column_id=schema.highest_field_id(),
        current_schema_id=schema.schema_id,
        partition_specs=[fresh_partition_spec],
        default_spec_id=fresh_partition_spec.spec_id,
        last_partition_id=fresh_partition_spec.last_assigned_field_id()
        if fresh_partition_spec.fields
        else PARTITION_FIELD_ID_START - 1,
        properties=properties,
        table_uuid=table_uuid or uuid.uuid4(),
    )
