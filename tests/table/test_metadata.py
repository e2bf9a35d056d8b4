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
import uuid
from typing import Optional

import pytest

from snaptable.partitioning import PartitionField, PartitionSpec
from snaptable.schema import Schema
from snaptable.table.metadata import TableMetadata, new_table_metadata
from snaptable.table.snapshots import Operation, Snapshot, Summary, update_snapshot_summaries


@pytest.fixture
def metadata(date_schema: Schema, partition_by_date: PartitionSpec) -> TableMetadata:
    return new_table_metadata(date_schema, partition_by_date, "file:///tmp/warehouse/db/tbl/")


def _snapshot(snapshot_id: int, parent_snapshot_id: Optional[int] = None, timestamp_ms: int = 1_000) -> Snapshot:
    return Snapshot(
        snapshot_id=snapshot_id,
        parent_snapshot_id=parent_snapshot_id,
        timestamp_ms=timestamp_ms,
        summary=Summary(Operation.APPEND),
    )


def test_new_table_metadata(metadata: TableMetadata, date_schema: Schema) -> None:
    assert metadata.location == "file:///tmp/warehouse/db/tbl"
    assert metadata.format_version == 1
    assert metadata.last_column_id == 3
    assert metadata.schema() == date_schema
    assert metadata.spec() == PartitionSpec(PartitionField(source_id=3, field_id=1000, name="date"), spec_id=0)
    assert metadata.last_partition_id == 1000
    assert metadata.current_snapshot() is None
    assert metadata.snapshots == []


def test_new_table_metadata_assigns_fresh_partition_field_ids(date_schema: Schema) -> None:
    spec = PartitionSpec(PartitionField(source_id=3, field_id=42, name="date"), spec_id=7)
    metadata = new_table_metadata(date_schema, spec, "/tmp/tbl")

    assert metadata.default_spec_id == 0
    assert [field.field_id for field in metadata.spec().fields] == [1000]


def test_new_unpartitioned_table_metadata(date_schema: Schema) -> None:
    table_uuid = uuid.uuid4()
    metadata = new_table_metadata(date_schema, PartitionSpec(), "/tmp/tbl", table_uuid=table_uuid)

    assert metadata.spec().is_unpartitioned()
    assert metadata.last_partition_id == 999
    assert metadata.table_uuid == table_uuid


def test_new_table_metadata_unknown_partition_source(date_schema: Schema) -> None:
    spec = PartitionSpec(PartitionField(source_id=99, field_id=1000, name="unknown"))
    with pytest.raises(ValueError, match="Could not find field with id: 99"):
        new_table_metadata(date_schema, spec, "/tmp/tbl")


def test_properties_are_stored_as_strings(date_schema: Schema) -> None:
    metadata = new_table_metadata(date_schema, PartitionSpec(), "/tmp/tbl", properties={"commit.retry.num-retries": 2})
    assert metadata.properties == {"commit.retry.num-retries": "2"}


def test_current_snapshot_id_minus_one_means_no_snapshot(metadata: TableMetadata) -> None:
    raw = metadata.model_dump()
    raw["current-snapshot-id"] = -1

    assert TableMetadata.model_validate(raw).current_snapshot_id is None


def test_unknown_current_schema_id(metadata: TableMetadata) -> None:
    raw = metadata.model_dump()
    raw["current-schema-id"] = 1

    with pytest.raises(ValueError, match="current-schema-id 1 can't be found in the schemas"):
        TableMetadata.model_validate(raw)


def test_unknown_default_spec_id(metadata: TableMetadata) -> None:
    raw = metadata.model_dump()
    raw["default-spec-id"] = 3

    with pytest.raises(ValueError, match="default-spec-id 3 can't be found"):
        TableMetadata.model_validate(raw)


def test_unknown_current_snapshot_id(metadata: TableMetadata) -> None:
    raw = metadata.model_dump()
    raw["current-snapshot-id"] = 12

    with pytest.raises(ValueError, match="current-snapshot-id 12 can't be found in the snapshots"):
        TableMetadata.model_validate(raw)


def test_add_snapshot(metadata: TableMetadata) -> None:
    first = metadata.add_snapshot(_snapshot(1, timestamp_ms=1_000))
    second = first.add_snapshot(_snapshot(2, parent_snapshot_id=1, timestamp_ms=2_000))

    assert metadata.snapshots == []
    assert second.current_snapshot_id == 2
    assert second.last_updated_ms == 2_000
    assert [snapshot.snapshot_id for snapshot in second.snapshots] == [1, 2]
    assert [(entry.snapshot_id, entry.timestamp_ms) for entry in second.snapshot_log] == [(1, 1_000), (2, 2_000)]


def test_add_snapshot_with_existing_id(metadata: TableMetadata) -> None:
    first = metadata.add_snapshot(_snapshot(1))
    with pytest.raises(ValueError, match="Snapshot with the same ID already exists: 1"):
        first.add_snapshot(_snapshot(1, parent_snapshot_id=1))


def test_add_snapshot_on_top_of_another_parent(metadata: TableMetadata) -> None:
    updated = metadata.add_snapshot(_snapshot(1)).add_snapshot(_snapshot(2, parent_snapshot_id=1))
    with pytest.raises(ValueError, match="Cannot add snapshot 3, its parent 1 is not the current snapshot 2"):
        updated.add_snapshot(_snapshot(3, parent_snapshot_id=1))


def test_remove_snapshots(metadata: TableMetadata) -> None:
    updated = (
        metadata.add_snapshot(_snapshot(1))
        .add_snapshot(_snapshot(2, parent_snapshot_id=1))
        .add_snapshot(_snapshot(3, parent_snapshot_id=2))
    )
    removed = updated.remove_snapshots([1, 2])

    assert removed.snapshot_ids() == {3}
    assert [entry.snapshot_id for entry in removed.snapshot_log] == [3]
    assert removed.current_snapshot_id == 3
    assert updated.remove_snapshots([]) is updated


def test_remove_current_snapshot(metadata: TableMetadata) -> None:
    updated = metadata.add_snapshot(_snapshot(1))
    with pytest.raises(ValueError, match="Snapshot with ID 1 is protected and cannot be expired."):
        updated.remove_snapshots([1])


def test_update_properties(metadata: TableMetadata) -> None:
    updated = metadata.update_properties({"a": 1, "b": "2"}).update_properties({"c": "3"}, removals=["a", "missing"])

    assert updated.properties == {"b": "2", "c": "3"}
    assert metadata.properties == {}


def test_update_and_remove_the_same_property(metadata: TableMetadata) -> None:
    with pytest.raises(ValueError, match=r"Cannot set and remove the same properties: \['a'\]"):
        metadata.update_properties({"a": "1"}, removals=["a"])


def test_serialize_and_deserialize_metadata(metadata: TableMetadata) -> None:
    summary = Summary(Operation.APPEND, **{"added-data-files": "1"})
    updated = metadata.add_snapshot(
        Snapshot(snapshot_id=1, timestamp_ms=1_000, summary=summary, schema_id=0)
    ).update_properties({"owner": "snaptable"})

    restored = TableMetadata.model_validate_json(updated.model_dump_json())

    assert restored == updated
    assert restored.current_snapshot().summary == summary  # type: ignore
    assert restored.current_snapshot().operation == Operation.APPEND  # type: ignore


def test_metadata_is_frozen(metadata: TableMetadata) -> None:
    with pytest.raises(ValueError):
        metadata.location = "/somewhere/else"  # type: ignore


def test_summary_cannot_change_after_build() -> None:
    summary = Summary(Operation.APPEND, **{"added-data-files": "1"})
    hashed = hash(summary)

    with pytest.raises(TypeError):
        summary["added-data-files"] = "2"  # type: ignore
    summary.additional_properties["added-data-files"] = "2"

    assert summary["added-data-files"] == "1"
    assert hash(summary) == hashed


def test_update_snapshot_summaries_carries_totals_forward() -> None:
    previous = update_snapshot_summaries(Operation.APPEND, {"added-data-files": "2", "added-records": "10"})
    properties = {"deleted-data-files": "1", "deleted-records": "5"}

    summary = update_snapshot_summaries(Operation.DELETE, properties, previous_summary=previous)

    assert previous["total-data-files"] == "2"
    assert summary["total-data-files"] == "1"
    assert summary["total-records"] == "5"
    assert summary["total-files-size"] == "0"
    assert "total-data-files" not in properties
