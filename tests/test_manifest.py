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
import json
import pickle
from pathlib import Path

import pytest

from snaptable.conversions import from_bytes, to_bytes
from snaptable.io import FileIO
from snaptable.manifest import (
    DataFile,
    FileFormat,
    ManifestEntry,
    ManifestEntryStatus,
    ManifestFile,
    construct_partition_summaries,
    read_manifest_entries,
    write_manifest,
)
from snaptable.partitioning import PartitionSpec
from snaptable.schema import Schema
from snaptable.types import LongType, StringType


@pytest.fixture
def manifest_path(tmp_path: Path) -> str:
    return str(tmp_path / "metadata" / "manifest-m0.json")


def _entry(data_file: DataFile, snapshot_id: int = 1) -> ManifestEntry:
    return ManifestEntry(status=ManifestEntryStatus.ADDED, snapshot_id=snapshot_id, data_file=data_file)


def test_write_and_read_manifest(
    io: FileIO,
    manifest_path: str,
    date_schema: Schema,
    partition_by_date: PartitionSpec,
    file_a: DataFile,
    file_b: DataFile,
    file_c: DataFile,
) -> None:
    with write_manifest(partition_by_date, date_schema, io.new_output(manifest_path), snapshot_id=3) as writer:
        writer.add_file(file_a)
        writer.existing(_entry(file_b, snapshot_id=1))
        writer.delete(_entry(file_c, snapshot_id=2))

    manifest = writer.to_manifest_file()

    assert manifest.manifest_path == manifest_path
    assert manifest.manifest_length == len(io.new_input(manifest_path))
    assert manifest.partition_spec_id == 0
    assert manifest.added_snapshot_id == 3
    assert (manifest.added_files_count, manifest.existing_files_count, manifest.deleted_files_count) == (1, 1, 1)
    assert (manifest.added_rows_count, manifest.existing_rows_count, manifest.deleted_rows_count) == (5, 5, 5)

    entries = manifest.fetch_manifest_entry(io, discard_deleted=False)
    assert [(entry.status, entry.snapshot_id, entry.data_file) for entry in entries] == [
        (ManifestEntryStatus.ADDED, 3, file_a),
        (ManifestEntryStatus.EXISTING, 1, file_b),
        (ManifestEntryStatus.DELETED, 3, file_c),
    ]
    assert [entry.data_file for entry in manifest.fetch_manifest_entry(io)] == [file_a, file_b]


def test_manifest_keeps_the_data_file_metrics(
    io: FileIO, manifest_path: str, date_schema: Schema, partition_by_date: PartitionSpec, file_day_1: DataFile
) -> None:
    with write_manifest(partition_by_date, date_schema, io.new_output(manifest_path), snapshot_id=1) as writer:
        writer.add_file(file_day_1)

    (entry,) = read_manifest_entries(io, manifest_path)
    data_file = entry.data_file

    assert data_file.partition == {"date": "2018-06-08"}
    assert data_file.file_format == FileFormat.PARQUET
    assert data_file.value_counts == {1: 5, 2: 3}
    assert data_file.null_value_counts == {1: 0, 2: 2}
    assert from_bytes(LongType(), data_file.lower_bounds[1]) == 0  # type: ignore
    assert from_bytes(LongType(), data_file.upper_bounds[1]) == 4  # type: ignore


def test_bounds_are_hex_encoded_in_json(file_day_2: DataFile) -> None:
    raw = json.loads(file_day_2.model_dump_json())

    assert raw["lower-bounds"] == {"1": to_bytes(LongType(), 5).hex()}
    assert DataFile.model_validate_json(file_day_2.model_dump_json()).upper_bounds == file_day_2.upper_bounds


def test_manifest_entries_inherit_the_snapshot_id(
    io: FileIO, manifest_path: str, date_schema: Schema, partition_by_date: PartitionSpec, file_a: DataFile
) -> None:
    # written before the snapshot id of the commit was known
    with write_manifest(partition_by_date, date_schema, io.new_output(manifest_path), snapshot_id=None) as writer:
        writer.add_file(file_a)

    manifest = writer.to_manifest_file().model_copy(update={"added_snapshot_id": 7})

    assert [entry.snapshot_id for entry in manifest.fetch_manifest_entry(io)] == [7]


def test_partition_summaries(date_schema: Schema, partition_by_date: PartitionSpec) -> None:
    summaries = construct_partition_summaries(
        partition_by_date, date_schema, [{"date": "2018-06-09"}, {"date": None}, {"date": "2018-06-08"}]
    )

    assert len(summaries) == 1
    assert summaries[0].contains_null is True
    assert from_bytes(StringType(), summaries[0].lower_bound) == "2018-06-08"  # type: ignore
    assert from_bytes(StringType(), summaries[0].upper_bound) == "2018-06-09"  # type: ignore


def test_partition_summaries_without_values(date_schema: Schema, partition_by_date: PartitionSpec) -> None:
    (summary,) = construct_partition_summaries(partition_by_date, date_schema, [])

    assert summary.contains_null is False
    assert summary.lower_bound is None
    assert summary.upper_bound is None


def test_manifest_is_not_written_when_the_block_raises(
    io: FileIO, manifest_path: str, date_schema: Schema, partition_by_date: PartitionSpec, file_a: DataFile
) -> None:
    with pytest.raises(ValueError, match="Stop"):
        with write_manifest(partition_by_date, date_schema, io.new_output(manifest_path), snapshot_id=1) as writer:
            writer.add_file(file_a)
            raise ValueError("Stop")

    assert not io.new_input(manifest_path).exists()


def test_cannot_add_to_closed_writer(
    io: FileIO, manifest_path: str, date_schema: Schema, partition_by_date: PartitionSpec, file_a: DataFile
) -> None:
    with write_manifest(partition_by_date, date_schema, io.new_output(manifest_path), snapshot_id=1) as writer:
        writer.add_file(file_a)

    with pytest.raises(RuntimeError, match="Cannot add entry to closed manifest writer"):
        writer.add_file(file_a)


def test_manifest_is_never_overwritten(
    io: FileIO, manifest_path: str, date_schema: Schema, partition_by_date: PartitionSpec, file_a: DataFile
) -> None:
    with write_manifest(partition_by_date, date_schema, io.new_output(manifest_path), snapshot_id=1) as writer:
        writer.add_file(file_a)

    with pytest.raises(FileExistsError):
        with write_manifest(partition_by_date, date_schema, io.new_output(manifest_path), snapshot_id=2) as writer:
            writer.add_file(file_a)


def test_data_file_equality_by_path(file_a: DataFile) -> None:
    same_path = file_a.model_copy(update={"record_count": 100})

    assert same_path == file_a
    assert hash(same_path) == hash(file_a)
    assert len({file_a, same_path}) == 1
    assert file_a != "/path/to/data-a.parquet"


def test_manifest_file_equality_by_path() -> None:
    first = ManifestFile(manifest_path="/tmp/m0.json", manifest_length=10, added_snapshot_id=1)
    second = ManifestFile(manifest_path="/tmp/m0.json", manifest_length=20, added_snapshot_id=2)

    assert first == second
    assert len({first, second}) == 1


def test_manifest_file_without_counts_may_have_files() -> None:
    manifest = ManifestFile(manifest_path="/tmp/m0.json", manifest_length=10)

    assert manifest.has_added_files()
    assert manifest.has_existing_files()
    assert manifest.has_deleted_files()
    assert not manifest.model_copy(update={"deleted_files_count": 0}).has_deleted_files()


def test_pickle_manifest_file_and_data_file(file_day_1: DataFile) -> None:
    manifest = ManifestFile(manifest_path="/tmp/m0.json", manifest_length=10, added_files_count=1)

    assert pickle.loads(pickle.dumps(manifest)) == manifest
    restored = pickle.loads(pickle.dumps(file_day_1))
    assert restored == file_day_1
    assert restored.lower_bounds == file_day_1.lower_bounds


def test_file_format_is_case_insensitive() -> None:
    assert FileFormat("parquet") == FileFormat.PARQUET
    assert FileFormat("Orc") == FileFormat.ORC
