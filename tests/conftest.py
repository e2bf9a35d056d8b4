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
"""Shared fixtures.

The tables used by the operation tests are partitioned by ``date`` and
live in a ``tmp_path`` directory, so the manifests an operation writes and
deletes can be checked on disk. Their metadata store can be told to fail
the next commits, which simulates a concurrent writer.
"""

from pathlib import Path
from typing import Callable, List, Optional

import pytest

from snaptable.catalog.memory import InMemoryMetadataStore
from snaptable.conversions import to_bytes
from snaptable.exceptions import CommitFailedException
from snaptable.io import FileIO, load_file_io
from snaptable.manifest import DataFile, ManifestEntry
from snaptable.partitioning import PartitionField, PartitionSpec
from snaptable.schema import Schema
from snaptable.table import Table, TableProperties
from snaptable.table.metadata import TableMetadata, new_table_metadata
from snaptable.types import LongType, NestedField, StringType

TABLE_NAME = ("default", "modify_table")


class FailingMetadataStore(InMemoryMetadataStore):
    """An in-memory store that rejects the next ``n`` commits."""

    def __init__(self, metadata: TableMetadata, io: FileIO) -> None:
        super().__init__(metadata, io)
        self._failures = 0

    def fail_commits(self, num_failures: int) -> None:
        self._failures = num_failures

    def commit(self, base: TableMetadata, metadata: TableMetadata) -> None:
        if self._failures > 0:
            self._failures -= 1
            raise CommitFailedException("Injected failure")
        super().commit(base, metadata)


def _long_to_bytes(value: int) -> bytes:
    return to_bytes(LongType(), value)


def _data_file(path: str, date: str, lower_id: Optional[int] = None, upper_id: Optional[int] = None) -> DataFile:
    return DataFile(
        file_path=path,
        partition={"date": date},
        record_count=5,
        file_size_in_bytes=10,
        value_counts={1: 5, 2: 3},
        null_value_counts={1: 0, 2: 2},
        lower_bounds={1: _long_to_bytes(lower_id)} if lower_id is not None else None,
        upper_bounds={1: _long_to_bytes(upper_id)} if upper_id is not None else None,
    )


@pytest.fixture(scope="session")
def date_schema() -> Schema:
    return Schema(
        NestedField(field_id=1, name="id", field_type=LongType(), required=True),
        NestedField(field_id=2, name="data", field_type=StringType(), required=False),
        NestedField(field_id=3, name="date", field_type=StringType(), required=True),
    )


@pytest.fixture(scope="session")
def partition_by_date() -> PartitionSpec:
    return PartitionSpec(PartitionField(source_id=3, field_id=1000, name="date"))


@pytest.fixture
def table_location(tmp_path: Path) -> str:
    return str(tmp_path / "modify_table")


@pytest.fixture
def io() -> FileIO:
    return load_file_io()


@pytest.fixture
def store(date_schema: Schema, partition_by_date: PartitionSpec, table_location: str, io: FileIO) -> FailingMetadataStore:
    # Keep retries fast, the default backoff starts at 100ms
    metadata = new_table_metadata(
        date_schema,
        partition_by_date,
        table_location,
        properties={TableProperties.COMMIT_MIN_RETRY_WAIT_MS: "1", TableProperties.COMMIT_MAX_RETRY_WAIT_MS: "10"},
    )
    return FailingMetadataStore(metadata, io)


@pytest.fixture
def table(store: FailingMetadataStore) -> Table:
    return Table(identifier=TABLE_NAME, store=store)


@pytest.fixture(scope="session")
def file_a() -> DataFile:
    return _data_file("/path/to/data-a.parquet", "2018-06-08")


@pytest.fixture(scope="session")
def file_b() -> DataFile:
    return _data_file("/path/to/data-b.parquet", "2018-06-09")


@pytest.fixture(scope="session")
def file_c() -> DataFile:
    return _data_file("/path/to/data-c.parquet", "2018-06-10")


@pytest.fixture(scope="session")
def file_d() -> DataFile:
    return _data_file("/path/to/data-d.parquet", "2018-06-11")


@pytest.fixture(scope="session")
def file_day_1() -> DataFile:
    return _data_file("/path/to/data-1.parquet", "2018-06-08", lower_id=0, upper_id=4)


@pytest.fixture(scope="session")
def file_day_2() -> DataFile:
    return _data_file("/path/to/data-2.parquet", "2018-06-09", lower_id=5, upper_id=9)


@pytest.fixture(scope="session")
def file_day_2_modified() -> DataFile:
    return _data_file("/path/to/data-3.parquet", "2018-06-09", lower_id=5, upper_id=9)


@pytest.fixture
def list_manifest_files(table_location: str) -> Callable[[], List[str]]:
    """List the manifests written below the table location."""

    def _list() -> List[str]:
        metadata_dir = Path(table_location) / "metadata"
        if not metadata_dir.exists():
            return []
        return sorted(str(path) for path in metadata_dir.glob("*-m*.json"))

    return _list


@pytest.fixture
def read_entries(io: FileIO) -> Callable[..., List[ManifestEntry]]:
    """Read all the entries of a manifest, deleted entries included."""

    def _read(manifest) -> List[ManifestEntry]:  # type: ignore
        return manifest.fetch_manifest_entry(io, discard_deleted=False)

    return _read
