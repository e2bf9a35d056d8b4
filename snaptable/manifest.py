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

import logging
from enum import Enum, IntEnum
from types import TracebackType
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Type,
)

from pydantic import Field, field_serializer, field_validator

from snaptable.conversions import to_bytes
from snaptable.io import FileIO, OutputFile
from snaptable.partitioning import PartitionSpec
from snaptable.schema import Schema
from snaptable.typedef import UTF8, Record, SnaptableBaseModel
from snaptable.types import PrimitiveType

logger = logging.getLogger(__name__)

MANIFEST_FORMAT_VERSION = 1


class ManifestEntryStatus(IntEnum):
    EXISTING = 0
    ADDED = 1
    DELETED = 2

    def __repr__(self) -> str:
        """Return the string representation of the ManifestEntryStatus class."""
        return f"ManifestEntryStatus.{self.name}"


class FileFormat(str, Enum):
    AVRO = "AVRO"
    PARQUET = "PARQUET"
    ORC = "ORC"

    @classmethod
    def _missing_(cls, value: object) -> Optional[FileFormat]:
        for member in cls:
            if isinstance(value, str) and member.value == value.upper():
                return member
        return None

    def __repr__(self) -> str:
        """Return the string representation of the FileFormat class."""
        return f"FileFormat.{self.name}"


def _bytes_from_json(value: Any) -> Any:
    if isinstance(value, str):
        return bytes.fromhex(value)
    return value


class DataFile(SnaptableBaseModel):
    """An immutable data file, tracked by its path.

    The statistics are keyed by column field id. Bounds hold the single value
    binary encoding of the column type, see ``snaptable.conversions.to_bytes``,
    and are hex encoded in JSON.
    """

    file_path: str = Field(alias="file-path")
    file_format: FileFormat = Field(alias="file-format", default=FileFormat.PARQUET)
    partition: Record = Field(default_factory=dict)
    record_count: int = Field(alias="record-count")
    file_size_in_bytes: int = Field(alias="file-size-in-bytes")
    column_sizes: Optional[Dict[int, int]] = Field(alias="column-sizes", default=None)
    value_counts: Optional[Dict[int, int]] = Field(alias="value-counts", default=None)
    null_value_counts: Optional[Dict[int, int]] = Field(alias="null-value-counts", default=None)
    lower_bounds: Optional[Dict[int, bytes]] = Field(alias="lower-bounds", default=None)
    upper_bounds: Optional[Dict[int, bytes]] = Field(alias="upper-bounds", default=None)
    key_metadata: Optional[bytes] = Field(alias="key-metadata", default=None)
    split_offsets: Optional[List[int]] = Field(alias="split-offsets", default=None)
    spec_id: int = Field(alias="spec-id", default=0)

    @classmethod
    def from_args(cls, **arguments: Any) -> DataFile:
        return cls(**arguments)

    @field_validator("lower_bounds", "upper_bounds", mode="before")
    @classmethod
    def _decode_bounds(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {field_id: _bytes_from_json(bound) for field_id, bound in value.items()}
        return value

    @field_validator("key_metadata", mode="before")
    @classmethod
    def _decode_key_metadata(cls, value: Any) -> Any:
        return _bytes_from_json(value)

    @field_serializer("lower_bounds", "upper_bounds", when_used="json-unless-none")
    def _encode_bounds(self, value: Dict[int, bytes]) -> Dict[int, str]:
        return {field_id: bound.hex() for field_id, bound in value.items()}

    @field_serializer("key_metadata", when_used="json-unless-none")
    def _encode_key_metadata(self, value: bytes) -> str:
        return value.hex()

    def __hash__(self) -> int:
        """Return the hash of the file path."""
        return hash(self.file_path)

    def __eq__(self, other: Any) -> bool:
        """Compare the datafile with another object.

        If it is a datafile, it will compare based on the file_path.
        """
        return self.file_path == other.file_path if isinstance(other, DataFile) else False

    def __repr__(self) -> str:
        """Return the string representation of the DataFile class."""
        return f"DataFile(file_path={self.file_path!r}, partition={self.partition!r}, record_count={self.record_count})"


class ManifestEntry(SnaptableBaseModel):
    status: ManifestEntryStatus = Field()
    snapshot_id: Optional[int] = Field(alias="snapshot-id", default=None)
    data_file: DataFile = Field(alias="data-file")

    @classmethod
    def from_args(cls, **arguments: Any) -> ManifestEntry:
        return cls(**arguments)


class PartitionFieldSummary(SnaptableBaseModel):
    contains_null: bool = Field(alias="contains-null")
    contains_nan: Optional[bool] = Field(alias="contains-nan", default=None)
    lower_bound: Optional[bytes] = Field(alias="lower-bound", default=None)
    upper_bound: Optional[bytes] = Field(alias="upper-bound", default=None)

    @field_validator("lower_bound", "upper_bound", mode="before")
    @classmethod
    def _decode_bound(cls, value: Any) -> Any:
        return _bytes_from_json(value)

    @field_serializer("lower_bound", "upper_bound", when_used="json-unless-none")
    def _encode_bound(self, value: bytes) -> str:
        return value.hex()


class PartitionFieldStats:
    _type: PrimitiveType
    _contains_null: bool
    _min: Optional[Any]
    _max: Optional[Any]

    def __init__(self, primitive_type: PrimitiveType) -> None:
        self._type = primitive_type
        self._contains_null = False
        self._min = None
        self._max = None

    def to_summary(self) -> PartitionFieldSummary:
        return PartitionFieldSummary(
            contains_null=self._contains_null,
            lower_bound=to_bytes(self._type, self._min) if self._min is not None else None,
            upper_bound=to_bytes(self._type, self._max) if self._max is not None else None,
        )

    def update(self, value: Any) -> None:
        if value is None:
            self._contains_null = True
        else:
            if self._min is None or value < self._min:
                self._min = value
            if self._max is None or value > self._max:
                self._max = value


def construct_partition_summaries(spec: PartitionSpec, schema: Schema, partitions: List[Record]) -> List[PartitionFieldSummary]:
    types = [schema.find_type(field.source_id) for field in spec.fields]
    field_stats = [PartitionFieldStats(field_type) for field_type in types]
    for partition_keys in partitions:
        for field, partition_field_stats in zip(spec.fields, field_stats):
            partition_field_stats.update(partition_keys.get(field.name))
    return [field.to_summary() for field in field_stats]


class ManifestFile(SnaptableBaseModel):
    """An immutable list of manifest entries, plus the counts and partition summaries of that list.

    Manifests are identified by their path.
    """

    manifest_path: str = Field(alias="manifest-path")
    manifest_length: int = Field(alias="manifest-length")
    partition_spec_id: int = Field(alias="partition-spec-id", default=0)
    added_snapshot_id: Optional[int] = Field(alias="added-snapshot-id", default=None)
    added_files_count: Optional[int] = Field(alias="added-files-count", default=None)
    existing_files_count: Optional[int] = Field(alias="existing-files-count", default=None)
    deleted_files_count: Optional[int] = Field(alias="deleted-files-count", default=None)
    added_rows_count: Optional[int] = Field(alias="added-rows-count", default=None)
    existing_rows_count: Optional[int] = Field(alias="existing-rows-count", default=None)
    deleted_rows_count: Optional[int] = Field(alias="deleted-rows-count", default=None)
    partitions: Optional[List[PartitionFieldSummary]] = Field(default=None)

    @classmethod
    def from_args(cls, **arguments: Any) -> ManifestFile:
        return cls(**arguments)

    def has_added_files(self) -> bool:
        return self.added_files_count is None or self.added_files_count > 0

    def has_existing_files(self) -> bool:
        return self.existing_files_count is None or self.existing_files_count > 0

    def has_deleted_files(self) -> bool:
        return self.deleted_files_count is None or self.deleted_files_count > 0

    def fetch_manifest_entry(self, io: FileIO, discard_deleted: bool = True) -> List[ManifestEntry]:
        """
        Read the manifest entries from the manifest file.

        Args:
            io: The FileIO to fetch the file.
            discard_deleted: Filter on live entries.

        Returns:
            An Iterator of manifest entries.
        """
        entries = read_manifest_entries(io, self.manifest_path)
        return [
            _inherit_from_manifest(entry, self)
            for entry in entries
            if not discard_deleted or entry.status != ManifestEntryStatus.DELETED
        ]

    def __hash__(self) -> int:
        """Return the hash of manifest_path."""
        return hash(self.manifest_path)

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the ManifestFile class."""
        return self.manifest_path == other.manifest_path if isinstance(other, ManifestFile) else False

    def __repr__(self) -> str:
        """Return the string representation of the ManifestFile class."""
        return f"ManifestFile(manifest_path={self.manifest_path!r}, added_snapshot_id={self.added_snapshot_id})"


def _inherit_from_manifest(entry: ManifestEntry, manifest: ManifestFile) -> ManifestEntry:
    """Entries written before the snapshot id was known inherit it from the manifest."""
    if entry.snapshot_id is None:
        return entry.model_copy(update={"snapshot_id": manifest.added_snapshot_id})
    return entry


class ManifestContents(SnaptableBaseModel):
    """The on-disk layout of a manifest: the partition spec and snapshot it was written for, and its entries."""

    format_version: int = Field(alias="format-version", default=MANIFEST_FORMAT_VERSION)
    snapshot_id: Optional[int] = Field(alias="snapshot-id", default=None)
    partition_spec: PartitionSpec = Field(alias="partition-spec")
    schema_id: int = Field(alias="schema-id", default=0)
    entries: List[ManifestEntry] = Field(default_factory=list)


def read_manifest_entries(io: FileIO, manifest_path: str) -> List[ManifestEntry]:
    input_file = io.new_input(manifest_path)
    with input_file.open() as f:
        contents = ManifestContents.model_validate_json(f.read())
    return contents.entries


class ManifestWriter:
    """Collects the entries of one manifest and writes them on close.

    Counts and partition summaries are tracked while entries are added, so
    ``to_manifest_file`` can describe the written manifest without reading it
    back.
    """

    closed: bool
    _spec: PartitionSpec
    _schema: Schema
    _output_file: OutputFile
    _snapshot_id: Optional[int]
    _entries: List[ManifestEntry]
    _added_files: int
    _added_rows: int
    _existing_files: int
    _existing_rows: int
    _deleted_files: int
    _deleted_rows: int
    _partitions: List[Record]
    _manifest_length: int

    def __init__(self, spec: PartitionSpec, schema: Schema, output_file: OutputFile, snapshot_id: Optional[int]) -> None:
        self.closed = False
        self._spec = spec
        self._schema = schema
        self._output_file = output_file
        self._snapshot_id = snapshot_id
        self._entries = []

        self._added_files = 0
        self._added_rows = 0
        self._existing_files = 0
        self._existing_rows = 0
        self._deleted_files = 0
        self._deleted_rows = 0
        self._partitions = []
        self._manifest_length = 0

    def __enter__(self) -> ManifestWriter:
        """Open the writer."""
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        """Write the manifest, unless the block raised."""
        if exc_type is None:
            self.close()
        else:
            self.closed = True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        contents = ManifestContents(
            snapshot_id=self._snapshot_id,
            partition_spec=self._spec,
            schema_id=self._schema.schema_id,
            entries=self._entries,
        )
        payload = contents.model_dump_json().encode(UTF8)
        with self._output_file.create(overwrite=False) as f:
            f.write(payload)
        self._manifest_length = len(payload)
        logger.debug("Wrote manifest %s with %d entries", self._output_file.location, len(self._entries))

    @property
    def existing_files_count(self) -> int:
        return self._existing_files

    def to_manifest_file(self) -> ManifestFile:
        """Return the manifest file."""
        self.close()
        return ManifestFile(
            manifest_path=self._output_file.location,
            manifest_length=self._manifest_length,
            partition_spec_id=self._spec.spec_id,
            added_snapshot_id=self._snapshot_id,
            added_files_count=self._added_files,
            existing_files_count=self._existing_files,
            deleted_files_count=self._deleted_files,
            added_rows_count=self._added_rows,
            existing_rows_count=self._existing_rows,
            deleted_rows_count=self._deleted_rows,
            partitions=construct_partition_summaries(self._spec, self._schema, self._partitions),
        )

    def add_entry(self, entry: ManifestEntry) -> ManifestWriter:
        if self.closed:
            raise RuntimeError("Cannot add entry to closed manifest writer")
        if entry.status == ManifestEntryStatus.ADDED:
            self._added_files += 1
            self._added_rows += entry.data_file.record_count
        elif entry.status == ManifestEntryStatus.EXISTING:
            self._existing_files += 1
            self._existing_rows += entry.data_file.record_count
        elif entry.status == ManifestEntryStatus.DELETED:
            self._deleted_files += 1
            self._deleted_rows += entry.data_file.record_count

        self._partitions.append(entry.data_file.partition)
        self._entries.append(entry)
        return self

    def add(self, entry: ManifestEntry) -> ManifestWriter:
        """Add an entry as ADDED in the snapshot this manifest is written for."""
        self.add_entry(ManifestEntry(status=ManifestEntryStatus.ADDED, snapshot_id=self._snapshot_id, data_file=entry.data_file))
        return self

    def delete(self, entry: ManifestEntry) -> ManifestWriter:
        """Add an entry as DELETED in the snapshot this manifest is written for."""
        self.add_entry(ManifestEntry(status=ManifestEntryStatus.DELETED, snapshot_id=self._snapshot_id, data_file=entry.data_file))
        return self

    def existing(self, entry: ManifestEntry) -> ManifestWriter:
        """Carry an entry forward as EXISTING, keeping the snapshot that added it."""
        self.add_entry(ManifestEntry(status=ManifestEntryStatus.EXISTING, snapshot_id=entry.snapshot_id, data_file=entry.data_file))
        return self

    def add_file(self, data_file: DataFile) -> ManifestWriter:
        return self.add(ManifestEntry(status=ManifestEntryStatus.ADDED, data_file=data_file))


def write_manifest(spec: PartitionSpec, schema: Schema, output_file: OutputFile, snapshot_id: Optional[int]) -> ManifestWriter:
    return ManifestWriter(spec, schema, output_file, snapshot_id)
