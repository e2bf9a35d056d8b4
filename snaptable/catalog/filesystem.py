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
"""A metadata store that keeps every version of the table metadata as a file.

The versions live next to the manifests of the table::

    <location>/metadata/v1.metadata.json
    <location>/metadata/v2.metadata.json
    <location>/metadata/version-hint.text

A commit creates the next version file exclusively, which fails when another
writer created it first, and then moves the version hint forward.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import List, Optional, Union

from fsspec.core import url_to_fs

from snaptable.catalog import WAREHOUSE, Catalog, MetadataStore
from snaptable.exceptions import CommitFailedException, NoSuchTableError, TableAlreadyExistsError
from snaptable.io import FileIO
from snaptable.partitioning import UNPARTITIONED_PARTITION_SPEC, PartitionSpec
from snaptable.schema import Schema
from snaptable.table import Table
from snaptable.table.metadata import TableMetadata, _generate_snapshot_id, new_table_metadata
from snaptable.typedef import EMPTY_DICT, UTF8, Identifier, Properties

logger = logging.getLogger(__name__)

METADATA = "metadata"
VERSION_HINT = "version-hint.text"
METADATA_FILE_SUFFIX = ".metadata.json"


def _metadata_file_location(location: str, version: int) -> str:
    return f"{location}/{METADATA}/v{version}{METADATA_FILE_SUFFIX}"


def _version_hint_location(location: str) -> str:
    return f"{location}/{METADATA}/{VERSION_HINT}"


def _check_exclusive_create(io: FileIO, location: str) -> None:
    if not io.supports_exclusive_create(location):
        raise ValueError(f"Cannot store table metadata at {location}, the FileIO can't create files exclusively")


class FileSystemMetadataStore(MetadataStore):
    """Stores the versions of the metadata of the table at ``location`` through a FileIO.

    The version hint may lag behind, when a writer stopped between writing a
    version file and moving the hint. The current version is therefore the
    hinted one, or the last version file that follows it without gaps.
    """

    _location: str
    _io: FileIO
    _version: int
    _metadata: TableMetadata
    _lock: threading.Lock

    def __init__(self, location: str, io: FileIO) -> None:
        self._location = location.rstrip("/")
        self._io = io
        self._lock = threading.Lock()
        _check_exclusive_create(io, self._location)
        version = self._current_version()
        if version is None:
            raise NoSuchTableError(f"Table metadata does not exist: {self._location}")
        self._version = version
        self._metadata = self._read_metadata(version)

    @classmethod
    def create(cls, metadata: TableMetadata, io: FileIO) -> FileSystemMetadataStore:
        """Write the first version of a table, and return the store for it.

        Raises:
            TableAlreadyExistsError: When a table already exists at the location of the metadata.
            ValueError: When the FileIO can't create files exclusively at the location.
        """
        location = metadata.location
        _check_exclusive_create(io, location)
        if io.new_input(_version_hint_location(location)).exists():
            raise TableAlreadyExistsError(f"Table already exists at: {location}")
        try:
            cls._write_metadata(io, _metadata_file_location(location, 1), metadata)
        except FileExistsError as e:
            raise TableAlreadyExistsError(f"Table already exists at: {location}") from e
        cls._write_version_hint(io, location, 1)
        return cls(location, io)

    @property
    def version(self) -> int:
        return self._version

    @property
    def metadata_location(self) -> str:
        return _metadata_file_location(self._location, self._version)

    def _read_version_hint(self) -> Optional[int]:
        input_file = self._io.new_input(_version_hint_location(self._location))
        if not input_file.exists():
            return None
        with input_file.open() as f:
            return int(f.read().decode(UTF8).strip())

    def _current_version(self) -> Optional[int]:
        if (version := self._read_version_hint()) is None:
            return None
        while self._io.new_input(_metadata_file_location(self._location, version + 1)).exists():
            version += 1
        return version

    def _read_metadata(self, version: int) -> TableMetadata:
        with self._io.new_input(_metadata_file_location(self._location, version)).open() as f:
            return TableMetadata.model_validate_json(f.read())

    @staticmethod
    def _write_metadata(io: FileIO, metadata_location: str, metadata: TableMetadata) -> None:
        with io.new_output(metadata_location).create(overwrite=False) as f:
            f.write(metadata.model_dump_json().encode(UTF8))

    @staticmethod
    def _write_version_hint(io: FileIO, location: str, version: int) -> None:
        with io.new_output(_version_hint_location(location)).create(overwrite=True) as f:
            f.write(str(version).encode(UTF8))

    def current(self) -> TableMetadata:
        return self._metadata

    def refresh(self) -> TableMetadata:
        with self._lock:
            version = self._current_version()
            if version is None:
                raise NoSuchTableError(f"Table metadata does not exist: {self._location}")
            if version != self._version:
                logger.debug("Refreshing %s from version %d to %d", self._location, self._version, version)
                self._metadata = self._read_metadata(version)
                self._version = version
            return self._metadata

    def commit(self, base: TableMetadata, metadata: TableMetadata) -> None:
        """Write the next version file, which only one writer can create.

        The version hint is moved afterwards, readers that see a stale hint
        find the new version file by looking past it.
        """
        with self._lock:
            if base is not self._metadata:
                raise CommitFailedException(f"Cannot commit changes based on stale table metadata, current version is {self._version}")

            if (current_version := self._current_version()) != self._version:
                raise CommitFailedException(f"Table {self._location} moved from version {self._version} to {current_version}")

            next_version = self._version + 1
            try:
                self._write_metadata(self._io, _metadata_file_location(self._location, next_version), metadata)
            except FileExistsError as e:
                raise CommitFailedException(f"Version {next_version} of table {self._location} was committed concurrently") from e

            self._version = next_version
            self._metadata = metadata
            self._write_version_hint(self._io, self._location, next_version)
        logger.debug("Committed version %d of table %s", next_version, self._location)

    @property
    def io(self) -> FileIO:
        return self._io

    def new_snapshot_id(self) -> int:
        snapshot_ids = self._metadata.snapshot_ids()
        while (snapshot_id := _generate_snapshot_id()) in snapshot_ids:
            pass
        return snapshot_id


class FileSystemCatalog(Catalog):
    """A catalog of the tables below a warehouse location, one directory per table."""

    _warehouse_location: str

    def __init__(self, name: str, **properties: str) -> None:
        super().__init__(name, **properties)
        if not (warehouse := properties.get(WAREHOUSE)):
            raise ValueError(f"Missing {WAREHOUSE} location for catalog {name}")
        self._warehouse_location = warehouse.rstrip("/")

    def _store(self, identifier: Identifier) -> FileSystemMetadataStore:
        location = self._table_location(self._warehouse_location, identifier, None)
        return FileSystemMetadataStore(location, self._load_file_io(location=location))

    def create_table(
        self,
        identifier: Union[str, Identifier],
        schema: Schema,
        location: Optional[str] = None,
        partition_spec: PartitionSpec = UNPARTITIONED_PARTITION_SPEC,
        properties: Properties = EMPTY_DICT,
        table_uuid: Optional[uuid.UUID] = None,
    ) -> Table:
        identifier = Catalog.identifier_to_tuple(identifier)
        if location is not None:
            raise ValueError("Tables of a filesystem catalog live below the warehouse, a custom location is not supported")

        metadata = new_table_metadata(
            schema=schema,
            partition_spec=partition_spec,
            location=self._table_location(self._warehouse_location, identifier, None),
            properties=properties,
            table_uuid=table_uuid,
        )
        io = self._load_file_io(properties=metadata.properties, location=metadata.location)
        store = FileSystemMetadataStore.create(metadata, io)
        logger.info("Created table %s at %s", ".".join(identifier), metadata.location)
        return Table(identifier=identifier, store=store)

    def load_table(self, identifier: Union[str, Identifier]) -> Table:
        identifier = Catalog.identifier_to_tuple(identifier)
        try:
            store = self._store(identifier)
        except NoSuchTableError as error:
            raise NoSuchTableError(f"Table does not exist: {identifier}") from error
        return Table(identifier=identifier, store=store)

    def drop_table(self, identifier: Union[str, Identifier]) -> None:
        """Drop a table by removing its metadata versions and version hint, manifests are kept."""
        identifier = Catalog.identifier_to_tuple(identifier)
        try:
            store = self._store(identifier)
        except NoSuchTableError as error:
            raise NoSuchTableError(f"Table does not exist: {identifier}") from error

        location = self._table_location(self._warehouse_location, identifier, None)
        store.io.delete(_version_hint_location(location))
        for version in range(1, store.version + 1):
            metadata_file = store.io.new_input(_metadata_file_location(location, version))
            if metadata_file.exists():
                store.io.delete(metadata_file)

    def list_tables(self) -> List[Identifier]:
        fs, root = url_to_fs(self._warehouse_location)
        root = root.rstrip("/")
        suffix = f"/{METADATA}/{VERSION_HINT}"
        return sorted(
            tuple(path[len(root) + 1 : -len(suffix)].split("/"))
            for path in fs.glob(f"{root}/**{suffix}")
            if path.startswith(f"{root}/")
        )
