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
import threading
import uuid
from typing import Dict, List, Optional, Union

from snaptable.catalog import WAREHOUSE, Catalog, MetadataStore
from snaptable.exceptions import CommitFailedException, NoSuchTableError, TableAlreadyExistsError
from snaptable.io import FileIO
from snaptable.partitioning import UNPARTITIONED_PARTITION_SPEC, PartitionSpec
from snaptable.schema import Schema
from snaptable.table import Table
from snaptable.table.metadata import TableMetadata, new_table_metadata
from snaptable.typedef import EMPTY_DICT, Identifier, Properties

logger = logging.getLogger(__name__)

DEFAULT_WAREHOUSE_LOCATION = "file:///tmp/warehouse"


class InMemoryMetadataStore(MetadataStore):
    """Keeps the current metadata of a table in a process-local pointer.

    Snapshot ids are handed out in increasing order, starting after the
    highest id of the initial metadata.
    """

    _metadata: TableMetadata
    _io: FileIO
    _lock: threading.Lock
    version: int

    def __init__(self, metadata: TableMetadata, io: FileIO) -> None:
        self._metadata = metadata
        self._io = io
        self._lock = threading.Lock()
        self._last_snapshot_id = max(metadata.snapshot_ids(), default=0)
        self.version = 0

    def current(self) -> TableMetadata:
        return self._metadata

    def refresh(self) -> TableMetadata:
        return self._metadata

    def commit(self, base: TableMetadata, metadata: TableMetadata) -> None:
        with self._lock:
            if base is not self._metadata:
                raise CommitFailedException(f"Cannot commit changes based on stale table metadata, current version is {self.version}")
            self._metadata = metadata
            self.version += 1
        logger.debug("Committed version %d of table %s", self.version, metadata.location)

    @property
    def io(self) -> FileIO:
        return self._io

    def new_snapshot_id(self) -> int:
        with self._lock:
            self._last_snapshot_id += 1
            return self._last_snapshot_id


class InMemoryCatalog(Catalog):
    """An in-memory catalog implementation, the tables live as long as the catalog."""

    __stores: Dict[Identifier, InMemoryMetadataStore]

    def __init__(self, name: str, **properties: str) -> None:
        super().__init__(name, **properties)
        self.__stores = {}
        self._warehouse_location = properties.get(WAREHOUSE, None) or DEFAULT_WAREHOUSE_LOCATION

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

        if identifier in self.__stores:
            raise TableAlreadyExistsError(f"Table already exists: {identifier}")

        location = self._table_location(self._warehouse_location, identifier, location)
        metadata = new_table_metadata(
            schema=schema,
            partition_spec=partition_spec,
            location=location,
            properties=properties,
            table_uuid=table_uuid,
        )
        store = InMemoryMetadataStore(metadata, self._load_file_io(properties=metadata.properties, location=location))
        self.__stores[identifier] = store
        return Table(identifier=identifier, store=store)

    def load_table(self, identifier: Union[str, Identifier]) -> Table:
        identifier = Catalog.identifier_to_tuple(identifier)
        try:
            return Table(identifier=identifier, store=self.__stores[identifier])
        except KeyError as error:
            raise NoSuchTableError(f"Table does not exist: {identifier}") from error

    def drop_table(self, identifier: Union[str, Identifier]) -> None:
        identifier = Catalog.identifier_to_tuple(identifier)
        try:
            self.__stores.pop(identifier)
        except KeyError as error:
            raise NoSuchTableError(f"Table does not exist: {identifier}") from error

    def list_tables(self) -> List[Identifier]:
        return list(self.__stores.keys())
