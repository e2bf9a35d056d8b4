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
from abc import ABC, abstractmethod
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Callable,
    Dict,
    List,
    Optional,
    Union,
    cast,
)

from snaptable.io import FileIO, load_file_io
from snaptable.partitioning import UNPARTITIONED_PARTITION_SPEC, PartitionSpec
from snaptable.schema import Schema
from snaptable.table.metadata import TableMetadata
from snaptable.typedef import EMPTY_DICT, Identifier, Properties, RecursiveDict
from snaptable.utils.config import Config, merge_config

if TYPE_CHECKING:
    from snaptable.table import Table

logger = logging.getLogger(__name__)

_ENV_CONFIG = Config()

TYPE = "type"
WAREHOUSE = "warehouse"


class CatalogType(Enum):
    IN_MEMORY = "in-memory"
    FILESYSTEM = "filesystem"


def load_in_memory(name: str, conf: Properties) -> Catalog:
    from snaptable.catalog.memory import InMemoryCatalog

    return InMemoryCatalog(name, **conf)


def load_filesystem(name: str, conf: Properties) -> Catalog:
    from snaptable.catalog.filesystem import FileSystemCatalog

    return FileSystemCatalog(name, **conf)


AVAILABLE_CATALOGS: Dict[CatalogType, Callable[[str, Properties], Catalog]] = {
    CatalogType.IN_MEMORY: load_in_memory,
    CatalogType.FILESYSTEM: load_filesystem,
}


def infer_catalog_type(name: str, catalog_properties: RecursiveDict) -> Optional[CatalogType]:
    """Try to infer the type based on the dict.

    Args:
        name: Name of the catalog.
        catalog_properties: Catalog properties.

    Returns:
        The inferred type based on the provided properties.

    Raises:
        ValueError: Raises a ValueError in case properties are missing, or the wrong type.
    """
    if warehouse := catalog_properties.get(WAREHOUSE):
        if not isinstance(warehouse, str):
            raise ValueError(f"Expects the warehouse to be a string, got: {type(warehouse)}")
        return CatalogType.FILESYSTEM
    raise ValueError(
        f"Could not initialize catalog with the following properties: {catalog_properties}. "
        f"Set the {TYPE} of catalog {name}, or a {WAREHOUSE} location."
    )


def load_catalog(name: Optional[str] = None, **properties: Optional[str]) -> Catalog:
    """Load the catalog based on the properties.

    Will look up the properties from the config, based on the name.

    Args:
        name: The name of the catalog.
        properties: The properties that are used next to the configuration.

    Returns:
        An initialized Catalog.

    Raises:
        ValueError: Raises a ValueError in case properties are missing or malformed,
            or if it could not determine the catalog based on the properties.
    """
    if name is None:
        name = _ENV_CONFIG.get_default_catalog_name()

    env = _ENV_CONFIG.get_catalog_config(name)
    conf: RecursiveDict = merge_config(env or {}, cast(RecursiveDict, properties))

    catalog_type: Optional[CatalogType]
    provided_catalog_type = conf.get(TYPE)

    catalog_type = None
    if provided_catalog_type and isinstance(provided_catalog_type, str):
        catalog_type = CatalogType(provided_catalog_type.lower())
    elif not provided_catalog_type:
        catalog_type = infer_catalog_type(name, conf)

    if catalog_type:
        logger.debug("Loading %s catalog %s", catalog_type.value, name)
        return AVAILABLE_CATALOGS[catalog_type](name, cast(Dict[str, str], conf))

    raise ValueError(f"Could not initialize catalog with the following properties: {conf}")


class MetadataStore(ABC):
    """The pointer to the current metadata of a single table.

    Every change to the table is published with ``commit(base, metadata)``,
    which swaps the pointer only when it still points at ``base``. This
    compare-and-swap is the only coordination between concurrent writers.
    """

    @abstractmethod
    def current(self) -> TableMetadata:
        """Return the last metadata this store has seen, without checking for newer versions."""

    @abstractmethod
    def refresh(self) -> TableMetadata:
        """Return the latest metadata.

        When the table didn't change since the last call, the same instance
        is returned, so callers can compare bases by identity.
        """

    @abstractmethod
    def commit(self, base: TableMetadata, metadata: TableMetadata) -> None:
        """Replace ``base`` with ``metadata``.

        Raises:
            CommitFailedException: When the current metadata is no longer ``base``.
        """

    @property
    @abstractmethod
    def io(self) -> FileIO:
        """The FileIO to read and write the files of the table."""

    @abstractmethod
    def new_snapshot_id(self) -> int:
        """Return an id that no snapshot of the table uses."""


class Catalog(ABC):
    """Base Catalog for table operations like - create, drop, load, list.

    The catalog table APIs accept a table identifier, which is fully classified table name. The identifier can be a string or
    tuple of strings. If the identifier is a string, it is split into a tuple on '.'.

    Attributes:
        name (str): Name of the catalog.
        properties (Properties): Catalog properties.
    """

    name: str
    properties: Properties

    def __init__(self, name: str, **properties: str):
        self.name = name
        self.properties = properties

    def _load_file_io(self, properties: Properties = EMPTY_DICT, location: Optional[str] = None) -> FileIO:
        return load_file_io({**self.properties, **properties}, location)

    @abstractmethod
    def create_table(
        self,
        identifier: Union[str, Identifier],
        schema: Schema,
        location: Optional[str] = None,
        partition_spec: PartitionSpec = UNPARTITIONED_PARTITION_SPEC,
        properties: Properties = EMPTY_DICT,
    ) -> Table:
        """Create a table.

        Args:
            identifier (str | Identifier): Table identifier.
            schema (Schema): Table's schema.
            location (str | None): Location for the table. Optional Argument.
            partition_spec (PartitionSpec): PartitionSpec for the table.
            properties (Properties): Table properties that can be a string based dictionary.

        Returns:
            Table: the created table instance.

        Raises:
            TableAlreadyExistsError: If a table with the name already exists.
        """

    @abstractmethod
    def load_table(self, identifier: Union[str, Identifier]) -> Table:
        """Load the table's metadata and returns the table instance.

        Args:
            identifier (str | Identifier): Table identifier.

        Returns:
            Table: the table instance with its metadata.

        Raises:
            NoSuchTableError: If a table with the name does not exist.
        """

    @abstractmethod
    def drop_table(self, identifier: Union[str, Identifier]) -> None:
        """Drop a table.

        Args:
            identifier (str | Identifier): Table identifier.

        Raises:
            NoSuchTableError: If a table with the name does not exist.
        """

    @abstractmethod
    def list_tables(self) -> List[Identifier]:
        """List the identifiers of the tables in this catalog."""

    def table_exists(self, identifier: Union[str, Identifier]) -> bool:
        from snaptable.exceptions import NoSuchTableError

        try:
            self.load_table(identifier)
            return True
        except NoSuchTableError:
            return False

    def _table_location(self, warehouse: str, identifier: Identifier, location: Optional[str]) -> str:
        return (location or f"{warehouse.rstrip('/')}/{'/'.join(identifier)}").rstrip("/")

    @staticmethod
    def identifier_to_tuple(identifier: Union[str, Identifier]) -> Identifier:
        """Parse an identifier to a tuple.

        If the identifier is a string, it is split into a tuple on '.'. If it is a tuple, it is used as-is.

        Args:
            identifier (str | Identifier): an identifier, either a string or tuple of strings.

        Returns:
            Identifier: a tuple of strings.
        """
        return identifier if isinstance(identifier, tuple) else tuple(str.split(identifier, "."))

    def __repr__(self) -> str:
        """Return the string representation of the Catalog class."""
        return f"{self.name} ({self.__class__})"
