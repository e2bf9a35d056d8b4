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
from dataclasses import dataclass
from itertools import chain
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Type,
    TypeVar,
    Union,
)

from snaptable.exceptions import CommitFailedException, IllegalStateException
from snaptable.expressions import AlwaysTrue, BooleanExpression
from snaptable.expressions.visitors import _InclusiveMetricsEvaluator
from snaptable.io import FileIO
from snaptable.manifest import DataFile, ManifestEntry, ManifestFile
from snaptable.partitioning import PartitionSpec
from snaptable.schema import Schema
from snaptable.table.metadata import TableMetadata
from snaptable.table.snapshots import Snapshot
from snaptable.table.update import PendingUpdate, UpdateProperties, reachable_manifests
from snaptable.table.update.snapshot import (
    DeleteFiles,
    ExpireSnapshots,
    FastAppendFiles,
    MergeAppendFiles,
    ModifyFiles,
    RewriteFiles,
)
from snaptable.typedef import EMPTY_DICT, Identifier, KeyDefaultDict, Properties
from snaptable.utils import retry
from snaptable.utils.concurrent import ExecutorFactory
from snaptable.utils.retry import RetryConfig, run_with_retry

if TYPE_CHECKING:
    from snaptable.catalog import MetadataStore

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=PendingUpdate[Any])


class TableProperties:
    MANIFEST_TARGET_SIZE_BYTES = "commit.manifest.target-size-bytes"
    MANIFEST_TARGET_SIZE_BYTES_DEFAULT = 8 * 1024 * 1024  # 8 MB

    MANIFEST_MIN_MERGE_COUNT = "commit.manifest.min-count-to-merge"
    MANIFEST_MIN_MERGE_COUNT_DEFAULT = 100

    MANIFEST_MERGE_ENABLED = "commit.manifest-merge.enabled"
    MANIFEST_MERGE_ENABLED_DEFAULT = True

    # The commit retry properties are read by RetryConfig.from_properties
    COMMIT_NUM_RETRIES = retry.COMMIT_NUM_RETRIES
    COMMIT_NUM_RETRIES_DEFAULT = retry.COMMIT_NUM_RETRIES_DEFAULT

    COMMIT_MIN_RETRY_WAIT_MS = retry.COMMIT_MIN_RETRY_WAIT_MS
    COMMIT_MIN_RETRY_WAIT_MS_DEFAULT = retry.COMMIT_MIN_RETRY_WAIT_MS_DEFAULT

    COMMIT_MAX_RETRY_WAIT_MS = retry.COMMIT_MAX_RETRY_WAIT_MS
    COMMIT_MAX_RETRY_WAIT_MS_DEFAULT = retry.COMMIT_MAX_RETRY_WAIT_MS_DEFAULT

    COMMIT_TOTAL_RETRY_TIME_MS = retry.COMMIT_TOTAL_RETRY_TIME_MS
    COMMIT_TOTAL_RETRY_TIME_MS_DEFAULT = retry.COMMIT_TOTAL_RETRY_TIME_MS_DEFAULT


class Table:
    """A table, and the operations to change it.

    Every operation reads and publishes metadata through the table's
    metadata store, so two ``Table`` instances on the same store see each
    other's commits.
    """

    _identifier: Identifier
    _store: MetadataStore

    def __init__(self, identifier: Identifier, store: MetadataStore) -> None:
        self._identifier = identifier
        self._store = store

    @property
    def name(self) -> Identifier:
        """Return the identifier of this table."""
        return self._identifier

    @property
    def metadata(self) -> TableMetadata:
        return self._store.current()

    @property
    def io(self) -> FileIO:
        return self._store.io

    def refresh(self) -> Table:
        """Refresh the current table metadata."""
        self._store.refresh()
        return self

    def schema(self) -> Schema:
        """Return the schema for this table."""
        return self.metadata.schema()

    def spec(self) -> PartitionSpec:
        """Return the partition spec of this table."""
        return self.metadata.spec()

    def properties(self) -> Dict[str, str]:
        """Properties of the table."""
        return self.metadata.properties

    def location(self) -> str:
        """Return the table's base location."""
        return self.metadata.location

    def current_snapshot(self) -> Optional[Snapshot]:
        """Get the current snapshot for this table, or None if there is no current snapshot."""
        return self.metadata.current_snapshot()

    def snapshots(self) -> List[Snapshot]:
        return self.metadata.snapshots

    def snapshot_by_id(self, snapshot_id: int) -> Optional[Snapshot]:
        """Get the snapshot of this table with the given id, or None if there is no matching snapshot."""
        return self.metadata.snapshot_by_id(snapshot_id)

    def new_append(self) -> MergeAppendFiles:
        return MergeAppendFiles(self._store)

    def new_fast_append(self) -> FastAppendFiles:
        return FastAppendFiles(self._store)

    def new_delete(self) -> DeleteFiles:
        return DeleteFiles(self._store)

    def new_rewrite(self) -> RewriteFiles:
        return RewriteFiles(self._store)

    def new_modify(self) -> ModifyFiles:
        return ModifyFiles(self._store)

    def expire_snapshots(self) -> ExpireSnapshots:
        return ExpireSnapshots(self._store)

    def update_properties(self) -> UpdateProperties:
        return UpdateProperties(self._store)

    def transaction(self) -> Transaction:
        """Create a new transaction object to first stage the changes, and then commit them to the store.

        Returns:
            The transaction object
        """
        return Transaction(self, self._store)

    def scan(
        self,
        row_filter: Optional[BooleanExpression] = None,
        case_sensitive: bool = True,
        snapshot_id: Optional[int] = None,
    ) -> DataScan:
        """Fetch a DataScan based on the table's current metadata.

        Args:
            row_filter:
                A BooleanExpression that selects the files that may hold matching rows.
                Defaults to AlwaysTrue().
            case_sensitive:
                If True column matching is case sensitive
            snapshot_id:
                Optional Snapshot ID to time travel to. If None,
                scans the table as of the current snapshot ID.

        Returns:
            A DataScan based on the table's current metadata.
        """
        return DataScan(
            table_metadata=self.metadata,
            io=self.io,
            row_filter=row_filter or AlwaysTrue(),
            case_sensitive=case_sensitive,
            snapshot_id=snapshot_id,
        )

    def __eq__(self, other: Any) -> bool:
        """Return the equality of two instances of the Table class."""
        return self.name == other.name and self.metadata == other.metadata if isinstance(other, Table) else False

    def __repr__(self) -> str:
        """Return the string representation of the Table class."""
        table_name = ".".join(self._identifier)
        return f"{table_name}(\n  {self.metadata!r}\n)"


class TransactionTable(Table):
    """A read view of the metadata staged in a transaction; operations opened on it join the transaction."""

    _transaction: Transaction

    def __init__(self, transaction: Transaction) -> None:
        super().__init__(transaction._table.name, transaction._transaction_store)
        self._transaction = transaction

    def new_append(self) -> MergeAppendFiles:
        return self._transaction.new_append()

    def new_fast_append(self) -> FastAppendFiles:
        return self._transaction.new_fast_append()

    def new_delete(self) -> DeleteFiles:
        return self._transaction.new_delete()

    def new_rewrite(self) -> RewriteFiles:
        return self._transaction.new_rewrite()

    def new_modify(self) -> ModifyFiles:
        return self._transaction.new_modify()

    def expire_snapshots(self) -> ExpireSnapshots:
        return self._transaction.expire_snapshots()

    def update_properties(self) -> UpdateProperties:
        return self._transaction.update_properties()

    def transaction(self) -> Transaction:
        raise IllegalStateException("Cannot create a transaction within a transaction")


class _TransactionMetadataStore:
    """Stages the operations of a transaction against its private metadata.

    Committing an operation on this store swaps the private pointer only, the
    table's store is left alone until the transaction commits.
    """

    def __init__(self, transaction: Transaction) -> None:
        self._transaction = transaction

    def current(self) -> TableMetadata:
        return self._transaction._current

    def refresh(self) -> TableMetadata:
        return self._transaction._current

    def commit(self, base: TableMetadata, metadata: TableMetadata) -> None:
        if base is not self._transaction._current:
            raise CommitFailedException("Table metadata refresh is required")
        self._transaction._current = metadata
        self._transaction._last_op_committed = True

    @property
    def io(self) -> FileIO:
        return self._transaction._store.io

    def new_snapshot_id(self) -> int:
        return self._transaction._store.new_snapshot_id()


class Transaction:
    """Stage several operations and publish them as a single change of the table.

    Operations are staged one at a time against the private metadata of the
    transaction. When the table moved before the transaction commits, every
    operation is committed again on top of the new metadata.
    """

    _table: Table
    _store: MetadataStore
    _base: TableMetadata
    _current: TableMetadata
    _updates: List[PendingUpdate[Any]]
    _last_op_committed: bool
    _deleted_files: Set[str]
    _replay_required: bool

    def __init__(self, table: Table, store: MetadataStore) -> None:
        """Open a transaction to stage and commit changes to a table.

        Args:
            table: The table that will be altered.
            store: The store the changes are committed to.
        """
        self._table = table
        self._store = store
        self._base = store.current()
        self._current = self._base
        self._updates = []
        self._last_op_committed = True
        self._deleted_files = set()
        self._replay_required = False
        self._transaction_store = _TransactionMetadataStore(self)

    def __enter__(self) -> Transaction:
        """Start a transaction to update the table."""
        return self

    def __exit__(self, _: Any, value: Any, traceback: Any) -> None:
        """Close and commit the transaction."""
        if value is None:
            self.commit_transaction()

    @property
    def table_metadata(self) -> TableMetadata:
        return self._current

    @property
    def deleted_files(self) -> Set[str]:
        """Files superseded by the staged operations, deleted once the transaction commits."""
        return self._deleted_files

    def table(self) -> Table:
        return TransactionTable(self)

    def _new_update(self, update_class: Type[P]) -> P:
        if not self._last_op_committed:
            raise IllegalStateException(f"Cannot create new {update_class.__name__}: last operation has not committed")

        update = update_class(self._transaction_store)
        update.delete_with(self._deleted_files.add)
        self._updates.append(update)
        self._last_op_committed = False
        return update

    def new_append(self) -> MergeAppendFiles:
        return self._new_update(MergeAppendFiles)

    def new_fast_append(self) -> FastAppendFiles:
        return self._new_update(FastAppendFiles)

    def new_delete(self) -> DeleteFiles:
        return self._new_update(DeleteFiles)

    def new_rewrite(self) -> RewriteFiles:
        return self._new_update(RewriteFiles)

    def new_modify(self) -> ModifyFiles:
        return self._new_update(ModifyFiles)

    def expire_snapshots(self) -> ExpireSnapshots:
        return self._new_update(ExpireSnapshots)

    def update_properties(self) -> UpdateProperties:
        return self._new_update(UpdateProperties)

    def _replay(self, base: TableMetadata) -> None:
        """Commit every staged operation again, on top of new table metadata."""
        logger.info("Replaying %d operations of the transaction on version %s", len(self._updates), base.current_snapshot_id)
        self._base = base
        self._current = base
        for update in self._updates:
            update.commit()
        self._replay_required = False

    def commit_transaction(self) -> None:
        """Commit the changes to the table.

        Raises:
            IllegalStateException: When the last operation has not been committed.
            CommitFailedException: When the retries are exhausted.
            ValidationException: When an operation is no longer valid on the latest metadata.
        """
        if not self._last_op_committed:
            raise IllegalStateException("Cannot commit transaction: last operation has not committed")

        if not self._updates:
            return

        retry_config = RetryConfig.from_properties(self._base.properties)

        def _attempt() -> TableMetadata:
            refreshed = self._store.refresh()
            if self._replay_required or refreshed is not self._base:
                self._replay(refreshed)
            self._store.commit(self._base, self._current)
            return self._current

        try:
            committed = run_with_retry(_attempt, retry_config, (CommitFailedException,))
        except Exception as e:
            logger.info("Failed to commit transaction: %s", e)
            for update in self._updates:
                update._commit_failed()
            self._cleanup(reachable_manifests(self._store.current()))
            # The staged metadata lists deleted manifests, a later commit stages every operation again
            self._deleted_files.clear()
            self._replay_required = True
            raise

        logger.info("Committed transaction with %d operations", len(self._updates))
        self._cleanup(reachable_manifests(committed))

    def _cleanup(self, reachable: Set[str]) -> None:
        for path in sorted(self._deleted_files - reachable):
            try:
                self._store.io.delete(path)
            except Exception as e:
                logger.warning("Failed to delete %s: %s", path, e)


@dataclass(init=False)
class FileScanTask:
    file: DataFile
    start: int
    length: int

    def __init__(
        self,
        data_file: DataFile,
        start: Optional[int] = None,
        length: Optional[int] = None,
    ) -> None:
        self.file = data_file
        self.start = start or 0
        self.length = length or data_file.file_size_in_bytes


def _open_manifest(io: FileIO, manifest: ManifestFile) -> List[ManifestEntry]:
    return manifest.fetch_manifest_entry(io, discard_deleted=True)


class DataScan:
    table_metadata: TableMetadata
    io: FileIO
    row_filter: BooleanExpression
    case_sensitive: bool
    snapshot_id: Optional[int]

    def __init__(
        self,
        table_metadata: TableMetadata,
        io: FileIO,
        row_filter: Union[BooleanExpression, None] = None,
        case_sensitive: bool = True,
        snapshot_id: Optional[int] = None,
        options: Properties = EMPTY_DICT,
    ) -> None:
        self.table_metadata = table_metadata
        self.io = io
        self.row_filter = row_filter or AlwaysTrue()
        self.case_sensitive = case_sensitive
        self.snapshot_id = snapshot_id
        self.options = options

    def snapshot(self) -> Optional[Snapshot]:
        if self.snapshot_id is not None:
            return self.table_metadata.snapshot_by_id(self.snapshot_id)
        return self.table_metadata.current_snapshot()

    def _build_metrics_evaluator(self, spec_id: int) -> Callable[[DataFile], bool]:
        spec = self.table_metadata.specs().get(spec_id)
        return _InclusiveMetricsEvaluator(self.table_metadata.schema(), self.row_filter, spec, self.case_sensitive).eval

    def plan_files(self) -> Iterable[FileScanTask]:
        """Plans the live files of the snapshot whose partition values and column bounds may match the row filter.

        Returns:
            List of FileScanTasks, one per data file.
        """
        snapshot = self.snapshot()
        if not snapshot:
            return iter([])

        metrics_evaluators: Dict[int, Callable[[DataFile], bool]] = KeyDefaultDict(self._build_metrics_evaluator)

        executor = ExecutorFactory.get_or_create()
        entries = chain(*executor.map(lambda manifest: _open_manifest(self.io, manifest), snapshot.manifests))

        return [
            FileScanTask(entry.data_file)
            for entry in entries
            if metrics_evaluators[entry.data_file.spec_id](entry.data_file)
        ]

    def with_row_filter(self, row_filter: BooleanExpression) -> DataScan:
        return DataScan(self.table_metadata, self.io, row_filter, self.case_sensitive, self.snapshot_id, self.options)
