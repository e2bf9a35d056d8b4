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

import concurrent.futures
import itertools
import logging
import uuid
from collections import defaultdict
from concurrent.futures import Future
from typing import (
    TYPE_CHECKING,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
    TypeVar,
    Union,
)

from sortedcontainers import SortedList

from snaptable.exceptions import ValidationException
from snaptable.expressions import BooleanExpression
from snaptable.io import OutputFile
from snaptable.manifest import (
    DataFile,
    ManifestEntry,
    ManifestEntryStatus,
    ManifestFile,
    ManifestWriter,
    write_manifest,
)
from snaptable.partitioning import PartitionSpec
from snaptable.table.metadata import TableMetadata
from snaptable.table.snapshots import (
    Operation,
    Snapshot,
    SnapshotSummaryCollector,
    Summary,
    update_snapshot_summaries,
)
from snaptable.table.update import PendingUpdate, reachable_manifests
from snaptable.table.update.validate import validate_no_changes, validate_no_conflicting_changes
from snaptable.typedef import EMPTY_DICT
from snaptable.utils.bin_packing import ListPacker
from snaptable.utils.concurrent import ExecutorFactory
from snaptable.utils.properties import property_as_bool, property_as_int

if TYPE_CHECKING:
    from snaptable.catalog import MetadataStore

logger = logging.getLogger(__name__)

U = TypeVar("U")


def _new_manifest_path(location: str, num: int, commit_uuid: uuid.UUID) -> str:
    return f"{location}/metadata/{commit_uuid}-m{num}.json"


class _SnapshotProducer(PendingUpdate[U], Generic[U]):
    """Base of the updates that produce a new snapshot.

    The snapshot id is assigned when the update is created and is kept for
    every attempt. Manifests written by an attempt are cached and reused by
    the next one: the manifest with the new files is written once, a manifest
    filtered for deletes is reused as long as its source manifest is still
    part of the current snapshot.
    """

    commit_uuid: uuid.UUID
    _operation: Operation
    _snapshot_id: int
    _added_data_files: List[DataFile]
    _deleted_paths: Set[str]
    _appended_manifests: List[ManifestFile]
    _manifest_num_counter: itertools.count[int]
    _written_manifests: List[str]
    _added_manifest: Optional[ManifestFile]
    _appended_manifest_copies: Dict[str, ManifestFile]
    _appended_files: Dict[str, List[DataFile]]
    _filtered_manifests: Dict[str, ManifestFile]
    _filtered_deleted_files: Dict[str, List[DataFile]]

    def __init__(
        self,
        operation: Operation,
        store: MetadataStore,
        commit_uuid: Optional[uuid.UUID] = None,
        snapshot_properties: Dict[str, str] = EMPTY_DICT,
    ) -> None:
        super().__init__(store)
        self.commit_uuid = commit_uuid or uuid.uuid4()
        self._operation = operation
        self._snapshot_id = store.new_snapshot_id()
        self._added_data_files = []
        self._deleted_paths = set()
        self._appended_manifests = []
        self.snapshot_properties = snapshot_properties
        self._manifest_num_counter = itertools.count(0)
        self._written_manifests = []
        self._added_manifest = None
        self._appended_manifest_copies = {}
        self._appended_files = {}
        self._filtered_manifests = {}
        self._filtered_deleted_files = {}

    def append_data_file(self, data_file: DataFile) -> _SnapshotProducer[U]:
        self._added_data_files.append(data_file)
        # The cached manifest misses the new file, it is cleaned up after the commit
        self._added_manifest = None
        return self

    def append_manifest_file(self, manifest: ManifestFile) -> _SnapshotProducer[U]:
        if manifest.has_existing_files() or manifest.has_deleted_files():
            raise ValueError(f"Cannot append manifest with existing or deleted files: {manifest.manifest_path}")
        self._appended_manifests.append(manifest)
        return self

    def delete_data_file(self, data_file: Union[DataFile, str]) -> _SnapshotProducer[U]:
        self._deleted_paths.add(data_file.file_path if isinstance(data_file, DataFile) else data_file)
        self._filtered_manifests.clear()
        self._filtered_deleted_files.clear()
        return self

    @property
    def snapshot_id(self) -> int:
        return self._snapshot_id

    def _validate(self, base: TableMetadata) -> None:
        """Check that the update is still valid on the base, before anything is written."""

    def _process_manifests(self, base: TableMetadata, manifests: List[ManifestFile]) -> List[ManifestFile]:
        """To perform any post-processing on the manifests before writing them to the new snapshot."""
        return manifests

    def _apply(self, base: TableMetadata) -> TableMetadata:
        self._validate(base)

        parent = base.current_snapshot()
        manifests = self._manifests(base)

        snapshot = Snapshot(
            snapshot_id=self._snapshot_id,
            parent_snapshot_id=parent.snapshot_id if parent is not None else None,
            manifests=manifests,
            summary=self._summary(parent),
            schema_id=base.current_schema_id,
        )
        logger.debug("Staged snapshot %s with %d manifests", snapshot, len(manifests))
        return base.add_snapshot(snapshot)

    def _manifests(self, base: TableMetadata) -> List[ManifestFile]:
        new_manifests = self._write_added_manifest(base) + self._copy_appended_manifests(base)
        existing_manifests = self._existing_manifests(base)
        return self._process_manifests(base, new_manifests + existing_manifests)

    def _write_added_manifest(self, base: TableMetadata) -> List[ManifestFile]:
        if not self._added_data_files:
            return []

        if self._added_manifest is None:
            with self.new_manifest_writer(base, base.spec()) as writer:
                for data_file in self._added_data_files:
                    writer.add_file(data_file)
            self._added_manifest = writer.to_manifest_file()

        return [self._added_manifest]

    def _copy_appended_manifests(self, base: TableMetadata) -> List[ManifestFile]:
        copies = []
        for manifest in self._appended_manifests:
            if manifest.manifest_path not in self._appended_manifest_copies:
                entries = manifest.fetch_manifest_entry(self._store.io, discard_deleted=True)
                with self.new_manifest_writer(base, base.specs()[manifest.partition_spec_id]) as writer:
                    for entry in entries:
                        writer.add(entry)
                self._appended_manifest_copies[manifest.manifest_path] = writer.to_manifest_file()
                self._appended_files[manifest.manifest_path] = [entry.data_file for entry in entries]
            copies.append(self._appended_manifest_copies[manifest.manifest_path])
        return copies

    def _existing_manifests(self, base: TableMetadata) -> List[ManifestFile]:
        """Return the manifests of the current snapshot, with the deleted files marked.

        Manifests of earlier snapshots that only track deleted files are dropped.

        Raises:
            ValidationException: When a file to delete is not part of the current snapshot.
        """
        snapshot = base.current_snapshot()
        manifests = snapshot.manifests if snapshot is not None else []

        if self._deleted_paths:
            executor = ExecutorFactory.get_or_create()
            manifests = list(executor.map(lambda manifest: self._filter_manifest(base, manifest), manifests))

            found = {
                data_file.file_path
                for manifest in (snapshot.manifests if snapshot is not None else [])
                for data_file in self._filtered_deleted_files[manifest.manifest_path]
            }
            if missing := self._deleted_paths - found:
                raise ValidationException(f"Missing required files to delete: {', '.join(sorted(missing))}")

        return [
            manifest
            for manifest in manifests
            if manifest.has_added_files() or manifest.has_existing_files() or manifest.added_snapshot_id == self._snapshot_id
        ]

    def _filter_manifest(self, base: TableMetadata, manifest: ManifestFile) -> ManifestFile:
        if (filtered := self._filtered_manifests.get(manifest.manifest_path)) is not None:
            return filtered

        entries = manifest.fetch_manifest_entry(self._store.io, discard_deleted=True)
        deleted_files = [entry.data_file for entry in entries if entry.data_file.file_path in self._deleted_paths]

        if not deleted_files:
            filtered = manifest
        else:
            with self.new_manifest_writer(base, base.specs()[manifest.partition_spec_id]) as writer:
                for entry in entries:
                    if entry.data_file.file_path in self._deleted_paths:
                        writer.delete(entry)
                    else:
                        writer.existing(entry)
            filtered = writer.to_manifest_file()

        self._filtered_deleted_files[manifest.manifest_path] = deleted_files
        self._filtered_manifests[manifest.manifest_path] = filtered
        return filtered

    def _summary(self, parent: Optional[Snapshot]) -> Summary:
        ssc = SnapshotSummaryCollector()

        for data_file in self._added_data_files:
            ssc.add_file(data_file)
        for manifest in self._appended_manifests:
            for data_file in self._appended_files.get(manifest.manifest_path, []):
                ssc.add_file(data_file)

        if self._deleted_paths and parent is not None:
            for manifest in parent.manifests:
                for data_file in self._filtered_deleted_files.get(manifest.manifest_path, []):
                    ssc.removed_file(data_file)

        return update_snapshot_summaries(
            operation=self._operation,
            properties={**ssc.build(), **self.snapshot_properties},
            previous_summary=parent.summary if parent is not None else None,
        )

    def new_manifest_writer(self, base: TableMetadata, spec: PartitionSpec) -> ManifestWriter:
        return write_manifest(
            spec=spec,
            schema=base.schema(),
            output_file=self.new_manifest_output(base),
            snapshot_id=self._snapshot_id,
        )

    def new_manifest_output(self, base: TableMetadata) -> OutputFile:
        path = _new_manifest_path(location=base.location, num=next(self._manifest_num_counter), commit_uuid=self.commit_uuid)
        self._written_manifests.append(path)
        return self._store.io.new_output(path)

    def fetch_manifest_entry(self, manifest: ManifestFile, discard_deleted: bool = True) -> List[ManifestEntry]:
        return manifest.fetch_manifest_entry(io=self._store.io, discard_deleted=discard_deleted)

    def _commit_succeeded(self, base: TableMetadata, committed: TableMetadata) -> None:
        snapshot = committed.snapshot_by_id(self._snapshot_id)
        listed = {manifest.manifest_path for manifest in snapshot.manifests} if snapshot is not None else set()
        for path in self._written_manifests:
            if path not in listed:
                self._delete_file(path)

    def _commit_failed(self) -> None:
        for path in self._written_manifests:
            self._delete_file(path)
        # The manifests are gone, a later commit writes them again
        self._written_manifests.clear()
        self._added_manifest = None
        self._appended_manifest_copies.clear()
        self._appended_files.clear()
        self._filtered_manifests.clear()
        self._filtered_deleted_files.clear()


class _MergingSnapshotProducer(_SnapshotProducer[U], Generic[U]):
    """A snapshot producer that compacts the manifests of the new snapshot.

    Results of a merge are cached per input bin, so a retry that sees the
    same manifests reuses the merged manifest.
    """

    _merged_manifests: Dict[Tuple[str, ...], ManifestFile]

    def __init__(
        self,
        operation: Operation,
        store: MetadataStore,
        commit_uuid: Optional[uuid.UUID] = None,
        snapshot_properties: Dict[str, str] = EMPTY_DICT,
    ) -> None:
        super().__init__(operation, store, commit_uuid, snapshot_properties)
        self._merged_manifests = {}

    def _commit_failed(self) -> None:
        super()._commit_failed()
        self._merged_manifests.clear()

    def _process_manifests(self, base: TableMetadata, manifests: List[ManifestFile]) -> List[ManifestFile]:
        """Merge the manifests based on the target size and the minimum count to merge, when merging is enabled."""
        from snaptable.table import TableProperties

        manifest_merge_manager: _ManifestMergeManager[U] = _ManifestMergeManager(
            target_size_bytes=property_as_int(
                base.properties, TableProperties.MANIFEST_TARGET_SIZE_BYTES, TableProperties.MANIFEST_TARGET_SIZE_BYTES_DEFAULT
            ),
            min_count_to_merge=property_as_int(
                base.properties, TableProperties.MANIFEST_MIN_MERGE_COUNT, TableProperties.MANIFEST_MIN_MERGE_COUNT_DEFAULT
            ),
            merge_enabled=property_as_bool(
                base.properties, TableProperties.MANIFEST_MERGE_ENABLED, TableProperties.MANIFEST_MERGE_ENABLED_DEFAULT
            ),
            snapshot_producer=self,
            base=base,
        )
        return manifest_merge_manager.merge_manifests(manifests)


class FastAppendFiles(_SnapshotProducer["FastAppendFiles"]):
    """Append files in a new manifest, the existing manifests are kept as they are."""

    def __init__(self, store: MetadataStore, commit_uuid: Optional[uuid.UUID] = None) -> None:
        super().__init__(Operation.APPEND, store, commit_uuid)

    def append_file(self, data_file: DataFile) -> FastAppendFiles:
        self.append_data_file(data_file)
        return self

    def append_manifest(self, manifest: ManifestFile) -> FastAppendFiles:
        """Append the files of a manifest, the manifest is copied and the copy is owned by this update."""
        self.append_manifest_file(manifest)
        return self


class MergeAppendFiles(_MergingSnapshotProducer["MergeAppendFiles"]):
    """Append files, and merge the manifests of the table when there are enough small ones."""

    def __init__(self, store: MetadataStore, commit_uuid: Optional[uuid.UUID] = None) -> None:
        super().__init__(Operation.APPEND, store, commit_uuid)

    def append_file(self, data_file: DataFile) -> MergeAppendFiles:
        self.append_data_file(data_file)
        return self

    def append_manifest(self, manifest: ManifestFile) -> MergeAppendFiles:
        """Append the files of a manifest, the manifest is copied and the copy is owned by this update."""
        self.append_manifest_file(manifest)
        return self


class DeleteFiles(_MergingSnapshotProducer["DeleteFiles"]):
    """Remove files from the table. This will produce a DELETE snapshot.

    Every file to delete has to be part of the current snapshot when the
    update is committed.
    """

    def __init__(self, store: MetadataStore, commit_uuid: Optional[uuid.UUID] = None) -> None:
        super().__init__(Operation.DELETE, store, commit_uuid)

    def delete_file(self, data_file: Union[DataFile, str]) -> DeleteFiles:
        self.delete_data_file(data_file)
        return self


class RewriteFiles(_MergingSnapshotProducer["RewriteFiles"]):
    """Replace files with files holding the same rows. This will produce a REPLACE snapshot."""

    def __init__(self, store: MetadataStore, commit_uuid: Optional[uuid.UUID] = None) -> None:
        super().__init__(Operation.REPLACE, store, commit_uuid)

    def rewrite_files(self, files_to_delete: Iterable[DataFile], files_to_add: Iterable[DataFile]) -> RewriteFiles:
        files_to_delete = list(files_to_delete)
        files_to_add = list(files_to_add)
        if not files_to_delete:
            raise ValueError("Files to delete cannot be empty")
        if not files_to_add:
            raise ValueError("Files to add cannot be empty")

        for data_file in files_to_delete:
            self.delete_data_file(data_file)
        for data_file in files_to_add:
            self.append_data_file(data_file)
        return self


class ModifyFiles(_MergingSnapshotProducer["ModifyFiles"]):
    """Overwrite files, optionally guarded against concurrent changes. This will produce an OVERWRITE snapshot.

    Without ``validate`` the change is applied on whatever the table looks
    like at commit time. ``validate(base_snapshot_id)`` requires that nothing
    was committed since the base snapshot, and
    ``validate(base_snapshot_id, expression)`` only rejects the snapshots
    committed since that changed files that may hold rows matching the
    expression.
    """

    _validate_requested: bool
    _base_snapshot_id: Optional[int]
    _conflict_detection_filter: Optional[BooleanExpression]

    def __init__(self, store: MetadataStore, commit_uuid: Optional[uuid.UUID] = None) -> None:
        super().__init__(Operation.OVERWRITE, store, commit_uuid)
        self._validate_requested = False
        self._base_snapshot_id = None
        self._conflict_detection_filter = None

    def modify_files(self, files_to_delete: Iterable[DataFile], files_to_add: Iterable[DataFile]) -> ModifyFiles:
        for data_file in files_to_delete:
            self.delete_data_file(data_file)
        for data_file in files_to_add:
            self.append_data_file(data_file)
        return self

    def validate(self, base_snapshot_id: Optional[int], expression: Optional[BooleanExpression] = None) -> ModifyFiles:
        """Guard the commit against changes committed after the base snapshot.

        Args:
            base_snapshot_id: The snapshot the change was planned on, None for an empty table.
            expression: The rows the change depends on, when omitted any new snapshot is a conflict.
        """
        self._validate_requested = True
        self._base_snapshot_id = base_snapshot_id
        self._conflict_detection_filter = expression
        return self

    def _validate(self, base: TableMetadata) -> None:
        if not self._validate_requested:
            return

        if self._conflict_detection_filter is None:
            validate_no_changes(base, self._base_snapshot_id)
        else:
            validate_no_conflicting_changes(
                metadata=base,
                io=self._store.io,
                base_snapshot_id=self._base_snapshot_id,
                expression=self._conflict_detection_filter,
                to_delete=self._deleted_paths,
            )


class ExpireSnapshots(PendingUpdate["ExpireSnapshots"]):
    """Expire snapshots by ID or by age.

    The current snapshot is never expired. After the commit, manifests that
    are no longer listed by any retained snapshot are deleted. Data files
    are left alone.
    """

    _snapshot_ids_to_expire: Set[int]
    _expire_older_than: Optional[int]

    def __init__(self, store: MetadataStore) -> None:
        super().__init__(store)
        self._snapshot_ids_to_expire = set()
        self._expire_older_than = None

    def expire_snapshot_id(self, snapshot_id: int) -> ExpireSnapshots:
        """
        Expire a snapshot by its ID.

        Args:
            snapshot_id (int): The ID of the snapshot to expire.
        Returns:
            This for method chaining.
        """
        metadata = self._store.current()
        if metadata.snapshot_by_id(snapshot_id) is None:
            raise ValueError(f"Snapshot with ID {snapshot_id} does not exist.")

        if snapshot_id == metadata.current_snapshot_id:
            raise ValueError(f"Snapshot with ID {snapshot_id} is protected and cannot be expired.")

        self._snapshot_ids_to_expire.add(snapshot_id)
        return self

    def expire_older_than(self, timestamp_ms: int) -> ExpireSnapshots:
        """
        Expire all snapshots, except the current one, with a timestamp older than a given value.

        Args:
            timestamp_ms (int): Only snapshots with a timestamp below this value will be expired.

        Returns:
            This for method chaining.
        """
        self._expire_older_than = timestamp_ms
        return self

    def _apply(self, base: TableMetadata) -> TableMetadata:
        # Snapshots expired concurrently are skipped
        snapshot_ids = {snapshot_id for snapshot_id in self._snapshot_ids_to_expire if base.snapshot_by_id(snapshot_id)}
        if self._expire_older_than is not None:
            snapshot_ids |= {
                snapshot.snapshot_id
                for snapshot in base.snapshots
                if snapshot.timestamp_ms < self._expire_older_than and snapshot.snapshot_id != base.current_snapshot_id
            }
        return base.remove_snapshots(snapshot_ids)

    def _commit_succeeded(self, base: TableMetadata, committed: TableMetadata) -> None:
        unreachable = reachable_manifests(base) - reachable_manifests(committed)
        logger.info("Expired %d snapshots, deleting %d manifests", len(base.snapshots) - len(committed.snapshots), len(unreachable))
        for path in sorted(unreachable):
            self._delete_file(path)


class _ManifestMergeManager(Generic[U]):
    _target_size_bytes: int
    _min_count_to_merge: int
    _merge_enabled: bool
    _snapshot_producer: _MergingSnapshotProducer[U]
    _base: TableMetadata

    def __init__(
        self,
        target_size_bytes: int,
        min_count_to_merge: int,
        merge_enabled: bool,
        snapshot_producer: _MergingSnapshotProducer[U],
        base: TableMetadata,
    ) -> None:
        self._target_size_bytes = target_size_bytes
        self._min_count_to_merge = min_count_to_merge
        self._merge_enabled = merge_enabled
        self._snapshot_producer = snapshot_producer
        self._base = base

    def _group_by_spec(self, manifests: List[ManifestFile]) -> Dict[int, List[ManifestFile]]:
        groups = defaultdict(list)
        for manifest in manifests:
            groups[manifest.partition_spec_id].append(manifest)
        return groups

    def _create_manifest(self, spec_id: int, manifest_bin: List[ManifestFile]) -> ManifestFile:
        key = tuple(manifest.manifest_path for manifest in manifest_bin)
        if (merged := self._snapshot_producer._merged_manifests.get(key)) is not None:
            return merged

        snapshot_id = self._snapshot_producer.snapshot_id
        with self._snapshot_producer.new_manifest_writer(self._base, self._base.specs()[spec_id]) as writer:
            for manifest in manifest_bin:
                for entry in self._snapshot_producer.fetch_manifest_entry(manifest=manifest, discard_deleted=False):
                    if entry.status == ManifestEntryStatus.DELETED and entry.snapshot_id == snapshot_id:
                        #  only files deleted by this snapshot should be added to the new manifest
                        writer.delete(entry)
                    elif entry.status == ManifestEntryStatus.ADDED and entry.snapshot_id == snapshot_id:
                        # added entries from this snapshot are still added, otherwise they should be existing
                        writer.add(entry)
                    elif entry.status != ManifestEntryStatus.DELETED:
                        # add all non-deleted files from the old manifest as existing files
                        writer.existing(entry)

        merged = writer.to_manifest_file()
        self._snapshot_producer._merged_manifests[key] = merged
        logger.debug("Merged %d manifests into %s", len(manifest_bin), merged.manifest_path)
        return merged

    def _merge_group(self, first_manifest: ManifestFile, spec_id: int, manifests: List[ManifestFile]) -> List[ManifestFile]:
        packer: ListPacker[ManifestFile] = ListPacker(target_weight=self._target_size_bytes, lookback=1, largest_bin_first=False)
        bins: List[List[ManifestFile]] = packer.pack_end(manifests, lambda m: m.manifest_length)

        def merge_bin(manifest_bin: List[ManifestFile]) -> List[ManifestFile]:
            output_manifests = []
            if len(manifest_bin) == 1:
                output_manifests.append(manifest_bin[0])
            elif first_manifest in manifest_bin and len(manifest_bin) < self._min_count_to_merge:
                #  if the bin has the first manifest (the new data files or an appended manifest file) then only
                #  merge it if the number of manifests is above the minimum count. this is applied only to bins
                #  with an in-memory manifest so that large manifests don't prevent merging older groups.
                output_manifests.extend(manifest_bin)
            else:
                output_manifests.append(self._create_manifest(spec_id, manifest_bin))

            return output_manifests

        executor = ExecutorFactory.get_or_create()
        futures = [executor.submit(merge_bin, b) for b in bins]

        # for consistent ordering, we need to maintain future order
        futures_index = {f: i for i, f in enumerate(futures)}
        completed_futures: SortedList[Future[List[ManifestFile]]] = SortedList(iterable=[], key=lambda f: futures_index[f])
        for future in concurrent.futures.as_completed(futures):
            completed_futures.add(future)

        bin_results: List[List[ManifestFile]] = [f.result() for f in completed_futures if f.result()]

        return [manifest for bin_result in bin_results for manifest in bin_result]

    def merge_manifests(self, manifests: List[ManifestFile]) -> List[ManifestFile]:
        if not self._merge_enabled or len(manifests) == 0:
            return manifests

        first_manifest = manifests[0]
        groups = self._group_by_spec(manifests)

        merged_manifests = []
        for spec_id in reversed(groups.keys()):
            merged_manifests.extend(self._merge_group(first_manifest, spec_id, groups[spec_id]))

        return merged_manifests
