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
"""Conflict detection between a pending modification and the snapshots committed since it was planned."""

from __future__ import annotations

import logging
from typing import AbstractSet, Callable, Dict, List, Optional, Set

from snaptable.exceptions import ValidationException
from snaptable.expressions import BooleanExpression
from snaptable.expressions.visitors import ROWS_CANNOT_MATCH, _InclusiveMetricsEvaluator
from snaptable.io import FileIO
from snaptable.manifest import DataFile, ManifestEntry, ManifestEntryStatus
from snaptable.table.metadata import TableMetadata
from snaptable.table.snapshots import Operation, Snapshot
from snaptable.typedef import KeyDefaultDict
from snaptable.utils.concurrent import ExecutorFactory

logger = logging.getLogger(__name__)

NO_CHANGES_MESSAGE = "Modify operation requires no changes to timeline."
NO_IN_RANGE_CHANGES_MESSAGE = "Modify operation requires no in-range changes to timeline."
TIMELINE_PRESENT_MESSAGE = "Modify operation requires the timeline to be present."

VALIDATE_ADDED_DATA_FILES_OPERATIONS: Set[Operation] = {Operation.APPEND, Operation.OVERWRITE}
VALIDATE_DELETED_DATA_FILES_OPERATIONS: Set[Operation] = {Operation.DELETE, Operation.OVERWRITE}


def validate_no_changes(metadata: TableMetadata, base_snapshot_id: Optional[int]) -> None:
    """Validate that the current snapshot is still the snapshot the change was planned on.

    Raises:
        ValidationException: When any snapshot has been committed since.
    """
    if metadata.current_snapshot_id != base_snapshot_id:
        raise ValidationException(NO_CHANGES_MESSAGE)


def intervening_snapshots(metadata: TableMetadata, base_snapshot_id: Optional[int]) -> List[Snapshot]:
    """Walk the parent pointers from the current snapshot back to the base snapshot.

    The base snapshot itself is not part of the result, so it may have been
    expired already. Every snapshot in between has to be present, as its
    changes can't be checked otherwise.

    Args:
        metadata: The metadata the change is about to be committed on.
        base_snapshot_id: The snapshot the change was planned on, None when
            the table was empty.

    Returns:
        The intervening snapshots, newest first.

    Raises:
        ValidationException: When a snapshot on the path is missing, or the base can't be reached.
    """
    snapshots: List[Snapshot] = []
    if metadata.current_snapshot_id == base_snapshot_id:
        return snapshots

    snapshot = metadata.current_snapshot()
    while snapshot is not None:
        snapshots.append(snapshot)
        if snapshot.parent_snapshot_id == base_snapshot_id:
            return snapshots
        if snapshot.parent_snapshot_id is None:
            break
        snapshot = metadata.snapshot_by_id(snapshot.parent_snapshot_id)

    raise ValidationException(TIMELINE_PRESENT_MESSAGE)


def _changed_entries(io: FileIO, snapshot: Snapshot) -> List[ManifestEntry]:
    """Return the entries a snapshot added or deleted itself, read from the manifests it wrote."""
    manifests = [manifest for manifest in snapshot.manifests if manifest.added_snapshot_id == snapshot.snapshot_id]

    def _entries(manifest_entries: List[ManifestEntry]) -> List[ManifestEntry]:
        return [
            entry
            for entry in manifest_entries
            if entry.snapshot_id == snapshot.snapshot_id
            and entry.status in (ManifestEntryStatus.ADDED, ManifestEntryStatus.DELETED)
        ]

    executor = ExecutorFactory.get_or_create()
    results = executor.map(lambda manifest: _entries(manifest.fetch_manifest_entry(io, discard_deleted=False)), manifests)
    return [entry for result in results for entry in result]


def _is_conflict(operation: Optional[Operation], entry: ManifestEntry, to_delete: AbstractSet[str]) -> bool:
    if operation == Operation.REPLACE:
        return True
    if entry.status == ManifestEntryStatus.ADDED:
        return operation in VALIDATE_ADDED_DATA_FILES_OPERATIONS
    if entry.status == ManifestEntryStatus.DELETED:
        # A file the pending change deletes as well is caught by the missing files check
        return operation in VALIDATE_DELETED_DATA_FILES_OPERATIONS and entry.data_file.file_path not in to_delete
    return False


def validate_no_conflicting_changes(
    metadata: TableMetadata,
    io: FileIO,
    base_snapshot_id: Optional[int],
    expression: BooleanExpression,
    to_delete: AbstractSet[str],
    case_sensitive: bool = True,
) -> None:
    """Validate that no snapshot committed since the base changed files that may overlap the expression.

    Args:
        metadata: The metadata the change is about to be committed on.
        io: The FileIO to read the manifests of the intervening snapshots.
        base_snapshot_id: The snapshot the change was planned on.
        expression: The rows the pending change depends on.
        to_delete: The paths of the files the pending change deletes.
        case_sensitive: Whether column names in the expression are case sensitive.

    Raises:
        ValidationException: When the timeline is incomplete or a conflicting change was found.
    """
    snapshots = intervening_snapshots(metadata, base_snapshot_id)
    if not snapshots:
        return

    schema = metadata.schema()
    specs = metadata.specs()

    def _build_evaluator(spec_id: int) -> Callable[[DataFile], bool]:
        return _InclusiveMetricsEvaluator(schema, expression, spec=specs.get(spec_id), case_sensitive=case_sensitive).eval

    evaluators: Dict[int, Callable[[DataFile], bool]] = KeyDefaultDict(_build_evaluator)

    for snapshot in snapshots:
        operation = snapshot.operation
        for entry in _changed_entries(io, snapshot):
            if evaluators[entry.data_file.spec_id](entry.data_file) is ROWS_CANNOT_MATCH:
                continue
            if _is_conflict(operation, entry, to_delete):
                logger.info(
                    "Snapshot %s (%s) changed %s, which may overlap %s",
                    snapshot.snapshot_id,
                    operation,
                    entry.data_file.file_path,
                    expression,
                )
                raise ValidationException(NO_IN_RANGE_CHANGES_MESSAGE)
