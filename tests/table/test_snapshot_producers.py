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
from typing import Any

import pytest

from snaptable.exceptions import ValidationException
from snaptable.manifest import DataFile, ManifestEntryStatus, write_manifest
from snaptable.table import Table, TableProperties
from snaptable.table.snapshots import Operation


def _live_paths(table: Table) -> set:  # type: ignore
    return {task.file.file_path for task in table.scan().plan_files()}


def test_fast_append(table: Table, file_a: DataFile, file_b: DataFile, read_entries: Any) -> None:
    append = table.new_fast_append()
    append.append_file(file_a).append_file(file_b).commit()

    snapshot = table.current_snapshot()
    assert snapshot is not None
    assert snapshot.snapshot_id == append.snapshot_id
    assert snapshot.parent_snapshot_id is None
    assert snapshot.operation == Operation.APPEND
    assert snapshot.schema_id == table.schema().schema_id
    assert len(snapshot.manifests) == 1

    manifest = snapshot.manifests[0]
    assert manifest.added_snapshot_id == append.snapshot_id
    assert manifest.added_files_count == 2
    assert manifest.added_rows_count == 10
    entries = read_entries(manifest)
    assert [entry.status for entry in entries] == [ManifestEntryStatus.ADDED, ManifestEntryStatus.ADDED]
    assert [entry.snapshot_id for entry in entries] == [append.snapshot_id, append.snapshot_id]

    assert snapshot.summary is not None
    assert snapshot.summary["added-data-files"] == "2"
    assert snapshot.summary["added-records"] == "10"
    assert snapshot.summary["total-data-files"] == "2"
    assert snapshot.summary["changed-partition-count"] == "2"


def test_fast_append_never_merges(table: Table, file_a: DataFile, file_b: DataFile, file_c: DataFile) -> None:
    table.update_properties().set(TableProperties.MANIFEST_MIN_MERGE_COUNT, "0").commit()

    for data_file in (file_a, file_b, file_c):
        table.new_fast_append().append_file(data_file).commit()

    assert len(table.current_snapshot().manifests) == 3  # type: ignore
    assert table.current_snapshot().summary["total-data-files"] == "3"  # type: ignore


def test_merge_append_below_min_count(table: Table, file_a: DataFile, file_b: DataFile) -> None:
    table.new_append().append_file(file_a).commit()
    table.new_append().append_file(file_b).commit()

    # the default minimum is far above two manifests
    assert len(table.current_snapshot().manifests) == 2  # type: ignore


def test_merge_append_merges_manifests(table: Table, file_a: DataFile, file_b: DataFile, read_entries: Any) -> None:
    table.update_properties().set(TableProperties.MANIFEST_MIN_MERGE_COUNT, "2").commit()

    first = table.new_append()
    first.append_file(file_a).commit()
    second = table.new_append()
    second.append_file(file_b).commit()

    manifests = table.current_snapshot().manifests  # type: ignore
    assert len(manifests) == 1
    assert manifests[0].added_snapshot_id == second.snapshot_id

    entries = read_entries(manifests[0])
    assert [entry.data_file.file_path for entry in entries] == [file_b.file_path, file_a.file_path]
    assert [entry.status for entry in entries] == [ManifestEntryStatus.ADDED, ManifestEntryStatus.EXISTING]
    assert [entry.snapshot_id for entry in entries] == [second.snapshot_id, first.snapshot_id]


def test_merge_append_cleans_up_unlisted_manifests(
    table: Table, file_a: DataFile, file_b: DataFile, list_manifest_files: Any
) -> None:
    table.update_properties().set(TableProperties.MANIFEST_MIN_MERGE_COUNT, "2").commit()

    table.new_append().append_file(file_a).commit()
    table.new_append().append_file(file_b).commit()

    # the manifest with the new file only was merged, so it is gone
    listed = {manifest.manifest_path for snapshot in table.snapshots() for manifest in snapshot.manifests}
    assert set(list_manifest_files()) == listed
    assert len(listed) == 2


def test_merge_disabled(table: Table, file_a: DataFile, file_b: DataFile) -> None:
    table.update_properties().set(TableProperties.MANIFEST_MIN_MERGE_COUNT, "0").set(
        TableProperties.MANIFEST_MERGE_ENABLED, "false"
    ).commit()

    table.new_append().append_file(file_a).commit()
    table.new_append().append_file(file_b).commit()

    assert len(table.current_snapshot().manifests) == 2  # type: ignore


def test_merge_respects_target_size(table: Table, file_a: DataFile, file_b: DataFile) -> None:
    # every manifest is above the target size, so each one is a bin of its own
    table.update_properties().set(TableProperties.MANIFEST_MIN_MERGE_COUNT, "0").set(
        TableProperties.MANIFEST_TARGET_SIZE_BYTES, "1"
    ).commit()

    table.new_append().append_file(file_a).commit()
    table.new_append().append_file(file_b).commit()

    assert len(table.current_snapshot().manifests) == 2  # type: ignore


def test_append_manifest(table: Table, io: Any, tmp_path: Any, file_a: DataFile, file_b: DataFile, read_entries: Any) -> None:
    with write_manifest(table.spec(), table.schema(), io.new_output(str(tmp_path / "external.json")), None) as writer:
        writer.add_file(file_a)
        writer.add_file(file_b)
    manifest = writer.to_manifest_file()

    append = table.new_fast_append()
    append.append_manifest(manifest).commit()

    manifests = table.current_snapshot().manifests  # type: ignore
    assert len(manifests) == 1
    # the table owns a copy, the appended manifest is left alone
    assert manifests[0].manifest_path != manifest.manifest_path
    assert manifests[0].manifest_path.startswith(f"{table.location()}/metadata/")
    entries = read_entries(manifests[0])
    assert [entry.snapshot_id for entry in entries] == [append.snapshot_id, append.snapshot_id]
    assert table.current_snapshot().summary["added-data-files"] == "2"  # type: ignore


def test_append_manifest_with_existing_files(table: Table, io: Any, tmp_path: Any, file_a: DataFile) -> None:
    table.new_append().append_file(file_a).commit()
    table.new_delete().delete_file(file_a).commit()
    manifest = table.current_snapshot().manifests[0]  # type: ignore

    with pytest.raises(ValueError, match="Cannot append manifest with existing or deleted files"):
        table.new_append().append_manifest(manifest)


def test_delete_file(table: Table, file_a: DataFile, file_b: DataFile, read_entries: Any) -> None:
    append = table.new_append()
    append.append_file(file_a).append_file(file_b).commit()

    delete = table.new_delete()
    delete.delete_file(file_a).commit()

    snapshot = table.current_snapshot()
    assert snapshot.operation == Operation.DELETE  # type: ignore
    assert snapshot.parent_snapshot_id == append.snapshot_id  # type: ignore
    entries = read_entries(snapshot.manifests[0])  # type: ignore
    assert [entry.status for entry in entries] == [ManifestEntryStatus.DELETED, ManifestEntryStatus.EXISTING]
    assert [entry.snapshot_id for entry in entries] == [delete.snapshot_id, append.snapshot_id]
    assert snapshot.summary["deleted-data-files"] == "1"  # type: ignore
    assert snapshot.summary["total-data-files"] == "1"  # type: ignore
    assert _live_paths(table) == {file_b.file_path}


def test_delete_file_by_path(table: Table, file_a: DataFile, file_b: DataFile) -> None:
    table.new_append().append_file(file_a).append_file(file_b).commit()

    table.new_delete().delete_file(file_b.file_path).commit()

    assert _live_paths(table) == {file_a.file_path}


def test_delete_missing_file(
    table: Table, file_a: DataFile, file_b: DataFile, file_c: DataFile, list_manifest_files: Any
) -> None:
    table.new_append().append_file(file_a).append_file(file_b).commit()
    manifests_before = list_manifest_files()
    snapshot_id = table.current_snapshot().snapshot_id  # type: ignore

    with pytest.raises(ValidationException, match="Missing required files to delete: /path/to/data-c.parquet"):
        table.new_delete().delete_file(file_a).delete_file(file_c).commit()

    assert table.current_snapshot().snapshot_id == snapshot_id  # type: ignore
    assert list_manifest_files() == manifests_before


def test_drops_manifests_with_deleted_files_only(table: Table, file_a: DataFile, file_b: DataFile) -> None:
    table.new_append().append_file(file_a).commit()
    delete = table.new_delete()
    delete.delete_file(file_a).commit()

    # the delete snapshot keeps its own manifest, even though it only tracks a deleted file
    delete_manifests = table.current_snapshot().manifests  # type: ignore
    assert len(delete_manifests) == 1
    assert delete_manifests[0].added_snapshot_id == delete.snapshot_id

    table.new_append().append_file(file_b).commit()

    manifests = table.current_snapshot().manifests  # type: ignore
    assert len(manifests) == 1
    assert manifests[0] not in delete_manifests


def test_rewrite_files(table: Table, file_a: DataFile, file_b: DataFile, file_c: DataFile) -> None:
    table.new_append().append_file(file_a).append_file(file_b).commit()

    table.new_rewrite().rewrite_files([file_a], [file_c]).commit()

    snapshot = table.current_snapshot()
    assert snapshot.operation == Operation.REPLACE  # type: ignore
    assert snapshot.summary["added-data-files"] == "1"  # type: ignore
    assert snapshot.summary["deleted-data-files"] == "1"  # type: ignore
    assert _live_paths(table) == {file_b.file_path, file_c.file_path}


def test_rewrite_files_requires_files(table: Table, file_a: DataFile) -> None:
    with pytest.raises(ValueError, match="Files to delete cannot be empty"):
        table.new_rewrite().rewrite_files([], [file_a])

    with pytest.raises(ValueError, match="Files to add cannot be empty"):
        table.new_rewrite().rewrite_files([file_a], [])


def test_apply_does_not_commit(table: Table, store: Any, file_a: DataFile) -> None:
    append = table.new_append().append_file(file_a)

    staged = append.apply()

    assert staged.current_snapshot_id == append.snapshot_id
    assert table.current_snapshot() is None
    assert store.version == 0


def test_commit_on_exit(table: Table, file_a: DataFile) -> None:
    with table.new_append() as append:
        append.append_file(file_a)

    assert _live_paths(table) == {file_a.file_path}


def test_no_commit_when_block_raises(table: Table, file_a: DataFile) -> None:
    with pytest.raises(RuntimeError):
        with table.new_append() as append:
            append.append_file(file_a)
            raise RuntimeError("Abort")

    assert table.current_snapshot() is None


def test_snapshot_ids_are_assigned_on_creation(table: Table, file_a: DataFile, file_b: DataFile) -> None:
    first = table.new_append().append_file(file_a)
    second = table.new_append().append_file(file_b)

    assert first.snapshot_id != second.snapshot_id

    second.commit()
    first.commit()

    assert table.current_snapshot().snapshot_id == first.snapshot_id  # type: ignore
    assert table.current_snapshot().parent_snapshot_id == second.snapshot_id  # type: ignore
