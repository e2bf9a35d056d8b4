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
import os
from typing import Any, List

import pytest

from snaptable.manifest import DataFile
from snaptable.table import Table


def test_cannot_expire_unknown_snapshot(table: Table, file_a: DataFile) -> None:
    table.new_append().append_file(file_a).commit()

    with pytest.raises(ValueError, match="Snapshot with ID 1234 does not exist."):
        table.expire_snapshots().expire_snapshot_id(1234)


def test_cannot_expire_current_snapshot(table: Table, store: Any, file_a: DataFile) -> None:
    table.new_append().append_file(file_a).commit()
    current_snapshot_id = table.current_snapshot().snapshot_id  # type: ignore

    with pytest.raises(ValueError, match=f"Snapshot with ID {current_snapshot_id} is protected and cannot be expired."):
        table.expire_snapshots().expire_snapshot_id(current_snapshot_id)

    assert store.version == 1


def test_expire_snapshot_deletes_unreachable_manifests(table: Table, file_a: DataFile, file_b: DataFile) -> None:
    table.new_append().append_file(file_a).append_file(file_b).commit()
    first_snapshot = table.current_snapshot()
    assert first_snapshot is not None
    first_manifest = first_snapshot.manifests[0]

    table.new_delete().delete_file(file_a).commit()
    current_snapshot = table.current_snapshot()
    current_manifest = current_snapshot.manifests[0]  # type: ignore

    table.expire_snapshots().expire_snapshot_id(first_snapshot.snapshot_id).commit()

    assert [snapshot.snapshot_id for snapshot in table.snapshots()] == [current_snapshot.snapshot_id]  # type: ignore
    assert [entry.snapshot_id for entry in table.metadata.snapshot_log] == [current_snapshot.snapshot_id]  # type: ignore
    assert not os.path.exists(first_manifest.manifest_path)
    assert os.path.exists(current_manifest.manifest_path)


def test_expire_keeps_manifests_of_retained_snapshots(table: Table, file_a: DataFile, file_b: DataFile) -> None:
    table.new_fast_append().append_file(file_a).commit()
    first_snapshot = table.current_snapshot()
    assert first_snapshot is not None

    table.new_fast_append().append_file(file_b).commit()

    table.expire_snapshots().expire_snapshot_id(first_snapshot.snapshot_id).commit()

    # the current snapshot still lists the manifest of the first append
    assert os.path.exists(first_snapshot.manifests[0].manifest_path)
    assert len(list(table.scan().plan_files())) == 2


def test_expire_older_than(table: Table, file_a: DataFile, file_b: DataFile, file_c: DataFile) -> None:
    for data_file in (file_a, file_b, file_c):
        table.new_fast_append().append_file(data_file).commit()
    current_snapshot = table.current_snapshot()
    assert current_snapshot is not None

    table.expire_snapshots().expire_older_than(current_snapshot.timestamp_ms + 1).commit()

    assert [snapshot.snapshot_id for snapshot in table.snapshots()] == [current_snapshot.snapshot_id]


def test_expire_older_than_keeps_newer_snapshots(table: Table, file_a: DataFile, file_b: DataFile) -> None:
    table.new_fast_append().append_file(file_a).commit()
    table.new_fast_append().append_file(file_b).commit()

    oldest = min(snapshot.timestamp_ms for snapshot in table.snapshots())
    table.expire_snapshots().expire_older_than(oldest).commit()

    assert len(table.snapshots()) == 2


def test_concurrently_expired_snapshot_is_skipped(table: Table, file_a: DataFile, file_b: DataFile) -> None:
    table.new_fast_append().append_file(file_a).commit()
    first_snapshot_id = table.current_snapshot().snapshot_id  # type: ignore
    table.new_fast_append().append_file(file_b).commit()

    expire = table.expire_snapshots().expire_snapshot_id(first_snapshot_id)
    table.expire_snapshots().expire_snapshot_id(first_snapshot_id).commit()

    expire.commit()

    assert len(table.snapshots()) == 1


def test_expire_with_custom_delete(table: Table, file_a: DataFile, file_b: DataFile) -> None:
    table.new_append().append_file(file_a).append_file(file_b).commit()
    first_snapshot = table.current_snapshot()
    assert first_snapshot is not None
    table.new_delete().delete_file(file_a).commit()

    deleted: List[str] = []
    table.expire_snapshots().expire_snapshot_id(first_snapshot.snapshot_id).delete_with(deleted.append).commit()

    assert deleted == [first_snapshot.manifests[0].manifest_path]
    assert os.path.exists(first_snapshot.manifests[0].manifest_path)


def test_failed_delete_does_not_fail_the_expiration(table: Table, file_a: DataFile, file_b: DataFile) -> None:
    table.new_append().append_file(file_a).append_file(file_b).commit()
    first_snapshot = table.current_snapshot()
    assert first_snapshot is not None
    table.new_delete().delete_file(file_a).commit()

    def _fail(path: str) -> None:
        raise OSError(f"Cannot delete {path}")

    table.expire_snapshots().expire_snapshot_id(first_snapshot.snapshot_id).delete_with(_fail).commit()

    assert len(table.snapshots()) == 1
