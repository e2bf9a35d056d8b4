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
from typing import Set

import pytest

from snaptable.expressions import (
    AlwaysFalse,
    And,
    EqualTo,
    GreaterThan,
    In,
    IsNull,
    LessThan,
    Not,
    NotEqualTo,
    Or,
)
from snaptable.manifest import DataFile
from snaptable.table import DataScan, FileScanTask, Table


def _planned(scan: DataScan) -> Set[str]:
    return {task.file.file_path for task in scan.plan_files()}


@pytest.fixture
def populated_table(table: Table, file_day_1: DataFile, file_day_2: DataFile) -> Table:
    table.new_append().append_file(file_day_1).append_file(file_day_2).commit()
    return table


def test_scan_empty_table(table: Table) -> None:
    assert list(table.scan().plan_files()) == []


def test_scan_all_files(populated_table: Table) -> None:
    assert _planned(populated_table.scan()) == {"/path/to/data-1.parquet", "/path/to/data-2.parquet"}


def test_file_scan_task_covers_the_file(populated_table: Table, file_day_1: DataFile) -> None:
    tasks = [task for task in populated_table.scan().plan_files() if task.file == file_day_1]

    assert len(tasks) == 1
    assert tasks[0].start == 0
    assert tasks[0].length == file_day_1.file_size_in_bytes
    assert FileScanTask(file_day_1, start=2, length=4).length == 4


def test_scan_by_partition_value(populated_table: Table) -> None:
    assert _planned(populated_table.scan(row_filter=EqualTo("date", "2018-06-08"))) == {"/path/to/data-1.parquet"}
    assert _planned(populated_table.scan(row_filter=NotEqualTo("date", "2018-06-08"))) == {"/path/to/data-2.parquet"}
    assert _planned(populated_table.scan(row_filter=EqualTo("date", "2018-06-12"))) == set()


def test_scan_by_column_bounds(populated_table: Table) -> None:
    assert _planned(populated_table.scan(row_filter=GreaterThan("id", 4))) == {"/path/to/data-2.parquet"}
    assert _planned(populated_table.scan(row_filter=LessThan("id", 5))) == {"/path/to/data-1.parquet"}
    assert _planned(populated_table.scan(row_filter=In("id", {3, 20}))) == {"/path/to/data-1.parquet"}
    assert _planned(populated_table.scan(row_filter=GreaterThan("id", 9))) == set()


def test_scan_with_compound_filters(populated_table: Table) -> None:
    both = And(EqualTo("date", "2018-06-09"), LessThan("id", 7))
    either = Or(EqualTo("date", "2018-06-08"), GreaterThan("id", 8))
    negated = Not(LessThan("id", 5))

    assert _planned(populated_table.scan(row_filter=both)) == {"/path/to/data-2.parquet"}
    assert _planned(populated_table.scan(row_filter=either)) == {"/path/to/data-1.parquet", "/path/to/data-2.parquet"}
    assert _planned(populated_table.scan(row_filter=negated)) == {"/path/to/data-2.parquet"}


def test_scan_required_column_is_never_null(populated_table: Table) -> None:
    assert _planned(populated_table.scan(row_filter=IsNull("id"))) == set()
    assert _planned(populated_table.scan(row_filter=AlwaysFalse())) == set()


def test_scan_optional_column_with_nulls(populated_table: Table) -> None:
    # both files count two nulls in the data column
    assert _planned(populated_table.scan(row_filter=IsNull("data"))) == {
        "/path/to/data-1.parquet",
        "/path/to/data-2.parquet",
    }


def test_scan_case_insensitive(populated_table: Table) -> None:
    scan = populated_table.scan(row_filter=EqualTo("DATE", "2018-06-08"), case_sensitive=False)
    assert _planned(scan) == {"/path/to/data-1.parquet"}


def test_scan_case_sensitive_unknown_column(populated_table: Table) -> None:
    scan = populated_table.scan(row_filter=EqualTo("DATE", "2018-06-08"))
    with pytest.raises(ValueError, match="Could not find field with name DATE, case_sensitive=True"):
        scan.plan_files()


def test_scan_skips_deleted_files(populated_table: Table, file_day_1: DataFile) -> None:
    populated_table.new_delete().delete_file(file_day_1).commit()
    assert _planned(populated_table.scan()) == {"/path/to/data-2.parquet"}


def test_scan_skips_empty_files(table: Table, file_day_1: DataFile) -> None:
    empty = file_day_1.model_copy(update={"file_path": "/path/to/empty.parquet", "record_count": 0})
    table.new_fast_append().append_file(empty).append_file(file_day_1).commit()

    assert _planned(table.scan()) == {"/path/to/data-1.parquet"}


def test_scan_time_travel(populated_table: Table, file_day_1: DataFile) -> None:
    before_delete = populated_table.current_snapshot().snapshot_id  # type: ignore
    populated_table.new_delete().delete_file(file_day_1).commit()

    scan = populated_table.scan(snapshot_id=before_delete)

    assert scan.snapshot().snapshot_id == before_delete  # type: ignore
    assert _planned(scan) == {"/path/to/data-1.parquet", "/path/to/data-2.parquet"}


def test_scan_unknown_snapshot(populated_table: Table) -> None:
    scan = populated_table.scan(snapshot_id=12345)

    assert scan.snapshot() is None
    assert list(scan.plan_files()) == []


def test_scan_with_row_filter(populated_table: Table) -> None:
    scan = populated_table.scan()
    filtered = scan.with_row_filter(EqualTo("date", "2018-06-09"))

    assert _planned(filtered) == {"/path/to/data-2.parquet"}
    assert _planned(scan) == {"/path/to/data-1.parquet", "/path/to/data-2.parquet"}


def test_scan_is_isolated_from_later_commits(populated_table: Table, file_a: DataFile) -> None:
    scan = populated_table.scan()
    populated_table.new_append().append_file(file_a).commit()

    assert _planned(scan) == {"/path/to/data-1.parquet", "/path/to/data-2.parquet"}
    assert "/path/to/data-a.parquet" in _planned(populated_table.scan())
