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

import time
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
)

from pydantic import Field, PrivateAttr, model_serializer

from snaptable.manifest import DataFile, ManifestFile
from snaptable.typedef import SnaptableBaseModel

OPERATION = "operation"

ADDED_DATA_FILES = "added-data-files"
DELETED_DATA_FILES = "deleted-data-files"
ADDED_RECORDS = "added-records"
DELETED_RECORDS = "deleted-records"
ADDED_FILE_SIZE = "added-files-size"
REMOVED_FILE_SIZE = "removed-files-size"
CHANGED_PARTITION_COUNT_PROP = "changed-partition-count"
TOTAL_DATA_FILES = "total-data-files"
TOTAL_RECORDS = "total-records"
TOTAL_FILE_SIZE = "total-files-size"


class Operation(Enum):
    """Describes the operation.

    Possible operation values are:
        - append: Only data files were added and no files were removed.
        - replace: Data files were added and removed without changing table data; i.e., compaction, changing the data file format, or relocating data files.
        - overwrite: Data files were added and removed in a logical overwrite operation.
        - delete: Data files were removed and their contents logically deleted.
    """

    APPEND = "append"
    REPLACE = "replace"
    OVERWRITE = "overwrite"
    DELETE = "delete"

    def __repr__(self) -> str:
        """Return the string representation of the Operation class."""
        return f"Operation.{self.name}"


class Summary(SnaptableBaseModel, Mapping[str, str]):
    """A class that stores the summary information for a Snapshot.

    The snapshot summary's operation field is used by the timeline validation
    to decide which changes of a concurrent snapshot can conflict.
    """

    operation: Operation = Field()
    _additional_properties: Dict[str, str] = PrivateAttr()

    def __init__(self, operation: Operation, **data: Any) -> None:
        super().__init__(operation=operation, **data)
        self._additional_properties = data

    def __getitem__(self, __key: str) -> Optional[Any]:  # type: ignore
        """Return a key as it is a map."""
        if __key == OPERATION:
            return self.operation
        return self._additional_properties[__key]

    def __len__(self) -> int:
        """Return the number of keys in the summary."""
        # Operation is required
        return 1 + len(self._additional_properties)

    def __iter__(self) -> Any:
        """Iterate over the keys of the summary."""
        yield OPERATION
        yield from self._additional_properties

    @model_serializer
    def ser_model(self) -> Dict[str, str]:
        return {
            "operation": str(self.operation.value),
            **self._additional_properties,
        }

    @property
    def additional_properties(self) -> Dict[str, str]:
        return dict(self._additional_properties)

    def __repr__(self) -> str:
        """Return the string representation of the Summary class."""
        repr_properties = f", **{repr(self._additional_properties)}" if self._additional_properties else ""
        return f"Summary({repr(self.operation)}{repr_properties})"

    def __eq__(self, other: Any) -> bool:
        """Compare if the summary is equal to another summary."""
        return (
            self.operation == other.operation and self.additional_properties == other.additional_properties
            if isinstance(other, Summary)
            else False
        )

    def __hash__(self) -> int:
        """Return the hash of the summary."""
        return hash((self.operation, tuple(sorted(self._additional_properties.items()))))


class Snapshot(SnaptableBaseModel):
    """The state of the table at some point in time.

    A snapshot lists every manifest that makes up the table at that point, the
    manifests are recorded inline.
    """

    snapshot_id: int = Field(alias="snapshot-id")
    parent_snapshot_id: Optional[int] = Field(alias="parent-snapshot-id", default=None)
    timestamp_ms: int = Field(alias="timestamp-ms", default_factory=lambda: int(time.time() * 1000))
    manifests: List[ManifestFile] = Field(default_factory=list)
    summary: Optional[Summary] = Field(default=None)
    schema_id: Optional[int] = Field(alias="schema-id", default=None)

    def __str__(self) -> str:
        """Return the string representation of the Snapshot class."""
        operation = f"{self.summary.operation}: " if self.summary else ""
        parent_id = f", parent_id={self.parent_snapshot_id}" if self.parent_snapshot_id else ""
        schema_id = f", schema_id={self.schema_id}" if self.schema_id is not None else ""
        result_str = f"{operation}id={self.snapshot_id}{parent_id}{schema_id}"
        return result_str

    @property
    def operation(self) -> Optional[Operation]:
        return self.summary.operation if self.summary is not None else None


class SnapshotLogEntry(SnaptableBaseModel):
    snapshot_id: int = Field(alias="snapshot-id")
    timestamp_ms: int = Field(alias="timestamp-ms")


class SnapshotSummaryCollector:
    added_size: int
    removed_size: int
    added_files: int
    removed_files: int
    added_records: int
    deleted_records: int
    partitions: set  # type: ignore

    def __init__(self) -> None:
        self.added_size = 0
        self.removed_size = 0
        self.added_files = 0
        self.removed_files = 0
        self.added_records = 0
        self.deleted_records = 0
        self.partitions = set()

    def add_file(self, data_file: DataFile) -> None:
        self.added_files += 1
        self.added_records += data_file.record_count
        self.added_size += data_file.file_size_in_bytes
        self._changed_partition(data_file)

    def removed_file(self, data_file: DataFile) -> None:
        self.removed_files += 1
        self.deleted_records += data_file.record_count
        self.removed_size += data_file.file_size_in_bytes
        self._changed_partition(data_file)

    def _changed_partition(self, data_file: DataFile) -> None:
        self.partitions.add(tuple(sorted((k, repr(v)) for k, v in data_file.partition.items())))

    def build(self) -> Dict[str, str]:
        def set_non_zero(properties: Dict[str, str], num: int, property_name: str) -> None:
            if num > 0:
                properties[property_name] = str(num)

        properties: Dict[str, str] = {}
        set_non_zero(properties, self.added_size, ADDED_FILE_SIZE)
        set_non_zero(properties, self.removed_size, REMOVED_FILE_SIZE)
        set_non_zero(properties, self.added_files, ADDED_DATA_FILES)
        set_non_zero(properties, self.removed_files, DELETED_DATA_FILES)
        set_non_zero(properties, self.added_records, ADDED_RECORDS)
        set_non_zero(properties, self.deleted_records, DELETED_RECORDS)
        set_non_zero(properties, len(self.partitions), CHANGED_PARTITION_COUNT_PROP)

        return properties


def update_snapshot_summaries(
    operation: Operation,
    properties: Dict[str, str],
    previous_summary: Optional[Mapping[str, str]] = None,
) -> Summary:
    """Build the summary of a snapshot, carrying the table totals of the previous snapshot forward."""
    summary = dict(properties)
    if not previous_summary:
        previous_summary = {
            TOTAL_DATA_FILES: "0",
            TOTAL_RECORDS: "0",
            TOTAL_FILE_SIZE: "0",
        }

    def _update_totals(total_property: str, added_property: str, removed_property: str) -> None:
        if new_total_str := previous_summary.get(total_property):
            new_total = int(new_total_str)
            if new_total >= 0 and (added := summary.get(added_property)):
                new_total += int(added)
            if new_total >= 0 and (removed := summary.get(removed_property)):
                new_total -= int(removed)
            if new_total >= 0:
                summary[total_property] = str(new_total)

    _update_totals(
        total_property=TOTAL_DATA_FILES,
        added_property=ADDED_DATA_FILES,
        removed_property=DELETED_DATA_FILES,
    )
    _update_totals(
        total_property=TOTAL_RECORDS,
        added_property=ADDED_RECORDS,
        removed_property=DELETED_RECORDS,
    )
    _update_totals(
        total_property=TOTAL_FILE_SIZE,
        added_property=ADDED_FILE_SIZE,
        removed_property=REMOVED_FILE_SIZE,
    )

    return Summary(operation, **summary)
