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
from typing import TYPE_CHECKING, Any, Callable, Dict, Generic, Optional, Set, Tuple, TypeVar

from snaptable.exceptions import CommitFailedException, IllegalStateException
from snaptable.table.metadata import TableMetadata
from snaptable.utils.retry import RetryConfig, run_with_retry

if TYPE_CHECKING:
    from snaptable.catalog import MetadataStore

logger = logging.getLogger(__name__)

U = TypeVar("U")


def reachable_manifests(metadata: TableMetadata) -> Set[str]:
    """Return the paths of every manifest listed by a retained snapshot."""
    return {manifest.manifest_path for snapshot in metadata.snapshots for manifest in snapshot.manifests}


class PendingUpdate(ABC, Generic[U]):
    """A staged change to a table, published with an optimistic commit.

    ``_apply`` computes the metadata that results from applying the change
    on top of a base. It only records state that can be reused by a later
    call, so it can be run again when the commit has to be retried against
    a newer base.
    """

    _store: MetadataStore
    _delete_func: Optional[Callable[[str], None]]

    def __init__(self, store: MetadataStore) -> None:
        self._store = store
        self._delete_func = None

    @abstractmethod
    def _apply(self, base: TableMetadata) -> TableMetadata: ...

    def apply(self) -> TableMetadata:
        """Return the metadata this change would produce on the latest table state, without committing it."""
        return self._apply(self._store.refresh())

    def delete_with(self, delete_func: Callable[[str], None]) -> U:
        """Route the deletion of files this update no longer needs through a callback.

        Raises:
            IllegalStateException: When a callback was set before.
        """
        if self._delete_func is not None:
            raise IllegalStateException("Cannot set delete callback more than once")
        self._delete_func = delete_func
        return self  # type: ignore

    def _delete_file(self, path: str) -> None:
        try:
            if self._delete_func is not None:
                self._delete_func(path)
            else:
                self._store.io.delete(path)
        except Exception as e:
            logger.warning("Failed to delete %s: %s", path, e)

    def commit(self) -> None:
        """Apply the change on the latest metadata and swap it in, retrying when the table moved concurrently.

        Raises:
            CommitFailedException: When the retries are exhausted.
            ValidationException: When the change is no longer valid on the latest metadata.
        """
        retry_config = RetryConfig.from_properties(self._store.refresh().properties)

        def _attempt() -> Tuple[TableMetadata, TableMetadata]:
            base = self._store.refresh()
            updated = self._apply(base)
            self._store.commit(base, updated)
            return base, updated

        try:
            base, committed = run_with_retry(_attempt, retry_config, (CommitFailedException,))
        except Exception as e:
            logger.info("Failed to commit %s: %s", type(self).__name__, e)
            self._commit_failed()
            raise

        logger.info("Committed %s", type(self).__name__)
        self._commit_succeeded(base, committed)

    def _commit_succeeded(self, base: TableMetadata, committed: TableMetadata) -> None:
        """Clean up after a successful commit, ``committed`` is the metadata that was swapped in."""

    def _commit_failed(self) -> None:
        """Clean up after the commit failed for good."""

    def __exit__(self, _: Any, value: Any, traceback: Any) -> None:
        """Close and commit the change."""
        if value is None:
            self.commit()

    def __enter__(self) -> U:
        """Update the table."""
        return self  # type: ignore


class UpdateProperties(PendingUpdate["UpdateProperties"]):
    """Set and remove table properties, for example the commit retry budget."""

    _updates: Dict[str, str]
    _removals: Set[str]

    def __init__(self, store: MetadataStore) -> None:
        super().__init__(store)
        self._updates = {}
        self._removals = set()

    def set(self, key: str, value: Any) -> UpdateProperties:
        if key in self._removals:
            raise ValueError(f"Cannot set and remove the same property: {key}")
        self._updates[key] = str(value)
        return self

    def remove(self, key: str) -> UpdateProperties:
        if key in self._updates:
            raise ValueError(f"Cannot set and remove the same property: {key}")
        self._removals.add(key)
        return self

    def _apply(self, base: TableMetadata) -> TableMetadata:
        return base.update_properties(updates=self._updates, removals=self._removals)
