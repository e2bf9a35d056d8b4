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
"""FileIO implementation for reading and writing table files that uses fsspec compatible filesystems."""

from __future__ import annotations

import logging
import threading
from functools import lru_cache
from typing import Any, Dict, Union
from urllib.parse import urlparse

import fsspec
from fsspec import AbstractFileSystem

from snaptable.io import (
    FileIO,
    InputFile,
    InputStream,
    OutputFile,
    OutputStream,
)
from snaptable.typedef import Properties

logger = logging.getLogger(__name__)

FSSPEC_PREFIX = "fsspec."
LOCAL_SCHEMES = {"", "file"}
# Filesystems whose "xb" mode fails when the file exists instead of truncating it
EXCLUSIVE_CREATE_PROTOCOLS = {"file", "local", "memory"}


def _supports_exclusive_create(fs: AbstractFileSystem) -> bool:
    protocols = (fs.protocol,) if isinstance(fs.protocol, str) else fs.protocol
    return any(protocol in EXCLUSIVE_CREATE_PROTOCOLS for protocol in protocols)


class FsspecInputFile(InputFile):
    """An input file implementation for the FsspecFileIO.

    Args:
        location (str): A URI to a file location.
        fs (AbstractFileSystem): An fsspec filesystem instance.
    """

    def __init__(self, location: str, fs: AbstractFileSystem):
        self._fs = fs
        super().__init__(location=location)

    def __len__(self) -> int:
        """Return the total length of the file, in bytes."""
        object_info = self._fs.info(self.location)
        if "Size" in object_info:
            return object_info["Size"]
        elif "size" in object_info:
            return object_info["size"]
        raise RuntimeError(f"Cannot retrieve object info: {self.location}")

    def exists(self) -> bool:
        """Check whether the location exists."""
        return self._fs.exists(self.location)

    def open(self, seekable: bool = True) -> InputStream:
        """Create an input stream for reading the contents of the file.

        Args:
            seekable: If the stream should support seek, or if it is consumed sequential.

        Returns:
            OpenFile: An fsspec compliant file-like object.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        return self._fs.open(self.location, "rb")


class FsspecOutputFile(OutputFile):
    """An output file implementation for the FsspecFileIO.

    Args:
        location (str): A URI to a file location.
        fs (AbstractFileSystem): An fsspec filesystem instance.
    """

    def __init__(self, location: str, fs: AbstractFileSystem):
        self._fs = fs
        super().__init__(location=location)

    def __len__(self) -> int:
        """Return the total length of the file, in bytes."""
        object_info = self._fs.info(self.location)
        if "Size" in object_info:
            return object_info["Size"]
        elif "size" in object_info:
            return object_info["size"]
        raise RuntimeError(f"Cannot retrieve object info: {self.location}")

    def exists(self) -> bool:
        """Check whether the location exists."""
        return self._fs.exists(self.location)

    def create(self, overwrite: bool = False) -> OutputStream:
        """Create an output stream for writing the contents of the file.

        Args:
            overwrite (bool): Whether to overwrite the file if it already exists.

        Returns:
            OpenFile: An fsspec compliant file-like object.

        Raises:
            FileExistsError: If the file already exists at the location and overwrite is set to False.

        Note:
            Without overwrite the file is opened in exclusive mode, so of two concurrent writers only
            one succeeds on filesystems listed in EXCLUSIVE_CREATE_PROTOCOLS. Other filesystems may
            check for existence first and truncate a file created in between.
        """
        if not overwrite:
            if _supports_exclusive_create(self._fs):
                try:
                    return self._fs.open(self.location, "xb")
                except FileExistsError as e:
                    raise FileExistsError(f"Cannot create file, file already exists: {self.location}") from e
            if self.exists():
                raise FileExistsError(f"Cannot create file, file already exists: {self.location}")
        return self._fs.open(self.location, "wb")

    def to_input_file(self) -> FsspecInputFile:
        """Return a new FsspecInputFile for the location at `self.location`."""
        return FsspecInputFile(location=self.location, fs=self._fs)


class FsspecFileIO(FileIO):
    """A FileIO implementation that uses fsspec.

    Every protocol registered with fsspec is supported. Properties prefixed with
    ``fsspec.`` are handed to the filesystem as storage options, for example
    ``fsspec.auto_mkdir``.
    """

    def __init__(self, properties: Properties):
        self._thread_locals = threading.local()
        super().__init__(properties=properties)

    def new_input(self, location: str) -> FsspecInputFile:
        """Get an FsspecInputFile instance to read bytes from the file at the given location.

        Args:
            location (str): A URI or a path to a local file.

        Returns:
            FsspecInputFile: An FsspecInputFile instance for the given location.
        """
        uri = urlparse(location)
        fs = self.get_fs(uri.scheme)
        return FsspecInputFile(location=location, fs=fs)

    def new_output(self, location: str) -> FsspecOutputFile:
        """Get an FsspecOutputFile instance to write bytes to the file at the given location.

        Args:
            location (str): A URI or a path to a local file.

        Returns:
            FsspecOutputFile: An FsspecOutputFile instance for the given location.
        """
        uri = urlparse(location)
        fs = self.get_fs(uri.scheme)
        return FsspecOutputFile(location=location, fs=fs)

    def delete(self, location: Union[str, InputFile, OutputFile]) -> None:
        """Delete the file at the given location.

        Args:
            location (Union[str, InputFile, OutputFile]): The URI to the file--if an InputFile instance or an
                OutputFile instance is provided, the location attribute for that instance is used as the location
                to delete.
        """
        if isinstance(location, (InputFile, OutputFile)):
            str_location = location.location  # Use InputFile or OutputFile location
        else:
            str_location = location

        uri = urlparse(str_location)
        fs = self.get_fs(uri.scheme)
        fs.rm(str_location)

    def supports_exclusive_create(self, location: str) -> bool:
        return _supports_exclusive_create(self.get_fs(urlparse(location).scheme))

    def get_fs(self, scheme: str) -> AbstractFileSystem:
        """Get a filesystem for a specific scheme, cached per thread."""
        if not hasattr(self._thread_locals, "get_fs_cached"):
            self._thread_locals.get_fs_cached = lru_cache(self._get_fs)

        return self._thread_locals.get_fs_cached(scheme)

    def _storage_options(self, scheme: str) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            key[len(FSSPEC_PREFIX) :]: value for key, value in self.properties.items() if key.startswith(FSSPEC_PREFIX)
        }
        if scheme in LOCAL_SCHEMES:
            options.setdefault("auto_mkdir", True)
        return options

    def _get_fs(self, scheme: str) -> AbstractFileSystem:
        """Get a filesystem for a specific scheme, uncached."""
        protocol = "file" if scheme in LOCAL_SCHEMES else scheme
        try:
            return fsspec.filesystem(protocol, **self._storage_options(scheme))
        except ValueError as e:
            raise ValueError(f"No registered filesystem for scheme: {scheme}") from e

    def __getstate__(self) -> Dict[str, Any]:
        """Create a dictionary of the FsspecFileIO fields used when pickling."""
        fileio_copy = dict(self.__dict__)
        del fileio_copy["_thread_locals"]
        return fileio_copy

    def __setstate__(self, state: Dict[str, Any]) -> None:
        """Deserialize the state into a FsspecFileIO instance."""
        self.__dict__ = state
        self._thread_locals = threading.local()
