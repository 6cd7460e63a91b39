# Licensed to the Apache Software Foundation (ASF) under one or more
# contributor license agreements.  See the NOTICE file distributed with
# this work for additional information regarding copyright ownership.
# The ASF licenses this file to You under the Apache License, Version 2.0
# (the "License"); you may not use this file except in compliance with
# the License.  You may obtain a copy of the License at
#
#      https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Filesystem Probe

Lists files under a root filtered by extension, exclusions and modification
time. Used by the classifier to enumerate candidates and by the tracker to look
for artifacts written by the transformation agent.

Walks are time-boxed and can be cancelled through a threading.Event.
"""

import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from legacy_migrator.config import (
    ARTIFACT_EXTENSIONS, EXCLUDED_DIRS, PROBE_TIMEOUT_SECONDS
)
from legacy_migrator.errors import ProbeInterrupted
from legacy_migrator.utils.logging_config import get_logger

logger = get_logger(__name__)


def read_text(path: Path) -> str:
    """Read file content, replacing undecodable bytes."""
    return path.read_text(encoding="utf-8", errors="replace")


def modified_at(path: Path) -> datetime:
    """Last-modified time of a file as an aware UTC datetime."""
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


class FilesystemProbe:
    """Time-boxed, cancellable directory listing."""

    def __init__(
        self,
        timeout: Optional[float] = PROBE_TIMEOUT_SECONDS,
        cancel_event: Optional[threading.Event] = None
    ) -> None:
        """
        Initialize the probe.

        Args:
            timeout: Seconds a single walk may take (None for no limit)
            cancel_event: Set from another thread to abort a running walk
        """
        self.timeout = timeout
        self.cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        """Abort the current and any later walk."""
        self.cancel_event.set()

    def _walk(
        self,
        root: Path,
        recurse: bool,
        excluded_dirs: frozenset[str]
    ) -> Iterator[Path]:
        deadline = time.monotonic() + self.timeout if self.timeout is not None else None

        for dirpath, dirnames, filenames in os.walk(root):
            if self.cancel_event.is_set():
                raise ProbeInterrupted(f"Walk of {root} was cancelled")
            if deadline is not None and time.monotonic() > deadline:
                raise ProbeInterrupted(f"Walk of {root} exceeded {self.timeout}s")

            if recurse:
                # Prune in place so os.walk never descends into excluded folders
                dirnames[:] = sorted(d for d in dirnames if d.lower() not in excluded_dirs)
            else:
                dirnames[:] = []

            for filename in sorted(filenames):
                yield Path(dirpath) / filename

    def list_files(
        self,
        root: Path,
        extensions: tuple[str, ...],
        recurse: bool = True,
        excluded_dirs: frozenset[str] = EXCLUDED_DIRS,
        excluded_suffixes: tuple[str, ...] = ()
    ) -> list[Path]:
        """
        List files under a root.

        Args:
            root: Directory to walk
            extensions: Accepted file extensions (case-insensitive)
            recurse: Descend into subdirectories
            excluded_dirs: Lower-case directory names never entered
            excluded_suffixes: Lower-case file-name endings to skip (generated files)

        Returns:
            Sorted list of matching paths
        """
        lowered_exts = tuple(ext.lower() for ext in extensions)
        matches: list[Path] = []

        for path in self._walk(root, recurse, excluded_dirs):
            name = path.name.lower()
            if not name.endswith(lowered_exts):
                continue
            if excluded_suffixes and name.endswith(excluded_suffixes):
                continue
            matches.append(path)

        return sorted(matches)

    def recent_files(
        self,
        root: Path,
        since: datetime,
        extensions: tuple[str, ...] = ARTIFACT_EXTENSIONS
    ) -> list[tuple[Path, datetime]]:
        """
        List files modified at or after a point in time, newest first.

        A missing root yields an empty list.
        """
        if not root.is_dir():
            return []

        recent: list[tuple[Path, datetime]] = []
        for path in self.list_files(root, extensions):
            try:
                mtime = modified_at(path)
            except OSError as e:
                logger.warning(f"Could not stat {path}: {e}")
                continue
            if mtime >= since:
                recent.append((path, mtime))

        recent.sort(key=lambda item: (item[1], str(item[0])), reverse=True)
        return recent
