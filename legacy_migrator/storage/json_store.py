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
JSON file store.

Keeps the whole scheduler state in one JSON document under the state
directory, so independent short-lived invocations (one CLI call each) see
each other's changes. Every operation runs under an exclusive flock on a
``state.lock`` sidecar, reloads the document, and when it mutates, rewrites
the file atomically (temp file + rename) before the lock is released. Two
processes claiming from the same project therefore never both see a unit
as pending.
"""

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from legacy_migrator.analysis.models import Batch, MigrationProject, SourceUnit, Workspace
from legacy_migrator.config import LOCK_FILE_NAME, STATE_FILE_NAME
from legacy_migrator.errors import StoreError
from legacy_migrator.storage.memory_store import InMemoryStore
from legacy_migrator.utils.logging_config import get_logger

logger = get_logger(__name__)

STATE_FORMAT_VERSION = 1


class JsonFileStore(InMemoryStore):
    """MigrationStore persisted to ``<state_dir>/state.json``."""

    def __init__(self, state_dir: Path) -> None:
        """
        Initialize the store.

        Args:
            state_dir: Directory holding the state and lock files (created if missing)
        """
        super().__init__()
        self.state_dir = Path(state_dir)
        self.path = self.state_dir / STATE_FILE_NAME
        self.lock_path = self.state_dir / LOCK_FILE_NAME
        self._depth = 0
        with self._locked():
            pass

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                # flock is per open file; re-locking from this process would block
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            try:
                self.state_dir.mkdir(parents=True, exist_ok=True)
                lock_file = open(self.lock_path, "a+", encoding="utf-8")
            except OSError as e:
                raise StoreError(f"Cannot open lock file {self.lock_path}: {e}") from e

            with lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                self._depth = 1
                try:
                    self._reload()
                    yield
                finally:
                    self._depth = 0
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _reload(self) -> None:
        if self.path.exists():
            self._load()
        else:
            self._clear()

    def _clear(self) -> None:
        self._workspaces = {}
        self._units = {}
        self._projects = {}
        self._batches = {}

    def _load(self) -> None:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read state file {self.path}: {e}") from e

        if data.get("format") != STATE_FORMAT_VERSION:
            raise StoreError(f"Unsupported state file format in {self.path}: {data.get('format')}")

        try:
            self._workspaces = {
                key: Workspace.from_dict(value) for key, value in data.get("workspaces", {}).items()
            }
            self._units = {
                key: SourceUnit.from_dict(value) for key, value in data.get("units", {}).items()
            }
            self._projects = {
                key: MigrationProject.from_dict(value) for key, value in data.get("projects", {}).items()
            }
            self._batches = {
                key: [Batch.from_dict(item) for item in value]
                for key, value in data.get("batches", {}).items()
            }
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Corrupt state file {self.path}: {e}") from e

        logger.debug(f"Loaded {len(self._units)} units from {self.path}")

    def _serialize(self) -> dict[str, Any]:
        return {
            "format": STATE_FORMAT_VERSION,
            "workspaces": {key: ws.to_dict() for key, ws in self._workspaces.items()},
            "units": {key: unit.to_dict() for key, unit in self._units.items()},
            "projects": {key: project.to_dict() for key, project in self._projects.items()},
            "batches": {
                key: [batch.to_dict() for batch in batches] for key, batches in self._batches.items()
            },
        }

    def _commit(self) -> None:
        tmp_name: Optional[str] = None
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".state-", suffix=".json", dir=self.state_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._serialize(), f, indent=2)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise StoreError(f"Cannot write state file {self.path}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
