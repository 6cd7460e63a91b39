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
In-memory store.

Lock-guarded dictionaries. Every read returns a copy, so callers never
mutate stored state except through the store's own methods.
"""

import copy
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterable, Iterator, Optional

from legacy_migrator.analysis.models import (
    Batch, MigrationProject, SourceUnit, UnitStatus, Workspace
)
from legacy_migrator.errors import StoreError
from legacy_migrator.utils.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryStore:
    """MigrationStore backed by process memory."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._workspaces: dict[str, Workspace] = {}
        self._units: dict[str, SourceUnit] = {}
        self._projects: dict[str, MigrationProject] = {}
        self._batches: dict[str, list[Batch]] = {}

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold exclusive access to the state for one read or read-modify-write."""
        with self._lock:
            yield

    # Called inside _locked after a mutation
    def _commit(self) -> None:
        pass

    def save_workspace(self, workspace: Workspace, units: list[SourceUnit]) -> None:
        with self._locked():
            self._workspaces[workspace.id] = workspace
            for unit in units:
                self._units[unit.id] = copy.deepcopy(unit)
            self._commit()

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        with self._locked():
            return self._workspaces.get(workspace_id)

    def list_workspaces(self) -> list[Workspace]:
        with self._locked():
            return sorted(self._workspaces.values(), key=lambda w: w.scanned_at)

    def get_unit(self, unit_id: str) -> Optional[SourceUnit]:
        with self._locked():
            unit = self._units.get(unit_id)
            return copy.deepcopy(unit) if unit else None

    def list_units(
        self,
        workspace_id: str,
        statuses: Optional[Iterable[UnitStatus]] = None
    ) -> list[SourceUnit]:
        wanted = set(statuses) if statuses is not None else None
        with self._locked():
            units = [
                copy.deepcopy(u) for u in self._units.values()
                if u.workspace_id == workspace_id and (wanted is None or u.status in wanted)
            ]
        return sorted(units, key=lambda u: u.path)

    def next_pending_unit(self, workspace_id: str) -> Optional[SourceUnit]:
        with self._locked():
            candidates = [
                u for u in self._units.values()
                if u.workspace_id == workspace_id and u.status == UnitStatus.PENDING and u.is_migratable
            ]
            if not candidates:
                return None
            best = min(candidates, key=lambda u: (-u.complexity, u.path))
            return copy.deepcopy(best)

    def transition_unit(
        self,
        unit_id: str,
        expected: set[UnitStatus],
        new: UnitStatus,
        **changes: Any
    ) -> Optional[SourceUnit]:
        with self._locked():
            unit = self._units.get(unit_id)
            if unit is None:
                raise StoreError(f"No unit with id {unit_id}")
            if unit.status not in expected:
                return None

            updated = replace(unit, status=new, version=unit.version + 1, **changes)
            self._units[unit_id] = updated
            self._commit()
            logger.debug(f"Unit {unit_id}: {unit.status.value} -> {new.value} (v{updated.version})")
            return copy.deepcopy(updated)

    def count_by_status(self, workspace_id: str) -> dict[UnitStatus, int]:
        counts = {status: 0 for status in UnitStatus}
        with self._locked():
            for unit in self._units.values():
                if unit.workspace_id == workspace_id and unit.is_migratable:
                    counts[unit.status] += 1
        return counts

    def save_project(self, project: MigrationProject) -> None:
        with self._locked():
            self._projects[project.project_id] = copy.deepcopy(project)
            self._commit()

    def get_project(self, project_id: str) -> Optional[MigrationProject]:
        with self._locked():
            project = self._projects.get(project_id)
            return copy.deepcopy(project) if project else None

    def save_batches(self, workspace_id: str, batches: list[Batch]) -> None:
        with self._locked():
            self._batches[workspace_id] = copy.deepcopy(batches)
            self._commit()

    def list_batches(self, workspace_id: str) -> list[Batch]:
        with self._locked():
            return copy.deepcopy(self._batches.get(workspace_id, []))

    def update_batch(self, batch: Batch) -> None:
        with self._locked():
            batches = self._batches.get(batch.workspace_id, [])
            for index, stored in enumerate(batches):
                if stored.id == batch.id:
                    # Membership is fixed at creation; only the outcome fields change
                    batches[index] = replace(
                        stored, processed=batch.processed, result=batch.result, errors=list(batch.errors)
                    )
                    self._commit()
                    return
            raise StoreError(f"No batch with id {batch.id}")
