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
Durable Store Interface

Defines the gateway the scheduler core needs from its store, so the
in-memory and JSON file implementations (or a relational one) can be used
interchangeably.
"""

from typing import Any, Iterable, Optional, Protocol

from legacy_migrator.analysis.models import (
    Batch, MigrationProject, SourceUnit, UnitStatus, Workspace
)


class MigrationStore(Protocol):
    """Protocol defining the durable store gateway."""

    def save_workspace(self, workspace: Workspace, units: list[SourceUnit]) -> None:
        """Persist a scan result together with its units."""
        ...

    def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        ...

    def list_workspaces(self) -> list[Workspace]:
        ...

    def get_unit(self, unit_id: str) -> Optional[SourceUnit]:
        ...

    def list_units(
        self,
        workspace_id: str,
        statuses: Optional[Iterable[UnitStatus]] = None
    ) -> list[SourceUnit]:
        """Units of a workspace sorted by path, optionally filtered by status."""
        ...

    def next_pending_unit(self, workspace_id: str) -> Optional[SourceUnit]:
        """Highest-complexity pending migratable unit, ties broken by path."""
        ...

    def transition_unit(
        self,
        unit_id: str,
        expected: set[UnitStatus],
        new: UnitStatus,
        **changes: Any
    ) -> Optional[SourceUnit]:
        """
        Atomically move a unit to ``new`` if its status is in ``expected``.

        Returns the updated unit, or None when the status did not match.
        """
        ...

    def count_by_status(self, workspace_id: str) -> dict[UnitStatus, int]:
        """Migratable unit counts per status."""
        ...

    def save_project(self, project: MigrationProject) -> None:
        ...

    def get_project(self, project_id: str) -> Optional[MigrationProject]:
        ...

    def save_batches(self, workspace_id: str, batches: list[Batch]) -> None:
        ...

    def list_batches(self, workspace_id: str) -> list[Batch]:
        ...

    def update_batch(self, batch: Batch) -> None:
        """Persist the processed/result/errors fields of an existing batch."""
        ...
