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
Migration State Tracker

Owns the per-unit state machine:

    pending -> in-progress -> completed | failed
    failed  -> pending        (explicit retry only)

Every change goes through the store's compare-and-set ``transition_unit``,
so two callers can never both claim or complete the same unit. Progress and
the project's aggregate status are derived from unit counts on each query.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from legacy_migrator.analysis.models import (
    MigrationProject, ProgressSnapshot, ProjectStatus, SourceUnit, UnitStatus
)
from legacy_migrator.config import (
    ARTIFACT_EXTENSIONS, CLAIM_ATTEMPTS, EVIDENCE_WINDOW, EXTENDED_EVIDENCE_WINDOW
)
from legacy_migrator.errors import (
    EvidenceMissing, InvalidTransition, ProjectNotFound, StoreError, UnitNotFound
)
from legacy_migrator.storage import MigrationStore
from legacy_migrator.tracking.probe import FilesystemProbe
from legacy_migrator.utils.logging_config import get_logger

logger = get_logger(__name__)


OPEN_STATES = {UnitStatus.PENDING, UnitStatus.IN_PROGRESS}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def derive_project_status(stored: ProjectStatus, pending: int, failed: int) -> ProjectStatus:
    """Aggregate status from unit counts; ``stored`` applies while work remains."""
    if pending == 0 and failed == 0:
        return ProjectStatus.COMPLETED
    if pending == 0:
        return ProjectStatus.FAILED
    return stored


class MigrationStateTracker:
    """Selects, claims and records units of work against a MigrationStore."""

    def __init__(
        self,
        store: MigrationStore,
        probe: Optional[FilesystemProbe] = None,
        clock: Optional[Callable[[], datetime]] = None,
        evidence_windows: tuple[timedelta, ...] = (EVIDENCE_WINDOW, EXTENDED_EVIDENCE_WINDOW),
        claim_attempts: int = CLAIM_ATTEMPTS
    ) -> None:
        """
        Initialize the tracker.

        Args:
            store: Durable store gateway
            probe: Filesystem probe used to look for output artifacts
            clock: Returns the current aware UTC time
            evidence_windows: Recency windows tried in order when completing a unit
            claim_attempts: How often to re-query after losing a claim race
        """
        self.store = store
        self.probe = probe or FilesystemProbe()
        self.clock = clock or utc_now
        self.evidence_windows = evidence_windows
        self.claim_attempts = claim_attempts

    def get_project(self, project_id: str) -> MigrationProject:
        project = self.store.get_project(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        return project

    def get_unit(self, project_id: str, unit_id: str) -> SourceUnit:
        unit = self.store.get_unit(unit_id)
        if unit is None or unit.workspace_id != project_id:
            raise UnitNotFound(unit_id, project_id)
        return unit

    def claim_next(self, project_id: str) -> Optional[SourceUnit]:
        """
        Move the next pending unit to in-progress and return it.

        The highest-complexity pending unit of a migratable kind is chosen
        (ties by path). When another caller claims it first, the query is
        repeated.

        Returns:
            The claimed unit, or None when nothing is pending
        """
        for attempt in range(1, self.claim_attempts + 1):
            candidate = self.store.next_pending_unit(project_id)
            if candidate is None:
                return None

            claimed = self.store.transition_unit(
                candidate.id, {UnitStatus.PENDING}, UnitStatus.IN_PROGRESS,
                started_at=self.clock(), error=None,
            )
            if claimed is not None:
                logger.info(f"Claimed {claimed.path} (complexity {claimed.complexity})")
                return claimed
            logger.info(f"{candidate.path} was claimed by another caller (attempt {attempt})")

        raise StoreError(
            f"Could not claim a pending unit of {project_id} after {self.claim_attempts} attempts"
        )

    def collect_evidence(
        self,
        output_roots: dict[str, Optional[str]],
        window: timedelta
    ) -> dict[str, list[str]]:
        """
        Files under the output roots modified within a window.

        Returns:
            layer -> paths relative to that layer's root (layers without files omitted)
        """
        since = self.clock() - window
        artifacts: dict[str, list[str]] = {}
        for layer, root in output_roots.items():
            if not root:
                continue
            root_path = Path(root)
            found = self.probe.recent_files(root_path, since, ARTIFACT_EXTENSIONS)
            if found:
                artifacts[layer] = sorted(path.relative_to(root_path).as_posix() for path, _ in found)
        return artifacts

    def complete(self, project_id: str, unit_id: str, notes: Optional[str] = None) -> SourceUnit:
        """
        Record a unit as completed once output artifacts are observed.

        Raises:
            InvalidTransition: If the unit is already completed or failed
            EvidenceMissing: If no artifacts were found; the unit is now failed
        """
        project = self.get_project(project_id)
        unit = self.get_unit(project_id, unit_id)
        if unit.status not in OPEN_STATES:
            raise InvalidTransition(unit_id, unit.status.value, UnitStatus.COMPLETED.value)

        artifacts: dict[str, list[str]] = {}
        for window in self.evidence_windows:
            artifacts = self.collect_evidence(project.output_roots, window)
            if artifacts:
                break
            logger.info(f"No artifacts for {unit.path} in the last {window}")

        if not artifacts:
            roots = ", ".join(root for root in project.output_roots.values() if root) or "(no output roots)"
            widest = max(self.evidence_windows) if self.evidence_windows else timedelta(0)
            message = (
                f"No output artifacts for {unit.path} modified in the last "
                f"{int(widest.total_seconds() // 60)} minutes under {roots}"
            )
            failed = self.store.transition_unit(
                unit_id, OPEN_STATES, UnitStatus.FAILED, error=message, notes=notes,
            )
            if failed is None:
                current = self.get_unit(project_id, unit_id)
                raise InvalidTransition(unit_id, current.status.value, UnitStatus.FAILED.value)
            logger.warning(f"EvidenceMissing: {message}")
            raise EvidenceMissing(message)

        now = self.clock()
        completed = self.store.transition_unit(
            unit_id, OPEN_STATES, UnitStatus.COMPLETED,
            artifacts=artifacts, completed_at=now, error=None, notes=notes,
            started_at=unit.started_at or now,
        )
        if completed is None:
            current = self.get_unit(project_id, unit_id)
            raise InvalidTransition(unit_id, current.status.value, UnitStatus.COMPLETED.value)

        count = sum(len(paths) for paths in artifacts.values())
        logger.info(f"Completed {completed.path} with {count} artifacts")
        return completed

    def fail(self, project_id: str, unit_id: str, error: str) -> SourceUnit:
        """
        Mark a unit failed. Existing artifacts are left untouched.

        Failing an already failed unit replaces its error message.
        """
        unit = self.get_unit(project_id, unit_id)
        message = error or "Marked as failed"
        updated = self.store.transition_unit(
            unit_id, OPEN_STATES | {UnitStatus.FAILED}, UnitStatus.FAILED, error=message,
        )
        if updated is None:
            raise InvalidTransition(unit_id, unit.status.value, UnitStatus.FAILED.value)
        logger.warning(f"Unit {updated.path} failed: {message}")
        return updated

    def retry_unit(self, project_id: str, unit_id: str) -> SourceUnit:
        """Move one failed unit back to pending."""
        unit = self.get_unit(project_id, unit_id)
        updated = self.store.transition_unit(
            unit_id, {UnitStatus.FAILED}, UnitStatus.PENDING, error=None, started_at=None,
        )
        if updated is None:
            raise InvalidTransition(unit_id, unit.status.value, UnitStatus.PENDING.value)
        logger.info(f"Retrying {updated.path}")
        return updated

    def retry_failed(self, project_id: str) -> int:
        """Move every failed unit of a project back to pending; returns how many moved."""
        self.get_project(project_id)
        moved = 0
        for unit in self.store.list_units(project_id, [UnitStatus.FAILED]):
            updated = self.store.transition_unit(
                unit.id, {UnitStatus.FAILED}, UnitStatus.PENDING, error=None, started_at=None,
            )
            if updated is not None:
                moved += 1
        logger.info(f"Reset {moved} failed units of {project_id} to pending")
        return moved

    def progress(self, project_id: str) -> ProgressSnapshot:
        """
        Derive progress, ETA and aggregate status from the current unit counts.

        The ETA extrapolates the average time per completion since the first
        completion over the units still pending.
        """
        project = self.get_project(project_id)
        counts = self.store.count_by_status(project_id)

        migrated = counts[UnitStatus.COMPLETED]
        in_progress = counts[UnitStatus.IN_PROGRESS]
        pending = counts[UnitStatus.PENDING] + in_progress
        failed = counts[UnitStatus.FAILED]
        total = migrated + pending + failed
        percentage = 100.0 if total == 0 else round(100.0 * migrated / total, 2)

        completion_times = sorted(
            unit.completed_at
            for unit in self.store.list_units(project_id, [UnitStatus.COMPLETED])
            if unit.completed_at is not None and unit.is_migratable
        )
        first = completion_times[0] if completion_times else None
        last = completion_times[-1] if completion_times else None

        now = self.clock()
        estimated: Optional[datetime] = None
        if first is not None and migrated > 0 and pending > 0:
            per_unit = (now - first) / migrated
            estimated = now + per_unit * pending

        return ProgressSnapshot(
            project_id=project_id,
            status=derive_project_status(project.status, pending, failed),
            total=total,
            migrated=migrated,
            pending=pending,
            in_progress=in_progress,
            failed=failed,
            percentage=percentage,
            first_completed_at=first,
            last_completed_at=last,
            estimated_completion=estimated,
        )
