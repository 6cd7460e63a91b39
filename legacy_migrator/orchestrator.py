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
Migration Orchestrator

Thin facade over the classifier, relatedness graph, batch assembler and
state tracker. It keeps no state of its own: every operation reads and
writes the store, so separate invocations can carry a migration forward.

Every operation returns an OperationResult. Scheduler errors become failure
envelopes with their message; anything unexpected is logged with its
traceback and reported the same way.
"""

from pathlib import Path
from typing import Any, Callable, Optional

from legacy_migrator.analysis.batching import BatchAssembler
from legacy_migrator.analysis.classifier import FileClassifier
from legacy_migrator.analysis.models import (
    MigrationProject, OperationResult, ProjectStatus, SourceUnit, UnitKind, UnitStatus, Workspace
)
from legacy_migrator.analysis.naming import NamingStrategy, get_default_strategy
from legacy_migrator.analysis.relatedness import RelatednessGraph
from legacy_migrator.config import DEFAULT_BATCH_BUDGET, OUTPUT_PROJECT_SUFFIXES
from legacy_migrator.errors import MigratorError, ProjectNotFound
from legacy_migrator.storage import MigrationStore
from legacy_migrator.tracking.probe import FilesystemProbe
from legacy_migrator.tracking.tracker import MigrationStateTracker
from legacy_migrator.utils.context_formatter import ContextFormatter, get_default_formatter
from legacy_migrator.utils.logging_config import get_logger

logger = get_logger(__name__)


class MigrationOrchestrator:
    """Sequences scheduler components into caller-facing operations."""

    def __init__(
        self,
        store: MigrationStore,
        naming: Optional[NamingStrategy] = None,
        probe: Optional[FilesystemProbe] = None,
        tracker: Optional[MigrationStateTracker] = None,
        formatter: Optional[ContextFormatter] = None
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            store: Durable store gateway
            naming: Naming strategy shared by classifier and relatedness graph
            probe: Filesystem probe for scans and artifact checks
            tracker: State tracker (default: one built on the same store and probe)
            formatter: Formatter for context sections
        """
        self.store = store
        self.naming = naming or get_default_strategy()
        self.probe = probe or FilesystemProbe()
        self.tracker = tracker or MigrationStateTracker(store, probe=self.probe)
        self.formatter = formatter or get_default_formatter()

    def _run(self, operation: str, action: Callable[[], OperationResult]) -> OperationResult:
        try:
            return action()
        except MigratorError as e:
            logger.warning(f"{operation} failed: {e}")
            return OperationResult.fail(str(e))
        except Exception as e:
            logger.error(f"Unexpected error in {operation}: {e}", exc_info=True)
            return OperationResult.fail(f"Unexpected error in {operation}: {e}")

    def _graph(self) -> RelatednessGraph:
        return RelatednessGraph(self.naming, clock=self.tracker.clock)

    def _workspace(self, project_id: str) -> Workspace:
        workspace = self.store.get_workspace(project_id)
        if workspace is None:
            raise ProjectNotFound(project_id)
        return workspace

    # ------------------------------------------------------------------
    # Scan and start
    # ------------------------------------------------------------------

    def scan(self, root: str, recurse: bool = True) -> OperationResult:
        """Scan a source tree and store the resulting workspace and units."""
        def action() -> OperationResult:
            classifier = FileClassifier(self.naming, self.probe)
            workspace, units = classifier.scan(Path(root), recurse=recurse)
            self.store.save_workspace(workspace, units)
            return OperationResult.ok(workspace.to_dict(), warnings=list(workspace.skipped))
        return self._run("scan", action)

    def _output_roots(self, workspace: Workspace, output_root: Optional[str]) -> dict[str, Optional[str]]:
        base = Path(output_root).expanduser().resolve() if output_root else Path(workspace.root).parent
        return {
            layer: str(base / f"{workspace.project_name}.{suffix}")
            for layer, suffix in OUTPUT_PROJECT_SUFFIXES.items()
        }

    def start(
        self,
        project_id: str,
        create_outputs: bool = False,
        output_root: Optional[str] = None
    ) -> OperationResult:
        """
        Start (or resume) the migration of a scanned workspace.

        A started project is returned unchanged unless its derived status is
        failed, in which case its failed units are reset and it is prepared
        again.
        """
        def action() -> OperationResult:
            workspace = self._workspace(project_id)
            existing = self.store.get_project(project_id)
            warnings: list[str] = []

            if existing is not None:
                snapshot = self.tracker.progress(project_id)
                if snapshot.status != ProjectStatus.FAILED:
                    logger.info(f"Project {project_id} already started ({snapshot.status.value})")
                    return OperationResult.ok(existing.to_dict(), warnings=["Project already started"])
                moved = self.tracker.retry_failed(project_id)
                warnings.append(f"Re-initialized failed project; {moved} units reset to pending")
                project = existing
                project.status = ProjectStatus.INITIALIZED
            else:
                project = MigrationProject(
                    project_id=project_id,
                    workspace_id=workspace.id,
                    project_name=workspace.project_name,
                    output_roots=self._output_roots(workspace, output_root),
                    created_at=self.tracker.clock(),
                )
            self.store.save_project(project)

            project.status = ProjectStatus.ANALYZING
            self.store.save_project(project)
            pending = self.store.list_units(project_id, [UnitStatus.PENDING, UnitStatus.IN_PROGRESS])
            cycles = self._graph().find_cycles([u for u in pending if u.is_migratable])
            warnings.extend(str(cycle) for cycle in cycles)

            if create_outputs:
                for root in project.output_roots.values():
                    if root:
                        Path(root).mkdir(parents=True, exist_ok=True)
                        logger.info(f"Created output root {root}")

            project.status = ProjectStatus.READY_FOR_MIGRATION
            self.store.save_project(project)
            logger.info(f"Project {project_id} ready: {workspace.total_units} units")
            return OperationResult.ok(project.to_dict(), warnings=warnings)
        return self._run("start", action)

    # ------------------------------------------------------------------
    # Unit lifecycle
    # ------------------------------------------------------------------

    def _build_context(self, project: MigrationProject, unit: SourceUnit) -> dict[str, Any]:
        graph = self._graph()
        completed = self.store.list_units(project.project_id, [UnitStatus.COMPLETED])
        pending = [
            u for u in self.store.list_units(project.project_id, [UnitStatus.PENDING, UnitStatus.IN_PROGRESS])
            if u.is_migratable
        ]

        related, examples = graph.select_context(unit, completed, project.output_roots, self.probe)
        sections = (
            self.formatter.format_related(related, project.output_roots)
            + self.formatter.format_examples(examples, project.output_roots)
        )
        dependencies = graph.dependency_status(unit, completed, pending)
        cycles = [c for c in graph.find_cycles(pending) if unit.id in c.unit_ids]

        return {
            "text": self.formatter.format_context(sections),
            "related": [
                {"id": r.unit.id, "path": r.unit.path, "score": r.score, "reason": r.reason}
                for r in related
            ],
            "examples": [{"layer": layer, "path": str(path)} for layer, path in examples],
            "dependencies": dependencies.to_dict(),
            "cycles": [str(c) for c in cycles],
        }

    def next_unit(self, project_id: str) -> OperationResult:
        """Claim the next unit of work and assemble its context."""
        def action() -> OperationResult:
            project = self.tracker.get_project(project_id)
            unit = self.tracker.claim_next(project_id)
            if unit is None:
                snapshot = self.tracker.progress(project_id)
                return OperationResult.ok({"done": True, "progress": snapshot.to_dict()})

            if project.status != ProjectStatus.MIGRATING:
                project.status = ProjectStatus.MIGRATING
                self.store.save_project(project)

            context = self._build_context(project, unit)
            data = {
                "done": False,
                "unit": unit.to_dict(),
                "layer": self.naming.layer_of(unit),
                "context": context,
                "progress": self.tracker.progress(project_id).to_dict(),
            }
            return OperationResult.ok(data, warnings=context["cycles"])
        return self._run("next_unit", action)

    def complete_unit(self, project_id: str, unit_id: str, notes: Optional[str] = None) -> OperationResult:
        """Record completion of a unit; fails (and fails the unit) without artifacts."""
        def action() -> OperationResult:
            unit = self.tracker.complete(project_id, unit_id, notes)
            return OperationResult.ok({
                "unit": unit.summary(),
                "progress": self.tracker.progress(project_id).to_dict(),
            })
        return self._run("complete_unit", action)

    def fail_unit(self, project_id: str, unit_id: str, error: str) -> OperationResult:
        def action() -> OperationResult:
            unit = self.tracker.fail(project_id, unit_id, error)
            return OperationResult.ok({
                "unit": unit.summary(),
                "progress": self.tracker.progress(project_id).to_dict(),
            })
        return self._run("fail_unit", action)

    def retry_unit(self, project_id: str, unit_id: str) -> OperationResult:
        def action() -> OperationResult:
            unit = self.tracker.retry_unit(project_id, unit_id)
            return OperationResult.ok({"unit": unit.summary()})
        return self._run("retry_unit", action)

    def retry_failed(self, project_id: str) -> OperationResult:
        """Reset every failed unit of a project to pending."""
        def action() -> OperationResult:
            return OperationResult.ok({"count": self.tracker.retry_failed(project_id)})
        return self._run("retry_failed", action)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def status(self, project_id: str) -> OperationResult:
        """Progress snapshot with derived aggregate status and ETA."""
        def action() -> OperationResult:
            workspace = self._workspace(project_id)
            snapshot = self.tracker.progress(project_id)
            data = snapshot.to_dict()
            data["project_name"] = workspace.project_name
            data["architecture"] = workspace.architecture.separation.value
            return OperationResult.ok(data)
        return self._run("status", action)

    def list_units(self, project_id: str, filter: Optional[str] = None) -> OperationResult:
        """
        Unit summaries of a project.

        ``filter`` is a status (``pending``, ``failed``...), a kind
        (``data-access``...) or ``all``/None.
        """
        def action() -> OperationResult:
            self._workspace(project_id)
            statuses = {s.value for s in UnitStatus}
            kinds = {k.value for k in UnitKind}
            units = self.store.list_units(project_id)

            if filter in (None, "", "all"):
                selected = units
            elif filter in statuses:
                selected = [u for u in units if u.status.value == filter]
            elif filter in kinds:
                selected = [u for u in units if u.kind.value == filter]
            else:
                raise MigratorError(
                    f"Unknown filter '{filter}'; use all, a status ({', '.join(sorted(statuses))}) "
                    f"or a kind ({', '.join(sorted(kinds))})"
                )
            return OperationResult.ok([u.summary() for u in selected])
        return self._run("list_units", action)

    def find_cycles(self, project_id: str) -> OperationResult:
        """Advisory reference cycles among pending units."""
        def action() -> OperationResult:
            self._workspace(project_id)
            pending = [
                u for u in self.store.list_units(project_id, [UnitStatus.PENDING, UnitStatus.IN_PROGRESS])
                if u.is_migratable
            ]
            cycles = self._graph().find_cycles(pending)
            return OperationResult.ok([{"unit_ids": c.unit_ids, "paths": c.paths} for c in cycles])
        return self._run("find_cycles", action)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def prepare_batches(self, project_id: str, budget: Optional[int] = None) -> OperationResult:
        """Create the batches of a project, or return the existing ones."""
        def action() -> OperationResult:
            self._workspace(project_id)
            assembler = BatchAssembler(budget or DEFAULT_BATCH_BUDGET)
            batches = assembler.assemble_for_workspace(self.store, project_id)
            warnings = [error for batch in batches for error in batch.errors]
            return OperationResult.ok([b.summary() for b in batches], warnings=warnings)
        return self._run("prepare_batches", action)

    def list_batches(self, project_id: str) -> OperationResult:
        def action() -> OperationResult:
            self._workspace(project_id)
            return OperationResult.ok([b.summary() for b in self.store.list_batches(project_id)])
        return self._run("list_batches", action)

    def record_batch_result(
        self,
        project_id: str,
        batch_id: str,
        result: Optional[str] = None,
        error: Optional[str] = None
    ) -> OperationResult:
        """Mark a batch processed with the agent's result or error."""
        def action() -> OperationResult:
            self._workspace(project_id)
            for batch in self.store.list_batches(project_id):
                if batch.id == batch_id:
                    batch.processed = True
                    batch.result = result
                    if error:
                        batch.errors.append(error)
                    self.store.update_batch(batch)
                    return OperationResult.ok(batch.summary())
            raise MigratorError(f"Batch not found: {batch_id}")
        return self._run("record_batch_result", action)
