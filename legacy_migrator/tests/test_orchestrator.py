"""
Tests for the orchestrator facade and the CLI.

Covers:
- The scan -> start -> next -> complete flow over a real tree and JSON store
- Failure envelopes for scheduler errors and unexpected exceptions
- Start idempotence, unit listing filters, batches and cycles
- CLI exit codes and JSON output
"""

import json
from pathlib import Path
from unittest.mock import Mock

import pytest

from legacy_migrator.errors import StoreError
from legacy_migrator.main import main
from legacy_migrator.orchestrator import MigrationOrchestrator
from legacy_migrator.storage.json_store import JsonFileStore


class TestOrchestrator:
    """Operations against a scanned sample solution."""

    @pytest.fixture
    def orchestrator(self, tmp_path: Path) -> MigrationOrchestrator:
        return MigrationOrchestrator(JsonFileStore(tmp_path / "state"))

    @pytest.fixture
    def started(self, orchestrator: MigrationOrchestrator, legacy_tree: Path, tmp_path: Path) -> dict:
        """Scan and start the sample tree; returns the started project."""
        scanned = orchestrator.scan(str(legacy_tree))
        assert scanned.success, scanned.error
        result = orchestrator.start(scanned.data["id"], create_outputs=True, output_root=str(tmp_path / "out"))
        assert result.success, result.error
        return result.data

    def test_scan_envelope(self, orchestrator: MigrationOrchestrator, legacy_tree: Path) -> None:
        """
        Test: Scan the sample tree

        Expected: Success with the workspace summary
        """
        result = orchestrator.scan(str(legacy_tree))

        assert result.success
        assert result.data["total_units"] == 7
        assert result.data["project_name"] == "MyShop"
        assert result.warnings == []

    def test_scan_missing_directory(self, orchestrator: MigrationOrchestrator, tmp_path: Path) -> None:
        result = orchestrator.scan(str(tmp_path / "missing"))
        assert not result.success
        assert "not a directory" in result.error

    def test_start_creates_output_roots(self, started: dict, tmp_path: Path) -> None:
        """
        Test: Start with output creation under a chosen directory

        Expected: Ready for migration with <Project>.DataAccess and <Project>.BusinessLogic created
        """
        assert started["status"] == "ready-for-migration"
        assert started["output_roots"]["data"].endswith("MyShop.DataAccess")
        assert started["output_roots"]["business"].endswith("MyShop.BusinessLogic")
        assert all(Path(root).is_dir() for root in started["output_roots"].values())

    def test_start_twice(self, orchestrator: MigrationOrchestrator, started: dict) -> None:
        """
        Test: Start an already started project

        Expected: Same project returned with a warning
        """
        again = orchestrator.start(started["project_id"])

        assert again.success
        assert again.data["output_roots"] == started["output_roots"]
        assert "Project already started" in again.warnings

    def test_next_and_complete(self, orchestrator: MigrationOrchestrator, started: dict) -> None:
        """
        Test: Claim a unit, write output for it, complete it

        Expected: Context returned with the unit; progress counts one migrated unit afterwards
        """
        project_id = started["project_id"]

        claimed = orchestrator.next_unit(project_id)
        assert claimed.success, claimed.error
        assert claimed.data["done"] is False
        unit = claimed.data["unit"]
        assert unit["status"] == "in-progress"
        assert set(claimed.data["context"]) == {"text", "related", "examples", "dependencies", "cycles"}
        assert orchestrator.status(project_id).data["status"] == "migrating"

        Path(started["output_roots"]["data"], "Migrated.cs").write_text("class Migrated { }")
        completed = orchestrator.complete_unit(project_id, unit["id"], notes="done")

        assert completed.success, completed.error
        assert completed.data["unit"]["status"] == "completed"
        assert completed.data["progress"]["migrated"] == 1

    def test_complete_without_output(self, orchestrator: MigrationOrchestrator, started: dict) -> None:
        """
        Test: Complete a claimed unit while the output roots are empty

        Expected: Failure envelope; the unit is listed as failed and can be retried
        """
        project_id = started["project_id"]
        unit = orchestrator.next_unit(project_id).data["unit"]

        result = orchestrator.complete_unit(project_id, unit["id"])

        assert not result.success
        assert "No output artifacts" in result.error
        failed = orchestrator.list_units(project_id, filter="failed").data
        assert [u["id"] for u in failed] == [unit["id"]]
        assert orchestrator.retry_failed(project_id).data == {"count": 1}

    def test_drains_to_done(self, orchestrator: MigrationOrchestrator, started: dict) -> None:
        """
        Test: Claim until nothing is left

        Expected: Five migratable units, then a done envelope
        """
        project_id = started["project_id"]
        claimed = []
        while True:
            result = orchestrator.next_unit(project_id)
            assert result.success
            if result.data["done"]:
                break
            claimed.append(result.data["unit"]["path"])

        assert len(claimed) == 5
        assert "Models/UserModel.cs" not in claimed
        assert result.data["progress"]["in_progress"] == 5

    def test_list_filters(self, orchestrator: MigrationOrchestrator, started: dict) -> None:
        project_id = started["project_id"]

        assert len(orchestrator.list_units(project_id).data) == 7
        assert [u["path"] for u in orchestrator.list_units(project_id, filter="data-access").data] == ["DAL/UserDAL.cs"]
        bad = orchestrator.list_units(project_id, filter="sideways")
        assert not bad.success
        assert "Unknown filter" in bad.error

    def test_unknown_project(self, orchestrator: MigrationOrchestrator) -> None:
        """
        Test: Query a project id that was never scanned

        Expected: Failure envelope naming the project
        """
        for result in (orchestrator.status("nope"), orchestrator.next_unit("nope"), orchestrator.start("nope")):
            assert not result.success
            assert "Project not found: nope" in result.error

    def test_batches_and_cycles(self, orchestrator: MigrationOrchestrator, started: dict) -> None:
        """
        Test: Prepare batches twice, record a result, and report cycles

        Expected: Same batches both times, the result is stored, cycles is a list
        """
        project_id = started["project_id"]

        first = orchestrator.prepare_batches(project_id)
        second = orchestrator.prepare_batches(project_id, budget=10)
        assert first.success and first.data == second.data
        assert sum(len(b["unit_ids"]) for b in first.data) == 5

        batch_id = first.data[0]["id"]
        recorded = orchestrator.record_batch_result(project_id, batch_id, result="ok")
        assert recorded.success and recorded.data["processed"] is True
        assert not orchestrator.record_batch_result(project_id, "missing").success
        listed = orchestrator.list_batches(project_id).data
        assert [b["processed"] for b in listed][0] is True

        cycles = orchestrator.find_cycles(project_id)
        assert cycles.success and isinstance(cycles.data, list)


class TestErrorEnvelopes:
    """Errors never escape as exceptions."""

    def test_store_error_becomes_failure(self) -> None:
        """
        Test: The store raises StoreError

        Expected: Failure envelope carrying the store's message
        """
        store = Mock()
        store.get_workspace.side_effect = StoreError("state file locked")

        result = MigrationOrchestrator(store).status("ws1")

        assert not result.success
        assert result.error == "state file locked"

    def test_unexpected_error_becomes_failure(self) -> None:
        """
        Test: The store raises an unexpected exception

        Expected: Failure envelope naming the operation
        """
        store = Mock()
        store.get_workspace.side_effect = RuntimeError("boom")

        result = MigrationOrchestrator(store).list_units("ws1")

        assert not result.success
        assert result.error == "Unexpected error in list_units: boom"


class TestCli:
    """main() entry point."""

    def test_scan_then_status(self, legacy_tree: Path, tmp_path: Path, capsys) -> None:
        """
        Test: Run --scan, --start and --status through main()

        Expected: Exit code 0 and JSON envelopes on stdout
        """
        state = str(tmp_path / "state")

        assert main(["--state-dir", state, "--scan", str(legacy_tree)]) == 0
        scanned = json.loads(capsys.readouterr().out)
        project_id = scanned["data"]["id"]

        assert main(["--state-dir", state, "--start", project_id, "--output-root", str(tmp_path / "out")]) == 0
        capsys.readouterr()

        assert main(["--state-dir", state, "--status", project_id]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["success"] is True
        assert status["data"]["total"] == 5

    def test_failure_exit_code(self, tmp_path: Path, capsys) -> None:
        assert main(["--state-dir", str(tmp_path / "state"), "--status", "nope"]) == 1
        assert json.loads(capsys.readouterr().out)["success"] is False

    def test_no_operation_prints_help(self, capsys) -> None:
        assert main([]) == 2
        assert "usage" in capsys.readouterr().out.lower()
