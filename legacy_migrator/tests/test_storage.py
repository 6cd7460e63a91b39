"""
Tests for the store implementations.

Covers:
- Compare-and-set unit transitions and version bumps
- Pending-unit selection order
- Copy semantics of reads
- JSON persistence across store instances
- Exclusive claims from several processes sharing one state directory
- Errors for unreadable or unwritable state files
"""

import json
import multiprocessing
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from legacy_migrator.analysis.models import Batch, UnitKind, UnitStatus
from legacy_migrator.errors import StoreError
from legacy_migrator.storage.json_store import JsonFileStore
from legacy_migrator.storage.memory_store import InMemoryStore
from legacy_migrator.tracking.tracker import MigrationStateTracker


class TestInMemoryStore:
    """Behaviour shared by every store."""

    @pytest.fixture
    def store(self, make_unit, make_workspace) -> InMemoryStore:
        store = InMemoryStore()
        units = [
            make_unit("A.cs", complexity=2),
            make_unit("B.cs", complexity=4),
            make_unit("C.cs", complexity=4),
            make_unit("D.cs", UnitKind.MODEL, complexity=5),
            make_unit("E.cs", complexity=5, status=UnitStatus.FAILED),
        ]
        store.save_workspace(make_workspace(total_units=len(units)), units)
        return store

    def test_transition_compare_and_set(self, store: InMemoryStore) -> None:
        """
        Test: Transition a unit, then repeat with the old expected status

        Expected: First call succeeds and bumps the version, second returns None
        """
        first = store.transition_unit("ws1:A.cs", {UnitStatus.PENDING}, UnitStatus.IN_PROGRESS)
        second = store.transition_unit("ws1:A.cs", {UnitStatus.PENDING}, UnitStatus.IN_PROGRESS)

        assert first is not None and first.status == UnitStatus.IN_PROGRESS
        assert first.version == 1
        assert second is None
        assert store.get_unit("ws1:A.cs").version == 1

    def test_transition_unknown_unit(self, store: InMemoryStore) -> None:
        with pytest.raises(StoreError):
            store.transition_unit("ws1:missing.cs", {UnitStatus.PENDING}, UnitStatus.IN_PROGRESS)

    def test_next_pending_order(self, store: InMemoryStore) -> None:
        """
        Test: Pick the next pending unit repeatedly

        Expected: Highest complexity first, ties by path; model and failed units never picked
        """
        picked = []
        while (unit := store.next_pending_unit("ws1")) is not None:
            picked.append(unit.path)
            store.transition_unit(unit.id, {UnitStatus.PENDING}, UnitStatus.IN_PROGRESS)

        assert picked == ["B.cs", "C.cs", "A.cs"]

    def test_counts_exclude_non_migratable(self, store: InMemoryStore) -> None:
        counts = store.count_by_status("ws1")
        assert counts[UnitStatus.PENDING] == 3
        assert counts[UnitStatus.FAILED] == 1
        assert sum(counts.values()) == 4

    def test_reads_are_copies(self, store: InMemoryStore) -> None:
        """
        Test: Mutate a unit returned by the store

        Expected: The stored unit is unaffected
        """
        unit = store.get_unit("ws1:A.cs")
        unit.status = UnitStatus.COMPLETED
        unit.artifacts["data"] = ["X.cs"]

        assert store.get_unit("ws1:A.cs").status == UnitStatus.PENDING
        assert store.get_unit("ws1:A.cs").artifacts == {}

    def test_update_batch_only_changes_outcome(self, store: InMemoryStore) -> None:
        batch = Batch(id="ws1-b0001", workspace_id="ws1", sequence=1, unit_ids=["ws1:A.cs"],
                      combined_text="...", estimated_cost=10)
        store.save_batches("ws1", [batch])

        changed = Batch(id="ws1-b0001", workspace_id="ws1", sequence=1, unit_ids=["other"],
                        combined_text="", estimated_cost=0, processed=True, result="ok")
        store.update_batch(changed)

        stored = store.list_batches("ws1")[0]
        assert stored.processed and stored.result == "ok"
        assert stored.unit_ids == ["ws1:A.cs"]

        with pytest.raises(StoreError):
            store.update_batch(Batch(id="nope", workspace_id="ws1", sequence=9, unit_ids=[],
                                     combined_text="", estimated_cost=0))


class TestJsonFileStore:
    """Persistence to the state directory."""

    @pytest.fixture
    def state_dir(self, tmp_path: Path) -> Path:
        return tmp_path / "state"

    def test_state_survives_new_instance(self, state_dir: Path, make_unit, make_workspace) -> None:
        """
        Test: Save a workspace and complete a unit, then open a second store

        Expected: The second store sees the same units, statuses and timestamps
        """
        done_at = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
        first = JsonFileStore(state_dir)
        first.save_workspace(make_workspace(total_units=2), [make_unit("A.cs"), make_unit("B.cs")])
        first.transition_unit("ws1:A.cs", {UnitStatus.PENDING}, UnitStatus.COMPLETED,
                              completed_at=done_at, artifacts={"data": ["A.cs"]})

        second = JsonFileStore(state_dir)
        unit = second.get_unit("ws1:A.cs")

        assert unit.status == UnitStatus.COMPLETED
        assert unit.completed_at == done_at
        assert unit.artifacts == {"data": ["A.cs"]}
        assert second.get_workspace("ws1").project_name == "Shop"
        assert [u.path for u in second.list_units("ws1")] == ["A.cs", "B.cs"]

    def test_instances_see_each_others_claims(self, state_dir: Path, make_unit, make_workspace) -> None:
        """
        Test: Two stores on one directory claim the same unit

        Expected: Only the first claim succeeds
        """
        first = JsonFileStore(state_dir)
        first.save_workspace(make_workspace(total_units=1), [make_unit("A.cs")])
        second = JsonFileStore(state_dir)

        assert first.transition_unit("ws1:A.cs", {UnitStatus.PENDING}, UnitStatus.IN_PROGRESS) is not None
        assert second.transition_unit("ws1:A.cs", {UnitStatus.PENDING}, UnitStatus.IN_PROGRESS) is None

    def test_corrupt_file(self, state_dir: Path) -> None:
        state_dir.mkdir()
        (state_dir / "state.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(StoreError):
            JsonFileStore(state_dir)

    def test_unsupported_format(self, state_dir: Path) -> None:
        state_dir.mkdir()
        (state_dir / "state.json").write_text(json.dumps({"format": 99}), encoding="utf-8")

        with pytest.raises(StoreError, match="Unsupported"):
            JsonFileStore(state_dir)

    def test_failed_write_is_not_kept(self, state_dir: Path, make_unit, make_workspace) -> None:
        """
        Test: The atomic rename fails while a unit is being claimed

        Expected: StoreError, no temp files left, and the unit reads back as pending
        """
        store = JsonFileStore(state_dir)
        store.save_workspace(make_workspace(total_units=1), [make_unit("A.cs")])

        with patch("legacy_migrator.storage.json_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StoreError, match="disk full"):
                store.transition_unit("ws1:A.cs", {UnitStatus.PENDING}, UnitStatus.IN_PROGRESS)

        assert store.get_unit("ws1:A.cs").status == UnitStatus.PENDING
        assert sorted(p.name for p in state_dir.iterdir()) == ["state.json", "state.lock"]

    def test_lock_file_created(self, state_dir: Path) -> None:
        JsonFileStore(state_dir)
        assert (state_dir / "state.lock").is_file()
        assert not (state_dir / "state.json").exists()


def _drain_claims(state_dir: str, start, results) -> None:
    """Worker: claim units from ws1 until none are pending, then report their ids."""
    tracker = MigrationStateTracker(JsonFileStore(Path(state_dir)), claim_attempts=50)
    start.wait()
    claimed = []
    while True:
        unit = tracker.claim_next("ws1")
        if unit is None:
            break
        claimed.append(unit.id)
    results.put(claimed)


@pytest.mark.skipif(sys.platform == "win32", reason="fork start method and flock are POSIX only")
class TestJsonFileStoreAcrossProcesses:
    """Several processes claiming from one state directory."""

    WORKERS = 4
    UNITS = 40

    def test_each_unit_claimed_once(self, tmp_path: Path, make_unit, make_workspace) -> None:
        """
        Test: Four processes drain forty equally complex pending units at once

        Expected: Every unit is claimed exactly once and ends up in progress
        """
        state_dir = tmp_path / "state"
        units = [make_unit(f"Unit{i:02d}.cs", complexity=3) for i in range(self.UNITS)]
        JsonFileStore(state_dir).save_workspace(make_workspace(total_units=self.UNITS), units)

        ctx = multiprocessing.get_context("fork")
        start = ctx.Event()
        results = ctx.Queue()
        workers = [
            ctx.Process(target=_drain_claims, args=(str(state_dir), start, results))
            for _ in range(self.WORKERS)
        ]
        for worker in workers:
            worker.start()
        start.set()

        claimed = []
        for _ in workers:
            claimed.extend(results.get(timeout=60))
        for worker in workers:
            worker.join(timeout=10)
            assert worker.exitcode == 0

        assert len(claimed) == self.UNITS
        assert len(set(claimed)) == self.UNITS
        counts = JsonFileStore(state_dir).count_by_status("ws1")
        assert counts[UnitStatus.IN_PROGRESS] == self.UNITS
        assert counts[UnitStatus.PENDING] == 0
