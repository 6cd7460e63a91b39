"""
Tests for budget-bounded batch assembly.

Covers:
- First-fit packing in ascending complexity order
- Splitting oversized units into member batches
- BudgetOverflow reporting for pieces that still do not fit
- Partition of outstanding units across batches
- Idempotent batch creation per workspace
"""

import pytest

from legacy_migrator.analysis.batching import (
    BatchAssembler, Member, estimate_tokens, split_members
)
from legacy_migrator.analysis.models import UnitKind, UnitStatus
from legacy_migrator.storage.memory_store import InMemoryStore


def count_marks(text: str) -> int:
    """Cost function that ignores the batch headers: one per '@'."""
    return text.count("@")


def text_of_cost(cost: int) -> str:
    """Text that count_marks prices at ``cost``."""
    return "@" * cost


class TestPacking:
    """Packing whole units."""

    def test_first_fit(self, make_unit) -> None:
        """
        Test: Three units of cost 40 with a budget of 100

        Expected: [u1, u2] (cost 80) then [u3] (cost 40)
        """
        units = [make_unit(f"DAL/U{i}DAL.cs", text=text_of_cost(40)) for i in (1, 2, 3)]

        batches = BatchAssembler(budget=100, cost_fn=count_marks).assemble(units, "ws1")

        assert [b.unit_ids for b in batches] == [[units[0].id, units[1].id], [units[2].id]]
        assert [b.estimated_cost for b in batches] == [80, 40]
        assert [b.sequence for b in batches] == [1, 2]
        assert batches[0].id == "ws1-b0001"

    def test_simplest_units_first(self, make_unit) -> None:
        """
        Test: Units of complexity 3, 1 and 2

        Expected: Packed in ascending complexity order
        """
        units = [
            make_unit("A.cs", text=text_of_cost(10), complexity=3),
            make_unit("B.cs", text=text_of_cost(10), complexity=1),
            make_unit("C.cs", text=text_of_cost(10), complexity=2),
        ]

        batches = BatchAssembler(budget=100, cost_fn=count_marks).assemble(units, "ws1")

        assert batches[0].unit_ids == ["ws1:B.cs", "ws1:C.cs", "ws1:A.cs"]

    def test_partition_and_budget(self, make_unit) -> None:
        """
        Test: Pack units of mixed sizes that all fit on their own

        Expected: Every outstanding unit appears in exactly one batch and no batch exceeds the budget
        """
        costs = [10, 95, 30, 60, 5, 100, 45, 70]
        units = [make_unit(f"U{i}.cs", text=text_of_cost(c)) for i, c in enumerate(costs)]

        batches = BatchAssembler(budget=100, cost_fn=count_marks).assemble(units, "ws1")

        seen = [unit_id for b in batches for unit_id in b.unit_ids]
        assert sorted(seen) == sorted(u.id for u in units), "Each unit must be in exactly one batch"
        assert all(b.estimated_cost <= 100 for b in batches)
        assert all(not b.errors for b in batches)

    def test_skips_completed_and_non_migratable(self, make_unit) -> None:
        """
        Test: Completed, model and unknown units next to a pending one

        Expected: Only the pending data-access unit is batched
        """
        units = [
            make_unit("Done.cs", text=text_of_cost(10), status=UnitStatus.COMPLETED),
            make_unit("Model.cs", UnitKind.MODEL, text=text_of_cost(10)),
            make_unit("Other.cs", UnitKind.UNKNOWN, text=text_of_cost(10)),
            make_unit("Todo.cs", text=text_of_cost(10), status=UnitStatus.FAILED),
        ]

        batches = BatchAssembler(budget=100, cost_fn=count_marks).assemble(units, "ws1")

        assert [b.unit_ids for b in batches] == [["ws1:Todo.cs"]]

    def test_cost_covers_headers(self, make_unit) -> None:
        """
        Test: Four units of 200 characters with the default cost and a budget of 100

        Expected: One unit per batch; each batch's cost is the cost of its emitted text
        """
        units = [make_unit(f"U{i}.cs", text="x" * 200) for i in range(4)]

        batches = BatchAssembler(budget=100).assemble(units, "ws1")

        assert len(batches) == 4
        for batch in batches:
            assert batch.estimated_cost == estimate_tokens(batch.combined_text) == 62
            assert not batch.errors

    def test_cost_covers_separators(self, make_unit) -> None:
        """
        Test: Nine small units whose raw text alone would fit in one batch

        Expected: Batches of 4, 4 and 1, none over budget once serialized
        """
        units = [make_unit(f"U{i}.cs", text="x" * 40) for i in range(9)]

        batches = BatchAssembler(budget=100).assemble(units, "ws1")

        assert [len(b.unit_ids) for b in batches] == [4, 4, 1]
        for batch in batches:
            assert batch.estimated_cost == estimate_tokens(batch.combined_text)
            assert estimate_tokens(batch.combined_text) <= 100

    def test_rejects_non_positive_budget(self) -> None:
        with pytest.raises(ValueError):
            BatchAssembler(budget=0)


class TestSplitting:
    """Oversized units."""

    def test_split_into_member_batches(self, make_unit) -> None:
        """
        Test: A unit of cost 500, budget 100, splitter yielding three members of cost 60

        Expected: Three single-member batches, each naming its member
        """
        unit = make_unit("BAL/Huge.cs", text=text_of_cost(500))
        members = [Member(name, text_of_cost(60)) for name in ("Load", "Save", "Delete")]

        batches = BatchAssembler(budget=100, cost_fn=count_marks, splitter=lambda u: members).assemble([unit], "ws1")

        assert len(batches) == 3
        assert [b.member for b in batches] == ["Load", "Save", "Delete"]
        assert all(b.unit_ids == [unit.id] for b in batches)
        assert all(b.estimated_cost == 60 for b in batches)
        assert all(not b.errors for b in batches)

    def test_split_does_not_break_running_batch(self, make_unit) -> None:
        """
        Test: Small unit, oversized unit, small unit

        Expected: The two small units still share one batch
        """
        units = [
            make_unit("A.cs", text=text_of_cost(20), complexity=1),
            make_unit("B.cs", text=text_of_cost(500), complexity=2),
            make_unit("C.cs", text=text_of_cost(20), complexity=3),
        ]
        members = [Member("Run", text_of_cost(50)), Member("Stop", text_of_cost(50))]

        batches = BatchAssembler(budget=100, cost_fn=count_marks, splitter=lambda u: members).assemble(units, "ws1")

        whole = [b.unit_ids for b in batches if b.member is None]
        assert whole == [["ws1:A.cs", "ws1:C.cs"]]
        assert sorted(b.member for b in batches if b.member) == ["Run", "Stop"]

    def test_unsplittable_unit_overflows(self, make_unit) -> None:
        """
        Test: An oversized unit the splitter cannot divide

        Expected: One batch for the whole unit carrying a BudgetOverflow error
        """
        unit = make_unit("BAL/Huge.cs", text=text_of_cost(500))

        batches = BatchAssembler(budget=100, cost_fn=count_marks, splitter=lambda u: []).assemble([unit], "ws1")

        assert len(batches) == 1
        assert batches[0].estimated_cost == 500
        assert batches[0].errors and batches[0].errors[0].startswith("BudgetOverflow")

    def test_oversized_member_overflows(self, make_unit) -> None:
        """
        Test: A split whose second member is itself over budget

        Expected: That member's batch carries the overflow, the other does not
        """
        unit = make_unit("BAL/Huge.cs", text=text_of_cost(500))
        members = [Member("Small", text_of_cost(30)), Member("Giant", text_of_cost(200))]

        batches = BatchAssembler(budget=100, cost_fn=count_marks, splitter=lambda u: members).assemble([unit], "ws1")

        assert batches[0].errors == []
        assert "BAL/Huge.cs::Giant" in batches[1].errors[0]

    def test_default_splitter_finds_methods(self, make_unit) -> None:
        """
        Test: Split a C# class with two methods

        Expected: One member per method, named after it
        """
        text = (
            "public class Big\n"
            "{\n"
            "    public void First()\n"
            "    {\n"
            "    }\n"
            "\n"
            "    private int Second(int x)\n"
            "    {\n"
            "        return x;\n"
            "    }\n"
            "}\n"
        )
        members = split_members(make_unit("Big.cs", text=text))

        assert [m.name for m in members] == ["First", "Second"]
        assert "return x;" in members[1].text

    def test_single_member_is_not_split(self, make_unit) -> None:
        unit = make_unit("Small.cs", text="public class S\n{\n    public void Only()\n    {\n    }\n}\n")
        assert split_members(unit) == []

    def test_estimate_tokens(self) -> None:
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd" * 10) == 10


class TestIdempotence:
    """Batches are created once per workspace."""

    def test_second_call_returns_existing(self, make_unit, make_workspace) -> None:
        """
        Test: Assemble twice, the second time with a different budget and a completed unit

        Expected: The original batches are returned unchanged
        """
        store = InMemoryStore()
        units = [make_unit(f"U{i}.cs", text=text_of_cost(40)) for i in range(3)]
        store.save_workspace(make_workspace(total_units=3), units)

        first = BatchAssembler(budget=100, cost_fn=count_marks).assemble_for_workspace(store, "ws1")
        store.transition_unit(units[0].id, {UnitStatus.PENDING}, UnitStatus.COMPLETED)
        second = BatchAssembler(budget=50, cost_fn=count_marks).assemble_for_workspace(store, "ws1")

        assert [b.summary() for b in second] == [b.summary() for b in first]
        assert len(first) == 2
