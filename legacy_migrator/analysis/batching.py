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
Batch Assembler

Packs the outstanding units of a workspace into batches whose estimated cost
stays under a budget. Units are taken simplest first and packed first-fit
into a running batch. A unit that alone exceeds the budget is split into its
members, each emitted as its own batch; a member (or an unsplittable unit)
that is still too large gets a batch of its own with a BudgetOverflow entry
in its error list.

Costs are always taken over the emitted text, so the estimated cost of a
batch is the cost of its combined text with every header and separator.

Batches of a workspace are created once; later calls return them unchanged.
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional

from legacy_migrator.analysis.models import Batch, BudgetOverflow, SourceUnit, UnitStatus
from legacy_migrator.config import CHARS_PER_TOKEN, DEFAULT_BATCH_BUDGET
from legacy_migrator.utils.logging_config import LogContext, get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Member:
    """A method-level slice of a unit."""
    name: str
    text: str


CostFunction = Callable[[str], int]
Splitter = Callable[[SourceUnit], list[Member]]
# (unit ids, combined text, cost, member name, errors)
Piece = tuple[list[str], str, int, Optional[str], list[str]]

CSHARP_MEMBER_START = re.compile(
    r"^[ \t]*(?:\[[^\]\n]*\][ \t]*\n[ \t]*)*"
    r"(?:(?:public|private|protected|internal|static|virtual|override|async|sealed|abstract|new)[ \t]+)+"
    r"[\w<>\[\],. ?]*?\b(\w+)[ \t]*\(",
    re.MULTILINE,
)
VB_MEMBER_START = re.compile(
    r"^[ \t]*(?:(?:Public|Private|Protected|Friend|Shared|Overrides|Overridable|Async)[ \t]+)*"
    r"(?:Sub|Function)[ \t]+(\w+)",
    re.MULTILINE,
)


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    if not text:
        return 0
    return len(text) // CHARS_PER_TOKEN


def split_members(unit: SourceUnit) -> list[Member]:
    """
    Split a unit at member boundaries.

    Each member runs from its declaration to the next member's declaration.
    Fewer than two members means the unit cannot be split, and an empty
    list is returned.
    """
    pattern = VB_MEMBER_START if unit.language == "vbnet" else CSHARP_MEMBER_START
    matches = list(pattern.finditer(unit.text))
    if len(matches) < 2:
        return []

    members: list[Member] = []
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(unit.text)
        members.append(Member(name=match.group(1), text=unit.text[match.start():end].rstrip() + "\n"))
    return members


def format_unit(unit: SourceUnit) -> str:
    return (
        f"// === {unit.path} ({unit.kind.value}) ===\n"
        f"// Complexity: {unit.complexity}\n\n"
        f"{unit.text.rstrip()}\n"
    )


def format_member(unit: SourceUnit, member: Member) -> str:
    parent = unit.declared_types[0] if unit.declared_types else unit.file_name
    return (
        f"// === Member: {member.name} from {parent} ===\n"
        f"// File: {unit.path}\n"
        f"// Parent class context: {parent} (other members omitted)\n\n"
        f"{member.text.rstrip()}\n"
    )


def is_outstanding(unit: SourceUnit) -> bool:
    """Migratable and not yet completed."""
    return unit.is_migratable and unit.status != UnitStatus.COMPLETED


class BatchAssembler:
    """Deterministic first-fit packing of units under a cost budget."""

    def __init__(
        self,
        budget: int = DEFAULT_BATCH_BUDGET,
        cost_fn: Optional[CostFunction] = None,
        splitter: Optional[Splitter] = None
    ) -> None:
        """
        Initialize the assembler.

        Args:
            budget: Maximum estimated cost of a batch (must be positive)
            cost_fn: Cost of a piece of text (default: len // 4)
            splitter: Member splitter for oversized units (default: split_members)
        """
        if budget <= 0:
            raise ValueError(f"Batch budget must be positive, got {budget}")
        self.budget = budget
        self.cost_fn = cost_fn or estimate_tokens
        self.splitter = splitter or split_members

    def _split_oversized(self, unit: SourceUnit, text: str, cost: int) -> list[Piece]:
        """Pieces for a unit over budget: one per member, or the whole unit if it cannot be split."""
        members = self.splitter(unit)
        if not members:
            overflow = BudgetOverflow(unit.id, unit.path, None, cost, self.budget)
            logger.warning(str(overflow))
            return [([unit.id], text, cost, None, [str(overflow)])]

        logger.info(f"{unit.path} costs {cost} > {self.budget}, split into {len(members)} members")
        pieces: list[Piece] = []
        for member in members:
            member_text = format_member(unit, member)
            member_cost = self.cost_fn(member_text)
            errors: list[str] = []
            if member_cost > self.budget:
                overflow = BudgetOverflow(unit.id, unit.path, member.name, member_cost, self.budget)
                logger.warning(str(overflow))
                errors.append(str(overflow))
            pieces.append(([unit.id], member_text, member_cost, member.name, errors))
        return pieces

    def assemble(self, units: list[SourceUnit], workspace_id: str) -> list[Batch]:
        """
        Pack outstanding units into batches.

        Args:
            units: Units of one workspace; completed and non-migratable ones are ignored
            workspace_id: Workspace the batches belong to

        Returns:
            Batches in emission order with sequence numbers from 1
        """
        outstanding = sorted(
            (u for u in units if is_outstanding(u)),
            key=lambda u: (u.complexity, u.path),
        )

        pieces: list[Piece] = []
        current_ids: list[str] = []
        current_texts: list[str] = []
        current_cost = 0

        def close_current() -> None:
            nonlocal current_ids, current_texts, current_cost
            if current_ids:
                pieces.append((current_ids, "\n".join(current_texts), current_cost, None, []))
            current_ids, current_texts, current_cost = [], [], 0

        for unit in outstanding:
            text = format_unit(unit)
            cost = self.cost_fn(text)
            if cost > self.budget:
                pieces.extend(self._split_oversized(unit, text, cost))
                continue

            joined_cost = self.cost_fn("\n".join(current_texts + [text]))
            if current_ids and joined_cost > self.budget:
                close_current()
                joined_cost = cost
            current_ids.append(unit.id)
            current_texts.append(text)
            current_cost = joined_cost
        close_current()

        batches = [
            Batch(
                id=f"{workspace_id}-b{sequence:04d}",
                workspace_id=workspace_id,
                sequence=sequence,
                unit_ids=unit_ids,
                combined_text=text,
                estimated_cost=cost,
                member=member,
                errors=errors,
            )
            for sequence, (unit_ids, text, cost, member, errors) in enumerate(pieces, 1)
        ]
        logger.info(f"Assembled {len(batches)} batches from {len(outstanding)} outstanding units")
        return batches

    def assemble_for_workspace(self, store, workspace_id: str) -> list[Batch]:
        """
        Return the batches of a workspace, creating them on first use.

        Existing batches are returned unchanged even when the budget or the
        unit states have changed since, so in-flight batches stay valid.
        """
        existing = store.list_batches(workspace_id)
        if existing:
            logger.info(f"Workspace {workspace_id} already has {len(existing)} batches")
            return existing

        with LogContext(logger, f"Assembling batches for {workspace_id} (budget {self.budget})"):
            batches = self.assemble(store.list_units(workspace_id), workspace_id)
            store.save_batches(workspace_id, batches)
        return batches
