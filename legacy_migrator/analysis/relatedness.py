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
Relatedness Graph

Decides which units are related to the one being migrated, ranks them as
context candidates, partitions the identifiers a unit references by the
migration state of the units that declare them, and reports reference
cycles among pending units.

Relatedness is an ordered table of (rule name, predicate) pairs evaluated on
per-unit fingerprints; the first matching rule explains the relation.
"""

import posixpath
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

import numpy as np

from legacy_migrator.analysis.models import (
    CycleWarning, DependencyStatus, RelatedUnit, SourceUnit
)
from legacy_migrator.analysis.naming import NamingStrategy, get_default_strategy
from legacy_migrator.config import (
    ADJACENT_DIR_SCORE,
    ARTIFACT_EXTENSIONS,
    COMPLEXITY_WEIGHT,
    CROSS_LAYER_SCORE,
    FALLBACK_LOOKBACK,
    FRAMEWORK_NAMESPACE_PREFIXES,
    RECENCY_BONUS_DAYS,
    RELATED_FLOOR,
    RELATED_TOP_N,
    SAME_STEM_SCORE,
)
from legacy_migrator.tracking.probe import FilesystemProbe
from legacy_migrator.utils.logging_config import get_logger

logger = get_logger(__name__)


SQL_TABLE_PATTERN = re.compile(
    r"\bFROM\s+\[?(\w+)|\bINSERT\s+INTO\s+\[?(\w+)|\bUPDATE\s+\[?(\w+)\]?\s+SET\b|\bDELETE\s+FROM\s+\[?(\w+)",
    re.IGNORECASE,
)
INTERFACE_PATTERN = re.compile(r"\bI[A-Z][a-z]\w*")
BUSINESS_ENTITY_PATTERN = re.compile(r"\b([A-Z]\w*?)(?:Entity|Model|Dto|DTO)\b")
INSTANTIATION_PATTERN = re.compile(r"\bnew\s+([A-Z]\w*)\s*[\(\{]|\bNew\s+([A-Z]\w*)\s*\(")
IDENTIFIER_PATTERN = re.compile(r"\b[A-Za-z_]\w*\b")
PROJECT_REFERENCE_SUFFIXES = (
    ".dal", ".bal", ".bll", ".dataaccess", ".businesslogic", ".businesslogics",
    ".services", ".models", ".utils",
)

# Types the framework provides; instantiating them says nothing about project structure
BUILTIN_TYPES = frozenset({
    "Object", "String", "StringBuilder", "List", "Dictionary", "HashSet", "Exception",
    "ArgumentException", "ArgumentNullException", "InvalidOperationException",
    "DateTime", "TimeSpan", "Guid", "DataSet", "DataTable", "DataRow", "DataColumn",
    "SqlConnection", "SqlCommand", "SqlParameter", "SqlDataAdapter",
    "NpgsqlConnection", "NpgsqlCommand", "NpgsqlParameter", "NpgsqlDataAdapter",
    "OleDbConnection", "OleDbCommand",
})

# Tables that SQL-looking text in code often names without meaning a table
IGNORED_TABLE_NAMES = frozenset({"dual", "select", "where", "the", "a"})


def is_framework_namespace(name: str) -> bool:
    head = name.split(".", 1)[0]
    return head in FRAMEWORK_NAMESPACE_PREFIXES


@dataclass(frozen=True)
class Fingerprint:
    """Structural facts of one unit used by the relation rules (lower-cased)."""
    unit_id: str
    stem: str
    kind: str
    layer: Optional[str]
    directory: str
    declared: frozenset[str]
    tables: frozenset[str]
    interfaces: frozenset[str]
    entities: frozenset[str]
    namespaces: frozenset[str]
    project_refs: frozenset[str]
    instantiated: frozenset[str]
    identifiers: frozenset[str]  # Every word in the text, original case


def extract_tables(text: str) -> set[str]:
    tables: set[str] = set()
    for groups in SQL_TABLE_PATTERN.findall(text):
        for name in groups:
            if name and name.lower() not in IGNORED_TABLE_NAMES:
                tables.add(name.lower())
    return tables


def extract_instantiated(text: str) -> set[str]:
    types: set[str] = set()
    for groups in INSTANTIATION_PATTERN.findall(text):
        for name in groups:
            if name and name not in BUILTIN_TYPES:
                types.add(name)
    return types


def build_fingerprint(unit: SourceUnit, naming: NamingStrategy) -> Fingerprint:
    """Derive the fingerprint of a unit from its path, kind, text and references."""
    namespaces = {ref.lower() for ref in unit.references if not is_framework_namespace(ref)}
    return Fingerprint(
        unit_id=unit.id,
        stem=naming.entity_stem(unit.path).lower(),
        kind=unit.kind.value,
        layer=naming.layer_of(unit),
        directory=posixpath.dirname(unit.path).lower(),
        declared=frozenset(name.lower() for name in unit.declared_types),
        tables=frozenset(extract_tables(unit.text)),
        interfaces=frozenset(name.lower() for name in INTERFACE_PATTERN.findall(unit.text)),
        entities=frozenset(name.lower() for name in BUSINESS_ENTITY_PATTERN.findall(unit.text)),
        namespaces=frozenset(namespaces),
        project_refs=frozenset(ns for ns in namespaces if ns.endswith(PROJECT_REFERENCE_SUFFIXES)),
        instantiated=frozenset(name.lower() for name in extract_instantiated(unit.text)),
        identifiers=frozenset(IDENTIFIER_PATTERN.findall(unit.text)),
    )


def directories_adjacent(first: str, second: str) -> bool:
    """Same directory, or one directly contains the other."""
    if first == second:
        return True
    return posixpath.dirname(first) == second or posixpath.dirname(second) == first


def _same_stem(a: Fingerprint, b: Fingerprint) -> bool:
    return bool(a.stem) and a.stem == b.stem


def _layer_counterpart(a: Fingerprint, b: Fingerprint) -> bool:
    return _same_stem(a, b) and a.layer is not None and b.layer is not None and a.layer != b.layer


def _shared_declared_type(a: Fingerprint, b: Fingerprint) -> bool:
    return bool(a.declared & b.declared or a.instantiated & b.declared or b.instantiated & a.declared)


def _shared_resource(a: Fingerprint, b: Fingerprint) -> bool:
    return bool(a.tables & b.tables or a.entities & b.entities)


def _shared_interface(a: Fingerprint, b: Fingerprint) -> bool:
    if a.interfaces & b.interfaces:
        return True
    # IUser pairs with User, UserDal and UserService
    return (bool(b.stem) and f"i{b.stem}" in a.interfaces) or (bool(a.stem) and f"i{a.stem}" in b.interfaces)


def _overlapping_references(a: Fingerprint, b: Fingerprint) -> bool:
    return bool(a.namespaces & b.namespaces or a.project_refs & b.project_refs)


def _adjacent_directory(a: Fingerprint, b: Fingerprint) -> bool:
    return directories_adjacent(a.directory, b.directory)


RelationPredicate = Callable[[Fingerprint, Fingerprint], bool]

RELATION_RULES: tuple[tuple[str, RelationPredicate], ...] = (
    ("layer-counterpart", _layer_counterpart),
    ("same-stem", _same_stem),
    ("shared-declared-type", _shared_declared_type),
    ("shared-interface", _shared_interface),
    ("shared-resource", _shared_resource),
    ("overlapping-references", _overlapping_references),
    ("adjacent-directory", _adjacent_directory),
)


class RelatednessGraph:
    """
    Relatedness queries over SourceUnits.

    Fingerprints are cached per unit id, so one graph instance should only
    be used with units of one workspace scan.
    """

    def __init__(
        self,
        naming: Optional[NamingStrategy] = None,
        clock: Optional[Callable[[], datetime]] = None
    ) -> None:
        self.naming = naming or get_default_strategy()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._fingerprints: dict[str, Fingerprint] = {}

    def fingerprint(self, unit: SourceUnit) -> Fingerprint:
        cached = self._fingerprints.get(unit.id)
        if cached is None:
            cached = build_fingerprint(unit, self.naming)
            self._fingerprints[unit.id] = cached
        return cached

    def explain(self, unit: SourceUnit, other: SourceUnit) -> Optional[str]:
        """Name of the first relation rule that holds for the pair, or None."""
        a, b = self.fingerprint(unit), self.fingerprint(other)
        for name, predicate in RELATION_RULES:
            if predicate(a, b):
                return name
        return None

    def is_related(self, unit: SourceUnit, other: SourceUnit) -> bool:
        return self.explain(unit, other) is not None

    def score(self, unit: SourceUnit, other: SourceUnit) -> int:
        """
        Relevance of ``other`` as context for ``unit``.

        100 for a shared entity stem, 80 more when the kinds differ, 50 for an
        adjacent directory, up to 30 for a recent completion and 5 per
        complexity point of ``other``.
        """
        a, b = self.fingerprint(unit), self.fingerprint(other)
        total = 0
        if _same_stem(a, b):
            total += SAME_STEM_SCORE
            if a.kind != b.kind:
                total += CROSS_LAYER_SCORE
        if _adjacent_directory(a, b):
            total += ADJACENT_DIR_SCORE
        if other.completed_at is not None:
            days = (self.clock() - other.completed_at).days
            # Clock skew can put completed_at in the future; never more than the full bonus
            total += min(RECENCY_BONUS_DAYS, max(0, RECENCY_BONUS_DAYS - days))
        total += COMPLEXITY_WEIGHT * other.complexity
        return total

    def related(
        self,
        unit: SourceUnit,
        pool: Iterable[SourceUnit],
        top_n: int = RELATED_TOP_N
    ) -> list[RelatedUnit]:
        """
        Rank the related members of a pool, best first.

        Args:
            unit: Unit being migrated
            pool: Candidates, normally the completed units of the project
            top_n: Maximum number returned

        Returns:
            RelatedUnit list ordered by score, then path
        """
        ranked: list[RelatedUnit] = []
        for other in pool:
            if other.id == unit.id:
                continue
            reason = self.explain(unit, other)
            if reason is None:
                continue
            ranked.append(RelatedUnit(unit=other, score=self.score(unit, other), reason=reason))

        ranked.sort(key=lambda r: (-r.score, r.unit.path))
        logger.debug(f"{unit.path}: {len(ranked)} related units in pool")
        return ranked[:top_n]

    def fallback_examples(
        self,
        output_roots: dict[str, Optional[str]],
        probe: FilesystemProbe,
        limit: int,
        lookback=FALLBACK_LOOKBACK
    ) -> list[tuple[str, Path]]:
        """
        Most recently touched files across the output roots.

        Used when too few related units exist, regardless of relatedness.

        Returns:
            (layer, path) pairs, newest first
        """
        if limit <= 0:
            return []

        since = self.clock() - lookback
        found: list[tuple[datetime, str, Path]] = []
        for layer, root in output_roots.items():
            if not root:
                continue
            for path, mtime in probe.recent_files(Path(root), since, ARTIFACT_EXTENSIONS):
                found.append((mtime, layer, path))

        found.sort(key=lambda item: (item[0], str(item[2])), reverse=True)
        return [(layer, path) for _, layer, path in found[:limit]]

    def select_context(
        self,
        unit: SourceUnit,
        completed: list[SourceUnit],
        output_roots: dict[str, Optional[str]],
        probe: FilesystemProbe,
        top_n: int = RELATED_TOP_N,
        floor: int = RELATED_FLOOR
    ) -> tuple[list[RelatedUnit], list[tuple[str, Path]]]:
        """
        Choose context for a unit: ranked related units, widened with recent
        output files when fewer than ``floor`` qualify.
        """
        related = self.related(unit, completed, top_n)
        examples: list[tuple[str, Path]] = []
        if len(related) < floor:
            logger.info(
                f"Only {len(related)} related units for {unit.path}, "
                f"adding up to {floor - len(related)} recent output files"
            )
            examples = self.fallback_examples(output_roots, probe, floor - len(related))
        return related, examples

    def referenced_identifiers(self, unit: SourceUnit) -> list[str]:
        """Type-like names a unit uses but does not declare itself (original case)."""
        own = {name.lower() for name in unit.declared_types}
        names = set(INTERFACE_PATTERN.findall(unit.text)) | extract_instantiated(unit.text)
        if unit.language == "markup":
            names |= set(unit.references)
        return sorted(name for name in names if name.lower() not in own)

    def _declares(self, other: SourceUnit, name: str) -> bool:
        fp = self.fingerprint(other)
        lowered = name.lower()
        if lowered in fp.declared:
            return True
        if fp.stem and lowered == f"i{fp.stem}":
            return True
        return name in fp.identifiers

    def dependency_status(
        self,
        unit: SourceUnit,
        completed: Iterable[SourceUnit],
        pending: Iterable[SourceUnit]
    ) -> DependencyStatus:
        """
        Partition a unit's referenced identifiers.

        An identifier is migrated when a completed unit contains it, pending
        when only a not-yet-migrated unit does, and unresolved otherwise.
        """
        completed = [u for u in completed if u.id != unit.id]
        pending = [u for u in pending if u.id != unit.id]

        status = DependencyStatus()
        for name in self.referenced_identifiers(unit):
            if any(self._declares(other, name) for other in completed):
                status.migrated.append(name)
            elif any(self._declares(other, name) for other in pending):
                status.pending.append(name)
            else:
                status.unresolved.append(name)

        logger.debug(
            f"Dependency status for {unit.path}: {len(status.migrated)} migrated, "
            f"{len(status.pending)} pending, {len(status.unresolved)} unresolved"
        )
        return status

    def reference_matrix(self, units: list[SourceUnit]) -> np.ndarray:
        """
        Directed reference adjacency among units.

        ``A[i, j]`` is True when unit i uses a name unit j declares (or the
        ``I<Stem>`` interface of unit j) and unit i does not declare that name
        itself.
        """
        fingerprints = [self.fingerprint(u) for u in units]

        vocabulary: dict[str, int] = {}
        for fp in fingerprints:
            for name in fp.declared | ({f"i{fp.stem}"} if fp.stem else set()):
                vocabulary.setdefault(name, len(vocabulary))

        n, v = len(units), len(vocabulary)
        if n == 0 or v == 0:
            return np.zeros((n, n), dtype=bool)

        uses = np.zeros((n, v), dtype=np.int32)
        declares = np.zeros((n, v), dtype=np.int32)
        for i, fp in enumerate(fingerprints):
            for name in fp.declared:
                declares[i, vocabulary[name]] = 1
            if fp.stem:
                declares[i, vocabulary[f"i{fp.stem}"]] = 1
            lowered_words = {word.lower() for word in fp.identifiers}
            own = fp.declared | ({f"i{fp.stem}"} if fp.stem else set())
            for name, column in vocabulary.items():
                if name in lowered_words and name not in own:
                    uses[i, column] = 1

        adjacency = (uses @ declares.T) > 0
        np.fill_diagonal(adjacency, False)
        return adjacency

    def find_cycles(self, pending: list[SourceUnit]) -> list[CycleWarning]:
        """
        Report reference cycles among pending units.

        Iterative depth-first search keeping the current path on an explicit
        stack; an edge back into the path closes a cycle. Each cycle is
        reported once regardless of the node the search entered it from.
        """
        units = sorted(pending, key=lambda u: u.path)
        adjacency = self.reference_matrix(units)
        neighbours = [list(np.flatnonzero(row)) for row in adjacency]

        unvisited, visiting, done = 0, 1, 2
        state = [unvisited] * len(units)
        seen: set[tuple[int, ...]] = set()
        cycles: list[CycleWarning] = []

        def record(cycle: list[int]) -> None:
            pivot = cycle.index(min(cycle))
            key = tuple(cycle[pivot:] + cycle[:pivot])
            if key in seen:
                return
            seen.add(key)
            warning = CycleWarning(
                unit_ids=[units[i].id for i in key],
                paths=[units[i].path for i in key],
            )
            logger.warning(str(warning))
            cycles.append(warning)

        for start in range(len(units)):
            if state[start] != unvisited:
                continue
            state[start] = visiting
            path = [start]
            on_path = {start}
            stack = [iter(neighbours[start])]

            while stack:
                advanced = False
                for nxt in stack[-1]:
                    nxt = int(nxt)
                    if nxt in on_path:
                        record(path[path.index(nxt):])
                    elif state[nxt] == unvisited:
                        state[nxt] = visiting
                        path.append(nxt)
                        on_path.add(nxt)
                        stack.append(iter(neighbours[nxt]))
                        advanced = True
                        break
                if not advanced:
                    node = path.pop()
                    on_path.discard(node)
                    state[node] = done
                    stack.pop()

        return cycles
