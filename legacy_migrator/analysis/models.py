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
Data Models for the Migration Scheduler

Contains the dataclasses shared by the classifier, relatedness graph,
batch assembler, state tracker and store implementations.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class UnitKind(str, Enum):
    """Classification of a scanned file."""
    UI_PAGE = "ui-page"
    CODE_BEHIND = "code-behind"
    USER_CONTROL = "user-control"
    DATA_ACCESS = "data-access"
    BUSINESS_LOGIC = "business-logic"
    MODEL = "model"
    UTILITY = "utility"
    UNKNOWN = "unknown"


class UnitStatus(str, Enum):
    """Per-unit migration state."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ProjectStatus(str, Enum):
    """Aggregate status of a migration run."""
    INITIALIZED = "initialized"
    ANALYZING = "analyzing"
    READY_FOR_MIGRATION = "ready-for-migration"
    MIGRATING = "migrating"
    COMPLETED = "completed"
    FAILED = "failed"


class Separation(str, Enum):
    """How well the legacy codebase already separates its layers."""
    NONE = "none"
    PARTIAL = "partial"
    GOOD = "good"
    LEGACY_DATASET = "legacy-dataset"


# Kinds never scheduled and never counted towards progress
NON_MIGRATABLE_KINDS: frozenset[UnitKind] = frozenset({UnitKind.UNKNOWN, UnitKind.MODEL})


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp written by to_dict()."""
    return datetime.fromisoformat(value) if value else None


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class SourceUnit:
    """One scanned file: the unit of migratable work."""
    id: str
    workspace_id: str
    path: str  # Relative to the workspace root, forward slashes
    kind: UnitKind
    text: str
    language: str = ""  # "csharp", "vbnet" or "markup"
    declared_types: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)  # using / Imports targets
    complexity: int = 1
    status: UnitStatus = UnitStatus.PENDING
    artifacts: dict[str, list[str]] = field(default_factory=dict)  # layer -> artifact paths
    error: Optional[str] = None
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int = 0  # Bumped on every status change, used by the claim step

    @property
    def file_name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def is_migratable(self) -> bool:
        return self.kind not in NON_MIGRATABLE_KINDS

    def summary(self) -> dict[str, Any]:
        """Compact view without source text, for listings."""
        return {
            "id": self.id,
            "path": self.path,
            "kind": self.kind.value,
            "complexity": self.complexity,
            "status": self.status.value,
            "artifacts": self.artifacts,
            "error": self.error,
        }

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["status"] = self.status.value
        data["started_at"] = _format_datetime(self.started_at)
        data["completed_at"] = _format_datetime(self.completed_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceUnit":
        values = dict(data)
        values["kind"] = UnitKind(values["kind"])
        values["status"] = UnitStatus(values["status"])
        values["started_at"] = parse_datetime(values.get("started_at"))
        values["completed_at"] = parse_datetime(values.get("completed_at"))
        return cls(**values)


@dataclass(frozen=True)
class ArchitectureSummary:
    """Layering classification of the legacy codebase, computed once per scan."""
    separation: Separation
    has_data_layer: bool = False
    has_business_layer: bool = False
    uses_datasets: bool = False
    evidence: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["separation"] = self.separation.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ArchitectureSummary":
        values = dict(data)
        values["separation"] = Separation(values["separation"])
        return cls(**values)


@dataclass(frozen=True)
class Workspace:
    """One scan result. A re-scan produces a new Workspace."""
    id: str
    root: str
    project_name: str
    total_units: int
    kind_histogram: dict[str, int]
    complexity_histogram: dict[str, int]
    language_histogram: dict[str, int]
    architecture: ArchitectureSummary
    scanned_at: datetime
    skipped: list[str] = field(default_factory=list)  # ScanError messages

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["architecture"] = self.architecture.to_dict()
        data["scanned_at"] = _format_datetime(self.scanned_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Workspace":
        values = dict(data)
        values["architecture"] = ArchitectureSummary.from_dict(values["architecture"])
        values["scanned_at"] = parse_datetime(values["scanned_at"])
        return cls(**values)


@dataclass
class MigrationProject:
    """One active migration run; its id is the workspace id."""
    project_id: str
    workspace_id: str
    project_name: str
    output_roots: dict[str, Optional[str]]  # layer -> root directory
    status: ProjectStatus = ProjectStatus.INITIALIZED
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = _format_datetime(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MigrationProject":
        values = dict(data)
        values["status"] = ProjectStatus(values["status"])
        values["created_at"] = parse_datetime(values.get("created_at"))
        return cls(**values)


@dataclass
class Batch:
    """A resource-bounded group of units handed to the transformation agent together."""
    id: str
    workspace_id: str
    sequence: int
    unit_ids: list[str]
    combined_text: str
    estimated_cost: int
    member: Optional[str] = None  # Set when the batch holds one member of a split unit
    processed: bool = False
    result: Optional[str] = None
    errors: list[str] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sequence": self.sequence,
            "unit_ids": self.unit_ids,
            "member": self.member,
            "estimated_cost": self.estimated_cost,
            "processed": self.processed,
            "errors": self.errors,
        }

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Batch":
        return cls(**data)


@dataclass
class BudgetOverflow:
    """A sub-unit that still exceeds the budget after splitting."""
    unit_id: str
    path: str
    member: Optional[str]
    cost: int
    budget: int

    def __str__(self) -> str:
        target = f"{self.path}::{self.member}" if self.member else self.path
        return f"BudgetOverflow: {target} costs {self.cost}, budget is {self.budget}"


@dataclass
class CycleWarning:
    """An advisory reference cycle among pending units."""
    unit_ids: list[str]
    paths: list[str]

    def __str__(self) -> str:
        return "Reference cycle: " + " -> ".join(self.paths)


@dataclass
class RelatedUnit:
    """A unit selected as context, with its relatedness score and the rule that matched."""
    unit: SourceUnit
    score: int
    reason: str


@dataclass
class DependencyStatus:
    """Referenced identifiers partitioned by the migration state of their declaring units."""
    migrated: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return asdict(self)


@dataclass
class ProgressSnapshot:
    """Derived progress of a project; computed on every query, never stored."""
    project_id: str
    status: ProjectStatus
    total: int
    migrated: int
    pending: int  # Includes in-progress units
    in_progress: int
    failed: int
    percentage: float
    first_completed_at: Optional[datetime] = None
    last_completed_at: Optional[datetime] = None
    estimated_completion: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["first_completed_at"] = _format_datetime(self.first_completed_at)
        data["last_completed_at"] = _format_datetime(self.last_completed_at)
        data["estimated_completion"] = _format_datetime(self.estimated_completion)
        return data


@dataclass
class OperationResult:
    """Success/failure envelope returned by every orchestrator operation."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, data: Any = None, warnings: Optional[list[str]] = None) -> "OperationResult":
        return cls(success=True, data=data, warnings=warnings or [])

    @classmethod
    def fail(cls, error: str) -> "OperationResult":
        return cls(success=False, error=error)
