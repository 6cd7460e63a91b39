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
File Classifier

Scans a legacy source tree and turns every candidate file into a SourceUnit:
kind, declared types, external references and a 1-5 complexity score.
Extraction is pattern based; it does not need the code to compile.

A file that cannot be read or analyzed is logged and skipped; the scan goes on.
"""

import hashlib
import re
import uuid
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from legacy_migrator.analysis.architecture import summarize_architecture
from legacy_migrator.analysis.models import SourceUnit, UnitKind, Workspace
from legacy_migrator.analysis.naming import NamingStrategy, get_default_strategy
from legacy_migrator.config import (
    COMPLEXITY_DIVISOR,
    CONTROL_FLOW_KEYWORDS,
    DATA_ACCESS_KEYWORDS,
    DECLARATION_KEYWORDS,
    EXCLUDED_DIRS,
    GENERATED_FILE_SUFFIXES,
    MAX_COMPLEXITY,
    MIN_COMPLEXITY,
    PROJECT_FILE_PATTERNS,
    SCAN_EXTENSIONS,
    SCAN_PROGRESS_INTERVAL,
    SCAN_WORKERS,
)
from legacy_migrator.errors import ScanError
from legacy_migrator.tracking.probe import FilesystemProbe, read_text
from legacy_migrator.utils.logging_config import LogContext, get_logger, log_progress

logger = get_logger(__name__)


CSHARP_TYPE_DECL = re.compile(r"\b(?:class|interface|struct|enum)[ \t]+([A-Za-z_]\w*)")
VB_TYPE_DECL = re.compile(
    r"^[ \t]*(?:(?:Public|Private|Friend|Protected|Partial|MustInherit|NotInheritable|Shared)[ \t]+)*"
    r"(?:Class|Interface|Module|Structure|Enum)[ \t]+([A-Za-z_]\w*)",
    re.MULTILINE,
)
CSHARP_USING = re.compile(r"^[ \t]*using[ \t]+(?:static[ \t]+)?(?:\w+[ \t]*=[ \t]*)?([\w.]+)[ \t]*;", re.MULTILINE)
VB_IMPORTS = re.compile(r"^[ \t]*Imports[ \t]+(?:\w+[ \t]*=[ \t]*)?([\w.]+)", re.MULTILINE | re.IGNORECASE)
MARKUP_INHERITS = re.compile(r"\bInherits\s*=\s*\"([\w.]+)\"", re.IGNORECASE)

LANGUAGE_BY_EXTENSION = {
    ".cs": "csharp",
    ".vb": "vbnet",
    ".aspx": "markup",
    ".ascx": "markup",
}

COMPLEXITY_BUCKETS = ("low (1-2)", "medium (3)", "high (4-5)")


def detect_language(path: str) -> str:
    """Language of a file from its final extension."""
    suffix = Path(path).suffix.lower()
    return LANGUAGE_BY_EXTENSION.get(suffix, "unknown")


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def extract_declared_types(text: str, language: str) -> list[str]:
    """Names of classes, interfaces, structs, enums and modules declared in a file."""
    if language == "csharp":
        return _dedupe(CSHARP_TYPE_DECL.findall(text))
    if language == "vbnet":
        return _dedupe(VB_TYPE_DECL.findall(text))
    return []


def extract_references(text: str, language: str) -> list[str]:
    """
    External references of a file.

    C# ``using`` and VB ``Imports`` targets; for markup, the type named in
    the page directive's ``Inherits`` attribute.
    """
    if language == "csharp":
        return _dedupe(CSHARP_USING.findall(text))
    if language == "vbnet":
        return _dedupe(VB_IMPORTS.findall(text))
    if language == "markup":
        return _dedupe(name.rsplit(".", 1)[-1] for name in MARKUP_INHERITS.findall(text))
    return []


def count_occurrences(text: str, patterns: tuple[str, ...]) -> int:
    """Total non-overlapping occurrences of every pattern."""
    return sum(text.count(pattern) for pattern in patterns)


def compute_complexity(text: str) -> int:
    """
    Bounded complexity score in [1, 5].

    One point per control-flow keyword, one per two declarations and two per
    data-access keyword, scaled down and clamped.
    """
    score = 1
    score += count_occurrences(text, CONTROL_FLOW_KEYWORDS)
    score += count_occurrences(text, DECLARATION_KEYWORDS) // 2
    score += count_occurrences(text, DATA_ACCESS_KEYWORDS) * 2
    return min(MAX_COMPLEXITY, max(MIN_COMPLEXITY, score // COMPLEXITY_DIVISOR))


def complexity_bucket(complexity: int) -> str:
    if complexity <= 2:
        return COMPLEXITY_BUCKETS[0]
    if complexity == 3:
        return COMPLEXITY_BUCKETS[1]
    return COMPLEXITY_BUCKETS[2]


def unit_id_for(workspace_id: str, rel_path: str) -> str:
    """Stable unit id derived from its workspace and relative path."""
    digest = hashlib.sha1(f"{workspace_id}:{rel_path}".encode("utf-8")).hexdigest()
    return digest[:16]


def detect_project_name(root: Path) -> str:
    """Name of the first project file at the root or one level down, else the folder name."""
    for pattern in PROJECT_FILE_PATTERNS:
        candidates = sorted(root.glob(pattern)) or sorted(root.glob(f"*/{pattern}"))
        if candidates:
            return candidates[0].stem
    return root.name


def pair_code_behind(units: list[SourceUnit]) -> int:
    """
    Link markup files with their code-behind siblings.

    ``Login.aspx`` and ``Login.aspx.cs`` (or ``.vb``) form a pair: the markup
    unit gains the code-behind's declared types as references so the two
    are related and scheduled with each other's context.

    Returns:
        Number of pairs found
    """
    by_path = {unit.path: unit for unit in units}
    pairs = 0
    for unit in units:
        if unit.language != "markup":
            continue
        for suffix in (".cs", ".vb"):
            sibling = by_path.get(unit.path + suffix)
            if sibling is None:
                continue
            unit.references = _dedupe(unit.references + sibling.declared_types)
            pairs += 1
            logger.debug(f"Paired {unit.path} with {sibling.path}")
    return pairs


class FileClassifier:
    """Builds a Workspace and its SourceUnits from a directory tree."""

    def __init__(
        self,
        naming: Optional[NamingStrategy] = None,
        probe: Optional[FilesystemProbe] = None,
        max_workers: int = SCAN_WORKERS
    ) -> None:
        """
        Initialize the classifier.

        Args:
            naming: Naming strategy for kind detection (default: WebForms)
            probe: Filesystem probe used to enumerate files
            max_workers: Threads used to read and analyze files
        """
        self.naming = naming or get_default_strategy()
        self.probe = probe or FilesystemProbe()
        self.max_workers = max_workers

    def analyze_file(self, path: Path, root: Path, workspace_id: str) -> SourceUnit:
        """
        Read and classify one file.

        Raises:
            ScanError: If the file cannot be read or analyzed
        """
        rel_path = path.relative_to(root).as_posix()
        try:
            text = read_text(path)
        except OSError as e:
            raise ScanError(rel_path, str(e)) from e

        try:
            language = detect_language(rel_path)
            rule, kind = self.naming.explain_kind(rel_path, text)
            unit = SourceUnit(
                id=unit_id_for(workspace_id, rel_path),
                workspace_id=workspace_id,
                path=rel_path,
                kind=kind,
                text=text,
                language=language,
                declared_types=extract_declared_types(text, language),
                references=extract_references(text, language),
                complexity=compute_complexity(text),
            )
        except Exception as e:
            raise ScanError(rel_path, str(e)) from e

        logger.debug(f"Classified {rel_path} as {kind.value} (rule: {rule}, complexity: {unit.complexity})")
        return unit

    def _analyze_all(
        self,
        paths: list[Path],
        root: Path,
        workspace_id: str
    ) -> tuple[list[SourceUnit], list[str]]:
        units: list[SourceUnit] = []
        skipped: list[str] = []

        processed = 0
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(self.analyze_file, p, root, workspace_id) for p in paths]
            for future in as_completed(futures):
                try:
                    units.append(future.result())
                except ScanError as e:
                    logger.warning(str(e))
                    skipped.append(str(e))
                processed += 1
                log_progress(logger, processed, len(paths), "Scanning", interval=SCAN_PROGRESS_INTERVAL)

        units.sort(key=lambda u: u.path)
        skipped.sort()
        return units, skipped

    def scan(self, root: Path, recurse: bool = True) -> tuple[Workspace, list[SourceUnit]]:
        """
        Scan a directory tree.

        Args:
            root: Root directory of the legacy solution
            recurse: Descend into subdirectories

        Returns:
            (Workspace, units sorted by path)

        Raises:
            ScanError: If the root itself is not a readable directory
            ProbeInterrupted: If the walk times out or is cancelled
        """
        root = Path(root).expanduser().resolve()
        if not root.is_dir():
            raise ScanError(str(root), "not a directory")

        workspace_id = uuid.uuid4().hex[:12]

        with LogContext(logger, f"Scanning {root}"):
            paths = self.probe.list_files(
                root,
                SCAN_EXTENSIONS,
                recurse=recurse,
                excluded_dirs=EXCLUDED_DIRS,
                excluded_suffixes=GENERATED_FILE_SUFFIXES,
            )
            logger.info(f"Found {len(paths)} candidate files")

            units, skipped = self._analyze_all(paths, root, workspace_id)
            pairs = pair_code_behind(units)
            architecture = summarize_architecture(units)

            kind_histogram = Counter(unit.kind.value for unit in units)
            complexity_histogram = {bucket: 0 for bucket in COMPLEXITY_BUCKETS}
            for unit in units:
                complexity_histogram[complexity_bucket(unit.complexity)] += 1
            language_histogram = Counter(unit.language for unit in units)

            workspace = Workspace(
                id=workspace_id,
                root=str(root),
                project_name=detect_project_name(root),
                total_units=len(units),
                kind_histogram={kind.value: kind_histogram.get(kind.value, 0) for kind in UnitKind},
                complexity_histogram=complexity_histogram,
                language_histogram=dict(sorted(language_histogram.items())),
                architecture=architecture,
                scanned_at=datetime.now(timezone.utc),
                skipped=skipped,
            )

            logger.info(
                f"Workspace {workspace_id}: {len(units)} units, {len(skipped)} skipped, "
                f"{pairs} code-behind pairs"
            )

        return workspace, units
