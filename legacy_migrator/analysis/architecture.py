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
Architecture Summary

Classifies how far the legacy codebase already separates data access and
business logic from its pages. The result is informational: it is stored on
the Workspace and reported, but scheduling does not depend on it.
"""

import re
from typing import Iterable

from legacy_migrator.analysis.models import (
    ArchitectureSummary, Separation, SourceUnit, UnitKind
)
from legacy_migrator.utils.logging_config import get_logger

logger = get_logger(__name__)


DATASET_PATTERNS = [
    re.compile(r"\bDataSet\b"),
    re.compile(r"\bTableAdapter\b", re.IGNORECASE),
    re.compile(r"\bTypedDataSet\b"),
    re.compile(r"\.xsd\b", re.IGNORECASE),
]

DATA_LAYER_PATTERNS = [
    re.compile(r"\bSqlDataReader\b|\bSqlDataAdapter\b|\bDbContext\b"),
    re.compile(r"\b(?:class|Class)\s+\w*(?:Dal|DAL|DAO|Repository|DataAccess)\b"),
    re.compile(r"\b(?:namespace|Namespace)\s+[\w.]*\.(?:Dal|DAL|DAO|DataAccess|Data)\b"),
]

BUSINESS_LAYER_PATTERNS = [
    re.compile(r"\b(?:class|Class)\s+\w*(?:Bal|BAL|BLL|Business|Service|Logic|Manager)\b"),
    re.compile(r"\b(?:namespace|Namespace)\s+[\w.]*\.(?:Bal|BAL|Business|BusinessLogics?|Logic|Services)\b"),
]

LAYER_FOLDER_NAMES = frozenset({
    "dal", "data", "dataaccess", "repository", "repositories",
    "bal", "bll", "business", "businesslogic", "businesslogics", "logic", "services",
    "models", "entities", "dto", "viewmodels",
})


def _matches_any(text: str, patterns: list[re.Pattern]) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def layer_folders(units: Iterable[SourceUnit]) -> list[str]:
    """Directories (relative) whose name is a conventional layer folder name."""
    folders: set[str] = set()
    for unit in units:
        parts = unit.path.split("/")[:-1]
        for depth, part in enumerate(parts):
            if part.lower() in LAYER_FOLDER_NAMES or part.lower().split(".")[-1] in LAYER_FOLDER_NAMES:
                folders.add("/".join(parts[:depth + 1]))
    return sorted(folders)


def decide_separation(has_data: bool, has_business: bool, uses_datasets: bool) -> Separation:
    """Map detected facts to a separation level, strongest signal first."""
    if has_data and has_business:
        return Separation.GOOD
    if uses_datasets:
        return Separation.LEGACY_DATASET
    if has_data or has_business:
        return Separation.PARTIAL
    return Separation.NONE


def summarize_architecture(units: list[SourceUnit]) -> ArchitectureSummary:
    """
    Build the architecture summary of a scanned workspace.

    Args:
        units: All classified units of the workspace

    Returns:
        ArchitectureSummary with the files and folders behind each finding
    """
    dataset_files: list[str] = []
    data_files: list[str] = []
    business_files: list[str] = []

    for unit in units:
        if _matches_any(unit.text, DATASET_PATTERNS):
            dataset_files.append(unit.path)
        if unit.kind == UnitKind.DATA_ACCESS or _matches_any(unit.text, DATA_LAYER_PATTERNS):
            data_files.append(unit.path)
        if unit.kind == UnitKind.BUSINESS_LOGIC or _matches_any(unit.text, BUSINESS_LAYER_PATTERNS):
            business_files.append(unit.path)

    folders = layer_folders(units)
    separation = decide_separation(bool(data_files), bool(business_files), bool(dataset_files))
    logger.info(
        f"Architecture: {separation.value} "
        f"(data files: {len(data_files)}, business files: {len(business_files)}, "
        f"dataset files: {len(dataset_files)})"
    )

    return ArchitectureSummary(
        separation=separation,
        has_data_layer=bool(data_files),
        has_business_layer=bool(business_files),
        uses_datasets=bool(dataset_files),
        evidence={
            "data_access_files": data_files,
            "business_logic_files": business_files,
            "dataset_files": dataset_files,
            "layer_folders": folders,
        },
    )
