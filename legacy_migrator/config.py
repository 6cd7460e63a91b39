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
Configuration settings for the migration scheduler.
"""

import os
from datetime import timedelta
from pathlib import Path


# ============================================================================
# PATHS
# ============================================================================

STATE_DIR_ENV: str = "LEGACY_MIGRATOR_STATE_DIR"
DEFAULT_STATE_DIR: Path = Path.home() / ".legacy_migrator"
STATE_FILE_NAME: str = "state.json"
LOCK_FILE_NAME: str = "state.lock"


def resolve_state_dir(override: str | None = None) -> Path:
    """
    Resolve the directory holding the durable state file.

    Args:
        override: Explicit directory (e.g. from the CLI), wins over the environment

    Returns:
        Directory path (not created)
    """
    if override:
        return Path(override).expanduser()
    env_value = os.environ.get(STATE_DIR_ENV)
    if env_value:
        return Path(env_value).expanduser()
    return DEFAULT_STATE_DIR


# ============================================================================
# SCANNING
# ============================================================================

CODE_EXTENSIONS: tuple[str, ...] = (".cs", ".vb")
MARKUP_EXTENSIONS: tuple[str, ...] = (".aspx", ".ascx")
SCAN_EXTENSIONS: tuple[str, ...] = CODE_EXTENSIONS + MARKUP_EXTENSIONS

EXCLUDED_DIRS: frozenset[str] = frozenset({
    "bin", "obj", "packages", ".vs", ".git", "node_modules", "properties", "app_data",
})

# Matched case-insensitively against the end of the file name
GENERATED_FILE_SUFFIXES: tuple[str, ...] = (
    ".designer.cs",
    ".designer.vb",
    "assemblyinfo.cs",
    "assemblyinfo.vb",
    "globalasax.cs",
    "globalasax.vb",
    "global.asax.cs",
    "global.asax.vb",
)

PROJECT_FILE_PATTERNS: tuple[str, ...] = ("*.csproj", "*.vbproj")

SCAN_PROGRESS_INTERVAL: int = 25
SCAN_WORKERS: int = 4
PROBE_TIMEOUT_SECONDS: float = 120.0


# ============================================================================
# COMPLEXITY
# ============================================================================

CONTROL_FLOW_KEYWORDS: tuple[str, ...] = (
    "if (", "if(", "If ",
    "while (", "while(", "While ",
    "for (", "for(", "For ",
    "foreach (", "foreach(", "For Each ",
)
DECLARATION_KEYWORDS: tuple[str, ...] = (
    "public ", "private ", "protected ", "internal ",
    "Public ", "Private ", "Protected ", "Friend ",
)
DATA_ACCESS_KEYWORDS: tuple[str, ...] = (
    "SqlConnection", "SqlCommand", "DataSet", "DataTable",
    "NpgsqlConnection", "NpgsqlCommand", "NpgsqlDataAdapter", "NpgsqlDataReader",
)
COMPLEXITY_DIVISOR: int = 5
MIN_COMPLEXITY: int = 1
MAX_COMPLEXITY: int = 5


# ============================================================================
# BATCHING
# ============================================================================

CHARS_PER_TOKEN: int = 4
MAX_TOKENS_PER_BATCH: int = 150_000
BUDGET_FRACTION: float = 0.7
CONTEXT_TOKENS_RESERVED: int = 5_000
DEFAULT_BATCH_BUDGET: int = int(MAX_TOKENS_PER_BATCH * BUDGET_FRACTION) - CONTEXT_TOKENS_RESERVED


# ============================================================================
# RELATEDNESS
# ============================================================================

SAME_STEM_SCORE: int = 100
CROSS_LAYER_SCORE: int = 80
ADJACENT_DIR_SCORE: int = 50
RECENCY_BONUS_DAYS: int = 30
COMPLEXITY_WEIGHT: int = 5

RELATED_TOP_N: int = 5
RELATED_FLOOR: int = 3
FALLBACK_LOOKBACK: timedelta = timedelta(days=7)
MAX_CONTEXT_CHARS_PER_FILE: int = 6000

# Namespaces shared by nearly every file, ignored when comparing references
FRAMEWORK_NAMESPACE_PREFIXES: tuple[str, ...] = ("System", "Microsoft")


# ============================================================================
# TRACKING
# ============================================================================

EVIDENCE_WINDOW: timedelta = timedelta(minutes=10)
EXTENDED_EVIDENCE_WINDOW: timedelta = timedelta(minutes=30)
ARTIFACT_EXTENSIONS: tuple[str, ...] = (".cs", ".vb")
CLAIM_ATTEMPTS: int = 5

DATA_LAYER: str = "data"
BUSINESS_LAYER: str = "business"
OUTPUT_LAYERS: tuple[str, ...] = (DATA_LAYER, BUSINESS_LAYER)
OUTPUT_PROJECT_SUFFIXES: dict[str, str] = {
    DATA_LAYER: "DataAccess",
    BUSINESS_LAYER: "BusinessLogic",
}
