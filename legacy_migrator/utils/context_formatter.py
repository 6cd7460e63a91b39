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
Context Formatting Utilities

Turns the context chosen for a unit (related migrated units and fallback
example files) into the text handed to the transformation agent alongside
the unit itself.
"""

from pathlib import Path
from typing import Optional

from legacy_migrator.analysis.models import RelatedUnit
from legacy_migrator.config import MAX_CONTEXT_CHARS_PER_FILE
from legacy_migrator.tracking.probe import read_text
from legacy_migrator.utils.logging_config import get_logger

logger = get_logger(__name__)


class ContextFormatter:
    """
    Formats context sections with a header per file.

    Each file is truncated to a character cap so a handful of large
    examples cannot crowd out the unit being migrated.
    """

    def __init__(self, max_chars_per_doc: int = MAX_CONTEXT_CHARS_PER_FILE) -> None:
        self.max_chars_per_doc = max_chars_per_doc

    def _truncate(self, text: str) -> str:
        if len(text) > self.max_chars_per_doc:
            return text[:self.max_chars_per_doc] + "\n... [truncated for context length]"
        return text

    def _read(self, path: Path) -> Optional[str]:
        try:
            return read_text(path)
        except OSError as e:
            logger.warning(f"Could not read context file {path}: {e}")
            return None

    def format_related(
        self,
        related: list[RelatedUnit],
        output_roots: dict[str, Optional[str]]
    ) -> list[str]:
        """
        One section per recorded artifact of each related unit.

        Artifacts whose layer root is unknown or whose file has gone are skipped.
        """
        sections: list[str] = []
        for item in related:
            for layer, paths in sorted(item.unit.artifacts.items()):
                root = output_roots.get(layer)
                if not root:
                    continue
                for rel_path in paths:
                    content = self._read(Path(root) / rel_path)
                    if content is None:
                        continue
                    header = "\n".join([
                        f"=== RELATED MIGRATED FILE: {rel_path} ===",
                        f"Migrated from: {item.unit.path}",
                        f"Relation: {item.reason} (score {item.score})",
                    ])
                    sections.append(header + "\n" + self._truncate(content))
        return sections

    def format_examples(
        self,
        examples: list[tuple[str, Path]],
        output_roots: dict[str, Optional[str]]
    ) -> list[str]:
        """One section per recent output file, labelled with its layer."""
        sections: list[str] = []
        for layer, path in examples:
            content = self._read(path)
            if content is None:
                continue
            root = output_roots.get(layer)
            shown = path.relative_to(root).as_posix() if root else path.name
            sections.append(f"=== EXAMPLE {layer.upper()} FILE: {shown} ===\n" + self._truncate(content))
        return sections

    def format_context(self, sections: list[str]) -> str:
        return "\n\n".join(sections)


_default_formatter: Optional[ContextFormatter] = None


def get_default_formatter() -> ContextFormatter:
    """Get the default context formatter instance."""
    global _default_formatter
    if _default_formatter is None:
        _default_formatter = ContextFormatter()
    return _default_formatter
