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
Naming Strategies

Everything that depends on one source ecosystem's naming conventions lives
here: how a file's kind is detected, how its entity stem is derived and which
output layer it belongs to. The classifier and the relatedness graph only talk
to a NamingStrategy, so a different ecosystem plugs in a different subclass.

Kind detection is an ordered (predicate -> kind) table; the first matching
rule wins.
"""

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Callable, Optional

from legacy_migrator.analysis.models import SourceUnit, UnitKind
from legacy_migrator.config import BUSINESS_LAYER, DATA_LAYER


@dataclass(frozen=True)
class KindRule:
    """One row of the classification table."""
    name: str
    predicate: Callable[[str, str, str], bool]  # (lower file name, stem, text)
    kind: UnitKind


def _contains_any(text: str, needles: tuple[str, ...]) -> bool:
    return any(needle in text for needle in needles)


PAGE_BASE_SIGNATURES = ("System.Web.UI.Page", ": Page", "Inherits System.Web.UI.Page", "Inherits Page")
CONNECTION_OBJECTS = (
    "SqlConnection", "SqlCommand", "NpgsqlConnection", "NpgsqlCommand",
    "OleDbConnection", "OleDbCommand", "DbContext",
)
RELATIONAL_STATEMENT = re.compile(
    r"\bSELECT\b[\s\S]{1,200}?\bFROM\b|\bINSERT\s+INTO\b|\bUPDATE\s+\w+\s+SET\b|\bDELETE\s+FROM\b",
    re.IGNORECASE,
)
DATA_ACCESS_STEM_MARKERS = ("dal", "dao", "repository", "dataaccess")
BUSINESS_STEM_MARKERS = ("business", "service", "manager", "logic")
# Case-sensitive so that "Global" is not read as a business layer file
BUSINESS_STEM_SUFFIXES = ("BAL", "BLL", "Bal", "Bll")
MODEL_STEM_MARKERS = ("model", "entity", "dto")
UTILITY_STEM_MARKERS = ("util", "helper", "common")


WEBFORMS_KIND_RULES: tuple[KindRule, ...] = (
    # File-name suffix rules
    KindRule("page-code-behind", lambda name, stem, text: name.endswith((".aspx.cs", ".aspx.vb")), UnitKind.CODE_BEHIND),
    KindRule("control-code-behind", lambda name, stem, text: name.endswith((".ascx.cs", ".ascx.vb")), UnitKind.USER_CONTROL),
    KindRule("page-markup", lambda name, stem, text: name.endswith(".aspx"), UnitKind.UI_PAGE),
    KindRule("control-markup", lambda name, stem, text: name.endswith(".ascx"), UnitKind.USER_CONTROL),
    # Content signature rules
    KindRule("page-lifecycle-base", lambda name, stem, text: _contains_any(text, PAGE_BASE_SIGNATURES), UnitKind.UI_PAGE),
    KindRule("connection-object", lambda name, stem, text: _contains_any(text, CONNECTION_OBJECTS), UnitKind.DATA_ACCESS),
    KindRule("relational-statement", lambda name, stem, text: bool(RELATIONAL_STATEMENT.search(text)), UnitKind.DATA_ACCESS),
    KindRule("data-access-stem", lambda name, stem, text: _contains_any(stem.lower(), DATA_ACCESS_STEM_MARKERS), UnitKind.DATA_ACCESS),
    # Name stem rules
    KindRule(
        "business-stem",
        lambda name, stem, text: _contains_any(stem.lower(), BUSINESS_STEM_MARKERS) or stem.endswith(BUSINESS_STEM_SUFFIXES),
        UnitKind.BUSINESS_LOGIC,
    ),
    KindRule("model-stem", lambda name, stem, text: _contains_any(stem.lower(), MODEL_STEM_MARKERS), UnitKind.MODEL),
    KindRule("utility-stem", lambda name, stem, text: _contains_any(stem.lower(), UTILITY_STEM_MARKERS), UnitKind.UTILITY),
)

# Longest suffix first so "BusinessLogic" wins over "Logic"
WEBFORMS_STEM_SUFFIXES: tuple[str, ...] = (
    "BusinessLogic", "DataAccess", "Repository", "Controller", "Business",
    "Service", "Manager", "Logic", "Data", "Dal", "Bal", "Bll", "Dao",
)


class NamingStrategy:
    """
    Base naming strategy.

    Subclasses supply the rule table, the suffixes stripped to obtain an
    entity stem and the markers used to place a unit in an output layer.
    """

    kind_rules: tuple[KindRule, ...] = ()
    stem_suffixes: tuple[str, ...] = ()
    data_layer_markers: tuple[str, ...] = ()
    business_layer_markers: tuple[str, ...] = ()

    def file_stem(self, path: str) -> str:
        """File name without any extension (``Login.aspx.cs`` -> ``Login``)."""
        name = PurePosixPath(path).name
        return name.split(".", 1)[0]

    def classify(self, path: str, text: str) -> UnitKind:
        """Return the kind of the first matching rule, or UNKNOWN."""
        return self.explain_kind(path, text)[1]

    def explain_kind(self, path: str, text: str) -> tuple[Optional[str], UnitKind]:
        """
        Classify and report which rule decided.

        Returns:
            (rule name or None, kind)
        """
        name = PurePosixPath(path).name.lower()
        stem = self.file_stem(path)
        for rule in self.kind_rules:
            if rule.predicate(name, stem, text):
                return rule.name, rule.kind
        return None, UnitKind.UNKNOWN

    def entity_stem(self, path: str) -> str:
        """
        Strip the longest known layer suffix from the file stem.

        ``UserRepository.cs`` and ``UserService.cs`` both yield ``User``.
        A stem made only of a suffix is returned unchanged.
        """
        stem = self.file_stem(path)
        lowered = stem.lower()
        for suffix in sorted(self.stem_suffixes, key=len, reverse=True):
            if lowered.endswith(suffix.lower()) and len(stem) > len(suffix):
                return stem[:-len(suffix)]
        return stem

    def interface_name(self, stem: str) -> str:
        """Conventional interface name paired with an entity stem."""
        return f"I{stem}"

    def layer_of(self, unit: SourceUnit) -> Optional[str]:
        """Output layer a unit's migrated code belongs to, if any."""
        if unit.kind == UnitKind.DATA_ACCESS:
            return DATA_LAYER
        if unit.kind == UnitKind.BUSINESS_LOGIC:
            return BUSINESS_LAYER
        lowered_path = "/" + unit.path.lower()
        name = unit.file_name
        if any(m.lower() in lowered_path for m in self.data_layer_markers) or "DAL" in name:
            return DATA_LAYER
        if any(m.lower() in lowered_path for m in self.business_layer_markers) or "BAL" in name:
            return BUSINESS_LAYER
        return None


class WebFormsNamingStrategy(NamingStrategy):
    """Conventions of ASP.NET WebForms solutions written in C# or VB.NET."""

    kind_rules = WEBFORMS_KIND_RULES
    stem_suffixes = WEBFORMS_STEM_SUFFIXES
    data_layer_markers = ("DataAccess/", "/DAL/")
    business_layer_markers = ("BusinessLogics/", "BusinessLogic/", "/BAL/")


_default_strategy: Optional[NamingStrategy] = None


def get_default_strategy() -> NamingStrategy:
    """Get the default (WebForms) naming strategy instance."""
    global _default_strategy
    if _default_strategy is None:
        _default_strategy = WebFormsNamingStrategy()
    return _default_strategy
