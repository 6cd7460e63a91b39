"""
Shared fixtures for the scheduler tests.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import pytest

from legacy_migrator.analysis.models import (
    ArchitectureSummary, MigrationProject, ProjectStatus, Separation,
    SourceUnit, UnitKind, UnitStatus, Workspace
)
from legacy_migrator.storage.memory_store import InMemoryStore


def _make_unit(
    path: str,
    kind: UnitKind = UnitKind.DATA_ACCESS,
    text: str = "",
    complexity: int = 1,
    status: UnitStatus = UnitStatus.PENDING,
    declared_types: Optional[list[str]] = None,
    references: Optional[list[str]] = None,
    completed_at: Optional[datetime] = None,
    workspace_id: str = "ws1",
    language: str = "csharp",
) -> SourceUnit:
    return SourceUnit(
        id=f"{workspace_id}:{path}",
        workspace_id=workspace_id,
        path=path,
        kind=kind,
        text=text,
        language=language,
        declared_types=declared_types or [],
        references=references or [],
        complexity=complexity,
        status=status,
        completed_at=completed_at,
    )


def _make_workspace(workspace_id: str = "ws1", root: str = "/legacy/Shop", total_units: int = 0) -> Workspace:
    return Workspace(
        id=workspace_id,
        root=root,
        project_name="Shop",
        total_units=total_units,
        kind_histogram={},
        complexity_histogram={},
        language_histogram={},
        architecture=ArchitectureSummary(separation=Separation.NONE),
        scanned_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def make_unit() -> Callable[..., SourceUnit]:
    """Factory for SourceUnits with sensible defaults."""
    return _make_unit


@pytest.fixture
def make_workspace() -> Callable[..., Workspace]:
    """Factory for minimal Workspaces."""
    return _make_workspace


@pytest.fixture
def output_roots(tmp_path: Path) -> dict[str, str]:
    """Two empty output project directories."""
    roots = {
        "data": tmp_path / "out" / "Shop.DataAccess",
        "business": tmp_path / "out" / "Shop.BusinessLogic",
    }
    for root in roots.values():
        root.mkdir(parents=True)
    return {layer: str(root) for layer, root in roots.items()}


@pytest.fixture
def seeded_store(output_roots: dict[str, str]) -> Callable[[list[SourceUnit]], InMemoryStore]:
    """Factory: an InMemoryStore holding workspace ws1, the given units and a ready project."""
    def seed(units: list[SourceUnit]) -> InMemoryStore:
        store = InMemoryStore()
        store.save_workspace(_make_workspace(total_units=len(units)), units)
        store.save_project(MigrationProject(
            project_id="ws1",
            workspace_id="ws1",
            project_name="Shop",
            output_roots=dict(output_roots),
            status=ProjectStatus.READY_FOR_MIGRATION,
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        ))
        return store
    return seed


@pytest.fixture
def legacy_tree(tmp_path: Path) -> Path:
    """A small WebForms solution with generated files and build output mixed in."""
    root = tmp_path / "MyShop"
    files = {
        "MyShop.csproj": "<Project />\n",
        "Login.aspx": '<%@ Page Language="C#" CodeBehind="Login.aspx.cs" Inherits="MyShop.Login" %>\n<html></html>\n',
        "Login.aspx.cs": (
            "using System;\n"
            "using System.Web.UI;\n"
            "using MyShop.BAL;\n\n"
            "public partial class Login : System.Web.UI.Page\n"
            "{\n"
            "    protected void Page_Load(object sender, EventArgs e)\n"
            "    {\n"
            "        if (IsPostBack) { var bal = new UserBAL(); }\n"
            "    }\n"
            "}\n"
        ),
        "Login.aspx.designer.cs": "public partial class Login { }\n",
        "DAL/UserDAL.cs": (
            "using System.Data.SqlClient;\n\n"
            "namespace MyShop.DAL\n"
            "{\n"
            "    public class UserDAL\n"
            "    {\n"
            "        public bool Exists(string name)\n"
            "        {\n"
            "            using (var conn = new SqlConnection(\"cs\"))\n"
            "            {\n"
            "                var cmd = new SqlCommand(\"SELECT COUNT(*) FROM Users WHERE Name = @n\", conn);\n"
            "                return true;\n"
            "            }\n"
            "        }\n"
            "    }\n"
            "}\n"
        ),
        "BAL/UserBAL.cs": (
            "using MyShop.DAL;\n\n"
            "namespace MyShop.BAL\n"
            "{\n"
            "    public class UserBAL\n"
            "    {\n"
            "        private UserDAL _dal = new UserDAL();\n"
            "        public bool Validate(string name) { return _dal.Exists(name); }\n"
            "    }\n"
            "}\n"
        ),
        "Models/UserModel.cs": "public class UserModel\n{\n    public int Id { get; set; }\n}\n",
        "Helpers/StringHelper.vb": "Public Module StringHelper\n    Public Function Trim(s As String) As String\n        Return s\n    End Function\nEnd Module\n",
        "Misc/Thing.cs": "public class Thing { }\n",
        "bin/Debug/Old.cs": "public class Old { }\n",
        "obj/Temp.cs": "public class Temp { }\n",
        "Properties/AssemblyInfo.cs": "[assembly: AssemblyTitle(\"MyShop\")]\n",
        "Readme.txt": "not code\n",
    }
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root
