"""Tests for storage layer (ProjectManager and GraphStore)."""

import sqlite3

import pytest

from codeflow_cli.models import CallEdge, Definition, Interaction, Module, ModuleMember
from codeflow_cli.storage import GraphStore, ProjectManager


class TestProjectManager:
    """Tests for ProjectManager."""

    def test_create_project(self, temp_project_manager: ProjectManager):
        """Test creating a new project."""
        pm = temp_project_manager
        project_dir = pm.create_or_get_project("TestProject")

        assert project_dir.exists()
        assert project_dir.is_dir()
        assert "TestProject" in pm.list_projects()

    def test_list_projects(self, temp_project_manager: ProjectManager):
        """Test listing projects."""
        pm = temp_project_manager
        assert pm.list_projects() == []

        pm.create_or_get_project("Project2")
        pm.create_or_get_project("Project1")

        assert pm.list_projects() == ["Project1", "Project2"]

    def test_set_get_and_unload_current_project(self, temp_project_manager: ProjectManager):
        """Test the current-project state file round trip."""
        pm = temp_project_manager
        pm.create_or_get_project("MyProject")

        pm.set_current_project("MyProject")
        assert pm.get_current_project() == "MyProject"

        pm.unload_project()
        assert pm.get_current_project() is None

    def test_delete_project(self, temp_project_manager: ProjectManager):
        """Test deleting a project with a database inside."""
        pm = temp_project_manager
        store = GraphStore(pm.create_or_get_project("ToDelete"))
        store.close()

        assert pm.delete_project("ToDelete") is True
        assert "ToDelete" not in pm.list_projects()

    def test_delete_nonexistent_project(self, temp_project_manager: ProjectManager):
        """Test deleting a project that doesn't exist."""
        assert temp_project_manager.delete_project("DoesNotExist") is False


class TestGraphStore:
    """Tests for GraphStore."""

    def test_store_initialization(self, temp_graph_store: GraphStore):
        """Test GraphStore initialization."""
        assert temp_graph_store.db_path.exists()
        assert temp_graph_store.stats()["definitions"] == 0

    def test_insert_and_get_definitions(self, temp_graph_store: GraphStore):
        """Definitions come back ordered by file and line."""
        store = temp_graph_store
        store.insert_definitions([
            Definition(2, "b", "function", "src/b.py", line=3),
            Definition(1, "a", "class", "src/a.py", line=9, is_exported=True),
            Definition(3, "c", "function", "src/a.py", line=1),
        ])

        assert [d.id for d in store.get_definitions()] == [3, 1, 2]
        assert [d.id for d in store.get_definitions(kind="function")] == [3, 2]
        assert [d.id for d in store.get_definitions(file_pattern="b.py")] == [2]
        assert store.get_definition(1).is_exported is True
        assert store.get_definition(99) is None

    def test_file_pattern_is_plain_substring(self, temp_graph_store: GraphStore):
        """Underscores and percent signs in the filter match literally."""
        store = temp_graph_store
        store.insert_definitions([
            Definition(1, "a", "function", "src/userXmodel.py"),
            Definition(2, "b", "function", "src/user_model.py"),
            Definition(3, "c", "function", "src/User_Model.py"),
        ])

        assert [d.id for d in store.get_definitions(file_pattern="user_model")] == [2]
        assert store.get_definitions(file_pattern="%") == []

    def test_test_flag_inherited_from_module(self, temp_graph_store: GraphStore):
        """A member of a test module is reported as a test definition."""
        store = temp_graph_store
        store.insert_definitions([Definition(1, "helper", "function", "tests/h.py")])
        store.insert_modules([
            Module(1, "h", "tests.h", is_test=True, members=[ModuleMember(1, "helper", "function")]),
        ])

        assert store.get_definition(1).is_test is True

    def test_calls_keep_insertion_order(self, temp_graph_store: GraphStore):
        """Adjacency lists preserve edge order and drop duplicates."""
        store = temp_graph_store
        store.insert_calls([CallEdge(1, 3), CallEdge(1, 2), CallEdge(2, 3), CallEdge(1, 3)])

        assert store.callees(1) == [3, 2]
        assert store.call_graph() == {1: [3, 2], 2: [3]}
        assert store.callees(42) == []

    def test_modules_with_members_in_stored_order(self, temp_graph_store: GraphStore):
        """Members are returned in the order they were stored."""
        store = temp_graph_store
        store.insert_definitions([
            Definition(2, "zeta", "function", "m.py"),
            Definition(1, "alpha", "function", "m.py"),
        ])
        store.insert_modules([
            Module(10, "m", "pkg.m", members=[
                ModuleMember(2, "zeta", "function"),
                ModuleMember(1, "alpha", "function"),
            ]),
            Module(11, "empty", "pkg.empty"),
        ])

        modules = {m.id: m for m in store.get_all_modules_with_members()}
        assert [m.name for m in modules[10].members] == ["zeta", "alpha"]
        assert modules[11].members == []

    def test_list_module_pairs_with_paths(self, temp_graph_store: GraphStore):
        """Interactions are listed with their module paths."""
        store = temp_graph_store
        store.insert_modules([Module(1, "a", "pkg.a"), Module(2, "b", "pkg.b")])
        store.insert_interactions([
            Interaction(7, 1, 2, source="llm-inferred", semantic="a asks b"),
        ])

        (pair,) = store.list_module_pairs()
        assert pair.id == 7
        assert pair.source == "llm-inferred"
        assert pair.from_module_path == "pkg.a"
        assert pair.to_module_path == "pkg.b"
        assert pair.semantic == "a asks b"

    def test_metadata(self, temp_graph_store: GraphStore):
        """Test setting, reading and removing definition metadata."""
        store = temp_graph_store
        store.set_metadata(1, "purpose", "Parses input")
        store.set_metadata(2, "domain", "billing")
        store.set_metadata(1, "purpose", "Parses CLI input")

        assert store.get_metadata_value(1, "purpose") == "Parses CLI input"
        assert store.get_metadata_value(2, "purpose") is None
        assert store.list_metadata_keys() == ["domain", "purpose"]
        assert store.covered_ids("purpose") == {1}

        assert store.unset_metadata(1, "purpose") is True
        assert store.unset_metadata(1, "purpose") is False
        assert store.covered_ids("purpose") == set()

    def test_project_info(self, temp_graph_store: GraphStore):
        """Test project bookkeeping JSON."""
        store = temp_graph_store
        assert store.get_project_info() == {}
        store.set_project_info({"definitions": 4})
        assert store.get_project_info() == {"definitions": 4}

    def test_clear(self, temp_graph_store: GraphStore):
        """Test clearing all data from store."""
        store = temp_graph_store
        store.insert_definitions([Definition(1, "a", "function", "a.py")])
        store.insert_calls([CallEdge(1, 1)])
        store.set_metadata(1, "purpose", "x")

        store.clear()

        assert store.stats() == {
            "definitions": 0, "modules": 0, "calls": 0, "interactions": 0, "definition_metadata": 0,
        }


class TestSnapshotImport:
    """Tests for GraphStore.import_snapshot."""

    def test_import_counts(self, temp_graph_store: GraphStore, sample_snapshot: dict):
        counts = temp_graph_store.import_snapshot(sample_snapshot)

        assert counts == {"definitions": 9, "modules": 8, "calls": 5, "interactions": 5, "metadata": 1}
        assert temp_graph_store.get_project_info()["definitions"] == 9

    def test_import_replaces_previous_contents(self, temp_graph_store: GraphStore, sample_snapshot: dict):
        temp_graph_store.insert_definitions([Definition(500, "stale", "function", "old.py")])
        temp_graph_store.import_snapshot(sample_snapshot)

        assert temp_graph_store.get_definition(500) is None
        assert temp_graph_store.get_metadata_value(7, "purpose") == "Writes one row to the orders table"

    def test_import_skips_unknown_members(self, temp_graph_store: GraphStore):
        temp_graph_store.import_snapshot({
            "definitions": [{"id": 1, "name": "a", "kind": "function", "file_path": "a.py"}],
            "modules": [{"id": 1, "full_path": "pkg.a", "members": [1, 2]}],
        })

        (module,) = temp_graph_store.get_all_modules_with_members()
        assert module.name == "a"
        assert module.depth == 1
        assert [m.definition_id for m in module.members] == [1]

    def test_malformed_metadata_keeps_previous_graph(self, temp_graph_store: GraphStore):
        store = temp_graph_store
        store.import_snapshot({"definitions": [{"id": 1, "name": "a", "file_path": "a.py"}]})

        with pytest.raises(ValueError):
            store.import_snapshot({
                "definitions": [{"id": 2, "name": "b", "file_path": "b.py"}],
                "metadata": {"x": {"purpose": "p"}},
            })

        assert [d.id for d in store.get_definitions()] == [1]

    def test_failed_write_rolls_back(self, temp_graph_store: GraphStore):
        store = temp_graph_store
        store.import_snapshot({"definitions": [{"id": 1, "name": "a", "file_path": "a.py"}]})
        store.set_metadata(1, "purpose", "kept")

        with pytest.raises(sqlite3.IntegrityError):
            store.import_snapshot({"definitions": [{"id": 2, "name": None, "file_path": "b.py"}]})

        assert [d.id for d in store.get_definitions()] == [1]
        assert store.get_metadata_value(1, "purpose") == "kept"

    def test_import_empty_payload(self, temp_graph_store: GraphStore):
        counts = temp_graph_store.import_snapshot({})
        assert counts["definitions"] == 0
