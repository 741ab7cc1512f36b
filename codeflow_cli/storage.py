"""Persistence layer for project-specific code graph memory.

Architecture:
- **SQLite** holds definitions, the module tree with its membership, the
  definition-level call graph, per-definition metadata (aspects) and
  module-to-module interactions.
- A small ``project.json`` beside the database records import bookkeeping.

The engines in :mod:`codeflow_cli.readiness` and
:mod:`codeflow_cli.flow_tracer` only read from this store; metadata is the
one table that annotation work mutates incrementally.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from .config import MEMORY_DIR, STATE_FILE, ensure_base_dirs
from .models import CallEdge, Definition, Interaction, Module, ModuleMember

logger = logging.getLogger(__name__)


# ===================================================================
# ProjectManager  (manages directories / active project)
# ===================================================================

class ProjectManager:
    """Manage project memory directories and active project state."""

    def __init__(self) -> None:
        ensure_base_dirs()

    def list_projects(self) -> List[str]:
        if not MEMORY_DIR.exists():
            return []
        return sorted([p.name for p in MEMORY_DIR.iterdir() if p.is_dir()])

    def project_dir(self, project_name: str) -> Path:
        return MEMORY_DIR / project_name

    def create_or_get_project(self, project_name: str) -> Path:
        path = self.project_dir(project_name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def set_current_project(self, project_name: str) -> None:
        ensure_base_dirs()
        STATE_FILE.write_text(
            json.dumps({"current_project": project_name}, indent=2),
            encoding="utf-8",
        )

    def get_current_project(self) -> Optional[str]:
        if not STATE_FILE.exists():
            return None
        try:
            payload = json.loads(STATE_FILE.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        return payload.get("current_project")

    def unload_project(self) -> None:
        ensure_base_dirs()
        STATE_FILE.write_text(
            json.dumps({"current_project": None}, indent=2),
            encoding="utf-8",
        )

    def delete_project(self, project_name: str) -> bool:
        path = self.project_dir(project_name)
        if not path.exists():
            return False
        for child in sorted(path.glob("**/*"), reverse=True):
            if child.is_file():
                child.unlink()
            elif child.is_dir():
                child.rmdir()
        path.rmdir()
        return True


# ===================================================================
# GraphStore  (SQLite)
# ===================================================================

class GraphStore:
    """SQLite-backed store for definitions, modules, calls, metadata and interactions."""

    def __init__(self, project_dir: Path) -> None:
        self.project_dir = project_dir
        self.db_path = project_dir / "graph.db"
        self.meta_path = project_dir / "project.json"
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        self.conn.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute("""
            CREATE TABLE IF NOT EXISTS definitions (
                id          INTEGER PRIMARY KEY,
                name        TEXT NOT NULL,
                kind        TEXT NOT NULL,
                file_path   TEXT NOT NULL,
                line        INTEGER NOT NULL DEFAULT 0,
                end_line    INTEGER NOT NULL DEFAULT 0,
                is_exported INTEGER NOT NULL DEFAULT 0,
                is_test     INTEGER NOT NULL DEFAULT 0
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS modules (
                id          INTEGER PRIMARY KEY,
                parent_id   INTEGER,
                name        TEXT NOT NULL,
                full_path   TEXT NOT NULL,
                depth       INTEGER NOT NULL DEFAULT 0,
                description TEXT,
                is_test     INTEGER NOT NULL DEFAULT 0
            )
        """)
        # A definition belongs to at most one module
        cur.execute("""
            CREATE TABLE IF NOT EXISTS module_members (
                definition_id INTEGER PRIMARY KEY,
                module_id     INTEGER NOT NULL,
                position      INTEGER NOT NULL DEFAULT 0
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS calls (
                from_id INTEGER NOT NULL,
                to_id   INTEGER NOT NULL,
                UNIQUE (from_id, to_id)
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS definition_metadata (
                definition_id INTEGER NOT NULL,
                key           TEXT NOT NULL,
                value         TEXT NOT NULL,
                PRIMARY KEY (definition_id, key)
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS interactions (
                id             INTEGER PRIMARY KEY,
                from_module_id INTEGER NOT NULL,
                to_module_id   INTEGER NOT NULL,
                direction      TEXT NOT NULL DEFAULT 'uni',
                weight         INTEGER NOT NULL DEFAULT 1,
                source         TEXT NOT NULL DEFAULT 'ast',
                pattern        TEXT,
                semantic       TEXT
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_calls_from ON calls(from_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_calls_to ON calls(to_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_members_module ON module_members(module_id)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_metadata_key ON definition_metadata(key)")
        self.conn.commit()

    # ------------------------------------------------------------------
    # Clear / project bookkeeping
    # ------------------------------------------------------------------

    def clear(self) -> None:
        with self.conn:
            self._delete_all()

    def _delete_all(self) -> None:
        for table in ("interactions", "definition_metadata", "calls", "module_members", "modules", "definitions"):
            self.conn.execute(f"DELETE FROM {table}")

    def set_project_info(self, payload: Dict[str, Any]) -> None:
        self.meta_path.write_text(
            json.dumps(payload, indent=2), encoding="utf-8",
        )

    def get_project_info(self) -> Dict[str, Any]:
        if not self.meta_path.exists():
            return {}
        try:
            return json.loads(self.meta_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}

    # ------------------------------------------------------------------
    # Insert
    # ------------------------------------------------------------------

    def insert_definitions(self, definitions: Iterable[Definition]) -> None:
        with self.conn:
            self._write_definitions(definitions)

    def _write_definitions(self, definitions: Iterable[Definition]) -> None:
        self.conn.executemany(
            """
            INSERT OR REPLACE INTO definitions (
                id, name, kind, file_path, line, end_line, is_exported, is_test
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    d.id, d.name, d.kind, d.file_path, d.line, d.end_line,
                    int(d.is_exported), int(d.is_test),
                )
                for d in definitions
            ],
        )

    def insert_modules(self, modules: Iterable[Module]) -> None:
        """Insert modules and their membership.

        Member order is preserved: it is the order callers later see from
        :meth:`get_all_modules_with_members`.
        """
        with self.conn:
            self._write_modules(modules)

    def _write_modules(self, modules: Iterable[Module]) -> None:
        modules = list(modules)
        self.conn.executemany(
            """
            INSERT OR REPLACE INTO modules (
                id, parent_id, name, full_path, depth, description, is_test
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (m.id, m.parent_id, m.name, m.full_path, m.depth, m.description, int(m.is_test))
                for m in modules
            ],
        )
        self.conn.executemany(
            "INSERT OR REPLACE INTO module_members (definition_id, module_id, position) VALUES (?, ?, ?)",
            [
                (member.definition_id, m.id, position)
                for m in modules
                for position, member in enumerate(m.members)
            ],
        )

    def insert_calls(self, edges: Iterable[CallEdge]) -> None:
        with self.conn:
            self._write_calls(edges)

    def _write_calls(self, edges: Iterable[CallEdge]) -> None:
        self.conn.executemany(
            "INSERT OR IGNORE INTO calls (from_id, to_id) VALUES (?, ?)",
            [(e.from_definition_id, e.to_definition_id) for e in edges],
        )

    def insert_interactions(self, interactions: Iterable[Interaction]) -> None:
        with self.conn:
            self._write_interactions(interactions)

    def _write_interactions(self, interactions: Iterable[Interaction]) -> None:
        self.conn.executemany(
            """
            INSERT OR REPLACE INTO interactions (
                id, from_module_id, to_module_id, direction, weight, source, pattern, semantic
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    i.id, i.from_module_id, i.to_module_id, i.direction,
                    i.weight, i.source, i.pattern, i.semantic,
                )
                for i in interactions
            ],
        )

    # ------------------------------------------------------------------
    # Metadata (aspects)
    # ------------------------------------------------------------------

    def set_metadata(self, definition_id: int, key: str, value: str) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO definition_metadata (definition_id, key, value) VALUES (?, ?, ?)",
            (definition_id, key, value),
        )
        self.conn.commit()

    def unset_metadata(self, definition_id: int, key: str) -> bool:
        cur = self.conn.execute(
            "DELETE FROM definition_metadata WHERE definition_id = ? AND key = ?",
            (definition_id, key),
        )
        self.conn.commit()
        return cur.rowcount > 0

    def get_metadata_value(self, definition_id: int, key: str) -> Optional[str]:
        row = self.conn.execute(
            "SELECT value FROM definition_metadata WHERE definition_id = ? AND key = ?",
            (definition_id, key),
        ).fetchone()
        return row["value"] if row else None

    def get_definition_metadata(self, definition_id: int) -> Dict[str, str]:
        rows = self.conn.execute(
            "SELECT key, value FROM definition_metadata WHERE definition_id = ?",
            (definition_id,),
        ).fetchall()
        return {row["key"]: row["value"] for row in rows}

    def list_metadata_keys(self) -> List[str]:
        rows = self.conn.execute(
            "SELECT DISTINCT key FROM definition_metadata ORDER BY key"
        ).fetchall()
        return [row["key"] for row in rows]

    def covered_ids(self, key: str) -> Set[int]:
        rows = self.conn.execute(
            "SELECT definition_id FROM definition_metadata WHERE key = ?", (key,),
        ).fetchall()
        return {row["definition_id"] for row in rows}

    # ------------------------------------------------------------------
    # Read (structured)
    # ------------------------------------------------------------------

    def get_definitions(
        self,
        kind: Optional[str] = None,
        file_pattern: Optional[str] = None,
    ) -> List[Definition]:
        """Definitions ordered by file and line, optionally filtered.

        ``file_pattern`` is a plain substring of the file path.
        """
        sql = """
            SELECT d.*, COALESCE(m.is_test, 0) AS module_is_test
            FROM definitions d
            LEFT JOIN module_members mm ON mm.definition_id = d.id
            LEFT JOIN modules m ON m.id = mm.module_id
            WHERE 1 = 1
        """
        params: List[Any] = []
        if kind:
            sql += " AND d.kind = ?"
            params.append(kind)
        if file_pattern:
            sql += " AND instr(d.file_path, ?) > 0"
            params.append(file_pattern)
        sql += " ORDER BY d.file_path, d.line, d.id"
        return [_row_to_definition(row) for row in self.conn.execute(sql, params).fetchall()]

    def get_definition(self, definition_id: int) -> Optional[Definition]:
        row = self.conn.execute(
            """
            SELECT d.*, COALESCE(m.is_test, 0) AS module_is_test
            FROM definitions d
            LEFT JOIN module_members mm ON mm.definition_id = d.id
            LEFT JOIN modules m ON m.id = mm.module_id
            WHERE d.id = ?
            """,
            (definition_id,),
        ).fetchone()
        return _row_to_definition(row) if row else None

    def callees(self, definition_id: int) -> List[int]:
        rows = self.conn.execute(
            "SELECT to_id FROM calls WHERE from_id = ? ORDER BY rowid", (definition_id,),
        ).fetchall()
        return [row["to_id"] for row in rows]

    def call_graph(self) -> Dict[int, List[int]]:
        graph: Dict[int, List[int]] = {}
        for row in self.conn.execute("SELECT from_id, to_id FROM calls ORDER BY rowid"):
            graph.setdefault(row["from_id"], []).append(row["to_id"])
        return graph

    def get_all_modules_with_members(self) -> List[Module]:
        modules: Dict[int, Module] = {}
        for row in self.conn.execute("SELECT * FROM modules ORDER BY full_path, id"):
            modules[row["id"]] = Module(
                id=row["id"],
                parent_id=row["parent_id"],
                name=row["name"],
                full_path=row["full_path"],
                depth=row["depth"],
                description=row["description"],
                is_test=bool(row["is_test"]),
            )
        rows = self.conn.execute(
            """
            SELECT mm.module_id, d.id, d.name, d.kind
            FROM module_members mm
            JOIN definitions d ON d.id = mm.definition_id
            ORDER BY mm.module_id, mm.position
            """
        ).fetchall()
        for row in rows:
            module = modules.get(row["module_id"])
            if module is None:
                logger.debug("Member %s references unknown module %s", row["id"], row["module_id"])
                continue
            module.members.append(ModuleMember(definition_id=row["id"], name=row["name"], kind=row["kind"]))
        return list(modules.values())

    def list_module_pairs(self) -> List[Interaction]:
        rows = self.conn.execute(
            """
            SELECT i.*, fm.full_path AS from_path, tm.full_path AS to_path
            FROM interactions i
            LEFT JOIN modules fm ON fm.id = i.from_module_id
            LEFT JOIN modules tm ON tm.id = i.to_module_id
            ORDER BY i.id
            """
        ).fetchall()
        return [
            Interaction(
                id=row["id"],
                from_module_id=row["from_module_id"],
                to_module_id=row["to_module_id"],
                source=row["source"],
                weight=row["weight"],
                direction=row["direction"],
                pattern=row["pattern"],
                semantic=row["semantic"],
                from_module_path=row["from_path"] or "",
                to_module_path=row["to_path"] or "",
            )
            for row in rows
        ]

    def stats(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for table in ("definitions", "modules", "calls", "interactions", "definition_metadata"):
            counts[table] = self.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return counts

    # ------------------------------------------------------------------
    # Snapshot import
    # ------------------------------------------------------------------

    def import_snapshot(self, payload: Dict[str, Any]) -> Dict[str, int]:
        """Replace the store contents with a JSON snapshot produced by an indexer.

        Expected keys: ``definitions``, ``modules`` (each with ``members``
        as a list of definition ids), ``calls`` (``[from, to]`` pairs),
        ``interactions`` and ``metadata`` (``{definition_id: {key: value}}``).
        Missing keys are treated as empty.
        """
        definitions = [
            Definition(
                id=int(d["id"]),
                name=d["name"],
                kind=d.get("kind", "function"),
                file_path=d.get("file_path", ""),
                line=int(d.get("line", 0)),
                end_line=int(d.get("end_line", 0)),
                is_exported=bool(d.get("is_exported", False)),
                is_test=bool(d.get("is_test", False)),
            )
            for d in payload.get("definitions", [])
        ]
        by_id = {d.id: d for d in definitions}

        modules: List[Module] = []
        for m in payload.get("modules", []):
            members = []
            for def_id in m.get("members", []):
                definition = by_id.get(int(def_id))
                if definition is None:
                    logger.warning("Module %s lists unknown definition %s; skipped", m.get("full_path"), def_id)
                    continue
                members.append(ModuleMember(definition.id, definition.name, definition.kind))
            modules.append(
                Module(
                    id=int(m["id"]),
                    parent_id=m.get("parent_id"),
                    name=m.get("name") or m["full_path"].split(".")[-1],
                    full_path=m["full_path"],
                    depth=int(m.get("depth", m["full_path"].count("."))),
                    description=m.get("description"),
                    is_test=bool(m.get("is_test", False)),
                    members=members,
                )
            )

        calls = [CallEdge(int(src), int(dst)) for src, dst in payload.get("calls", [])]
        interactions = [
            Interaction(
                id=int(i["id"]),
                from_module_id=int(i["from_module_id"]),
                to_module_id=int(i["to_module_id"]),
                source=i.get("source", "ast"),
                weight=int(i.get("weight", 1)),
                direction=i.get("direction", "uni"),
                pattern=i.get("pattern"),
                semantic=i.get("semantic"),
            )
            for i in payload.get("interactions", [])
        ]

        metadata = [
            (int(def_id), key, str(value))
            for def_id, values in payload.get("metadata", {}).items()
            for key, value in values.items()
        ]

        # All or nothing: a failed write leaves the previous graph in place
        with self.conn:
            self._delete_all()
            self._write_definitions(definitions)
            self._write_modules(modules)
            self._write_calls(calls)
            self._write_interactions(interactions)
            self.conn.executemany(
                "INSERT OR REPLACE INTO definition_metadata (definition_id, key, value) VALUES (?, ?, ?)",
                metadata,
            )

        metadata_rows = len(metadata)
        counts = {
            "definitions": len(definitions),
            "modules": len(modules),
            "calls": len(calls),
            "interactions": len(interactions),
            "metadata": metadata_rows,
        }
        self.set_project_info(counts)
        logger.info(
            "Imported snapshot: %d definitions, %d modules, %d calls, %d interactions",
            counts["definitions"], counts["modules"], counts["calls"], counts["interactions"],
        )
        return counts


# ===================================================================
# Helpers
# ===================================================================

def _row_to_definition(row: sqlite3.Row) -> Definition:
    return Definition(
        id=row["id"],
        name=row["name"],
        kind=row["kind"],
        file_path=row["file_path"],
        line=row["line"],
        end_line=row["end_line"],
        is_exported=bool(row["is_exported"]),
        is_test=bool(row["is_test"] or row["module_is_test"]),
    )
