import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from railplan.core.config import RuntimeConfig

logger = logging.getLogger(__name__)

DB_PATH: Path = Path(RuntimeConfig().db_path)


def set_db_path(path: Path) -> None:
    global DB_PATH
    DB_PATH = Path(path)


def _conn() -> sqlite3.Connection:
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    with _conn() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS projects (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                payload TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id INTEGER,
                name TEXT,
                summary TEXT NOT NULL,
                conflicts TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(project_id) REFERENCES projects(id)
            )
            """
        )
        # Older databases predate run names
        cols = {row[1] for row in conn.execute("PRAGMA table_info(runs)").fetchall()}
        if "name" not in cols:
            conn.execute("ALTER TABLE runs ADD COLUMN name TEXT")
        conn.commit()
    logger.debug("database ready at %s", DB_PATH)


def save_project(name: str, payload: Dict[str, Any]) -> int:
    with _conn() as conn:
        cur = conn.cursor()
        cur.execute("INSERT INTO projects(name, payload) VALUES(?, ?)", (name, json.dumps(payload, ensure_ascii=False)))
        conn.commit()
        return int(cur.lastrowid)


def list_projects(offset: int = 0, limit: int = 50) -> List[Dict[str, Any]]:
    with _conn() as conn:
        rows = conn.execute(
            "SELECT id, name, created_at FROM projects ORDER BY id DESC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
        return [dict(r) for r in rows]


def get_project(pid: int) -> Optional[Dict[str, Any]]:
    with _conn() as conn:
        r = conn.execute("SELECT id, name, payload, created_at FROM projects WHERE id=?", (pid,)).fetchone()
        return dict(r) if r else None


def update_project(pid: int, name: Optional[str] = None, payload: Optional[Dict[str, Any]] = None) -> bool:
    sets = []
    args: List[Any] = []
    if name is not None:
        sets.append("name=?")
        args.append(name)
    if payload is not None:
        sets.append("payload=?")
        args.append(json.dumps(payload, ensure_ascii=False))
    if not sets:
        return False
    args.append(pid)
    with _conn() as conn:
        cur = conn.cursor()
        cur.execute(f"UPDATE projects SET {', '.join(sets)} WHERE id=?", tuple(args))
        conn.commit()
        return cur.rowcount > 0


def delete_project(pid: int) -> bool:
    with _conn() as conn:
        cur = conn.cursor()
        # Runs first, then the project
        cur.execute("DELETE FROM runs WHERE project_id=?", (pid,))
        cur.execute("DELETE FROM projects WHERE id=?", (pid,))
        conn.commit()
        return cur.rowcount > 0


def save_run(
    project_id: Optional[int],
    summary: Dict[str, Any],
    conflicts: List[Dict[str, Any]],
    name: Optional[str] = None,
) -> int:
    with _conn() as conn:
        cur = conn.cursor()
        cur.execute(
            "INSERT INTO runs(project_id, name, summary, conflicts) VALUES(?,?,?,?)",
            (
                project_id,
                name,
                json.dumps(summary, ensure_ascii=False),
                json.dumps(conflicts, ensure_ascii=False),
            ),
        )
        conn.commit()
        return int(cur.lastrowid)


def get_run(rid: int) -> Optional[Dict[str, Any]]:
    with _conn() as conn:
        r = conn.execute("SELECT * FROM runs WHERE id=?", (rid,)).fetchone()
        return dict(r) if r else None


def list_runs_by_project(pid: int, offset: int = 0, limit: int = 50) -> List[Dict[str, Any]]:
    with _conn() as conn:
        rows = conn.execute(
            "SELECT id, name, summary, created_at FROM runs WHERE project_id=? ORDER BY id DESC LIMIT ? OFFSET ?",
            (pid, limit, offset),
        ).fetchall()
        return [dict(r) for r in rows]


def delete_run(rid: int) -> bool:
    with _conn() as conn:
        cur = conn.cursor()
        cur.execute("DELETE FROM runs WHERE id=?", (rid,))
        conn.commit()
        return cur.rowcount > 0
