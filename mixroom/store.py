"""SQLite persistence for projects, tracks, audio versions and comments.

Each thread gets its own connection; writes go through ``transaction()``
which takes SQLite's write lock up front (``BEGIN IMMEDIATE``) so
read-then-write sequences such as version numbering cannot interleave.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models.records import AudioVersion, Track
from .models.specs import VersionType

SCHEMA = """
CREATE TABLE IF NOT EXISTS project (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    artist TEXT NOT NULL DEFAULT '',
    user_id TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS track (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES project(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audio_version (
    id TEXT PRIMARY KEY,
    track_id TEXT NOT NULL REFERENCES track(id) ON DELETE CASCADE,
    version_type TEXT NOT NULL,
    version_number INTEGER NOT NULL,
    file_name TEXT NOT NULL,
    file_path TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    is_normalized INTEGER NOT NULL DEFAULT 0,
    lufs_level REAL,
    is_active INTEGER NOT NULL DEFAULT 0,
    waveform_data TEXT,
    created_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_version_number
    ON audio_version(track_id, version_type, version_number);
CREATE UNIQUE INDEX IF NOT EXISTS idx_version_active
    ON audio_version(track_id, version_type) WHERE is_active = 1;

CREATE TABLE IF NOT EXISTS comment (
    id TEXT PRIMARY KEY,
    track_id TEXT NOT NULL REFERENCES track(id) ON DELETE CASCADE,
    audio_version_id TEXT NOT NULL REFERENCES audio_version(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    content TEXT NOT NULL,
    timestamp_ms INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS approval (
    id TEXT PRIMARY KEY,
    comment_id TEXT NOT NULL REFERENCES comment(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    status TEXT NOT NULL,
    notes TEXT,
    created_at TEXT NOT NULL
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


class Store:
    """Thread-safe SQLite store for the rows the pipeline touches."""

    def __init__(self, path: str | Path):
        self.path = str(path)
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        conn = self._conn()
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA)

    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self.path, timeout=30, isolation_level=None, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON")
            self._local.conn = conn
        return conn

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    @contextmanager
    def transaction(self):
        conn = self._conn()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    # -- projects / tracks ---------------------------------------------------

    def create_project(self, name: str, user_id: str, artist: str = "", project_id: str | None = None) -> Dict[str, Any]:
        pid = project_id or _new_id()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO project (id, name, artist, user_id, created_at) VALUES (?, ?, ?, ?, ?)",
                (pid, name, artist, user_id, _now()),
            )
        return self.get_project(pid) or {}

    def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        row = self._conn().execute("SELECT * FROM project WHERE id = ?", (project_id,)).fetchone()
        return dict(row) if row else None

    def create_track(self, project_id: str, name: str, track_id: str | None = None) -> Track:
        tid = track_id or _new_id()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO track (id, project_id, name, created_at) VALUES (?, ?, ?, ?)",
                (tid, project_id, name, _now()),
            )
        return self.get_track(tid)

    def get_track(self, track_id: str) -> Optional[Track]:
        row = self._conn().execute(
            """
            SELECT t.id, t.project_id, t.name, p.user_id AS owner_id
            FROM track t JOIN project p ON p.id = t.project_id
            WHERE t.id = ?
            """,
            (track_id,),
        ).fetchone()
        return Track(**dict(row)) if row else None

    def track_ids(self, project_id: str) -> List[str]:
        rows = self._conn().execute("SELECT id FROM track WHERE project_id = ?", (project_id,)).fetchall()
        return [r["id"] for r in rows]

    # -- comments ------------------------------------------------------------

    def add_comment(self, track_id: str, audio_version_id: str, user_id: str, content: str, timestamp_ms: int) -> str:
        cid = _new_id()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO comment (id, track_id, audio_version_id, user_id, content, timestamp_ms, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (cid, track_id, audio_version_id, user_id, content, int(timestamp_ms), _now()),
            )
        return cid

    def add_approval(self, comment_id: str, user_id: str, status: str, notes: str | None = None) -> str:
        aid = _new_id()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO approval (id, comment_id, user_id, status, notes, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (aid, comment_id, user_id, status, notes, _now()),
            )
        return aid

    def count_comments(self, audio_version_id: str) -> int:
        row = self._conn().execute(
            "SELECT COUNT(*) FROM comment WHERE audio_version_id = ?", (audio_version_id,)
        ).fetchone()
        return row[0]

    def count_approvals(self) -> int:
        return self._conn().execute("SELECT COUNT(*) FROM approval").fetchone()[0]

    # -- audio versions ------------------------------------------------------

    def get_version(self, version_id: str, conn: sqlite3.Connection | None = None) -> Optional[AudioVersion]:
        row = (conn or self._conn()).execute("SELECT * FROM audio_version WHERE id = ?", (version_id,)).fetchone()
        return AudioVersion.from_row(row) if row else None

    def list_versions(self, track_id: str, version_type: VersionType | None = None, conn=None) -> List[AudioVersion]:
        sql = "SELECT * FROM audio_version WHERE track_id = ?"
        args: list = [track_id]
        if version_type is not None:
            sql += " AND version_type = ?"
            args.append(version_type.value)
        sql += " ORDER BY version_type ASC, version_number DESC"
        rows = (conn or self._conn()).execute(sql, args).fetchall()
        return [AudioVersion.from_row(r) for r in rows]

    def next_version_number(self, conn: sqlite3.Connection, track_id: str, version_type: VersionType) -> int:
        row = conn.execute(
            "SELECT MAX(version_number) FROM audio_version WHERE track_id = ? AND version_type = ?",
            (track_id, version_type.value),
        ).fetchone()
        return (row[0] or 0) + 1

    def insert_version(
        self,
        conn: sqlite3.Connection,
        *,
        track_id: str,
        version_type: VersionType,
        version_number: int,
        file_name: str,
        file_path: str,
        file_size: int,
        is_normalized: bool,
        lufs_level: float | None,
        waveform_data: list | None = None,
    ) -> str:
        vid = _new_id()
        conn.execute(
            """
            INSERT INTO audio_version (
                id, track_id, version_type, version_number, file_name, file_path,
                file_size, is_normalized, lufs_level, is_active, waveform_data, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
            """,
            (
                vid,
                track_id,
                version_type.value,
                version_number,
                file_name,
                file_path,
                int(file_size),
                int(is_normalized),
                lufs_level,
                json.dumps(waveform_data) if waveform_data is not None else None,
                _now(),
            ),
        )
        return vid

    def activate(self, conn: sqlite3.Connection, version: AudioVersion) -> None:
        """Make ``version`` the only active one of its (track, type)."""
        conn.execute(
            "UPDATE audio_version SET is_active = 0 WHERE track_id = ? AND version_type = ? AND id != ?",
            (version.track_id, version.version_type.value, version.id),
        )
        conn.execute("UPDATE audio_version SET is_active = 1 WHERE id = ?", (version.id,))

    def delete_version(self, conn: sqlite3.Connection, version_id: str) -> None:
        conn.execute(
            "DELETE FROM approval WHERE comment_id IN (SELECT id FROM comment WHERE audio_version_id = ?)",
            (version_id,),
        )
        conn.execute("DELETE FROM comment WHERE audio_version_id = ?", (version_id,))
        conn.execute("DELETE FROM audio_version WHERE id = ?", (version_id,))

    def delete_track(self, conn: sqlite3.Connection, track_id: str) -> int:
        conn.execute(
            "DELETE FROM approval WHERE comment_id IN (SELECT id FROM comment WHERE track_id = ?)",
            (track_id,),
        )
        conn.execute("DELETE FROM comment WHERE track_id = ?", (track_id,))
        conn.execute("DELETE FROM audio_version WHERE track_id = ?", (track_id,))
        return conn.execute("DELETE FROM track WHERE id = ?", (track_id,)).rowcount

    def delete_project(self, conn: sqlite3.Connection, project_id: str) -> int:
        for (track_id,) in conn.execute("SELECT id FROM track WHERE project_id = ?", (project_id,)).fetchall():
            self.delete_track(conn, track_id)
        return conn.execute("DELETE FROM project WHERE id = ?", (project_id,)).rowcount
