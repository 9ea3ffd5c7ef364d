"""SQLite transcript store.

Provides persistent session storage using a SQLite database file.
Uses aiosqlite for async access.
"""

from datetime import datetime
from pathlib import Path

import aiosqlite
from loguru import logger
from pydantic import ValidationError

from ..errors import PersistenceError
from ..models import ModelParameters, SessionKind
from .base import TranscriptStore
from .models import SessionRecord, StoredMessage


class SQLiteTranscriptStore(TranscriptStore):
    """SQLite-backed transcript store.

    One row per session in ``sessions`` (parameters as JSON, plus the
    document of a completion session) and one row per chat message in
    ``messages``, ordered by position.
    """

    def __init__(self, path: str | Path = "./tabchat.db"):
        self._db_path = Path(path)
        self._connection: aiosqlite.Connection | None = None

    @property
    def path(self) -> Path:
        return self._db_path

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._connection is not None:
            return
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(self._db_path)
            await self._connection.execute("PRAGMA foreign_keys = ON")
            await self._create_schema()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Cannot open {self._db_path}: {e}") from e
        logger.debug("store.sqlite.connected path={}", self._db_path)

    async def _create_schema(self) -> None:
        """Create database tables."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                kind TEXT NOT NULL DEFAULT 'chat',
                parameters TEXT NOT NULL,
                prompt TEXT NOT NULL DEFAULT '',
                updated_at TEXT NOT NULL
            )
        """)

        # Databases written before completion sessions lack these columns.
        async with self._connection.execute("PRAGMA table_info(sessions)") as cursor:
            columns = {row[1] for row in await cursor.fetchall()}
        if "kind" not in columns:
            await self._connection.execute(
                "ALTER TABLE sessions ADD COLUMN kind TEXT NOT NULL DEFAULT 'chat'"
            )
        if "prompt" not in columns:
            await self._connection.execute(
                "ALTER TABLE sessions ADD COLUMN prompt TEXT NOT NULL DEFAULT ''"
            )

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                session_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                status TEXT NOT NULL,
                PRIMARY KEY (session_id, position),
                FOREIGN KEY (session_id) REFERENCES sessions(session_id) ON DELETE CASCADE
            )
        """)

        await self._connection.commit()

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def save(self, record: SessionRecord) -> None:
        db = self._require_connection()
        try:
            await db.execute("""
                INSERT INTO sessions (session_id, kind, parameters, prompt, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    kind = excluded.kind,
                    parameters = excluded.parameters,
                    prompt = excluded.prompt,
                    updated_at = excluded.updated_at
            """, (
                record.session_id,
                record.kind.value,
                record.parameters.model_dump_json(),
                record.prompt,
                datetime.now().isoformat(),
            ))

            await db.execute("DELETE FROM messages WHERE session_id = ?", (record.session_id,))
            await db.executemany("""
                INSERT INTO messages (session_id, position, role, content, status)
                VALUES (?, ?, ?, ?, ?)
            """, [
                (record.session_id, position, m.role.value, m.content, m.status.value)
                for position, m in enumerate(record.messages)
            ])
            await db.commit()
        except aiosqlite.Error as e:
            await db.rollback()
            raise PersistenceError(f"Cannot save {record.session_id!r}: {e}") from e

    async def load(self, session_id: str) -> SessionRecord:
        db = self._require_connection()
        try:
            async with db.execute(
                "SELECT kind, parameters, prompt, updated_at FROM sessions WHERE session_id = ?",
                (session_id,)
            ) as cursor:
                row = await cursor.fetchone()

            if row is None:
                raise PersistenceError(f"No stored session {session_id!r}")

            async with db.execute(
                """
                SELECT role, content, status
                FROM messages
                WHERE session_id = ?
                ORDER BY position ASC
                """,
                (session_id,)
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Cannot load {session_id!r}: {e}") from e

        kind, parameters_json, prompt, updated_at = row
        try:
            return SessionRecord(
                session_id=session_id,
                kind=SessionKind(kind),
                parameters=ModelParameters.model_validate_json(parameters_json),
                prompt=prompt,
                messages=[
                    StoredMessage(role=role, content=content, status=status)
                    for role, content, status in rows
                ],
                updated_at=datetime.fromisoformat(updated_at),
            )
        except (ValidationError, ValueError) as e:
            raise PersistenceError(f"Stored session {session_id!r} is corrupt: {e}") from e

    async def list_sessions(self) -> list[str]:
        db = self._require_connection()
        try:
            async with db.execute("SELECT session_id FROM sessions ORDER BY session_id") as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Cannot list sessions: {e}") from e
        return [row[0] for row in rows]

    async def delete(self, session_id: str) -> bool:
        db = self._require_connection()
        try:
            cursor = await db.execute("DELETE FROM sessions WHERE session_id = ?", (session_id,))
            await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError(f"Cannot delete {session_id!r}: {e}") from e
        return cursor.rowcount > 0

    @property
    def backend_type(self) -> str:
        return "sqlite"

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise PersistenceError("SQLite store is not connected; call connect() first")
        return self._connection
