"""JSON file transcript store.

All sessions live in one JSON object keyed by session id (``chats.json`` by
default). Writes go to a temporary file that then replaces the original,
so a crash mid-write never leaves a half-written file behind.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from ..errors import PersistenceError
from .base import TranscriptStore
from .models import SessionRecord


class JSONFileTranscriptStore(TranscriptStore):
    """Store sessions in a single JSON file.

    File access runs in a worker thread; a lock serializes read-modify-write
    cycles from concurrent saves.
    """

    def __init__(self, path: str | Path = "chats.json"):
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def connect(self) -> None:
        """Check that an existing file is readable."""
        async with self._lock:
            await asyncio.to_thread(self._read)

    async def disconnect(self) -> None:
        """Nothing to release; every write is already on disk."""
        pass

    async def save(self, record: SessionRecord) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data[record.session_id] = record.model_dump(mode="json")
            await asyncio.to_thread(self._write, data)
        logger.debug("store.json.saved session_id={} path={}", record.session_id, self._path)

    async def load(self, session_id: str) -> SessionRecord:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
        if session_id not in data:
            raise PersistenceError(f"No stored session {session_id!r}")
        try:
            return SessionRecord.model_validate({**data[session_id], "session_id": session_id})
        except (ValidationError, TypeError) as e:
            raise PersistenceError(f"Stored session {session_id!r} is corrupt: {e}") from e

    async def list_sessions(self) -> list[str]:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
        return sorted(data)

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            if data.pop(session_id, None) is None:
                return False
            await asyncio.to_thread(self._write, data)
        return True

    @property
    def backend_type(self) -> str:
        return "json"

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise PersistenceError(f"Cannot read {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"{self._path} does not contain a JSON object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False, indent=2)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Cannot write {self._path}: {e}") from e
