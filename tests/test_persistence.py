"""Tests for transcript stores."""
import aiosqlite
import pytest

from tabchat.errors import PersistenceError
from tabchat.models import Message, MessageStatus, ModelParameters, Role, SessionKind, Transcript
from tabchat.persistence import (
    InMemoryTranscriptStore,
    SessionRecord,
    StoredMessage,
    create_transcript_store,
)
from tabchat.persistence.json_file import JSONFileTranscriptStore
from tabchat.persistence.sqlite import SQLiteTranscriptStore


def make_record(session_id: str = "chat_1", *contents: str) -> SessionRecord:
    contents = contents or ("Hi", "Hello there")
    roles = [Role.USER, Role.ASSISTANT]
    return SessionRecord(
        session_id=session_id,
        parameters=ModelParameters(model="gpt-4o", temperature=0.5, max_tokens=100),
        messages=[
            StoredMessage(role=roles[i % 2], content=text)
            for i, text in enumerate(contents)
        ],
    )


@pytest.fixture(params=["memory", "json", "sqlite"])
async def store(request, tmp_path):
    """Each backend, connected, backed by a temporary directory."""
    paths = {"json": tmp_path / "chats.json", "sqlite": tmp_path / "tabchat.db"}
    kwargs = {"path": paths[request.param]} if request.param in paths else {}
    store = create_transcript_store(request.param, **kwargs)
    await store.connect()
    yield store
    await store.disconnect()


class TestStores:
    """Behaviour shared by every backend."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, store):
        record = make_record()
        record.messages.append(StoredMessage(role=Role.ASSISTANT, content="cut", status=MessageStatus.ABORTED))

        await store.save(record)
        loaded = await store.load("chat_1")

        assert loaded.session_id == "chat_1"
        assert loaded.parameters == record.parameters
        assert [(m.role, m.content, m.status) for m in loaded.messages] == [
            (Role.USER, "Hi", MessageStatus.COMPLETE),
            (Role.ASSISTANT, "Hello there", MessageStatus.COMPLETE),
            (Role.ASSISTANT, "cut", MessageStatus.ABORTED),
        ]

    @pytest.mark.asyncio
    async def test_completion_record(self, store):
        """Test that a completion document keeps its kind and text."""
        record = SessionRecord(
            session_id="complete_1",
            kind=SessionKind.COMPLETE,
            parameters=ModelParameters(model="gpt-3.5-turbo-instruct", max_tokens=2048),
            prompt="Once upon a time\nthere was",
        )

        await store.save(record)
        loaded = await store.load("complete_1")

        assert loaded.kind is SessionKind.COMPLETE
        assert loaded.prompt == "Once upon a time\nthere was"
        assert loaded.messages == []
        assert loaded.parameters.max_tokens == 2048
        assert loaded.title == "Once upon a time"

    @pytest.mark.asyncio
    async def test_unicode_content(self, store):
        await store.save(make_record("chat_1", "héllo 🙂", "→ ✓"))

        loaded = await store.load("chat_1")

        assert [m.content for m in loaded.messages] == ["héllo 🙂", "→ ✓"]

    @pytest.mark.asyncio
    async def test_save_replaces(self, store):
        await store.save(make_record("chat_1", "a", "b", "c"))
        await store.save(make_record("chat_1", "x"))

        loaded = await store.load("chat_1")

        assert [m.content for m in loaded.messages] == ["x"]

    @pytest.mark.asyncio
    async def test_load_missing(self, store):
        with pytest.raises(PersistenceError):
            await store.load("nope")

    @pytest.mark.asyncio
    async def test_list_and_delete(self, store):
        for session_id in ("chat_2", "chat_1", "work"):
            await store.save(make_record(session_id))

        assert await store.list_sessions() == ["chat_1", "chat_2", "work"]
        assert await store.delete("chat_2")
        assert not await store.delete("chat_2")
        assert await store.list_sessions() == ["chat_1", "work"]

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, store):
        await store.connect()
        await store.save(make_record())

        assert await store.list_sessions() == ["chat_1"]


class TestJSONFileStore:
    """Tests specific to the JSON file backend."""

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        path = tmp_path / "nested" / "chats.json"
        async with JSONFileTranscriptStore(path) as store:
            await store.save(make_record())

        async with JSONFileTranscriptStore(path) as store:
            loaded = await store.load("chat_1")

        assert loaded.parameters.temperature == 0.5
        assert not list(path.parent.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        path = tmp_path / "chats.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(PersistenceError):
            await JSONFileTranscriptStore(path).connect()

    @pytest.mark.asyncio
    async def test_non_object_file(self, tmp_path):
        path = tmp_path / "chats.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(PersistenceError):
            await JSONFileTranscriptStore(path).list_sessions()

    @pytest.mark.asyncio
    async def test_corrupt_record(self, tmp_path):
        path = tmp_path / "chats.json"
        path.write_text('{"chat_1": {"messages": [{"role": "robot"}]}}', encoding="utf-8")

        with pytest.raises(PersistenceError):
            await JSONFileTranscriptStore(path).load("chat_1")


class TestSQLiteStore:
    """Tests specific to the SQLite backend."""

    @pytest.mark.asyncio
    async def test_requires_connection(self, tmp_path):
        store = SQLiteTranscriptStore(tmp_path / "tabchat.db")

        with pytest.raises(PersistenceError):
            await store.save(make_record())

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        path = tmp_path / "tabchat.db"
        async with SQLiteTranscriptStore(path) as store:
            await store.save(make_record("chat_1", "a", "b", "c"))

        async with SQLiteTranscriptStore(path) as store:
            loaded = await store.load("chat_1")

        assert [m.content for m in loaded.messages] == ["a", "b", "c"]
        assert loaded.parameters.max_tokens == 100

    @pytest.mark.asyncio
    async def test_upgrades_chat_only_schema(self, tmp_path):
        """Test that a database without kind and prompt columns still loads and saves."""
        path = tmp_path / "tabchat.db"
        async with aiosqlite.connect(path) as db:
            await db.execute(
                "CREATE TABLE sessions (session_id TEXT PRIMARY KEY, parameters TEXT NOT NULL, "
                "updated_at TEXT NOT NULL)"
            )
            await db.execute(
                "INSERT INTO sessions VALUES (?, ?, ?)",
                ("old", ModelParameters(model="gpt-4o").model_dump_json(), "2024-01-01T00:00:00"),
            )
            await db.commit()

        async with SQLiteTranscriptStore(path) as store:
            old = await store.load("old")
            await store.save(SessionRecord(session_id="doc", kind=SessionKind.COMPLETE, prompt="text"))
            doc = await store.load("doc")

        assert old.kind is SessionKind.CHAT
        assert old.prompt == ""
        assert old.parameters.model == "gpt-4o"
        assert doc.kind is SessionKind.COMPLETE
        assert doc.prompt == "text"


class TestFactory:
    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_transcript_store("redis")

    def test_backend_types(self, tmp_path):
        assert create_transcript_store("memory").backend_type == "memory"
        assert create_transcript_store("json", path=tmp_path / "c.json").backend_type == "json"
        assert create_transcript_store("sqlite", path=tmp_path / "c.db").backend_type == "sqlite"


class TestSessionRecord:
    """Tests for converting between records and transcripts."""

    def test_to_transcript_restores_complete(self):
        record = SessionRecord(
            session_id="chat_1",
            messages=[
                StoredMessage(role=Role.USER, content="Hi"),
                StoredMessage(role=Role.ASSISTANT, content="He", status=MessageStatus.ABORTED),
            ],
        )

        transcript = record.to_transcript()

        assert [m.status for m in transcript] == [MessageStatus.COMPLETE, MessageStatus.COMPLETE]
        assert transcript.last.content == "He"

    def test_title(self):
        record = make_record("chat_1", "  First line\nsecond", "reply")
        assert record.title == "First line"
        assert SessionRecord(session_id="x").title == ""

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            SessionRecord(session_id="")

    def test_round_trip_through_transcript(self):
        transcript = Transcript([
            Message(role=Role.SYSTEM, content="sys"),
            Message(role=Role.USER, content="q"),
        ])
        record = SessionRecord(
            session_id="chat_1",
            messages=[StoredMessage(role=m.role, content=m.content) for m in transcript],
        )

        assert record.to_transcript().to_wire() == transcript.to_wire()


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_records_are_copied(self):
        store = InMemoryTranscriptStore()
        record = make_record()
        await store.save(record)
        record.messages.clear()

        loaded = await store.load("chat_1")
        loaded.messages.clear()

        assert len((await store.load("chat_1")).messages) == 2
