"""Tests for the SQLite database module."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from convo_search.errors import DatabaseError, SearchError, StorageInitError
from convo_search.indexer.database import Database
from convo_search.indexer.models import IndexedMessage, SearchOptions, ToolOperation
from convo_search.search.query import build_fts_query, parse_query

BASE_TIME = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)


def make_message(
    uuid: str,
    text: str,
    conversation_id: str = "conv-1",
    project_path: str = "/Users/jane/code/api",
    minutes: int = 0,
    type: str = "user",
    tool_operations: list[ToolOperation] | None = None,
) -> IndexedMessage:
    return IndexedMessage(
        id=f"{conversation_id}_{uuid}",
        conversation_id=conversation_id,
        project_path=project_path,
        project_name=project_path.rsplit("/", 1)[-1],
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        type=type,
        content=text,
        raw_content={"content": text},
        tool_operations=tool_operations or [],
        searchable_text=text.lower(),
        message_uuid=uuid,
    )


@pytest.fixture
def db():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        database = Database(db_path)
        database.initialize()
        yield database
        database.close()


@pytest.fixture
def conversation(db: Database) -> list[IndexedMessage]:
    """Five messages of one conversation, one minute apart."""
    messages = [make_message(f"m{i}", f"message number {i}", minutes=i) for i in range(5)]
    for message in messages:
        db.insert_message(message)
    return messages


class TestDatabaseInitialization:
    def test_creates_database_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "test.db"
            db = Database(db_path)
            db.initialize()
            assert db_path.exists()
            db.close()

    def test_creates_parent_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "nested" / "dir" / "test.db"
            db = Database(db_path)
            db.initialize()
            assert db_path.exists()
            db.close()

    def test_initialize_is_repeatable(self, db: Database):
        db.initialize()
        assert db.get_stats().messages == 0

    def test_corrupt_file_fails_fast(self, tmp_path: Path):
        db_path = tmp_path / "corrupt.db"
        db_path.write_bytes(b"this is not a sqlite database " * 200)
        with pytest.raises(StorageInitError) as exc_info:
            Database(db_path).initialize()
        assert exc_info.value.db_path == str(db_path)
        assert exc_info.value.code == "DATABASE_ERROR"

    def test_unusable_path_fails_fast(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        with pytest.raises(StorageInitError):
            Database(blocker / "test.db").initialize()


class TestMessageOperations:
    def test_insert_and_get(self, db: Database):
        op = ToolOperation(name="Write", file_paths=["/src/auth.js"])
        db.insert_message(make_message("u1", "Hello", tool_operations=[op]))

        message = db.get_message("conv-1_u1")
        assert message is not None
        assert message.content == "Hello"
        assert message.timestamp == BASE_TIME
        assert message.raw_content == {"content": "Hello"}
        assert message.tool_operations == [op]

    def test_get_missing(self, db: Database):
        assert db.get_message("nope") is None

    def test_upsert_keeps_one_row(self, db: Database):
        db.insert_message(make_message("u1", "first version"))
        db.insert_message(make_message("u1", "second version"))

        stats = db.get_stats()
        assert stats.messages == 1
        assert stats.fts_rows == 1
        assert db.get_message("conv-1_u1").content == "second version"
        assert db.search(SearchOptions(query="first")) == []
        assert len(db.search(SearchOptions(query="second"))) == 1

    def test_insert_failure_names_the_message(self, db: Database):
        bad = make_message("u1", "Hello")
        bad.raw_content = object()
        with pytest.raises(DatabaseError, match="conv-1_u1"):
            db.insert_message(bad)

    def test_clear_project(self, db: Database):
        db.insert_message(make_message("u1", "one", project_path="/a"))
        db.insert_message(make_message("u2", "two", project_path="/b"))

        assert db.clear_project("/a") == 1
        stats = db.get_stats()
        assert stats.messages == 1
        assert stats.fts_rows == 1

    def test_clear(self, db: Database, conversation):
        db.update_indexing_metadata("/x.jsonl", 10, 5)
        db.clear()
        stats = db.get_stats()
        assert (stats.messages, stats.fts_rows, stats.files) == (0, 0, 0)


class TestConversationPaging:
    def test_forward_from_start(self, db: Database, conversation):
        messages = db.get_conversation_messages("conv-1", limit=2)
        assert [m.message_uuid for m in messages] == ["m0", "m1"]

    def test_forward_with_offset(self, db: Database, conversation):
        messages = db.get_conversation_messages("conv-1", limit=2, start_from=3)
        assert [m.message_uuid for m in messages] == ["m3", "m4"]

    def test_last_n(self, db: Database, conversation):
        messages = db.get_conversation_messages("conv-1", limit=3, start_from=-1)
        assert [m.message_uuid for m in messages] == ["m2", "m3", "m4"]

    def test_negative_offset_counts_from_the_end(self, db: Database, conversation):
        messages = db.get_conversation_messages("conv-1", limit=2, start_from=-2)
        assert [m.message_uuid for m in messages] == ["m2", "m3"]

    def test_minus_one_matches_last_forward_offset(self, db: Database, conversation):
        from_end = db.get_conversation_messages("conv-1", limit=1, start_from=-1)
        from_start = db.get_conversation_messages("conv-1", limit=1, start_from=4)
        assert [m.id for m in from_end] == [m.id for m in from_start]

    def test_unknown_conversation(self, db: Database, conversation):
        assert db.get_conversation_messages("other", limit=5) == []


class TestMessageContext:
    def test_middle_message(self, db: Database, conversation):
        context = db.get_message_context(conversation[2], 2)
        assert [m.message_uuid for m in context.before] == ["m0", "m1"]
        assert [m.message_uuid for m in context.after] == ["m3", "m4"]

    def test_bounded_by_size(self, db: Database, conversation):
        context = db.get_message_context(conversation[2], 1)
        assert [m.message_uuid for m in context.before] == ["m1"]
        assert [m.message_uuid for m in context.after] == ["m3"]

    def test_first_message(self, db: Database, conversation):
        context = db.get_message_context(conversation[0], 2)
        assert context.before == []
        assert [m.message_uuid for m in context.after] == ["m1", "m2"]

    def test_other_conversations_are_ignored(self, db: Database, conversation):
        db.insert_message(make_message("x1", "elsewhere", conversation_id="conv-2", minutes=1))
        context = db.get_message_context(conversation[2], 5)
        assert all(m.conversation_id == "conv-1" for m in context.before + context.after)


class TestProjects:
    def test_get_projects(self, db: Database):
        db.insert_message(make_message("u1", "one", project_path="/code/web"))
        db.insert_message(make_message("u2", "two", project_path="/code/web"))
        db.insert_message(make_message("u3", "three", project_path="/code/api"))

        projects = db.get_projects()
        assert [(p.name, p.message_count) for p in projects] == [("api", 1), ("web", 2)]
        assert projects[0].path == "/code/api"


class TestIndexingMetadata:
    def test_is_file_indexed_compares_size(self, db: Database):
        assert not db.is_file_indexed("/x.jsonl", 100)
        db.update_indexing_metadata("/x.jsonl", 100, 3)
        assert db.is_file_indexed("/x.jsonl", 100)
        assert not db.is_file_indexed("/x.jsonl", 120)
        assert not db.is_file_indexed("/x.jsonl", 80)

    def test_get_indexing_metadata(self, db: Database):
        db.update_indexing_metadata("/x.jsonl", 100, 3)
        metadata = db.get_indexing_metadata("/x.jsonl")
        assert metadata.file_size == 100
        assert metadata.message_count == 3
        assert metadata.last_indexed.tzinfo is not None
        assert db.get_indexing_metadata("/y.jsonl") is None


class TestSearch:
    @pytest.fixture
    def populated(self, db: Database) -> Database:
        db.insert_message(
            make_message("u1", "Fix the CORS error", project_path="/code/billing-service")
        )
        db.insert_message(
            make_message(
                "u2",
                "CORS preflight fixed",
                conversation_id="conv-2",
                project_path="/code/webapp",
                minutes=60 * 24,
            )
        )
        db.insert_message(
            make_message(
                "u3",
                "ran npm test for cors",
                conversation_id="conv-2",
                project_path="/code/webapp",
                minutes=60 * 24 + 1,
                type="tool_use",
            )
        )
        db.insert_message(make_message("u4", "unrelated chatter", minutes=5))
        return db

    def test_basic_match(self, populated: Database):
        results = populated.search(SearchOptions(query="cors"))
        assert {r.message.message_uuid for r in results} == {"u1", "u2", "u3"}

    def test_highlight_markers(self, populated: Database):
        [result] = populated.search(SearchOptions(query="preflight"))
        assert result.highlights
        assert "<mark>preflight</mark>" in result.highlights[0]

    def test_score_is_positive(self, populated: Database):
        results = populated.search(SearchOptions(query="cors"))
        assert all(r.score > 0 for r in results)

    def test_conversation_file(self, populated: Database):
        [result] = populated.search(SearchOptions(query="preflight"))
        assert result.conversation_file == "/code/webapp/conv-2.jsonl"

    def test_tool_operations_are_searchable(self, db: Database):
        op = ToolOperation(name="Write", file_paths=["/src/auth.js"])
        db.insert_message(make_message("u1", "done", tool_operations=[op]))
        assert len(db.search(SearchOptions(query='write "auth.js"'))) == 1

    def test_project_filter_is_case_insensitive_substring(self, populated: Database):
        results = populated.search(SearchOptions(query="cors", project_path="BILLING"))
        assert [r.message.message_uuid for r in results] == ["u1"]

    def test_exclude_project(self, populated: Database):
        results = populated.search(SearchOptions(query="cors", exclude_project_path="billing"))
        assert {r.message.message_uuid for r in results} == {"u2", "u3"}

    def test_conversation_filters(self, populated: Database):
        included = populated.search(SearchOptions(query="cors", conversation_id="conv-2"))
        excluded = populated.search(SearchOptions(query="cors", exclude_conversation_id="conv-2"))
        assert {r.message.message_uuid for r in included} == {"u2", "u3"}
        assert {r.message.message_uuid for r in excluded} == {"u1"}

    def test_date_range_is_inclusive(self, populated: Database):
        results = populated.search(
            SearchOptions(
                query="cors",
                date_from=BASE_TIME,
                date_to=BASE_TIME,
            )
        )
        assert [r.message.message_uuid for r in results] == ["u1"]

    def test_date_from_only(self, populated: Database):
        results = populated.search(
            SearchOptions(query="cors", date_from=BASE_TIME + timedelta(hours=1))
        )
        assert {r.message.message_uuid for r in results} == {"u2", "u3"}

    def test_message_type(self, populated: Database):
        results = populated.search(SearchOptions(query="cors", message_type="tool_use"))
        assert [r.message.message_uuid for r in results] == ["u3"]

    def test_limit_and_offset(self, populated: Database):
        everything = populated.search(SearchOptions(query="cors"))
        first = populated.search(SearchOptions(query="cors", limit=1))
        rest = populated.search(SearchOptions(query="cors", offset=1))
        assert len(first) == 1
        assert len(rest) == 2
        assert [r.message.id for r in first + rest] == [r.message.id for r in everything]

    def test_context_is_fetched_on_request(self, populated: Database):
        [without] = populated.search(SearchOptions(query="preflight"))
        [with_context] = populated.search(
            SearchOptions(query="preflight", include_context=True, context_size=2)
        )
        assert without.context.after == []
        assert [m.message_uuid for m in with_context.context.after] == ["u3"]

    def test_context_ignores_the_search_predicate(self, populated: Database):
        [result] = populated.search(
            SearchOptions(query="preflight", include_context=True, context_size=2)
        )
        assert "preflight" not in result.context.after[0].content

    def test_context_size_zero(self, populated: Database):
        [result] = populated.search(
            SearchOptions(query="chatter", include_context=True, context_size=0)
        )
        assert result.context.before == []
        assert result.context.after == []

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("CORS preflight?", {"u2"}),
            ("what's the cors error?", {"u1"}),
            ("cors: (fixed)", {"u2"}),
            ('does "npm test" run?', set()),
            ('ran "npm test" (cors)', {"u3"}),
        ],
    )
    def test_interpreted_queries_run(self, populated: Database, text, expected):
        fts_query = build_fts_query(parse_query(text).search_query)
        results = populated.search(SearchOptions(query=fts_query))
        assert {r.message.message_uuid for r in results} == expected

    def test_malformed_query_raises(self, populated: Database):
        with pytest.raises(SearchError) as exc_info:
            populated.search(SearchOptions(query='"unterminated'))
        assert exc_info.value.query == '"unterminated'

    def test_no_match(self, populated: Database):
        assert populated.search(SearchOptions(query="kubernetes")) == []
