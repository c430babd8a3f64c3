"""Tests for the JSON importer and the SQLite-backed session source."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from xobcat.server.db import create_session_factory, get_engine, init_db
from xobcat.server.models import ChatSessionRow
from xobcat.sources.database import DatabaseSessionSource, import_sessions, load_sessions_json

START = datetime(2025, 6, 2, 13, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db_factory():
    engine = get_engine("sqlite://")
    init_db(engine)
    return create_session_factory(engine)


def _export(tmp_path: Path, payload: object) -> Path:
    path = tmp_path / "sessions.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class TestLoadSessionsJson:
    def test_list_payload(self, tmp_path: Path) -> None:
        path = _export(
            tmp_path,
            [
                {
                    "session_id": "abc",
                    "start_time": "2025-06-02T13:05:00Z",
                    "end_time": "2025-06-02T13:09:00Z",
                    "messages": [
                        {"timestamp": "2025-06-02T13:05:00Z", "message_type": "bot", "message": "Hi"},
                        {"timestamp": "2025-06-02T13:05:10Z", "message_type": "user", "message": "Claim?"},
                    ],
                }
            ],
        )
        (session,) = load_sessions_json(path)
        assert session.session_id == "abc"
        assert session.message_count == 2
        assert session.user_message_count == 1
        assert session.duration_seconds == 240

    def test_wrapped_payload(self, tmp_path: Path) -> None:
        path = _export(
            tmp_path,
            {"sessions": [{"session_id": "x", "start_time": "2025-06-02T13:00:00", "end_time": "2025-06-02T13:01:00"}]},
        )
        (session,) = load_sessions_json(path)
        assert session.start_time.tzinfo is not None

    def test_bad_payload(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="expected a list"):
            load_sessions_json(_export(tmp_path, {"sessions": "nope"}))


class TestImport:
    def test_import_and_dedupe(self, db_factory, make_sessions) -> None:
        sessions = make_sessions(5)
        db = db_factory()
        try:
            assert import_sessions(db, sessions) == 5
            assert import_sessions(db, sessions + make_sessions(2, first=10)) == 2
            assert db.query(ChatSessionRow).count() == 7
        finally:
            db.close()

    def test_messages_keep_order(self, db_factory, make_one) -> None:
        db = db_factory()
        try:
            import_sessions(db, [make_one(1, n_messages=6)])
            row = db.query(ChatSessionRow).one()
            assert [m.position for m in row.messages] == list(range(6))
            assert row.messages[0].message_type == "bot"
        finally:
            db.close()


class TestDatabaseSessionSource:
    @pytest.mark.asyncio
    async def test_half_open_window(self, db_factory, make_one) -> None:
        db = db_factory()
        try:
            import_sessions(
                db,
                [
                    make_one(1, offset_minutes=-1),
                    make_one(2, offset_minutes=0),
                    make_one(3, offset_minutes=179),
                    make_one(4, offset_minutes=180),
                ],
            )
        finally:
            db.close()

        source = DatabaseSessionSource(db_factory)
        found = await source.fetch_sessions(START, START + timedelta(hours=3))

        assert [s.session_id for s in found] == ["s-0002", "s-0003"]
        assert found[0].start_time == START
        assert found[0].start_time.tzinfo is not None
        assert len(found[0].messages) == 4
        assert found[0].tags == ["Claim Status", "", ""]

    @pytest.mark.asyncio
    async def test_query_runs_off_the_event_loop(self, db_factory, make_one) -> None:
        db = db_factory()
        try:
            import_sessions(db, [make_one(1, offset_minutes=5)])
        finally:
            db.close()

        threads: list[int] = []

        def tracking_factory():
            threads.append(threading.get_ident())
            return db_factory()

        source = DatabaseSessionSource(tracking_factory)
        found = await source.fetch_sessions(START, START + timedelta(hours=1))

        assert [s.session_id for s in found] == ["s-0001"]
        assert threads and threads[0] != threading.get_ident()
