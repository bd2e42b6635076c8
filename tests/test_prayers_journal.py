import pytest
from fastapi import HTTPException

import api.main as main_mod
from api import journal, prayers
from api.models import JournalCreateRequest, JournalUpdateRequest


ALICE = {"user_id": "u-1", "email": "alice@example.com", "is_admin": False}
BOB = {"user_id": "u-2", "email": "bob@example.com", "is_admin": False}


class PrayerCursor:
    """Answers the three statements pray_for_request issues from an in-memory table."""

    def __init__(self, db):
        self.db = db
        self.result = None
        self.rowcount = 0

    def execute(self, query, params=None):
        if query.lstrip().startswith("SELECT"):
            prayer_id, user_id = params
            row = self.db["requests"].get(prayer_id)
            visible = row is not None and (row["shared"] or row["user_id"] == user_id)
            self.result = {"id": prayer_id, "prayer_count": row["prayer_count"]} if visible else None
        elif "INSERT INTO prayer_interactions" in query:
            if params in self.db["interactions"]:
                self.rowcount = 0
            else:
                self.db["interactions"].add(params)
                self.rowcount = 1
        elif "UPDATE prayer_requests" in query:
            row = self.db["requests"][params[0]]
            row["prayer_count"] += 1
            self.result = {"prayer_count": row["prayer_count"]}

    def fetchone(self):
        return self.result

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConn:
    def __init__(self, db=None):
        self.db = db
        self.commits = 0

    def cursor(self, cursor_factory=None):
        return PrayerCursor(self.db)

    def commit(self):
        self.commits += 1

    def rollback(self):
        return None


@pytest.fixture
def prayer_db():
    return {
        "requests": {
            "p-shared": {"user_id": "u-1", "shared": True, "prayer_count": 0},
            "p-private": {"user_id": "u-1", "shared": False, "prayer_count": 0},
        },
        "interactions": set(),
    }


@pytest.fixture(autouse=True)
def quiet_events(monkeypatch):
    monkeypatch.setattr(main_mod, "log_api_event", lambda *_args: None)


def test_pray_once_per_user(prayer_db):
    conn = FakeConn(prayer_db)
    first = prayers.pray_for_request(conn, "u-2", "p-shared")
    again = prayers.pray_for_request(conn, "u-2", "p-shared")
    other = prayers.pray_for_request(conn, "u-3", "p-shared")

    assert first == {"already_prayed": False, "prayer_count": 1}
    assert again == {"already_prayed": True, "prayer_count": 1}
    assert other == {"already_prayed": False, "prayer_count": 2}


def test_pray_route_hides_private_requests_of_others(prayer_db):
    conn = FakeConn(prayer_db)
    with pytest.raises(HTTPException) as exc:
        main_mod.pray_for_request("p-private", current_user=BOB, conn=conn)
    assert exc.value.status_code == 404
    assert prayer_db["requests"]["p-private"]["prayer_count"] == 0

    own = main_mod.pray_for_request("p-private", current_user=ALICE, conn=conn)
    assert own["already_prayed"] is False
    assert conn.commits == 1


def test_create_journal_requires_content():
    with pytest.raises(HTTPException) as exc:
        main_mod.create_journal(JournalCreateRequest(content="   "), current_user=ALICE, conn=FakeConn())
    assert exc.value.status_code == 400


def test_journal_entries_are_owner_scoped(monkeypatch):
    entries = {"j-1": {"id": "j-1", "user_id": "u-1", "content": "Grateful today"}}

    def fake_get_entry(_conn, user_id, entry_id):
        entry = entries.get(entry_id)
        return entry if entry and entry["user_id"] == user_id else None

    monkeypatch.setattr(journal, "get_entry", fake_get_entry)

    assert main_mod.get_journal("j-1", current_user=ALICE, conn=FakeConn())["content"] == "Grateful today"
    with pytest.raises(HTTPException) as exc:
        main_mod.get_journal("j-1", current_user=BOB, conn=FakeConn())
    assert exc.value.status_code == 404

    conn = FakeConn()
    with pytest.raises(HTTPException) as exc:
        main_mod.update_journal("j-1", JournalUpdateRequest(title="mine now"), current_user=BOB, conn=conn)
    assert exc.value.status_code == 404
    assert conn.commits == 0


def test_update_journal_rejects_blank_content():
    with pytest.raises(HTTPException) as exc:
        main_mod.update_journal("j-1", JournalUpdateRequest(content=" "), current_user=ALICE, conn=FakeConn())
    assert exc.value.status_code == 400


def test_delete_journal_of_another_user_is_404(monkeypatch):
    monkeypatch.setattr(journal, "delete_entry", lambda _c, user_id, _e: user_id == "u-1")
    with pytest.raises(HTTPException) as exc:
        main_mod.delete_journal("j-1", current_user=BOB, conn=FakeConn())
    assert exc.value.status_code == 404
    assert main_mod.delete_journal("j-1", current_user=ALICE, conn=FakeConn()) == {"deleted": True}
