"""Tests for SupabaseClient error translation and query shapes, with the Supabase SDK faked out."""

from types import SimpleNamespace

import httpx
import pytest
from postgrest.exceptions import APIError

import database.supabase_client as supabase_module
from database.supabase_client import SupabaseClient
from errors import DuplicatePunishmentError, NotFoundError, PersistenceError

from conftest import make_config


class FakeQuery:
    """Chainable stand-in for a PostgREST request builder."""

    def __init__(self, table, result=None, error=None):
        self.table = table
        self.result = result if result is not None else []
        self.error = error
        self.calls = []

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return record

    def execute(self):
        if self.error is not None:
            raise self.error
        return SimpleNamespace(data=self.result)


class PagedQuery(FakeQuery):
    """Serves the slice chosen by .range(), never more than max_rows at once like PostgREST."""

    def __init__(self, table, rows, max_rows=1000):
        super().__init__(table)
        self.rows = rows
        self.max_rows = max_rows

    def execute(self):
        _, (start, end), _ = [call for call in self.calls if call[0] == "range"][-1]
        return SimpleNamespace(data=self.rows[start:min(end + 1, start + self.max_rows)])


class FakeSupabase:
    def __init__(self):
        self.queries = []
        self.next_result = None
        self.next_error = None
        self.stored_rows = None

    def table(self, name):
        if self.stored_rows is not None:
            query = PagedQuery(name, self.stored_rows)
        else:
            query = FakeQuery(name, result=self.next_result, error=self.next_error)
        self.queries.append(query)
        return query


@pytest.fixture
def fake_supabase(monkeypatch):
    fake = FakeSupabase()
    created = {}

    def fake_create_client(url, key):
        created["url"] = url
        created["key"] = key
        return fake

    monkeypatch.setattr(supabase_module, "create_client", fake_create_client)
    fake.created = created
    return fake


def api_error(code, message="boom"):
    return APIError({"message": message, "code": code, "hint": None, "details": None})


def test_prefers_service_key(fake_supabase):
    SupabaseClient(make_config(supabase_service_key="service"))
    assert fake_supabase.created == {"url": "https://test.supabase.co", "key": "service"}


def test_create_returns_inserted_row(fake_supabase):
    fake_supabase.next_result = [{"id": "abc", "league_id": 1}]
    client = SupabaseClient(make_config())

    row = client.create_punishment({"league_id": 1, "player_id": 2, "gameweek_id": 3})

    assert row == {"id": "abc", "league_id": 1}
    query = fake_supabase.queries[-1]
    assert query.table == "punishments"
    assert query.calls[0][0] == "insert"


def test_unique_violation_becomes_duplicate(fake_supabase):
    fake_supabase.next_error = api_error("23505", "duplicate key value")
    client = SupabaseClient(make_config())

    with pytest.raises(DuplicatePunishmentError):
        client.create_punishment({"league_id": 1, "player_id": 2, "gameweek_id": 3})


def test_other_api_errors_become_persistence_errors(fake_supabase):
    fake_supabase.next_error = api_error("42P01", "relation does not exist")
    client = SupabaseClient(make_config())

    with pytest.raises(PersistenceError) as exc_info:
        client.get_punishments(league_id=1)
    assert not isinstance(exc_info.value, DuplicatePunishmentError)


def test_connection_errors_become_persistence_errors(fake_supabase):
    fake_supabase.next_error = httpx.ConnectError("refused")
    client = SupabaseClient(make_config())

    with pytest.raises(PersistenceError):
        client.delete_punishments_for_league(1)


def test_empty_insert_result_is_an_error(fake_supabase):
    fake_supabase.next_result = []
    client = SupabaseClient(make_config())

    with pytest.raises(PersistenceError):
        client.create_punishment({"league_id": 1, "player_id": 2, "gameweek_id": 3})


def test_get_punishment_filters_on_triple(fake_supabase):
    client = SupabaseClient(make_config())

    assert client.get_punishment(1, 2, 3) is None

    calls = fake_supabase.queries[-1].calls
    assert ("eq", ("league_id", 1), {}) in calls
    assert ("eq", ("player_id", 2), {}) in calls
    assert ("eq", ("gameweek_id", 3), {}) in calls


def test_get_punishments_applies_only_given_filters(fake_supabase):
    fake_supabase.next_result = [{"id": "a"}]
    client = SupabaseClient(make_config())

    assert client.get_punishments(league_id=7, is_completed=False) == [{"id": "a"}]

    calls = fake_supabase.queries[-1].calls
    eqs = [args for name, args, _ in calls if name == "eq"]
    orders = [args for name, args, _ in calls if name == "order"]
    assert eqs == [("league_id", 7), ("is_completed", False)]
    assert orders == [("gameweek_id",), ("player_id",), ("id",)]


@pytest.mark.parametrize("stored, pages", [(2500, 3), (2000, 3), (0, 1)])
def test_get_punishments_pages_past_the_row_cap(fake_supabase, stored, pages):
    rows = [{"id": str(n), "player_id": n % 50, "gameweek_id": n // 50 + 1} for n in range(stored)]
    fake_supabase.stored_rows = rows
    client = SupabaseClient(make_config())

    result = client.get_punishments(league_id=7)

    assert result == rows
    ranges = [args for query in fake_supabase.queries for name, args, _ in query.calls if name == "range"]
    assert ranges == [(n * 1000, n * 1000 + 999) for n in range(pages)]


def test_completion_payload(fake_supabase):
    fake_supabase.next_result = [{"id": "a", "is_completed": True}]
    client = SupabaseClient(make_config())

    client.set_punishment_completed("a", True)
    payload = fake_supabase.queries[-1].calls[0][1][0]
    assert payload["is_completed"] is True
    assert payload["completed_at"] is not None

    client.set_punishment_completed("a", False)
    payload = fake_supabase.queries[-1].calls[0][1][0]
    assert payload["is_completed"] is False
    assert payload["completed_at"] is None


def test_completion_of_missing_row(fake_supabase):
    fake_supabase.next_result = []
    client = SupabaseClient(make_config())

    with pytest.raises(NotFoundError):
        client.set_punishment_completed("missing", True)


def test_delete_counts(fake_supabase):
    client = SupabaseClient(make_config())

    fake_supabase.next_result = [{"id": "a"}, {"id": "b"}]
    assert client.delete_punishments_for_league(7) == 2

    fake_supabase.next_result = []
    assert client.delete_punishment("a") is False


def test_upsert_league_conflicts_on_fpl_id(fake_supabase):
    client = SupabaseClient(make_config())

    client.upsert_league(7, "Office")

    query = fake_supabase.queries[-1]
    name, args, kwargs = query.calls[0]
    assert query.table == "leagues"
    assert name == "upsert"
    assert args[0]["fpl_league_id"] == 7
    assert kwargs == {"on_conflict": "fpl_league_id"}
