"""Shared fixtures: a fake FPL API behind httpx.MockTransport and an in-memory ledger."""

import asyncio
import re
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import httpx
import pytest

from config import Config
from errors import DuplicatePunishmentError, NotFoundError
from fpl_api.cache import TTLCache
from fpl_api.client import FPLAPIClient
from refresh.orchestrator import RefreshOrchestrator
from utils.retry import RetryPolicy

STANDINGS_RE = re.compile(r"/leagues-classic/(\d+)/standings/$")
HISTORY_RE = re.compile(r"/entry/(\d+)/history/$")


def make_config(**overrides) -> Config:
    values = dict(
        supabase_url="https://test.supabase.co",
        supabase_key="test-key",
        min_request_interval=0.0,
        max_requests_per_minute=10000,
        refresh_period_delay=0.0,
    )
    values.update(overrides)
    return Config(**values)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeFPL:
    """Serves canned FPL API payloads and records every request path."""

    def __init__(self, page_size: int = 50):
        self.page_size = page_size
        self.leagues: Dict[int, Tuple[str, List[Tuple[int, str, str]]]] = {}
        self.histories: Dict[int, Dict[int, int]] = {}
        self.current_gameweek = 1
        self.requests: List[str] = []
        self.failures: Dict[str, List] = {}

    def add_league(self, league_id: int, entries, name: str = "Test League"):
        """entries: iterable of (entry_id, player_name, entry_name)."""
        self.leagues[league_id] = (name, list(entries))

    def set_points(self, entry_id: int, points_by_gameweek: Dict[int, int]):
        self.histories[entry_id] = dict(points_by_gameweek)

    def fail(self, path_fragment: str, *errors):
        """Queue failures (HTTP status ints or exceptions) for requests whose path ends with path_fragment."""
        self.failures.setdefault(path_fragment, []).extend(errors)

    def count(self, path_fragment: str) -> int:
        return sum(1 for path in self.requests if path.endswith(path_fragment))

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)

        for fragment, queue in self.failures.items():
            if path.endswith(fragment) and queue:
                error = queue.pop(0)
                if isinstance(error, Exception):
                    raise error
                return httpx.Response(error, text="upstream failure")

        if path.endswith("/bootstrap-static/"):
            events = [
                {
                    "id": gw,
                    "is_current": gw == self.current_gameweek,
                    "finished": gw < self.current_gameweek,
                }
                for gw in range(1, 39)
            ]
            return httpx.Response(200, json={"events": events})

        match = STANDINGS_RE.search(path)
        if match:
            league_id = int(match.group(1))
            if league_id not in self.leagues:
                return httpx.Response(404, json={"detail": "Not found."})
            name, entries = self.leagues[league_id]
            page = int(request.url.params.get("page_standings", "1"))
            start = (page - 1) * self.page_size
            chunk = entries[start:start + self.page_size]
            results = [
                {"entry": entry_id, "player_name": player, "entry_name": team, "rank": start + i + 1}
                for i, (entry_id, player, team) in enumerate(chunk)
            ]
            return httpx.Response(200, json={
                "league": {"id": league_id, "name": name},
                "standings": {
                    "has_next": start + self.page_size < len(entries),
                    "page": page,
                    "results": results,
                },
            })

        match = HISTORY_RE.search(path)
        if match:
            entry_id = int(match.group(1))
            points = self.histories.get(entry_id, {})
            return httpx.Response(200, json={
                "current": [{"event": gw, "points": pts} for gw, pts in sorted(points.items())],
                "past": [],
                "chips": [],
            })

        return httpx.Response(404, json={"detail": "Not found."})

    def client(self, config: Config, cache: Optional[TTLCache] = None) -> FPLAPIClient:
        return FPLAPIClient(config, cache=cache, transport=httpx.MockTransport(self.handler))


class FakeLedger:
    """In-memory stand-in for SupabaseClient that enforces the unique triple."""

    def __init__(self):
        self.rows: Dict[str, dict] = {}
        self.leagues: Dict[int, str] = {}

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def create_punishment(self, punishment_data: dict) -> dict:
        key = (punishment_data["league_id"], punishment_data["player_id"], punishment_data["gameweek_id"])
        for row in self.rows.values():
            if (row["league_id"], row["player_id"], row["gameweek_id"]) == key:
                raise DuplicatePunishmentError(f"duplicate {key}")
        row = {
            "id": str(uuid.uuid4()),
            "completed_at": None,
            "created_at": self._now(),
            "updated_at": self._now(),
            **punishment_data,
        }
        self.rows[row["id"]] = row
        return dict(row)

    def get_punishment(self, league_id, player_id, gameweek_id):
        for row in self.rows.values():
            if (row["league_id"], row["player_id"], row["gameweek_id"]) == (league_id, player_id, gameweek_id):
                return dict(row)
        return None

    def get_punishment_by_id(self, punishment_id):
        row = self.rows.get(punishment_id)
        return dict(row) if row else None

    def get_punishments(self, league_id=None, player_id=None, gameweek_id=None, is_completed=None):
        rows = [
            dict(row) for row in self.rows.values()
            if (league_id is None or row["league_id"] == league_id)
            and (player_id is None or row["player_id"] == player_id)
            and (gameweek_id is None or row["gameweek_id"] == gameweek_id)
            and (is_completed is None or row["is_completed"] == is_completed)
        ]
        return sorted(rows, key=lambda r: (r["gameweek_id"], r["player_id"]))

    def set_punishment_completed(self, punishment_id, is_completed):
        row = self.rows.get(punishment_id)
        if row is None:
            raise NotFoundError(f"Punishment {punishment_id} not found")
        row["is_completed"] = is_completed
        row["completed_at"] = self._now() if is_completed else None
        row["updated_at"] = self._now()
        return dict(row)

    def delete_punishment(self, punishment_id):
        return self.rows.pop(punishment_id, None) is not None

    def delete_punishments_for_league(self, league_id):
        doomed = [pid for pid, row in self.rows.items() if row["league_id"] == league_id]
        for pid in doomed:
            del self.rows[pid]
        return len(doomed)

    def upsert_league(self, league_id, name):
        self.leagues[league_id] = name
        return [{"fpl_league_id": league_id, "name": name}]

    def triples(self, league_id=None):
        return {
            (row["league_id"], row["player_id"], row["gameweek_id"], row["distance_km"])
            for row in self.rows.values()
            if league_id is None or row["league_id"] == league_id
        }


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def fpl():
    return FakeFPL()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def sleeps():
    """Delays requested by the retry policy, in order."""
    return []


@pytest.fixture
def retry_policy(sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=60.0, sleep=fake_sleep)


@pytest.fixture
def orchestrator(config, fpl, ledger, retry_policy):
    orch = RefreshOrchestrator(
        config,
        fpl_client=fpl.client(config),
        db_client=ledger,
        retry_policy=retry_policy,
    )
    asyncio.run(orch.initialize())
    return orch


@pytest.fixture
def three_player_league(fpl):
    """League 100 with Alice, Bob and Carl."""
    fpl.add_league(100, [
        (1, "Alice", "Alice FC"),
        (2, "Bob", "Bob United"),
        (3, "Carl", "Carl City"),
    ], name="Punishment League")
    return fpl
