"""
FPL API Client with rate limiting, caching and tolerant parsing.

Handles all communication with the Fantasy Premier League API. Every call is a
single attempt: hard failures surface as UpstreamUnavailable and are retried
by utils.retry.RetryPolicy at the orchestration layer.
"""

import asyncio
import logging
import random
import time
from typing import Any, Dict, List, Optional

import httpx
from asyncio_throttle import Throttler

from config import Config
from errors import (
    DataShapeError,
    NotFoundError,
    UpstreamRateLimited,
    UpstreamUnavailable,
)
from fpl_api.cache import TTLCache
from fpl_api.models import GameweekPoints, LeagueStandings, Participant

logger = logging.getLogger(__name__)

# 5xx responses are worth retrying; other 4xx are not
RETRYABLE_STATUS_CODES = {500, 502, 503, 504}


def _require_list(container: Any, key: str) -> List[Any]:
    if not isinstance(container, dict):
        raise DataShapeError(f"expected object holding '{key}', got {type(container).__name__}")
    value = container.get(key)
    if not isinstance(value, list):
        raise DataShapeError(f"missing '{key}' array")
    return value


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def parse_standings_page(league_id: int, data: Any) -> Dict[str, Any]:
    """
    Normalize one standings page.

    Returns:
        Dict with league_name, participants (list of Participant) and has_next
    """
    league_name = ""
    if isinstance(data, dict) and isinstance(data.get("league"), dict):
        league_name = data["league"].get("name") or ""
    if not league_name:
        logger.warning("Standings payload missing league name", extra={"league_id": league_id})
        league_name = f"League {league_id}"

    standings = data.get("standings") if isinstance(data, dict) else None
    try:
        results = _require_list(standings, "results")
    except DataShapeError as e:
        logger.warning("Standings payload malformed, using empty standings", extra={
            "league_id": league_id,
            "error": str(e)
        })
        return {"league_name": league_name, "participants": [], "has_next": False}

    participants: List[Participant] = []
    for row in results:
        entry_id = _as_int(row.get("entry")) if isinstance(row, dict) else 0
        if entry_id <= 0:
            logger.warning("Skipping standings row without entry id", extra={
                "league_id": league_id,
                "row": row
            })
            continue
        participants.append(Participant(
            entry_id=entry_id,
            player_name=row.get("player_name") or "Unknown Player",
            entry_name=row.get("entry_name") or "Unknown Team",
            rank=_as_int(row.get("rank")),
        ))

    return {
        "league_name": league_name,
        "participants": participants,
        "has_next": bool(standings.get("has_next", False)),
    }


def parse_entry_history(entry_id: int, data: Any) -> List[GameweekPoints]:
    """Normalize /entry/{id}/history/ into one GameweekPoints per recorded gameweek."""
    try:
        current = _require_list(data, "current")
    except DataShapeError as e:
        logger.warning("Entry history malformed, using empty history", extra={
            "entry_id": entry_id,
            "error": str(e)
        })
        return []

    history: List[GameweekPoints] = []
    for row in current:
        gameweek = _as_int(row.get("event")) if isinstance(row, dict) else 0
        if gameweek <= 0:
            logger.warning("Skipping history row without event", extra={
                "entry_id": entry_id,
                "row": row
            })
            continue
        history.append(GameweekPoints(gameweek=gameweek, points=_as_int(row.get("points"))))
    return history


def parse_current_gameweek(data: Any) -> int:
    """
    Pick the current gameweek from bootstrap-static events.

    The event flagged is_current wins; otherwise the latest finished (or
    is_previous) event; otherwise 0, meaning the season hasn't started.
    """
    try:
        events = _require_list(data, "events")
    except DataShapeError as e:
        logger.warning("Bootstrap payload malformed, assuming no gameweeks", extra={"error": str(e)})
        return 0

    finished = []
    for event in events:
        if not isinstance(event, dict):
            continue
        event_id = _as_int(event.get("id"))
        if event_id <= 0:
            continue
        if event.get("is_current"):
            return event_id
        if event.get("finished") or event.get("is_previous"):
            finished.append(event_id)

    return max(finished) if finished else 0


class FPLAPIClient:
    """Client for interacting with the FPL API."""

    def __init__(
        self,
        config: Config,
        cache: Optional[TTLCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        self.base_url = config.fpl_api_base_url
        self.max_standings_pages = config.max_standings_pages
        self.cache = cache if cache is not None else TTLCache(ttl_seconds=config.cache_ttl)

        # Rate limiting: max N req/min, min interval between requests
        self.throttler = Throttler(
            rate_limit=config.max_requests_per_minute,
            period=60.0
        )
        self.min_interval = config.min_request_interval
        self.last_request_time = 0.0

        self.headers = {
            "User-Agent": config.user_agent,
            "Accept": "application/json",
        }
        self.client = httpx.AsyncClient(
            timeout=config.request_timeout,
            follow_redirects=True,
            headers=self.headers,
            transport=transport,
        )

    async def _wait_for_rate_limit(self):
        """Wait to respect rate limiting."""
        await self.throttler.acquire()

        current_time = time.time()
        time_since_last = current_time - self.last_request_time
        if time_since_last < self.min_interval:
            wait_time = self.min_interval - time_since_last
            # Add jitter (±25%)
            jitter = wait_time * 0.25 * (random.random() * 2 - 1)
            await asyncio.sleep(wait_time + jitter)

        self.last_request_time = time.time()

    async def _get_json(self, endpoint: str) -> Any:
        """
        Make one GET request and decode its JSON body.

        Args:
            endpoint: API endpoint path

        Returns:
            Decoded JSON, or None if the body is not valid JSON

        Raises:
            UpstreamUnavailable: Timeout, transport error, blocked or non-success status
            UpstreamRateLimited: HTTP 429
            NotFoundError: HTTP 404
        """
        url = f"{self.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

        await self._wait_for_rate_limit()

        try:
            response = await self.client.get(url)
        except httpx.TimeoutException as e:
            logger.warning("Timeout from FPL API", extra={"endpoint": endpoint})
            raise UpstreamUnavailable(
                f"Request timeout after {self.config.request_timeout}s: {endpoint}",
                timeout=True
            ) from e
        except httpx.TransportError as e:
            logger.warning("Transport error from FPL API", extra={
                "endpoint": endpoint,
                "error": str(e)
            })
            raise UpstreamUnavailable(f"Transport error for {endpoint}: {e}") from e

        status_code = response.status_code
        if not response.is_success:
            error_text = response.text[:500]
            if status_code == 404:
                raise NotFoundError(f"FPL API has no resource at {endpoint}")
            if status_code == 429:
                retry_after = response.headers.get("Retry-After")
                logger.warning("Rate limited by FPL API", extra={
                    "endpoint": endpoint,
                    "retry_after": retry_after
                })
                raise UpstreamRateLimited(
                    f"Rate limited on {endpoint}",
                    retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None
                )
            retryable = status_code in RETRYABLE_STATUS_CODES
            logger.error("Error status from FPL API", extra={
                "endpoint": endpoint,
                "status_code": status_code,
                "retryable": retryable,
                "error": error_text
            })
            raise UpstreamUnavailable(
                f"HTTP error {status_code} for {endpoint}: {error_text}",
                status_code=status_code,
                retryable=retryable
            )

        # HTML instead of JSON means the request was blocked, not that the data is empty
        content_type = response.headers.get("content-type", "").lower()
        if "text/html" in content_type:
            logger.error("API returned HTML (blocking?)", extra={
                "url": str(response.url),
                "status_code": status_code
            })
            raise UpstreamUnavailable(
                f"FPL API returned HTML instead of JSON for {endpoint}",
                status_code=status_code
            )

        try:
            return response.json()
        except ValueError as e:
            logger.warning("JSON parse failed, treating body as empty", extra={
                "endpoint": endpoint,
                "error": str(e),
                "response_preview": response.text[:200]
            })
            return None

    async def get_league_standings(self, league_id: int) -> LeagueStandings:
        """
        Get classic league standings, following pagination.

        Args:
            league_id: FPL league ID

        Returns:
            LeagueStandings with participants in rank order
        """
        async def load() -> LeagueStandings:
            league_name = f"League {league_id}"
            participants: List[Participant] = []
            seen = set()
            page = 1
            while True:
                data = await self._get_json(
                    f"/leagues-classic/{league_id}/standings/?page_standings={page}"
                )
                parsed = parse_standings_page(league_id, data)
                if page == 1:
                    league_name = parsed["league_name"]
                for participant in parsed["participants"]:
                    if participant.entry_id not in seen:
                        seen.add(participant.entry_id)
                        participants.append(participant)
                if not parsed["has_next"]:
                    break
                if page >= self.max_standings_pages:
                    logger.warning("Standings page cap reached", extra={
                        "league_id": league_id,
                        "pages": page
                    })
                    break
                page += 1

            logger.info("League standings fetched", extra={
                "league_id": league_id,
                "participants_count": len(participants),
                "pages": page
            })
            return LeagueStandings(
                league_id=league_id,
                league_name=league_name,
                participants=participants
            )

        return await self.cache.get(("standings", league_id), load)

    async def get_entry_history(self, entry_id: int) -> List[GameweekPoints]:
        """
        Get an entry's per-gameweek points for the current season.

        Args:
            entry_id: FPL entry (team) ID

        Returns:
            List of GameweekPoints, one per recorded gameweek
        """
        async def load() -> List[GameweekPoints]:
            data = await self._get_json(f"/entry/{entry_id}/history/")
            return parse_entry_history(entry_id, data)

        return await self.cache.get(("history", entry_id), load)

    async def get_current_gameweek(self) -> int:
        """
        Get the highest gameweek the FPL API considers in progress or just completed.

        Returns:
            Gameweek number, 0 before the season starts
        """
        async def load() -> int:
            data = await self._get_json("/bootstrap-static/")
            gameweek = parse_current_gameweek(data)
            logger.info("Current gameweek resolved", extra={"gameweek": gameweek})
            return gameweek

        return await self.cache.get(("current_gameweek",), load)

    def clear_cache(self):
        """Drop cached responses so the next calls hit the FPL API."""
        self.cache.clear()

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
