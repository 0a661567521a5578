"""
Supabase client for the punishment ledger.

The punishments table carries a unique constraint on
(league_id, player_id, gameweek_id); see backend/migrations. A violation of it
surfaces as DuplicatePunishmentError, every other store failure as
PersistenceError.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import create_client, Client

from config import Config
from errors import DuplicatePunishmentError, NotFoundError, PersistenceError

logger = logging.getLogger(__name__)

PUNISHMENTS_TABLE = "punishments"
LEAGUES_TABLE = "leagues"

# PostgreSQL unique_violation
UNIQUE_VIOLATION = "23505"

# PostgREST caps a select at 1000 rows by default; a shorter page is the last one
PAGE_SIZE = 1000


@contextmanager
def _ledger_errors(operation: str, **context: Any) -> Iterator[None]:
    """Translate Supabase/PostgREST failures into the ledger error types."""
    try:
        yield
    except APIError as e:
        if str(e.code) == UNIQUE_VIOLATION:
            raise DuplicatePunishmentError(
                f"{operation}: punishment already exists ({context})"
            ) from e
        logger.error("Ledger operation failed", extra={
            "operation": operation,
            "code": e.code,
            "error": e.message,
            **context
        })
        raise PersistenceError(f"{operation} failed: {e.message}") from e
    except httpx.HTTPError as e:
        logger.error("Ledger connection failed", extra={
            "operation": operation,
            "error": str(e),
            **context
        })
        raise PersistenceError(f"{operation} failed: {e}") from e


class SupabaseClient:
    """Client for interacting with the Supabase punishment ledger."""

    def __init__(self, config: Config):
        self.config = config
        self.client: Optional[Client] = None
        self._initialize_client()

    def _initialize_client(self):
        """Initialize Supabase client."""
        if not self.config.supabase_url or not self.config.supabase_key:
            raise ValueError("Supabase URL and key are required")

        # Use service key if available for admin operations, otherwise use anon key
        key = self.config.supabase_service_key or self.config.supabase_key

        self.client = create_client(
            self.config.supabase_url,
            key
        )

        logger.info("Initialized Supabase client", extra={
            "url": self.config.supabase_url,
            "using_service_key": bool(self.config.supabase_service_key)
        })

    # Punishments

    def create_punishment(self, punishment_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a punishment.

        Args:
            punishment_data: Row with league_id, player_id, gameweek_id, distance_km, is_completed

        Returns:
            The inserted row (with generated id and timestamps)

        Raises:
            DuplicatePunishmentError: The (league, player, gameweek) triple already exists
            PersistenceError: Any other store failure
        """
        context = {
            "league_id": punishment_data.get("league_id"),
            "player_id": punishment_data.get("player_id"),
            "gameweek_id": punishment_data.get("gameweek_id"),
        }
        with _ledger_errors("create_punishment", **context):
            result = self.client.table(PUNISHMENTS_TABLE).insert(punishment_data).execute()

        if not result.data:
            raise PersistenceError(f"create_punishment returned no row ({context})")
        return result.data[0]

    def get_punishment(
        self,
        league_id: int,
        player_id: int,
        gameweek_id: int
    ) -> Optional[Dict[str, Any]]:
        """Get the punishment for one (league, player, gameweek) triple, if any."""
        with _ledger_errors("get_punishment", league_id=league_id, player_id=player_id, gameweek_id=gameweek_id):
            result = (
                self.client.table(PUNISHMENTS_TABLE)
                .select("*")
                .eq("league_id", league_id)
                .eq("player_id", player_id)
                .eq("gameweek_id", gameweek_id)
                .limit(1)
                .execute()
            )
        return result.data[0] if result.data else None

    def get_punishment_by_id(self, punishment_id: str) -> Optional[Dict[str, Any]]:
        with _ledger_errors("get_punishment_by_id", punishment_id=punishment_id):
            result = (
                self.client.table(PUNISHMENTS_TABLE)
                .select("*")
                .eq("id", punishment_id)
                .limit(1)
                .execute()
            )
        return result.data[0] if result.data else None

    def get_punishments(
        self,
        league_id: Optional[int] = None,
        player_id: Optional[int] = None,
        gameweek_id: Optional[int] = None,
        is_completed: Optional[bool] = None
    ) -> List[Dict[str, Any]]:
        """
        Get punishments with optional filtering.

        Args:
            league_id: Filter by league
            player_id: Filter by participant entry id
            gameweek_id: Filter by gameweek
            is_completed: Filter by completion flag

        Returns:
            List of punishment dictionaries ordered by gameweek then player
        """
        def build_query():
            query = self.client.table(PUNISHMENTS_TABLE).select("*")
            if league_id is not None:
                query = query.eq("league_id", league_id)
            if player_id is not None:
                query = query.eq("player_id", player_id)
            if gameweek_id is not None:
                query = query.eq("gameweek_id", gameweek_id)
            if is_completed is not None:
                query = query.eq("is_completed", is_completed)
            # id breaks ties so pages don't overlap across leagues
            return query.order("gameweek_id").order("player_id").order("id")

        return self._select_all(build_query, "get_punishments", league_id=league_id)

    def _select_all(
        self,
        build_query: Callable[[], Any],
        operation: str,
        **context: Any
    ) -> List[Dict[str, Any]]:
        """Page through a select with .range() until a short page comes back."""
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            with _ledger_errors(operation, offset=offset, **context):
                result = build_query().range(offset, offset + PAGE_SIZE - 1).execute()
            page = result.data or []
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                break
            offset += PAGE_SIZE
        return rows

    def set_punishment_completed(self, punishment_id: str, is_completed: bool) -> Dict[str, Any]:
        """
        Mark a punishment completed (stamps completed_at) or pending (clears it).

        Raises:
            NotFoundError: No punishment with that id
        """
        now_iso = datetime.now(timezone.utc).isoformat()
        payload = {
            "is_completed": is_completed,
            "completed_at": now_iso if is_completed else None,
            "updated_at": now_iso,
        }
        with _ledger_errors("set_punishment_completed", punishment_id=punishment_id):
            result = (
                self.client.table(PUNISHMENTS_TABLE)
                .update(payload)
                .eq("id", punishment_id)
                .execute()
            )
        if not result.data:
            raise NotFoundError(f"Punishment {punishment_id} not found")
        return result.data[0]

    def delete_punishment(self, punishment_id: str) -> bool:
        """Delete one punishment. Returns False if nothing matched."""
        with _ledger_errors("delete_punishment", punishment_id=punishment_id):
            result = self.client.table(PUNISHMENTS_TABLE).delete().eq("id", punishment_id).execute()
        return bool(result.data)

    def delete_punishments_for_league(self, league_id: int) -> int:
        """
        Delete every punishment for a league.

        Returns:
            Number of rows deleted
        """
        with _ledger_errors("delete_punishments_for_league", league_id=league_id):
            result = self.client.table(PUNISHMENTS_TABLE).delete().eq("league_id", league_id).execute()
        deleted = len(result.data or [])
        logger.info("Deleted league punishments", extra={
            "league_id": league_id,
            "deleted": deleted
        })
        return deleted

    # Leagues

    def upsert_league(self, league_id: int, name: str):
        """
        Record a league and its current display name.

        Args:
            league_id: FPL league ID
            name: League name as reported by the FPL API
        """
        with _ledger_errors("upsert_league", league_id=league_id):
            result = self.client.table(LEAGUES_TABLE).upsert(
                {
                    "fpl_league_id": league_id,
                    "name": name,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                },
                on_conflict="fpl_league_id"
            ).execute()

        return result.data
