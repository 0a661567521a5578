"""
Refresh Orchestrator - Coordinates punishment generation across gameweeks.

Owns the shared retry policy, the destructive full-history refresh, the
non-destructive fill-missing sync, ledger verification, league summaries
and the background sync loop for tracked leagues.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from config import Config
from database.supabase_client import SupabaseClient
from errors import (
    NotFoundError,
    PunishmentTrackerError,
    validate_positive_id,
    validate_record_id,
)
from fpl_api.client import FPLAPIClient
from fpl_api.models import Participant
from refresh.punishments import GenerationResult, PunishmentGenerator
from utils.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class RefreshReport:
    """Outcome of a multi-gameweek run for one league."""
    league_id: int
    current_gameweek: int = 0
    deleted: int = 0
    succeeded: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)
    new_punishments: int = 0
    cancelled: bool = False

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "league_id": self.league_id,
            "current_gameweek": self.current_gameweek,
            "deleted": self.deleted,
            "attempted": self.attempted,
            "succeeded": list(self.succeeded),
            "failed": {str(gw): reason for gw, reason in self.failed.items()},
            "new_punishments": self.new_punishments,
            "cancelled": self.cancelled,
        }


@dataclass
class VerificationReport:
    """Expected (player, gameweek) pairs from live data vs. what the ledger holds."""
    league_id: int
    current_gameweek: int
    expected: Set[Tuple[int, int]] = field(default_factory=set)
    stored: Set[Tuple[int, int]] = field(default_factory=set)

    @property
    def correct(self) -> List[Tuple[int, int]]:
        return sorted(self.expected & self.stored, key=lambda p: (p[1], p[0]))

    @property
    def missing(self) -> List[Tuple[int, int]]:
        return sorted(self.expected - self.stored, key=lambda p: (p[1], p[0]))

    @property
    def extra(self) -> List[Tuple[int, int]]:
        return sorted(self.stored - self.expected, key=lambda p: (p[1], p[0]))

    @property
    def is_consistent(self) -> bool:
        return self.expected == self.stored

    def to_dict(self) -> Dict[str, Any]:
        def pairs(items):
            return [{"player_id": p, "gameweek_id": gw} for p, gw in items]

        return {
            "league_id": self.league_id,
            "current_gameweek": self.current_gameweek,
            "expected_count": len(self.expected),
            "stored_count": len(self.stored),
            "correct": pairs(self.correct),
            "missing": pairs(self.missing),
            "extra": pairs(self.extra),
            "is_consistent": self.is_consistent,
        }


@dataclass
class PunishmentTally:
    """What one participant owes: counts by status and the total distance."""
    total: int = 0
    completed: int = 0
    pending: int = 0
    distance_km: float = 0.0

    def add(self, row: Dict[str, Any]):
        self.total += 1
        if row.get("is_completed"):
            self.completed += 1
        else:
            self.pending += 1
        self.distance_km += float(row.get("distance_km") or 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "pending": self.pending,
            "distance_km": self.distance_km,
        }


@dataclass
class LeagueSummary:
    """Current standings joined with each participant's punishment tally."""
    league_id: int
    league_name: str
    current_gameweek: int
    participants: List[Participant] = field(default_factory=list)
    tallies: Dict[int, PunishmentTally] = field(default_factory=dict)
    punishments: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "league_id": self.league_id,
            "name": self.league_name,
            "current_gameweek": self.current_gameweek,
            "standings": [
                {
                    **p.to_dict(),
                    "punishments": self.tallies.get(p.entry_id, PunishmentTally()).to_dict(),
                }
                for p in self.participants
            ],
            "punishments": list(self.punishments),
        }


class RefreshOrchestrator:
    """Orchestrates punishment generation and refresh operations."""

    def __init__(
        self,
        config: Config,
        fpl_client: Optional[FPLAPIClient] = None,
        db_client: Optional[SupabaseClient] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.config = config
        self.fpl_client = fpl_client
        self.db_client = db_client
        self.retry_policy = retry_policy or RetryPolicy.from_config(config)
        self.generator: Optional[PunishmentGenerator] = None
        self.running = False
        # Set by request_stop(); refresh loops stop after the in-flight gameweek
        self._stop_event = asyncio.Event()

    async def initialize(self):
        """Initialize orchestrator and clients."""
        logger.info("Orchestrator starting")

        if self.fpl_client is None:
            self.fpl_client = FPLAPIClient(self.config)
        if self.db_client is None:
            self.db_client = SupabaseClient(self.config)
        self.generator = PunishmentGenerator(
            self.fpl_client,
            self.db_client,
            distance_km=self.config.punishment_distance_km
        )

        logger.info("Orchestrator ready")

    def request_stop(self):
        """Stop loops and refreshes after the in-flight gameweek."""
        self.running = False
        self._stop_event.set()

    async def shutdown(self):
        """Shutdown orchestrator gracefully."""
        logger.info("Orchestrator shutting down")
        self.request_stop()

        if self.fpl_client:
            await self.fpl_client.close()

        logger.info("Orchestrator stopped")

    def _should_stop(self, cancel_event: Optional[asyncio.Event]) -> bool:
        return self._stop_event.is_set() or (cancel_event is not None and cancel_event.is_set())

    async def current_gameweek(self) -> int:
        """Current gameweek from the FPL API, retried like any other upstream read."""
        return await self.retry_policy.run(
            self.fpl_client.get_current_gameweek,
            description="current_gameweek"
        )

    async def generate_period(self, league_id: int, gameweek: int) -> GenerationResult:
        """
        Generate punishments for one gameweek with retry/backoff on upstream failures.

        Args:
            league_id: FPL league ID
            gameweek: Gameweek number

        Returns:
            GenerationResult from the generator
        """
        league_id = validate_positive_id(league_id, "league_id")
        gameweek = validate_positive_id(gameweek, "gameweek")
        return await self.retry_policy.run(
            lambda: self.generator.generate_for_period(league_id, gameweek),
            description=f"generate league={league_id} gameweek={gameweek}"
        )

    async def _run_gameweeks(
        self,
        report: RefreshReport,
        gameweeks: Iterable[int],
        cancel_event: Optional[asyncio.Event] = None
    ) -> RefreshReport:
        """Generate gameweeks one at a time; a failing gameweek is recorded and skipped."""
        gameweeks = list(gameweeks)
        for index, gameweek in enumerate(gameweeks):
            if self._should_stop(cancel_event):
                report.cancelled = True
                logger.info("Refresh cancelled", extra={
                    "league_id": report.league_id,
                    "next_gameweek": gameweek
                })
                break

            try:
                result = await self.generate_period(report.league_id, gameweek)
            except PunishmentTrackerError as e:
                report.failed[gameweek] = f"{type(e).__name__}: {e}"
                logger.error("Gameweek generation failed", extra={
                    "league_id": report.league_id,
                    "gameweek": gameweek,
                    "error": str(e),
                    "error_type": type(e).__name__
                })
            else:
                report.succeeded.append(gameweek)
                report.new_punishments += result.new_punishments

            if index < len(gameweeks) - 1 and self.config.refresh_period_delay > 0:
                await asyncio.sleep(self.config.refresh_period_delay)

        return report

    async def refresh_league(
        self,
        league_id: int,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RefreshReport:
        """
        Delete every punishment for the league and regenerate gameweeks 1..current.

        Args:
            league_id: FPL league ID
            cancel_event: Optional event; when set, stops after the in-flight gameweek

        Returns:
            RefreshReport
        """
        league_id = validate_positive_id(league_id, "league_id")
        report = RefreshReport(league_id=league_id)

        logger.info("League refresh started", extra={"league_id": league_id})

        # Authoritative recompute: don't trust anything cached before the wipe
        self.fpl_client.clear_cache()
        # Resolve the gameweek range before the wipe so an FPL outage leaves the ledger intact
        report.current_gameweek = await self.current_gameweek()
        report.deleted = self.db_client.delete_punishments_for_league(league_id)

        await self._run_gameweeks(report, range(1, report.current_gameweek + 1), cancel_event)

        logger.info("League refresh finished", extra=report.to_dict())
        return report

    async def fill_missing_periods(
        self,
        league_id: int,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RefreshReport:
        """
        Generate the gameweeks whose stored punishments fall short of what live data implies.

        A gameweek left half-written by an earlier failure is picked up again;
        a gameweek that correctly has no punishments is left alone. Never deletes.

        Args:
            league_id: FPL league ID
            cancel_event: Optional event; when set, stops after the in-flight gameweek

        Returns:
            RefreshReport covering the incomplete gameweeks
        """
        league_id = validate_positive_id(league_id, "league_id")
        report = RefreshReport(league_id=league_id)
        report.current_gameweek = await self.current_gameweek()

        stored = self._stored_players_by_gameweek(league_id)
        incomplete = []
        for gameweek in range(1, report.current_gameweek + 1):
            if self._should_stop(cancel_event):
                report.cancelled = True
                return report
            try:
                expected = await self._expected_punishments(league_id, gameweek)
            except PunishmentTrackerError as e:
                report.failed[gameweek] = f"{type(e).__name__}: {e}"
                logger.error("Gameweek check failed", extra={
                    "league_id": league_id,
                    "gameweek": gameweek,
                    "error": str(e),
                    "error_type": type(e).__name__
                })
                continue
            if not set(expected) <= stored.get(gameweek, set()):
                incomplete.append(gameweek)

        logger.info("Filling incomplete gameweeks", extra={
            "league_id": league_id,
            "current_gameweek": report.current_gameweek,
            "incomplete": incomplete
        })
        return await self._run_gameweeks(report, incomplete, cancel_event)

    def _stored_players_by_gameweek(self, league_id: int) -> Dict[int, Set[int]]:
        stored: Dict[int, Set[int]] = {}
        for row in self.db_client.get_punishments(league_id=league_id):
            stored.setdefault(row["gameweek_id"], set()).add(row["player_id"])
        return stored

    async def _expected_punishments(self, league_id: int, gameweek: int) -> List[int]:
        return await self.retry_policy.run(
            lambda: self.generator.expected_punishments(league_id, gameweek),
            description=f"expected league={league_id} gameweek={gameweek}"
        )

    async def verify_league(self, league_id: int) -> VerificationReport:
        """Compare the punishments live data implies with what the ledger stores."""
        league_id = validate_positive_id(league_id, "league_id")
        current = await self.current_gameweek()
        report = VerificationReport(league_id=league_id, current_gameweek=current)

        for gameweek in range(1, current + 1):
            punished = await self._expected_punishments(league_id, gameweek)
            report.expected.update((player_id, gameweek) for player_id in punished)

        report.stored = {
            (player_id, gameweek)
            for gameweek, players in self._stored_players_by_gameweek(league_id).items()
            for player_id in players
        }

        logger.info("League verification finished", extra={
            "league_id": league_id,
            "missing": len(report.missing),
            "extra": len(report.extra)
        })
        return report

    async def league_summary(self, league_id: int) -> LeagueSummary:
        """
        Join current standings with the ledger: who owes how much.

        Rows of entries no longer in the standings are listed under
        punishments but get no standings line.
        """
        league_id = validate_positive_id(league_id, "league_id")
        standings = await self.retry_policy.run(
            lambda: self.fpl_client.get_league_standings(league_id),
            description=f"standings league={league_id}"
        )
        current = await self.current_gameweek()
        rows = self.db_client.get_punishments(league_id=league_id)

        summary = LeagueSummary(
            league_id=league_id,
            league_name=standings.league_name,
            current_gameweek=current,
            participants=list(standings.participants),
            punishments=rows,
        )
        for row in rows:
            summary.tallies.setdefault(row["player_id"], PunishmentTally()).add(row)
        return summary

    # Ledger passthroughs for the API and scripts

    def list_punishments(
        self,
        league_id: Optional[int] = None,
        player_id: Optional[int] = None,
        gameweek_id: Optional[int] = None,
        is_completed: Optional[bool] = None
    ) -> List[Dict[str, Any]]:
        return self.db_client.get_punishments(
            league_id=validate_positive_id(league_id, "league_id") if league_id is not None else None,
            player_id=validate_positive_id(player_id, "player_id") if player_id is not None else None,
            gameweek_id=validate_positive_id(gameweek_id, "gameweek_id") if gameweek_id is not None else None,
            is_completed=is_completed,
        )

    def set_completed(self, punishment_id: str, is_completed: bool) -> Dict[str, Any]:
        punishment_id = validate_record_id(punishment_id)
        record = self.db_client.set_punishment_completed(punishment_id, is_completed)
        logger.info("Punishment completion updated", extra={
            "punishment_id": punishment_id,
            "is_completed": is_completed
        })
        return record

    def delete_punishment(self, punishment_id: str):
        punishment_id = validate_record_id(punishment_id)
        if not self.db_client.delete_punishment(punishment_id):
            raise NotFoundError(f"Punishment {punishment_id} not found")
        logger.info("Punishment deleted", extra={"punishment_id": punishment_id})

    async def sync_tracked_leagues(self) -> Dict[int, RefreshReport]:
        """Fill missing gameweeks for every tracked league; one league failing doesn't stop the rest."""
        reports: Dict[int, RefreshReport] = {}
        for league_id in self.config.tracked_league_ids:
            if self._stop_event.is_set():
                break
            try:
                reports[league_id] = await self.fill_missing_periods(league_id)
            except PunishmentTrackerError as e:
                logger.error("League sync failed", extra={
                    "league_id": league_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                }, exc_info=True)
        return reports

    async def run(self):
        """Sync tracked leagues every sync_interval_seconds until shutdown."""
        logger.info("Sync loop started", extra={
            "leagues": self.config.tracked_league_ids,
            "interval_seconds": self.config.sync_interval_seconds
        })
        self.running = True
        try:
            while self.running and not self._stop_event.is_set():
                await self.sync_tracked_leagues()
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.config.sync_interval_seconds
                    )
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Sync loop cancelled")
        finally:
            self.running = False
