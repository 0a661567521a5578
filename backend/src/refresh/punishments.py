"""
Punishment generation for a single (league, gameweek).

Fetches standings and every participant's history, runs the loser calculator
and writes at most one punishment per (league, player, gameweek). Safe to call
any number of times: existing rows are reused, never duplicated.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from database.supabase_client import SupabaseClient
from errors import DuplicatePunishmentError, PersistenceError, validate_positive_id
from fpl_api.client import FPLAPIClient
from fpl_api.models import LeagueStandings
from utils.loser_calculator import GameweekScore, calculate_punished

logger = logging.getLogger(__name__)


@dataclass
class PunishmentOutcome:
    """One punished participant and the ledger row backing it."""
    player_id: int
    player_name: str
    entry_name: str
    points: int
    distance_km: float
    already_existed: bool
    record: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.record)
        data.update({
            "player_id": self.player_id,
            "player_name": self.player_name,
            "entry_name": self.entry_name,
            "points": self.points,
            "distance_km": self.distance_km,
            "already_existed": self.already_existed,
        })
        return data


@dataclass
class GenerationResult:
    league_id: int
    gameweek: int
    scores: List[GameweekScore] = field(default_factory=list)
    punishments: List[PunishmentOutcome] = field(default_factory=list)

    @property
    def new_punishments(self) -> int:
        return sum(1 for p in self.punishments if not p.already_existed)

    @property
    def punished_ids(self) -> List[int]:
        return [p.player_id for p in self.punishments]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "league_id": self.league_id,
            "gameweek": self.gameweek,
            "message": f"Generated {self.new_punishments} new punishments",
            "new_punishments": self.new_punishments,
            "punishments": [p.to_dict() for p in self.punishments],
            "scores": [s.to_dict() for s in self.scores],
        }


class PunishmentGenerator:
    """Derives and persists gameweek punishments."""

    def __init__(
        self,
        fpl_client: FPLAPIClient,
        db_client: SupabaseClient,
        distance_km: float = 1.0
    ):
        self.fpl_client = fpl_client
        self.db_client = db_client
        self.distance_km = distance_km

    async def score_gameweek(
        self,
        league_id: int,
        gameweek: int
    ) -> Tuple[LeagueStandings, List[GameweekScore]]:
        """
        Collect every participant's points for one gameweek.

        A participant whose history has no row for the gameweek scores 0.

        Returns:
            (standings, scores in standings order)
        """
        standings = await self.fpl_client.get_league_standings(league_id)
        participants = standings.participants

        histories = await asyncio.gather(*[
            self.fpl_client.get_entry_history(p.entry_id) for p in participants
        ])

        scores: List[GameweekScore] = []
        for participant, history in zip(participants, histories):
            points = next((h.points for h in history if h.gameweek == gameweek), 0)
            scores.append(GameweekScore(
                entry_id=participant.entry_id,
                points=points,
                player_name=participant.player_name,
                entry_name=participant.entry_name,
            ))

        logger.debug("Gameweek scores collected", extra={
            "league_id": league_id,
            "gameweek": gameweek,
            "scores": {s.entry_id: s.points for s in scores}
        })
        return standings, scores

    async def expected_punishments(self, league_id: int, gameweek: int) -> List[int]:
        """Entry ids that should be punished for the gameweek, without touching the ledger."""
        league_id = validate_positive_id(league_id, "league_id")
        gameweek = validate_positive_id(gameweek, "gameweek")
        _, scores = await self.score_gameweek(league_id, gameweek)
        return [s.entry_id for s in calculate_punished(scores)]

    def _record_league(self, standings: LeagueStandings):
        try:
            self.db_client.upsert_league(standings.league_id, standings.league_name)
        except PersistenceError as e:
            # League registry is informational; punishments don't depend on it
            logger.warning("League upsert failed", extra={
                "league_id": standings.league_id,
                "error": str(e)
            })

    def _ensure_punishment(
        self,
        league_id: int,
        gameweek: int,
        score: GameweekScore
    ) -> PunishmentOutcome:
        """Reuse the existing row for the triple or create it."""
        existing = self.db_client.get_punishment(league_id, score.entry_id, gameweek)
        already_existed = existing is not None
        record = existing

        if record is None:
            try:
                record = self.db_client.create_punishment({
                    "league_id": league_id,
                    "player_id": score.entry_id,
                    "gameweek_id": gameweek,
                    "distance_km": self.distance_km,
                    "is_completed": False,
                })
            except DuplicatePunishmentError:
                # Lost a race with a concurrent generation for the same triple
                logger.info("Punishment created concurrently, reusing", extra={
                    "league_id": league_id,
                    "player_id": score.entry_id,
                    "gameweek": gameweek
                })
                already_existed = True
                record = self.db_client.get_punishment(league_id, score.entry_id, gameweek)
                if record is None:
                    raise PersistenceError(
                        f"Punishment for league {league_id}, player {score.entry_id}, "
                        f"gameweek {gameweek} reported duplicate but cannot be read"
                    )

        return PunishmentOutcome(
            player_id=score.entry_id,
            player_name=score.player_name,
            entry_name=score.entry_name,
            points=score.points,
            distance_km=float(record.get("distance_km", self.distance_km)),
            already_existed=already_existed,
            record=record,
        )

    async def generate_for_period(self, league_id: int, gameweek: int) -> GenerationResult:
        """
        Generate punishments for a league and gameweek.

        Args:
            league_id: FPL league ID
            gameweek: Gameweek number

        Returns:
            GenerationResult with one outcome per punished participant

        Raises:
            InputValidationError: Malformed ids (no I/O performed)
            UpstreamUnavailable: FPL API failure (nothing written)
            NotFoundError: League unknown to the FPL API
            PersistenceError: Ledger failure
        """
        league_id = validate_positive_id(league_id, "league_id")
        gameweek = validate_positive_id(gameweek, "gameweek")

        standings, scores = await self.score_gameweek(league_id, gameweek)
        self._record_league(standings)

        punished = calculate_punished(scores)
        result = GenerationResult(league_id=league_id, gameweek=gameweek, scores=scores)
        for score in punished:
            result.punishments.append(self._ensure_punishment(league_id, gameweek, score))

        logger.info("Gameweek punishments generated", extra={
            "league_id": league_id,
            "gameweek": gameweek,
            "participants": len(scores),
            "punished": len(punished),
            "new_punishments": result.new_punishments
        })
        return result
