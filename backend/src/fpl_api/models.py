"""
Typed, fully-defaulted shapes produced by the FPL client's parsing boundary.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class Participant:
    """A team entered in a classic league."""
    entry_id: int
    player_name: str
    entry_name: str
    rank: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "player_name": self.player_name,
            "entry_name": self.entry_name,
            "rank": self.rank,
        }


@dataclass(frozen=True)
class LeagueStandings:
    league_id: int
    league_name: str
    participants: List[Participant] = field(default_factory=list)


@dataclass(frozen=True)
class GameweekPoints:
    """One row of an entry's season history."""
    gameweek: int
    points: int
