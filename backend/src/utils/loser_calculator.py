"""
Gameweek loser calculation.

Given every participant's points for one gameweek, decide who owes a
punishment. A single top scorer is exempt; a shared top score exempts nobody.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence


@dataclass(frozen=True)
class GameweekScore:
    """A participant's points in one gameweek."""
    entry_id: int
    points: int
    player_name: str = ""
    entry_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player_id": self.entry_id,
            "points": self.points,
            "player_name": self.player_name,
            "entry_name": self.entry_name,
        }


def top_scorers(scores: Sequence[GameweekScore]) -> List[GameweekScore]:
    """All scores equal to the gameweek maximum, in input order."""
    if not scores:
        return []
    max_points = max(s.points for s in scores)
    return [s for s in scores if s.points == max_points]


def calculate_punished(scores: Sequence[GameweekScore]) -> List[GameweekScore]:
    """
    Compute the punished subset for one gameweek.

    Args:
        scores: One GameweekScore per participant (may be empty)

    Returns:
        Punished scores in input order. Everyone but the top scorer when the top
        score is unique; everyone when two or more share it.
    """
    leaders = top_scorers(scores)
    if len(leaders) == 1:
        winner = leaders[0].entry_id
        return [s for s in scores if s.entry_id != winner]
    # Tie for first (or empty input): nobody is exempt
    return list(scores)
