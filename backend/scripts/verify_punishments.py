#!/usr/bin/env python3
"""
Verify a league's stored punishments against current FPL data.

Recomputes the expected (player, gameweek) punishments for every gameweek up
to the current one and reports which stored rows are correct, missing or
extra.

Usage:
    python3 scripts/verify_punishments.py --league 1308389
Exit code: 0 if the ledger matches, 1 if it doesn't, 2 on error.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")

backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir / "src"))

from config import Config
from errors import PunishmentTrackerError
from refresh.orchestrator import RefreshOrchestrator
from utils.logger import setup_logging


async def verify(league_id: int) -> int:
    config = Config()
    setup_logging(config)
    orchestrator = RefreshOrchestrator(config)
    try:
        await orchestrator.initialize()
        report = await orchestrator.verify_league(league_id)
    except PunishmentTrackerError as e:
        print(f"Error verifying punishments: {e}", file=sys.stderr)
        return 2
    finally:
        await orchestrator.shutdown()

    print("\n=== Punishment Verification Report ===")
    print(f"League: {league_id} (through GW{report.current_gameweek})")
    print(f"Expected punishments: {len(report.expected)}")
    print(f"Database punishments: {len(report.stored)}")
    print(f"Correct punishments:  {len(report.correct)}")
    print(f"Missing punishments:  {len(report.missing)}")
    for player_id, gameweek in report.missing:
        print(f"    player {player_id}, GW{gameweek}")
    print(f"Extra punishments:    {len(report.extra)}")
    for player_id, gameweek in report.extra:
        print(f"    player {player_id}, GW{gameweek}")
    print("======================================\n")

    return 0 if report.is_consistent else 1


def main():
    parser = argparse.ArgumentParser(description="Verify stored punishments for an FPL league")
    parser.add_argument("--league", type=int, required=True, help="FPL classic league ID")
    args = parser.parse_args()
    sys.exit(asyncio.run(verify(args.league)))


if __name__ == "__main__":
    main()
