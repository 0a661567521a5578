#!/usr/bin/env python3
"""
Regenerate punishments for a league.

By default this is the destructive full refresh: every punishment stored for
the league is deleted and gameweeks 1..current are regenerated. Use --sync to
only fill gameweeks whose punishments are missing or incomplete, or
--gameweek to (idempotently) generate a single gameweek.

Usage:
    python3 scripts/refresh_league.py --league 1308389
    python3 scripts/refresh_league.py --league 1308389 --sync
    python3 scripts/refresh_league.py --league 1308389 --gameweek 12
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv(Path(__file__).parent.parent / ".env")

# Add src directory to path
backend_dir = Path(__file__).parent.parent
src_dir = backend_dir / "src"
sys.path.insert(0, str(src_dir))

from config import Config
from errors import PunishmentTrackerError
from refresh.orchestrator import RefreshOrchestrator
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


async def run(league_id: int, gameweek: int = None, sync: bool = False) -> int:
    """Run the requested generation and return a process exit code."""
    config = Config()
    setup_logging(config)
    orchestrator = RefreshOrchestrator(config)

    try:
        await orchestrator.initialize()

        if gameweek is not None:
            result = await orchestrator.generate_period(league_id, gameweek)
            print(f"\nGameweek {gameweek}: {result.to_dict()['message']}")
            for outcome in result.punishments:
                status = "existing" if outcome.already_existed else "new"
                print(f"  {outcome.player_name} ({outcome.entry_name}): "
                      f"{outcome.points} pts, {outcome.distance_km} km [{status}]")
            return 0

        if sync:
            report = await orchestrator.fill_missing_periods(league_id)
        else:
            report = await orchestrator.refresh_league(league_id)

        print(f"\nLeague {league_id}: current gameweek {report.current_gameweek}")
        if not sync:
            print(f"  Deleted punishments: {report.deleted}")
        print(f"  Gameweeks attempted: {report.attempted}")
        print(f"  Gameweeks succeeded: {len(report.succeeded)}")
        print(f"  New punishments:     {report.new_punishments}")
        if report.failed:
            print("  Failed gameweeks:")
            for gw, reason in sorted(report.failed.items()):
                print(f"    GW{gw}: {reason}")
        return 1 if report.failed else 0

    except PunishmentTrackerError as e:
        logger.error("Refresh failed", extra={
            "league_id": league_id,
            "error": str(e),
            "error_type": type(e).__name__
        }, exc_info=True)
        print(f"\nRefresh failed: {e}", file=sys.stderr)
        return 1

    finally:
        await orchestrator.shutdown()


def main():
    parser = argparse.ArgumentParser(description="Regenerate punishments for an FPL league")
    parser.add_argument("--league", type=int, required=True, help="FPL classic league ID")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--gameweek", type=int, help="Generate a single gameweek (idempotent)")
    group.add_argument("--sync", action="store_true", help="Only fill missing or incomplete gameweeks")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args.league, gameweek=args.gameweek, sync=args.sync)))


if __name__ == "__main__":
    main()
