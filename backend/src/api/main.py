"""
Backend API: trigger surface for punishment generation, refresh and the ledger.
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env and ensure backend/src is on path
backend_dir = Path(__file__).resolve().parent.parent.parent
load_dotenv(backend_dir / ".env")
sys.path.insert(0, str(backend_dir / "src"))

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import Config
from errors import (
    InputValidationError,
    NotFoundError,
    PersistenceError,
    UpstreamUnavailable,
)
from refresh.orchestrator import RefreshOrchestrator

logger = logging.getLogger(__name__)

# Lazy init so we don't require Supabase in tests
_orchestrator: RefreshOrchestrator | None = None


async def get_orchestrator() -> RefreshOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        orchestrator = RefreshOrchestrator(Config())
        await orchestrator.initialize()
        _orchestrator = orchestrator
    return _orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.shutdown()
        _orchestrator = None


app = FastAPI(title="FPL Punishment API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CompletionUpdate(BaseModel):
    is_completed: bool


@app.exception_handler(InputValidationError)
async def handle_validation_error(request: Request, exc: InputValidationError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(NotFoundError)
async def handle_not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(UpstreamUnavailable)
async def handle_upstream_unavailable(request: Request, exc: UpstreamUnavailable):
    logger.error("FPL API unavailable", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(status_code=502, content={
        "error": "Failed to fetch data from FPL API",
        "details": str(exc),
        "retryable": exc.retryable,
        "timeout": exc.timeout,
    })


@app.exception_handler(PersistenceError)
async def handle_persistence_error(request: Request, exc: PersistenceError):
    logger.error("Ledger failure", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(status_code=500, content={"error": "Ledger failure", "details": str(exc)})


# Path ids are taken as strings; the orchestrator validates them so "abc" and "0" both get a 400

@app.post("/api/v1/leagues/{league_id}/gameweeks/{gameweek}/punishments")
async def generate_punishments(
    league_id: str,
    gameweek: str,
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
):
    """Generate (idempotently) the punishments of one gameweek."""
    result = await orchestrator.generate_period(league_id, gameweek)
    return result.to_dict()


@app.post("/api/v1/leagues/{league_id}/refresh")
async def refresh_league(
    league_id: str,
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
):
    """Delete every punishment for the league and regenerate all gameweeks."""
    report = await orchestrator.refresh_league(league_id)
    return report.to_dict()


@app.post("/api/v1/leagues/{league_id}/sync")
async def sync_league(
    league_id: str,
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
):
    """Generate gameweeks whose stored punishments are missing or incomplete."""
    report = await orchestrator.fill_missing_periods(league_id)
    return report.to_dict()


@app.get("/api/v1/leagues/{league_id}/verify")
async def verify_league(
    league_id: str,
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
):
    """Compare stored punishments with what current FPL data implies."""
    report = await orchestrator.verify_league(league_id)
    return report.to_dict()


@app.get("/api/v1/leagues/{league_id}")
async def league_summary(
    league_id: str,
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
):
    """Standings with each participant's punishment totals."""
    summary = await orchestrator.league_summary(league_id)
    return summary.to_dict()


@app.get("/api/v1/punishments")
def list_punishments(
    league_id: Optional[int] = Query(None),
    player_id: Optional[int] = Query(None),
    gameweek_id: Optional[int] = Query(None),
    is_completed: Optional[bool] = Query(None),
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
):
    """List punishments, optionally filtered."""
    return orchestrator.list_punishments(
        league_id=league_id,
        player_id=player_id,
        gameweek_id=gameweek_id,
        is_completed=is_completed,
    )


@app.patch("/api/v1/punishments/{punishment_id}")
def update_punishment(
    punishment_id: str,
    body: CompletionUpdate,
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
):
    """Mark a punishment completed or pending."""
    return orchestrator.set_completed(punishment_id, body.is_completed)


@app.delete("/api/v1/punishments/{punishment_id}")
def delete_punishment(
    punishment_id: str,
    orchestrator: RefreshOrchestrator = Depends(get_orchestrator),
):
    orchestrator.delete_punishment(punishment_id)
    return {"message": "Punishment deleted successfully"}


@app.get("/health")
def health():
    return {"status": "ok"}
