"""FastAPI routes for the draw ritual.

Endpoints:
- POST /draws/start
- GET  /draws/{session_id}
- POST /draws/{session_id}/shuffle
- POST /draws/{session_id}/select
- POST /draws/{session_id}/reveal
- POST /draws/{session_id}/complete
- GET  /draws/{session_id}/reading
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from ..draw_engine import DrawEngine
from ..errors import ErrorKind
from ..models import CosmicContext, DrawResult, Phase, ReadingArtifact, SelectedCard, ToggleOutcome

router = APIRouter(prefix="/draws", tags=["draws"])

STATUS_FOR_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PHASE_CONFLICT: 409,
    ErrorKind.GENERATION_FAILURE: 502,
}


class StartRequest(BaseModel):
    name: str = Field(..., description="Name of the person asking")
    question: str = Field(..., description="The question framed for the reading")
    spread_size: int = Field(..., description="Number of cards: 3 or 5")
    zodiac: Optional[str] = Field(None, description="Optional western zodiac sign")
    birthdate: Optional[date] = Field(None, description="Optional birthdate, YYYY-MM-DD")
    seed: Optional[str] = Field(None, description="Optional seed for reproducible shuffles")


class SelectRequest(BaseModel):
    card_id: Optional[str] = Field(None, description="Card id like 'rider'")
    deck_index: Optional[int] = Field(None, description="Index into the session's deck order")


class RevealRequest(BaseModel):
    position: int = Field(..., description="Selected position to reveal, 0-based")


class StartResponse(BaseModel):
    session_id: str
    phase: Phase
    spread_size: int
    expires_at: float
    cosmic: CosmicContext


class StateResponse(BaseModel):
    session_id: str
    phase: Phase
    spread_size: int
    deck_size: int
    selected: List[SelectedCard]
    cosmic: CosmicContext
    expires_at: float
    completed_at: Optional[float] = None


class PhaseResponse(BaseModel):
    phase: Phase


class SelectResponse(BaseModel):
    phase: Phase
    outcome: ToggleOutcome
    selected: List[SelectedCard]


class RevealResponse(BaseModel):
    phase: Phase
    selected: List[SelectedCard]


class ReadingResponse(BaseModel):
    phase: Phase
    reading: ReadingArtifact


def get_engine(request: Request) -> DrawEngine:
    return request.app.state.engine


def _raise_for(result: DrawResult) -> None:
    if result.ok:
        return
    err = result.error
    raise HTTPException(
        status_code=STATUS_FOR_KIND.get(err.kind, 400),
        detail={"error": err.kind.value, "message": err.message, "details": err.details},
    )


@router.post("/start", response_model=StartResponse)
def start_draw(req: StartRequest, engine: DrawEngine = Depends(get_engine)) -> StartResponse:
    result = engine.start_draw(
        name=req.name,
        question=req.question,
        spread_size=req.spread_size,
        zodiac=req.zodiac,
        birthdate=req.birthdate,
        seed=req.seed,
    )
    _raise_for(result)
    s = result.session
    return StartResponse(
        session_id=s.session_id,
        phase=s.phase,
        spread_size=s.spread_size,
        expires_at=s.expires_at,
        cosmic=s.cosmic,
    )


@router.get("/{session_id}", response_model=StateResponse)
def get_state(session_id: str, engine: DrawEngine = Depends(get_engine)) -> StateResponse:
    result = engine.get_state(session_id)
    _raise_for(result)
    s = result.session
    # The deck order itself stays server-side.
    return StateResponse(
        session_id=s.session_id,
        phase=s.phase,
        spread_size=s.spread_size,
        deck_size=len(s.deck_order),
        selected=list(s.selected),
        cosmic=s.cosmic,
        expires_at=s.expires_at,
        completed_at=s.completed_at,
    )


@router.post("/{session_id}/shuffle", response_model=PhaseResponse)
def shuffle(session_id: str, engine: DrawEngine = Depends(get_engine)) -> PhaseResponse:
    result = engine.shuffle(session_id)
    _raise_for(result)
    return PhaseResponse(phase=result.phase)


@router.post("/{session_id}/select", response_model=SelectResponse)
def toggle_select(session_id: str, req: SelectRequest, engine: DrawEngine = Depends(get_engine)) -> SelectResponse:
    result = engine.toggle_select(session_id, card_id=req.card_id, deck_index=req.deck_index)
    _raise_for(result)
    return SelectResponse(phase=result.phase, outcome=result.outcome, selected=list(result.session.selected))


@router.post("/{session_id}/reveal", response_model=RevealResponse)
def reveal(session_id: str, req: RevealRequest, engine: DrawEngine = Depends(get_engine)) -> RevealResponse:
    result = engine.reveal(session_id, req.position)
    _raise_for(result)
    return RevealResponse(phase=result.phase, selected=list(result.session.selected))


@router.post("/{session_id}/complete", response_model=ReadingResponse)
def complete(session_id: str, engine: DrawEngine = Depends(get_engine)) -> ReadingResponse:
    result = engine.complete(session_id)
    _raise_for(result)
    return ReadingResponse(phase=result.phase, reading=result.reading)


@router.get("/{session_id}/reading", response_model=ReadingResponse)
def get_reading(session_id: str, engine: DrawEngine = Depends(get_engine)) -> ReadingResponse:
    result = engine.get_reading(session_id)
    _raise_for(result)
    return ReadingResponse(phase=result.phase, reading=result.reading)
