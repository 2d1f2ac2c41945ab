"""FastAPI routes for the Lenormand deck.

Endpoints:
- GET /deck
- GET /deck/cards/{card_id}
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from ..deck36 import deck_for_api, lookup

router = APIRouter(prefix="/deck", tags=["deck"])


@router.get("")
def deck() -> Dict[str, Any]:
    return deck_for_api()


@router.get("/cards/{card_id}")
def card(card_id: str) -> Dict[str, Any]:
    c = lookup(card_id)
    if c is None:
        raise HTTPException(status_code=404, detail=f"Unknown card_id: {card_id}")
    return {"card": c.model_dump()}
