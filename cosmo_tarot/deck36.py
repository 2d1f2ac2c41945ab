"""Lenormand 36-card deck loader + helpers.

- Loads deck JSON from cosmo_tarot/data/lenormand36.json
- Provides: get_deck(), get_cards(), list_deck(), card_ids(), get_card(card_id), lookup(card_id)

The deck is a process-wide constant; it is read once and cached.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import CardRef


DATA_PATH = Path(__file__).resolve().parent / "data" / "lenormand36.json"
DECK_SIZE = 36


class Deck36Error(RuntimeError):
    pass


def _load_json() -> Dict[str, Any]:
    try:
        raw = DATA_PATH.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise Deck36Error(f"Deck data file not found at: {DATA_PATH}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise Deck36Error(f"Invalid JSON in {DATA_PATH}: {e}") from e

    if "cards" not in data or not isinstance(data["cards"], list) or len(data["cards"]) != DECK_SIZE:
        raise Deck36Error(f"Deck data must contain exactly {DECK_SIZE} cards.")
    return data


_DECK_CACHE: Optional[Dict[str, Any]] = None


def get_deck() -> Dict[str, Any]:
    global _DECK_CACHE
    if _DECK_CACHE is None:
        data = _load_json()
        validate_deck(data)
        _DECK_CACHE = data
    return _DECK_CACHE


def get_cards() -> List[Dict[str, Any]]:
    return list(get_deck()["cards"])


def list_deck() -> List[CardRef]:
    """Deck entries in canonical (unshuffled) order."""
    return [CardRef(id=c["id"], display_name=c["display_name"]) for c in get_cards()]


def card_ids() -> List[str]:
    return [c["id"] for c in get_cards()]


def get_card(card_id: str) -> Dict[str, Any]:
    for c in get_deck()["cards"]:
        if c.get("id") == card_id:
            return c
    raise Deck36Error(f"Unknown card id: {card_id}")


def lookup(card_id: str) -> Optional[CardRef]:
    try:
        c = get_card(card_id)
    except Deck36Error:
        return None
    return CardRef(id=c["id"], display_name=c["display_name"])


def validate_deck(data: Dict[str, Any]) -> None:
    ids = [c.get("id") for c in data["cards"]]
    if len(ids) != len(set(ids)):
        raise Deck36Error("Duplicate card ids detected.")
    for c in data["cards"]:
        if not c.get("id") or not c.get("display_name"):
            raise Deck36Error(f"Card {c!r} is missing id or display_name")


def deck_for_api() -> Dict[str, Any]:
    d = get_deck()
    return {
        "deck_id": d.get("deck_id"),
        "schema_version": d.get("schema_version"),
        "card_count": len(d["cards"]),
        "cards": [
            {
                "id": c["id"],
                "display_name": c["display_name"],
                "symbol": c.get("symbol"),
                "keywords": c.get("keywords", []),
            }
            for c in d["cards"]
        ],
    }
