import json
from pathlib import Path

import pytest

from cosmo_tarot.deck36 import Deck36Error, card_ids, get_card, list_deck, lookup


def _data():
    p = Path(__file__).resolve().parents[1] / "cosmo_tarot" / "data" / "lenormand36.json"
    return json.loads(p.read_text(encoding="utf-8"))


def test_deck_json_has_36_cards():
    data = _data()
    assert len(data["cards"]) == 36
    assert all(c["keywords"] for c in data["cards"])


def test_card_ids_unique():
    ids = [c["id"] for c in _data()["cards"]]
    assert len(ids) == len(set(ids))


def test_canonical_order():
    deck = list_deck()
    assert deck[0].id == "rider"
    assert deck[-1].id == "cross"
    assert card_ids() == [c.id for c in deck]


def test_get_card_unknown_raises():
    assert get_card("key")["display_name"] == "Key"
    with pytest.raises(Deck36Error):
        get_card("joker")


def test_lookup_returns_none_for_unknown():
    assert lookup("moon").display_name == "Moon"
    assert lookup("joker") is None
