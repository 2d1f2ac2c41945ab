from __future__ import annotations

import unicodedata
from typing import List, Tuple

from .deck36 import get_card
from .models import DrawSession, ReadingArtifact, ReadingCard, ReadingMeta

DISCLAIMER = (
    "For reflection & inspiration only. This reading is not a substitute for professional advice."
)
SHARE_TITLE = "Cosmo Tarot"


def ascii_safe(text: str) -> str:
    """Fold text to printable ASCII (accents stripped, the rest dropped)."""
    folded = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return "".join(ch for ch in folded if ch.isprintable() or ch == "\n")


def reading_cards(session: DrawSession) -> Tuple[ReadingCard, ...]:
    out: List[ReadingCard] = []
    for sc in session.selected:
        c = get_card(sc.card_id)
        out.append(ReadingCard(id=c["id"], display_name=c["display_name"], position=sc.position + 1))
    return tuple(out)


def image_prompt(session: DrawSession, cards: Tuple[ReadingCard, ...]) -> str:
    names = ", ".join(c.display_name for c in cards)
    return (
        f"Abstract symbolic representation of {names} in sequence, "
        f"{session.cosmic.metaphor} theme, mystical, ethereal"
    )


def _keyword(card_id: str) -> str:
    keywords = get_card(card_id).get("keywords") or []
    return keywords[0] if keywords else "a central theme"


def template_reading(session: DrawSession, now: float) -> ReadingArtifact:
    """Deterministic four-page reading that needs no external call."""
    cards = reading_cards(session)
    names = [c.display_name for c in cards]
    card_line = ", ".join(names)
    chain = " -> ".join(names)
    metaphor = f"the {session.cosmic.metaphor}"
    first, last = cards[0], cards[-1]
    middle = cards[1:-1]

    frame = (
        f"The sequence of {card_line} suggests a journey shaped by {metaphor}. "
        f"{session.cosmic.descriptor} frames the question \"{session.input.question}\". "
        f"The opening card, {first.display_name}, sets a tone of {_keyword(first.id)}, "
        f"while {last.display_name} in the final position points toward {_keyword(last.id)}."
    )

    unfolding = (
        f"The first card, {first.display_name}, establishes the foundation of this reading. "
        f"As it connects with {cards[1].display_name}, a dynamic emerges that suggests movement and change."
    )
    if len(middle) > 1:
        unfolding += (
            f" The middle cards, {' and '.join(c.display_name for c in middle)}, act as pivots, "
            "revealing how these energies interact and add layers of complexity."
        )
    else:
        unfolding += " The middle position acts as a pivot, revealing how these energies interact."
    unfolding += (
        f" The final card, {last.display_name}, indicates the direction toward which this sequence points. "
        "The relational meaning emerges not from individual cards, but from how they flow together."
    )

    implications = (
        f"Read as a chain ({chain}), this sequence suggests forces that may be forming or reinforcing "
        "certain patterns. The interaction between the cards indicates both potential harmony and areas "
        "where tension might arise. The reading points to underlying dynamics rather than fixed outcomes."
    )

    direction = (
        "The sequence indicates a path forward that acknowledges both the opening energy and the "
        f"resolution suggested by {last.display_name}. This reading points to reflection and awareness "
        f"rather than prediction. The theme of {metaphor} suggests a natural flow you can align with "
        "through conscious choice."
    )

    share_text = ascii_safe(
        f"{SHARE_TITLE}\n\n"
        f"Question:\n\"{session.input.question}\"\n\n"
        f"Cards:\n{chain}\n\n"
        f"Interpretation:\n{direction}\n\n"
        "For entertainment and reflection only."
    )

    return ReadingArtifact(
        meta=ReadingMeta(
            session_id=session.session_id,
            created_at=now,
            source="template",
            disclaimer=DISCLAIMER,
        ),
        cards=cards,
        cosmic=session.cosmic,
        pages=(frame, unfolding, implications, direction),
        share_text=share_text,
        image_prompt=image_prompt(session, cards),
    )
