from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import DrawError

SpreadSize = Literal[3, 5]
ZodiacSign = Literal[
    "aries", "taurus", "gemini", "cancer", "leo", "virgo",
    "libra", "scorpio", "sagittarius", "capricorn", "aquarius", "pisces",
]
ReadingSource = Literal["llm", "template"]


class Phase(str, Enum):
    SHUFFLED = "SHUFFLED"
    PICKING = "PICKING"
    REVEALING = "REVEALING"
    REVEALED = "REVEALED"
    COMPLETE = "COMPLETE"


class ToggleOutcome(str, Enum):
    SELECTED = "selected"
    DESELECTED = "deselected"


class CardRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str


class ReadingCard(CardRef):
    position: int = Field(..., ge=1, description="1-based position in the spread")


class DrawInput(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    question: str = Field(..., min_length=1, max_length=1000)
    spread_size: SpreadSize
    zodiac: Optional[ZodiacSign] = None
    birthdate: Optional[date] = None

    @field_validator("zodiac", mode="before")
    @classmethod
    def _normalize_zodiac(cls, v):
        if isinstance(v, str):
            v = v.strip().lower() or None
        return v

    @field_validator("birthdate")
    @classmethod
    def _birthdate_not_in_future(cls, v: Optional[date]) -> Optional[date]:
        if v is not None and v > date.today():
            raise ValueError("birthdate cannot be in the future")
        return v


class SelectedCard(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: int = Field(..., ge=0)
    card_id: str
    revealed: bool = False


class CosmicContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    day_of_year: int = Field(..., ge=1, le=366)
    descriptor: str
    metaphor: str
    zodiac: Optional[ZodiacSign] = None


class ReadingMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    created_at: float
    locale: str = "en"
    source: ReadingSource
    disclaimer: str


class ReadingArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    meta: ReadingMeta
    cards: Tuple[ReadingCard, ...]
    cosmic: CosmicContext
    # frame & theme, sequence unfolding, implications & tension, interpretation & direction
    pages: Tuple[str, ...] = Field(..., min_length=4, max_length=4)
    share_text: str = Field(..., min_length=1)
    image_prompt: Optional[str] = None

    @field_validator("pages")
    @classmethod
    def _pages_not_blank(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        if any(not p.strip() for p in v):
            raise ValueError("reading pages must not be blank")
        return v


class DrawSession(BaseModel):
    """One ritual, from start to generated reading.

    Sessions are immutable snapshots. The store replaces the whole record
    on every committed action.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    input: DrawInput
    deck_order: Tuple[str, ...]
    selected: Tuple[SelectedCard, ...] = ()
    phase: Phase = Phase.SHUFFLED
    cosmic: CosmicContext
    reading: Optional[ReadingArtifact] = None
    created_at: float
    expires_at: float
    completed_at: Optional[float] = None
    seed: Optional[str] = None
    shuffle_count: int = 0

    @property
    def spread_size(self) -> int:
        return self.input.spread_size

    @property
    def selected_card_ids(self) -> Tuple[str, ...]:
        return tuple(c.card_id for c in self.selected)

    @property
    def revealed_count(self) -> int:
        return sum(1 for c in self.selected if c.revealed)

    def next_unrevealed(self) -> Optional[int]:
        for c in self.selected:
            if not c.revealed:
                return c.position
        return None


class DrawResult(BaseModel):
    ok: bool
    session: Optional[DrawSession] = None
    error: Optional[DrawError] = None
    outcome: Optional[ToggleOutcome] = None
    # True only for the call that actually produced the reading
    generated: bool = False

    @property
    def reading(self) -> Optional[ReadingArtifact]:
        return self.session.reading if self.session is not None else None

    @property
    def phase(self) -> Optional[Phase]:
        return self.session.phase if self.session is not None else None

    @classmethod
    def success(cls, session: DrawSession, **kw) -> "DrawResult":
        return cls(ok=True, session=session, **kw)

    @classmethod
    def failure(cls, error: DrawError) -> "DrawResult":
        return cls(ok=False, error=error)
