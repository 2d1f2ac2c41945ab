"""Draw session state machine.

A session moves SHUFFLED -> PICKING -> REVEALING -> REVEALED -> COMPLETE.
The phase is never set by hand: every committed state gets its phase from
`derive_phase`, and `check_invariants` runs before each commit.

All validation happens inside the store's atomic update, so two requests
racing on the same session can never both act on the same prior state.
Rejections are returned as `DrawResult` values and leave the stored
session untouched.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from . import cosmic
from .ai import ReadingGenerator
from .deck36 import card_ids
from .errors import (
    DrawRejected,
    DuplicateIdError,
    GenerationError,
    InvariantViolation,
    generation_failure,
    not_found,
    phase_conflict,
    validation,
)
from .models import DrawInput, DrawResult, DrawSession, Phase, SelectedCard, ToggleOutcome
from .storage import Mutator, SessionStore
from .utils.rng import shuffle_deck

log = logging.getLogger("cosmo_tarot.draw_engine")

START_ATTEMPTS = 3
MAX_SEED_LENGTH = 200
SELECTABLE_PHASES = (Phase.SHUFFLED, Phase.PICKING)


def derive_phase(s: DrawSession) -> Phase:
    if s.reading is not None:
        return Phase.COMPLETE
    selected = len(s.selected)
    revealed = s.revealed_count
    if selected == 0:
        return Phase.SHUFFLED
    if revealed == 0:
        # A full spread stays in PICKING until the first reveal, so it can still be edited.
        return Phase.PICKING
    if revealed < s.spread_size:
        return Phase.REVEALING
    return Phase.REVEALED


def check_invariants(s: DrawSession, deck_ids: Optional[Sequence[str]] = None) -> None:
    def fail(msg: str) -> None:
        raise InvariantViolation(f"session {s.session_id}: {msg}")

    n = len(s.selected)
    ids = s.selected_card_ids
    flags = [c.revealed for c in s.selected]

    if len(set(s.deck_order)) != len(s.deck_order):
        fail("deck order has duplicate cards")
    if deck_ids is not None and sorted(s.deck_order) != sorted(deck_ids):
        fail("deck order is not a permutation of the deck")
    if n > s.spread_size:
        fail(f"{n} cards selected for a spread of {s.spread_size}")
    if [c.position for c in s.selected] != list(range(n)):
        fail("selected positions are not dense from 0")
    if len(set(ids)) != n:
        fail("a card is selected twice")
    if not set(ids) <= set(s.deck_order):
        fail("selected card missing from deck order")
    if flags != sorted(flags, reverse=True):
        fail("revealed cards do not form a prefix")
    if any(flags) and n != s.spread_size:
        fail("cards revealed before the spread was complete")

    if s.reading is not None:
        if s.revealed_count != s.spread_size:
            fail("reading stored before every card was revealed")
        if tuple(c.id for c in s.reading.cards) != ids:
            fail("reading cards differ from selection order")
        if s.completed_at is None:
            fail("completed session has no completed_at")
    elif s.completed_at is not None:
        fail("completed_at set without a reading")

    expected = derive_phase(s)
    if s.phase is not expected:
        fail(f"stored phase {s.phase.value} disagrees with derived {expected.value}")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class DrawEngine:
    def __init__(
        self,
        store: SessionStore,
        generator: ReadingGenerator,
        deck_ids: Optional[Sequence[str]] = None,
    ):
        self.store = store
        self.generator = generator
        self._deck_ids = list(deck_ids) if deck_ids is not None else card_ids()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _advance(self, s: DrawSession, **changes: Any) -> DrawSession:
        nxt = s.model_copy(update=changes)
        nxt = nxt.model_copy(update={"phase": derive_phase(nxt)})
        check_invariants(nxt, self._deck_ids)
        return nxt

    def _apply(self, session_id: str, mutator: Mutator) -> DrawResult:
        try:
            updated = self.store.update(session_id, mutator)
        except DrawRejected as e:
            log.debug("session %s: rejected (%s) %s", session_id, e.error.kind.value, e.error.message)
            return DrawResult.failure(e.error)
        if updated is None:
            return DrawResult.failure(not_found())
        return DrawResult.success(updated)

    def _shuffled_order(self, session_id: str, seed: Optional[str], shuffle_count: int) -> tuple:
        return tuple(shuffle_deck(self._deck_ids, seed, salt=f"{session_id}:{shuffle_count}"))

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def start_draw(
        self,
        name: str,
        question: str,
        spread_size: int,
        zodiac: Optional[str] = None,
        birthdate: Optional[date] = None,
        seed: Optional[str] = None,
    ) -> DrawResult:
        try:
            draw_input = DrawInput(
                name=name,
                question=question,
                spread_size=spread_size,
                zodiac=zodiac,
                birthdate=birthdate,
            )
        except ValidationError as e:
            problems = [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]
            return DrawResult.failure(validation("invalid draw input", problems=problems))

        if seed is not None:
            seed = str(seed).strip() or None
            if seed is not None and len(seed) > MAX_SEED_LENGTH:
                return DrawResult.failure(validation("seed too long", max_length=MAX_SEED_LENGTH))

        now = self.store.now()
        today = datetime.fromtimestamp(now, tz=timezone.utc).date()
        sign = draw_input.zodiac
        if sign is None and draw_input.birthdate is not None:
            sign = cosmic.zodiac_for_date(draw_input.birthdate)
        cosmic_ctx = cosmic.compute(today, sign)

        for _ in range(START_ATTEMPTS):
            session_id = str(uuid.uuid4())
            session = DrawSession(
                session_id=session_id,
                input=draw_input,
                deck_order=self._shuffled_order(session_id, seed, 0),
                cosmic=cosmic_ctx,
                created_at=now,
                expires_at=self.store.expiry_for(now),
                seed=seed,
            )
            check_invariants(session, self._deck_ids)
            try:
                self.store.create(session)
            except DuplicateIdError:
                log.warning("session id collision on %s, retrying", session_id)
                continue
            log.info("session %s started: spread=%d", session_id, draw_input.spread_size)
            return DrawResult.success(session)

        raise DuplicateIdError("could not allocate a unique session id")

    def get_state(self, session_id: str) -> DrawResult:
        s = self.store.get(session_id)
        if s is None:
            return DrawResult.failure(not_found())
        return DrawResult.success(s)

    def get_reading(self, session_id: str) -> DrawResult:
        s = self.store.get(session_id)
        if s is None:
            return DrawResult.failure(not_found())
        if s.reading is None:
            return DrawResult.failure(phase_conflict("reading not ready", phase=s.phase.value))
        return DrawResult.success(s)

    def shuffle(self, session_id: str) -> DrawResult:
        def _shuffle(s: DrawSession) -> DrawSession:
            if s.selected:
                raise DrawRejected(phase_conflict(
                    "cannot shuffle after picking has begun",
                    phase=s.phase.value,
                    selected=len(s.selected),
                ))
            count = s.shuffle_count + 1
            return self._advance(
                s,
                deck_order=self._shuffled_order(s.session_id, s.seed, count),
                selected=(),
                shuffle_count=count,
            )

        return self._apply(session_id, _shuffle)

    def toggle_select(
        self,
        session_id: str,
        card_id: Optional[str] = None,
        deck_index: Optional[int] = None,
    ) -> DrawResult:
        """Select a card, or deselect it if it is already selected.

        The card is named either by id or by its index in the session's
        deck order. Deselecting renumbers the remaining cards 0..n-1.
        """
        if (card_id is None) == (deck_index is None):
            return DrawResult.failure(validation("provide exactly one of card_id or deck_index"))
        if deck_index is not None and not _is_int(deck_index):
            return DrawResult.failure(validation("deck_index must be an integer"))
        if card_id is not None and (not isinstance(card_id, str) or not card_id.strip()):
            return DrawResult.failure(validation("card_id must be a non-empty string"))

        outcome: Optional[ToggleOutcome] = None

        def _toggle(s: DrawSession) -> DrawSession:
            nonlocal outcome
            if s.phase not in SELECTABLE_PHASES:
                raise DrawRejected(phase_conflict(
                    "cannot select cards after reveal has started", phase=s.phase.value,
                ))

            if deck_index is not None:
                if not 0 <= deck_index < len(s.deck_order):
                    raise DrawRejected(validation("deck_index out of range", deck_size=len(s.deck_order)))
                target = s.deck_order[deck_index]
            else:
                target = card_id.strip()
                if target not in s.deck_order:
                    raise DrawRejected(validation("unknown card", card_id=target))

            if target in s.selected_card_ids:
                remaining = [c for c in s.selected if c.card_id != target]
                selected = tuple(c.model_copy(update={"position": i}) for i, c in enumerate(remaining))
                outcome = ToggleOutcome.DESELECTED
            else:
                if len(s.selected) >= s.spread_size:
                    raise DrawRejected(phase_conflict(
                        "max spread reached",
                        spread_size=s.spread_size,
                        selected=len(s.selected),
                    ))
                selected = s.selected + (SelectedCard(position=len(s.selected), card_id=target),)
                outcome = ToggleOutcome.SELECTED
            return self._advance(s, selected=selected)

        result = self._apply(session_id, _toggle)
        if result.ok:
            result.outcome = outcome
        return result

    def reveal(self, session_id: str, position: int) -> DrawResult:
        """Reveal the card at `position`; only the lowest unrevealed position is accepted."""
        if not _is_int(position):
            return DrawResult.failure(validation("position must be an integer"))

        def _reveal(s: DrawSession) -> DrawSession:
            if s.phase is Phase.COMPLETE:
                raise DrawRejected(phase_conflict("cannot reveal after completion", phase=s.phase.value))
            if len(s.selected) != s.spread_size:
                raise DrawRejected(phase_conflict(
                    "must select exactly spread cards before revealing",
                    spread_size=s.spread_size,
                    selected=len(s.selected),
                    phase=s.phase.value,
                ))
            if not 0 <= position < s.spread_size:
                raise DrawRejected(validation("position out of range", spread_size=s.spread_size))
            expected = s.next_unrevealed()
            if expected is None:
                raise DrawRejected(phase_conflict(
                    "all selected cards are already revealed", phase=s.phase.value,
                ))
            if position != expected:
                raise DrawRejected(phase_conflict(
                    "must reveal in order", expected_position=expected, phase=s.phase.value,
                ))
            selected = tuple(
                c.model_copy(update={"revealed": True}) if c.position == position else c
                for c in s.selected
            )
            return self._advance(s, selected=selected)

        return self._apply(session_id, _reveal)

    def complete(self, session_id: str) -> DrawResult:
        """Generate and store the reading; repeat calls return the stored one.

        Generation runs inside the session's atomic update, so a concurrent
        second call waits and then finds the session already COMPLETE.
        """
        generated = False

        def _complete(s: DrawSession) -> DrawSession:
            nonlocal generated
            if s.phase is Phase.COMPLETE:
                return s
            if s.phase is not Phase.REVEALED:
                raise DrawRejected(phase_conflict(
                    "cannot complete unless fully revealed",
                    phase=s.phase.value,
                    spread_size=s.spread_size,
                    revealed=s.revealed_count,
                ))
            try:
                artifact = self.generator.generate(s)
            except GenerationError as e:
                log.warning("session %s: reading generation failed: %s", s.session_id, e)
                raise DrawRejected(generation_failure(str(e), phase=s.phase.value)) from e
            generated = True
            return self._advance(s, reading=artifact, completed_at=self.store.now())

        result = self._apply(session_id, _complete)
        if result.ok:
            result.generated = generated
            if generated:
                log.info("session %s complete (source=%s)", session_id, result.reading.meta.source)
        return result
