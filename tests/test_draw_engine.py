"""Tests for the draw session state machine."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone

import pytest

from cosmo_tarot import cosmic
from cosmo_tarot.deck36 import card_ids
from cosmo_tarot.draw_engine import DrawEngine, check_invariants, derive_phase
from cosmo_tarot.errors import ErrorKind, InvariantViolation, NOT_FOUND_MESSAGE
from cosmo_tarot.models import Phase, SelectedCard, ToggleOutcome
from cosmo_tarot.storage import SessionStore
from cosmo_tarot.utils.rng import shuffle_deck

from conftest import TTL, CountingGenerator


def pick(engine, session, *indices):
    for i in indices:
        result = engine.toggle_select(session.session_id, deck_index=i)
        assert result.ok, result.error
    return engine.get_state(session.session_id).session


class TestStartDraw:
    def test_new_session_is_shuffled(self, engine, start, clock):
        s = start(3)
        assert s.phase is Phase.SHUFFLED
        assert s.selected == ()
        assert sorted(s.deck_order) == sorted(card_ids())
        assert len(s.deck_order) == 36
        assert s.created_at == clock.now
        assert s.expires_at == clock.now + TTL
        assert s.reading is None

    def test_cosmic_context_uses_creation_date(self, start, clock):
        s = start(5)
        today = datetime.fromtimestamp(clock.now, tz=timezone.utc).date()
        assert s.cosmic == cosmic.compute(today)

    def test_zodiac_derived_from_birthdate(self, start):
        s = start(3, birthdate=date(1990, 8, 1))
        assert s.cosmic.zodiac == "leo"

    def test_explicit_zodiac_wins_and_is_normalized(self, start):
        s = start(3, zodiac=" Pisces ", birthdate=date(1990, 8, 1))
        assert s.cosmic.zodiac == "pisces"

    def test_input_is_trimmed(self, start):
        s = start(3, name="  Ada  ", question="  Will it work?  ")
        assert s.input.name == "Ada"
        assert s.input.question == "Will it work?"

    @pytest.mark.parametrize("spread", [0, 1, 4, 6])
    def test_invalid_spread_rejected(self, engine, store, spread):
        result = engine.start_draw(name="Ada", question="Q?", spread_size=spread)
        assert not result.ok
        assert result.error.kind is ErrorKind.VALIDATION
        assert len(store) == 0

    def test_blank_name_rejected(self, engine):
        result = engine.start_draw(name="   ", question="Q?", spread_size=3)
        assert result.error.kind is ErrorKind.VALIDATION
        assert [p["field"] for p in result.error.details["problems"]] == ["name"]

    def test_unknown_zodiac_rejected(self, engine):
        result = engine.start_draw(name="Ada", question="Q?", spread_size=3, zodiac="ophiuchus")
        assert result.error.kind is ErrorKind.VALIDATION

    def test_future_birthdate_rejected(self, engine):
        result = engine.start_draw(name="Ada", question="Q?", spread_size=3, birthdate=date(9999, 1, 1))
        assert result.error.kind is ErrorKind.VALIDATION

    def test_ids_are_unique(self, start):
        ids = {start(3).session_id for _ in range(20)}
        assert len(ids) == 20


class TestShuffle:
    def test_shuffle_before_picking(self, engine, start):
        s = start(3)
        result = engine.shuffle(s.session_id)
        assert result.ok
        assert result.phase is Phase.SHUFFLED
        assert result.session.shuffle_count == 1
        assert sorted(result.session.deck_order) == sorted(card_ids())

    def test_shuffle_rejected_once_a_card_is_selected(self, engine, start):
        s = pick(engine, start(3), 0)
        result = engine.shuffle(s.session_id)
        assert not result.ok
        assert result.error.kind is ErrorKind.PHASE_CONFLICT
        after = engine.get_state(s.session_id).session
        assert after.deck_order == s.deck_order
        assert after == s

    def test_seeded_shuffles_are_reproducible(self, engine):
        s = engine.start_draw(name="Ada", question="Q?", spread_size=3, seed="fixed").session
        sid = s.session_id
        assert list(s.deck_order) == shuffle_deck(card_ids(), "fixed", salt=f"{sid}:0")
        again = engine.shuffle(sid).session
        assert list(again.deck_order) == shuffle_deck(card_ids(), "fixed", salt=f"{sid}:1")
        assert again.deck_order != s.deck_order


class TestToggleSelect:
    def test_select_by_card_id(self, engine, start):
        s = start(3)
        target = s.deck_order[5]
        result = engine.toggle_select(s.session_id, card_id=target)
        assert result.ok
        assert result.outcome is ToggleOutcome.SELECTED
        assert result.phase is Phase.PICKING
        assert result.session.selected == (SelectedCard(position=0, card_id=target),)

    def test_select_by_deck_index(self, engine, start):
        s = start(3)
        result = engine.toggle_select(s.session_id, deck_index=7)
        assert result.session.selected[0].card_id == s.deck_order[7]

    def test_full_spread_still_picking(self, engine, start):
        s = pick(engine, start(3), 0, 1, 2)
        assert s.phase is Phase.PICKING
        assert len(s.selected) == 3

    def test_selecting_beyond_spread_rejected(self, engine, start):
        s = pick(engine, start(3), 0, 1, 2)
        result = engine.toggle_select(s.session_id, deck_index=3)
        assert not result.ok
        assert result.error.kind is ErrorKind.PHASE_CONFLICT
        assert result.error.message == "max spread reached"
        after = engine.get_state(s.session_id).session
        assert after.selected == s.selected
        assert [c.position for c in after.selected] == [0, 1, 2]

    def test_deselect_reindexes(self, engine, start):
        s = pick(engine, start(3), 0, 1, 2)
        a, b, c = s.deck_order[:3]
        result = engine.toggle_select(s.session_id, card_id=b)
        assert result.outcome is ToggleOutcome.DESELECTED
        assert result.session.selected == (
            SelectedCard(position=0, card_id=a),
            SelectedCard(position=1, card_id=c),
        )
        assert result.phase is Phase.PICKING

    def test_deselect_last_card_returns_to_shuffled(self, engine, start):
        s = pick(engine, start(3), 4)
        result = engine.toggle_select(s.session_id, deck_index=4)
        assert result.outcome is ToggleOutcome.DESELECTED
        assert result.phase is Phase.SHUFFLED
        # shuffling is allowed again
        assert engine.shuffle(s.session_id).ok

    def test_unknown_card_rejected(self, engine, start):
        s = start(3)
        result = engine.toggle_select(s.session_id, card_id="joker")
        assert result.error.kind is ErrorKind.VALIDATION

    def test_deck_index_out_of_range(self, engine, start):
        s = start(3)
        result = engine.toggle_select(s.session_id, deck_index=36)
        assert result.error.kind is ErrorKind.VALIDATION
        assert result.error.details == {"deck_size": 36}

    @pytest.mark.parametrize("kwargs", [{}, {"card_id": "rider", "deck_index": 0}, {"deck_index": True}])
    def test_bad_arguments(self, engine, start, kwargs):
        s = start(3)
        result = engine.toggle_select(s.session_id, **kwargs)
        assert result.error.kind is ErrorKind.VALIDATION

    def test_select_rejected_after_reveal_started(self, engine, start):
        s = pick(engine, start(3), 0, 1, 2)
        assert engine.reveal(s.session_id, 0).ok
        result = engine.toggle_select(s.session_id, deck_index=0)
        assert result.error.kind is ErrorKind.PHASE_CONFLICT
        assert result.error.details["phase"] == "REVEALING"


class TestReveal:
    def test_reveal_in_order(self, engine, start):
        s = pick(engine, start(3), 0, 1, 2)
        r0 = engine.reveal(s.session_id, 0)
        assert r0.phase is Phase.REVEALING
        r1 = engine.reveal(s.session_id, 1)
        assert r1.phase is Phase.REVEALING
        r2 = engine.reveal(s.session_id, 2)
        assert r2.phase is Phase.REVEALED
        assert all(c.revealed for c in r2.session.selected)

    def test_out_of_order_reveal_rejected(self, engine, start):
        s = pick(engine, start(3), 0, 1, 2)
        result = engine.reveal(s.session_id, 1)
        assert result.error.kind is ErrorKind.PHASE_CONFLICT
        assert result.error.message == "must reveal in order"
        assert result.error.details["expected_position"] == 0
        assert engine.get_state(s.session_id).session.selected == s.selected

    def test_skipping_ahead_mid_sequence_rejected(self, engine, start):
        s = pick(engine, start(5), 0, 1, 2, 3, 4)
        engine.reveal(s.session_id, 0)
        result = engine.reveal(s.session_id, 2)
        assert result.error.details["expected_position"] == 1

    def test_position_out_of_range(self, engine, start):
        s = pick(engine, start(3), 0, 1, 2)
        for bad in (-1, 3):
            result = engine.reveal(s.session_id, bad)
            assert result.error.kind is ErrorKind.VALIDATION

    def test_non_integer_position(self, engine, start):
        s = pick(engine, start(3), 0, 1, 2)
        assert engine.reveal(s.session_id, "0").error.kind is ErrorKind.VALIDATION

    def test_reveal_requires_full_spread(self, engine, start):
        s = pick(engine, start(3), 0, 1)
        result = engine.reveal(s.session_id, 0)
        assert result.error.kind is ErrorKind.PHASE_CONFLICT
        assert result.error.details["selected"] == 2

    def test_reveal_after_all_revealed(self, engine, revealed):
        s = revealed(3)
        result = engine.reveal(s.session_id, 2)
        assert result.error.kind is ErrorKind.PHASE_CONFLICT
        assert result.error.message == "all selected cards are already revealed"


class TestComplete:
    def test_complete_requires_full_reveal(self, engine, start, generator):
        s = pick(engine, start(3), 0, 1, 2)
        engine.reveal(s.session_id, 0)
        result = engine.complete(s.session_id)
        assert result.error.kind is ErrorKind.PHASE_CONFLICT
        assert result.error.message == "cannot complete unless fully revealed"
        assert generator.calls == 0

    def test_complete_is_idempotent(self, engine, revealed, generator, clock):
        s = revealed(3)
        first = engine.complete(s.session_id)
        second = engine.complete(s.session_id)
        assert first.ok and second.ok
        assert first.generated and not second.generated
        assert first.reading == second.reading
        assert second.phase is Phase.COMPLETE
        assert second.session.completed_at == clock.now
        assert generator.calls == 1

    def test_generation_failure_leaves_session_retryable(self, engine, revealed, generator):
        s = revealed(3)
        generator.fail = True
        failed = engine.complete(s.session_id)
        assert failed.error.kind is ErrorKind.GENERATION_FAILURE
        after = engine.get_state(s.session_id).session
        assert after.phase is Phase.REVEALED
        assert after.reading is None

        generator.fail = False
        retried = engine.complete(s.session_id)
        assert retried.ok
        assert retried.phase is Phase.COMPLETE
        assert generator.calls == 2

    def test_concurrent_complete_generates_once(self, clock):
        store = SessionStore(ttl_seconds=TTL, clock=clock)
        slow = CountingGenerator(clock, delay=0.05)
        engine = DrawEngine(store, slow)
        s = engine.start_draw(name="Ada", question="Q?", spread_size=3).session
        for i in range(3):
            engine.toggle_select(s.session_id, deck_index=i)
        for i in range(3):
            engine.reveal(s.session_id, i)

        barrier = threading.Barrier(2)

        def go(_):
            barrier.wait(timeout=5)
            return engine.complete(s.session_id)

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(go, range(2)))

        assert all(r.ok for r in results)
        assert slow.calls == 1
        assert sorted(r.generated for r in results) == [False, True]
        assert results[0].reading == results[1].reading

    def test_no_changes_after_complete(self, engine, revealed):
        s = revealed(3)
        engine.complete(s.session_id)
        done = engine.get_state(s.session_id).session
        assert engine.reveal(s.session_id, 0).error.message == "cannot reveal after completion"
        assert engine.toggle_select(s.session_id, deck_index=0).error.kind is ErrorKind.PHASE_CONFLICT
        assert engine.shuffle(s.session_id).error.kind is ErrorKind.PHASE_CONFLICT
        assert engine.get_state(s.session_id).session == done

    def test_get_reading_before_and_after(self, engine, revealed):
        s = revealed(3)
        assert engine.get_reading(s.session_id).error.message == "reading not ready"
        engine.complete(s.session_id)
        assert engine.get_reading(s.session_id).reading is not None


class TestExpiry:
    def test_every_operation_sees_expired_session_as_missing(self, engine, revealed, clock):
        s = revealed(3)
        clock.advance(TTL + 0.001)
        results = [
            engine.get_state(s.session_id),
            engine.get_reading(s.session_id),
            engine.shuffle(s.session_id),
            engine.toggle_select(s.session_id, deck_index=0),
            engine.reveal(s.session_id, 0),
            engine.complete(s.session_id),
        ]
        for r in results:
            assert not r.ok
            assert r.error.kind is ErrorKind.NOT_FOUND

    def test_unknown_and_expired_are_indistinguishable(self, engine, start, clock):
        s = start(3)
        clock.advance(TTL + 1)
        expired = engine.get_state(s.session_id).error
        unknown = engine.get_state("never-existed").error
        assert expired == unknown
        assert expired.message == NOT_FOUND_MESSAGE

    def test_requests_for_unknown_ids_do_not_grow_the_store(self, engine, store):
        for i in range(500):
            assert not engine.shuffle(f"made-up-{i}").ok
            assert not engine.toggle_select(f"made-up-s-{i}", deck_index=0).ok
            assert not engine.reveal(f"made-up-r-{i}", 0).ok
            assert not engine.complete(f"made-up-c-{i}").ok
        assert len(store) == 0
        assert store._key_locks == {}


class TestConcurrency:
    def test_concurrent_selects_are_not_lost(self, engine, start):
        for _ in range(20):
            s = start(3)
            barrier = threading.Barrier(2)

            def go(idx):
                barrier.wait(timeout=5)
                return engine.toggle_select(s.session_id, deck_index=idx)

            with ThreadPoolExecutor(max_workers=2) as pool:
                results = list(pool.map(go, [0, 1]))

            assert all(r.ok for r in results)
            final = engine.get_state(s.session_id).session
            assert sorted(final.selected_card_ids) == sorted(s.deck_order[:2])
            assert [c.position for c in final.selected] == [0, 1]


class TestInvariants:
    def test_derive_phase_matches_stored(self, engine, revealed):
        s = revealed(5)
        assert derive_phase(s) is s.phase is Phase.REVEALED
        check_invariants(s, card_ids())

    def test_stale_phase_is_an_invariant_violation(self, start):
        s = start(3)
        bad = s.model_copy(update={"phase": Phase.REVEALED})
        with pytest.raises(InvariantViolation):
            check_invariants(bad)

    def test_gap_in_positions_is_an_invariant_violation(self, start):
        s = start(3)
        bad = s.model_copy(update={
            "selected": (SelectedCard(position=1, card_id=s.deck_order[0]),),
            "phase": Phase.PICKING,
        })
        with pytest.raises(InvariantViolation):
            check_invariants(bad)

    def test_reveal_must_be_prefix(self, start):
        s = start(3)
        selected = (
            SelectedCard(position=0, card_id=s.deck_order[0]),
            SelectedCard(position=1, card_id=s.deck_order[1], revealed=True),
            SelectedCard(position=2, card_id=s.deck_order[2]),
        )
        bad = s.model_copy(update={"selected": selected, "phase": Phase.REVEALING})
        with pytest.raises(InvariantViolation):
            check_invariants(bad)


def test_end_to_end_three_card_draw(engine, generator):
    started = engine.start_draw(name="Ada", question="What should I focus on?", spread_size=3)
    sid = started.session.session_id
    assert engine.shuffle(sid).phase is Phase.SHUFFLED

    order = engine.get_state(sid).session.deck_order
    for i in range(3):
        engine.toggle_select(sid, card_id=order[i])
    for pos in range(3):
        result = engine.reveal(sid, pos)
    assert result.phase is Phase.REVEALED

    done = engine.complete(sid)
    assert done.phase is Phase.COMPLETE
    reading = done.reading
    assert len(reading.pages) == 4
    assert [c.id for c in reading.cards] == list(order[:3])
    assert [c.position for c in reading.cards] == [1, 2, 3]
    assert reading.meta.session_id == sid
    assert generator.calls == 1
