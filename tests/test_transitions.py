"""
Interaction state machine tests - the transition table and CAS guard.
"""
import pytest

from leadgate.errors import IllegalTransitionError
from leadgate.models.interaction import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    InteractionStatus as S,
    can_transition,
    check_transition,
)
from leadgate.repositories import InteractionRepository


class TestTransitionTable:
    def test_covers_every_status(self):
        assert set(TRANSITIONS) == set(S)

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {S.DONE, S.EXPIRED, S.OPTED_OUT}

    def test_happy_path(self):
        path = [
            S.NEW_LEAD, S.TEASER_SENT, S.AWAIT_CONFIRM, S.PAYMENT_LINK_SENT,
            S.AWAITING_PAYMENT, S.PAID, S.REVEAL_DETAILS_SENT, S.DONE,
        ]
        for current, target in zip(path, path[1:]):
            assert can_transition(current, target), f"{current} -> {target}"

    def test_paid_cannot_expire_or_opt_out(self):
        assert not can_transition(S.PAID, S.EXPIRED)
        assert not can_transition(S.PAID, S.OPTED_OUT)

    def test_no_way_back(self):
        assert not can_transition(S.PAYMENT_LINK_SENT, S.TEASER_SENT)
        assert not can_transition(S.EXPIRED, S.TEASER_SENT)

    def test_check_transition_raises(self):
        with pytest.raises(IllegalTransitionError) as exc:
            check_transition(S.DONE, S.PAID)
        assert exc.value.current == S.DONE
        assert exc.value.target == S.PAID


class TestCas:
    async def test_wins_once(self, db, make_lead, make_interaction):
        await make_lead("L1")
        await make_interaction("L1", "P1", status="TEASER_SENT")
        repo = InteractionRepository(db)

        assert await repo.cas("L1", "P1", [S.TEASER_SENT], status=S.EXPIRED) is True
        assert await repo.cas("L1", "P1", [S.TEASER_SENT], status=S.EXPIRED) is False

        row = await repo.get("L1", "P1")
        assert row.status == "EXPIRED"

    async def test_illegal_target_rejected_before_update(self, db, make_lead, make_interaction):
        await make_lead("L1")
        await make_interaction("L1", "P1", status="PAID")
        repo = InteractionRepository(db)

        with pytest.raises(IllegalTransitionError):
            await repo.cas("L1", "P1", [S.PAID], status=S.EXPIRED)

        assert (await repo.get("L1", "P1")).status == "PAID"

    async def test_insert_if_absent(self, db, make_lead):
        await make_lead("L1")
        repo = InteractionRepository(db)

        assert await repo.insert_if_absent("L1", "P1") is True
        assert await repo.insert_if_absent("L1", "P1") is False
        assert (await repo.get("L1", "P1")).status == "NEW_LEAD"
