"""
Tests for the idempotent awarders.

Every awarder must credit at most once per event, even when two triggers race.
"""
import asyncio
import random

import pytest

from awarders import (
    CooldownAwarder,
    PointDropAwarder,
    RoleRewardAwarder,
    TriviaAwarder,
    TriviaQuestion,
    pick_drop_amount,
    role_pay_for,
)
from constants import DAY, PointDropConfig


QUESTION = TriviaQuestion(
    question="How many sides does a standard die have?",
    options=[("A", "4"), ("B", "6"), ("C", "8")],
    correct_answer="B",
    reward=750,
)


class CountingLedger:
    """Wraps the real ledger and counts credits."""

    def __init__(self, ledger):
        self._ledger = ledger
        self.store = ledger.store
        self.credits = []

    async def credit(self, key, amount):
        self.credits.append((key, amount))
        return await self._ledger.credit(key, amount)


class TestCooldownAwarder:

    @pytest.fixture
    def daily(self, ledger, clock):
        return CooldownAwarder(CountingLedger(ledger), "lastDaily", DAY, clock)

    async def test_first_claim_pays(self, daily, alice):
        result = await daily.award(alice, 1000)
        assert result.balance == 1000

    async def test_concurrent_claims_pay_once(self, daily, alice):
        results = await asyncio.gather(daily.award(alice, 1000), daily.award(alice, 1000))

        assert sum(r is not None for r in results) == 1
        assert len(daily.ledger.credits) == 1
        assert (await daily.ledger._ledger.get_account(alice))["balance"] == 1000

    async def test_claim_again_after_cooldown(self, daily, alice, clock):
        await daily.award(alice, 1000)
        clock.advance(DAY - 1)
        assert await daily.award(alice, 1000) is None
        assert await daily.time_left(alice) == 1

        clock.advance(1)
        result = await daily.award(alice, 500)
        assert result.balance == 1500

    async def test_separate_fields_are_independent(self, ledger, clock, alice):
        daily = CooldownAwarder(ledger, "lastDaily", DAY, clock)
        role_pay = CooldownAwarder(ledger, "lastDailyRolePayAt", DAY, clock)

        assert await daily.award(alice, 100) is not None
        assert await role_pay.award(alice, 200) is not None


class TestRolePayFor:

    def test_sums_held_roles(self):
        paid_roles = [
            {"role_id": 1, "daily_pay": 500, "extra_withdraw_limit": 10_000},
            {"role_id": 2, "daily_pay": 250},
            {"role_id": 3, "daily_pay": 9999, "extra_withdraw_limit": 9999},
        ]
        assert role_pay_for([1, 2, 42], paid_roles) == (750, 10_000)

    def test_no_paid_roles(self):
        assert role_pay_for([1, 2], []) == (0, 0)


class TestRoleRewardAwarder:

    async def test_reward_paid_once_per_role(self, ledger, alice):
        awarder = RoleRewardAwarder(CountingLedger(ledger))

        results = await asyncio.gather(
            awarder.award(alice, 555, 5000),
            awarder.award(alice, 555, 5000),
        )

        assert sum(r is not None for r in results) == 1
        assert len(awarder.ledger.credits) == 1
        account = await ledger.get_account(alice)
        assert account["balance"] == 5000
        assert account["claimedRoleRewards"] == ["555"]

    async def test_different_roles_both_pay(self, ledger, alice):
        awarder = RoleRewardAwarder(ledger)
        await awarder.award(alice, 1, 100)
        result = await awarder.award(alice, 2, 200)
        assert result.balance == 300


class TestPointDrops:

    @pytest.fixture
    def drops(self, ledger, clock):
        return PointDropAwarder(CountingLedger(ledger), clock)

    async def test_first_claim_wins(self, drops, alice, bob):
        drop = await drops.open_drop(channel_id=42, amount=750)

        results = await asyncio.gather(drops.claim(drop.drop_id, alice), drops.claim(drop.drop_id, bob))

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert winners[0].balance == 750
        assert len(drops.ledger.credits) == 1

    async def test_expiry_after_claim_is_a_no_op(self, drops, store, alice):
        drop = await drops.open_drop(channel_id=42, amount=500)
        await drops.claim(drop.drop_id, alice)

        assert await drops.expire(drop.drop_id) is False
        doc = await store.find_one(store.POINT_DROPS, {"_id": drop.drop_id})
        assert doc["status"] == "claimed"
        assert doc["claimedBy"] == alice.user_id

    async def test_claim_after_expiry_pays_nothing(self, drops, alice):
        drop = await drops.open_drop(channel_id=42, amount=500)
        assert await drops.expire(drop.drop_id) is True
        assert await drops.claim(drop.drop_id, alice) is None
        assert drops.ledger.credits == []

    async def test_claim_past_window_pays_nothing(self, drops, alice, clock):
        drop = await drops.open_drop(channel_id=42, amount=500, window=180)
        clock.advance(180)
        assert await drops.claim(drop.drop_id, alice) is None

    def test_pick_drop_amount(self):
        rng = random.Random(3)
        for _ in range(100):
            amount, mega = pick_drop_amount(rng)
            if mega:
                assert amount - PointDropConfig.MEGA_BONUS in PointDropConfig.AMOUNTS
            else:
                assert amount in PointDropConfig.AMOUNTS


class TestTrivia:

    @pytest.fixture
    def trivia(self, ledger, clock):
        return TriviaAwarder(CountingLedger(ledger), clock, threshold=3, cooldown=3600, window=60)

    async def test_question_after_threshold_messages(self, trivia, alice):
        triggered = [await trivia.record_message(alice) for _ in range(4)]
        assert triggered == [False, False, True, False]

    async def test_cooldown_between_questions(self, trivia, alice, clock):
        for _ in range(3):
            await trivia.record_message(alice)

        assert not any([await trivia.record_message(alice) for _ in range(5)])

        clock.advance(3600)
        assert await trivia.record_message(alice)

    async def test_correct_answer_pays_once(self, trivia, alice):
        session = await trivia.open_session(alice, QUESTION)

        results = await asyncio.gather(
            trivia.answer(session.session_id, alice.user_id, "B"),
            trivia.answer(session.session_id, alice.user_id, "B"),
        )

        settled = [r for r in results if r is not None]
        assert len(settled) == 1
        assert settled[0].correct
        assert settled[0].ledger.balance == 750
        assert len(trivia.ledger.credits) == 1

    async def test_wrong_answer_pays_nothing(self, trivia, alice):
        session = await trivia.open_session(alice, QUESTION)
        result = await trivia.answer(session.session_id, alice.user_id, "A")

        assert not result.correct
        assert result.correct_answer == "B"
        assert trivia.ledger.credits == []
        assert await trivia.answer(session.session_id, alice.user_id, "B") is None

    async def test_only_owner_can_answer(self, trivia, alice, bob):
        session = await trivia.open_session(alice, QUESTION)
        assert await trivia.answer(session.session_id, bob.user_id, "B") is None
        assert (await trivia.answer(session.session_id, alice.user_id, "B")).correct

    async def test_expiry_after_answer_is_a_no_op(self, trivia, alice):
        session = await trivia.open_session(alice, QUESTION)
        await trivia.answer(session.session_id, alice.user_id, "B")
        assert await trivia.expire(session.session_id) is False

    async def test_answer_after_window_is_rejected(self, trivia, alice, clock):
        session = await trivia.open_session(alice, QUESTION)
        clock.advance(60)
        assert await trivia.answer(session.session_id, alice.user_id, "B") is None
        assert await trivia.expire(session.session_id) is True


class TestTriviaQuestion:

    def test_from_dict(self):
        question = TriviaQuestion.from_dict({
            "question": "2 + 2?",
            "options": [{"id": "A", "text": "3"}, {"id": "B", "text": "4"}],
            "correct_answer": "B",
        })
        assert question.options == [("A", "3"), ("B", "4")]
        assert question.reward == 500

    def test_correct_answer_must_be_an_option(self):
        with pytest.raises(ValueError):
            TriviaQuestion.from_dict({
                "question": "2 + 2?",
                "options": [{"id": "A", "text": "3"}],
                "correct_answer": "B",
            })
