"""
Tests for the coin flip, dice and slots engines and the bet flow.
"""
import random

import pytest

from constants import GamblingConfig
from error_handler import InsufficientFunds, InvalidAmount
from games import dice_outcome, flip_coin, net_change, play, roll_dice, slots_outcome, spin_slots


class ScriptedRng:
    """Returns fixed draws; records what was asked of it."""

    def __init__(self, ints=(), reels=None, floats=()):
        self.ints = list(ints)
        self.reels = reels
        self.floats = list(floats)
        self.calls = []

    def random(self):
        self.calls.append(("random",))
        return self.floats.pop(0)

    def randint(self, low, high):
        self.calls.append(("randint", low, high))
        return self.ints.pop(0)

    def choices(self, population, weights=None, k=1):
        self.calls.append(("choices", k))
        return list(self.reels)


class ExplodingRng:
    """Fails the test if the game draws at all."""

    def randint(self, *args):
        raise AssertionError("drew before validating the bet")

    def choices(self, *args, **kwargs):
        raise AssertionError("drew before validating the bet")

    def random(self):
        raise AssertionError("drew before validating the bet")


class TestDice:

    @pytest.mark.parametrize("die1, die2, multiplier, outcome", [
        (3, 3, 2, "doubles"),
        (3, 4, 2, "lucky_seven"),
        (4, 5, 1, "high_roll"),
        (2, 3, 0, "low_roll"),
        (6, 6, 2, "doubles"),
        (1, 1, 2, "doubles"),
        (2, 6, 1, "high_roll"),
        (1, 5, 0, "low_roll"),
    ])
    def test_outcome_table(self, die1, die2, multiplier, outcome):
        assert dice_outcome(die1, die2) == (multiplier, outcome)

    def test_roll_draws_two_dice(self):
        rng = ScriptedRng(ints=[3, 4])
        roll = roll_dice(rng)

        assert (roll.die1, roll.die2, roll.total) == (3, 4, 7)
        assert roll.multiplier == 2
        assert rng.calls == [("randint", 1, 6), ("randint", 1, 6)]

    def test_roll_stays_in_range(self):
        rng = random.Random(7)
        for _ in range(200):
            roll = roll_dice(rng)
            assert 1 <= roll.die1 <= 6
            assert 1 <= roll.die2 <= 6


class TestSlots:

    def test_triple_uses_triple_table(self):
        assert slots_outcome(["💎", "💎", "💎"]) == (25, "triple", "💎")

    def test_double_identifies_shared_symbol(self):
        assert slots_outcome(["🍒", "⭐", "⭐"]) == (3, "double", "⭐")
        assert slots_outcome(["⭐", "🍒", "⭐"]) == (3, "double", "⭐")

    def test_double_can_pay_less_than_the_bet(self):
        multiplier, outcome, _ = slots_outcome(["🍋", "🍋", "💰"])
        assert outcome == "double"
        assert multiplier == 0.5
        assert net_change(100, multiplier) == -50

    def test_no_match_pays_nothing(self):
        assert slots_outcome(["🍋", "🍒", "🍉"]) == (0, "no_match", None)

    def test_spin_uses_weighted_draw(self):
        rng = ScriptedRng(reels=["💰", "💰", "💰"])
        spin = spin_slots(rng)

        assert spin.multiplier == 100
        assert spin.matched == "💰"
        assert rng.calls == [("choices", 3)]

    def test_weights_and_tables(self):
        weights = GamblingConfig.SLOT_WEIGHTS
        assert len(GamblingConfig.SLOT_SYMBOLS) == 10
        assert sum(weights) == pytest.approx(100)
        assert all(a > b for a, b in zip(weights, weights[1:]))

        triples = GamblingConfig.SLOT_TRIPLE_PAYOUTS.values()
        doubles = GamblingConfig.SLOT_DOUBLE_PAYOUTS.values()
        assert (min(triples), max(triples)) == (3, 100)
        assert (min(doubles), max(doubles)) == (0.5, 15)
        for symbol in GamblingConfig.SLOT_SYMBOLS:
            assert GamblingConfig.SLOT_DOUBLE_PAYOUTS[symbol] < GamblingConfig.SLOT_TRIPLE_PAYOUTS[symbol]


class TestCoinFlip:

    @pytest.mark.parametrize("draw, won, multiplier", [
        (0.0, True, 2),
        (0.4999, True, 2),
        (0.5, False, 0),
        (0.99, False, 0),
    ])
    def test_even_odds(self, draw, won, multiplier):
        flip = flip_coin(ScriptedRng(floats=[draw]))
        assert flip.won is won
        assert flip.multiplier == multiplier

    def test_real_rng_wins_about_half(self):
        rng = random.Random(7)
        wins = sum(flip_coin(rng).won for _ in range(10_000))
        assert 4_700 < wins < 5_300


class TestBetFlow:

    async def test_win_applies_net_change(self, ledger, alice):
        await ledger.apply_delta(alice, 500)
        result = await play(ledger, alice, 100, roll_dice, ScriptedRng(ints=[5, 5]))

        assert result.net == 100
        assert result.balance == 600

    async def test_break_even_keeps_balance(self, ledger, alice):
        await ledger.apply_delta(alice, 500)
        result = await play(ledger, alice, 100, roll_dice, ScriptedRng(ints=[4, 5]))

        assert result.net == 0
        assert result.balance == 500

    async def test_loss_debits_bet(self, ledger, alice):
        await ledger.apply_delta(alice, 500)
        result = await play(ledger, alice, 100, roll_dice, ScriptedRng(ints=[2, 3]))

        assert result.net == -100
        assert result.balance == 400

    async def test_bet_over_balance_rejected_before_draw(self, ledger, alice):
        await ledger.apply_delta(alice, 50)

        with pytest.raises(InsufficientFunds):
            await play(ledger, alice, 100, roll_dice, ExplodingRng())
        assert (await ledger.get_account(alice))["balance"] == 50

    @pytest.mark.parametrize("bet", [0, -10, 2.5, GamblingConfig.MAX_BET + 1])
    async def test_invalid_bet_rejected_before_draw(self, ledger, alice, bet):
        await ledger.apply_delta(alice, 500)
        with pytest.raises(InvalidAmount):
            await play(ledger, alice, bet, spin_slots, ExplodingRng())

    async def test_gamble_win_doubles_stake(self, ledger, alice):
        await ledger.apply_delta(alice, 300)
        result = await play(ledger, alice, 300, flip_coin, ScriptedRng(floats=[0.1]))

        assert result.net == 300
        assert result.balance == 600

    async def test_gamble_loss_can_empty_balance(self, ledger, alice):
        await ledger.apply_delta(alice, 300)
        result = await play(ledger, alice, 300, flip_coin, ScriptedRng(floats=[0.9]))

        assert result.net == -300
        assert result.balance == 0
        assert [event.delta for event in result.ledger.events] == [-300]
