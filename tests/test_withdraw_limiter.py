"""
Tests for the weekly withdrawal limiter.

Covers:
1. Per-account reservations against the weekly cap
2. Lazy window reset after seven days
3. Zero-amount checks
4. The global gate and rollback of the account gate
5. Concurrent reservations
"""
import asyncio

import pytest

from constants import WEEK
from database import MongoStore
from error_handler import InvalidAmount, Unavailable
from withdraw_limiter import WithdrawalLimiter


@pytest.fixture
def limiter(store, clock):
    return WithdrawalLimiter(store, weekly_cap=1000, global_cap=1500, clock=clock)


class TestAccountGate:

    async def test_reservations_stop_at_cap(self, limiter, alice):
        first = await limiter.check_and_reserve(alice, 400)
        second = await limiter.check_and_reserve(alice, 400)
        third = await limiter.check_and_reserve(alice, 400)

        assert [first.allowed, second.allowed, third.allowed] == [True, True, False]
        assert second.remaining == 200
        assert third.remaining == 200
        assert third.used == 800

    async def test_reservation_up_to_exact_cap(self, limiter, alice):
        check = await limiter.check_and_reserve(alice, 1000)
        assert check.allowed
        assert check.remaining == 0

    async def test_window_resets_after_a_week(self, limiter, alice, clock):
        assert (await limiter.check_and_reserve(alice, 1000)).allowed
        assert not (await limiter.check_and_reserve(alice, 900)).allowed

        clock.advance(WEEK)
        check = await limiter.check_and_reserve(alice, 900)

        assert check.allowed
        assert check.used == 900
        assert check.window_start == clock.now

    async def test_window_not_reset_before_a_week(self, limiter, alice, clock):
        await limiter.check_and_reserve(alice, 1000)
        clock.advance(WEEK - 1)
        assert not (await limiter.check_and_reserve(alice, 1)).allowed

    async def test_zero_amount_check_reports_remaining(self, limiter, alice):
        await limiter.check_and_reserve(alice, 300)
        check = await limiter.check_and_reserve(alice, 0)

        assert check.allowed
        assert check.used == 300
        assert check.remaining == 700

    async def test_zero_amount_check_starts_window(self, limiter, store, alice, clock):
        check = await limiter.check_and_reserve(alice, 0)

        assert check.window_start == clock.now
        assert check.resets_at == clock.now + WEEK
        account = await store.find_profile(alice)
        assert account["weeklyWithdrawAmount"] == 0

    async def test_extra_limit_raises_cap(self, limiter, alice):
        check = await limiter.check_and_reserve(alice, 1200, extra_limit=500)
        assert check.allowed
        assert check.cap == 1500
        assert check.remaining == 300

    async def test_release_returns_quota(self, limiter, alice):
        await limiter.check_and_reserve(alice, 1000)
        await limiter.release(alice, 400)
        assert (await limiter.check_and_reserve(alice, 400)).allowed

    async def test_release_after_window_reset_keeps_usage_non_negative(self, limiter, store, alice, clock):
        await limiter.check_and_reserve(alice, 600)
        clock.advance(WEEK)
        await limiter.check_and_reserve(alice, 100)

        await limiter.release(alice, 600)

        account = await store.find_profile(alice)
        assert account["weeklyWithdrawAmount"] == 100
        assert not (await limiter.check_and_reserve(alice, 901)).allowed

    async def test_concurrent_reservations_respect_cap(self, limiter, store, alice):
        results = await asyncio.gather(
            limiter.check_and_reserve(alice, 600),
            limiter.check_and_reserve(alice, 600)
        )

        assert sorted(check.allowed for check in results) == [False, True]
        account = await store.find_profile(alice)
        assert account["weeklyWithdrawAmount"] == 600

    async def test_negative_amount_rejected(self, limiter, alice):
        with pytest.raises(InvalidAmount):
            await limiter.check_and_reserve(alice, -1)


class TestGlobalGate:

    async def test_global_cap_is_shared(self, limiter):
        assert (await limiter.check_and_reserve_global(1000, "999")).allowed
        check = await limiter.check_and_reserve_global(600, "999")

        assert not check.allowed
        assert check.remaining == 500

    async def test_global_scopes_are_independent(self, limiter):
        await limiter.check_and_reserve_global(1500, "1")
        assert (await limiter.check_and_reserve_global(1500, "2")).allowed

    async def test_global_window_resets(self, limiter, clock):
        await limiter.check_and_reserve_global(1500)
        clock.advance(WEEK)
        check = await limiter.check_and_reserve_global(1500)
        assert check.allowed
        assert check.window_start == clock.now

    async def test_concurrent_global_reservations_respect_cap(self, limiter, store):
        results = await asyncio.gather(
            limiter.check_and_reserve_global(1000, "999"),
            limiter.check_and_reserve_global(1000, "999")
        )

        assert sorted(check.allowed for check in results) == [False, True]
        state = await store.find_one(MongoStore.GLOBAL_WITHDRAW, {"_id": limiter.global_doc_id("999")})
        assert state["totalWithdrawnThisWeek"] == 1000

    async def test_global_release_never_goes_negative(self, limiter):
        await limiter.check_and_reserve_global(200, "999")
        await limiter.release_global(500, "999")

        state = await limiter.check_and_reserve_global(0, "999")
        assert state.used == 200

    async def test_global_failure_rolls_back_account(self, limiter, store, alice, monkeypatch):
        async def global_down(amount, server_id=None):
            raise Unavailable("store unreachable")

        monkeypatch.setattr(limiter, "check_and_reserve_global", global_down)

        with pytest.raises(Unavailable):
            await limiter.reserve(alice, 600)

        account = await store.find_profile(alice)
        assert account["weeklyWithdrawAmount"] == 0

    async def test_global_refusal_rolls_back_account(self, limiter, store, alice, bob):
        limiter.weekly_cap = 1000
        assert (await limiter.reserve(bob, 1000))["allowed"]

        outcome = await limiter.reserve(alice, 600)

        assert not outcome["allowed"]
        assert not outcome["global"].allowed
        assert outcome["personal"].used == 0
        account = await store.find_profile(alice)
        assert account["weeklyWithdrawAmount"] == 0

    async def test_account_refusal_skips_global(self, limiter, alice):
        await limiter.reserve(alice, 1000)
        outcome = await limiter.reserve(alice, 1)

        assert not outcome["allowed"]
        assert outcome["global"] is None
        state = await limiter.check_and_reserve_global(0, alice.server_id)
        assert state.used == 1000
