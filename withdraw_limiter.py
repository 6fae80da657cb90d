import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from constants import WithdrawConfig
from database import AccountKey, MongoStore
from ledger import validate_amount


@dataclass
class WithdrawCheck:
    allowed: bool
    remaining: int
    used: int
    cap: int
    window_start: float
    window: float = WithdrawConfig.WINDOW

    @property
    def resets_at(self) -> float:
        return self.window_start + self.window


class WithdrawalLimiter:
    """Rolling weekly withdrawal quota, per account and per scope.

    Both gates follow the same discipline: reset the window with one conditioned
    update if it has expired, then reserve with one conditioned $inc.
    """

    def __init__(self, store: MongoStore, weekly_cap: int = WithdrawConfig.WEEKLY_CAP,
                 global_cap: int = WithdrawConfig.GLOBAL_WEEKLY_CAP,
                 window: float = WithdrawConfig.WINDOW, clock: Callable[[], float] = time.time):
        self.store = store
        self.weekly_cap = weekly_cap
        self.global_cap = global_cap
        self.window = window
        self.clock = clock

    @staticmethod
    def global_doc_id(server_id: Optional[str]) -> str:
        if server_id is None:
            return WithdrawConfig.GLOBAL_DOC_ID
        return f"{WithdrawConfig.GLOBAL_DOC_ID}:{server_id}"

    # ---------------- Per-account gate ----------------
    async def check_and_reserve(self, key: AccountKey, amount: int, extra_limit: int = 0) -> WithdrawCheck:
        """Reserve `amount` of the account's weekly quota if it fits.

        A zero amount only refreshes the window and reports what is left.
        """
        validate_amount(amount, allow_zero=True)
        cap = self.weekly_cap + extra_limit
        now = self.clock()

        await self.store.ensure_profile(key)
        await self.store.update_profile(
            key,
            {"firstWithdrawAt": {"$lte": now - self.window}},
            {"$set": {"weeklyWithdrawAmount": 0, "firstWithdrawAt": now}}
        )

        account = await self.store.update_profile(
            key,
            {"weeklyWithdrawAmount": {"$lte": cap - amount}},
            {"$inc": {"weeklyWithdrawAmount": amount}}
        )
        if account is None:
            account = await self.store.find_profile(key)
            logging.debug(f"Withdraw of {amount} refused for {key.user_id}: weekly cap {cap}")
            return self._check(False, account["weeklyWithdrawAmount"], cap, account["firstWithdrawAt"])

        return self._check(True, account["weeklyWithdrawAmount"], cap, account["firstWithdrawAt"])

    async def release(self, key: AccountKey, amount: int):
        """Give back a reservation whose withdrawal did not go through."""
        validate_amount(amount, allow_zero=True)
        account = await self.store.update_profile(
            key,
            {"weeklyWithdrawAmount": {"$gte": amount}},
            {"$inc": {"weeklyWithdrawAmount": -amount}}
        )
        if account is None:
            logging.debug(f"Release of {amount} skipped for {key.user_id}: window already reset")

    # ---------------- Global gate ----------------
    async def check_and_reserve_global(self, amount: int, server_id: Optional[str] = None) -> WithdrawCheck:
        """Reserve `amount` of the scope-wide weekly quota if it fits."""
        validate_amount(amount, allow_zero=True)
        doc_id = self.global_doc_id(server_id)
        collection = MongoStore.GLOBAL_WITHDRAW
        now = self.clock()

        await self.store.find_one_and_update(
            collection,
            {"_id": doc_id},
            {"$setOnInsert": {"totalWithdrawnThisWeek": 0, "weekStartAt": now}},
            upsert=True
        )
        reset = await self.store.find_one_and_update(
            collection,
            {"_id": doc_id, "weekStartAt": {"$lte": now - self.window}},
            {"$set": {"totalWithdrawnThisWeek": 0, "weekStartAt": now}}
        )
        if reset is not None:
            logging.info(f"🔄 Global withdraw window reset for {doc_id}")

        state = await self.store.find_one_and_update(
            collection,
            {"_id": doc_id, "totalWithdrawnThisWeek": {"$lte": self.global_cap - amount}},
            {"$inc": {"totalWithdrawnThisWeek": amount}}
        )
        if state is None:
            state = await self.store.find_one(collection, {"_id": doc_id})
            return self._check(False, state["totalWithdrawnThisWeek"], self.global_cap, state["weekStartAt"])

        return self._check(True, state["totalWithdrawnThisWeek"], self.global_cap, state["weekStartAt"])

    async def release_global(self, amount: int, server_id: Optional[str] = None):
        validate_amount(amount, allow_zero=True)
        await self.store.find_one_and_update(
            MongoStore.GLOBAL_WITHDRAW,
            {"_id": self.global_doc_id(server_id), "totalWithdrawnThisWeek": {"$gte": amount}},
            {"$inc": {"totalWithdrawnThisWeek": -amount}}
        )

    # ---------------- Both gates ----------------
    async def reserve(self, key: AccountKey, amount: int, extra_limit: int = 0) -> Dict[str, WithdrawCheck]:
        """Reserve against both gates; if the global gate refuses or fails, the account reservation is rolled back."""
        personal = await self.check_and_reserve(key, amount, extra_limit)
        if not personal.allowed:
            return {"allowed": False, "personal": personal, "global": None}

        try:
            global_check = await self.check_and_reserve_global(amount, key.server_id)
        except BaseException:
            await self.release(key, amount)
            raise
        if not global_check.allowed:
            await self.release(key, amount)
            personal = self._check(False, personal.used - amount, personal.cap, personal.window_start)
            return {"allowed": False, "personal": personal, "global": global_check}

        return {"allowed": True, "personal": personal, "global": global_check}

    def _check(self, allowed: bool, used: int, cap: int, window_start: float) -> WithdrawCheck:
        return WithdrawCheck(
            allowed=allowed,
            remaining=max(0, cap - used),
            used=used,
            cap=cap,
            window_start=window_start,
            window=self.window
        )
