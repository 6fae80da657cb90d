"""
Idempotent point awarders.

Every awarder follows the same shape: win a one-time claim with a single
conditioned update, then credit through the ledger. A caller that loses the
claim gets None/False back and does nothing.
"""
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from constants import PointDropConfig, TriviaConfig
from database import AccountKey, MongoStore, insert_defaults
from error_handler import Unavailable
from ledger import BalanceLedger, LedgerResult, validate_amount


class _Awarder:
    def __init__(self, ledger: BalanceLedger, clock: Callable[[], float] = time.time):
        self.ledger = ledger
        self.store: MongoStore = ledger.store
        self.clock = clock

    async def _pay(self, key: AccountKey, amount: int, marker: str) -> LedgerResult:
        try:
            return await self.ledger.credit(key, amount)
        except Unavailable:
            logging.error(f"❌ Claim '{marker}' won by {key.user_id} but crediting {amount} failed")
            raise


# ---------------- Cooldown claims (daily, daily role pay) ----------------
class CooldownAwarder(_Awarder):
    """Pays at most once per `cooldown` seconds, guarded by a timestamp field on the profile."""

    def __init__(self, ledger: BalanceLedger, field_name: str, cooldown: float,
                 clock: Callable[[], float] = time.time):
        super().__init__(ledger, clock)
        self.field_name = field_name
        self.cooldown = cooldown

    async def claim(self, key: AccountKey) -> bool:
        now = self.clock()
        await self.store.ensure_profile(key)
        won = await self.store.update_profile(
            key,
            {self.field_name: {"$lte": now - self.cooldown}},
            {"$set": {self.field_name: now}}
        )
        if won is None:
            logging.debug(f"{self.field_name} claim lost for {key.user_id}")
        return won is not None

    async def award(self, key: AccountKey, amount: int) -> Optional[LedgerResult]:
        validate_amount(amount)
        if not await self.claim(key):
            return None
        return await self._pay(key, amount, self.field_name)

    async def time_left(self, key: AccountKey) -> float:
        account = await self.store.ensure_profile(key)
        return max(0.0, account.get(self.field_name, 0) + self.cooldown - self.clock())


def role_pay_for(role_ids, paid_roles: List[Dict]) -> Tuple[int, int]:
    """Total daily pay and extra withdraw limit for a set of role ids."""
    held = set(role_ids)
    pay = 0
    extra_limit = 0
    for entry in paid_roles:
        if entry.get("role_id") in held:
            pay += entry.get("daily_pay", 0)
            extra_limit += entry.get("extra_withdraw_limit", 0)
    return pay, extra_limit


# ---------------- One-time role rewards ----------------
class RoleRewardAwarder(_Awarder):
    """Pays a role's reward once per account, guarded by claimedRoleRewards."""

    async def award(self, key: AccountKey, role_id, reward: int) -> Optional[LedgerResult]:
        validate_amount(reward)
        role_id = str(role_id)
        await self.store.ensure_profile(key)
        won = await self.store.update_profile(
            key,
            {"claimedRoleRewards": {"$ne": role_id}},
            {"$addToSet": {"claimedRoleRewards": role_id}}
        )
        if won is None:
            return None

        logging.info(f"🏅 Role reward {role_id} claimed by {key.user_id}")
        return await self._pay(key, reward, f"role:{role_id}")


# ---------------- Point drops ----------------
@dataclass
class PointDrop:
    drop_id: str
    channel_id: int
    amount: int
    mega: bool
    expires_at: float


def pick_drop_amount(rng: random.Random) -> Tuple[int, bool]:
    """Random drop size; mega drops add a flat bonus."""
    amount = rng.choice(PointDropConfig.AMOUNTS)
    if rng.random() < PointDropConfig.MEGA_CHANCE:
        return PointDropConfig.MEGA_BONUS + amount, True
    return amount, False


class PointDropAwarder(_Awarder):
    """First claimer of an open drop wins it; the drop document's status is the claim marker."""

    async def open_drop(self, channel_id: int, amount: int, mega: bool = False,
                        window: float = PointDropConfig.CLAIM_WINDOW) -> PointDrop:
        validate_amount(amount)
        now = self.clock()
        drop = PointDrop(uuid.uuid4().hex, channel_id, amount, mega, now + window)
        await self.store.insert_one(MongoStore.POINT_DROPS, {
            "_id": drop.drop_id,
            "channelId": channel_id,
            "amount": amount,
            "mega": mega,
            "status": "open",
            "claimedBy": None,
            "createdAt": now,
            "expiresAt": drop.expires_at,
        })
        logging.info(f"💰 Point drop {drop.drop_id} opened: {amount} points (mega={mega})")
        return drop

    async def claim(self, drop_id: str, key: AccountKey) -> Optional[LedgerResult]:
        now = self.clock()
        drop = await self.store.find_one_and_update(
            MongoStore.POINT_DROPS,
            {"_id": drop_id, "status": "open", "expiresAt": {"$gt": now}},
            {"$set": {"status": "claimed", "claimedBy": key.user_id, "claimedAt": now}}
        )
        if drop is None:
            return None

        logging.info(f"🎉 Point drop {drop_id} claimed by {key.user_id}")
        return await self._pay(key, drop["amount"], f"drop:{drop_id}")

    async def expire(self, drop_id: str) -> bool:
        """Close an unclaimed drop. False if it was already claimed or closed."""
        drop = await self.store.find_one_and_update(
            MongoStore.POINT_DROPS,
            {"_id": drop_id, "status": "open"},
            {"$set": {"status": "expired"}}
        )
        return drop is not None


# ---------------- Trivia ----------------
@dataclass
class TriviaQuestion:
    question: str
    options: List[Tuple[str, str]]
    correct_answer: str
    reward: int = TriviaConfig.DEFAULT_REWARD
    explanation: str = ""

    @classmethod
    def from_dict(cls, data: Dict) -> "TriviaQuestion":
        options = [(str(o["id"]), str(o["text"])) for o in data["options"]]
        correct = str(data["correct_answer"])
        if correct not in {option_id for option_id, _ in options}:
            raise ValueError(f"correct answer {correct!r} is not one of the options")
        return cls(
            question=data["question"],
            options=options,
            correct_answer=correct,
            reward=int(data.get("reward", TriviaConfig.DEFAULT_REWARD)),
            explanation=data.get("explanation", "")
        )


@dataclass
class TriviaSession:
    session_id: str
    user_id: str
    server_id: Optional[str]
    question: TriviaQuestion
    expires_at: float


@dataclass
class TriviaAnswer:
    correct: bool
    correct_answer: str
    ledger: Optional[LedgerResult] = None
    events: List = field(default_factory=list)


class TriviaAwarder(_Awarder):
    """Chat activity opens questions; the first answer to an open session settles it."""

    def __init__(self, ledger: BalanceLedger, clock: Callable[[], float] = time.time,
                 threshold: int = TriviaConfig.MESSAGE_THRESHOLD,
                 cooldown: float = TriviaConfig.COOLDOWN,
                 window: float = TriviaConfig.ANSWER_WINDOW):
        super().__init__(ledger, clock)
        self.threshold = threshold
        self.cooldown = cooldown
        self.window = window

    async def record_message(self, key: AccountKey) -> bool:
        """Count a chat message. True when this message earns the user a question."""
        now = self.clock()
        await self.store.update_profile(
            key,
            {},
            {"$inc": {"messagesSinceLastTrivia": 1}, "$setOnInsert": insert_defaults("messagesSinceLastTrivia")},
            upsert=True
        )
        won = await self.store.update_profile(
            key,
            {"messagesSinceLastTrivia": {"$gte": self.threshold}, "nextTriviaAvailableAt": {"$lte": now}},
            {"$set": {"messagesSinceLastTrivia": 0, "nextTriviaAvailableAt": now + self.cooldown}}
        )
        return won is not None

    async def open_session(self, key: AccountKey, question: TriviaQuestion) -> TriviaSession:
        now = self.clock()
        session = TriviaSession(uuid.uuid4().hex, key.user_id, key.server_id, question, now + self.window)
        await self.store.insert_one(MongoStore.TRIVIA, {
            "_id": session.session_id,
            "userId": key.user_id,
            "serverId": key.server_id,
            "question": question.question,
            "correctAnswer": question.correct_answer,
            "reward": question.reward,
            "status": "open",
            "createdAt": now,
            "expiresAt": session.expires_at,
        })
        return session

    async def answer(self, session_id: str, user_id, answer_id: str) -> Optional[TriviaAnswer]:
        """Settle an open session with the owner's answer. None if it was already settled or expired."""
        now = self.clock()
        session = await self.store.find_one_and_update(
            MongoStore.TRIVIA,
            {"_id": session_id, "userId": str(user_id), "status": "open", "expiresAt": {"$gt": now}},
            {"$set": {"status": "answered", "answer": answer_id, "answeredAt": now}}
        )
        if session is None:
            return None

        if session["correctAnswer"] != answer_id:
            return TriviaAnswer(False, session["correctAnswer"])

        key = AccountKey(session["userId"], session["serverId"])
        result = await self._pay(key, session["reward"], f"trivia:{session_id}")
        return TriviaAnswer(True, session["correctAnswer"], result, result.events)

    async def expire(self, session_id: str) -> bool:
        session = await self.store.find_one_and_update(
            MongoStore.TRIVIA,
            {"_id": session_id, "status": "open"},
            {"$set": {"status": "expired"}}
        )
        return session is not None
