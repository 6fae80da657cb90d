import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Tuple

import aiofiles

from database import AccountKey, MongoStore, insert_defaults
from error_handler import InsufficientFunds, InvalidAmount, ReconciliationRisk, Unavailable
from notifications import BalanceChanged


def validate_amount(amount, allow_zero: bool = False) -> int:
    """Reject non-integer or non-positive amounts with InvalidAmount."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"amount must be an integer, got {amount!r}")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise InvalidAmount(f"amount must be positive, got {amount}")
    return amount


@dataclass
class LedgerResult:
    account: Dict
    events: List[BalanceChanged] = field(default_factory=list)

    @property
    def balance(self) -> int:
        return self.account["balance"]


@dataclass
class TransferRecord:
    sender_id: str
    receiver_id: str
    amount: int
    outcome: str
    sender: Optional[Dict] = None
    receiver: Optional[Dict] = None
    events: List[BalanceChanged] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.outcome == "success"


# ---------------- Balance Ledger ----------------
class BalanceLedger:
    """Atomic balance mutations. Every change is a single conditioned $inc."""

    def __init__(self, store: MongoStore):
        self.store = store

    async def get_account(self, key: AccountKey) -> Dict:
        """Get an account, creating it on first interaction."""
        return await self.store.ensure_profile(key)

    async def apply_delta(self, key: AccountKey, delta: int, session=None) -> LedgerResult:
        """Add `delta` to the balance and return the authoritative post-mutation account.

        Negative deltas only apply when the balance covers them at mutation time;
        otherwise InsufficientFunds is raised and nothing changes. Non-negative
        deltas always apply, creating the account if needed.
        """
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise InvalidAmount(f"delta must be an integer, got {delta!r}")

        if delta < 0:
            account = await self.store.update_profile(
                key,
                {"balance": {"$gte": -delta}},
                {"$inc": {"balance": delta}},
                session=session
            )
            if account is None:
                logging.debug(f"Conditioned debit of {-delta} refused for {key.user_id}")
                raise InsufficientFunds(f"balance below {-delta} for {key.user_id}")
        else:
            account = await self.store.update_profile(
                key,
                {},
                {"$inc": {"balance": delta}, "$setOnInsert": insert_defaults("balance")},
                upsert=True,
                session=session
            )

        event = BalanceChanged(key.user_id, key.server_id, account["balance"], delta)
        return LedgerResult(account, [event])

    async def credit(self, key: AccountKey, amount: int) -> LedgerResult:
        return await self.apply_delta(key, validate_amount(amount))

    async def debit(self, key: AccountKey, amount: int) -> LedgerResult:
        return await self.apply_delta(key, -validate_amount(amount))

    # ---------------- Leaderboard ----------------
    async def top_accounts(self, server_id: Optional[str], limit: int = 10) -> List[Dict]:
        """Highest balances on a server, richest first."""
        return await self.store.find(
            MongoStore.PROFILES,
            {"serverId": server_id},
            sort=[("balance", -1), ("userId", 1)],
            limit=limit
        )

    async def standing(self, key: AccountKey) -> Tuple[int, int]:
        """(rank, balance) of an account; equal balances share a rank."""
        account = await self.get_account(key)
        ahead = await self.store.count_documents(
            MongoStore.PROFILES,
            {"serverId": key.server_id, "balance": {"$gt": account["balance"]}}
        )
        return ahead + 1, account["balance"]


# ---------------- Reconciliation Journal ----------------
class ReconciliationJournal:
    """Append-only JSON lines file of transfers that need manual correction."""

    def __init__(self, filename: str = "reconciliation.jsonl"):
        self.filename = filename

    async def record(self, risk: ReconciliationRisk):
        logging.critical(
            f"🚨 RECONCILIATION RISK: {risk.amount} debited from {risk.sender_id} "
            f"but not credited to {risk.receiver_id} ({risk.reason})"
        )
        try:
            async with aiofiles.open(self.filename, "a") as f:
                await f.write(json.dumps(asdict(risk)) + "\n")
        except OSError as e:
            logging.error(f"❌ Failed to journal reconciliation risk: {e}")


# ---------------- Transfer Engine ----------------
class TransferEngine:
    """Moves points between two accounts as one unit.

    Tries a multi-document transaction first; if the store cannot provide one,
    falls back to a conditioned debit followed by an upserting credit.
    """

    def __init__(self, ledger: BalanceLedger, journal: Optional[ReconciliationJournal] = None):
        self.ledger = ledger
        self.store = ledger.store
        self.journal = journal or ReconciliationJournal()

    async def transfer(self, sender: AccountKey, receiver: AccountKey, amount: int) -> TransferRecord:
        validate_amount(amount)

        try:
            record = await self._transfer_in_transaction(sender, receiver, amount)
        except Unavailable as e:
            logging.warning(f"⚠️ Atomic transfer unavailable ({e}), using two-step fallback")
            record = await self._transfer_two_step(sender, receiver, amount)

        logging.info(f"💸 Transfer {amount} from {sender.user_id} to {receiver.user_id}")
        return record

    async def _transfer_in_transaction(self, sender: AccountKey, receiver: AccountKey, amount: int) -> TransferRecord:
        async with self.store.transaction() as session:
            debit = await self.ledger.apply_delta(sender, -amount, session=session)
            credit = await self.ledger.apply_delta(receiver, amount, session=session)

        return self._record(sender, receiver, amount, debit, credit)

    async def _transfer_two_step(self, sender: AccountKey, receiver: AccountKey, amount: int) -> TransferRecord:
        debit = await self.ledger.apply_delta(sender, -amount)

        # Anything that stops the credit, cancellation included, leaves the sender short
        try:
            credit = await self.ledger.apply_delta(receiver, amount)
        except BaseException as e:
            await asyncio.shield(self.journal.record(ReconciliationRisk(
                sender_id=sender.user_id,
                receiver_id=receiver.user_id,
                server_id=receiver.server_id,
                amount=amount,
                reason=str(e) or type(e).__name__
            )))
            raise

        return self._record(sender, receiver, amount, debit, credit)

    @staticmethod
    def _record(sender: AccountKey, receiver: AccountKey, amount: int,
                debit: LedgerResult, credit: LedgerResult) -> TransferRecord:
        return TransferRecord(
            sender_id=sender.user_id,
            receiver_id=receiver.user_id,
            amount=amount,
            outcome="success",
            sender=debit.account,
            receiver=credit.account,
            events=debit.events + credit.events
        )
