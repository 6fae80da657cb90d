import logging
import random
from collections import Counter
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from constants import GamblingConfig
from database import AccountKey
from error_handler import InsufficientFunds, InvalidAmount
from ledger import BalanceLedger, LedgerResult, validate_amount


# ---------------- Dice ----------------
@dataclass
class DiceRoll:
    die1: int
    die2: int
    multiplier: float
    outcome: str

    @property
    def total(self) -> int:
        return self.die1 + self.die2


def dice_outcome(die1: int, die2: int):
    """Classify two dice, in priority order: doubles, lucky seven, high roll, low roll."""
    total = die1 + die2
    if die1 == die2:
        return GamblingConfig.DICE_DOUBLES_MULTIPLIER, "doubles"
    if total == 7:
        return GamblingConfig.DICE_LUCKY_SEVEN_MULTIPLIER, "lucky_seven"
    if total >= GamblingConfig.DICE_HIGH_ROLL_MIN:
        return GamblingConfig.DICE_HIGH_ROLL_MULTIPLIER, "high_roll"
    return 0, "low_roll"


def roll_dice(rng: random.Random) -> DiceRoll:
    die1 = rng.randint(1, 6)
    die2 = rng.randint(1, 6)
    multiplier, outcome = dice_outcome(die1, die2)
    return DiceRoll(die1, die2, multiplier, outcome)


# ---------------- Slots ----------------
@dataclass
class SlotSpin:
    reels: List[str]
    multiplier: float
    outcome: str
    matched: Optional[str] = None


def slots_outcome(reels: Sequence[str]):
    """Payout for three reels: triple table, double table, or nothing."""
    symbol, count = Counter(reels).most_common(1)[0]
    if count == 3:
        return GamblingConfig.SLOT_TRIPLE_PAYOUTS[symbol], "triple", symbol
    if count == 2:
        return GamblingConfig.SLOT_DOUBLE_PAYOUTS[symbol], "double", symbol
    return 0, "no_match", None


def spin_slots(rng: random.Random) -> SlotSpin:
    reels = rng.choices(GamblingConfig.SLOT_SYMBOLS, weights=GamblingConfig.SLOT_WEIGHTS, k=3)
    multiplier, outcome, matched = slots_outcome(reels)
    return SlotSpin(reels, multiplier, outcome, matched)


# ---------------- Coin flip ----------------
@dataclass
class CoinFlip:
    won: bool
    multiplier: float
    outcome: str


def flip_coin(rng: random.Random) -> CoinFlip:
    """Even odds: a win doubles the stake, a loss forfeits it."""
    if rng.random() < GamblingConfig.GAMBLE_WIN_CHANCE:
        return CoinFlip(True, GamblingConfig.GAMBLE_WIN_MULTIPLIER, "win")
    return CoinFlip(False, 0, "loss")


def net_change(bet: int, multiplier: float) -> int:
    """Balance change for a bet paid out at `multiplier` (the stake is included in the payout)."""
    return int(bet * multiplier) - bet


# ---------------- Bet flow ----------------
@dataclass
class GameResult:
    bet: int
    draw: object
    net: int
    ledger: LedgerResult

    @property
    def balance(self) -> int:
        return self.ledger.balance


async def play(ledger: BalanceLedger, key: AccountKey, bet: int,
               engine: Callable[[random.Random], object], rng: random.Random) -> GameResult:
    """Validate the bet against the current balance, draw, then apply the net change."""
    validate_amount(bet)
    if bet < GamblingConfig.MIN_BET or bet > GamblingConfig.MAX_BET:
        raise InvalidAmount(f"bet must be between {GamblingConfig.MIN_BET} and {GamblingConfig.MAX_BET}")

    account = await ledger.get_account(key)
    if account["balance"] < bet:
        raise InsufficientFunds(f"bet {bet} exceeds balance", balance=account["balance"])

    draw = engine(rng)
    net = net_change(bet, draw.multiplier)
    result = await ledger.apply_delta(key, net)

    logging.info(f"🎲 {engine.__name__} for {key.user_id}: bet {bet}, net {net:+}")
    return GameResult(bet, draw, net, result)
