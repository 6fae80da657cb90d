# constants.py
# This file centralizes all configuration constants for the economy cogs.

DAY = 86400
WEEK = 7 * DAY


class EconomyConfig:
    # --- Accounts ---
    STARTING_BALANCE = 0

    # --- Daily ---
    DAILY_MIN = 500
    DAILY_MAX = 1500
    DAILY_COOLDOWN = DAY

    # --- Donations ---
    MAX_DONATION = 10_000_000

    # --- Leaderboard ---
    LEADERBOARD_SIZE = 10


class WithdrawConfig:
    WEEKLY_CAP = 50_000
    GLOBAL_WEEKLY_CAP = 500_000
    WINDOW = WEEK
    GLOBAL_DOC_ID = "globalWithdraw"


class GamblingConfig:
    # --- Bets ---
    MIN_BET = 1
    MAX_BET = 1_000_000

    # --- Gamble ---
    GAMBLE_WIN_CHANCE = 0.5
    GAMBLE_WIN_MULTIPLIER = 2

    # --- Dice ---
    DICE_DOUBLES_MULTIPLIER = 2
    DICE_LUCKY_SEVEN_MULTIPLIER = 2
    DICE_HIGH_ROLL_MULTIPLIER = 1  # break even
    DICE_HIGH_ROLL_MIN = 8

    # --- Slots ---
    # Common to ultra-rare, weights strictly decreasing, sum 100
    SLOT_SYMBOLS = ["🍋", "🍒", "🍉", "🍊", "🍇", "⭐", "7️⃣", "💎", "👑", "💰"]
    SLOT_WEIGHTS = [30, 22, 15, 11, 8, 6, 4, 2, 1.2, 0.8]
    SLOT_TRIPLE_PAYOUTS = {
        "💰": 100,
        "👑": 50,
        "💎": 25,
        "7️⃣": 20,
        "⭐": 15,
        "🍇": 8,
        "🍊": 6,
        "🍉": 5,
        "🍒": 4,
        "🍋": 3,
    }
    SLOT_DOUBLE_PAYOUTS = {
        "💰": 15,
        "👑": 10,
        "💎": 6,
        "7️⃣": 4,
        "⭐": 3,
        "🍇": 2,
        "🍊": 1.5,
        "🍉": 1.2,
        "🍒": 0.8,
        "🍋": 0.5,
    }


class PointDropConfig:
    AMOUNTS = [250, 500, 750, 1000, 1500, 2000]
    COOLDOWN_MINUTES = [30, 45, 60, 90]
    MEGA_CHANCE = 0.15  # 15%
    MEGA_BONUS = 10_000
    CLAIM_WINDOW = 180  # 3 minutes
    CLAIM_PHRASE = "claim"


class TriviaConfig:
    MESSAGE_THRESHOLD = 50
    COOLDOWN = 2 * 3600  # 2 hours between questions per user
    ANSWER_WINDOW = 60
    DEFAULT_REWARD = 500


class RolePayConfig:
    COOLDOWN = DAY
    CHECK_INTERVAL_MINUTES = 60
    STARTUP_DELAY = 30
