import json
import logging
import os
from dotenv import load_dotenv

# ---------------- Environment ----------------
load_dotenv()

TOKEN = os.getenv("DISCORD_TOKEN")
MONGODB_URI = os.getenv("MONGODB_URI")
MONGODB_DATABASE = os.getenv("MONGODB_DATABASE", "economy_bot")
MONGODB_TRANSACTIONS = os.getenv("MONGODB_TRANSACTIONS", "true").lower() == "true"
COMMAND_PREFIX = os.getenv("COMMAND_PREFIX", "~")
CONFIG_FILE = os.getenv("CONFIG_FILE", "config.json")
RECONCILIATION_FILE = os.getenv("RECONCILIATION_FILE", "reconciliation.jsonl")


class ConfigManager:
    """Guild wiring: channels, roles and reward tables, kept in a JSON file."""

    def __init__(self, filename=CONFIG_FILE):
        self.filename = filename
        self.default_config = {
            "point_drop_channel_id": None,
            "point_drop_ping_role_id": None,
            "trivia_questions_file": "trivia_questions.json",
            # [{"role_id": 123, "daily_pay": 500, "extra_withdraw_limit": 0}]
            "paid_roles": [],
            # [{"role_id": 123, "requirement": 10000}]
            "balance_roles": [],
            # [{"role_id": 123, "reward": 5000}]
            "role_rewards": [],
        }
        # Create config file synchronously
        self._ensure_config_exists()

    def _ensure_config_exists(self):
        """Sync config file creation."""
        try:
            if not os.path.exists(self.filename):
                with open(self.filename, "w") as f:
                    json.dump(self.default_config, f, indent=2, ensure_ascii=False)
                logging.info(f"Created new config file: {self.filename}")
        except OSError as e:
            logging.error(f"Config creation error: {e}")

    def load(self):
        """Load configuration from file with error recovery."""
        try:
            with open(self.filename, "r") as f:
                config = json.load(f)
            return {**self.default_config, **config}
        except (FileNotFoundError, json.JSONDecodeError) as e:
            logging.error(f"Config load error: {e}, using defaults")
            return self.default_config.copy()
