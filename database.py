import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

import motor.motor_asyncio
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from constants import EconomyConfig
from error_handler import Unavailable


@dataclass(frozen=True)
class AccountKey:
    """Identifies one account: a user, optionally scoped to a server."""

    user_id: str
    server_id: Optional[str] = None

    @classmethod
    def of(cls, user_id, server_id=None) -> "AccountKey":
        return cls(str(user_id), str(server_id) if server_id is not None else None)

    def filter(self) -> Dict:
        return {"userId": self.user_id, "serverId": self.server_id}


def default_profile() -> Dict:
    """Fields every profile carries, minus its key."""
    return {
        "balance": EconomyConfig.STARTING_BALANCE,
        "lastDaily": 0,
        "lastDailyRolePayAt": 0,
        "weeklyWithdrawAmount": 0,
        "firstWithdrawAt": 0,
        "messagesSinceLastTrivia": 0,
        "nextTriviaAvailableAt": 0,
        "claimedRoleRewards": [],
        "createdAt": datetime.now(timezone.utc),
    }


def insert_defaults(*touched: str) -> Dict:
    """Profile defaults for $setOnInsert, leaving out fields the same update touches."""
    defaults = default_profile()
    for name in touched:
        defaults.pop(name, None)
    return defaults


# ---------------- MongoDB Profile Store ----------------
class MongoStore:
    """MongoDB persistence for the economy with conditioned atomic updates."""

    PROFILES = "profiles"
    GLOBAL_WITHDRAW = "global_withdraw"
    POINT_DROPS = "point_drops"
    TRIVIA = "trivia_sessions"

    def __init__(self, transactions: bool = True):
        self.client = None
        self.db = None
        self.connected = False
        self.transactions = transactions

    async def connect(self, connection_string: Optional[str], database: str) -> bool:
        """Connect to MongoDB."""
        try:
            if not connection_string:
                logging.error("❌ MONGODB_URI environment variable not set")
                return False

            client = motor.motor_asyncio.AsyncIOMotorClient(connection_string)

            # Test connection
            await client.admin.command('ping')
            self.use_client(client, database)
            logging.info("✅ Connected to MongoDB successfully")
            return True

        except PyMongoError as e:
            logging.error(f"❌ MongoDB connection failed: {e}")
            self.connected = False
            return False

    async def connect_with_retry(self, connection_string: Optional[str], database: str,
                                 max_retries: int = 3, delay: float = 2) -> bool:
        for attempt in range(max_retries):
            if await self.connect(connection_string, database):
                return True
            logging.warning(f"❌ MongoDB connection attempt {attempt + 1} failed, retrying...")
            await asyncio.sleep(delay)

        logging.error("❌ Economy store unavailable (no persistence)")
        return False

    def use_client(self, client, database: str):
        """Attach an already-built motor client."""
        self.client = client
        self.db = client.get_database(database)
        self.connected = True

    def close(self):
        if self.client is not None:
            self.client.close()
        self.connected = False

    async def initialize_collections(self):
        """Create indexes."""
        self._require_connection()
        try:
            await self.db[self.PROFILES].create_index([("userId", 1), ("serverId", 1)], unique=True)
            await self.db[self.PROFILES].create_index([("serverId", 1), ("balance", -1)])
            await self.db[self.POINT_DROPS].create_index("status")
            await self.db[self.TRIVIA].create_index([("userId", 1), ("status", 1)])
            logging.info("✅ MongoDB collections initialized")
        except PyMongoError as e:
            raise Unavailable(f"index creation failed: {e}") from e

    def _require_connection(self):
        if not self.connected:
            raise Unavailable("store not connected")

    # ---------------- Generic operations ----------------
    async def find_one(self, collection: str, query: Dict, session=None) -> Optional[Dict]:
        self._require_connection()
        try:
            return await self.db[collection].find_one(query, **_session_kwargs(session))
        except PyMongoError as e:
            logging.error(f"❌ find_one on {collection} failed: {e}")
            raise Unavailable(str(e)) from e

    async def find(self, collection: str, query: Dict, sort: Optional[List] = None, limit: int = 100) -> List[Dict]:
        self._require_connection()
        try:
            cursor = self.db[collection].find(query)
            if sort:
                cursor = cursor.sort(sort)
            return await cursor.to_list(length=limit)
        except PyMongoError as e:
            logging.error(f"❌ find on {collection} failed: {e}")
            raise Unavailable(str(e)) from e

    async def count_documents(self, collection: str, query: Dict) -> int:
        self._require_connection()
        try:
            return await self.db[collection].count_documents(query)
        except PyMongoError as e:
            logging.error(f"❌ count_documents on {collection} failed: {e}")
            raise Unavailable(str(e)) from e

    async def insert_one(self, collection: str, document: Dict) -> Dict:
        self._require_connection()
        try:
            await self.db[collection].insert_one(document)
            return document
        except PyMongoError as e:
            logging.error(f"❌ insert_one on {collection} failed: {e}")
            raise Unavailable(str(e)) from e

    async def find_one_and_update(self, collection: str, query: Dict, update: Dict,
                                  upsert: bool = False, session=None) -> Optional[Dict]:
        """Conditioned atomic update. Returns the updated document, or None when the filter did not match."""
        self._require_connection()
        try:
            return await self.db[collection].find_one_and_update(
                query,
                update,
                upsert=upsert,
                return_document=ReturnDocument.AFTER,
                **_session_kwargs(session)
            )
        except PyMongoError as e:
            logging.error(f"❌ find_one_and_update on {collection} failed: {e}")
            raise Unavailable(str(e)) from e

    # ---------------- Profiles ----------------
    async def find_profile(self, key: AccountKey) -> Optional[Dict]:
        return await self.find_one(self.PROFILES, key.filter())

    async def ensure_profile(self, key: AccountKey, session=None) -> Dict:
        """Get a profile, creating it if it doesn't exist."""
        return await self.find_one_and_update(
            self.PROFILES,
            key.filter(),
            {"$setOnInsert": insert_defaults()},
            upsert=True,
            session=session
        )

    async def update_profile(self, key: AccountKey, query: Dict, update: Dict,
                             upsert: bool = False, session=None) -> Optional[Dict]:
        """find_one_and_update on one profile; `query` adds preconditions to the key filter."""
        return await self.find_one_and_update(
            self.PROFILES,
            {**key.filter(), **query},
            update,
            upsert=upsert,
            session=session
        )

    # ---------------- Transactions ----------------
    @asynccontextmanager
    async def transaction(self):
        """Yield a session inside a multi-document transaction.

        Raises Unavailable when transactions are disabled or refused by the server.
        """
        self._require_connection()
        if not self.transactions:
            raise Unavailable("multi-document transactions disabled")

        try:
            async with await self.client.start_session() as session:
                async with session.start_transaction():
                    yield session
        except PyMongoError as e:
            logging.warning(f"⚠️ Transaction aborted: {e}")
            raise Unavailable(str(e)) from e


def _session_kwargs(session) -> Dict:
    return {"session": session} if session is not None else {}
