import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set


@dataclass(frozen=True)
class BalanceChanged:
    """Emitted by the ledger after every committed balance mutation."""

    user_id: str
    server_id: Optional[str]
    balance: int
    delta: int


Handler = Callable[[BalanceChanged], Awaitable[None]]


class BalanceNotifier:
    """Drains balance-change events to handlers, fire-and-forget.

    Delivery failures are logged and never reach the code that produced the event.
    """

    def __init__(self):
        self._handlers: List[Handler] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, handler: Handler):
        self._handlers.append(handler)

    def unsubscribe(self, handler: Handler):
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def deliver(self, events: Iterable[BalanceChanged]):
        """Deliver events to every handler, logging and continuing on failure."""
        for event in events:
            for handler in list(self._handlers):
                try:
                    await handler(event)
                except Exception as e:
                    logging.error(f"❌ Balance change notification failed for {event.user_id}: {e}", exc_info=e)

    def dispatch(self, events: Iterable[BalanceChanged]) -> Optional[asyncio.Task]:
        """Schedule delivery without waiting on it."""
        events = list(events)
        if not events or not self._handlers:
            return None

        task = asyncio.create_task(self.deliver(events))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self):
        """Wait for every scheduled delivery; used on shutdown."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


def pick_balance_role(balance: int, balance_roles: List[Dict]) -> Optional[int]:
    """Return the role id with the highest requirement the balance meets."""
    best_role = None
    best_requirement = -1
    for entry in balance_roles:
        requirement = entry.get("requirement", 0)
        if balance >= requirement and requirement > best_requirement:
            best_role = entry.get("role_id")
            best_requirement = requirement
    return best_role
