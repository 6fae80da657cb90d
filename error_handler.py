# error_handler.py
import discord
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


class EconomyError(Exception):
    """Base class for errors surfaced by the balance core."""

    user_message = "Something went wrong with your points."


class InvalidAmount(EconomyError):
    """Non-positive or non-numeric amount, rejected before any store access."""

    user_message = "Please provide a valid positive amount."


class InsufficientFunds(EconomyError):
    """A conditioned decrement found the balance too low."""

    user_message = "You don't have enough points for that."

    def __init__(self, message: str = "insufficient funds", balance: Optional[int] = None):
        super().__init__(message)
        self.balance = balance


class Unavailable(EconomyError):
    """Store or transaction infrastructure failure."""

    user_message = "The economy is temporarily unavailable. Please try again later."


@dataclass
class ReconciliationRisk:
    """A transfer that debited the sender but could not credit the receiver."""

    sender_id: str
    receiver_id: str
    server_id: Optional[str]
    amount: int
    reason: str
    at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


ERROR_TITLES = {
    InvalidAmount: "❌ Invalid Amount",
    InsufficientFunds: "❌ Insufficient Balance",
    Unavailable: "⏳ Try Again Later",
}


class ErrorHandler:

    @staticmethod
    def build_error_embed(error: Exception, command_name: str) -> discord.Embed:
        """Build the user-facing embed for a command error."""
        if isinstance(error, EconomyError):
            embed = discord.Embed(
                title=ERROR_TITLES.get(type(error), "❌ Economy Error"),
                description=error.user_message,
                color=discord.Color.orange() if isinstance(error, Unavailable) else discord.Color.red(),
                timestamp=datetime.now(timezone.utc)
            )
            return embed

        embed = discord.Embed(
            title="⚠️ An Error Occurred",
            description=f"An unexpected error occurred while running the `{command_name}` command. The developers have been notified.",
            color=discord.Color.red(),
            timestamp=datetime.now(timezone.utc)
        )
        embed.set_footer(text="We apologize for the inconvenience.")
        return embed

    @staticmethod
    async def handle_command_error(ctx, error, command_name):
        """A centralized handler for cog-level command errors."""
        if isinstance(error, EconomyError):
            logging.info(f"Command '{command_name}' refused: {type(error).__name__}: {error}")
        else:
            logging.error(f"Error in command '{command_name}': {error}", exc_info=error)

        embed = ErrorHandler.build_error_embed(error, command_name)

        try:
            await ctx.send(embed=embed)
        except discord.Forbidden:
            pass # Can't send messages
        except discord.HTTPException as e:
            logging.error(f"Failed to send error message: {e}")
