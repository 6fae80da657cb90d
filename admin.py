import discord
from discord.ext import commands
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import aiofiles

import config
from economy import account_key, format_points
from error_handler import InvalidAmount

# ---------------- Admin Constants ----------------
class AdminConfig:
    # Role name for permission system
    ADMIN_ROLE_NAME = "bot-admin"

    # Adjustment limits
    MAX_ADJUSTMENT = 1_000_000_000

    # Audit log
    AUDIT_FILE = "admin_audit.json"
    MAX_AUDIT_ENTRIES = 1000
    RECONCILIATION_PREVIEW = 10


async def append_audit_entry(filename: str, guild_id: str, entry: Dict[str, Any],
                             max_entries: int = AdminConfig.MAX_AUDIT_ENTRIES) -> None:
    """Append an entry to the per-guild audit log, keeping the newest `max_entries`."""
    try:
        async with aiofiles.open(filename, "r") as f:
            content = await f.read()
            logs = json.loads(content) if content else {}
    except (FileNotFoundError, json.JSONDecodeError):
        logs = {}

    entries = logs.setdefault(guild_id, [])
    entries.append(entry)
    logs[guild_id] = entries[-max_entries:]

    try:
        async with aiofiles.open(filename, "w") as f:
            await f.write(json.dumps(logs, indent=2))
    except OSError as e:
        logging.error(f"Failed to save admin audit log: {e}")


async def read_reconciliation_journal(filename: str, limit: int) -> List[Dict[str, Any]]:
    """Newest `limit` entries of the reconciliation journal."""
    try:
        async with aiofiles.open(filename, "r") as f:
            lines = (await f.read()).splitlines()
    except FileNotFoundError:
        return []

    entries = []
    for line in lines[-limit:]:
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            logging.warning(f"⚠️ Unreadable reconciliation entry: {line!r}")
    return entries


class Admin(commands.Cog):
    """Administrator point adjustments, audited to file."""

    def __init__(self, bot):
        self.bot = bot
        self.audit_file = AdminConfig.AUDIT_FILE

    # -------------------- Permission System --------------------
    def is_admin(self, member: discord.Member) -> bool:
        """Check if member has admin permissions."""
        # Server administrators always have access
        if member.guild_permissions.administrator:
            return True

        # Check for bot-admin role
        if discord.utils.get(member.roles, name=AdminConfig.ADMIN_ROLE_NAME):
            return True

        # Server owner always has access
        return member == member.guild.owner

    async def cog_check(self, ctx: commands.Context) -> bool:
        """Permission check for all commands in this cog."""
        if not ctx.guild:
            embed = discord.Embed(
                title="❌ Guild Only",
                description="This command can only be used in servers.",
                color=discord.Color.red()
            )
            await ctx.send(embed=embed, delete_after=10)
            return False

        if not self.is_admin(ctx.author):
            embed = discord.Embed(
                title="🔒 Admin Only",
                description=f"This command requires the `{AdminConfig.ADMIN_ROLE_NAME}` role or Administrator permissions.",
                color=discord.Color.red()
            )
            await ctx.send(embed=embed, delete_after=10)
            return False

        return True

    async def log_admin_action(self, action: str, admin: discord.Member,
                               target: Optional[discord.Member], amount: int, balance: int) -> None:
        log_entry = {
            "action": action,
            "admin": f"{admin} (ID: {admin.id})",
            "target": f"{target} (ID: {target.id})" if target else "N/A",
            "amount": amount,
            "balance_after": balance,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "guild": f"{admin.guild.name} (ID: {admin.guild.id})"
        }
        logging.info(f"🛡️ {action}: {admin} adjusted {target} by {amount}")
        await append_audit_entry(self.audit_file, str(admin.guild.id), log_entry)

    def _check_adjustment(self, amount: int):
        if amount > AdminConfig.MAX_ADJUSTMENT:
            raise InvalidAmount(f"adjustment above {AdminConfig.MAX_ADJUSTMENT}")

    # -------------------- Commands --------------------
    @commands.command(name="addpoints", aliases=["apadd"])
    async def add_points(self, ctx: commands.Context, member: discord.Member, amount: int):
        """Admin: Add points to a member's balance."""
        self._check_adjustment(amount)
        result = await self.bot.ledger.credit(account_key(member, ctx.guild), amount)
        self.bot.notifier.dispatch(result.events)

        embed = discord.Embed(
            title="✅ Points Added",
            description=f"Added {format_points(amount)} to {member.mention}",
            color=discord.Color.green()
        )
        embed.add_field(name="💵 New Balance", value=format_points(result.balance), inline=True)
        await ctx.send(embed=embed)

        await self.log_admin_action("add_points", ctx.author, member, amount, result.balance)

    @commands.command(name="subtractpoints", aliases=["apsub"])
    async def subtract_points(self, ctx: commands.Context, member: discord.Member, amount: int):
        """Admin: Remove points from a member's balance (never below zero)."""
        self._check_adjustment(amount)
        result = await self.bot.ledger.debit(account_key(member, ctx.guild), amount)
        self.bot.notifier.dispatch(result.events)

        embed = discord.Embed(
            title="✅ Points Removed",
            description=f"Removed {format_points(amount)} from {member.mention}",
            color=discord.Color.green()
        )
        embed.add_field(name="💵 New Balance", value=format_points(result.balance), inline=True)
        await ctx.send(embed=embed)

        await self.log_admin_action("subtract_points", ctx.author, member, -amount, result.balance)

    @commands.command(name="reconciliation", aliases=["recon"])
    async def reconciliation(self, ctx: commands.Context):
        """Admin: Show the newest transfers that debited a sender without crediting the receiver."""
        entries = await read_reconciliation_journal(config.RECONCILIATION_FILE, AdminConfig.RECONCILIATION_PREVIEW)
        embed = discord.Embed(title="🚨 Reconciliation Journal", color=discord.Color.orange())

        if not entries:
            embed.description = "Nothing to reconcile."
            embed.color = discord.Color.green()
        for entry in entries:
            embed.add_field(
                name=entry.get("at", "unknown time"),
                value=f"{format_points(entry.get('amount', 0))} from <@{entry.get('sender_id')}> to <@{entry.get('receiver_id')}>\n`{entry.get('reason', '')}`"[:1024],
                inline=False
            )
        await ctx.send(embed=embed)


async def setup(bot):
    await bot.add_cog(Admin(bot))
