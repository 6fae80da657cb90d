import discord
from discord.ext import commands
import logging
from datetime import datetime, timezone

from awarders import role_pay_for
from constants import EconomyConfig
from database import AccountKey
from error_handler import InvalidAmount
from notifications import BalanceChanged, pick_balance_role
from registry import LastMessage


def account_key(user, guild=None) -> AccountKey:
    """Account of a Discord user, scoped to the guild when there is one."""
    return AccountKey.of(user.id, guild.id if guild else None)


def format_points(amount: int) -> str:
    """Format points with commas."""
    return f"{amount:,} pts"


def format_time(seconds: float) -> str:
    """Format seconds into readable time."""
    if seconds < 60:
        return f"{int(seconds)}s"
    elif seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


def economy_embed(title: str, color: discord.Color = discord.Color.gold()) -> discord.Embed:
    """Create a standardized economy embed."""
    embed = discord.Embed(title=title, color=color, timestamp=datetime.now(timezone.utc))
    embed.set_footer(text="Points Economy")
    return embed


class Economy(commands.Cog):
    """Balances, daily bonus, donations and withdraw limits."""

    def __init__(self, bot):
        self.bot = bot
        logging.info("✅ Economy system initialized")

    async def cog_load(self):
        self.bot.notifier.subscribe(self.sync_balance_roles)

    async def cog_unload(self):
        self.bot.notifier.unsubscribe(self.sync_balance_roles)

    # ---------------- Listeners ----------------
    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.author.bot or message.guild is None:
            return
        self.bot.registry.last_channel.put(
            message.author.id,
            LastMessage(message.channel.id, message.guild.id)
        )

    async def sync_balance_roles(self, event: BalanceChanged):
        """Give the member the highest balance role they qualify for and drop the rest."""
        if event.server_id is None:
            return
        balance_roles = self.bot.guild_config.get("balance_roles", [])
        if not balance_roles:
            return

        guild = self.bot.get_guild(int(event.server_id))
        member = guild.get_member(int(event.user_id)) if guild else None
        if member is None:
            return

        target_id = pick_balance_role(event.balance, balance_roles)
        configured = {entry["role_id"] for entry in balance_roles}
        to_remove = [role for role in member.roles if role.id in configured and role.id != target_id]
        target = guild.get_role(target_id) if target_id else None

        if to_remove:
            await member.remove_roles(*to_remove, reason="Balance role update")
        if target and target not in member.roles:
            await member.add_roles(target, reason="Balance role update")
            logging.info(f"🏷️ Gave balance role {target.name} to {member}")

    # ========== COMMANDS ==========

    @commands.command(name="balance", aliases=["bal", "points"])
    async def balance(self, ctx: commands.Context, member: discord.Member = None):
        """Check your or someone else's balance."""
        member = member or ctx.author
        account = await self.bot.ledger.get_account(account_key(member, ctx.guild))

        embed = economy_embed(f"💰 {member.display_name}'s Balance")
        embed.set_thumbnail(url=member.display_avatar.url)
        embed.add_field(name="💵 Points", value=format_points(account["balance"]), inline=True)
        await ctx.send(embed=embed)

    @commands.command(name="leaderboard", aliases=["lb", "top"])
    @commands.guild_only()
    async def leaderboard(self, ctx: commands.Context):
        """Show the server's richest members."""
        top = await self.bot.ledger.top_accounts(str(ctx.guild.id), EconomyConfig.LEADERBOARD_SIZE)
        rank, balance = await self.bot.ledger.standing(account_key(ctx.author, ctx.guild))

        lines = []
        for position, account in enumerate(top, start=1):
            member = ctx.guild.get_member(int(account["userId"]))
            if member is None:
                continue
            lines.append(f"**#{position}. {member.display_name}**: {format_points(account['balance'])}")

        embed = economy_embed("🏆 Leaderboard 🏆")
        embed.description = "\n".join(lines) if lines else "No leaderboard data available."
        embed.set_footer(text=f"Your Balance: {format_points(balance)} | Your Rank: #{rank}")
        await ctx.send(embed=embed)

    @commands.command(name="daily")
    async def daily(self, ctx: commands.Context):
        """Claim your daily bonus."""
        key = account_key(ctx.author, ctx.guild)
        amount = self.bot.rng.randint(EconomyConfig.DAILY_MIN, EconomyConfig.DAILY_MAX)
        result = await self.bot.daily.award(key, amount)

        if result is None:
            remaining = await self.bot.daily.time_left(key)
            embed = economy_embed("⏰ Already Claimed", discord.Color.orange())
            embed.description = f"You can claim your daily bonus again in **{format_time(remaining)}**"
            return await ctx.send(embed=embed)

        self.bot.notifier.dispatch(result.events)
        embed = economy_embed("🎁 Daily Bonus", discord.Color.green())
        embed.description = f"You received {format_points(amount)}!"
        embed.add_field(name="💵 New Balance", value=format_points(result.balance), inline=False)
        await ctx.send(embed=embed)

    @commands.command(name="donate", aliases=["pay", "give"])
    @commands.guild_only()
    async def donate(self, ctx: commands.Context, member: discord.Member, amount: int):
        """Donate points to another member."""
        if member == ctx.author:
            embed = economy_embed("❌ Invalid Action", discord.Color.red())
            embed.description = "You cannot donate to yourself!"
            return await ctx.send(embed=embed)

        if member.bot:
            embed = economy_embed("❌ Invalid Action", discord.Color.red())
            embed.description = "You cannot donate to bots!"
            return await ctx.send(embed=embed)

        if amount > EconomyConfig.MAX_DONATION:
            raise InvalidAmount(f"donation above {EconomyConfig.MAX_DONATION}")

        record = await self.bot.transfers.transfer(
            account_key(ctx.author, ctx.guild),
            account_key(member, ctx.guild),
            amount
        )
        self.bot.notifier.dispatch(record.events)

        embed = economy_embed("💸 Donation Successful", discord.Color.green())
        embed.description = f"{ctx.author.mention} donated {format_points(amount)} to {member.mention}!"
        embed.add_field(name="Your Balance", value=format_points(record.sender["balance"]), inline=True)
        embed.add_field(name=f"{member.display_name}'s Balance", value=format_points(record.receiver["balance"]), inline=True)
        await ctx.send(embed=embed)

    @commands.group(name="withdrawlimit", aliases=["wl"], invoke_without_command=True)
    @commands.guild_only()
    async def withdrawlimit(self, ctx: commands.Context, member: discord.Member = None):
        """Show how much of the weekly withdraw limit is left."""
        member = member or ctx.author
        role_ids = [role.id for role in member.roles]
        _, extra_limit = role_pay_for(role_ids, self.bot.guild_config.get("paid_roles", []))

        check = await self.bot.limiter.check_and_reserve(account_key(member, ctx.guild), 0, extra_limit)

        embed = economy_embed(f"🏧 {member.display_name}'s Withdraw Limit", discord.Color.blue())
        embed.add_field(name="Used", value=format_points(check.used), inline=True)
        embed.add_field(name="Remaining", value=format_points(check.remaining), inline=True)
        embed.add_field(name="Weekly Cap", value=format_points(check.cap), inline=True)
        embed.add_field(name="Resets", value=f"<t:{int(check.resets_at)}:R>", inline=False)
        await ctx.send(embed=embed)

    @withdrawlimit.command(name="global")
    async def withdrawlimit_global(self, ctx: commands.Context):
        """Show the server-wide weekly withdraw limit."""
        check = await self.bot.limiter.check_and_reserve_global(0, str(ctx.guild.id))

        embed = economy_embed("🌐 Server Withdraw Limit", discord.Color.blue())
        embed.add_field(name="Used", value=format_points(check.used), inline=True)
        embed.add_field(name="Remaining", value=format_points(check.remaining), inline=True)
        embed.add_field(name="Weekly Cap", value=format_points(check.cap), inline=True)
        embed.add_field(name="Resets", value=f"<t:{int(check.resets_at)}:R>", inline=False)
        await ctx.send(embed=embed)


async def setup(bot):
    await bot.add_cog(Economy(bot))
