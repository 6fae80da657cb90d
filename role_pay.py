import discord
from discord.ext import commands, tasks
import asyncio
import logging

from awarders import role_pay_for
from constants import WEEK, RolePayConfig
from economy import account_key, format_points
from error_handler import Unavailable


class RolePay(commands.Cog):
    """Daily pay for paid roles and one-time rewards for reward roles."""

    def __init__(self, bot):
        self.bot = bot

    async def cog_load(self):
        self.role_check.start()

    async def cog_unload(self):
        self.role_check.cancel()

    async def notify_member(self, member: discord.Member, text: str):
        """Post in the member's last active channel, falling back to a DM."""
        last = self.bot.registry.last_channel.get(member.id)
        if last is not None and last.guild_id == member.guild.id:
            channel = member.guild.get_channel(last.channel_id)
            if channel is not None:
                try:
                    await channel.send(f"{member.mention} {text}")
                    return
                except discord.HTTPException as e:
                    logging.debug(f"Could not post in channel {last.channel_id}: {e}")

        try:
            await member.send(text)
        except discord.HTTPException as e:
            logging.debug(f"Could not DM {member}: {e}")

    # ---------------- Daily role pay ----------------
    async def pay_member(self, member: discord.Member, paid_roles) -> int:
        """Pay the member's daily role pay if it is due. Returns the amount paid."""
        pay, _ = role_pay_for([role.id for role in member.roles], paid_roles)
        if pay <= 0:
            return 0

        result = await self.bot.role_pay.award(account_key(member, member.guild), pay)
        if result is None:
            return 0

        self.bot.notifier.dispatch(result.events)
        await self.notify_member(member, f"💼 You received your daily role pay of **{format_points(pay)}**!")
        return pay

    # ---------------- Role rewards ----------------
    async def reward_roles(self, member: discord.Member, role_ids, role_rewards) -> int:
        """Pay any reward roles in `role_ids` the member has not been paid for yet."""
        paid = 0
        for entry in role_rewards:
            if entry["role_id"] not in role_ids:
                continue

            result = await self.bot.role_rewards.award(account_key(member, member.guild), entry["role_id"], entry["reward"])
            if result is None:
                continue

            self.bot.notifier.dispatch(result.events)
            role = member.guild.get_role(entry["role_id"])
            role_name = role.name if role else "Unknown Role"
            await self.notify_member(member, f"🎉 You received **{format_points(entry['reward'])}** for earning **{role_name}**!")
            paid += entry["reward"]
        return paid

    @commands.Cog.listener()
    async def on_member_update(self, before: discord.Member, after: discord.Member):
        gained = {role.id for role in after.roles} - {role.id for role in before.roles}
        if not gained or after.bot:
            return
        await self.reward_roles(after, gained, self.bot.guild_config.get("role_rewards", []))

    # ---------------- Scheduler ----------------
    @tasks.loop(minutes=RolePayConfig.CHECK_INTERVAL_MINUTES)
    async def role_check(self):
        logging.info("🔄 Starting role pay check")
        stale = self.bot.registry.last_channel.evict_older_than(WEEK)
        if stale:
            logging.info(f"🧹 Forgot last channel of {stale} inactive member(s)")

        guild_config = self.bot.guild_config
        paid_roles = guild_config.get("paid_roles", [])
        role_rewards = guild_config.get("role_rewards", [])
        if not paid_roles and not role_rewards:
            return

        total = 0
        for guild in self.bot.guilds:
            async for member in guild.fetch_members(limit=None):
                if member.bot:
                    continue
                try:
                    total += await self.pay_member(member, paid_roles)
                    total += await self.reward_roles(member, {role.id for role in member.roles}, role_rewards)
                except Unavailable as e:
                    logging.error(f"❌ Role pay failed for {member}: {e}")

        logging.info(f"✅ Role pay check completed, {format_points(total)} paid")

    @role_check.before_loop
    async def before_role_check(self):
        await self.bot.wait_until_ready()
        await asyncio.sleep(RolePayConfig.STARTUP_DELAY)

    @role_check.error
    async def role_check_error(self, error):
        logging.error(f"❌ Role pay loop error: {error}", exc_info=error)


async def setup(bot):
    await bot.add_cog(RolePay(bot))
