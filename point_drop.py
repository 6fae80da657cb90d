import discord
from discord.ext import commands, tasks
import asyncio
import logging
from datetime import datetime, timezone

from awarders import PointDrop, pick_drop_amount
from constants import PointDropConfig
from economy import account_key, format_points


class PointDrops(commands.Cog):
    """Random point drops; the first member to type the claim phrase takes them."""

    def __init__(self, bot):
        self.bot = bot
        self._expiry_tasks = set()

    async def cog_load(self):
        self.drop_loop.start()

    async def cog_unload(self):
        self.drop_loop.cancel()
        for task in self._expiry_tasks:
            task.cancel()

    def _next_interval(self) -> int:
        return self.bot.rng.choice(PointDropConfig.COOLDOWN_MINUTES)

    def _drop_channel(self):
        channel_id = self.bot.guild_config.get("point_drop_channel_id")
        return self.bot.get_channel(int(channel_id)) if channel_id else None

    # ---------------- Scheduler ----------------
    @tasks.loop(minutes=PointDropConfig.COOLDOWN_MINUTES[0])
    async def drop_loop(self):
        channel = self._drop_channel()
        if channel is None:
            logging.warning("⚠️ Point drop channel not configured or not found")
        elif channel.id in self.bot.registry.active_drops:
            logging.info("Point drop skipped: previous drop still open")
        else:
            await self.open_drop(channel)

        # Each drop picks the wait before the next one
        self.drop_loop.change_interval(minutes=self._next_interval())

    @drop_loop.before_loop
    async def before_drop_loop(self):
        await self.bot.wait_until_ready()
        await asyncio.sleep(self._next_interval() * 60)

    @drop_loop.error
    async def drop_loop_error(self, error):
        logging.error(f"❌ Point drop loop error: {error}", exc_info=error)

    async def open_drop(self, channel: discord.TextChannel) -> PointDrop:
        amount, mega = pick_drop_amount(self.bot.rng)
        drop = await self.bot.point_drops.open_drop(channel.id, amount, mega)
        self.bot.registry.active_drops.put(channel.id, drop.drop_id)

        phrase = PointDropConfig.CLAIM_PHRASE
        minutes = PointDropConfig.CLAIM_WINDOW // 60
        if mega:
            embed = discord.Embed(
                title="🤯 MEGA DROP!!! 🤯",
                description=(
                    f"🚨 **MASSIVE DROP ALERT!** 🚨\n\nA MEGA drop of **{format_points(amount)}** has appeared!\n\n"
                    f"⚡ Be the first to type `{phrase}` to collect it! ⚡\n\n🎯 Only {minutes} minutes to claim!"
                ),
                color=discord.Color.red(),
                timestamp=datetime.now(timezone.utc)
            )
        else:
            embed = discord.Embed(
                title="💰 Point Drop!",
                description=f"A drop of **{format_points(amount)}** has appeared! Be the first to type `{phrase}` to collect it!",
                color=discord.Color.gold(),
                timestamp=datetime.now(timezone.utc)
            )

        ping_role_id = self.bot.guild_config.get("point_drop_ping_role_id")
        content = f"<@&{ping_role_id}>" if ping_role_id else None
        await channel.send(content=content, embed=embed)

        task = asyncio.create_task(self._expire_later(channel, drop))
        self._expiry_tasks.add(task)
        task.add_done_callback(self._expiry_tasks.discard)
        return drop

    async def _expire_later(self, channel: discord.TextChannel, drop: PointDrop):
        await asyncio.sleep(max(0, drop.expires_at - self.bot.point_drops.clock()))
        self.bot.registry.active_drops.discard(channel.id, drop.drop_id)

        if await self.bot.point_drops.expire(drop.drop_id):
            await channel.send("No one claimed the point drop in time! Better luck next time!")

    # ---------------- Claims ----------------
    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.author.bot or message.guild is None:
            return
        if message.content.strip().lower() != PointDropConfig.CLAIM_PHRASE:
            return

        drop_id = self.bot.registry.active_drops.get(message.channel.id)
        if drop_id is None:
            return

        result = await self.bot.point_drops.claim(drop_id, account_key(message.author, message.guild))
        if result is None:
            return

        self.bot.registry.active_drops.discard(message.channel.id, drop_id)
        self.bot.notifier.dispatch(result.events)

        amount = result.events[0].delta
        embed = discord.Embed(
            title="🎉 Points Claimed!",
            description=f"{message.author.mention} claimed **{format_points(amount)}**!",
            color=discord.Color.green(),
            timestamp=datetime.now(timezone.utc)
        )
        embed.add_field(name="💵 New Balance", value=format_points(result.balance), inline=False)
        await message.channel.send(content=message.author.mention, embed=embed)


async def setup(bot):
    await bot.add_cog(PointDrops(bot))
