import discord
from discord.ext import commands
import logging
from datetime import datetime, timezone

from constants import GamblingConfig
from economy import account_key, format_points
from games import flip_coin, play, roll_dice, spin_slots

DIE_FACES = {1: "⚀", 2: "⚁", 3: "⚂", 4: "⚃", 5: "⚄", 6: "⚅"}

DICE_TITLES = {
    "doubles": ("🎉 Doubles!", discord.Color.green()),
    "lucky_seven": ("🍀 Lucky Seven!", discord.Color.green()),
    "high_roll": ("😐 Break Even", discord.Color.light_grey()),
    "low_roll": ("💸 You Lost!", discord.Color.red()),
}


class Gambling(commands.Cog):
    """Coin flips, dice and slots, settled through the balance ledger."""

    def __init__(self, bot):
        self.bot = bot
        logging.info("✅ Gambling system initialized")

    def create_gambling_embed(self, title: str, color: discord.Color = discord.Color.purple()) -> discord.Embed:
        """Create a standardized gambling embed."""
        embed = discord.Embed(
            title=title,
            color=color,
            timestamp=datetime.now(timezone.utc)
        )
        embed.set_footer(text="🎰 Gambling | Play responsibly!")
        return embed

    @commands.command(name="gamble", aliases=["flip", "bet"])
    async def gamble(self, ctx: commands.Context, bet: int):
        """Bet points on a 50/50 flip."""
        result = await play(self.bot.ledger, account_key(ctx.author, ctx.guild), bet, flip_coin, self.bot.rng)
        self.bot.notifier.dispatch(result.ledger.events)

        if result.draw.won:
            embed = self.create_gambling_embed("🎉 Congratulations!", discord.Color.green())
            embed.description = f"You won {format_points(bet)}!"
        else:
            embed = self.create_gambling_embed("💔 You Lost", discord.Color.red())
            embed.description = f"You lost {format_points(bet)}. Better luck next time!"
        embed.add_field(name="💵 New Balance", value=format_points(result.balance), inline=False)
        await ctx.send(embed=embed)

    @commands.command(name="dice")
    async def dice(self, ctx: commands.Context, bet: int = None):
        """Roll two dice: doubles or a seven pays 2x, 8+ breaks even."""
        if bet is None:
            embed = self.create_gambling_embed("🎯 Dice Game", discord.Color.blue())
            embed.description = "Roll two dice!\n\n**Usage:** `~dice <bet>`"
            embed.add_field(
                name="Payouts",
                value=(
                    f"Doubles: {GamblingConfig.DICE_DOUBLES_MULTIPLIER}x\n"
                    f"Sum of 7: {GamblingConfig.DICE_LUCKY_SEVEN_MULTIPLIER}x\n"
                    f"Sum of {GamblingConfig.DICE_HIGH_ROLL_MIN}+: {GamblingConfig.DICE_HIGH_ROLL_MULTIPLIER}x\n"
                    "Anything else: lose your bet"
                ),
                inline=False
            )
            return await ctx.send(embed=embed)

        result = await play(self.bot.ledger, account_key(ctx.author, ctx.guild), bet, roll_dice, self.bot.rng)
        self.bot.notifier.dispatch(result.ledger.events)

        roll = result.draw
        title, color = DICE_TITLES[roll.outcome]
        embed = self.create_gambling_embed(title, color)
        embed.description = (
            f"🎲 {DIE_FACES[roll.die1]} {DIE_FACES[roll.die2]} (**{roll.total}**)\n"
            f"Bet {format_points(bet)}, net **{result.net:+,}** pts"
        )
        embed.add_field(name="💵 New Balance", value=format_points(result.balance), inline=False)
        await ctx.send(embed=embed)

    @commands.command(name="slots", aliases=["slot"])
    async def slots(self, ctx: commands.Context, bet: int = None):
        """Spin three reels: triples pay up to 100x, pairs pay a smaller consolation."""
        if bet is None:
            embed = self.create_gambling_embed("🎰 Slot Machine", discord.Color.blue())
            embed.description = "Spin the slot machine!\n\n**Usage:** `~slots <bet>`"
            embed.add_field(
                name="Triples",
                value="\n".join(f"3x {symbol} - {mult}x" for symbol, mult in GamblingConfig.SLOT_TRIPLE_PAYOUTS.items()),
                inline=True
            )
            embed.add_field(
                name="Pairs",
                value="\n".join(f"2x {symbol} - {mult}x" for symbol, mult in GamblingConfig.SLOT_DOUBLE_PAYOUTS.items()),
                inline=True
            )
            return await ctx.send(embed=embed)

        result = await play(self.bot.ledger, account_key(ctx.author, ctx.guild), bet, spin_slots, self.bot.rng)
        self.bot.notifier.dispatch(result.ledger.events)

        spin = result.draw
        if spin.outcome == "triple" and spin.multiplier >= 20:
            embed = self.create_gambling_embed("🎉 JACKPOT!", discord.Color.gold())
        elif result.net > 0:
            embed = self.create_gambling_embed("🎉 You Won!", discord.Color.green())
        elif spin.outcome == "double":
            embed = self.create_gambling_embed("🙂 Consolation", discord.Color.orange())
        else:
            embed = self.create_gambling_embed("💸 You Lost!", discord.Color.red())

        embed.description = (
            f"🎰 | {spin.reels[0]} | {spin.reels[1]} | {spin.reels[2]} |\n"
            f"Multiplier {spin.multiplier}x, net **{result.net:+,}** pts"
        )
        embed.add_field(name="💵 New Balance", value=format_points(result.balance), inline=False)
        await ctx.send(embed=embed)


async def setup(bot):
    await bot.add_cog(Gambling(bot))
