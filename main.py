import discord
from discord.ext import commands
import logging
import random

import config
from awarders import CooldownAwarder, PointDropAwarder, RoleRewardAwarder, TriviaAwarder
from constants import EconomyConfig, RolePayConfig
from database import MongoStore
from error_handler import ErrorHandler, Unavailable
from ledger import BalanceLedger, ReconciliationJournal, TransferEngine
from notifications import BalanceNotifier
from registry import ActivityRegistry
from withdraw_limiter import WithdrawalLimiter

# ---------------- Setup ----------------
def setup_logging():
    """Setup logging with both file and console output."""
    logger = logging.getLogger()
    logger.setLevel(logging.INFO)

    # File handler
    file_handler = logging.FileHandler(filename="discord.log", encoding="utf-8", mode="a")
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        '%(levelname)s - %(name)s - %(message)s'
    ))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

setup_logging()

intents = discord.Intents.default()
intents.message_content = True
intents.members = True
intents.guilds = True

COGS = ["admin", "economy", "gambling", "point_drop", "trivia", "role_pay"]


class Bot(commands.Bot):
    """Bot that owns the economy services; cogs reach them through `self.bot`."""

    def __init__(self):
        super().__init__(
            command_prefix=config.COMMAND_PREFIX,
            intents=intents,
            case_insensitive=True
        )
        self.config_manager = config.ConfigManager()
        self.guild_config = self.config_manager.load()
        self.rng = random.Random()

        self.store = MongoStore(transactions=config.MONGODB_TRANSACTIONS)
        self.ledger = BalanceLedger(self.store)
        self.transfers = TransferEngine(self.ledger, ReconciliationJournal(config.RECONCILIATION_FILE))
        self.limiter = WithdrawalLimiter(self.store)
        self.notifier = BalanceNotifier()
        self.registry = ActivityRegistry()

        self.daily = CooldownAwarder(self.ledger, "lastDaily", EconomyConfig.DAILY_COOLDOWN)
        self.role_pay = CooldownAwarder(self.ledger, "lastDailyRolePayAt", RolePayConfig.COOLDOWN)
        self.role_rewards = RoleRewardAwarder(self.ledger)
        self.point_drops = PointDropAwarder(self.ledger)
        self.trivia = TriviaAwarder(self.ledger)

    async def close(self):
        """Flush pending notifications and close the store."""
        await self.notifier.drain()
        self.store.close()
        await super().close()

bot = Bot()

# ---------------- Error Handling ----------------
@bot.event
async def on_command_error(ctx, error):
    """Global error handler; economy errors are unwrapped and handed to ErrorHandler."""
    if hasattr(ctx.command, 'on_error'):
        return

    if isinstance(error, commands.CommandInvokeError):
        await ErrorHandler.handle_command_error(ctx, error.original, ctx.command.qualified_name)
        return

    error_embed = discord.Embed(color=discord.Color.red())

    if isinstance(error, commands.MissingRequiredArgument):
        error_embed.title = "❌ Missing Argument"
        error_embed.description = f"Missing required argument: `{error.param.name}`"
        error_embed.set_footer(text=f"Use {config.COMMAND_PREFIX}help {ctx.command} for more info")

    elif isinstance(error, commands.BadArgument):
        error_embed.title = "❌ Invalid Argument"
        error_embed.description = "Invalid argument type or member not found."

    elif isinstance(error, commands.CommandNotFound):
        return

    elif isinstance(error, commands.MissingPermissions):
        error_embed.title = "❌ Missing Permissions"
        error_embed.description = "You do not have permission to use this command."

    elif isinstance(error, commands.NoPrivateMessage):
        error_embed.title = "❌ Guild Only Command"
        error_embed.description = "This command can only be used in servers."

    elif isinstance(error, commands.CheckFailure):
        # cog_check already replied
        return

    else:
        logging.error(f"Unexpected error in command {ctx.command}: {error}", exc_info=error)
        error_embed.title = "⚠️ Unexpected Error"
        error_embed.description = "An unexpected error occurred. The issue has been logged."
        error_embed.color = discord.Color.orange()

    try:
        await ctx.send(embed=error_embed, delete_after=10)
    except discord.Forbidden:
        pass

# ---------------- Cog Loader ----------------
async def load_cogs():
    """Load every cog, logging the ones that fail."""
    loaded_count = 0

    for cog in COGS:
        try:
            await bot.load_extension(cog)
            logging.info(f"✅ Loaded cog: {cog}")
            loaded_count += 1

        except commands.ExtensionNotFound:
            logging.error(f"❌ Cog not found: {cog}")
        except commands.ExtensionFailed as e:
            logging.error(f"❌ Cog failed to load {cog}: {e}")

    logging.info(f"📊 Cogs loaded: {loaded_count}/{len(COGS)}")

# ---------------- Bot Events ----------------
@bot.event
async def setup_hook():
    """Connect the store, then load cogs."""
    logging.info("🔧 Starting bot setup...")

    if await bot.store.connect_with_retry(config.MONGODB_URI, config.MONGODB_DATABASE):
        try:
            await bot.store.initialize_collections()
        except Unavailable as e:
            logging.error(f"❌ Could not create indexes: {e}")
    else:
        logging.error("❌ Economy running without persistence; point commands will fail")

    await load_cogs()
    logging.info("✅ Setup hook completed")

@bot.event
async def on_ready():
    logging.info(f"✅ Bot is ready as {bot.user} (ID: {bot.user.id})")
    logging.info(f"📊 Connected to {len(bot.guilds)} guild(s)")

    await bot.change_presence(
        activity=discord.Activity(
            type=discord.ActivityType.watching,
            name=f"{config.COMMAND_PREFIX}help | Points"
        ),
        status=discord.Status.online
    )

@bot.event
async def on_guild_join(guild):
    logging.info(f"➕ Joined guild: {guild.name} (ID: {guild.id}) with {guild.member_count} members")

@bot.event
async def on_guild_remove(guild):
    logging.info(f"➖ Left guild: {guild.name} (ID: {guild.id})")

# ---------------- Utility Commands ----------------
@bot.command(name="ping", brief="Check bot latency")
async def ping(ctx):
    """Check the bot's latency and response time."""
    start_time = ctx.message.created_at
    msg = await ctx.send("🏓 Pinging...")
    end_time = msg.created_at

    bot_latency = round(bot.latency * 1000)
    response_time = round((end_time - start_time).total_seconds() * 1000)

    embed = discord.Embed(
        title="🏓 Pong!",
        color=discord.Color.green()
    )
    embed.add_field(name="Bot Latency", value=f"{bot_latency}ms", inline=True)
    embed.add_field(name="Response Time", value=f"{response_time}ms", inline=True)
    embed.add_field(name="Store", value="✅ MongoDB" if bot.store.connected else "⚠️ Offline", inline=True)

    await msg.edit(content=None, embed=embed)

# ---------------- Run Bot ----------------
if __name__ == "__main__":
    try:
        logging.info("🚀 Starting bot...")
        bot.run(config.TOKEN)
    except KeyboardInterrupt:
        logging.info("⏹️ Bot stopped by user")
    except discord.LoginFailure:
        logging.critical("❌ Invalid Discord token")
