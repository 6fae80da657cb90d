import discord
from discord.ext import commands
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import List

import aiofiles

from awarders import TriviaQuestion, TriviaSession
from economy import account_key, format_points


async def load_question_bank(filename: str) -> List[TriviaQuestion]:
    """Read trivia questions from a JSON list, skipping malformed entries."""
    try:
        async with aiofiles.open(filename, "r", encoding="utf-8") as f:
            raw = json.loads(await f.read())
    except (OSError, json.JSONDecodeError) as e:
        logging.error(f"❌ Could not load trivia questions from {filename}: {e}")
        return []

    questions = []
    for index, entry in enumerate(raw):
        try:
            questions.append(TriviaQuestion.from_dict(entry))
        except (KeyError, TypeError, ValueError) as e:
            logging.warning(f"⚠️ Skipping trivia question #{index}: {e}")
    return questions


class TriviaView(discord.ui.View):
    """One button per option; only the member the question was asked to may answer."""

    def __init__(self, cog: "Trivia", session: TriviaSession, timeout: float):
        super().__init__(timeout=timeout)
        self.cog = cog
        self.session = session
        for option_id, text in session.question.options:
            button = discord.ui.Button(label=f"{option_id}: {text}"[:80], style=discord.ButtonStyle.secondary)
            button.callback = self._make_callback(option_id)
            self.add_item(button)

    def _make_callback(self, option_id: str):
        async def callback(interaction: discord.Interaction):
            await self.cog.handle_answer(interaction, self, option_id)
        return callback

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if str(interaction.user.id) != self.session.user_id:
            await interaction.response.send_message("This question isn't for you!", ephemeral=True)
            return False
        return True

    def disable(self):
        for item in self.children:
            item.disabled = True
        self.stop()


class Trivia(commands.Cog):
    """Chat activity occasionally earns a member a trivia question worth points."""

    def __init__(self, bot):
        self.bot = bot
        self.questions: List[TriviaQuestion] = []
        self._expiry_tasks = set()

    async def cog_load(self):
        filename = self.bot.guild_config.get("trivia_questions_file", "trivia_questions.json")
        self.questions = await load_question_bank(filename)
        logging.info(f"✅ Trivia loaded with {len(self.questions)} question(s)")

    async def cog_unload(self):
        for task in self._expiry_tasks:
            task.cancel()

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.author.bot or message.guild is None or not self.questions:
            return
        # Commands don't count as chat activity
        if message.content.startswith(self.bot.command_prefix):
            return

        key = account_key(message.author, message.guild)
        if not await self.bot.trivia.record_message(key):
            return
        if message.author.id in self.bot.registry.active_trivia:
            return

        question = self.bot.rng.choice(self.questions)
        session = await self.bot.trivia.open_session(key, question)
        self.bot.registry.active_trivia.put(message.author.id, session.session_id)
        await self.ask(message.channel, message.author, session)

    async def ask(self, channel, member: discord.Member, session: TriviaSession):
        window = self.bot.trivia.window
        embed = discord.Embed(
            title="🧠 Trivia Time!",
            description=f"{member.mention}, answer within **{int(window)}s** to win **{format_points(session.question.reward)}**!\n\n**{session.question.question}**",
            color=discord.Color.blurple(),
            timestamp=datetime.now(timezone.utc)
        )
        view = TriviaView(self, session, timeout=window)
        message = await channel.send(embed=embed, view=view)

        task = asyncio.create_task(self._expire_later(message, view))
        self._expiry_tasks.add(task)
        task.add_done_callback(self._expiry_tasks.discard)

    async def handle_answer(self, interaction: discord.Interaction, view: TriviaView, option_id: str):
        session = view.session
        result = await self.bot.trivia.answer(session.session_id, interaction.user.id, option_id)
        self.bot.registry.active_trivia.discard(interaction.user.id, session.session_id)
        view.disable()

        if result is None:
            await interaction.response.edit_message(content="⏰ This question is already closed.", view=view)
            return

        explanation = f"\n{session.question.explanation}" if session.question.explanation else ""
        if result.correct:
            self.bot.notifier.dispatch(result.events)
            content = f"✅ Correct! You earned **{format_points(session.question.reward)}**. New balance: {format_points(result.ledger.balance)}{explanation}"
        else:
            content = f"❌ Wrong! The correct answer was **{result.correct_answer}**.{explanation}"
        await interaction.response.edit_message(content=content, view=view)

    async def _expire_later(self, message: discord.Message, view: TriviaView):
        session = view.session
        await asyncio.sleep(max(0, session.expires_at - self.bot.trivia.clock()))
        self.bot.registry.active_trivia.discard(int(session.user_id), session.session_id)

        if await self.bot.trivia.expire(session.session_id):
            view.disable()
            try:
                await message.edit(content=f"⏰ Time's up! The correct answer was **{session.question.correct_answer}**.", view=view)
            except discord.HTTPException as e:
                logging.warning(f"Could not close trivia message: {e}")


async def setup(bot):
    await bot.add_cog(Trivia(bot))
