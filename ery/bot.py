"""Discord bot wiring for Ery."""

from __future__ import annotations

import logging

import discord
from discord.ext import commands

from .db import Database
from .models.config import BotSettings
from .services.agent import Agent
from .services.agent_logger import AgentLogger
from .services.batcher import MessageBatcher
from .services.llm import LLMClient
from .services.message_manager import MessageManager
from .services.thread_store import ThreadStore
from .services.threads import TaskThreadManager
from .tools import ToolExecutor, build_tool_registry

logger = logging.getLogger(__name__)


def create_bot(
    settings: BotSettings,
    llm: LLMClient,
    database: Database,
) -> commands.Bot:
    intents = discord.Intents.default()
    intents.members = True
    intents.message_content = True

    bot = commands.Bot(
        command_prefix=commands.when_mentioned,  # Required by discord.py; no text commands are registered
        intents=intents,
        help_command=None,
    )

    registry = build_tool_registry()
    agent_logger = AgentLogger(database)
    executor = ToolExecutor(registry, agent_logger)
    agent = Agent(
        llm,
        executor,
        settings,
        bot,
        agent_logger=agent_logger,
        database=database,
    )
    store = ThreadStore(database)
    thread_manager = TaskThreadManager(store, agent, settings)
    batcher = MessageBatcher(settings, bot)
    manager = MessageManager(batcher, thread_manager)

    # Exposed for the health endpoint and shutdown in main.py
    bot.database = database  # type: ignore[attr-defined]
    bot.agent = agent  # type: ignore[attr-defined]
    bot.tool_registry = registry  # type: ignore[attr-defined]
    bot.message_manager = manager  # type: ignore[attr-defined]

    @bot.event
    async def setup_hook() -> None:  # type: ignore[override]
        logger.info("Task threads stored using %s storage", store.storage)
        if not agent.is_ready():
            logger.warning("AI provider not configured; every batch will fail until AI_API_KEY is set")
        else:
            logger.info("AI provider configured: %s", llm.model_info())
        logger.info("Registered %d tools: %s", len(registry), ", ".join(registry.names()))
        await manager.start()

    @bot.event
    async def on_ready() -> None:
        logger.info("Logged in as %s (guilds: %d)", bot.user, len(bot.guilds))

    @bot.event
    async def on_message(message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        try:
            await manager.add_message(message)
        except Exception:
            logger.exception("Failed to queue message %s in channel %s", message.id, message.channel.id)

    return bot
