"""Entry-point for running the Ery Discord bot."""

from __future__ import annotations

import asyncio
import logging

from ery import create_bot
from ery.db import Database
from ery.health import start_health_server
from ery.models.config import load_settings
from ery.services.llm import LLMClient


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


async def async_main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    database = Database(settings.database_url)
    await database.connect()

    llm = LLMClient(
        api_key=settings.ai_api_key,
        model=settings.ai_model,
        base_url=settings.ai_base_url,
        fallback_model=settings.ai_fallback_model,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
        fallback_max_tokens=settings.ai_fallback_max_tokens,
        site_url=settings.ai_site_url,
        site_name=settings.ai_site_name,
    )
    if not llm.is_configured():
        logger.warning("No AI API key configured (AI_API_KEY / OPENROUTER_API_KEY)")

    bot = create_bot(settings, llm, database)
    health_server = await start_health_server(
        settings.health_host,
        settings.health_port,
        bot.message_manager,
        bot.agent,
        database,
        bot.tool_registry,
    )
    try:
        await bot.start(settings.discord_token)
    finally:
        await bot.message_manager.shutdown()
        if not bot.is_closed():
            await bot.close()
        health_server.close()
        await health_server.wait_closed()
        await database.close()


def main() -> None:
    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
