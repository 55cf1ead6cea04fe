"""
Shared Telegram Bot instance used for operator notifications.

The order backend never receives Telegram updates; it only sends messages,
so a single lazily created Bot (one HTTP session) is enough for the process.

Usage:
    from bot_instance import get_bot
    await get_bot().send_message(admin_id, text)
"""

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

import config

_bot_instance = None


def get_bot() -> Bot:
    global _bot_instance
    if _bot_instance is None:
        _bot_instance = Bot(
            token=config.TOKEN,
            default=DefaultBotProperties(parse_mode=ParseMode.HTML)
        )
    return _bot_instance


async def close_bot():
    """Close the Bot session; called from the application lifespan on shutdown."""
    global _bot_instance
    if _bot_instance is not None:
        await _bot_instance.session.close()
        _bot_instance = None
