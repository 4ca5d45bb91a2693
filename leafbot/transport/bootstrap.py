# leafbot/transport/bootstrap.py
"""
Wiring from settings: context store, per-platform processors, messenger.

    selector = create_leaf_selector(branch)
    context_store = await create_context_store()
    messenger = await build_messenger(selector, context_store)
    app = create_app(messenger)
"""
from __future__ import annotations

from leafbot.config import settings
from leafbot.core.engine.ports import ContextStore, Leaf, MessageProcessor
from leafbot.infra.context_store import InMemoryContextStore
from leafbot.infra.db_async import init_pool
from leafbot.infra.logging_config import get_logger
from leafbot.infra.pg_context_store import PostgresContextStore
from leafbot.transport.adapters import FacebookAdapter, TelegramAdapter
from leafbot.transport.facebook_sender import FacebookClient, map_facebook_response
from leafbot.transport.processor import (
    CrossPlatformMessageProcessor,
    Messenger,
    ProcessorConfig,
    create_message_processor,
    create_messenger,
)
from leafbot.transport.processor_middleware import (
    inject_context_on_receive,
    log_processing,
    save_context_on_send,
    set_typing_indicator,
)
from leafbot.transport.telegram_sender import TelegramClient, map_telegram_response

logger = get_logger(__name__)


async def create_context_store() -> ContextStore:
    if settings.context_store == "postgres":
        await init_pool()
        return PostgresContextStore()

    return InMemoryContextStore()


def _log_typing_error(error: Exception) -> None:
    logger.warning(f"Failed to set typing indicator: {error}")


async def _create_platform_processor(config: ProcessorConfig, context_store: ContextStore) -> MessageProcessor:
    return await create_message_processor(
        config,
        inject_context_on_receive(context_store),
        save_context_on_send(context_store),
        set_typing_indicator(config.client, on_set_typing_error=_log_typing_error),
        log_processing(),
    )


async def build_messenger(leaf_selector: Leaf, context_store: ContextStore) -> Messenger:
    """Messenger serving every platform enabled in settings."""
    processors: dict[str, MessageProcessor] = {}

    if settings.telegram_enabled:
        processors["telegram"] = await _create_platform_processor(ProcessorConfig(
            target_platform="telegram",
            leaf_selector=leaf_selector,
            client=TelegramClient(),
            map_request=TelegramAdapter().generalize,
            map_response=map_telegram_response,
        ), context_store)

    if settings.facebook_enabled:
        processors["facebook"] = await _create_platform_processor(ProcessorConfig(
            target_platform="facebook",
            leaf_selector=leaf_selector,
            client=FacebookClient(),
            map_request=FacebookAdapter().generalize,
            map_response=map_facebook_response,
        ), context_store)

    if not processors:
        raise RuntimeError("No platform configured: set telegram_bot_token or facebook_page_token")

    logger.info(f"Messenger platforms: {sorted(processors)}")
    return await create_messenger(leaf_selector, CrossPlatformMessageProcessor(processors))
