#!/usr/bin/env python3
"""
Echo Bot Example

Builds a small leaf tree (greeting, echoing counter), decorates it with
catch-error / catch-all (and Wit when a token is configured) and either
replays a few fake Telegram updates offline or serves the webhooks.

Run from project root:
    python examples/echo_bot.py demo
    TELEGRAM_BOT_TOKEN=... python examples/echo_bot.py serve
"""
import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from leafbot.config import settings  # noqa: E402
from leafbot.core.engine.domain import NextResult, text_response  # noqa: E402
from leafbot.core.engine.leaf import BaseLeaf, create_default_error_leaf, create_leaf  # noqa: E402
from leafbot.core.engine.selector import create_leaf_selector  # noqa: E402
from leafbot.core.engine.transform import create_transform_chain  # noqa: E402
from leafbot.core.transformers import catch_all, catch_error, retry_with_wit  # noqa: E402
from leafbot.infra.context_store import InMemoryContextStore  # noqa: E402
from leafbot.infra.wit_client import create_wit_client  # noqa: E402
from leafbot.transport.adapters import TelegramAdapter  # noqa: E402
from leafbot.transport.processor import ProcessorConfig, create_message_processor, create_messenger  # noqa: E402
from leafbot.transport.processor_middleware import (  # noqa: E402
    inject_context_on_receive,
    save_context_on_send,
)
from leafbot.transport.telegram_sender import map_telegram_response  # noqa: E402


# ============================================================================
# LEAVES
# ============================================================================

async def greeting_leaf():
    async def factory(observer):
        async def on_request(request):
            if request.input.type != "command" or request.input.command != "start":
                return NextResult.FALLTHROUGH
            return await observer.next(text_response(
                request.target_id, request.target_platform, "Hi! Send me anything and I'll echo it.",
            ))

        return BaseLeaf(next=on_request)

    return await create_leaf(factory)


async def counter_leaf():
    """Counts messages per target through additional_context."""

    async def factory(observer):
        async def on_request(request):
            if request.input.type != "text":
                return NextResult.FALLTHROUGH

            count = request.current_context.get("count", 0) + 1
            return await observer.next(text_response(
                request.target_id,
                request.target_platform,
                f"You said: {request.input.text} (message #{count})",
                additional_context={"count": count},
            ))

        return BaseLeaf(next=on_request)

    return await create_leaf(factory)


async def build_root_leaf():
    error_leaf = await create_default_error_leaf(lambda error: "Something went wrong, please try again.")

    chain = create_transform_chain()
    if settings.wit_enabled:
        chain.pipe(retry_with_wit(create_wit_client()))
    chain.pipe(catch_error(error_leaf))
    chain.pipe(catch_all(lambda request: print(f"  (unhandled {request.input.type} input)")))

    selector = create_leaf_selector({
        "onboarding": {"greeting": await greeting_leaf()},
        "chat": {"counter": await counter_leaf()},
    })
    return await chain.transform(selector)


# ============================================================================
# OFFLINE DEMO
# ============================================================================

class PrintingClient:
    """Stands in for TelegramClient: prints every Bot API call."""

    async def send_response(self, payload):
        print(f"Bot:  {payload.body.get('text')}")
        return {"ok": True}

    async def set_typing_indicator(self, target_id, enabled):
        return None


def _update(update_id, text):
    return {
        "update_id": update_id,
        "message": {
            "message_id": update_id,
            "from": {"id": 1001, "first_name": "Demo"},
            "chat": {"id": 1001, "type": "private"},
            "text": text,
        },
    }


async def demo():
    print("\n" + "=" * 60)
    print("ECHO BOT DEMO")
    print("=" * 60 + "\n")

    root = await build_root_leaf()
    store = InMemoryContextStore()
    processor = await create_message_processor(
        ProcessorConfig(
            target_platform="telegram",
            leaf_selector=root,
            client=PrintingClient(),
            map_request=TelegramAdapter(bot_username="demo_bot").generalize,
            map_response=map_telegram_response,
        ),
        inject_context_on_receive(store),
        save_context_on_send(store),
    )
    messenger = await create_messenger(root, processor)

    for update_id, text in enumerate(["/start", "hello", "still there?"], start=1):
        print(f"User: {text}")
        await messenger.process_raw_request(_update(update_id, text))
        print()

    print(f"Stored context: {await store.get_context('1001', 'telegram')}")
    await messenger.close()


# ============================================================================
# SERVER
# ============================================================================

async def serve():
    import uvicorn

    from leafbot.transport.bootstrap import build_messenger, create_context_store
    from leafbot.transport.http_app import create_app

    root = await build_root_leaf()
    messenger = await build_messenger(root, await create_context_store())

    server = uvicorn.Server(uvicorn.Config(
        create_app(messenger),
        host="0.0.0.0",
        port=8099,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,  # Disable in prod (use middleware logging)
        server_header=False,
        date_header=False,
    ))
    await server.serve()


def main():
    command = sys.argv[1] if len(sys.argv) > 1 else "demo"
    if command == "serve":
        asyncio.run(serve())
    else:
        asyncio.run(demo())


if __name__ == "__main__":
    main()
