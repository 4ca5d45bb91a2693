# leafbot/transport/adapters.py
"""
Adapters converting raw platform webhook payloads into generic requests.
These are pure converters - they don't contain conversation logic.
"""
from __future__ import annotations

import re
from typing import Any, Mapping, Optional, Protocol

from leafbot.config import settings
from leafbot.core.engine.domain import (
    CommandInput,
    GenericRequest,
    ImageInput,
    LocationInput,
    PlaceboInput,
    PostbackInput,
    RequestInput,
    TextInput,
)
from leafbot.core.engine.errors import InvalidRequestError, UnsupportedPlatformError
from leafbot.infra.logging_config import get_logger, mask_target_id

logger = get_logger(__name__)


def get_request_platform(raw_request: Any) -> str:
    """Detect which platform sent ``raw_request``."""
    if isinstance(raw_request, Mapping):
        if "object" in raw_request and "entry" in raw_request:
            return "facebook"
        if "update_id" in raw_request:
            return "telegram"
    raise UnsupportedPlatformError("Could not detect platform for raw request")


class RequestAdapter(Protocol):
    """Protocol for adapters that convert raw payloads to generic requests"""

    def generalize(self, raw_request: Mapping[str, Any]) -> list[GenericRequest]:
        ...


def _message_request(target_id: Any, platform: str, input: RequestInput, raw_request: Any) -> GenericRequest:
    return GenericRequest(
        target_id=str(target_id),
        target_platform=platform,
        input=input,
        trigger_type="message",
        raw_request=raw_request,
    )


# ============================================================================
# TELEGRAM
# ============================================================================

def extract_command(text: str, bot_username: Optional[str] = None) -> tuple[str, str]:
    """
    Split a bot command into (command, argument text).

    "/start 123" -> ("start", "123"); in groups the bot is pinged, so
    "/start@mybot 123" -> ("start", "123") when ``bot_username`` is "mybot".
    Text without a command gives ("", text).
    """
    ping = f"@{bot_username}" if bot_username else None

    if ping and ping in text:
        match = re.match(rf"^/(\w*)\s*{re.escape(ping)}\s*(.*)$", text, re.IGNORECASE | re.DOTALL)
    else:
        match = re.match(r"^/(\w*)\s*(.*)$", text, re.DOTALL)

    if match is None:
        return "", text.strip()
    return match.group(1).strip(), match.group(2).strip()


class TelegramAdapter:
    """
    Adapter for Telegram Bot API updates.

    Telegram sends one update per webhook call:
    - message: text (commands included), location, photo, join/leave events
    - callback_query: inline keyboard presses, mapped to postbacks

    Group messages target the chat, private messages and callbacks target
    the user.
    """

    platform = "telegram"

    def __init__(self, bot_username: Optional[str] = None):
        self.bot_username = bot_username if bot_username is not None else settings.telegram_bot_username

    def _message_input(self, message: Mapping[str, Any]) -> Optional[RequestInput]:
        if "text" in message:
            command, text = extract_command(message["text"], self.bot_username)
            if command:
                return CommandInput(command=command, text=text or None)
            return TextInput(text=text)

        if "location" in message:
            location = message["location"]
            return LocationInput(latitude=location["latitude"], longitude=location["longitude"])

        if "photo" in message and message["photo"]:
            # Sizes are ascending; the last one is the original upload.
            return ImageInput(image_url=message["photo"][-1]["file_id"])

        if "new_chat_members" in message or "left_chat_member" in message:
            return PlaceboInput()

        return None

    def generalize(self, raw_request: Mapping[str, Any]) -> list[GenericRequest]:
        if "callback_query" in raw_request:
            callback = raw_request["callback_query"]
            return [_message_request(
                callback["from"]["id"],
                self.platform,
                PostbackInput(payload=callback.get("data", "")),
                raw_request,
            )]

        message = raw_request.get("message") or raw_request.get("edited_message")
        if message is None:
            logger.warning(f"Telegram update without message: update_id={raw_request.get('update_id')}")
            return []

        input = self._message_input(message)
        if input is None:
            logger.warning(f"Unsupported Telegram message: update_id={raw_request.get('update_id')}")
            return []

        chat = message.get("chat")
        target_id = chat["id"] if chat else message["from"]["id"]

        logger.info(
            f"Telegram message: chat={mask_target_id(str(target_id))}, "
            f"update_id={raw_request.get('update_id')}, input={input.type}"
        )

        return [_message_request(target_id, self.platform, input, raw_request)]


# ============================================================================
# FACEBOOK
# ============================================================================

class FacebookAdapter:
    """
    Adapter for Facebook Messenger webhooks.

    Facebook batches events: ``entry[].messaging[]``. Requests are grouped
    by sender, keeping arrival order within each sender. Delivery and read
    receipts produce no requests.
    """

    platform = "facebook"

    def _attachment_input(self, attachment: Mapping[str, Any]) -> Optional[RequestInput]:
        payload = attachment.get("payload") or {}

        if attachment.get("type") == "image":
            if "sticker_id" in payload:
                return PlaceboInput()
            return ImageInput(image_url=payload["url"])

        if attachment.get("type") == "location":
            coordinates = payload["coordinates"]
            return LocationInput(latitude=coordinates["lat"], longitude=coordinates["long"])

        return None

    def _messaging_inputs(self, messaging: Mapping[str, Any]) -> list[RequestInput]:
        if "postback" in messaging:
            return [PostbackInput(payload=messaging["postback"]["payload"])]

        if "message" in messaging:
            message = messaging["message"]

            if "quick_reply" in message:
                return [PostbackInput(payload=message["quick_reply"]["payload"])]

            if "text" in message:
                return [TextInput(text=message["text"])]

            if "attachments" in message:
                inputs = [self._attachment_input(a) for a in message["attachments"]]
                return [i for i in inputs if i is not None]

        return []

    def generalize(self, raw_request: Mapping[str, Any]) -> list[GenericRequest]:
        entries = raw_request.get("entry")
        if not isinstance(entries, list):
            raise InvalidRequestError("Facebook payload has no entry list")

        grouped: dict[str, list[Mapping[str, Any]]] = {}
        for entry in entries:
            for messaging in entry.get("messaging") or []:
                grouped.setdefault(str(messaging["sender"]["id"]), []).append(messaging)

        requests: list[GenericRequest] = []
        for target_id, messagings in grouped.items():
            for messaging in messagings:
                for input in self._messaging_inputs(messaging):
                    requests.append(_message_request(target_id, self.platform, input, raw_request))

        logger.info(f"Facebook webhook: senders={len(grouped)}, requests={len(requests)}")
        return requests
