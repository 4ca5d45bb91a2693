# leafbot/transport/telegram_sender.py
"""
Telegram Bot API client and response mapper.

``map_telegram_response`` turns a GenericResponse into an ordered list of
Bot API calls; ``TelegramClient.send_response`` executes one call.

Error classification (TelegramSendError.retryable):
- Token invalid (401)          → NOT retryable (needs human intervention)
- Bot blocked by user (403)    → NOT retryable
- Bad request (400)            → NOT retryable
- Rate limiting (429)          → retryable  (backoff then retry)
- Network / timeout            → retryable  (transient)
- Unknown server error         → retryable  (optimistic)

HTTP session lifecycle:
- Uses the shared sender session from leafbot.infra.http_client.
- Call close_all_sessions() during application shutdown.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

import aiohttp

from leafbot.config import settings
from leafbot.core.engine.domain import (
    Button,
    ButtonContent,
    GenericResponse,
    ImageContent,
    QuickReply,
    ResponseOutput,
    TextContent,
)
from leafbot.core.engine.utils import chunk_string
from leafbot.infra.http_client import get_sender_session
from leafbot.infra.logging_config import get_logger, mask_target_id
from leafbot.infra.metrics import inc_counter

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
MESSAGE_TEXT_CHARACTER_LIMIT = 4096


# ---------------------------------------------------------------------------
# Error type
# ---------------------------------------------------------------------------

class TelegramSendError(Exception):
    """Error calling the Telegram Bot API.

    Attributes:
        status:     HTTP status code (0 for connection-level errors).
        error_code: Telegram-specific error code from the response body.
        retryable:  Whether the caller should schedule a retry.
    """

    def __init__(
        self,
        status: int,
        error_code: int | None,
        message: str,
        *,
        retryable: bool = False,
    ):
        self.status = status
        self.error_code = error_code
        self.retryable = retryable
        super().__init__(f"Telegram API error {status} (code={error_code}): {message}")


# ---------------------------------------------------------------------------
# Response mapping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TelegramPayload:
    """One Bot API call: ``method`` (e.g. "sendMessage") and its JSON body."""
    method: str
    body: dict[str, Any] = field(default_factory=dict)


def _inline_button(button: Button) -> dict[str, Any]:
    if button.url:
        return {"text": button.text, "url": button.url}
    return {"text": button.text, "callback_data": button.payload or button.text}


def _reply_markup(buttons: tuple[Button, ...], quick_replies: tuple[QuickReply, ...]) -> Optional[dict]:
    rows = [[_inline_button(button)] for button in buttons]
    if quick_replies:
        rows.append([{"text": qr.text, "callback_data": qr.payload} for qr in quick_replies])
    return {"inline_keyboard": rows} if rows else None


def _map_output(chat_id: str, output: ResponseOutput) -> list[TelegramPayload]:
    content = output.content
    buttons: tuple[Button, ...] = ()

    if isinstance(content, TextContent):
        payloads = [
            TelegramPayload("sendMessage", {"chat_id": chat_id, "text": text})
            for text in chunk_string(content.text, MESSAGE_TEXT_CHARACTER_LIMIT)
        ]
    elif isinstance(content, ButtonContent):
        buttons = content.buttons
        payloads = [
            TelegramPayload("sendMessage", {"chat_id": chat_id, "text": text})
            for text in chunk_string(content.text, MESSAGE_TEXT_CHARACTER_LIMIT)
        ]
    elif isinstance(content, ImageContent):
        payloads = [TelegramPayload("sendPhoto", {"chat_id": chat_id, "photo": content.image_url})]
    else:
        raise ValueError(f"Unsupported content type for Telegram: {type(content).__name__}")

    # Keyboards attach to the last message of the output.
    markup = _reply_markup(buttons, output.quick_replies)
    if markup is not None:
        payloads[-1].body["reply_markup"] = markup

    return payloads


def map_telegram_response(response: GenericResponse) -> list[TelegramPayload]:
    """Ordered Bot API calls for ``response``; long texts are chunked."""
    payloads: list[TelegramPayload] = []
    for output in response.output:
        payloads.extend(_map_output(response.target_id, output))
    return payloads


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

async def _safe_response_json(resp: aiohttp.ClientResponse) -> dict | None:
    """Parse JSON from response, returning None if body is not valid JSON."""
    try:
        return await resp.json(content_type=None)
    except ValueError:
        logger.warning(f"Telegram API returned non-JSON body: status={resp.status}")
        return None


class TelegramClient:
    def __init__(
        self,
        token: str | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
    ):
        bot_token = token or settings.telegram_bot_token
        if not bot_token:
            raise ValueError("Telegram bot token is not configured")

        self._token = bot_token
        self._session = session

    def _bot_url(self, method: str) -> str:
        return f"{TELEGRAM_API_BASE}/bot{self._token}/{method}"

    async def send_response(self, payload: TelegramPayload) -> dict:
        """
        Execute one Bot API call.

        Raises:
            TelegramSendError: On API errors (check .retryable before scheduling retry)
        """
        return await self._request(payload.method, payload.body, str(payload.body.get("chat_id", "system")))

    async def set_typing_indicator(self, target_id: str, enabled: bool) -> dict | None:
        # Telegram clears the chat action by itself once a message is sent.
        if not enabled:
            return None
        return await self._request("sendChatAction", {"chat_id": target_id, "action": "typing"}, target_id)

    async def set_webhook(self, webhook_url: str, secret_token: str | None = None) -> dict:
        """Point Telegram at ``webhook_url``; ``secret_token`` is echoed in a header."""
        body: dict = {"url": webhook_url}
        if secret_token:
            body["secret_token"] = secret_token
        return await self._request("setWebhook", body, "system")

    async def _request(self, method: str, body: dict, chat_id: str) -> dict:
        try:
            session = self._session or get_sender_session()
            async with session.post(self._bot_url(method), json=body) as resp:
                data = await _safe_response_json(resp)

                if resp.status == 200 and data and data.get("ok"):
                    logger.info(f"Telegram {method} ok: to={mask_target_id(chat_id)}")
                    inc_counter("telegram_outbound_sent", method=method)
                    return data

                # --- Error path ------------------------------------------------
                error_desc = (data or {}).get("description", "Unknown error")
                error_code = (data or {}).get("error_code")

                if resp.status == 401 or error_code == 401:
                    logger.error(f"Telegram API auth error (token invalid): {error_desc}")
                    inc_counter("telegram_outbound_auth_error")
                    raise TelegramSendError(resp.status, error_code, error_desc, retryable=False)

                if resp.status in (400, 403):
                    logger.warning(f"Telegram API rejected {method}: status={resp.status}, msg={error_desc}")
                    inc_counter("telegram_outbound_rejected", status=resp.status)
                    raise TelegramSendError(resp.status, error_code, error_desc, retryable=False)

                if resp.status == 429:
                    retry_after = (data or {}).get("parameters", {}).get("retry_after", 30)
                    logger.warning(f"Telegram API rate limit, retry_after={retry_after}s")
                    inc_counter("telegram_outbound_rate_limited")
                    raise TelegramSendError(resp.status, error_code, error_desc, retryable=True)

                logger.error(f"Telegram API error: status={resp.status}, code={error_code}, msg={error_desc}")
                inc_counter("telegram_outbound_error")
                raise TelegramSendError(resp.status, error_code, error_desc, retryable=True)

        except TelegramSendError:
            raise
        except aiohttp.ClientError as exc:
            logger.error(f"Telegram API connection error: {exc}", exc_info=True)
            inc_counter("telegram_outbound_connection_error")
            raise TelegramSendError(0, None, str(exc), retryable=True) from exc
