# leafbot/transport/facebook_sender.py
"""
Facebook Messenger Send API client and response mapper.

Error classification (FacebookSendError.retryable):
- Token expired/invalid (190) → NOT retryable (needs human intervention)
- Outside messaging window     → NOT retryable (code 10 / subcode 2018278)
- Rate limiting (429, 4, 613)  → retryable  (backoff then retry)
- Network / timeout            → retryable  (transient)
- Unknown server error         → retryable  (optimistic)

HTTP session lifecycle:
- Uses the shared sender session from leafbot.infra.http_client.
- Call close_all_sessions() during application shutdown.
"""
from __future__ import annotations

from typing import Any

import aiohttp

from leafbot.config import settings
from leafbot.core.engine.domain import (
    Button,
    ButtonContent,
    GenericResponse,
    ImageContent,
    ResponseOutput,
    TextContent,
)
from leafbot.core.engine.utils import chunk_string
from leafbot.infra.http_client import get_sender_session
from leafbot.infra.logging_config import get_logger, mask_target_id
from leafbot.infra.metrics import inc_counter

logger = get_logger(__name__)

MESSAGE_TEXT_CHARACTER_LIMIT = 640


class FacebookSendError(Exception):
    """Error calling the Graph API.

    Attributes:
        status:     HTTP status code (0 for connection-level errors).
        error_code: Graph API error code from the response body.
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
        super().__init__(f"Facebook API error {status} (code={error_code}): {message}")


# ---------------------------------------------------------------------------
# Response mapping
# ---------------------------------------------------------------------------

def _button(button: Button) -> dict[str, Any]:
    if button.url:
        return {"type": "web_url", "title": button.text, "url": button.url}
    return {"type": "postback", "title": button.text, "payload": button.payload or button.text}


def _messages(content: Any) -> list[dict[str, Any]]:
    if isinstance(content, TextContent):
        return [{"text": text} for text in chunk_string(content.text, MESSAGE_TEXT_CHARACTER_LIMIT)]

    if isinstance(content, ButtonContent):
        # Only the last chunk carries the button template.
        chunks = chunk_string(content.text, MESSAGE_TEXT_CHARACTER_LIMIT)
        return [{"text": text} for text in chunks[:-1]] + [{
            "attachment": {
                "type": "template",
                "payload": {
                    "template_type": "button",
                    "text": chunks[-1],
                    "buttons": [_button(b) for b in content.buttons],
                },
            },
        }]

    if isinstance(content, ImageContent):
        return [{
            "attachment": {
                "type": "image",
                "payload": {"url": content.image_url, "is_reusable": True},
            },
        }]

    raise ValueError(f"Unsupported content type for Facebook: {type(content).__name__}")


def _map_output(target_id: str, output: ResponseOutput) -> list[dict[str, Any]]:
    quick_replies = [
        {"content_type": "text", "title": qr.text, "payload": qr.payload}
        for qr in output.quick_replies
    ]

    payloads = []
    for message in _messages(output.content):
        if quick_replies:
            message = {**message, "quick_replies": quick_replies}
        payloads.append({
            "messaging_type": "RESPONSE",
            "recipient": {"id": target_id},
            "message": message,
        })
    return payloads


def map_facebook_response(response: GenericResponse) -> list[dict[str, Any]]:
    """Ordered Send API payloads for ``response``; long texts are chunked."""
    payloads: list[dict[str, Any]] = []
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
        logger.warning(f"Facebook API returned non-JSON body: status={resp.status}")
        return None


class FacebookClient:
    def __init__(
        self,
        page_token: str | None = None,
        *,
        graph_api_version: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        token = page_token or settings.facebook_page_token
        if not token:
            raise ValueError("Facebook page token is not configured")

        self._token = token
        self._version = graph_api_version or settings.facebook_graph_api_version
        self._session = session

    def _graph_url(self, path: str) -> str:
        return f"https://graph.facebook.com/{self._version}/{path}"

    def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

    def _get_session(self) -> aiohttp.ClientSession:
        return self._session or get_sender_session()

    async def send_response(self, payload: dict[str, Any]) -> dict:
        """
        Post one Send API payload.

        Raises:
            FacebookSendError: On API errors (check .retryable before scheduling retry)
        """
        return await self._post("me/messages", payload, payload.get("recipient", {}).get("id", ""))

    async def set_typing_indicator(self, target_id: str, enabled: bool) -> dict:
        return await self._post("me/messages", {
            "recipient": {"id": target_id},
            "sender_action": "typing_on" if enabled else "typing_off",
        }, target_id)

    async def get_user(self, target_id: str) -> dict:
        """Profile of the user behind a page-scoped id."""
        try:
            async with self._get_session().get(self._graph_url(target_id), headers=self._auth_headers()) as resp:
                data = await _safe_response_json(resp)
                if resp.status != 200 or not data:
                    error = (data or {}).get("error", {})
                    raise FacebookSendError(
                        resp.status, error.get("code"), error.get("message", f"Unable to find user {target_id}"),
                        retryable=resp.status >= 500,
                    )
                return data
        except aiohttp.ClientError as exc:
            logger.error(f"Facebook API connection error: {exc}", exc_info=True)
            raise FacebookSendError(0, None, str(exc), retryable=True) from exc

    async def _post(self, path: str, payload: dict, target_id: str) -> dict:
        try:
            async with self._get_session().post(
                self._graph_url(path),
                json=payload,
                headers=self._auth_headers(),
            ) as resp:
                body = await _safe_response_json(resp)

                if resp.status == 200 and body is not None and "error" not in body:
                    logger.info(f"Facebook message sent: to={mask_target_id(target_id)}")
                    inc_counter("facebook_outbound_sent")
                    return body

                # --- Error path ------------------------------------------------
                error = (body or {}).get("error", {})
                error_code = error.get("code")
                error_subcode = error.get("error_subcode")
                error_msg = error.get("message", "Unknown error")

                if resp.status == 401 or error_code == 190:
                    logger.error(f"Facebook API auth error: status={resp.status}, code={error_code}")
                    inc_counter("facebook_outbound_auth_error")
                    raise FacebookSendError(resp.status, error_code, error_msg, retryable=False)

                if resp.status == 429 or error_code in (4, 613):
                    logger.warning(f"Facebook API rate limit: status={resp.status}, code={error_code}")
                    inc_counter("facebook_outbound_rate_limited")
                    raise FacebookSendError(resp.status, error_code, error_msg, retryable=True)

                if error_code == 10 or error_subcode == 2018278:
                    logger.warning(f"Facebook API: outside messaging window: to={mask_target_id(target_id)}")
                    inc_counter("facebook_outbound_window_closed")
                    raise FacebookSendError(resp.status, error_code, error_msg, retryable=False)

                if 400 <= resp.status < 500:
                    logger.warning(f"Facebook API bad request: code={error_code}, msg={error_msg}")
                    inc_counter("facebook_outbound_bad_request")
                    raise FacebookSendError(resp.status, error_code, error_msg, retryable=False)

                logger.error(f"Facebook API error: status={resp.status}, code={error_code}, msg={error_msg}")
                inc_counter("facebook_outbound_error")
                raise FacebookSendError(resp.status, error_code, error_msg, retryable=True)

        except FacebookSendError:
            raise
        except aiohttp.ClientError as exc:
            logger.error(f"Facebook API connection error: {exc}", exc_info=True)
            inc_counter("facebook_outbound_connection_error")
            raise FacebookSendError(0, None, str(exc), retryable=True) from exc
