# leafbot/transport/webhook.py
"""
Platform webhook handlers.

Handles:
- POST /webhooks/telegram - inbound Updates (secret header check)
- GET  /webhooks/facebook - verification handshake (hub.verify_token + hub.challenge)
- POST /webhooks/facebook - inbound messaging events (optional signature check)

Both POST handlers feed the parsed payload to the messenger and answer 200
so platforms don't retry; malformed JSON is acknowledged as well.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from leafbot.config import settings
from leafbot.infra.logging_config import get_logger, LogContext
from leafbot.infra.metrics import inc_counter
from leafbot.transport.processor import Messenger

logger = get_logger(__name__)


def _get_messenger(request: Request) -> Messenger:
    return request.app.state.messenger


async def _parse_json(request: Request, platform: str) -> Any:
    try:
        return await request.json()
    except ValueError:
        logger.warning(f"{platform} webhook: invalid JSON payload, returning 200 to suppress retries")
        inc_counter("webhook_malformed_payload", platform=platform)
        return None


# -------------------------------------------------------------------------
# Telegram
# -------------------------------------------------------------------------

def _verify_telegram_secret(request: Request) -> bool:
    """
    Verify X-Telegram-Bot-Api-Secret-Token header.
    Returns True if valid or if secret token verification is disabled.
    """
    if not settings.telegram_webhook_secret:
        return True

    header_token = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
    if not header_token:
        logger.warning("Telegram webhook: missing X-Telegram-Bot-Api-Secret-Token header")
        return False

    return hmac.compare_digest(header_token, settings.telegram_webhook_secret)


async def telegram_webhook_handler(request: Request) -> JSONResponse:
    if not _verify_telegram_secret(request):
        logger.error("Telegram webhook: secret token verification failed")
        inc_counter("webhook_validation_failed", platform="telegram")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    payload = await _parse_json(request, "telegram")
    if payload is None:
        return JSONResponse({"ok": True}, status_code=200)

    LogContext(logger, target_platform="telegram", request_id=getattr(request.state, "request_id", None)).debug(
        "Telegram update received"
    )
    await _get_messenger(request).process_raw_request(payload)
    inc_counter("webhook_processed", platform="telegram")
    return JSONResponse({"ok": True}, status_code=200)


# -------------------------------------------------------------------------
# Facebook
# -------------------------------------------------------------------------

async def facebook_webhook_verify(request: Request) -> PlainTextResponse:
    """
    Facebook sends hub.mode=subscribe, hub.verify_token and hub.challenge;
    echo the challenge as plain text on success, 403 otherwise.
    """
    mode = request.query_params.get("hub.mode")
    token = request.query_params.get("hub.verify_token")
    challenge = request.query_params.get("hub.challenge", "")
    expected_token = settings.facebook_verify_token

    if mode == "subscribe" and expected_token and token == expected_token:
        logger.info("Facebook webhook verification successful")
        inc_counter("facebook_webhook_verified")
        return PlainTextResponse(content=challenge, status_code=200)

    logger.warning(f"Facebook webhook verification failed: mode={mode}, token_match={token == expected_token}")
    inc_counter("webhook_validation_failed", platform="facebook")
    raise HTTPException(status_code=403, detail="Verification failed")


def _verify_facebook_signature(request: Request, body: bytes) -> bool:
    """
    Verify X-Hub-Signature-256 ("sha256=<hex>") against the raw body.
    Returns True if valid or if no app secret is configured.
    """
    secret = settings.facebook_app_secret
    if not secret:
        return True

    signature_header = request.headers.get("X-Hub-Signature-256", "")
    if not signature_header.startswith("sha256="):
        logger.warning("Facebook webhook: missing or malformed X-Hub-Signature-256 header")
        return False

    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature_header[len("sha256="):], expected)


async def facebook_webhook_handler(request: Request) -> JSONResponse:
    body = await request.body()
    if not _verify_facebook_signature(request, body):
        logger.error("Facebook webhook: signature verification failed")
        inc_counter("webhook_validation_failed", platform="facebook")
        raise HTTPException(status_code=403, detail="Invalid signature")

    payload = await _parse_json(request, "facebook")
    if payload is None:
        return JSONResponse({"status": "ok"}, status_code=200)

    await _get_messenger(request).process_raw_request(payload)
    inc_counter("webhook_processed", platform="facebook")
    return JSONResponse({"status": "ok"}, status_code=200)
