# leafbot/infra/http_client.py
"""
Shared HTTP client sessions.

Named, lazily created aiohttp.ClientSession singletons so platform senders
and the NLU client reuse TCP connections across requests.

Session profiles
~~~~~~~~~~~~~~~~
- **sender** – platform send APIs (total=25 s, connect=5 s, pool limit=20)
- **nlu**    – Wit.ai queries    (total=10 s, connect=5 s, pool limit=10)

Shutdown
~~~~~~~~
Call ``close_all_sessions()`` once during application shutdown.
"""
from __future__ import annotations

import aiohttp

from leafbot.infra.logging_config import get_logger

logger = get_logger(__name__)

_sessions: dict[str, aiohttp.ClientSession] = {}


def _get_or_create(
    name: str,
    timeout: aiohttp.ClientTimeout,
    limit: int = 10,
) -> aiohttp.ClientSession:
    """Return an existing session or create a new one."""
    session = _sessions.get(name)
    if session is None or session.closed:
        session = aiohttp.ClientSession(
            timeout=timeout,
            connector=aiohttp.TCPConnector(
                keepalive_timeout=30,
                limit=limit,
            ),
        )
        _sessions[name] = session
        logger.debug("HTTP session '%s' created (limit=%d)", name, limit)
    return session


def get_sender_session() -> aiohttp.ClientSession:
    """Session for outbound platform API calls (Telegram / Facebook)."""
    return _get_or_create(
        "sender",
        aiohttp.ClientTimeout(total=25, connect=5),
        limit=20,
    )


def get_nlu_session() -> aiohttp.ClientSession:
    """Session for NLU queries."""
    return _get_or_create(
        "nlu",
        aiohttp.ClientTimeout(total=10, connect=5),
        limit=10,
    )


async def close_all_sessions() -> None:
    """Gracefully close every managed session.  Call during app shutdown."""
    for name in list(_sessions):
        session = _sessions.pop(name, None)
        if session is not None and not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)
