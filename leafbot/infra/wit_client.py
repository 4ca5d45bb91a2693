# leafbot/infra/wit_client.py
"""
Wit.ai NLU client.

Only ``GET /message`` is used: the retry-with-Wit transformer sends the raw
text of unmatched messages and re-dispatches the parsed intents, entities
and traits.
"""
from __future__ import annotations

import aiohttp
from pydantic import ValidationError

from leafbot.config import settings
from leafbot.core.engine.domain import WitResponse
from leafbot.infra.http_client import get_nlu_session
from leafbot.infra.logging_config import get_logger
from leafbot.infra.metrics import inc_counter

logger = get_logger(__name__)


class WitClientError(Exception):
    """Error querying the Wit HTTP API.

    Attributes:
        status: HTTP status code (0 for connection-level errors).
    """

    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(f"Wit API error {status}: {message}")


class WitClient:
    def __init__(
        self,
        authorization_token: str | None = None,
        *,
        api_base: str | None = None,
        api_version: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        token = authorization_token or settings.wit_authorization_token
        if not token:
            raise ValueError("Wit authorization token is not configured")

        self._token = token
        self._api_base = (api_base or settings.wit_api_base).rstrip("/")
        self._api_version = api_version or settings.wit_api_version
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        return self._session or get_nlu_session()

    async def validate(self, text: str) -> WitResponse:
        """
        Run ``text`` through Wit.

        Raises:
            WitClientError: On non-200 responses, connection errors or bodies
                that do not look like a Wit response.
        """
        url = f"{self._api_base}/message"
        params = {"q": text, "v": self._api_version}
        headers = {"Authorization": f"Bearer {self._token}"}

        try:
            async with self._get_session().get(url, params=params, headers=headers) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    logger.warning(f"Wit API error: status={resp.status}, body={body[:200]}")
                    inc_counter("wit_request_error", status=resp.status)
                    raise WitClientError(resp.status, body[:200])

                data = await resp.json()

        except WitClientError:
            raise
        except aiohttp.ClientError as exc:
            logger.error(f"Wit API connection error: {exc}", exc_info=True)
            inc_counter("wit_request_error", status=0)
            raise WitClientError(0, str(exc)) from exc

        try:
            return WitResponse.model_validate(data)
        except ValidationError as exc:
            raise WitClientError(200, f"unexpected response shape: {exc}") from exc


def create_wit_client() -> WitClient:
    """Wit client configured from settings."""
    return WitClient()
