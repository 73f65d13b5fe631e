"""
Request/response calls to the model server (list, show, delete)
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from ollie.config import Settings
from ollie.core.constants import (
    DELETE_ENDPOINT,
    DELETE_TIMEOUT,
    LIST_TIMEOUT,
    SHOW_ENDPOINT,
    SHOW_TIMEOUT,
    TAGS_ENDPOINT,
    USER_AGENT,
)
from ollie.core.models import ModelInfo, PullResult
from ollie.core.puller import describe_error
from ollie.exceptions import NetworkError, ServerError

logger = logging.getLogger(__name__)


class OllamaClient:
    """
    Thin async client for the one-shot model endpoints.

    Pulls are handled by ollie.core.Puller; this covers the rest of the
    model management API.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        server_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings or Settings.load()
        self.server_url = (server_url or self.settings.base_url).rstrip("/")
        self._session = session
        self._owns_session = False

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self._close_session()

    async def _ensure_session(self) -> None:
        """Create a session if one doesn't exist"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": USER_AGENT})
            self._owns_session = True

    async def _close_session(self) -> None:
        """Close the session if we own it"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def _url(self, endpoint: str) -> str:
        return f"{self.server_url}{endpoint}"

    async def list_models(self) -> list[ModelInfo]:
        """
        List models installed on the server.

        Raises:
            ServerError: On a non-success status
            NetworkError: If the server can't be reached or the body is invalid
        """
        await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=LIST_TIMEOUT)
        try:
            async with self._session.get(self._url(TAGS_ENDPOINT), timeout=timeout) as response:
                if not response.ok:
                    raise ServerError(response.status, response.reason)
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Failed to fetch models: {describe_error(e)}") from e
        except ValueError as e:
            raise NetworkError(f"Failed to parse models response: {e}") from e

        try:
            return [ModelInfo.from_dict(item) for item in data.get("models", [])]
        except (AttributeError, KeyError, TypeError) as e:
            raise NetworkError(f"Failed to parse models response: {e}") from e

    async def show_model(self, name: str) -> dict[str, Any]:
        """Get modelfile, parameters, template and license of a model"""
        await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=SHOW_TIMEOUT)
        try:
            async with self._session.post(
                self._url(SHOW_ENDPOINT),
                json={"name": name},
                timeout=timeout,
            ) as response:
                if not response.ok:
                    raise ServerError(response.status, response.reason)
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(describe_error(e)) from e
        except ValueError as e:
            raise NetworkError(f"Invalid show response: {e}") from e

    async def delete_model(self, name: str) -> PullResult:
        """
        Delete a model.

        Servers disagree on the method for /api/delete: DELETE is tried
        first and POST is used if the server answers 405.
        """
        await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=DELETE_TIMEOUT)
        body = {"name": name}
        url = self._url(DELETE_ENDPOINT)

        try:
            async with self._session.delete(url, json=body, timeout=timeout) as response:
                status, reason = response.status, response.reason

            if status == 405:
                logger.debug("DELETE not allowed on %s, retrying with POST", url)
                async with self._session.post(url, json=body, timeout=timeout) as response:
                    status, reason = response.status, response.reason
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return PullResult.fail(f"Request error: {describe_error(e)}")

        if 200 <= status < 300:
            logger.info("Deleted model %s", name)
            return PullResult.ok()
        return PullResult.fail(str(ServerError(status, reason)))
