"""Shared plumbing for adapters that speak a provider's raw HTTP API.

Public API (the "studs"):
    HTTPAdapter: BaseAdapter with an httpx client, JSON POST and streaming POST
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from ..config import ProviderConfig
from ..exceptions import LLMResponseError, error_from_status
from ..streaming import StreamParser, iter_chunks
from ..types import ModelDescriptor, ResponseChunk
from .base import BaseAdapter

_logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    """Pull the provider's error message out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase, response.text
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"]), body
        if isinstance(error, str):
            return error, body
        if body.get("message"):
            return str(body["message"]), body
    return response.reason_phrase, body


class HTTPAdapter(BaseAdapter):
    """BaseAdapter backed by an ``httpx.AsyncClient``.

    A preconfigured client may be passed in (tests use
    ``httpx.MockTransport``); otherwise one is built from the provider
    config's base URL, timeout and headers.
    """

    default_base_url: str = ""

    def __init__(
        self,
        model: ModelDescriptor,
        config: ProviderConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(model, config)
        self._base_url = (config.base_url or self.default_base_url).rstrip("/")
        self._client = client or httpx.AsyncClient(
            timeout=config.timeout_seconds,
            headers={"Content-Type": "application/json", **self.auth_headers(), **config.headers},
        )

    def auth_headers(self) -> dict[str, str]:
        """Headers carrying credentials for this provider."""
        return {}

    def url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON payload and return the decoded JSON body.

        Raises:
            LLMError: Mapped from the HTTP status on a non-2xx response
            LLMResponseError: If the body is not a JSON object
        """
        _logger.debug("POST %s (model=%s)", path, self.model.id)
        response = await self._client.post(self.url(path), json=payload)
        if response.status_code >= 400:
            message, details = _error_message(response)
            raise error_from_status(response.status_code, message, details)
        try:
            data = response.json()
        except ValueError as e:
            raise LLMResponseError(f"Malformed response body: {e}", details=response.text) from e
        if not isinstance(data, dict):
            raise LLMResponseError("Response body is not a JSON object", details=data)
        return data

    async def stream_json(
        self, path: str, payload: dict[str, Any], parser: StreamParser
    ) -> AsyncIterator[ResponseChunk]:
        """POST a JSON payload and parse the streamed body frame by frame."""
        _logger.debug("POST %s (stream, model=%s)", path, self.model.id)
        async with self._client.stream("POST", self.url(path), json=payload) as response:
            if response.status_code >= 400:
                await response.aread()
                message, details = _error_message(response)
                raise error_from_status(response.status_code, message, details)
            async for chunk in iter_chunks(response.aiter_bytes(), parser):
                yield chunk
        if parser.discarded:
            _logger.warning("Discarded %d unparsable frames from %s", parser.discarded, path)

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["HTTPAdapter"]
