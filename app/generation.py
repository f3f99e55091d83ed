"""Streaming completion requests against the OpenAI HTTP API.

Provides:
- UpstreamStream: an open streaming response, exposing its SSE data payloads.
- OpenAICompletionInvoker: issues one streaming POST for a prompt and model.

The request is sent with httpx in streaming mode: the status line and headers are
read before returning, the body is not. Whoever holds the UpstreamStream owns the
connection and must close it.
"""
import logging
from typing import AsyncIterator, Optional, Protocol

import httpx

from app.errors import UpstreamStreamError
from app.model_spec import CompletionParams, ModelSpec
from app.stream import iter_sse_data

logger = logging.getLogger(__name__)


class UpstreamStream(Protocol):
    def events(self) -> AsyncIterator[str]: ...

    async def aclose(self) -> None: ...


class CompletionInvoker(Protocol):
    async def open_stream(self, prompt: str, model_spec: ModelSpec, api_key: Optional[str] = None) -> UpstreamStream: ...


class HttpxUpstreamStream:
    """Open httpx streaming response yielding server-sent event payloads."""

    def __init__(self, response: httpx.Response):
        self._response = response

    async def events(self) -> AsyncIterator[str]:
        try:
            async for data in iter_sse_data(self._response.aiter_lines()):
                yield data
        except httpx.HTTPError as e:
            raise UpstreamStreamError(f"Completion stream interrupted: {e}", cause=e) from e

    async def aclose(self) -> None:
        await self._response.aclose()


class OpenAICompletionInvoker:
    """Sends streaming completion requests for chat- and completion-style models."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_key: str,
        params: Optional[CompletionParams] = None,
    ):
        self._client = client
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.params = params or CompletionParams()

    async def open_stream(self, prompt: str, model_spec: ModelSpec, api_key: Optional[str] = None) -> HttpxUpstreamStream:
        """Start generation and return the open event stream.

        Args:
            prompt: Fully assembled prompt.
            model_spec: Decides the endpoint and payload shape.
            api_key: Optional project key overriding the service key.

        Returns:
            HttpxUpstreamStream: Stream positioned before the first event.

        Raises:
            UpstreamStreamError: the request failed or the endpoint answered non-2xx.
        """
        payload = model_spec.build_payload(prompt, self.params)
        request = self._client.build_request(
            "POST",
            f"{self.base_url}{model_spec.endpoint}",
            json=payload,
            headers={"Authorization": f"Bearer {api_key or self._api_key}"},
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error("Completion request to %s failed: %s", model_spec.endpoint, e)
            raise UpstreamStreamError(f"Completion request failed: {e}", cause=e) from e

        if response.status_code >= 400:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            logger.error("Completion endpoint returned %s: %s", response.status_code, body[:200])
            raise UpstreamStreamError(f"Completion request failed with status {response.status_code}")
        return HttpxUpstreamStream(response)
