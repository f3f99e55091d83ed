"""Embedding and moderation clients wrapping OpenAI's async API.

Provides:
- OpenAIEmbedder: embeds a single query with the configured embedding model.
- OpenAIModerator: asks the moderation endpoint whether a query is flagged.
- embed_with_backoff: bounded exponential backoff around any embedder.

Both clients accept a per-call API key so projects can bill their own OpenAI account.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol

from openai import AsyncOpenAI

from app.errors import EmbeddingFailed

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    async def embed(self, text: str, api_key: Optional[str] = None) -> List[float]: ...


class Moderator(Protocol):
    async def moderate(self, text: str, api_key: Optional[str] = None) -> bool: ...


def _client_for(client: AsyncOpenAI, api_key: Optional[str]) -> AsyncOpenAI:
    """Return `client`, or a copy of it authenticated with `api_key` when one is given."""
    if api_key:
        return client.with_options(api_key=api_key)
    return client


class OpenAIEmbedder:
    """Single-query embedder backed by the OpenAI embeddings endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str):
        self._client = client
        self.model = model

    async def embed(self, text: str, api_key: Optional[str] = None) -> List[float]:
        """Embed one query string.

        Args:
            text: Sanitized query text.
            api_key: Optional project key overriding the client's default key.

        Returns:
            List[float]: The embedding vector; empty if the response carried none.
        """
        resp = await _client_for(self._client, api_key).embeddings.create(model=self.model, input=text)
        if not resp.data:
            return []
        return list(resp.data[0].embedding)


class OpenAIModerator:
    """Content-policy gate backed by the OpenAI moderation endpoint."""

    def __init__(self, client: AsyncOpenAI):
        self._client = client

    async def moderate(self, text: str, api_key: Optional[str] = None) -> bool:
        """Return True when the moderation endpoint flags `text`."""
        resp = await _client_for(self._client, api_key).moderations.create(input=text)
        return bool(resp.results and resp.results[0].flagged)


async def embed_with_backoff(
    embed: Callable[[], Awaitable[List[float]]],
    *,
    starting_delay: float = 10.0,
    max_attempts: int = 10,
    multiplier: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> List[float]:
    """Call `embed` until it succeeds, backing off exponentially between attempts.

    The first attempt runs immediately; the wait before attempt n+1 is
    starting_delay * multiplier ** (n - 1). Every exception is retried, since the
    dominant failure is upstream throttling.

    Args:
        embed: Zero-argument coroutine factory performing one embedding attempt.
        starting_delay: Seconds to wait after the first failure.
        max_attempts: Total attempts, including the first.
        multiplier: Growth factor of the delay between attempts.
        sleep: Awaitable sleep; injectable for tests.

    Returns:
        List[float]: The vector from the first successful attempt.

    Raises:
        EmbeddingFailed: all attempts raised; the last error is the cause.
    """
    delay = starting_delay
    last_error: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await embed()
        except Exception as e:
            last_error = e
            if attempt == max_attempts:
                break
            logger.warning(
                "Embedding attempt %d/%d failed: %s; backing off %.1fs",
                attempt,
                max_attempts,
                type(e).__name__,
                delay,
            )
            await sleep(delay)
            delay *= multiplier
    raise EmbeddingFailed(
        f"Error creating embedding after {max_attempts} attempts: {last_error}",
        cause=last_error,
    ) from last_error
