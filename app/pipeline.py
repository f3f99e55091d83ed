"""Retrieval-augmented completion pipeline.

Runs one validated Query through admission, moderation, embedding (with backoff),
retrieval, context budgeting and prompt assembly, then opens the upstream completion
stream. Every collaborator comes in through `Services`, built once at startup and
replaced by fakes in tests.

Failures before the stream opens raise a CompletionError carrying the rate-limit
headers. Failures after that error the body iterator of the returned CompletionStream.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict

from app.config import Settings
from app.context import build_context
from app.embedding import Embedder, Moderator, embed_with_backoff
from app.errors import (
    CompletionError,
    ContentRejected,
    EmbeddingFailed,
    ModerationFailed,
    NoRelevantContext,
    RateLimited,
    UpstreamStreamError,
)
from app.generation import CompletionInvoker, UpstreamStream
from app.intake import Query
from app.obs import Trace, span
from app.prompt import build_prompt
from app.rate_limit import RateLimiter
from app.retrieval import KeyStore, Retriever
from app.stream import StreamState, StreamTransformer
from app.usage import count_tokens

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Collaborators of the pipeline, passed explicitly instead of module globals."""
    settings: Settings
    rate_limiter: RateLimiter
    key_store: KeyStore
    moderator: Moderator
    embedder: Embedder
    retriever: Retriever
    invoker: CompletionInvoker
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep


class CompletionStream:
    """An answer being generated: response headers plus the client byte stream."""

    def __init__(
        self,
        query: Query,
        upstream: UpstreamStream,
        transformer: StreamTransformer,
        separator: str,
        headers: Dict[str, str],
        trace: Trace,
    ):
        self.query = query
        self.headers = headers
        self.transformer = transformer
        self._upstream = upstream
        self._separator = separator
        self._trace = trace
        self._closed = False
        self._trace_ended = False

    async def body(self) -> AsyncIterator[bytes]:
        """Encoded frames, pulled one at a time by the client transport.

        Closing the iterator (e.g. on client disconnect) closes the upstream response.
        """
        try:
            async for frame in self.transformer:
                yield frame.encode(self._separator)
        except UpstreamStreamError as e:
            self._end_trace({"error": e.error_code, "chunks": self.transformer.forwarded})
            raise
        finally:
            await self.aclose()
        self._record_usage()

    async def aclose(self) -> None:
        """Close the upstream response; safe to call more than once.

        Also the response's background task, since a body that was never started
        does not run its own cleanup.
        """
        if self._closed:
            return
        self._closed = True
        await self._upstream.aclose()
        if self.transformer.state not in (StreamState.DONE, StreamState.ERRORED):
            logger.info("Client left before the answer for project %s finished", self.query.project_id)
            self._end_trace({"error": "CLIENT_DISCONNECTED", "chunks": self.transformer.forwarded})

    def _end_trace(self, output: Dict[str, Any]) -> None:
        if not self._trace_ended:
            self._trace_ended = True
            self._trace.end(output=output)

    def _record_usage(self) -> None:
        transcript = self.transformer.transcript
        model = self.query.model_spec.id
        try:
            tokens = count_tokens(transcript, model)
        except Exception as e:
            logger.warning("Token count failed for project %s: %s", self.query.project_id, e)
            self._end_trace({"chunks": self.transformer.forwarded})
            return
        logger.info("Completion for project %s used ~%d tokens (%s)", self.query.project_id, tokens, model)
        self._trace.generation(
            "completion",
            prompt=self.query.sanitized_text,
            output=transcript,
            model=model,
            usage={"total": tokens},
            metadata={"references": list(self.transformer.references)},
        )
        self._end_trace({"tokens": tokens, "chunks": self.transformer.forwarded})


async def run_completion(query: Query, services: Services) -> CompletionStream:
    """Run the pipeline for `query` up to an open completion stream.

    Args:
        query: Validated question.
        services: Pipeline collaborators.

    Returns:
        CompletionStream: Ready to be streamed to the client.

    Raises:
        CompletionError: any pre-stream failure; its headers include the rate-limit
            limit/remaining values once admission has been checked.
    """
    trace = Trace(
        "completions",
        input={"prompt": query.sanitized_text},
        metadata={"project_id": query.project_id, "model": query.model_spec.id},
    )
    with span("rate_limit", {"project_id": query.project_id}):
        outcome = await services.rate_limiter.check(query.project_id)
    headers = outcome.headers()
    trace.event("rate_limit", {"allowed": outcome.allowed, "remaining": outcome.remaining})
    if not outcome.allowed:
        logger.error("Rate limit exceeded for project %s", query.project_id)
        trace.end(output={"error": RateLimited.error_code})
        raise RateLimited(outcome.retry_after, headers=headers)

    try:
        return await _answer(query, services, headers, trace)
    except CompletionError as e:
        e.headers = {**headers, **e.headers}
        trace.end(output={"error": e.error_code})
        raise


async def _answer(query: Query, services: Services, headers: Dict[str, str], trace: Trace) -> CompletionStream:
    cfg = services.settings
    project_id = query.project_id
    api_key = await services.key_store.get_openai_key(project_id)

    with span("moderate"):
        try:
            flagged = await services.moderator.moderate(query.sanitized_text, api_key=api_key)
        except Exception as e:
            logger.error("Moderation failed for project %s: %s", project_id, e)
            raise ModerationFailed(f"Error moderating prompt: {e}", cause=e) from e
    trace.event("moderation", {"flagged": flagged})
    if flagged:
        logger.warning("Flagged prompt rejected for project %s", project_id)
        raise ContentRejected()

    with span("embed"):
        try:
            vector = await embed_with_backoff(
                lambda: services.embedder.embed(query.sanitized_text, api_key=api_key),
                starting_delay=cfg.EMBEDDING_BACKOFF_STARTING_DELAY,
                max_attempts=cfg.EMBEDDING_BACKOFF_ATTEMPTS,
                multiplier=cfg.EMBEDDING_BACKOFF_MULTIPLIER,
                sleep=services.sleep,
            )
        except EmbeddingFailed as e:
            logger.error("Error creating embedding for prompt %r in project %s: %s", query.raw_prompt, project_id, e.cause)
            raise
    if not vector:
        raise EmbeddingFailed(f"Error creating embedding for prompt '{query.raw_prompt}'")

    with span("retrieve", {"project_id": project_id}):
        sections = await services.retriever.retrieve(
            project_id,
            vector,
            threshold=cfg.MATCH_THRESHOLD,
            limit=cfg.MATCH_COUNT,
            min_content_length=cfg.MIN_CONTENT_LENGTH,
        )
    trace.event("retrieval_result", {"num_sections": len(sections)})
    if not sections:
        logger.error("No relevant sections found for project %s", project_id)
        raise NoRelevantContext()

    context = build_context(sections, cfg.CONTEXT_TOKENS_CUTOFF)
    trace.event("context", {"used_tokens": context.used_tokens, "references": list(context.references)})
    if not context.text:
        # Top match alone exceeds the cutoff; generation proceeds without context.
        logger.warning(
            "Top section for project %s exceeds the %d token cutoff, context is empty",
            project_id,
            cfg.CONTEXT_TOKENS_CUTOFF,
        )

    prompt = build_prompt(context, query.sanitized_text, query.i_dont_know_text)
    with span("completion_request", {"model": query.model_spec.id}):
        upstream = await services.invoker.open_stream(prompt, query.model_spec, api_key=api_key)

    transformer = StreamTransformer(upstream.events(), context.references, query.model_spec, prompt)
    return CompletionStream(query, upstream, transformer, cfg.STREAM_SEPARATOR, headers, trace)
