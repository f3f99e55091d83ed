"""Transformation of an upstream completion event stream into the client byte stream.

Provides:
- ReferencesFrame / ContentFrame: the two frame kinds sent to the client.
- iter_sse_data: server-sent-event parsing of decoded lines into `data` payloads.
- StreamTransformer: pull-based state machine turning upstream events into frames.

Wire format: the first frame is JSON(references) followed by the stream separator;
every later frame is raw generated text. The client splits on the separator.
"""
import json
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Deque, List, Optional, Sequence, Union

from app.errors import UpstreamStreamError
from app.model_spec import ModelSpec

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
# Leading chunks inspected for newline-only artifacts
ARTIFACT_WINDOW = 2


@dataclass(frozen=True)
class ReferencesFrame:
    references: Sequence[str]

    def encode(self, separator: str) -> bytes:
        payload = json.dumps(list(self.references), separators=(",", ":"), ensure_ascii=False)
        return (payload + separator).encode("utf-8")


@dataclass(frozen=True)
class ContentFrame:
    text: str

    def encode(self, separator: str) -> bytes:
        return self.text.encode("utf-8")


StreamFrame = Union[ReferencesFrame, ContentFrame]


class StreamState(str, Enum):
    AWAITING_FIRST_EVENT = "awaiting_first_event"
    STREAMING = "streaming"
    DONE = "done"
    ERRORED = "errored"


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the `data` payload of each server-sent event.

    Multi-line data fields are joined with newlines. Comments and fields other than
    `data` are ignored. A trailing event without a blank line is still yielded.

    Args:
        lines: Decoded lines without their line terminators (e.g. httpx aiter_lines()).
    """
    data: List[str] = []
    async for line in lines:
        if not line:
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field != "data":
            continue
        if value.startswith(" "):
            value = value[1:]
        data.append(value)
    if data:
        yield "\n".join(data)


def _is_artifact(text: str) -> bool:
    return bool(text) and text.strip("\n") == ""


class StreamTransformer:
    """Pull-based state machine from upstream SSE payloads to client frames.

    States: AWAITING_FIRST_EVENT -> STREAMING -> DONE, with ERRORED absorbing.
    Each `next_frame()` call reads at most one upstream event, so nothing is read
    ahead of the consumer. The references frame is produced exactly once, before any
    content, even if the upstream finishes without content.

    The transcript starts with the prompt and collects every chunk of generated
    text (suppressed artifacts included); it is only used for token accounting.
    """

    def __init__(
        self,
        events: AsyncIterator[str],
        references: Sequence[str],
        model_spec: ModelSpec,
        prompt: str = "",
    ):
        self._events = events
        self.references = tuple(references)
        self.model_spec = model_spec
        self.state = StreamState.AWAITING_FIRST_EVENT
        self.forwarded = 0
        self._transcript: List[str] = [prompt] if prompt else []
        self._pending: Deque[StreamFrame] = deque()
        self._references_sent = False

    @property
    def transcript(self) -> str:
        return "".join(self._transcript)

    def _send_references(self) -> None:
        if not self._references_sent:
            self._pending.append(ReferencesFrame(self.references))
            self._references_sent = True

    def _finish(self) -> None:
        self._send_references()
        self.state = StreamState.DONE

    def _fail(self, message: str, cause: BaseException) -> UpstreamStreamError:
        self.state = StreamState.ERRORED
        self._pending.clear()
        logger.error("%s: %s", message, cause)
        return UpstreamStreamError(f"{message}: {cause}", cause=cause)

    def _on_event(self, data: str) -> None:
        if data.strip() == DONE_SENTINEL:
            self._finish()
            return
        try:
            text = self.model_spec.chunk_text(json.loads(data))
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise self._fail("Malformed completion chunk", e) from e
        if text is not None and not isinstance(text, str):
            raise self._fail("Malformed completion chunk", TypeError(f"text is {type(text).__name__}"))

        self._send_references()
        self.state = StreamState.STREAMING
        text = text or ""
        self._transcript.append(text)
        if not text:
            return
        if self.forwarded < ARTIFACT_WINDOW and _is_artifact(text):
            return
        self._pending.append(ContentFrame(text))
        self.forwarded += 1

    async def next_frame(self) -> Optional[StreamFrame]:
        """Return the next frame for the client, or None once the stream is done.

        Raises:
            UpstreamStreamError: an event could not be decoded or the upstream
                transport failed. The transformer is ERRORED afterwards.
        """
        while True:
            if self._pending:
                return self._pending.popleft()
            if self.state is StreamState.DONE:
                return None
            if self.state is StreamState.ERRORED:
                raise UpstreamStreamError("Completion stream already failed")
            try:
                data = await self._events.__anext__()
            except StopAsyncIteration:
                self._finish()
                continue
            except UpstreamStreamError:
                self.state = StreamState.ERRORED
                raise
            except Exception as e:
                raise self._fail("Completion stream interrupted", e) from e
            self._on_event(data)

    def __aiter__(self) -> "StreamTransformer":
        return self

    async def __anext__(self) -> StreamFrame:
        frame = await self.next_frame()
        if frame is None:
            raise StopAsyncIteration
        return frame
