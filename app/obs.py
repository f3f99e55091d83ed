"""Request tracing: Langfuse traces for each completion and OpenTelemetry spans per stage.

- configure_tracing / shutdown_tracing: called from the application lifespan. They
  install a console-exporting tracer provider and flush pending Langfuse events.
  Until configure_tracing runs (e.g. in tests), spans go to OpenTelemetry's no-op
  provider.
- span: context manager timing one pipeline stage.
- Trace: one Langfuse trace per completion request. Without LANGFUSE_* settings
  every method is a no-op.

Export problems are logged and never fail a request.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

from langfuse import Langfuse
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from app.config import Settings, settings

logger = logging.getLogger(__name__)

_langfuse: Optional[Langfuse] = None
_provider: Optional[TracerProvider] = None


def _langfuse_client(cfg: Settings = settings) -> Optional[Langfuse]:
    global _langfuse
    if _langfuse is None and cfg.LANGFUSE_HOST and cfg.LANGFUSE_PUBLIC_KEY and cfg.LANGFUSE_SECRET_KEY:
        _langfuse = Langfuse(
            host=cfg.LANGFUSE_HOST,
            public_key=cfg.LANGFUSE_PUBLIC_KEY,
            secret_key=cfg.LANGFUSE_SECRET_KEY,
        )
    return _langfuse


def configure_tracing() -> None:
    """Install the global tracer provider once, exporting finished spans to the console."""
    global _provider
    if _provider is not None:
        return
    _provider = TracerProvider()
    _provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(_provider)


def shutdown_tracing() -> None:
    """Flush buffered spans and Langfuse events before the process exits."""
    if _provider is not None:
        _provider.shutdown()
    if _langfuse is not None:
        try:
            _langfuse.flush()
        except Exception as e:
            logger.warning("Langfuse flush failed: %s", e)


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[None]:
    """Time a pipeline stage as an OpenTelemetry span.

    Exceptions raised inside the block are recorded on the span and re-raised.
    """
    tracer = trace.get_tracer(__name__)
    with tracer.start_as_current_span(name, attributes=attributes or {}):
        yield


class Trace:
    """Langfuse trace of one completion request."""

    def __init__(self, name: str, input: Optional[Dict[str, Any]] = None, metadata: Optional[Dict[str, Any]] = None):
        self.name = name
        self._trace = None
        client = _langfuse_client()
        if client is not None:
            try:
                self._trace = client.trace(name=name, input=input or {}, metadata=metadata or {})
            except Exception as e:
                logger.warning("Langfuse trace %s could not be created: %s", name, e)

    @property
    def enabled(self) -> bool:
        return self._trace is not None

    def _send(self, what: str, call: Callable[[Any], Any]) -> None:
        if self._trace is None:
            return
        try:
            call(self._trace)
        except Exception as e:
            logger.debug("Langfuse %s on trace %s dropped: %s", what, self.name, e)

    def event(self, name: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Attach a pipeline step result, e.g. the moderation verdict or retrieval size."""
        self._send(f"event {name}", lambda t: t.event(name=name, input=data or {}))

    def generation(
        self,
        name: str,
        prompt: str,
        output: str,
        model: str,
        usage: Optional[Dict[str, int]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record the completion with its model and token usage.

        Args:
            name: Logical generation name.
            prompt: The question the answer was generated for.
            output: Everything the model produced.
            model: Completion model id.
            usage: Token counts, e.g. {"total": 412}.
            metadata: Extra attributes such as the references sent.
        """
        self._send(
            f"generation {name}",
            lambda t: t.generation(
                name=name,
                input=prompt,
                output=output,
                model=model,
                usage=usage or None,
                metadata=metadata or {},
            ),
        )

    def end(self, output: Optional[Dict[str, Any]] = None) -> None:
        self._send("update", lambda t: t.update(output=output or {}))
