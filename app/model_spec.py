"""Completion model resolution and per-kind request/response shapes.

A model is either chat-style or completion-style. The kind decides:
- which endpoint the streaming request goes to,
- how the prompt is placed in the payload,
- where the generated text sits in each streamed chunk.

Each ModelKind member has one entry in _SHAPES; a missing entry raises RuntimeError at import.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class ModelKind(str, Enum):
    CHAT = "chat_completions"
    COMPLETION = "completions"


@dataclass(frozen=True)
class CompletionParams:
    """Sampling parameters shared by both model kinds."""
    temperature: float = 0.1
    top_p: float = 1.0
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0
    max_tokens: int = 500
    n: int = 1


def _chat_payload(base: Dict[str, Any], prompt: str) -> Dict[str, Any]:
    return {**base, "messages": [{"role": "user", "content": prompt}]}


def _completion_payload(base: Dict[str, Any], prompt: str) -> Dict[str, Any]:
    return {**base, "prompt": prompt}


def _chat_chunk_text(chunk: Dict[str, Any]) -> Optional[str]:
    return chunk["choices"][0]["delta"].get("content")


def _completion_chunk_text(chunk: Dict[str, Any]) -> Optional[str]:
    return chunk["choices"][0].get("text")


@dataclass(frozen=True)
class _KindShape:
    endpoint: str
    build_payload: Callable[[Dict[str, Any], str], Dict[str, Any]]
    chunk_text: Callable[[Dict[str, Any]], Optional[str]]


_SHAPES: Dict[ModelKind, _KindShape] = {
    ModelKind.CHAT: _KindShape("/chat/completions", _chat_payload, _chat_chunk_text),
    ModelKind.COMPLETION: _KindShape("/completions", _completion_payload, _completion_chunk_text),
}


def _check_shapes(shapes: Dict[ModelKind, _KindShape]) -> None:
    missing = set(ModelKind) - set(shapes)
    if missing:
        raise RuntimeError(f"ModelKind without a request/response shape: {sorted(k.value for k in missing)}")


_check_shapes(_SHAPES)


@dataclass(frozen=True)
class ModelSpec:
    """A resolved completion model: its OpenAI id and its kind."""
    id: str
    kind: ModelKind

    @property
    def endpoint(self) -> str:
        return _SHAPES[self.kind].endpoint

    def build_payload(self, prompt: str, params: CompletionParams) -> Dict[str, Any]:
        """Build the streaming request body for this model.

        Args:
            prompt: Fully assembled prompt text.
            params: Sampling parameters shared by all kinds.

        Returns:
            Dict[str, Any]: JSON-serializable payload with stream enabled.
        """
        base = {
            "model": self.id,
            "temperature": params.temperature,
            "top_p": params.top_p,
            "frequency_penalty": params.frequency_penalty,
            "presence_penalty": params.presence_penalty,
            "max_tokens": params.max_tokens,
            "stream": True,
            "n": params.n,
        }
        return _SHAPES[self.kind].build_payload(base, prompt)

    def chunk_text(self, chunk: Dict[str, Any]) -> Optional[str]:
        """Extract the generated text from one decoded stream chunk.

        Raises:
            KeyError, IndexError, TypeError, AttributeError: chunk does not have the
            shape expected for this model kind.
        """
        return _SHAPES[self.kind].chunk_text(chunk)


KNOWN_MODELS: Dict[str, ModelKind] = {
    "gpt-4": ModelKind.CHAT,
    "gpt-4-0314": ModelKind.CHAT,
    "gpt-4-32k": ModelKind.CHAT,
    "gpt-4-32k-0314": ModelKind.CHAT,
    "gpt-3.5-turbo": ModelKind.CHAT,
    "gpt-3.5-turbo-0301": ModelKind.CHAT,
    "text-davinci-003": ModelKind.COMPLETION,
    "text-davinci-002": ModelKind.COMPLETION,
    "text-curie-001": ModelKind.COMPLETION,
    "text-babbage-001": ModelKind.COMPLETION,
    "text-ada-001": ModelKind.COMPLETION,
    "davinci": ModelKind.COMPLETION,
    "curie": ModelKind.COMPLETION,
    "babbage": ModelKind.COMPLETION,
    "ada": ModelKind.COMPLETION,
}

DEFAULT_MODEL = ModelSpec(id="gpt-3.5-turbo", kind=ModelKind.CHAT)


def resolve_model(value: Optional[str], default: ModelSpec = DEFAULT_MODEL) -> ModelSpec:
    """Map a client-supplied model string to a ModelSpec.

    Unknown or empty strings resolve to `default`.

    Args:
        value: Model id as sent by the client (case-insensitive, surrounding spaces ignored).
        default: Spec returned when the id is not recognised.

    Returns:
        ModelSpec: The resolved model.
    """
    key = (value or "").strip().lower()
    kind = KNOWN_MODELS.get(key)
    if kind is None:
        if key:
            logger.warning("Unknown model %r, falling back to %s", value, default.id)
        return default
    return ModelSpec(id=key, kind=kind)
