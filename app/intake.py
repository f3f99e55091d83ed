"""Request intake: project resolution, prompt truncation and sanitization."""
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError

from app.errors import InvalidRequest, MissingProject, MissingPrompt
from app.model_spec import DEFAULT_MODEL, ModelSpec, resolve_model
from app.schemas import CompletionRequest


@dataclass(frozen=True)
class Query:
    """A validated question, ready for the pipeline."""
    raw_prompt: str
    sanitized_text: str
    project_id: str
    model_spec: ModelSpec
    i_dont_know_text: str


def resolve_project_id(path_project: Optional[str], query_project: Optional[str]) -> str:
    """Return the project id from the route path, else from the `project` query parameter.

    Raises:
        MissingProject: neither source carries a non-blank id.
    """
    for candidate in (path_project, query_project):
        if candidate and candidate.strip():
            return candidate.strip()
    raise MissingProject()


def parse_request(payload: Any) -> CompletionRequest:
    """Validate a decoded JSON body into a CompletionRequest.

    Raises:
        MissingPrompt: `prompt` is null or not a string.
        InvalidRequest: the body is not an object or another field has the wrong type.
    """
    if not isinstance(payload, dict):
        raise InvalidRequest()
    try:
        return CompletionRequest.model_validate(payload)
    except ValidationError as e:
        if any(err["loc"][:1] == ("prompt",) for err in e.errors()):
            raise MissingPrompt() from e
        raise InvalidRequest(f"Invalid request body: {e.error_count()} invalid field(s)", cause=e) from e


def sanitize(prompt: str) -> str:
    return prompt.strip().replace("\n", " ")


def build_query(
    body: CompletionRequest,
    project_id: str,
    *,
    max_prompt_length: int,
    default_i_dont_know: str,
    default_model: Optional[ModelSpec] = None,
) -> Query:
    """Validate the request body and build an immutable Query.

    The prompt is cut to `max_prompt_length` characters before anything else looks
    at it; truncation is silent.

    Raises:
        MissingPrompt: the prompt is empty after truncation.
    """
    raw_prompt = (body.prompt or "")[:max_prompt_length]
    if not raw_prompt:
        raise MissingPrompt()
    model_spec = resolve_model(body.model, default_model or DEFAULT_MODEL)
    return Query(
        raw_prompt=raw_prompt,
        sanitized_text=sanitize(raw_prompt),
        project_id=project_id,
        model_spec=model_spec,
        i_dont_know_text=body.i_dont_know_message or default_i_dont_know,
    )
