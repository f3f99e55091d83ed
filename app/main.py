"""FastAPI application entrypoint and routes.

Exposes the health endpoint and the streaming completions endpoint, configures CORS
and logging, and builds the pipeline collaborators at startup. The project id comes
either from the last path segment (/v1/openai/completions/{project}) or from the
`project` query parameter (/v1/openai/completions?project=...).
"""
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, StreamingResponse
from openai import AsyncOpenAI
from starlette.background import BackgroundTask

from app.config import Settings, settings
from app.db import SessionLocal, init_db
from app.embedding import OpenAIEmbedder, OpenAIModerator
from app.errors import CompletionError, InvalidRequest
from app.generation import OpenAICompletionInvoker
from app.intake import build_query, parse_request, resolve_project_id
from app.model_spec import CompletionParams, resolve_model
from app.obs import configure_tracing, shutdown_tracing
from app.pipeline import Services, run_completion
from app.rate_limit import RedisRateLimiter, close_redis_clients, get_redis
from app.retrieval import DatabaseKeyStore, PgVectorRetriever

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/v1/openai/completions"
NOT_ALLOWED_METHODS = ["GET", "PUT", "PATCH", "DELETE"]


def build_services(cfg: Settings, http_client: httpx.AsyncClient) -> Services:
    """Construct the production collaborators from settings.

    Args:
        cfg: Application settings.
        http_client: Shared async HTTP client for completion streams.

    Returns:
        Services: OpenAI, Redis and Postgres backed collaborators.
    """
    openai_client = AsyncOpenAI(api_key=cfg.OPENAI_API_KEY or None, base_url=cfg.OPENAI_BASE_URL)
    return Services(
        settings=cfg,
        rate_limiter=RedisRateLimiter(get_redis(cfg.REDIS_URL), per_minute=cfg.RATE_LIMIT_COMPLETIONS_PER_MINUTE),
        key_store=DatabaseKeyStore(SessionLocal),
        moderator=OpenAIModerator(openai_client),
        embedder=OpenAIEmbedder(openai_client, model=cfg.OPENAI_EMBEDDING_MODEL),
        retriever=PgVectorRetriever(SessionLocal),
        invoker=OpenAICompletionInvoker(
            http_client,
            base_url=cfg.OPENAI_BASE_URL,
            api_key=cfg.OPENAI_API_KEY,
            params=CompletionParams(
                temperature=cfg.COMPLETION_TEMPERATURE,
                top_p=cfg.COMPLETION_TOP_P,
                max_tokens=cfg.COMPLETION_MAX_TOKENS,
            ),
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database schema, tracing and pipeline collaborators; close clients on shutdown."""
    init_db()
    configure_tracing()
    # No read timeout: generation length bounds the stream, not the transport
    timeout = httpx.Timeout(None, connect=settings.COMPLETION_CONNECT_TIMEOUT_SECONDS)
    async with httpx.AsyncClient(timeout=timeout) as http_client:
        app.state.services = build_services(settings, http_client)
        yield
    await close_redis_clients()
    shutdown_tracing()


app = FastAPI(title="RAG Completions API", version="0.1.0", lifespan=lifespan)

# Completions are embedded in third-party sites
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
)


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the collaborators built at startup."""
    return request.app.state.services


@app.exception_handler(CompletionError)
async def completion_error_handler(request: Request, exc: CompletionError) -> PlainTextResponse:
    return PlainTextResponse(exc.message, status_code=exc.status_code, headers=exc.headers)


@app.get("/health")
def health():
    """Liveness probe endpoint.

    Returns:
        dict: {"status": "ok"} when the service is running.
    """
    return {"status": "ok"}


@app.options(COMPLETIONS_PATH)
@app.options(COMPLETIONS_PATH + "/{project}")
def completions_preflight() -> PlainTextResponse:
    return PlainTextResponse("ok")


@app.api_route(COMPLETIONS_PATH, methods=NOT_ALLOWED_METHODS)
@app.api_route(COMPLETIONS_PATH + "/{project}", methods=NOT_ALLOWED_METHODS)
def completions_not_allowed(request: Request) -> PlainTextResponse:
    return PlainTextResponse(f"Method {request.method} Not Allowed", status_code=405)


@app.post(COMPLETIONS_PATH)
@app.post(COMPLETIONS_PATH + "/{project}")
async def completions(
    request: Request,
    services: Services = Depends(get_services),
) -> StreamingResponse:
    """Answer a question about a project's documentation as a text stream.

    Workflow:
    - Resolve the project, then parse the body and validate/truncate the prompt
    - Check the project's rate limit
    - Moderate, embed (with backoff) and retrieve matching sections
    - Budget the context and build the prompt
    - Stream JSON(references) + separator, then the generated text

    Returns:
        StreamingResponse: text/plain stream with rate-limit headers.
    """
    project_id = resolve_project_id(request.path_params.get("project"), request.query_params.get("project"))
    try:
        payload = await request.json()
    except ValueError as e:
        raise InvalidRequest("Request body is not valid JSON", cause=e) from e
    body = parse_request(payload)
    cfg = services.settings
    query = build_query(
        body,
        project_id,
        max_prompt_length=cfg.MAX_PROMPT_LENGTH,
        default_i_dont_know=cfg.I_DONT_KNOW,
        default_model=resolve_model(cfg.DEFAULT_COMPLETION_MODEL),
    )
    stream = await run_completion(query, services)
    return StreamingResponse(
        stream.body(),
        media_type="text/plain; charset=utf-8",
        headers=stream.headers,
        # Runs even when the client leaves before the first frame is pulled
        background=BackgroundTask(stream.aclose),
    )
