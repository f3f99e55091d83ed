"""Application package containing the completions API, configuration, data access,
and the retrieval-augmented streaming pipeline.

Submodules overview:
- main: FastAPI application bootstrap, lifecycle and routes.
- config: Application settings and environment variable loading.
- errors: Typed pipeline failures and the HTTP status each maps to.
- schemas: Pydantic request models for the API contract.
- intake: Project resolution, prompt truncation and sanitization.
- model_spec: Completion model resolution and per-kind payload/chunk shapes.
- rate_limit: Per-project Redis token bucket.
- embedding: Moderation and embedding clients, embedding backoff.
- db: Database engine/session management helpers.
- models: ORM models for projects, files and embedded sections.
- retrieval: pgvector similarity search and project key lookup.
- context: Token-budgeted context window from ranked sections.
- prompt: Generation prompt template.
- generation: Streaming completion requests against the OpenAI HTTP API.
- stream: SSE parsing and the upstream-to-client stream transformer.
- pipeline: Orchestration of one completion request.
- usage: Token counting for usage accounting.
- obs: Observability utilities (tracing/spans).
"""
