"""Application configuration and environment-driven settings.

Defines the Settings class based on pydantic-settings to centralize configuration for:
- OpenAI API key, base URL and model names
- Data stores (PostgreSQL, Redis)
- Intake limits and the fallback "I don't know" answer
- Retrieval policy and context budget
- Embedding backoff and completion parameters
- Rate limiting
- Optional observability (Langfuse) and logging

A light-weight local safety warning is logged if OPENAI_API_KEY is not set when not running in Docker.
"""
import logging
import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_EMBEDDING_DIMS = {
    "text-embedding-ada-002": 1536,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
}


class Settings(BaseSettings):
    """Strongly-typed application settings loaded from environment variables.

    Uses pydantic-settings to populate fields from a .env file or process env.
    Projects may carry their own OpenAI key; OPENAI_API_KEY is the service-wide fallback.
    """
    # Required
    OPENAI_API_KEY: str = Field(default="", description="Service-wide OpenAI API key")
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"

    # Models
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-ada-002"  # 1536 dims
    DEFAULT_COMPLETION_MODEL: str = "gpt-3.5-turbo"

    # Data stores
    DATABASE_URL: str = "postgresql+psycopg2://rag_user:rag_pass@db:5432/rag_db"
    REDIS_URL: str = "redis://redis:6379/0"

    # Intake
    MAX_PROMPT_LENGTH: int = 200
    I_DONT_KNOW: str = "Sorry, I am not sure how to answer that."
    STREAM_SEPARATOR: str = "___START_RESPONSE_STREAM___"

    # Retrieval / context budget (fixed policy, never taken from the request)
    MATCH_THRESHOLD: float = 0.78
    MATCH_COUNT: int = 10
    MIN_CONTENT_LENGTH: int = 50
    CONTEXT_TOKENS_CUTOFF: int = 800

    # Embedding backoff
    EMBEDDING_BACKOFF_STARTING_DELAY: float = 10.0  # seconds
    EMBEDDING_BACKOFF_ATTEMPTS: int = 10
    EMBEDDING_BACKOFF_MULTIPLIER: float = 2.0

    # Completion
    COMPLETION_TEMPERATURE: float = 0.1
    COMPLETION_TOP_P: float = 1.0
    COMPLETION_MAX_TOKENS: int = 500
    COMPLETION_CONNECT_TIMEOUT_SECONDS: float = 10.0

    # Rate limiting
    RATE_LIMIT_COMPLETIONS_PER_MINUTE: int = 20

    # Observability (optional)
    LANGFUSE_HOST: str = ""
    LANGFUSE_PUBLIC_KEY: str = ""
    LANGFUSE_SECRET_KEY: str = ""
    LOG_LEVEL: str = "INFO"

    @property
    def EMBEDDING_DIM(self) -> int:
        """Vector size of OPENAI_EMBEDDING_MODEL; must match the file_sections.embedding column."""
        return _EMBEDDING_DIMS.get(self.OPENAI_EMBEDDING_MODEL.lower(), 1536)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()

# Safety check for local dev (inside API container this must be set)
if os.environ.get("RUNNING_IN_DOCKER", "0") == "0":
    if not settings.OPENAI_API_KEY:
        # Projects may still supply their own key, so only warn
        logger.warning("OPENAI_API_KEY not set. Projects without their own key will fail upstream calls.")
