"""Similarity retrieval of file sections and per-project credential lookup.

This module implements:
- PgVectorRetriever: ranked file sections for a query vector, scoped to one project.
- DatabaseKeyStore: the project's own OpenAI key, if it has one.

Vector search uses pgvector cosine distance (similarity = 1 - distance). Queries are
synchronous SQLAlchemy calls, run in Starlette's threadpool so the event loop stays free.
"""
import logging
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from app.context import FileSection
from app.db import session_scope
from app.errors import RetrievalFailed

logger = logging.getLogger(__name__)


class Retriever(Protocol):
    async def retrieve(
        self,
        project_id: str,
        vector: Sequence[float],
        *,
        threshold: float,
        limit: int,
        min_content_length: int,
    ) -> List[FileSection]: ...


class KeyStore(Protocol):
    async def get_openai_key(self, project_id: str) -> Optional[str]: ...


MATCH_FILE_SECTIONS_SQL = text(
    """
    SELECT f.path AS path,
        s.content AS content,
        s.token_count AS token_count,
        1 - (s.embedding <=> CAST(:embedding AS vector)) AS similarity
    FROM file_sections s
    JOIN files f ON f.id = s.file_id
    WHERE f.project_id = :project_id
        AND length(s.content) >= :min_content_length
        AND 1 - (s.embedding <=> CAST(:embedding AS vector)) > :match_threshold
    ORDER BY s.embedding <=> CAST(:embedding AS vector)
    LIMIT :match_count
    """
)


def _vector_literal(vector: Sequence[float]) -> str:
    return "[" + ",".join(f"{x:.6f}" for x in vector) + "]"


class PgVectorRetriever:
    """Ranked similarity search over a project's embedded file sections."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _match(
        self,
        project_id: str,
        vector: Sequence[float],
        threshold: float,
        limit: int,
        min_content_length: int,
    ) -> List[FileSection]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                MATCH_FILE_SECTIONS_SQL,
                {
                    "project_id": project_id,
                    "embedding": _vector_literal(vector),
                    "match_threshold": threshold,
                    "match_count": limit,
                    "min_content_length": min_content_length,
                },
            ).mappings().all()
        return [
            FileSection(
                path=r["path"],
                content=r["content"],
                token_count=int(r["token_count"] or 0),
                similarity=float(r["similarity"]),
            )
            for r in rows
        ]

    async def retrieve(
        self,
        project_id: str,
        vector: Sequence[float],
        *,
        threshold: float,
        limit: int,
        min_content_length: int,
    ) -> List[FileSection]:
        """Return sections above `threshold`, best match first.

        Args:
            project_id: Project whose files are searched.
            vector: Query embedding.
            threshold: Minimum cosine similarity (exclusive).
            limit: Maximum number of sections.
            min_content_length: Sections with shorter content are skipped.

        Returns:
            List[FileSection]: Ranked by descending similarity; may be empty.

        Raises:
            RetrievalFailed: the database query failed.
        """
        try:
            return await run_in_threadpool(
                self._match, project_id, vector, threshold, limit, min_content_length
            )
        except SQLAlchemyError as e:
            logger.error("Error loading embeddings for project %s: %s", project_id, e)
            raise RetrievalFailed(f"Error loading embeddings: {e}", cause=e) from e


class DatabaseKeyStore:
    """Reads a project's own OpenAI key from the projects table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _lookup(self, project_id: str) -> Optional[str]:
        with session_scope(self._session_factory) as session:
            return session.execute(
                text("SELECT openai_key FROM projects WHERE id = :project_id"),
                {"project_id": project_id},
            ).scalar_one_or_none()

    async def get_openai_key(self, project_id: str) -> Optional[str]:
        """Return the project's key, or None when it has none or the lookup fails."""
        try:
            return await run_in_threadpool(self._lookup, project_id)
        except SQLAlchemyError as e:
            logger.warning("OpenAI key lookup failed for project %s, using service key: %s", project_id, e)
            return None
