"""Database ORM models.

Defines the entities the completions pipeline reads. They are written by the
ingestion and project-management services:
- Project: a team's documentation project, optionally carrying its own OpenAI key.
- File: one indexed source file of a project.
- FileSection: an embedded chunk of a file, searched by vector similarity.
"""
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from app.config import settings
from app.db import Base


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(64), primary_key=True)
    name = Column(String(256), nullable=False)
    openai_key = Column(String(256), nullable=True)  # falls back to settings.OPENAI_API_KEY

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class File(Base):
    __tablename__ = "files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    path = Column(String(1024), nullable=False)
    checksum = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (Index("idx_files_project", "project_id"),)


class FileSection(Base):
    """Embedded chunk of a file; `embedding` has settings.EMBEDDING_DIM dimensions."""
    __tablename__ = "file_sections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(Integer, ForeignKey("files.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    token_count = Column(Integer, nullable=False, default=0)
    embedding = Column(Vector(dim=settings.EMBEDDING_DIM), nullable=False)

    __table_args__ = (
        Index("idx_file_sections_file", "file_id"),
        Index(
            "idx_file_sections_embedding_ivfflat",
            "embedding",
            postgresql_using="ivfflat",
            postgresql_with={"lists": 100},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )
