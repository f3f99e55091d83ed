"""Pytest configuration and shared fixtures for the completions service tests."""

import pytest

from app.config import Settings
from app.model_spec import ModelKind, ModelSpec
from app.pipeline import Services
from tests.fakes import (
    SEPARATOR,
    FakeEmbedder,
    FakeInvoker,
    FakeKeyStore,
    FakeModerator,
    FakeRateLimiter,
    FakeRetriever,
    RecordingSleep,
)


def pytest_configure(config):
    """Register custom pytest markers for test categorization."""
    config.addinivalue_line("markers", "e2e: end-to-end tests through the HTTP endpoint")


@pytest.fixture
def settings():
    return Settings(
        OPENAI_API_KEY="sk-service",
        STREAM_SEPARATOR=SEPARATOR,
        LANGFUSE_HOST="",
        LANGFUSE_PUBLIC_KEY="",
        LANGFUSE_SECRET_KEY="",
    )


@pytest.fixture
def chat_model():
    return ModelSpec(id="gpt-3.5-turbo", kind=ModelKind.CHAT)


@pytest.fixture
def completion_model():
    return ModelSpec(id="text-davinci-003", kind=ModelKind.COMPLETION)


@pytest.fixture
def services(settings):
    return Services(
        settings=settings,
        rate_limiter=FakeRateLimiter(),
        key_store=FakeKeyStore(),
        moderator=FakeModerator(),
        embedder=FakeEmbedder(),
        retriever=FakeRetriever(),
        invoker=FakeInvoker(),
        sleep=RecordingSleep(),
    )


@pytest.fixture(autouse=True)
def fixed_token_count(monkeypatch):
    """Avoid downloading tokenizer files; counting is exercised in test_usage."""
    monkeypatch.setattr("app.pipeline.count_tokens", lambda text, model: len(text.split()))
