"""Pydantic request schemas for the API.

Defines the public contract of the completions endpoint:
- CompletionRequest: Input payload carrying the model, the question, and an optional
  custom answer for when the documentation does not cover the question.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CompletionRequest(BaseModel):
    """Request body for a streamed, retrieval-grounded completion.

    Attributes:
        model: Client-supplied model id; unknown ids fall back to the default model.
        prompt: The user question. Emptiness is checked after truncation, not here.
        i_dont_know_message: Optional text the model should answer with when unsure.
    """
    model_config = ConfigDict(populate_by_name=True)

    model: str = Field(default="", description="Completion model id")
    prompt: str = Field(default="", description="User question")
    i_dont_know_message: Optional[str] = Field(
        default=None,
        alias="iDontKnowMessage",
        description="Answer to give when the documentation does not cover the question",
    )
