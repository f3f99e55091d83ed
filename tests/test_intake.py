"""Tests for project resolution and query construction."""

import pytest

from app.errors import InvalidRequest, MissingProject, MissingPrompt
from app.intake import build_query, parse_request, resolve_project_id
from app.model_spec import DEFAULT_MODEL, ModelKind
from app.schemas import CompletionRequest


def _query(prompt: str, **body):
    return build_query(
        CompletionRequest(prompt=prompt, **body),
        "proj-1",
        max_prompt_length=200,
        default_i_dont_know="Sorry, I am not sure how to answer that.",
    )


class TestResolveProjectId:
    def test_path_segment_wins(self):
        assert resolve_project_id("from-path", "from-query") == "from-path"

    def test_query_parameter_used_without_path(self):
        assert resolve_project_id(None, "from-query") == "from-query"

    @pytest.mark.parametrize("path, query", [(None, None), ("", ""), ("  ", None)])
    def test_missing(self, path, query):
        with pytest.raises(MissingProject):
            resolve_project_id(path, query)


class TestBuildQuery:
    def test_sanitizes_whitespace_and_newlines(self):
        q = _query("  How do I\nget a refund?\n ")

        assert q.sanitized_text == "How do I get a refund?"
        assert q.raw_prompt == "  How do I\nget a refund?\n "
        assert q.project_id == "proj-1"

    def test_truncates_before_sanitizing(self):
        q = _query("x" * 199 + "\nyz")

        assert len(q.raw_prompt) == 200
        assert q.raw_prompt.endswith("\n")
        assert q.sanitized_text == "x" * 199

    def test_empty_prompt_rejected(self):
        with pytest.raises(MissingPrompt):
            _query("")

    def test_prompt_cut_to_nothing_rejected(self):
        with pytest.raises(MissingPrompt):
            build_query(CompletionRequest(prompt="hello"), "p", max_prompt_length=0, default_i_dont_know="x")

    def test_default_fallback_text(self):
        assert _query("q").i_dont_know_text == "Sorry, I am not sure how to answer that."

    def test_custom_fallback_text_from_alias(self):
        body = CompletionRequest.model_validate({"prompt": "q", "iDontKnowMessage": "Ask support."})

        q = build_query(body, "p", max_prompt_length=200, default_i_dont_know="x")

        assert q.i_dont_know_text == "Ask support."

    def test_empty_custom_fallback_uses_default(self):
        assert _query("q", iDontKnowMessage="").i_dont_know_text == "Sorry, I am not sure how to answer that."

    def test_model_resolution(self):
        assert _query("q", model="text-davinci-003").model_spec.kind is ModelKind.COMPLETION
        assert _query("q", model="mystery").model_spec == DEFAULT_MODEL


class TestParseRequest:
    def test_valid_body(self):
        body = parse_request({"model": "gpt-4", "prompt": "q", "iDontKnowMessage": "?"})

        assert (body.model, body.prompt, body.i_dont_know_message) == ("gpt-4", "q", "?")

    @pytest.mark.parametrize("prompt", [None, 5, {"text": "q"}])
    def test_bad_prompt_is_missing_prompt(self, prompt):
        with pytest.raises(MissingPrompt):
            parse_request({"prompt": prompt})

    @pytest.mark.parametrize("payload", [[], "q", None, {"prompt": "q", "iDontKnowMessage": 3}])
    def test_bad_shape_is_invalid_request(self, payload):
        with pytest.raises(InvalidRequest) as exc_info:
            parse_request(payload)

        assert exc_info.value.status_code == 400
