# tests/unit/test_prompts.py
"""Tests for the default prompt builder, JSON extraction and response parser."""

import pytest

from inflight.llm import DefaultPromptBuilder, JsonResponseParser, extract_json
from inflight.models.inputs import validate_job_input
from inflight.models.jobs import JobType


class TestExtractJson:
    def test_direct(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_fenced_block(self):
        raw = 'Here you go:\n```json\n{"goal": {"title": "x"}}\n```\nEnjoy!'
        assert extract_json(raw) == {"goal": {"title": "x"}}

    def test_embedded_object(self):
        raw = 'Sure! {"challenge": {"title": "FizzBuzz"}} Hope that helps.'
        assert extract_json(raw) == {"challenge": {"title": "FizzBuzz"}}

    def test_no_json(self):
        with pytest.raises(ValueError, match="Could not extract valid JSON"):
            extract_json("I cannot help with that.")


class TestJsonResponseParser:
    def test_fills_missing_id(self):
        parser = JsonResponseParser()

        result = parser.parse(JobType.TOPIC_REGENERATION, '{"learningTopic": {"title": "Async"}}')

        assert result["learningTopic"]["title"] == "Async"
        assert len(result["learningTopic"]["id"]) == 32

    def test_keeps_model_id(self):
        parser = JsonResponseParser()

        result = parser.parse(JobType.GOAL_REGENERATION, '{"goal": {"id": "g1", "title": "x"}}')

        assert result == {"goal": {"id": "g1", "title": "x"}}

    def test_wrong_key_rejected(self):
        parser = JsonResponseParser()

        with pytest.raises(ValueError, match="missing 'challenge'"):
            parser.parse(JobType.CHALLENGE_REGENERATION, '{"goal": {"title": "x"}}')


class TestDefaultPromptBuilder:
    def test_chat_uses_prompt(self):
        job_input = validate_job_input(
            JobType.CHAT_MESSAGE, {"threadId": "t1", "prompt": "Explain generators"}
        )

        messages = DefaultPromptBuilder().build(JobType.CHAT_MESSAGE, job_input)

        assert [m["role"] for m in messages] == ["system", "user"]
        assert messages[1]["content"] == "Explain generators"

    def test_regeneration_mentions_existing_titles_and_key(self):
        job_input = validate_job_input(
            JobType.TOPIC_REGENERATION,
            {"existingTopicTitles": ["Closures", "Decorators"], "skillProfile": {"python": 3}},
        )

        messages = DefaultPromptBuilder().build(JobType.TOPIC_REGENERATION, job_input)
        user = messages[1]["content"]

        assert "learning topic" in user
        assert "Closures; Decorators" in user
        assert '"python": 3' in user
        assert '"learningTopic"' in user

    def test_chat_rejects_non_chat_input(self):
        job_input = validate_job_input(JobType.GOAL_REGENERATION, {})

        with pytest.raises(TypeError, match="ChatMessageInput"):
            DefaultPromptBuilder().build(JobType.CHAT_MESSAGE, job_input)
