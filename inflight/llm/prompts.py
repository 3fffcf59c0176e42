# inflight/llm/prompts.py
"""
Default prompt builder and response parser.

Prompt wording and result validation belong to the embedding product; these
defaults only produce workable messages and pull the expected JSON object out
of model output, so the executor runs end to end against a bare model.
"""

import json
import re
from typing import Any
from uuid import uuid4

from inflight.models.inputs import ChatMessageInput, JobInput
from inflight.models.jobs import JobType

SYSTEM_PROMPT = (
    "You are a concise, practical learning coach for software developers. "
    "When asked for structured output, reply with a single JSON object and nothing else."
)

# Top-level key each regeneration result must carry
RESULT_KEYS: dict[JobType, str] = {
    JobType.TOPIC_REGENERATION: "learningTopic",
    JobType.CHALLENGE_REGENERATION: "challenge",
    JobType.GOAL_REGENERATION: "goal",
}

_ITEM_NOUNS: dict[JobType, str] = {
    JobType.TOPIC_REGENERATION: "learning topic",
    JobType.CHALLENGE_REGENERATION: "coding challenge",
    JobType.GOAL_REGENERATION: "daily goal",
}


def extract_json(raw_output: str) -> Any:
    """
    Extract JSON from model output, handling common formatting variations.

    Tries, in order: a direct parse, a ```json fenced block, and the outermost
    {...} or [...] span.

    Raises:
        ValueError: If no valid JSON found
    """
    try:
        return json.loads(raw_output.strip())
    except json.JSONDecodeError:
        pass

    fence_match = re.search(
        r"```(?:json)?\s*\n(.*?)\n```", raw_output, re.DOTALL | re.IGNORECASE
    )
    if fence_match:
        try:
            return json.loads(fence_match.group(1).strip())
        except json.JSONDecodeError:
            pass

    json_match = re.search(r"(\{.*\}|\[.*\])", raw_output, re.DOTALL)
    if json_match:
        try:
            return json.loads(json_match.group(1))
        except json.JSONDecodeError:
            pass

    preview = raw_output[:200].replace("\n", "\\n")
    raise ValueError(
        f"Could not extract valid JSON from output ({len(raw_output)} chars). "
        f"Preview: {preview}"
    )


class DefaultPromptBuilder:
    """Builds a system + user message pair per job type."""

    def build(self, job_type: JobType, job_input: JobInput) -> list[dict]:
        if job_type is JobType.CHAT_MESSAGE:
            if not isinstance(job_input, ChatMessageInput):
                raise TypeError(
                    f"Chat jobs need ChatMessageInput, got {type(job_input).__name__}"
                )
            return self._messages(job_input.prompt)

        data = job_input.model_dump(by_alias=True, exclude_none=True)
        existing = next((v for k, v in data.items() if k.startswith("existing")), [])
        noun = _ITEM_NOUNS[job_type]
        key = RESULT_KEYS[job_type]

        parts = [f"Suggest one new {noun}."]
        if existing:
            parts.append("Avoid repeating any of these: " + "; ".join(existing) + ".")
        if data.get("skillProfile"):
            parts.append("Learner skill profile: " + json.dumps(data["skillProfile"]))
        parts.append(
            f'Respond with JSON of the form {{"{key}": {{"title": ..., "description": ...}}}}.'
        )
        return self._messages("\n".join(parts))

    def _messages(self, user_content: str) -> list[dict]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_content},
        ]


class JsonResponseParser:
    """Extracts the result object for regeneration jobs."""

    def parse(self, job_type: JobType, raw_output: str) -> Any:
        """
        Returns:
            {"<key>": {...}} with an "id" filled in if the model omitted one

        Raises:
            ValueError: If the output has no JSON object under the expected key
        """
        key = RESULT_KEYS[job_type]
        parsed = extract_json(raw_output)
        if not isinstance(parsed, dict) or not isinstance(parsed.get(key), dict):
            raise ValueError(f"Failed to parse {job_type.value} response: missing '{key}'")

        item = dict(parsed[key])
        item.setdefault("id", uuid4().hex)
        return {key: item}
