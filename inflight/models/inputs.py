# inflight/models/inputs.py
"""
Pydantic input models per job type.

Input is validated before a job is created; a rejected payload never
becomes a job. Keys are accepted in both snake_case and camelCase so
browser clients can post their native shapes.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from inflight.errors import JobInputError
from inflight.models.jobs import JobType


class JobInput(BaseModel):
    """Base for all job inputs."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )


class TopicRegenerationInput(JobInput):
    existing_topic_titles: list[str] = Field(default_factory=list)
    skill_profile: dict[str, Any] | None = None


class ChallengeRegenerationInput(JobInput):
    existing_challenge_titles: list[str] = Field(default_factory=list)
    skill_profile: dict[str, Any] | None = None


class GoalRegenerationInput(JobInput):
    existing_goal_titles: list[str] = Field(default_factory=list)
    skill_profile: dict[str, Any] | None = None


class ChatMessageInput(JobInput):
    thread_id: str = Field(min_length=1)
    prompt: str = Field(min_length=1, max_length=20_000)
    learning_mode: bool = False
    use_github_tools: bool = False
    repos: list[str] = Field(default_factory=list)


INPUT_MODELS: dict[JobType, type[JobInput]] = {
    JobType.TOPIC_REGENERATION: TopicRegenerationInput,
    JobType.CHALLENGE_REGENERATION: ChallengeRegenerationInput,
    JobType.GOAL_REGENERATION: GoalRegenerationInput,
    JobType.CHAT_MESSAGE: ChatMessageInput,
}


def parse_job_type(value: str | JobType) -> JobType:
    """Resolve a job type tag, raising JobInputError for unknown tags."""
    if isinstance(value, JobType):
        return value
    try:
        return JobType(value)
    except ValueError:
        valid = ", ".join(t.value for t in JobType)
        raise JobInputError(f"Unknown job type '{value}'. Must be one of: {valid}")


def validate_job_input(job_type: JobType, payload: dict[str, Any] | None) -> JobInput:
    """
    Validate a raw input payload for the given job type.

    Raises:
        JobInputError: If the payload does not match the job type's model
    """
    if payload is not None and not isinstance(payload, dict):
        raise JobInputError("Job input must be a JSON object")

    model = INPUT_MODELS[job_type]
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise JobInputError(f"Invalid input for {job_type.value}: {problems}")
