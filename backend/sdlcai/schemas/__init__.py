"""Pydantic v2 schemas package."""

from sdlcai.schemas.pipeline import (
    PipelineInputs,
    PipelineStatus,
    ReviewOutcome,
    RunSnapshot,
    TaskOutput,
    TaskState,
)

__all__ = [
    "PipelineInputs",
    "PipelineStatus",
    "ReviewOutcome",
    "RunSnapshot",
    "TaskOutput",
    "TaskState",
]
