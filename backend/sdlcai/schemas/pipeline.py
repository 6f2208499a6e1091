from __future__ import annotations
"""Pydantic v2 schemas for pipeline runs."""

import enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

TaskOutput = dict[str, Any]


class PipelineStatus(str, enum.Enum):
    """Controller state. DISPATCHING/AWAITING_REVIEW/FAILED carry an index on the run."""

    IDLE = "IDLE"
    DISPATCHING = "DISPATCHING"
    AWAITING_REVIEW = "AWAITING_REVIEW"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class TaskState(str, enum.Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"


class PipelineInputs(BaseModel):
    """Seed data for a run. Frozen once the run starts."""

    requirements: str = Field("", description="Free-form user requirements")
    context: str = Field("", description="Free-form project context")
    title: str = Field("", max_length=255)
    agents: tuple[str, ...] = Field(..., description="Ordered agent sequence for this run")

    model_config = {"frozen": True}

    @field_validator("agents", mode="before")
    @classmethod
    def _strip_names(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return tuple(str(v).strip() for v in value)
        return value


class ReviewOutcome(BaseModel):
    """Result of a review submission or a per-task correction."""

    agent: str
    acknowledged: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)  # task -> cause
    finalized: bool = False


class RunSnapshot(BaseModel):
    """Read-only view of the active run, for status endpoints and observers."""

    run_id: str | None = None
    status: PipelineStatus = PipelineStatus.IDLE
    index: int | None = None
    current_agent: str | None = None
    sequence: list[str] = Field(default_factory=list)
    completed_agents: list[str] = Field(default_factory=list)
    review_tasks: dict[str, TaskState] = Field(default_factory=dict)
    review_submitted: bool = False
    failure: str | None = None
