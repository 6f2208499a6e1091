"""Pipeline API endpoints — drive the orchestrator and stream its progress.

POST /api/pipeline/start
GET  /api/pipeline/status
POST /api/pipeline/review/{agent}        confirm (possibly edited) output
POST /api/pipeline/tasks/{agent}/{task}  per-task correction
POST /api/pipeline/retry
POST /api/pipeline/abandon
POST /api/pipeline/audit
GET  /api/pipeline/events                SSE progress stream
GET  /api/pipeline/agents

Every agent result is held for human review; nothing advances until the
review is explicitly submitted.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from sdlcai.config import get_settings
from sdlcai.errors import InvalidSequence, MalformedReview, PipelineStateError, UnknownAgent
from sdlcai.schemas.pipeline import PipelineInputs, ReviewOutcome, RunSnapshot
from sdlcai.services.agents.registry import AGENT_REGISTRY
from sdlcai.services.pipeline_controller import PipelineController, get_controller

logger = logging.getLogger(__name__)

router = APIRouter()


class StartRequest(BaseModel):
    requirements: str = Field("", description="User requirements")
    context: str = Field("", description="Project context")
    title: str = Field("", max_length=255)
    agents: list[str] | None = Field(None, description="Agent sequence; defaults to DEFAULT_AGENTS")


class ReviewRequest(BaseModel):
    """Either raw edited text, a structured output, or neither (re-read the review file)."""
    content: str | None = None
    output: dict[str, Any] | None = None


class TaskCorrectionRequest(BaseModel):
    value: Any = None


class AuditResponse(BaseModel):
    path: str


class AgentInfo(BaseModel):
    name: str
    label: str
    endpoint: str
    depends_on: list[str]


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, UnknownAgent):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidSequence):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, MalformedReview):
        return HTTPException(status_code=422, detail=str(e))
    return HTTPException(status_code=409, detail=str(e))


@router.get("/agents", response_model=list[AgentInfo])
async def list_agents() -> list[AgentInfo]:
    """Registered agents in default order, with their declared dependencies."""
    return [
        AgentInfo(name=s.name, label=s.label, endpoint=s.endpoint, depends_on=s.predecessors)
        for s in AGENT_REGISTRY.values()
    ]


@router.post("/start", response_model=RunSnapshot)
async def start_pipeline(
    req: StartRequest, controller: PipelineController = Depends(get_controller),
) -> RunSnapshot:
    """Start a fresh run and dispatch the first agent.

    Returns once the first agent is awaiting review (or has failed).
    """
    agents = req.agents or get_settings().default_agent_sequence
    inputs = PipelineInputs(
        requirements=req.requirements,
        context=req.context,
        title=req.title,
        agents=agents,
    )
    try:
        return await controller.start(inputs)
    except (InvalidSequence, UnknownAgent) as e:
        raise _http_error(e)


@router.get("/status", response_model=RunSnapshot)
async def pipeline_status(controller: PipelineController = Depends(get_controller)) -> RunSnapshot:
    return controller.snapshot()


@router.post("/review/{agent}", response_model=ReviewOutcome)
async def submit_review(
    agent: str,
    req: ReviewRequest | None = None,
    controller: PipelineController = Depends(get_controller),
) -> ReviewOutcome:
    """Confirm the reviewed output of an agent and validate all of its tasks."""
    content: Any = None
    if req is not None:
        content = req.output if req.output is not None else req.content
    try:
        return await controller.submit_review(agent, content)
    except (MalformedReview, PipelineStateError) as e:
        raise _http_error(e)


@router.post("/tasks/{agent}/{task}", response_model=ReviewOutcome)
async def correct_task(
    agent: str,
    task: str,
    req: TaskCorrectionRequest,
    controller: PipelineController = Depends(get_controller),
) -> ReviewOutcome:
    """Re-validate a single corrected task."""
    try:
        return await controller.correct_task(agent, task, req.value)
    except PipelineStateError as e:
        raise _http_error(e)


@router.post("/retry", response_model=RunSnapshot)
async def retry_pipeline(controller: PipelineController = Depends(get_controller)) -> RunSnapshot:
    try:
        return await controller.retry()
    except PipelineStateError as e:
        raise _http_error(e)


@router.post("/abandon", response_model=RunSnapshot)
async def abandon_pipeline(controller: PipelineController = Depends(get_controller)) -> RunSnapshot:
    return controller.abandon()


@router.post("/audit", response_model=AuditResponse)
async def save_audit(controller: PipelineController = Depends(get_controller)) -> AuditResponse:
    """Persist the run inputs and finalized outputs."""
    try:
        path = await controller.save_audit()
    except PipelineStateError as e:
        raise _http_error(e)
    return AuditResponse(path=str(path))


async def _event_stream(controller: PipelineController):
    """Async generator that yields SSE frames for every published event."""
    async for event in controller.bus.subscribe():
        yield event.to_sse()


@router.get("/events")
async def stream_events(controller: PipelineController = Depends(get_controller)):
    return StreamingResponse(
        _event_stream(controller),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
