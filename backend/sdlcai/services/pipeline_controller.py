"""PipelineController — drives agents one at a time through a human review gate.

Each agent goes through dispatch, invoke and review before the next one starts:

    resolve payload -> invoke agent -> review gate (human) -> validate tasks
        -> finalize into OutputStore -> next agent (or COMPLETED)

The controller is command-driven. ``start``, ``submit_review``,
``correct_task``, ``retry`` and ``abandon`` are the only ways to move it, and
waiting for the human is simply resting in AWAITING_REVIEW, so other commands
stay responsive. After every await the controller re-checks that the run it
was working on is still the active one; results for abandoned runs are dropped.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from sdlcai.config import get_settings
from sdlcai.errors import (
    InvocationError,
    MalformedReview,
    MissingDependency,
    PipelineStateError,
    UnknownAgent,
    ValidationError,
)
from sdlcai.schemas.pipeline import (
    PipelineInputs,
    PipelineStatus,
    ReviewOutcome,
    RunSnapshot,
    TaskOutput,
    TaskState,
)
from sdlcai.services import events as ev
from sdlcai.services.agent_client import AgentInvoker, ValidationService
from sdlcai.services.agents.registry import AgentSpec, get_agent, resolve, validate_sequence
from sdlcai.services.audit import write_audit_record
from sdlcai.services.events import EventBus, PipelineEvent, RedisEventRelay
from sdlcai.services.output_store import OutputStore
from sdlcai.services.review_gate import FileReviewSurface, ReviewGate

logger = logging.getLogger(__name__)


@dataclass
class PendingReview:
    """An agent's output between invocation and finalization."""
    agent: str
    output: TaskOutput
    task_states: dict[str, TaskState] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    submitted: bool = False
    busy: bool = False

    def all_acknowledged(self) -> bool:
        return all(self.task_states.get(t) is TaskState.ACKNOWLEDGED for t in self.output)


@dataclass
class PipelineRun:
    """All mutable state of one run. Owned exclusively by the controller."""
    run_id: str
    inputs: PipelineInputs
    store: OutputStore = field(default_factory=OutputStore)
    status: PipelineStatus = PipelineStatus.DISPATCHING
    index: int = 0
    pending: PendingReview | None = None
    failure: str | None = None

    @property
    def sequence(self) -> list[str]:
        return list(self.inputs.agents)

    @property
    def current_agent(self) -> str | None:
        if self.status is PipelineStatus.COMPLETED:
            return None
        return self.sequence[self.index]


class PipelineController:
    """The orchestrator state machine.

    Usage:
        controller = PipelineController(invoker=..., validator=..., gate=...)
        await controller.start(PipelineInputs(...))
        # ... human edits the review file ...
        await controller.submit_review("Requirements")
    """

    def __init__(
        self,
        *,
        invoker: AgentInvoker,
        validator: ValidationService,
        gate: ReviewGate,
        bus: EventBus | None = None,
        registry: dict[str, AgentSpec] | None = None,
        audit_dir: str | Path | None = None,
        auto_save_audit: bool = False,
    ) -> None:
        self.invoker = invoker
        self.validator = validator
        self.gate = gate
        self.bus = bus or EventBus()
        self.registry = registry
        self.audit_dir = Path(audit_dir or get_settings().AUDIT_DIR)
        self.auto_save_audit = auto_save_audit
        self._run: PipelineRun | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def status(self) -> PipelineStatus:
        return self._run.status if self._run else PipelineStatus.IDLE

    @property
    def run(self) -> PipelineRun | None:
        return self._run

    def snapshot(self) -> RunSnapshot:
        run = self._run
        if run is None:
            return RunSnapshot()
        pending = run.pending
        return RunSnapshot(
            run_id=run.run_id,
            status=run.status,
            index=None if run.status is PipelineStatus.COMPLETED else run.index,
            current_agent=run.current_agent,
            sequence=run.sequence,
            completed_agents=run.store.agents(),
            review_tasks=dict(pending.task_states) if pending else {},
            review_submitted=pending.submitted if pending else False,
            failure=run.failure,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self, inputs: PipelineInputs) -> RunSnapshot:
        """Begin a fresh run, replacing whatever run was active."""
        sequence = validate_sequence(inputs.agents, self.registry)

        if self._run is not None:
            logger.info("Replacing run %s (%s)", self._run.run_id, self._run.status.value)
            self.gate.discard()

        run = PipelineRun(run_id=uuid.uuid4().hex, inputs=inputs)
        self._run = run
        logger.info("Run %s started: %s", run.run_id, " -> ".join(sequence))
        self._emit(ev.RUN_STARTED, run, sequence=sequence)

        await self._dispatch(run)
        return self.snapshot()

    async def submit_review(
        self, agent: str, content: str | Mapping[str, Any] | None = None,
    ) -> ReviewOutcome:
        """Confirm the reviewed output of ``agent`` and validate every task.

        ``content`` of None re-reads the review surface.

        Raises:
            MalformedReview: content could not be parsed; the review stays open.
            PipelineStateError: ``agent`` is not awaiting review.
        """
        run, pending = self._require_review(agent)

        try:
            output = self.gate.parse(agent, content)
        except MalformedReview as e:
            self._emit(ev.REVIEW_MALFORMED, run, agent=agent, index=run.index, error=str(e))
            raise

        pending.output = output
        pending.task_states = {task: TaskState.PENDING for task in output}
        pending.errors = {}
        pending.submitted = True

        outcome = ReviewOutcome(agent=agent)
        pending.busy = True
        try:
            for task, value in output.items():
                error = await self._validate_task(run, agent, task, value, pending)
                if not self._is_active(run):
                    logger.info("Run %s abandoned during review of %s", run.run_id, agent)
                    return outcome
                if error is None:
                    outcome.acknowledged.append(task)
                else:
                    outcome.failed[task] = error
        finally:
            pending.busy = False

        if pending.all_acknowledged():
            outcome.finalized = True
            await self._finalize(run, pending)
        return outcome

    async def correct_task(self, agent: str, task: str, value: Any) -> ReviewOutcome:
        """Re-validate a single task with a corrected value.

        Under review, only this task is re-sent; if the review was already
        submitted and this clears the last failure, the agent is finalized.
        For an already finalized agent, the stored value changes only once
        the validator acknowledges it.
        """
        run = self._require_run()
        outcome = ReviewOutcome(agent=agent)
        pending = run.pending

        if run.status is PipelineStatus.AWAITING_REVIEW and pending and pending.agent == agent:
            if pending.busy:
                raise PipelineStateError(f"Review of {agent} is already being validated")
            if task not in pending.output:
                raise PipelineStateError(f"Agent {agent} has no task {task}")

            pending.output[task] = value
            pending.task_states[task] = TaskState.PENDING
            pending.busy = True
            try:
                error = await self._validate_task(run, agent, task, value, pending)
            finally:
                pending.busy = False
            if not self._is_active(run):
                return outcome

            if error is None:
                outcome.acknowledged.append(task)
            else:
                outcome.failed[task] = error

            if pending.submitted and pending.all_acknowledged():
                outcome.finalized = True
                await self._finalize(run, pending)
            return outcome

        stored = run.store.get(agent)
        if stored is None:
            raise PipelineStateError(f"Agent {agent} is neither under review nor finalized")
        if task not in stored:
            raise PipelineStateError(f"Agent {agent} has no task {task}")

        error = await self._validate_task(run, agent, task, value)
        if not self._is_active(run):
            return outcome
        if error is None:
            run.store.update_task(agent, task, value)
            outcome.acknowledged.append(task)
            outcome.finalized = True
        else:
            outcome.failed[task] = error
        return outcome

    async def retry(self) -> RunSnapshot:
        """Re-dispatch the agent a FAILED run stopped at."""
        run = self._require_run()
        if run.status is not PipelineStatus.FAILED:
            raise PipelineStateError(f"Retry is only possible from FAILED (current: {run.status.value})")

        logger.info("Run %s: retrying %s", run.run_id, run.current_agent)
        await self._dispatch(run)
        return self.snapshot()

    def abandon(self) -> RunSnapshot:
        """Discard the active run from any state; review files are left alone."""
        run = self._run
        self._run = None
        self.gate.discard()
        if run is not None:
            logger.info("Run %s abandoned in %s", run.run_id, run.status.value)
            self._emit(ev.RUN_ABANDONED, run, agent=run.current_agent)
        return self.snapshot()

    async def wait_for_review(self, agent: str) -> TaskOutput:
        """Suspend until ``agent``'s review is finalized (cancelled on abandon)."""
        return await self.gate.wait(agent)

    async def save_audit(self) -> Path:
        """Write inputs plus finalized outputs of the active run."""
        run = self._require_run()
        return await asyncio.to_thread(
            write_audit_record, self.audit_dir, run.run_id, run.inputs, run.store.snapshot(),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _dispatch(self, run: PipelineRun) -> None:
        agent = run.sequence[run.index]
        run.status = PipelineStatus.DISPATCHING
        run.pending = None
        run.failure = None
        self._emit(ev.AGENT_STARTED, run, agent=agent, index=run.index)

        try:
            spec = get_agent(agent, self.registry)
            payload = resolve(agent, run.inputs, run.store, self.registry)
        except (MissingDependency, UnknownAgent) as e:
            logger.exception("Could not build payload for %s", agent)
            self._fail(run, agent, str(e))
            return

        try:
            output = await self.invoker.invoke(agent, payload, spec=spec)
        except InvocationError as e:
            if not self._is_active(run):
                logger.info("Discarding failure of %s for abandoned run %s", agent, run.run_id)
                return
            logger.error("Agent %s failed: %s", agent, e.cause)
            self._fail(run, agent, str(e))
            return

        if not self._is_active(run):
            logger.info("Discarding output of %s for abandoned run %s", agent, run.run_id)
            return

        try:
            ticket = await self.gate.present(agent, output, is_current=lambda: self._is_active(run))
        except OSError as e:
            if not self._is_active(run):
                return
            logger.error("Could not open review for %s: %s", agent, e)
            self._fail(run, agent, f"Review surface unavailable for {agent}: {e}")
            return
        if ticket is None:
            logger.info("Discarding review of %s for abandoned run %s", agent, run.run_id)
            return

        run.pending = PendingReview(
            agent=agent,
            output=output,
            task_states={task: TaskState.PENDING for task in output},
        )
        run.status = PipelineStatus.AWAITING_REVIEW
        self._emit(
            ev.AWAITING_REVIEW, run,
            agent=agent, index=run.index, tasks=list(output), output=output,
        )

    async def _validate_task(
        self,
        run: PipelineRun,
        agent: str,
        task: str,
        value: Any,
        pending: PendingReview | None = None,
    ) -> str | None:
        """Validate one task. Returns None when acknowledged, else the cause."""
        index = run.sequence.index(agent)
        try:
            await self.validator.validate(agent, task, value)
        except ValidationError as e:
            if not self._is_active(run):
                return e.cause
            if pending is not None:
                pending.task_states[task] = TaskState.FAILED
                pending.errors[task] = e.cause
            self._emit(ev.TASK_FAILED, run, agent=agent, index=index, task=task, error=str(e))
            return e.cause

        if not self._is_active(run):
            return None
        if pending is not None:
            pending.task_states[task] = TaskState.ACKNOWLEDGED
            pending.errors.pop(task, None)
        self._emit(ev.TASK_VALIDATED, run, agent=agent, index=index, task=task)
        return None

    async def _finalize(self, run: PipelineRun, pending: PendingReview) -> None:
        agent = pending.agent
        run.store.record(agent, pending.output)
        run.pending = None
        self.gate.close(agent, pending.output)
        self._emit(ev.AGENT_VALIDATED, run, agent=agent, index=run.index, tasks=list(pending.output))

        if run.index + 1 < len(run.sequence):
            run.index += 1
            await self._dispatch(run)
            return

        run.status = PipelineStatus.COMPLETED
        logger.info("Run %s completed (%d agents)", run.run_id, len(run.store))
        self._emit(ev.RUN_COMPLETED, run)
        if self.auto_save_audit:
            await self.save_audit()

    def _fail(self, run: PipelineRun, agent: str, reason: str) -> None:
        run.status = PipelineStatus.FAILED
        run.failure = reason
        self._emit(ev.RUN_FAILED, run, agent=agent, index=run.index, error=reason)

    def _require_run(self) -> PipelineRun:
        if self._run is None:
            raise PipelineStateError("No pipeline run is active")
        return self._run

    def _require_review(self, agent: str) -> tuple[PipelineRun, PendingReview]:
        run = self._require_run()
        pending = run.pending
        if run.status is not PipelineStatus.AWAITING_REVIEW or pending is None:
            raise PipelineStateError(f"Pipeline is not awaiting review (current: {run.status.value})")
        if pending.agent != agent:
            raise PipelineStateError(f"Awaiting review of {pending.agent}, not {agent}")
        if pending.busy:
            raise PipelineStateError(f"Review of {agent} is already being validated")
        return run, pending

    def _is_active(self, run: PipelineRun) -> bool:
        return self._run is run

    def _emit(self, event_type: str, run: PipelineRun, **fields: Any) -> None:
        self.bus.publish(PipelineEvent(
            event_type=event_type,
            run_id=run.run_id,
            total=len(run.inputs.agents),
            **fields,
        ))


@lru_cache
def get_controller() -> PipelineController:
    """Process-wide controller built from settings."""
    settings = get_settings()
    bus = EventBus()
    if settings.REDIS_URL:
        bus.add_listener(RedisEventRelay(settings.REDIS_URL))
    return PipelineController(
        invoker=AgentInvoker(),
        validator=ValidationService(),
        gate=ReviewGate(FileReviewSurface(settings.REVIEW_DIR)),
        bus=bus,
        audit_dir=settings.AUDIT_DIR,
        auto_save_audit=settings.AUTO_SAVE_AUDIT,
    )
