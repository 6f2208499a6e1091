"""Error taxonomy for the agent pipeline.

Every failure the controller reports carries the agent (and task, where one
applies) plus a human-readable cause.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all orchestrator errors."""


class UnknownAgent(PipelineError):
    """An agent name that is not present in the registry."""

    def __init__(self, agent: str):
        super().__init__(f"Unknown agent: {agent}")
        self.agent = agent


class InvalidSequence(PipelineError):
    """The requested agent sequence cannot be run."""


class PipelineStateError(PipelineError):
    """A command was issued in a state that does not accept it."""


class MissingDependency(PipelineError):
    """A declared predecessor has no finalized output.

    The controller's ordering makes this unreachable; seeing it means a defect.
    """

    def __init__(self, agent: str, missing: str):
        super().__init__(f"Agent {agent} requires output of {missing}, which is not finalized")
        self.agent = agent
        self.missing = missing


class InvocationError(PipelineError):
    """The remote agent service failed to produce an output."""

    def __init__(self, agent: str, cause: str, status_code: int = 0):
        super().__init__(f"Agent {agent} failed: {cause}")
        self.agent = agent
        self.cause = cause
        self.status_code = status_code


class MalformedReview(PipelineError):
    """Reviewed content could not be parsed back into a task output."""

    def __init__(self, agent: str, message: str):
        super().__init__(message)
        self.agent = agent


class ValidationError(PipelineError):
    """The remote validator rejected a single task."""

    def __init__(self, agent: str, task: str, cause: str, status_code: int = 0):
        super().__init__(f"Task {task} of {agent} failed validation: {cause}")
        self.agent = agent
        self.task = task
        self.cause = cause
        self.status_code = status_code
