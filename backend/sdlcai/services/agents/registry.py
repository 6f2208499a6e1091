"""Declarative agent table and dependency resolution.

Each agent declares the shared run inputs it needs and the predecessor outputs
it consumes. Payloads are built uniformly from this table, so adding an agent
means adding a row here, not touching the controller.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from sdlcai.errors import InvalidSequence, MissingDependency, UnknownAgent
from sdlcai.schemas.pipeline import PipelineInputs
from sdlcai.services.output_store import OutputStore

logger = logging.getLogger(__name__)

# Payload key -> PipelineInputs attribute
_FULL_INPUTS = {
    "user_requirements": "requirements",
    "project_context": "context",
    "title": "title",
}
_CONTEXT_ONLY = {
    "project_context": "context",
    "title": "title",
}


@dataclass(frozen=True)
class AgentSpec:
    """One row of the agent table."""
    name: str
    label: str
    endpoint: str
    shared: dict[str, str] = field(default_factory=dict)
    depends_on: dict[str, str] = field(default_factory=dict)  # payload key -> predecessor

    @property
    def predecessors(self) -> list[str]:
        return list(self.depends_on.values())


# Order matters: it is the default run order.
AGENT_REGISTRY: dict[str, AgentSpec] = {
    spec.name: spec
    for spec in (
        AgentSpec("KnowledgeBase", "Knowledge base", "/agent/knowledge", shared=_FULL_INPUTS),
        AgentSpec("Requirements", "Requirements analysis", "/agent/requirements", shared=_FULL_INPUTS),
        AgentSpec(
            "Architecture", "Architecture design", "/agent/architecture",
            shared=_FULL_INPUTS,
            depends_on={
                "requirement_output": "Requirements",
                "knowledge_output": "KnowledgeBase",
            },
        ),
        AgentSpec(
            "Skeletons", "Code skeletons", "/agent/skeleton",
            shared=_CONTEXT_ONLY,
            depends_on={"architecture_output": "Architecture"},
        ),
        AgentSpec(
            "Generator", "Code generation", "/agent/codegen",
            shared=_CONTEXT_ONLY,
            depends_on={
                "architecture_output": "Architecture",
                "skeleton_output": "Skeletons",
            },
        ),
    )
}


def get_agent(name: str, registry: dict[str, AgentSpec] | None = None) -> AgentSpec:
    table = AGENT_REGISTRY if registry is None else registry
    try:
        return table[name]
    except KeyError:
        raise UnknownAgent(name) from None


def validate_sequence(
    agents: Iterable[str], registry: dict[str, AgentSpec] | None = None,
) -> list[str]:
    """Check that a sequence can run: known names, no repeats, predecessors first.

    A predecessor that is not part of the sequence at all is fine; the agent is
    then dispatched without that output.
    """
    sequence = list(agents)
    if not sequence:
        raise InvalidSequence("Agent sequence is empty")

    seen: set[str] = set()
    for name in sequence:
        spec = get_agent(name, registry)
        if name in seen:
            raise InvalidSequence(f"Agent {name} appears more than once")
        for pred in spec.predecessors:
            if pred in sequence and pred not in seen:
                raise InvalidSequence(f"Agent {name} is scheduled before its dependency {pred}")
        seen.add(name)
    return sequence


def resolve(
    agent: str,
    inputs: PipelineInputs,
    store: OutputStore,
    registry: dict[str, AgentSpec] | None = None,
) -> dict[str, Any]:
    """Build the exact request payload for ``agent``.

    Raises:
        MissingDependency: a predecessor in this run has no finalized output.
    """
    spec = get_agent(agent, registry)
    payload: dict[str, Any] = {key: getattr(inputs, attr) for key, attr in spec.shared.items()}

    for key, pred in spec.depends_on.items():
        if pred not in inputs.agents:
            logger.debug("[%s] %s not in this run, omitting %s", agent, pred, key)
            continue
        output = store.get(pred)
        if output is None:
            raise MissingDependency(agent, pred)
        payload[key] = copy.deepcopy(output)

    return payload
