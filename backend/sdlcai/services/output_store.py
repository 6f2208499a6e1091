"""OutputStore: finalized agent outputs for the active run."""

from __future__ import annotations

import copy
import logging
from typing import Any, Iterator

from sdlcai.errors import PipelineStateError
from sdlcai.schemas.pipeline import TaskOutput

logger = logging.getLogger(__name__)


class OutputStore:
    """Agent name -> TaskOutput, insertion-ordered by completion.

    Only the PipelineController writes here. An entry is recorded once, after
    review; afterwards only acknowledged per-task corrections may change it.
    """

    def __init__(self) -> None:
        self._outputs: dict[str, TaskOutput] = {}

    def record(self, agent: str, output: TaskOutput) -> None:
        if agent in self._outputs:
            raise PipelineStateError(f"Output for {agent} is already finalized")
        self._outputs[agent] = copy.deepcopy(dict(output))
        logger.info("Finalized output for %s (%d tasks)", agent, len(output))

    def update_task(self, agent: str, task: str, value: Any) -> None:
        entry = self._outputs.get(agent)
        if entry is None or task not in entry:
            raise PipelineStateError(f"No finalized task {task} for {agent}")
        entry[task] = copy.deepcopy(value)

    def get(self, agent: str) -> TaskOutput | None:
        return self._outputs.get(agent)

    def agents(self) -> list[str]:
        return list(self._outputs)

    def snapshot(self) -> dict[str, TaskOutput]:
        """Deep copy of all entries, safe to hand to collaborators."""
        return copy.deepcopy(self._outputs)

    def clear(self) -> None:
        self._outputs.clear()

    def __contains__(self, agent: object) -> bool:
        return agent in self._outputs

    def __len__(self) -> int:
        return len(self._outputs)

    def __iter__(self) -> Iterator[str]:
        return iter(self._outputs)
