"""ReviewGate: the human checkpoint between an agent's output and the next agent.

The gate pushes output to a review surface, where a human can inspect and edit
it, and later parses the edited content back into a task output. Waiting for
the human is not a blocking call: each presented output gets a ``ReviewTicket``
whose future resolves when the review is closed, or is cancelled when the run
is abandoned.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from sdlcai.errors import MalformedReview, PipelineStateError
from sdlcai.schemas.pipeline import TaskOutput

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Review surfaces
# ---------------------------------------------------------------------------

class ReviewSurface(ABC):
    """Where a human views and edits an agent's output."""

    @abstractmethod
    def open(self, agent: str, output: TaskOutput) -> str:
        """Show ``output`` for editing. Returns a locator for the artifact."""
        ...

    @abstractmethod
    def read(self, agent: str) -> str:
        """Return the current (possibly edited) content for ``agent``."""
        ...


class FileReviewSurface(ReviewSurface):
    """Writes each output as pretty JSON into a directory the human edits.

    Files are never deleted here; they double as the human's own record.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self._paths: dict[str, Path] = {}

    def open(self, agent: str, output: TaskOutput) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / f"{agent}_{int(time.time() * 1000)}.json"
        path.write_text(json.dumps(output, indent=2, ensure_ascii=False), encoding="utf-8")
        self._paths[agent] = path
        logger.info("[%s] Review file written: %s", agent, path)
        return str(path)

    def read(self, agent: str) -> str:
        path = self._paths.get(agent)
        if path is None:
            raise PipelineStateError(f"No review file found for agent {agent}")
        return path.read_text(encoding="utf-8")

    def path_for(self, agent: str) -> Path | None:
        return self._paths.get(agent)


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

@dataclass
class ReviewTicket:
    agent: str
    location: str
    decision: asyncio.Future = field(repr=False)
    opened_at: float = field(default_factory=time.time)


class ReviewGate:
    """Presents outputs for review and parses submissions back."""

    def __init__(self, surface: ReviewSurface):
        self.surface = surface
        self._tickets: dict[str, ReviewTicket] = {}

    async def present(
        self,
        agent: str,
        output: TaskOutput,
        *,
        is_current: Callable[[], bool] | None = None,
    ) -> ReviewTicket | None:
        """Push ``output`` to the surface and open a ticket for it.

        The surface write runs in a worker thread. If ``is_current`` reports
        the run went away meanwhile, no ticket is opened and None is returned.
        """
        location = await asyncio.to_thread(self.surface.open, agent, output)
        if is_current is not None and not is_current():
            return None
        ticket = ReviewTicket(
            agent=agent,
            location=location,
            decision=asyncio.get_running_loop().create_future(),
        )
        self._tickets[agent] = ticket
        return ticket

    def is_open(self, agent: str) -> bool:
        return agent in self._tickets

    async def wait(self, agent: str) -> TaskOutput:
        """Suspend until the review of ``agent`` is closed with its final output.

        Raises ``asyncio.CancelledError`` if the run is abandoned first.
        """
        ticket = self._tickets.get(agent)
        if ticket is None:
            raise PipelineStateError(f"No open review for agent {agent}")
        return await asyncio.shield(ticket.decision)

    def parse(self, agent: str, content: str | Mapping[str, Any] | None = None) -> TaskOutput:
        """Turn submitted content into a task output.

        ``None`` re-reads the review surface; a string is parsed as JSON; a
        mapping is taken as already structured.

        Raises:
            MalformedReview: content is not a JSON object keyed by task name.
        """
        if agent not in self._tickets:
            raise PipelineStateError(f"No open review for agent {agent}")

        if content is None:
            try:
                content = self.surface.read(agent)
            except (UnicodeDecodeError, OSError) as e:
                raise MalformedReview(agent, f"Could not read review of {agent}: {e}") from e

        if isinstance(content, str):
            try:
                data = json.loads(content)
            except json.JSONDecodeError as e:
                raise MalformedReview(
                    agent,
                    f"Invalid JSON format: {e.msg} (line {e.lineno}, column {e.colno}). "
                    "Please fix the errors and try again.",
                ) from e
        else:
            data = content

        if not isinstance(data, Mapping):
            raise MalformedReview(
                agent,
                f"Review of {agent} must be a JSON object of task name to value, "
                f"got {type(data).__name__}",
            )
        bad_keys = [k for k in data if not isinstance(k, str) or not k]
        if bad_keys:
            raise MalformedReview(agent, f"Invalid task names in review of {agent}: {bad_keys!r}")

        return dict(data)

    def close(self, agent: str, output: TaskOutput) -> None:
        ticket = self._tickets.pop(agent, None)
        if ticket is not None and not ticket.decision.done():
            ticket.decision.set_result(output)

    def discard(self) -> None:
        """Cancel every open ticket. Surface artifacts are left in place."""
        for ticket in self._tickets.values():
            if not ticket.decision.done():
                ticket.decision.cancel()
        self._tickets.clear()
