"""Pytest configuration helpers.

This conftest ensures ``backend/`` is on `sys.path` so tests can import the
`sdlcai` package without installing it, and provides a fake agent service
served through ``httpx.MockTransport``.
"""
import json
import os
import sys

import httpx
import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend"))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from sdlcai.services.agent_client import AgentInvoker, ValidationService  # noqa: E402
from sdlcai.services.events import EventBus  # noqa: E402
from sdlcai.services.pipeline_controller import PipelineController  # noqa: E402
from sdlcai.services.review_gate import FileReviewSurface, ReviewGate  # noqa: E402

BASE_URL = "http://agents.test"

LIFECYCLE_EVENTS = {
    "run_started",
    "agent_started",
    "awaiting_review",
    "agent_validated",
    "run_completed",
    "run_failed",
}


class FakeAgentService:
    """In-memory stand-in for the remote agent service.

    ``outputs`` maps endpoint path -> JSON body to return, or an int status code.
    Tasks named in ``reject_tasks`` are refused by the validator.
    """

    def __init__(self):
        self.outputs: dict[str, object] = {}
        self.invocations: list[tuple[str, dict]] = []
        self.validations: list[tuple[str, object]] = []
        self.reject_tasks: set[str] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"null")
        path = request.url.path

        if path == "/agent/validate":
            self.validations.append((body["task_name"], body["modified_output"]))
            if body["task_name"] in self.reject_tasks:
                return httpx.Response(422, json={"detail": f"{body['task_name']} is incomplete"})
            return httpx.Response(200, json={"status": "ok"})

        self.invocations.append((path, body))
        result = self.outputs.get(path)
        if result is None:
            return httpx.Response(404, json={"detail": "Not Found"})
        if isinstance(result, int):
            return httpx.Response(result, json={"detail": "agent crashed"})
        return httpx.Response(200, json=result)

    def payload_for(self, path: str) -> dict:
        return next(body for p, body in self.invocations if p == path)


@pytest.fixture
def service() -> FakeAgentService:
    return FakeAgentService()


@pytest.fixture
def http_client(service) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(service.handler), base_url=BASE_URL)


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def bus(events) -> EventBus:
    bus = EventBus()
    bus.add_listener(events.append)
    return bus


@pytest.fixture
def review_dir(tmp_path):
    return tmp_path / "reviews"


@pytest.fixture
def controller(http_client, bus, review_dir, tmp_path) -> PipelineController:
    return PipelineController(
        invoker=AgentInvoker(http_client),
        validator=ValidationService(http_client),
        gate=ReviewGate(FileReviewSurface(review_dir)),
        bus=bus,
        audit_dir=tmp_path / "audit",
    )


def lifecycle(events) -> list[tuple[str, object]]:
    """(event_type, index) pairs, without per-task noise."""
    return [(e.event_type, e.index) for e in events if e.event_type in LIFECYCLE_EVENTS]
