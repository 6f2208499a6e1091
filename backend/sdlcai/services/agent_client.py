"""HTTP client for the remote agent service.

Two request/response exchanges are exposed:

- ``AgentInvoker.invoke``: run one agent on its assembled payload.
- ``ValidationService.validate``: submit one task's final value for acceptance.

Neither retries; retries are always a human decision taken at the controller.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from sdlcai.config import get_settings
from sdlcai.errors import InvocationError, ValidationError
from sdlcai.schemas.pipeline import TaskOutput
from sdlcai.services.agents.registry import AgentSpec, get_agent

logger = logging.getLogger(__name__)
settings = get_settings()

# ---------------------------------------------------------------------------
# Shared HTTP client (lazy init)
# ---------------------------------------------------------------------------

_http_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            base_url=settings.AGENT_SERVICE_URL,
            timeout=float(settings.AGENT_TIMEOUT),
        )
    return _http_client


async def close_client() -> None:
    """Close the shared client (called on app shutdown)."""
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


class _ServiceClient:
    """Base for collaborators that talk to the agent service."""

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else _get_client()


class AgentInvoker(_ServiceClient):
    """Sends an agent's payload to its endpoint and returns the task output."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        registry: dict[str, AgentSpec] | None = None,
    ):
        super().__init__(client)
        self._registry = registry

    async def invoke(
        self,
        agent: str,
        payload: dict[str, Any],
        spec: AgentSpec | None = None,
    ) -> TaskOutput:
        """POST ``payload`` to the agent's endpoint.

        ``spec`` overrides the invoker's own registry lookup, so a controller
        running a custom agent table reaches the right endpoint.
        """
        spec = spec or get_agent(agent, self._registry)
        logger.info("[%s] Invoking %s", agent, spec.endpoint)

        try:
            response = await self.client.post(spec.endpoint, json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise InvocationError(agent, "request timed out", status_code=408) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("[%s] Agent service returned HTTP %d", agent, status)
            raise InvocationError(agent, f"API call failed with status {status}", status_code=status) from e
        except httpx.HTTPError as e:
            raise InvocationError(agent, f"transport error: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise InvocationError(agent, "response body is not valid JSON") from e

        if not isinstance(data, dict):
            raise InvocationError(agent, f"expected a JSON object, got {type(data).__name__}")

        logger.info("[%s] Received %d tasks: %s", agent, len(data), ", ".join(data))
        return data


class ValidationService(_ServiceClient):
    """Submits a single task's final value; success is an acknowledgment."""

    def __init__(self, client: httpx.AsyncClient | None = None, endpoint: str | None = None):
        super().__init__(client)
        self.endpoint = endpoint or settings.VALIDATE_ENDPOINT

    async def validate(self, agent: str, task: str, value: Any) -> None:
        body = {"task_name": task, "modified_output": value}
        try:
            response = await self.client.post(self.endpoint, json=body)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ValidationError(agent, task, "request timed out", status_code=408) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = _error_detail(e.response)
            cause = f"validator returned status {status}" + (f": {detail}" if detail else "")
            raise ValidationError(agent, task, cause, status_code=status) from e
        except httpx.HTTPError as e:
            raise ValidationError(agent, task, f"transport error: {e}") from e

        logger.info("[%s] Task %s acknowledged", agent, task)


def _error_detail(response: httpx.Response) -> str:
    """Best-effort extraction of a FastAPI-style ``detail`` message."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict) and "detail" in data:
        return str(data["detail"])
    return ""
