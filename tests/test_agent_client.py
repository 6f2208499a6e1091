from __future__ import annotations

import httpx
import pytest

from conftest import BASE_URL
from sdlcai.errors import InvocationError, UnknownAgent, ValidationError
from sdlcai.services.agent_client import AgentInvoker, ValidationService


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)


@pytest.mark.asyncio
async def test_invoke_posts_payload_to_agent_endpoint(service, http_client):
    service.outputs["/agent/architecture"] = {"components": ["api"]}
    invoker = AgentInvoker(http_client)

    result = await invoker.invoke("Architecture", {"title": "T"})

    assert result == {"components": ["api"]}
    assert service.invocations == [("/agent/architecture", {"title": "T"})]


@pytest.mark.asyncio
async def test_invoke_non_success_status(service, http_client):
    service.outputs["/agent/requirements"] = 502
    invoker = AgentInvoker(http_client)

    with pytest.raises(InvocationError) as exc:
        await invoker.invoke("Requirements", {})
    assert exc.value.agent == "Requirements"
    assert exc.value.status_code == 502


@pytest.mark.asyncio
async def test_invoke_malformed_body():
    invoker = AgentInvoker(_client(lambda request: httpx.Response(200, text="<html>oops</html>")))

    with pytest.raises(InvocationError, match="not valid JSON"):
        await invoker.invoke("Requirements", {})


@pytest.mark.asyncio
async def test_invoke_non_object_body():
    invoker = AgentInvoker(_client(lambda request: httpx.Response(200, json=["a", "b"])))

    with pytest.raises(InvocationError, match="expected a JSON object"):
        await invoker.invoke("Requirements", {})


@pytest.mark.asyncio
async def test_invoke_transport_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    invoker = AgentInvoker(_client(handler))

    with pytest.raises(InvocationError, match="transport error"):
        await invoker.invoke("KnowledgeBase", {})


@pytest.mark.asyncio
async def test_invoke_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    invoker = AgentInvoker(_client(handler))

    with pytest.raises(InvocationError) as exc:
        await invoker.invoke("KnowledgeBase", {})
    assert exc.value.status_code == 408


@pytest.mark.asyncio
async def test_invoke_unknown_agent(http_client):
    with pytest.raises(UnknownAgent):
        await AgentInvoker(http_client).invoke("Deployer", {})


@pytest.mark.asyncio
async def test_invoke_does_not_retry(service, http_client):
    service.outputs["/agent/requirements"] = 503

    with pytest.raises(InvocationError):
        await AgentInvoker(http_client).invoke("Requirements", {})
    assert len(service.invocations) == 1


@pytest.mark.asyncio
async def test_validate_sends_task_and_value(service, http_client):
    await ValidationService(http_client).validate("Requirements", "functional", ["login"])

    assert service.validations == [("functional", ["login"])]


@pytest.mark.asyncio
async def test_validate_rejection_names_task(service, http_client):
    service.reject_tasks.add("functional")

    with pytest.raises(ValidationError) as exc:
        await ValidationService(http_client).validate("Requirements", "functional", [])
    assert exc.value.task == "functional"
    assert exc.value.agent == "Requirements"
    assert "functional is incomplete" in exc.value.cause
