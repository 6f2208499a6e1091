import pytest

from sdlcai.errors import InvalidSequence, MissingDependency, UnknownAgent
from sdlcai.schemas.pipeline import PipelineInputs
from sdlcai.services.agents.registry import AGENT_REGISTRY, get_agent, resolve, validate_sequence
from sdlcai.services.output_store import OutputStore

FULL = ["KnowledgeBase", "Requirements", "Architecture", "Skeletons", "Generator"]


def _inputs(agents):
    return PipelineInputs(requirements="reqs", context="ctx", title="T", agents=agents)


def test_default_registry_order():
    assert list(AGENT_REGISTRY) == FULL
    assert get_agent("Architecture").predecessors == ["Requirements", "KnowledgeBase"]


def test_unknown_agent():
    with pytest.raises(UnknownAgent):
        get_agent("Tester")


def test_validate_sequence_accepts_subsets():
    assert validate_sequence(FULL) == FULL
    assert validate_sequence(["Requirements", "Architecture"]) == ["Requirements", "Architecture"]
    assert validate_sequence(["Skeletons"]) == ["Skeletons"]


@pytest.mark.parametrize(
    "agents",
    [
        [],
        ["Requirements", "Requirements"],
        ["Architecture", "Requirements"],
        ["Generator", "Skeletons"],
    ],
)
def test_validate_sequence_rejects(agents):
    with pytest.raises(InvalidSequence):
        validate_sequence(agents)


def test_resolve_agent_without_predecessors_uses_shared_inputs():
    payload = resolve("Requirements", _inputs(FULL), OutputStore())
    assert payload == {"user_requirements": "reqs", "project_context": "ctx", "title": "T"}


def test_resolve_skeletons_omits_requirements_text():
    store = OutputStore()
    store.record("Architecture", {"components": ["api"]})

    payload = resolve("Skeletons", _inputs(["Architecture", "Skeletons"]), store)

    assert payload == {
        "project_context": "ctx",
        "title": "T",
        "architecture_output": {"components": ["api"]},
    }


def test_resolve_generator_collects_both_predecessors():
    store = OutputStore()
    store.record("Architecture", {"a": 1})
    store.record("Skeletons", {"s": 2})

    payload = resolve("Generator", _inputs(["Architecture", "Skeletons", "Generator"]), store)

    assert payload["architecture_output"] == {"a": 1}
    assert payload["skeleton_output"] == {"s": 2}


def test_resolve_missing_predecessor_in_run():
    with pytest.raises(MissingDependency) as exc:
        resolve("Architecture", _inputs(["Requirements", "Architecture"]), OutputStore())
    assert exc.value.missing == "Requirements"


def test_resolved_payload_does_not_alias_store():
    store = OutputStore()
    store.record("Requirements", {"functional": ["login"]})

    payload = resolve("Architecture", _inputs(["Requirements", "Architecture"]), store)
    payload["requirement_output"]["functional"].append("tampered")

    assert store.get("Requirements") == {"functional": ["login"]}
