"""Stage schema validation and registry tests."""

import pytest

from dble_pipeline.content_generation.workflows.pipeline import CONTENT_PIPELINE
from dble_pipeline.development.workflows.pipeline import DEV_PIPELINE
from dble_pipeline.pipeline.errors import ConfigurationError, NotFound
from dble_pipeline.pipeline.registry import SchemaRegistry, default_registry
from dble_pipeline.pipeline.stages import PipelineSchema, StageDefinition


def stage(key, **kwargs):
    kwargs.setdefault("executor_kind", "auto")
    return StageDefinition(key=key, label=key.title(), **kwargs)


def test_shipped_schemas_shape():
    assert len(CONTENT_PIPELINE) == 14
    assert len(DEV_PIPELINE) == 13
    assert CONTENT_PIPELINE.keys[0] == "strategy_assets"
    assert CONTENT_PIPELINE.keys[-1] == "reinforcement_learning"
    assert DEV_PIPELINE.keys[0] == "spec_intake"
    assert DEV_PIPELINE.keys[-1] == "done"


def test_shipped_gates_and_loops():
    assert CONTENT_PIPELINE.get("brand_qa").reject_target == "concepts"
    assert CONTENT_PIPELINE.get("fdm_review").approval_required
    assert CONTENT_PIPELINE.get("analytics").feedback_target == "scheduling"
    assert CONTENT_PIPELINE.get("reinforcement_learning").feedback_target == "research"

    assert DEV_PIPELINE.get("plan_approval").reject_target == "planner"
    assert DEV_PIPELINE.get("qa_review").reject_target == "developer"
    assert DEV_PIPELINE.get("client_review").feedback_target == "qa_review"


@pytest.mark.parametrize("schema", [CONTENT_PIPELINE, DEV_PIPELINE], ids=lambda s: s.name)
def test_every_gate_has_backward_reject_target(schema):
    for s in schema:
        if s.approval_required:
            assert schema.index(s.reject_target) <= schema.index(s.key)
        if s.feedback_target:
            assert schema.index(s.feedback_target) <= schema.index(s.key)


def test_empty_schema_rejected():
    with pytest.raises(ConfigurationError):
        PipelineSchema("empty", [])


def test_duplicate_key_rejected():
    with pytest.raises(ConfigurationError, match="Duplicate"):
        PipelineSchema("dup", [stage("a"), stage("a")])


def test_unknown_executor_kind_rejected():
    with pytest.raises(ConfigurationError, match="executor kind"):
        PipelineSchema("bad", [stage("a", executor_kind="robot")])


def test_gate_without_reject_target_rejected():
    with pytest.raises(ConfigurationError, match="reject_target"):
        PipelineSchema("gate", [stage("a"), stage("b", executor_kind="human", approval_required=True)])


def test_forward_reject_target_rejected():
    with pytest.raises(ConfigurationError, match="occurs after"):
        PipelineSchema("fwd", [
            stage("a", executor_kind="human", approval_required=True, reject_target="b"),
            stage("b"),
        ])


def test_forward_feedback_target_rejected():
    with pytest.raises(ConfigurationError):
        PipelineSchema("fwd", [stage("a", feedback_target="b"), stage("b")])


def test_unknown_target_rejected():
    with pytest.raises(ConfigurationError, match="not a stage"):
        PipelineSchema("ghost", [stage("a", feedback_target="zzz")])


def test_self_reject_target_allowed():
    schema = PipelineSchema("self", [stage("a", executor_kind="human", approval_required=True,
                                           reject_target="a")])
    assert schema.get("a").reject_target == "a"


def test_schema_navigation():
    schema = PipelineSchema("nav", [stage("a"), stage("b"), stage("c")])
    assert schema.index("b") == 1
    assert schema.next_stage("a") == "b"
    assert schema.next_stage("c") is None
    assert schema.keys_between("a", "c") == ["a", "b", "c"]
    assert "b" in schema
    with pytest.raises(NotFound):
        schema.get("zzz")


def test_categories_group_stages_in_order():
    categories = CONTENT_PIPELINE.categories()
    assert categories["Input"][0] == "strategy_assets"
    assert sum(len(keys) for keys in categories.values()) == len(CONTENT_PIPELINE)


def test_registry_lookup_and_duplicates():
    registry = SchemaRegistry()
    registry.register_stages("tiny", [stage("only")])
    assert "tiny" in registry
    assert registry.get("tiny").keys == ["only"]

    with pytest.raises(ConfigurationError):
        registry.register_stages("tiny", [stage("other")])
    with pytest.raises(NotFound):
        registry.get("missing")


def test_default_registry_holds_builtin_pipelines():
    registry = default_registry()
    assert set(registry.names()) >= {"content", "development"}
    assert registry.get("content") is CONTENT_PIPELINE
