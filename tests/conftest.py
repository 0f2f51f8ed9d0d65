"""Shared fixtures: small schemas and an engine over in-memory repositories."""

import pytest

from dble_pipeline.content_generation.workflows.pipeline import CONTENT_PIPELINE
from dble_pipeline.development.workflows.pipeline import DEV_PIPELINE
from dble_pipeline.pipeline.feedback import FeedbackDispatcher
from dble_pipeline.pipeline.persistence import InMemoryTimelineRepository, InMemoryWorkflowRepository
from dble_pipeline.pipeline.registry import SchemaRegistry
from dble_pipeline.pipeline.stages import PipelineSchema, StageDefinition
from dble_pipeline.pipeline.state import WorkflowEngine
from dble_pipeline.pipeline.timeline import Timeline

ABC = PipelineSchema("abc", [
    StageDefinition(key="A", label="Stage A", executor_kind="auto"),
    StageDefinition(key="B", label="Stage B", executor_kind="human",
                    approval_required=True, reject_target="A"),
    StageDefinition(key="C", label="Stage C", executor_kind="auto"),
])

# Gated stage that sends rework back to itself, plus a feedback edge
LOOP = PipelineSchema("loop", [
    StageDefinition(key="draft", label="Draft", executor_kind="agent"),
    StageDefinition(key="review", label="Review", executor_kind="human",
                    approval_required=True, reject_target="review"),
    StageDefinition(key="measure", label="Measure", executor_kind="auto",
                    feedback_target="draft"),
])


@pytest.fixture
def registry():
    return SchemaRegistry([CONTENT_PIPELINE, DEV_PIPELINE, ABC, LOOP])


@pytest.fixture
def timeline():
    return Timeline(InMemoryTimelineRepository())


@pytest.fixture
def signals():
    return []


@pytest.fixture
def dispatcher(signals):
    return FeedbackDispatcher([signals.append])


@pytest.fixture
def workflows_repo():
    return InMemoryWorkflowRepository()


@pytest.fixture
def engine(workflows_repo, timeline, registry, dispatcher):
    return WorkflowEngine(workflows_repo, timeline=timeline, registry=registry, feedback=dispatcher)


@pytest.fixture
def abc_workflow(engine):
    return engine.create_workflow("abc", title="ABC run", created_by="user-1")


def node_status(workflow: dict, stage_key: str) -> str:
    return next(n for n in workflow["nodes"] if n["stage_key"] == stage_key)["status"]


def node(workflow: dict, stage_key: str) -> dict:
    return next(n for n in workflow["nodes"] if n["stage_key"] == stage_key)
