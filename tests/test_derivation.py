"""Current-stage and workflow-status derivation tests."""

import itertools

import pytest

from dble_pipeline.content_generation.workflows.pipeline import CONTENT_PIPELINE
from dble_pipeline.development.workflows.pipeline import DEV_PIPELINE
from dble_pipeline.pipeline.derivation import (
    active_stage,
    derive_current_stage,
    derive_status,
    frontier_stage,
)

from conftest import ABC

STATUSES = ["pending", "running", "completed", "failed", "waiting_approval"]


def nodes_for(schema, statuses):
    return [{"stage_key": key, "status": status} for key, status in zip(schema.keys, statuses)]


def test_derivation_is_deterministic_for_every_status_combination():
    for statuses in itertools.product(STATUSES, repeat=len(ABC)):
        nodes = nodes_for(ABC, statuses)
        first = derive_current_stage(ABC, nodes)
        assert derive_current_stage(ABC, nodes) == first
        assert derive_status(ABC, nodes) == derive_status(ABC, nodes)


@pytest.mark.parametrize("schema", [CONTENT_PIPELINE, DEV_PIPELINE], ids=lambda s: s.name)
@pytest.mark.parametrize("active", ["running", "waiting_approval"])
def test_active_and_frontier_rules_agree_on_linear_progress(schema, active):
    for idx, key in enumerate(schema.keys):
        statuses = ["completed"] * idx + [active] + ["pending"] * (len(schema) - idx - 1)
        nodes = nodes_for(schema, statuses)
        assert active_stage(schema, nodes) == key
        assert frontier_stage(schema, nodes) == key
        assert derive_current_stage(schema, nodes) == key


def test_active_node_wins_over_earlier_pending_node():
    nodes = nodes_for(ABC, ["pending", "waiting_approval", "pending"])
    assert frontier_stage(ABC, nodes) == "A"
    assert derive_current_stage(ABC, nodes) == "B"


def test_earliest_active_node_wins():
    nodes = nodes_for(ABC, ["completed", "running", "running"])
    assert derive_current_stage(ABC, nodes) == "B"


def test_all_completed_has_no_current_stage():
    nodes = nodes_for(ABC, ["completed"] * 3)
    assert derive_current_stage(ABC, nodes) is None
    assert derive_status(ABC, nodes) == "completed"


def test_missing_nodes_count_as_pending():
    nodes = [{"stage_key": "A", "status": "completed"}]
    assert derive_current_stage(ABC, nodes) == "B"
    assert derive_status(ABC, []) == "pending"


@pytest.mark.parametrize("statuses, expected", [
    (["pending", "pending", "pending"], "pending"),
    (["running", "pending", "pending"], "running"),
    (["completed", "waiting_approval", "pending"], "waiting_approval"),
    (["completed", "failed", "pending"], "failed"),
    (["pending", "failed", "pending"], "running"),
    (["completed", "pending", "pending"], "running"),
    (["completed", "completed", "completed"], "completed"),
])
def test_derived_status(statuses, expected):
    assert derive_status(ABC, nodes_for(ABC, statuses)) == expected


@pytest.mark.parametrize("control", ["cancelled", "paused"])
def test_control_status_short_circuits(control):
    nodes = nodes_for(ABC, ["completed", "running", "pending"])
    assert derive_status(ABC, nodes, control_status=control) == control
