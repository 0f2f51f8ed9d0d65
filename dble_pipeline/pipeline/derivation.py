"""
Pure derivations of workflow-level state from node state.

Nothing here is stored: current stage and overall status are recomputed on
every read from the persisted nodes so they can never drift out of sync.
"""

from typing import Dict, Iterable, Optional

from dble_pipeline.pipeline.stages import PipelineSchema
from dble_pipeline.pipeline.status import NodeStatus, WorkflowStatus


ACTIVE_STATUSES = (NodeStatus.RUNNING.value, NodeStatus.WAITING_APPROVAL.value)


def _status_map(nodes: Iterable[dict]) -> Dict[str, str]:
    return {n["stage_key"]: n.get("status", NodeStatus.PENDING.value) for n in nodes}


def active_stage(schema: PipelineSchema, nodes: Iterable[dict]) -> Optional[str]:
    """Earliest stage (schema order) that is running or waiting for approval."""
    statuses = _status_map(nodes)
    for key in schema.keys:
        if statuses.get(key) in ACTIVE_STATUSES:
            return key
    return None


def frontier_stage(schema: PipelineSchema, nodes: Iterable[dict]) -> Optional[str]:
    """Earliest stage (schema order) that is not completed. Missing nodes count as pending."""
    statuses = _status_map(nodes)
    for key in schema.keys:
        if statuses.get(key, NodeStatus.PENDING.value) != NodeStatus.COMPLETED.value:
            return key
    return None


def derive_current_stage(schema: PipelineSchema, nodes: Iterable[dict]) -> Optional[str]:
    """
    Current stage of a workflow:
    1. the earliest running/waiting_approval node, else
    2. the earliest node that is not completed, else
    3. None (every node completed).
    """
    nodes = list(nodes)
    return active_stage(schema, nodes) or frontier_stage(schema, nodes)


def derive_status(schema: PipelineSchema, nodes: Iterable[dict],
                  control_status: Optional[str] = None) -> str:
    """
    Overall workflow status.

    cancelled/paused are set externally and win over node state. A workflow
    that has started but has nothing running, waiting or failed at its
    current stage is between stages and reported as running.
    """
    if control_status:
        return control_status

    nodes = list(nodes)
    statuses = _status_map(nodes)
    values = [statuses.get(key, NodeStatus.PENDING.value) for key in schema.keys]

    if all(v == NodeStatus.COMPLETED.value for v in values):
        return WorkflowStatus.COMPLETED.value
    if NodeStatus.RUNNING.value in values:
        return WorkflowStatus.RUNNING.value
    if NodeStatus.WAITING_APPROVAL.value in values:
        return WorkflowStatus.WAITING_APPROVAL.value
    if all(v == NodeStatus.PENDING.value for v in values):
        return WorkflowStatus.PENDING.value

    current = derive_current_stage(schema, nodes)
    if current and statuses.get(current) == NodeStatus.FAILED.value:
        return WorkflowStatus.FAILED.value
    return WorkflowStatus.RUNNING.value
