"""
Workflow State Machine

Tracks, for every workflow instance, the execution record of each stage
(its node), the human approval gates and the rollbacks they trigger.

Responsibilities:
- Node lifecycle: start / complete / fail, with explicit retry from failed
- Approval gates: approve advances, reject rolls back to the reject target
- Feedback loops: advisory signals emitted when a stage completes
- Workflow control: cancel (terminal), pause / resume
- Per-stage settings stored under config.stage_settings (merge by key)
- Audit: approval records, transition history, timeline status cards

Current stage and overall status are never stored; they are derived from
the nodes on every read. Each operation is applied under a per-workflow lock
and persisted as one versioned document write, so a rollback is all or
nothing for any reader.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable

from dble_pipeline.pipeline.derivation import derive_current_stage, derive_status
from dble_pipeline.pipeline.errors import InvalidTransition, ConfigurationError, NotFound, StaleWrite
from dble_pipeline.pipeline.feedback import FeedbackDispatcher, FeedbackSignal
from dble_pipeline.pipeline.persistence.repository import WorkflowRepository
from dble_pipeline.pipeline.registry import SchemaRegistry, default_registry
from dble_pipeline.pipeline.stages import PipelineSchema
from dble_pipeline.pipeline.status import NodeStatus, WorkflowStatus
from dble_pipeline.pipeline.timeline import Timeline, Visibility

logger = logging.getLogger(__name__)

PERSISTED_FIELDS = (
    "title", "description", "config", "nodes", "approvals",
    "feedback_loops", "control_status", "updated_at",
)


@dataclass
class _Outcome:
    """Side effects collected while mutating, applied only after the write commits."""
    transitions: List[dict] = field(default_factory=list)
    status_posts: List[dict] = field(default_factory=list)
    approval_posts: List[dict] = field(default_factory=list)
    signals: List[FeedbackSignal] = field(default_factory=list)


class WorkflowEngine:
    """Single parameterized engine for every pipeline schema."""

    def __init__(self, workflows: WorkflowRepository, timeline: Optional[Timeline] = None,
                 registry: Optional[SchemaRegistry] = None,
                 feedback: Optional[FeedbackDispatcher] = None):
        self.workflows = workflows
        self.timeline = timeline
        self.registry = registry or default_registry()
        self.feedback = feedback or FeedbackDispatcher()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # --- Workflow Lifecycle ---

    def create_workflow(self, pipeline: str, title: str, created_by: str,
                        description: str = None, config: dict = None,
                        organization_id: str = None, brand_id: str = None,
                        project_id: str = None) -> dict:
        """Create a workflow and initialize one pending node per stage."""
        schema = self.registry.get(pipeline)
        now = datetime.utcnow()
        doc = {
            "pipeline": schema.name,
            "organization_id": organization_id,
            "brand_id": brand_id,
            "project_id": project_id,
            "title": title,
            "description": description,
            "config": config or {},
            "control_status": None,
            "nodes": [_new_node(schema, stage.key, now) for stage in schema],
            "approvals": [],
            "feedback_loops": [],
            "version": 0,
            "created_by": created_by,
            "created_at": now,
            "updated_at": now,
        }
        workflow_id = self.workflows.insert_workflow(doc)
        logger.info("[pipeline] created %s workflow %s (%s)", schema.name, workflow_id, title)
        return self.get_workflow(workflow_id)

    def get_workflow(self, workflow_id: str, include_nodes: bool = True) -> dict:
        doc = self._load(workflow_id)
        return _workflow_view(doc, self.registry.get(doc["pipeline"]), include_nodes)

    def list_workflows(self, pipeline: str = None, organization_id: str = None,
                       brand_id: str = None, project_id: str = None) -> List[dict]:
        filters = {k: v for k, v in {
            "pipeline": pipeline,
            "organization_id": organization_id,
            "brand_id": brand_id,
            "project_id": project_id,
        }.items() if v is not None}
        return [
            _workflow_view(doc, self.registry.get(doc["pipeline"]), include_nodes=False)
            for doc in self.workflows.list_workflows(filters)
        ]

    def update_workflow(self, workflow_id: str, title: str = None, description: str = None) -> dict:
        """Update workflow metadata. Node state is only changed through transitions."""
        def mutate(doc, schema, outcome):
            if title is not None:
                doc["title"] = title
            if description is not None:
                doc["description"] = description

        return self._apply(workflow_id, "update", mutate, require_active=False)

    def get_nodes(self, workflow_id: str) -> List[dict]:
        doc = self._load(workflow_id)
        return _sorted_nodes(doc)

    def get_node(self, workflow_id: str, stage_key: str) -> dict:
        doc = self._load(workflow_id)
        schema = self.registry.get(doc["pipeline"])
        return _node(doc, schema, stage_key)

    def current_stage(self, workflow_id: str) -> Optional[str]:
        doc = self._load(workflow_id)
        return derive_current_stage(self.registry.get(doc["pipeline"]), doc["nodes"])

    # --- Node Lifecycle (driver boundary) ---

    def start_stage(self, workflow_id: str, stage_key: str, input_data: dict = None,
                    actor_id: str = None) -> dict:
        """pending -> running, or failed -> running as an explicit retry."""
        def mutate(doc, schema, outcome):
            node = _node(doc, schema, stage_key)
            _require(node, "start", (NodeStatus.PENDING, NodeStatus.FAILED), workflow_id)
            now = datetime.utcnow()
            retry = node["status"] == NodeStatus.FAILED.value

            if node.get("reentry_pending"):
                node["iteration"] = node.get("iteration", 0) + 1
                node["reentry_pending"] = False
            node.update({
                "status": NodeStatus.RUNNING.value,
                "started_at": now,
                "completed_at": None,
                "error": None,
                "updated_at": now,
            })
            if input_data is not None:
                node["input_data"] = input_data

            label = schema.get(stage_key).label
            self._record(outcome, doc, stage_key, stage_key, "retry" if retry else "start", actor_id)
            self._post(outcome, stage_key, node["status"], f"{label} {'restarted' if retry else 'started'}")

        return self._apply(workflow_id, "start", mutate)

    def complete_stage(self, workflow_id: str, stage_key: str, output: dict = None,
                       actor_id: str = None) -> dict:
        """
        running -> completed, or running -> waiting_approval for gated stages.
        Finishing the work of a gated stage never completes its gate.
        """
        def mutate(doc, schema, outcome):
            node = _node(doc, schema, stage_key)
            _require(node, "complete", (NodeStatus.RUNNING,), workflow_id)
            stage = schema.get(stage_key)
            now = datetime.utcnow()
            node["output_data"] = output or {}
            node["updated_at"] = now

            if stage.approval_required:
                node["status"] = NodeStatus.WAITING_APPROVAL.value
                self._record(outcome, doc, stage_key, stage_key, "submit_for_approval", actor_id)
                self._post(outcome, stage_key, node["status"], f"{stage.label} is waiting for approval")
                return

            node["status"] = NodeStatus.COMPLETED.value
            node["completed_at"] = now
            self._record(outcome, doc, stage_key, _derived_stage(doc, schema), "complete", actor_id)
            self._post(outcome, stage_key, node["status"], f"{stage.label} completed")
            self._emit_feedback(outcome, doc, schema, node, reason="stage_completed")

        return self._apply(workflow_id, "complete", mutate)

    def fail_stage(self, workflow_id: str, stage_key: str, error: str, actor_id: str = None) -> dict:
        def mutate(doc, schema, outcome):
            node = _node(doc, schema, stage_key)
            _require(node, "fail", (NodeStatus.RUNNING,), workflow_id)
            now = datetime.utcnow()
            node.update({
                "status": NodeStatus.FAILED.value,
                "error": error,
                "completed_at": now,
                "updated_at": now,
            })
            label = schema.get(stage_key).label
            self._record(outcome, doc, stage_key, stage_key, "fail", actor_id, {"error": error})
            self._post(outcome, stage_key, node["status"], f"{label} failed: {error}",
                       visibility=Visibility.INTERNAL.value)

        return self._apply(workflow_id, "fail", mutate)

    # --- Approval Gates ---

    def approve(self, workflow_id: str, stage_key: str, actor_id: str, note: str = None) -> dict:
        """waiting_approval -> completed."""
        def mutate(doc, schema, outcome):
            stage, node = _gated_node(doc, schema, stage_key, "approve", workflow_id)
            now = datetime.utcnow()
            record = _approval_record(doc, node, True, actor_id, note, now)
            doc["approvals"].append(record)
            node.update({
                "status": NodeStatus.COMPLETED.value,
                "completed_at": now,
                "updated_at": now,
            })
            self._record(outcome, doc, stage_key, _derived_stage(doc, schema), "approval", actor_id,
                         {"note": note})
            outcome.approval_posts.append({"record": record, "message": f"{stage.label} approved"})
            self._emit_feedback(outcome, doc, schema, node, reason=note or "approved")

        return self._apply(workflow_id, "approve", mutate)

    def reject(self, workflow_id: str, stage_key: str, actor_id: str, note: str = None) -> dict:
        """
        waiting_approval -> failed, rolling every stage from the reject target
        up to the rejected stage back to pending. The target's iteration is
        bumped now; the stages in between bump theirs when they start again.
        """
        def mutate(doc, schema, outcome):
            stage, node = _gated_node(doc, schema, stage_key, "reject", workflow_id)
            target = stage.reject_target
            if not target:
                raise ConfigurationError(
                    f"Approval stage '{stage_key}' has no reject_target",
                    pipeline=schema.name, stage_key=stage_key,
                )

            now = datetime.utcnow()
            record = _approval_record(doc, node, False, actor_id, note, now)
            doc["approvals"].append(record)

            reason = note or "rejected"
            if target == stage_key:
                _reset_node(node, now)
                node["iteration"] = node.get("iteration", 0) + 1
                node["error"] = reason
            else:
                for key in schema.keys_between(target, stage_key)[:-1]:
                    rework = _node(doc, schema, key)
                    _reset_node(rework, now)
                    if key == target:
                        rework["iteration"] = rework.get("iteration", 0) + 1
                    else:
                        rework["reentry_pending"] = True
                node.update({
                    "status": NodeStatus.FAILED.value,
                    "error": reason,
                    "output_data": {},
                    "completed_at": now,
                    "reentry_pending": True,
                    "updated_at": now,
                })

            target_label = schema.get(target).label
            self._record(outcome, doc, stage_key, target, "rejection", actor_id,
                         {"note": note, "from_stage": stage_key})
            outcome.approval_posts.append({
                "record": record,
                "message": f"{stage.label} rejected" + (f": {note}" if note else ""),
            })
            self._post(outcome, stage_key, NodeStatus.FAILED.value,
                       f"{stage.label} rejected, rolling back to {target_label}")

        return self._apply(workflow_id, "reject", mutate)

    # --- Workflow Control ---

    def cancel(self, workflow_id: str, actor_id: str = None) -> dict:
        """Terminal and idempotent. A completed workflow cannot be cancelled."""
        def mutate(doc, schema, outcome):
            if doc.get("control_status") == WorkflowStatus.CANCELLED.value:
                return False
            status = derive_status(schema, doc["nodes"], doc.get("control_status"))
            if status == WorkflowStatus.COMPLETED.value:
                raise InvalidTransition("cancel", status, _OPEN_STATUSES, workflow_id=workflow_id)
            doc["control_status"] = WorkflowStatus.CANCELLED.value
            self._record(outcome, doc, None, None, "cancel", actor_id)

        return self._apply(workflow_id, "cancel", mutate, require_active=False)

    def pause(self, workflow_id: str, actor_id: str = None) -> dict:
        def mutate(doc, schema, outcome):
            if doc.get("control_status") == WorkflowStatus.PAUSED.value:
                return False
            _require_open(doc, schema, "pause", workflow_id)
            doc["control_status"] = WorkflowStatus.PAUSED.value
            self._record(outcome, doc, None, None, "pause", actor_id)

        return self._apply(workflow_id, "pause", mutate, require_active=False)

    def resume(self, workflow_id: str, actor_id: str = None) -> dict:
        def mutate(doc, schema, outcome):
            if doc.get("control_status") != WorkflowStatus.PAUSED.value:
                status = derive_status(schema, doc["nodes"], doc.get("control_status"))
                raise InvalidTransition("resume", status, [WorkflowStatus.PAUSED.value],
                                        workflow_id=workflow_id)
            doc["control_status"] = None
            self._record(outcome, doc, None, None, "resume", actor_id)

        return self._apply(workflow_id, "resume", mutate, require_active=False)

    # --- Stage Settings ---

    def get_stage_settings(self, workflow_id: str, stage_key: str = None) -> dict:
        doc = self._load(workflow_id)
        settings = (doc.get("config") or {}).get("stage_settings") or {}
        if stage_key is None:
            return settings
        self.registry.get(doc["pipeline"]).get(stage_key)
        return settings.get(stage_key, {})

    def update_stage_settings(self, workflow_id: str, stage_key: str, values: Dict[str, Any],
                              expected_version: int = None) -> dict:
        """
        Merge values key-by-key into config.stage_settings[stage_key].
        Passing expected_version turns a concurrent change into StaleWrite.
        """
        return self.update_settings(workflow_id, {stage_key: values}, expected_version)

    def update_settings(self, workflow_id: str, settings_by_stage: Dict[str, Dict[str, Any]],
                        expected_version: int = None) -> dict:
        """Merge settings for several stages in a single write."""
        def mutate(doc, schema, outcome):
            for stage_key in settings_by_stage:
                schema.get(stage_key)
            if expected_version is not None and doc.get("version", 0) != expected_version:
                raise StaleWrite(
                    f"Workflow {workflow_id} changed since version {expected_version}",
                    workflow_id=workflow_id,
                    expected_version=expected_version, current_version=doc.get("version", 0),
                )
            config = doc.setdefault("config", {})
            stage_settings = config.setdefault("stage_settings", {})
            for stage_key, values in settings_by_stage.items():
                stage_settings.setdefault(stage_key, {}).update(values)

        return self._apply(workflow_id, "update settings", mutate, require_active=False)

    # --- Audit ---

    def get_approvals(self, workflow_id: str) -> List[dict]:
        return list(self._load(workflow_id).get("approvals", []))

    def get_feedback_log(self, workflow_id: str) -> List[dict]:
        return list(self._load(workflow_id).get("feedback_loops", []))

    def get_transitions(self, workflow_id: str) -> List[dict]:
        self._load(workflow_id)
        return self.workflows.list_transitions(workflow_id)

    # --- Internals ---

    def _lock_for(self, workflow_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(workflow_id)
            if lock is None:
                lock = self._locks[workflow_id] = threading.Lock()
            return lock

    def _load(self, workflow_id: str) -> dict:
        doc = self.workflows.get_workflow(workflow_id)
        if not doc:
            raise NotFound(f"Workflow {workflow_id} not found", workflow_id=workflow_id)
        return doc

    def _apply(self, workflow_id: str, operation: str,
               mutate: Callable[[dict, PipelineSchema, _Outcome], Optional[bool]],
               require_active: bool = True) -> dict:
        """
        Load, mutate a private copy, then persist it in one versioned write.
        Any exception before the write leaves stored state untouched.
        """
        outcome = _Outcome()
        with self._lock_for(workflow_id):
            doc = self._load(workflow_id)
            schema = self.registry.get(doc["pipeline"])
            if require_active:
                _require_open(doc, schema, operation, workflow_id)

            changed = mutate(doc, schema, outcome)
            if changed is False:
                return _workflow_view(doc, schema)

            version = doc.get("version", 0)
            doc["updated_at"] = datetime.utcnow()
            fields = {k: doc.get(k) for k in PERSISTED_FIELDS}
            if not self.workflows.update_workflow(workflow_id, fields, version):
                raise StaleWrite(f"Workflow {workflow_id} was modified concurrently",
                                 workflow_id=workflow_id, operation=operation)
            doc["version"] = version + 1
            self._publish(workflow_id, outcome)

        return _workflow_view(doc, schema)

    def _publish(self, workflow_id: str, outcome: _Outcome):
        """
        Record transitions, post timeline cards and emit feedback for a committed write.
        Runs under the workflow lock so records keep commit order. The write has
        already landed, so a failed record or post is logged, not raised.
        """
        for t in outcome.transitions:
            try:
                self.workflows.append_transition(t)
            except Exception:
                logger.warning("[pipeline] %s: failed to record %s transition", workflow_id,
                               t["trigger"], exc_info=True)
                continue
            logger.info("[pipeline] %s: %s %s -> %s", workflow_id, t["trigger"],
                        t["from_stage"], t["to_stage"])
        if self.timeline is not None:
            for post in outcome.approval_posts:
                try:
                    self.timeline.post_approval(workflow_id, post["record"], post["message"])
                except Exception:
                    logger.warning("[pipeline] %s: failed to post approval card for %s",
                                   workflow_id, post["record"].get("stage_key"), exc_info=True)
            for post in outcome.status_posts:
                try:
                    self.timeline.post_status(workflow_id, **post)
                except Exception:
                    logger.warning("[pipeline] %s: failed to post status for %s",
                                   workflow_id, post["stage"], exc_info=True)
        for signal in outcome.signals:
            self.feedback.emit(signal)

    @staticmethod
    def _record(outcome: _Outcome, doc: dict, from_stage: Optional[str], to_stage: Optional[str],
                trigger: str, actor_id: Optional[str], metadata: dict = None):
        outcome.transitions.append({
            "workflow_id": doc["_id"],
            "from_stage": from_stage,
            "to_stage": to_stage,
            "trigger": trigger,
            "actor_id": actor_id,
            "metadata": metadata or {},
            "timestamp": datetime.utcnow(),
        })

    @staticmethod
    def _post(outcome: _Outcome, stage: str, status: str, message: str,
              visibility: str = Visibility.PUBLIC.value):
        outcome.status_posts.append({
            "stage": stage, "status": status, "message": message, "visibility": visibility,
        })

    @staticmethod
    def _emit_feedback(outcome: _Outcome, doc: dict, schema: PipelineSchema, node: dict, reason: str):
        target = schema.get(node["stage_key"]).feedback_target
        if not target:
            return
        signal = FeedbackSignal(
            workflow_id=doc["_id"],
            from_stage=node["stage_key"],
            to_stage=target,
            reason=reason,
            iteration=node.get("iteration", 0),
        )
        doc.setdefault("feedback_loops", []).append(signal.to_dict())
        outcome.signals.append(signal)


# --- Helpers ---

_OPEN_STATUSES = [
    WorkflowStatus.PENDING.value,
    WorkflowStatus.RUNNING.value,
    WorkflowStatus.WAITING_APPROVAL.value,
    WorkflowStatus.FAILED.value,
]


def _new_node(schema: PipelineSchema, stage_key: str, now: datetime) -> dict:
    stage = schema.get(stage_key)
    return {
        "stage_key": stage.key,
        "stage_index": schema.index(stage.key),
        "executor_kind": stage.executor_kind,
        "status": NodeStatus.PENDING.value,
        "iteration": 0,
        "reentry_pending": False,
        "input_data": {},
        "output_data": {},
        "error": None,
        "started_at": None,
        "completed_at": None,
        "updated_at": now,
    }


def _node(doc: dict, schema: PipelineSchema, stage_key: str) -> dict:
    """The node for a stage, created on first access if the workflow predates it."""
    schema.get(stage_key)
    for node in doc["nodes"]:
        if node["stage_key"] == stage_key:
            return node
    node = _new_node(schema, stage_key, datetime.utcnow())
    doc["nodes"].append(node)
    return node


def _sorted_nodes(doc: dict) -> List[dict]:
    return sorted(doc.get("nodes", []), key=lambda n: n["stage_index"])


def _reset_node(node: dict, now: datetime):
    node.update({
        "status": NodeStatus.PENDING.value,
        "output_data": {},
        "error": None,
        "started_at": None,
        "completed_at": None,
        "updated_at": now,
    })


def _require(node: dict, operation: str, allowed, workflow_id: str):
    allowed = [s.value for s in allowed]
    if node["status"] not in allowed:
        raise InvalidTransition(operation, node["status"], allowed,
                                stage_key=node["stage_key"], workflow_id=workflow_id)


def _require_open(doc: dict, schema: PipelineSchema, operation: str, workflow_id: str):
    status = derive_status(schema, doc["nodes"], doc.get("control_status"))
    if status in (WorkflowStatus.CANCELLED.value, WorkflowStatus.COMPLETED.value,
                  WorkflowStatus.PAUSED.value):
        raise InvalidTransition(operation, status, _OPEN_STATUSES, workflow_id=workflow_id)


def _gated_node(doc: dict, schema: PipelineSchema, stage_key: str, operation: str, workflow_id: str):
    stage = schema.get(stage_key)
    node = _node(doc, schema, stage_key)
    _require(node, operation, (NodeStatus.WAITING_APPROVAL,), workflow_id)
    if not stage.approval_required:
        raise InvalidTransition(operation, node["status"], [NodeStatus.WAITING_APPROVAL.value],
                                stage_key=stage_key, workflow_id=workflow_id)
    return stage, node


def _approval_record(doc: dict, node: dict, approved: bool, actor_id: str,
                     note: Optional[str], now: datetime) -> dict:
    return {
        "workflow_id": doc["_id"],
        "stage_key": node["stage_key"],
        "approved": approved,
        "actor_id": actor_id,
        "note": note,
        "iteration": node.get("iteration", 0),
        "timestamp": now,
    }


def _derived_stage(doc: dict, schema: PipelineSchema) -> Optional[str]:
    """Current stage after the in-flight mutation, for the audit trail."""
    return derive_current_stage(schema, doc["nodes"])


def _workflow_view(doc: dict, schema: PipelineSchema, include_nodes: bool = True) -> dict:
    """Convert a stored workflow doc to a response dict with derived state."""
    nodes = _sorted_nodes(doc)
    current = derive_current_stage(schema, nodes)
    view = {
        "_id": str(doc["_id"]),
        "pipeline": doc.get("pipeline"),
        "organization_id": doc.get("organization_id"),
        "brand_id": doc.get("brand_id"),
        "project_id": doc.get("project_id"),
        "title": doc.get("title"),
        "description": doc.get("description"),
        "status": derive_status(schema, nodes, doc.get("control_status")),
        "current_stage": current,
        "current_stage_index": schema.index(current) if current else None,
        "config": doc.get("config", {}),
        "version": doc.get("version", 0),
        "created_by": doc.get("created_by"),
        "created_at": doc.get("created_at"),
        "updated_at": doc.get("updated_at"),
    }
    if include_nodes:
        view["nodes"] = nodes
    return view
