#!/usr/bin/env python3
"""
Pipeline Workflows API routes.
Exposes the workflow engine (schemas, node lifecycle, approval gates,
control, stage settings and audit trail) to the frontend and to drivers.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any

from dble_pipeline.auth import Actor, get_actor
from dble_pipeline.dependencies import get_engine
from dble_pipeline.pipeline.errors import PipelineError
from dble_pipeline.pipeline.state import WorkflowEngine

router = APIRouter(prefix="/api/pipelines", tags=["pipeline-workflows"])


# --- Models ---

class WorkflowCreate(BaseModel):
    pipeline: str
    title: str
    description: Optional[str] = None
    config: Optional[dict] = None
    organization_id: Optional[str] = None
    brand_id: Optional[str] = None
    project_id: Optional[str] = None


class WorkflowUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class StageStartRequest(BaseModel):
    input_data: Optional[dict] = None


class StageCompleteRequest(BaseModel):
    output: dict = Field(default_factory=dict)


class StageFailRequest(BaseModel):
    error: str


class ApprovalRequest(BaseModel):
    approved: bool
    note: Optional[str] = None


class StageSettingsUpdate(BaseModel):
    values: Dict[str, Any]
    expected_version: Optional[int] = None


class SettingsUpdate(BaseModel):
    stage_settings: Dict[str, Dict[str, Any]]
    expected_version: Optional[int] = None


# --- Helpers ---

def _http_error(e: PipelineError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_detail())


# --- Schemas ---

@router.get("/schemas")
async def list_schemas(engine: WorkflowEngine = Depends(get_engine)):
    """List registered pipeline schemas."""
    return [engine.registry.get(name).to_dict() for name in engine.registry.names()]


@router.get("/schemas/{pipeline}")
async def get_schema(pipeline: str, engine: WorkflowEngine = Depends(get_engine)):
    try:
        return engine.registry.get(pipeline).to_dict()
    except PipelineError as e:
        raise _http_error(e)


# --- Workflows ---

@router.post("/workflows", status_code=201)
async def create_workflow(body: WorkflowCreate, actor: Actor = Depends(get_actor),
                          engine: WorkflowEngine = Depends(get_engine)):
    """Create a workflow with one pending node per stage."""
    try:
        return engine.create_workflow(
            pipeline=body.pipeline,
            title=body.title,
            created_by=actor.user_id,
            description=body.description,
            config=body.config,
            organization_id=body.organization_id,
            brand_id=body.brand_id,
            project_id=body.project_id,
        )
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/workflows")
async def list_workflows(pipeline: Optional[str] = None, organization_id: Optional[str] = None,
                         brand_id: Optional[str] = None, project_id: Optional[str] = None,
                         actor: Actor = Depends(get_actor),
                         engine: WorkflowEngine = Depends(get_engine)):
    """List workflows, newest first."""
    try:
        return engine.list_workflows(pipeline=pipeline, organization_id=organization_id,
                                     brand_id=brand_id, project_id=project_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/workflows/{workflow_id}")
async def get_workflow(workflow_id: str, actor: Actor = Depends(get_actor),
                       engine: WorkflowEngine = Depends(get_engine)):
    """Get a single workflow with its nodes and derived status."""
    try:
        return engine.get_workflow(workflow_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.patch("/workflows/{workflow_id}")
async def update_workflow(workflow_id: str, body: WorkflowUpdate, actor: Actor = Depends(get_actor),
                          engine: WorkflowEngine = Depends(get_engine)):
    try:
        update_dict = body.model_dump(exclude_unset=True)
        if not update_dict:
            raise HTTPException(status_code=400, detail="No fields to update")
        return engine.update_workflow(workflow_id, **update_dict)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/workflows/{workflow_id}/nodes")
async def get_nodes(workflow_id: str, actor: Actor = Depends(get_actor),
                    engine: WorkflowEngine = Depends(get_engine)):
    try:
        return engine.get_nodes(workflow_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# --- Node Lifecycle ---

@router.post("/workflows/{workflow_id}/stages/{stage_key}/start")
async def start_stage(workflow_id: str, stage_key: str, body: Optional[StageStartRequest] = None,
                      actor: Actor = Depends(get_actor),
                      engine: WorkflowEngine = Depends(get_engine)):
    """Start a pending stage, or retry a failed one."""
    try:
        input_data = body.input_data if body else None
        return engine.start_stage(workflow_id, stage_key, input_data=input_data, actor_id=actor.user_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/workflows/{workflow_id}/stages/{stage_key}/complete")
async def complete_stage(workflow_id: str, stage_key: str, body: StageCompleteRequest,
                         actor: Actor = Depends(get_actor),
                         engine: WorkflowEngine = Depends(get_engine)):
    """Record a stage's output. Gated stages move to waiting_approval."""
    try:
        return engine.complete_stage(workflow_id, stage_key, output=body.output, actor_id=actor.user_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/workflows/{workflow_id}/stages/{stage_key}/fail")
async def fail_stage(workflow_id: str, stage_key: str, body: StageFailRequest,
                     actor: Actor = Depends(get_actor),
                     engine: WorkflowEngine = Depends(get_engine)):
    try:
        return engine.fail_stage(workflow_id, stage_key, error=body.error, actor_id=actor.user_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/workflows/{workflow_id}/stages/{stage_key}/approve")
async def approve_stage(workflow_id: str, stage_key: str, body: ApprovalRequest,
                        actor: Actor = Depends(get_actor),
                        engine: WorkflowEngine = Depends(get_engine)):
    """Approve or reject a stage waiting for approval."""
    try:
        if body.approved:
            return engine.approve(workflow_id, stage_key, actor.user_id, body.note)
        return engine.reject(workflow_id, stage_key, actor.user_id, body.note)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# --- Workflow Control ---

@router.post("/workflows/{workflow_id}/cancel")
async def cancel_workflow(workflow_id: str, actor: Actor = Depends(get_actor),
                          engine: WorkflowEngine = Depends(get_engine)):
    try:
        return engine.cancel(workflow_id, actor_id=actor.user_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/workflows/{workflow_id}/pause")
async def pause_workflow(workflow_id: str, actor: Actor = Depends(get_actor),
                         engine: WorkflowEngine = Depends(get_engine)):
    try:
        return engine.pause(workflow_id, actor_id=actor.user_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/workflows/{workflow_id}/resume")
async def resume_workflow(workflow_id: str, actor: Actor = Depends(get_actor),
                          engine: WorkflowEngine = Depends(get_engine)):
    try:
        return engine.resume(workflow_id, actor_id=actor.user_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# --- Stage Settings ---

@router.get("/workflows/{workflow_id}/settings")
async def get_settings(workflow_id: str, actor: Actor = Depends(get_actor),
                       engine: WorkflowEngine = Depends(get_engine)):
    try:
        return engine.get_stage_settings(workflow_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.patch("/workflows/{workflow_id}/settings")
async def update_settings(workflow_id: str, body: SettingsUpdate, actor: Actor = Depends(get_actor),
                          engine: WorkflowEngine = Depends(get_engine)):
    """Merge settings for several stages in one write."""
    try:
        return engine.update_settings(workflow_id, body.stage_settings, body.expected_version)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/workflows/{workflow_id}/stages/{stage_key}/settings")
async def get_stage_settings(workflow_id: str, stage_key: str, actor: Actor = Depends(get_actor),
                             engine: WorkflowEngine = Depends(get_engine)):
    try:
        return engine.get_stage_settings(workflow_id, stage_key)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.patch("/workflows/{workflow_id}/stages/{stage_key}/settings")
async def update_stage_settings(workflow_id: str, stage_key: str, body: StageSettingsUpdate,
                                actor: Actor = Depends(get_actor),
                                engine: WorkflowEngine = Depends(get_engine)):
    """Merge values key-by-key into one stage's settings."""
    try:
        return engine.update_stage_settings(workflow_id, stage_key, body.values, body.expected_version)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# --- Audit ---

@router.get("/workflows/{workflow_id}/approvals")
async def get_approvals(workflow_id: str, actor: Actor = Depends(get_actor),
                        engine: WorkflowEngine = Depends(get_engine)):
    try:
        return engine.get_approvals(workflow_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/workflows/{workflow_id}/transitions")
async def get_transitions(workflow_id: str, actor: Actor = Depends(get_actor),
                          engine: WorkflowEngine = Depends(get_engine)):
    """Get the transition history for a workflow."""
    try:
        return engine.get_transitions(workflow_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/workflows/{workflow_id}/feedback")
async def get_feedback_log(workflow_id: str, actor: Actor = Depends(get_actor),
                           engine: WorkflowEngine = Depends(get_engine)):
    try:
        return engine.get_feedback_log(workflow_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
