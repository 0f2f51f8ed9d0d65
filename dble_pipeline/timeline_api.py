#!/usr/bin/env python3
"""
Pipeline Workflow Timeline API - chat/audit timeline for pipeline workflows.
Clients only ever see public entries.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import Optional, List, Dict

from dble_pipeline.auth import Actor, get_actor
from dble_pipeline.dependencies import get_engine, get_timeline
from dble_pipeline.pipeline.errors import NotFound, PipelineError
from dble_pipeline.pipeline.state import WorkflowEngine
from dble_pipeline.pipeline.timeline import Timeline, Visibility

router = APIRouter(
    prefix="/api/pipelines/workflows/{workflow_id}/timeline",
    tags=["pipeline-timeline"],
)

PUBLISHER_ROLES = ("admin", "fde")


# --- Models ---

class TimelineEntryCreate(BaseModel):
    card_type: str = "user_message"
    content: str
    visibility: str = "public"
    todos: Optional[List[Dict]] = None
    parent_entry_id: Optional[str] = None
    entry_id: Optional[str] = None

class TimelineEntryUpdate(BaseModel):
    content: str

class TodoToggle(BaseModel):
    completed: bool


# --- Helpers ---

def _http_error(e: PipelineError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_detail())


def _entry_in_workflow(timeline: Timeline, workflow_id: str, entry_id: str,
                       reader_role: Optional[str] = None) -> dict:
    entry = timeline.get(entry_id, reader_role=reader_role)
    if entry["workflow_id"] != workflow_id:
        raise NotFound(f"Timeline entry '{entry_id}' not found", entry_id=entry_id,
                       workflow_id=workflow_id)
    return entry


# --- Endpoints ---

@router.get("")
async def list_timeline_entries(
    workflow_id: str,
    visibility: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
    timeline: Timeline = Depends(get_timeline),
):
    """List timeline entries for a workflow. Clients see public only."""
    try:
        engine.get_workflow(workflow_id, include_nodes=False)
        return timeline.list(workflow_id, visibility=visibility, reader_role=actor.role)
    except PipelineError as e:
        raise _http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("", status_code=201)
async def create_timeline_entry(
    workflow_id: str,
    body: TimelineEntryCreate,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
    timeline: Timeline = Depends(get_timeline),
):
    """Create a timeline entry. Replaying the same entry_id returns the existing entry."""
    try:
        engine.get_workflow(workflow_id, include_nodes=False)
        if body.parent_entry_id:
            _entry_in_workflow(timeline, workflow_id, body.parent_entry_id, reader_role=actor.role)
        visibility = Visibility.PUBLIC.value if actor.role == "client" else body.visibility
        entry = timeline.append(
            workflow_id,
            content=body.content,
            author_id=actor.user_id,
            author_name=actor.name,
            author_role=actor.role,
            card_type=body.card_type,
            visibility=visibility,
            todos=body.todos,
            parent_entry_id=body.parent_entry_id,
            entry_id=body.entry_id,
        )
        if actor.role == "client" and entry["visibility"] != Visibility.PUBLIC.value:
            # Replayed id of an internal entry
            raise NotFound("Timeline entry not found", entry_id=entry["_id"], workflow_id=workflow_id)
        return entry
    except PipelineError as e:
        raise _http_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.patch("/{entry_id}")
async def update_timeline_entry(
    workflow_id: str,
    entry_id: str,
    body: TimelineEntryUpdate,
    actor: Actor = Depends(get_actor),
    timeline: Timeline = Depends(get_timeline),
):
    """Edit an entry's content."""
    try:
        _entry_in_workflow(timeline, workflow_id, entry_id, reader_role=actor.role)
        return timeline.edit(entry_id, body.content, editor_id=actor.user_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/{entry_id}")
async def delete_timeline_entry(
    workflow_id: str,
    entry_id: str,
    actor: Actor = Depends(get_actor),
    timeline: Timeline = Depends(get_timeline),
):
    """Soft delete a timeline entry."""
    try:
        entry = timeline.repo.get_entry(entry_id)
        hidden = actor.role == "client" and entry and entry["visibility"] != Visibility.PUBLIC.value
        if not entry or entry["workflow_id"] != workflow_id or hidden:
            raise HTTPException(status_code=404, detail="Entry not found")
        timeline.soft_delete(entry_id, actor_id=actor.user_id)
        return {"success": True}
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{entry_id}/publish")
async def publish_timeline_entry(
    workflow_id: str,
    entry_id: str,
    actor: Actor = Depends(get_actor),
    timeline: Timeline = Depends(get_timeline),
):
    """Publish an internal entry to the client (sets visibility to public)."""
    try:
        if actor.role not in PUBLISHER_ROLES:
            raise HTTPException(status_code=403, detail="Insufficient role to publish entries")
        _entry_in_workflow(timeline, workflow_id, entry_id, reader_role=actor.role)
        return timeline.publish(entry_id)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.patch("/{entry_id}/todos/{todo_id}")
async def toggle_todo(
    workflow_id: str,
    entry_id: str,
    todo_id: str,
    body: TodoToggle,
    actor: Actor = Depends(get_actor),
    timeline: Timeline = Depends(get_timeline),
):
    """Toggle a todo item's completion status."""
    try:
        _entry_in_workflow(timeline, workflow_id, entry_id, reader_role=actor.role)
        return timeline.toggle_todo(entry_id, todo_id, body.completed)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{entry_id}/replies")
async def list_replies(
    workflow_id: str,
    entry_id: str,
    actor: Actor = Depends(get_actor),
    timeline: Timeline = Depends(get_timeline),
):
    try:
        _entry_in_workflow(timeline, workflow_id, entry_id, reader_role=actor.role)
        return timeline.thread(entry_id, reader_role=actor.role)
    except PipelineError as e:
        raise _http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
