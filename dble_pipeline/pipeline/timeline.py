"""
Workflow Timeline - append-only, threaded conversation and audit log.

Entries are never hard-deleted; edits touch content only. Every operation is
keyed by entry id and safe to retry: repeating a call leaves the same end
state and never creates a duplicate entry.
"""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from bson import ObjectId

from dble_pipeline.pipeline.errors import NotFound, PipelineError
from dble_pipeline.pipeline.persistence.repository import TimelineRepository

logger = logging.getLogger(__name__)


class CardType(str, Enum):
    USER_MESSAGE = "user_message"
    AI_MESSAGE = "ai_message"
    TEAM_MESSAGE = "team_message"
    TASK_CARD = "task_card"
    APPROVAL_CARD = "approval_card"
    STATUS_UPDATE = "status_update"


class Visibility(str, Enum):
    PUBLIC = "public"
    INTERNAL = "internal"


SYSTEM_AUTHOR = "system"


def _normalize_todos(todos: Optional[List[Dict[str, Any]]]) -> List[dict]:
    normalized = []
    for todo in todos or []:
        completed = bool(todo.get("completed", False))
        normalized.append({
            "id": todo.get("id") or uuid.uuid4().hex[:12],
            "text": todo.get("text", ""),
            "completed": completed,
            "completed_at": todo.get("completed_at") if completed else None,
        })
    return normalized


class Timeline:
    def __init__(self, repo: TimelineRepository):
        self.repo = repo

    # --- Writes ---

    def append(self, workflow_id: str, content: str, author_id: str,
               card_type: str = CardType.USER_MESSAGE.value,
               author_role: str = "user",
               visibility: str = Visibility.PUBLIC.value,
               todos: Optional[List[Dict[str, Any]]] = None,
               approval_data: Optional[dict] = None,
               status_data: Optional[dict] = None,
               parent_entry_id: Optional[str] = None,
               entry_id: Optional[str] = None,
               author_name: Optional[str] = None,
               ai_model: Optional[str] = None) -> dict:
        """Append an entry. Replaying a known entry_id returns the stored entry unchanged."""
        card_type = CardType(card_type).value
        visibility = Visibility(visibility).value

        if entry_id:
            existing = self.repo.get_entry(entry_id)
            if existing:
                return self._replayed(existing, workflow_id)

        if parent_entry_id:
            parent = self.repo.get_entry(parent_entry_id)
            if not parent or parent.get("is_deleted") or parent["workflow_id"] != workflow_id:
                raise NotFound(f"Parent entry '{parent_entry_id}' not found",
                               entry_id=parent_entry_id, workflow_id=workflow_id)

        now = datetime.utcnow()
        doc = {
            "_id": entry_id or str(ObjectId()),
            "workflow_id": workflow_id,
            "card_type": card_type,
            "content": content,
            "author_id": author_id,
            "author_name": author_name,
            "author_role": author_role,
            "visibility": visibility,
            "todos": _normalize_todos(todos),
            "approval_data": approval_data,
            "status_data": status_data,
            "parent_entry_id": parent_entry_id,
            "ai_model": ai_model,
            "edited_by": None,
            "is_deleted": False,
            "created_at": now,
            "updated_at": now,
        }
        if not self.repo.insert_entry(doc):
            # Lost a race with a retry of the same call
            return self._replayed(self.repo.get_entry(doc["_id"]), workflow_id)
        return doc

    def _replayed(self, existing: dict, workflow_id: str) -> dict:
        if existing["workflow_id"] != workflow_id:
            raise PipelineError(f"Entry id '{existing['_id']}' belongs to another workflow",
                                entry_id=existing["_id"], workflow_id=workflow_id)
        return existing

    def edit(self, entry_id: str, content: str, editor_id: str) -> dict:
        entry = self.get(entry_id)
        if entry["content"] == content and entry.get("edited_by") == editor_id:
            return entry
        fields = {"content": content, "edited_by": editor_id, "updated_at": datetime.utcnow()}
        self.repo.update_entry(entry_id, fields)
        entry.update(fields)
        return entry

    def soft_delete(self, entry_id: str, actor_id: Optional[str] = None) -> dict:
        entry = self.repo.get_entry(entry_id)
        if not entry:
            raise NotFound(f"Timeline entry '{entry_id}' not found", entry_id=entry_id)
        if entry.get("is_deleted"):
            return entry
        fields = {"is_deleted": True, "deleted_by": actor_id, "updated_at": datetime.utcnow()}
        self.repo.update_entry(entry_id, fields)
        entry.update(fields)
        return entry

    def publish(self, entry_id: str) -> dict:
        """Flip an internal entry to public."""
        entry = self.get(entry_id)
        if entry["visibility"] == Visibility.PUBLIC.value:
            return entry
        fields = {"visibility": Visibility.PUBLIC.value, "updated_at": datetime.utcnow()}
        self.repo.update_entry(entry_id, fields)
        entry.update(fields)
        return entry

    def toggle_todo(self, entry_id: str, todo_id: str, completed: bool) -> dict:
        entry = self.get(entry_id)
        todos = entry.get("todos") or []
        todo = next((t for t in todos if t.get("id") == todo_id), None)
        if todo is None:
            raise NotFound(f"Todo '{todo_id}' not found", entry_id=entry_id, todo_id=todo_id)
        if todo.get("completed") == completed:
            return entry

        now = datetime.utcnow()
        todo["completed"] = completed
        todo["completed_at"] = now if completed else None
        self.repo.update_entry(entry_id, {"todos": todos, "updated_at": now})
        entry["updated_at"] = now
        return entry

    # --- Engine bridge ---

    def post_status(self, workflow_id: str, stage: str, status: str, message: str,
                    visibility: str = Visibility.PUBLIC.value) -> dict:
        """Create a status_update entry for a node transition."""
        return self.append(
            workflow_id,
            content=message,
            author_id=SYSTEM_AUTHOR,
            author_name="dble",
            card_type=CardType.STATUS_UPDATE.value,
            author_role=SYSTEM_AUTHOR,
            visibility=visibility,
            status_data={"stage": stage, "status": status, "message": message},
        )

    def post_approval(self, workflow_id: str, record: dict, message: str) -> dict:
        """Create an approval_card entry mirroring an approval record."""
        return self.append(
            workflow_id,
            content=message,
            author_id=record["actor_id"],
            card_type=CardType.APPROVAL_CARD.value,
            author_role="reviewer",
            approval_data={
                "type": record["stage_key"],
                "approved": record["approved"],
                "note": record.get("note"),
            },
        )

    # --- Reads ---

    def get(self, entry_id: str, reader_role: Optional[str] = None) -> dict:
        """A live entry. Client readers cannot see internal entries, so those read as missing."""
        entry = self.repo.get_entry(entry_id)
        if not entry or entry.get("is_deleted"):
            raise NotFound(f"Timeline entry '{entry_id}' not found", entry_id=entry_id)
        if reader_role == "client" and entry.get("visibility") != Visibility.PUBLIC.value:
            raise NotFound(f"Timeline entry '{entry_id}' not found", entry_id=entry_id)
        return entry

    def list(self, workflow_id: str, visibility: Optional[str] = None,
             reader_role: Optional[str] = None) -> List[dict]:
        """Live entries in creation order. Client readers only ever see public entries."""
        return self.repo.list_entries(workflow_id, visibility=self._visibility_for(visibility, reader_role))

    def thread(self, entry_id: str, reader_role: Optional[str] = None) -> List[dict]:
        """Replies to an entry, in creation order."""
        entry = self.get(entry_id, reader_role=reader_role)
        return self.repo.list_entries(
            entry["workflow_id"],
            visibility=self._visibility_for(None, reader_role),
            parent_entry_id=entry_id,
        )

    @staticmethod
    def _visibility_for(visibility: Optional[str], reader_role: Optional[str]) -> Optional[str]:
        if reader_role == "client":
            return Visibility.PUBLIC.value
        return Visibility(visibility).value if visibility else None
