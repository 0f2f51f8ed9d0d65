"""In-memory implementation of the workflow and timeline repositories."""

import copy
import threading
from typing import Dict, List, Optional, Any

from bson import ObjectId


class InMemoryWorkflowRepository:
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Documents are copied on the way in
    and out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, dict] = {}
        self._transitions: List[dict] = []
        self._lock = threading.Lock()

    def insert_workflow(self, doc: dict) -> str:
        workflow_id = str(ObjectId())
        with self._lock:
            stored = copy.deepcopy(doc)
            stored["_id"] = workflow_id
            self._workflows[workflow_id] = stored
        return workflow_id

    def get_workflow(self, workflow_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._workflows.get(workflow_id)
            return copy.deepcopy(doc) if doc else None

    def list_workflows(self, filters: Dict[str, Any]) -> List[dict]:
        with self._lock:
            docs = [
                copy.deepcopy(d) for d in self._workflows.values()
                if all(d.get(k) == v for k, v in filters.items())
            ]
        docs.reverse()
        return docs

    def update_workflow(self, workflow_id: str, fields: dict, expected_version: int) -> bool:
        with self._lock:
            doc = self._workflows.get(workflow_id)
            if not doc or doc.get("version", 0) != expected_version:
                return False
            doc.update(copy.deepcopy(fields))
            doc["version"] = expected_version + 1
            return True

    def append_transition(self, record: dict) -> None:
        with self._lock:
            stored = copy.deepcopy(record)
            stored["_id"] = str(ObjectId())
            self._transitions.append(stored)

    def list_transitions(self, workflow_id: str) -> List[dict]:
        with self._lock:
            return [copy.deepcopy(t) for t in self._transitions if t["workflow_id"] == workflow_id]


class InMemoryTimelineRepository:
    def __init__(self) -> None:
        self._entries: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def insert_entry(self, doc: dict) -> bool:
        with self._lock:
            if doc["_id"] in self._entries:
                return False
            self._entries[doc["_id"]] = copy.deepcopy(doc)
            return True

    def get_entry(self, entry_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._entries.get(entry_id)
            return copy.deepcopy(doc) if doc else None

    def update_entry(self, entry_id: str, fields: dict) -> None:
        with self._lock:
            if entry_id in self._entries:
                self._entries[entry_id].update(copy.deepcopy(fields))

    def list_entries(self, workflow_id: str, visibility: Optional[str] = None,
                     parent_entry_id: Optional[str] = None) -> List[dict]:
        with self._lock:
            result = []
            for e in self._entries.values():
                if e["workflow_id"] != workflow_id or e.get("is_deleted"):
                    continue
                if visibility and e.get("visibility") != visibility:
                    continue
                if parent_entry_id is not None and e.get("parent_entry_id") != parent_entry_id:
                    continue
                result.append(copy.deepcopy(e))
            return result
