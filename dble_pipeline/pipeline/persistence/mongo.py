"""
MongoDB implementation of the workflow and timeline repositories.

Nodes, approval records and the feedback log live inside the workflow
document, so every state transition (including a multi-node rollback) is a
single conditional update_one and readers never see a half-applied change.
"""

from typing import Dict, List, Optional, Any

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError


def ensure_indexes(db):
    db.pipeline_workflows.create_index("pipeline")
    db.pipeline_workflows.create_index("organization_id")
    db.pipeline_workflows.create_index("brand_id")
    db.pipeline_workflows.create_index("project_id")
    db.pipeline_workflow_transitions.create_index([("workflow_id", ASCENDING), ("timestamp", ASCENDING)])
    db.pipeline_timeline_entries.create_index([("workflow_id", ASCENDING), ("created_at", ASCENDING)])
    db.pipeline_timeline_entries.create_index("parent_entry_id")


def _stringify_id(doc: Optional[dict]) -> Optional[dict]:
    if doc is not None:
        doc["_id"] = str(doc["_id"])
    return doc


class MongoWorkflowRepository:
    def __init__(self, db):
        self.db = db

    def insert_workflow(self, doc: dict) -> str:
        result = self.db.pipeline_workflows.insert_one(dict(doc))
        return str(result.inserted_id)

    def get_workflow(self, workflow_id: str) -> Optional[dict]:
        if not ObjectId.is_valid(workflow_id):
            return None
        return _stringify_id(self.db.pipeline_workflows.find_one({"_id": ObjectId(workflow_id)}))

    def list_workflows(self, filters: Dict[str, Any]) -> List[dict]:
        docs = self.db.pipeline_workflows.find(filters).sort("created_at", DESCENDING)
        return [_stringify_id(d) for d in docs]

    def update_workflow(self, workflow_id: str, fields: dict, expected_version: int) -> bool:
        if not ObjectId.is_valid(workflow_id):
            return False
        result = self.db.pipeline_workflows.update_one(
            {"_id": ObjectId(workflow_id), "version": expected_version},
            {"$set": fields, "$inc": {"version": 1}},
        )
        return result.matched_count == 1

    def append_transition(self, record: dict) -> None:
        self.db.pipeline_workflow_transitions.insert_one(dict(record))

    def list_transitions(self, workflow_id: str) -> List[dict]:
        transitions = self.db.pipeline_workflow_transitions.find(
            {"workflow_id": workflow_id}
        ).sort([("timestamp", ASCENDING), ("_id", ASCENDING)])
        return [_stringify_id(t) for t in transitions]


class MongoTimelineRepository:
    def __init__(self, db):
        self.db = db

    def insert_entry(self, doc: dict) -> bool:
        try:
            self.db.pipeline_timeline_entries.insert_one(dict(doc))
        except DuplicateKeyError:
            return False
        return True

    def get_entry(self, entry_id: str) -> Optional[dict]:
        return self.db.pipeline_timeline_entries.find_one({"_id": entry_id})

    def update_entry(self, entry_id: str, fields: dict) -> None:
        self.db.pipeline_timeline_entries.update_one({"_id": entry_id}, {"$set": fields})

    def list_entries(self, workflow_id: str, visibility: Optional[str] = None,
                     parent_entry_id: Optional[str] = None) -> List[dict]:
        query: Dict[str, Any] = {"workflow_id": workflow_id, "is_deleted": {"$ne": True}}
        if visibility:
            query["visibility"] = visibility
        if parent_entry_id is not None:
            query["parent_entry_id"] = parent_entry_id
        return list(
            self.db.pipeline_timeline_entries.find(query).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
        )
