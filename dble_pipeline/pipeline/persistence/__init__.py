"""Persistence backends for pipeline workflows and timelines."""

from .inmemory import InMemoryTimelineRepository, InMemoryWorkflowRepository
from .mongo import MongoTimelineRepository, MongoWorkflowRepository, ensure_indexes
from .repository import TimelineRepository, WorkflowRepository

__all__ = [
    "WorkflowRepository",
    "TimelineRepository",
    "InMemoryWorkflowRepository",
    "InMemoryTimelineRepository",
    "MongoWorkflowRepository",
    "MongoTimelineRepository",
    "ensure_indexes",
]
