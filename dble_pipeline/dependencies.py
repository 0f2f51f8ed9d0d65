"""Dependency providers for the pipeline routers.

Tests swap these out through ``app.dependency_overrides``.
"""

import logging
from functools import lru_cache

from dble_pipeline import db
from dble_pipeline.pipeline.persistence import (
    InMemoryTimelineRepository,
    InMemoryWorkflowRepository,
    MongoTimelineRepository,
    MongoWorkflowRepository,
    ensure_indexes,
)
from dble_pipeline.pipeline.state import WorkflowEngine
from dble_pipeline.pipeline.timeline import Timeline

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_timeline() -> Timeline:
    if db.PIPELINE_STORE == "memory":
        return Timeline(InMemoryTimelineRepository())
    return Timeline(MongoTimelineRepository(db.get_db()))


@lru_cache(maxsize=1)
def get_engine() -> WorkflowEngine:
    if db.PIPELINE_STORE == "memory":
        logger.info("[pipeline] using in-memory store")
        workflows = InMemoryWorkflowRepository()
    else:
        database = db.get_db()
        ensure_indexes(database)
        workflows = MongoWorkflowRepository(database)
    return WorkflowEngine(workflows, timeline=get_timeline())
