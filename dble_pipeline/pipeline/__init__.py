"""Schema-agnostic pipeline workflow engine."""

from .derivation import derive_current_stage, derive_status
from .errors import ConfigurationError, InvalidTransition, NotFound, PipelineError, StaleWrite
from .feedback import FeedbackDispatcher, FeedbackSignal
from .registry import SchemaRegistry, default_registry
from .settings_sync import StageSet, StageSettingsSync, engine_persister
from .stages import EXECUTOR_KINDS, PipelineSchema, StageDefinition
from .state import WorkflowEngine
from .status import NodeStatus, WorkflowStatus
from .timeline import CardType, Timeline, Visibility

__all__ = [
    "PipelineError",
    "InvalidTransition",
    "ConfigurationError",
    "NotFound",
    "StaleWrite",
    "EXECUTOR_KINDS",
    "StageDefinition",
    "PipelineSchema",
    "SchemaRegistry",
    "default_registry",
    "NodeStatus",
    "WorkflowStatus",
    "derive_current_stage",
    "derive_status",
    "FeedbackSignal",
    "FeedbackDispatcher",
    "Timeline",
    "CardType",
    "Visibility",
    "WorkflowEngine",
    "StageSettingsSync",
    "StageSet",
    "engine_persister",
]
