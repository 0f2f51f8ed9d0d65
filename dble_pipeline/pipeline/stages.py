"""
Stage Schema Definition

A pipeline schema is the static, ordered list of stages a workflow moves
through. Schemas are validated once when built; the engine never hard-codes
stage keys and works with any schema that passes validation.
"""

from typing import List, Dict, Optional, Iterable
from dataclasses import dataclass

from dble_pipeline.pipeline.errors import ConfigurationError, NotFound


EXECUTOR_KINDS = ("human", "agent", "auto")


@dataclass(frozen=True)
class StageDefinition:
    key: str
    label: str
    executor_kind: str  # "human" | "agent" | "auto"
    description: str = ""
    category: Optional[str] = None  # Display bundle, e.g. "Input" | "Planning"
    approval_required: bool = False
    reject_target: Optional[str] = None  # Stage key to roll back to on rejection
    feedback_target: Optional[str] = None  # Stage key for advisory feedback loops

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "executor_kind": self.executor_kind,
            "description": self.description,
            "category": self.category,
            "approval_required": self.approval_required,
            "reject_target": self.reject_target,
            "feedback_target": self.feedback_target,
        }


class PipelineSchema:
    """An immutable, validated, ordered set of stages."""

    def __init__(self, name: str, stages: Iterable[StageDefinition]):
        self.name = name
        self.stages: tuple = tuple(stages)
        self.keys: List[str] = [s.key for s in self.stages]
        self._index: Dict[str, int] = {}
        self._map: Dict[str, StageDefinition] = {}
        self._validate()

    def _validate(self):
        if not self.stages:
            raise ConfigurationError(f"Pipeline '{self.name}' has no stages", pipeline=self.name)

        for idx, stage in enumerate(self.stages):
            if stage.key in self._index:
                raise ConfigurationError(
                    f"Duplicate stage key '{stage.key}' in pipeline '{self.name}'",
                    pipeline=self.name, stage_key=stage.key,
                )
            if stage.executor_kind not in EXECUTOR_KINDS:
                raise ConfigurationError(
                    f"Stage '{stage.key}' has unknown executor kind '{stage.executor_kind}'",
                    pipeline=self.name, stage_key=stage.key,
                )
            self._index[stage.key] = idx
            self._map[stage.key] = stage

        for stage in self.stages:
            if stage.approval_required and not stage.reject_target:
                raise ConfigurationError(
                    f"Approval stage '{stage.key}' must declare a reject_target",
                    pipeline=self.name, stage_key=stage.key,
                )
            for field_name in ("reject_target", "feedback_target"):
                target = getattr(stage, field_name)
                if target is None:
                    continue
                if target not in self._index:
                    raise ConfigurationError(
                        f"Stage '{stage.key}' {field_name} '{target}' is not a stage of '{self.name}'",
                        pipeline=self.name, stage_key=stage.key,
                    )
                # No forward edges: rollback and feedback only point backwards (or to self)
                if self._index[target] > self._index[stage.key]:
                    raise ConfigurationError(
                        f"Stage '{stage.key}' {field_name} '{target}' occurs after it",
                        pipeline=self.name, stage_key=stage.key,
                    )

    def __len__(self) -> int:
        return len(self.stages)

    def __iter__(self):
        return iter(self.stages)

    def __contains__(self, key: str) -> bool:
        return key in self._map

    def get(self, key: str) -> StageDefinition:
        stage = self._map.get(key)
        if stage is None:
            raise NotFound(f"Unknown stage '{key}' in pipeline '{self.name}'",
                           pipeline=self.name, stage_key=key)
        return stage

    def index(self, key: str) -> int:
        self.get(key)
        return self._index[key]

    def next_stage(self, key: str) -> Optional[str]:
        idx = self.index(key)
        if idx + 1 < len(self.keys):
            return self.keys[idx + 1]
        return None

    def keys_between(self, start_key: str, end_key: str) -> List[str]:
        """Stage keys from start_key through end_key inclusive, in schema order."""
        return self.keys[self.index(start_key):self.index(end_key) + 1]

    def categories(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for s in self.stages:
            if s.category:
                grouped.setdefault(s.category, []).append(s.key)
        return grouped

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "stages": [s.to_dict() for s in self.stages],
            "categories": self.categories(),
        }
