"""
Pipeline schema registry.

Maps a pipeline name to its validated PipelineSchema. The content and
development schemas ship built in; additional schemas can be registered at
startup without touching the engine.
"""

from typing import Dict, List, Iterable, Optional

from dble_pipeline.pipeline.errors import ConfigurationError, NotFound
from dble_pipeline.pipeline.stages import PipelineSchema, StageDefinition


class SchemaRegistry:
    def __init__(self, schemas: Iterable[PipelineSchema] = ()):
        self._schemas: Dict[str, PipelineSchema] = {}
        for schema in schemas:
            self.register(schema)

    def register(self, schema: PipelineSchema) -> PipelineSchema:
        if schema.name in self._schemas:
            raise ConfigurationError(f"Pipeline '{schema.name}' is already registered",
                                     pipeline=schema.name)
        self._schemas[schema.name] = schema
        return schema

    def register_stages(self, name: str, stages: Iterable[StageDefinition]) -> PipelineSchema:
        """Validate and register a schema from a plain list of stage definitions."""
        return self.register(PipelineSchema(name, stages))

    def get(self, name: str) -> PipelineSchema:
        schema = self._schemas.get(name)
        if schema is None:
            raise NotFound(f"Unknown pipeline '{name}'", pipeline=name)
        return schema

    def names(self) -> List[str]:
        return list(self._schemas)

    def __contains__(self, name: str) -> bool:
        return name in self._schemas


_default: Optional[SchemaRegistry] = None


def default_registry() -> SchemaRegistry:
    """Registry holding the built-in content and development pipelines."""
    global _default
    if _default is None:
        from dble_pipeline.content_generation.workflows.pipeline import CONTENT_PIPELINE
        from dble_pipeline.development.workflows.pipeline import DEV_PIPELINE
        _default = SchemaRegistry([CONTENT_PIPELINE, DEV_PIPELINE])
    return _default
