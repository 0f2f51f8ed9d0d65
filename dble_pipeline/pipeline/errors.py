"""
Pipeline error taxonomy.

Every failure carries enough structured detail for the caller to tell which
precondition failed. Routers turn these into HTTP errors via status_code/detail.
"""

from typing import Optional, Dict, Any, Iterable


class PipelineError(Exception):
    """Base class for all pipeline engine errors."""

    status_code: int = 400

    def __init__(self, message: str, **detail):
        super().__init__(message)
        self.message = message
        self.detail: Dict[str, Any] = {k: v for k, v in detail.items() if v is not None}

    def to_detail(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, **self.detail}


class InvalidTransition(PipelineError):
    """A status change was requested that the node (or workflow) does not allow."""

    status_code = 409

    def __init__(self, operation: str, current: str, required: Iterable[str],
                 stage_key: Optional[str] = None, workflow_id: Optional[str] = None):
        required = sorted(required) if not isinstance(required, str) else [required]
        target = f"stage '{stage_key}'" if stage_key else "workflow"
        message = (
            f"Cannot {operation} {target}: status is '{current}', "
            f"requires {' or '.join(repr(r) for r in required)}"
        )
        super().__init__(
            message,
            operation=operation,
            stage_key=stage_key,
            workflow_id=workflow_id,
            current_status=current,
            required_status=required,
        )


class ConfigurationError(PipelineError):
    """A stage schema invariant is violated."""

    status_code = 422


class NotFound(PipelineError):
    """A workflow, stage, schema or timeline entry does not exist (or is soft-deleted)."""

    status_code = 404


class StaleWrite(PipelineError):
    """A write was based on a workflow version that has since changed."""

    status_code = 409
