"""Repository abstractions for workflow and timeline persistence."""

from typing import Protocol, Optional, List, Dict, Any


class WorkflowRepository(Protocol):
    """Persistence for workflow documents (nodes, approvals and feedback log embedded)."""

    def insert_workflow(self, doc: dict) -> str:
        """Persist a new workflow document and return its id."""

    def get_workflow(self, workflow_id: str) -> Optional[dict]:
        """Return the workflow document (with string `_id`) or None."""

    def list_workflows(self, filters: Dict[str, Any]) -> List[dict]:
        """Return workflows matching equality filters, newest first."""

    def update_workflow(self, workflow_id: str, fields: dict, expected_version: int) -> bool:
        """
        Set `fields` and bump `version` in one write, only if the stored
        version still equals `expected_version`. Returns False otherwise.
        """

    def append_transition(self, record: dict) -> None:
        """Append a transition audit record."""

    def list_transitions(self, workflow_id: str) -> List[dict]:
        """Transition audit records in creation order."""


class TimelineRepository(Protocol):
    """Persistence for append-only timeline entries."""

    def insert_entry(self, doc: dict) -> bool:
        """Insert an entry keyed by its `_id`. Returns False if the id already exists."""

    def get_entry(self, entry_id: str) -> Optional[dict]:
        """Return the entry (including soft-deleted ones) or None."""

    def update_entry(self, entry_id: str, fields: dict) -> None:
        """Set fields on an existing entry."""

    def list_entries(self, workflow_id: str, visibility: Optional[str] = None,
                     parent_entry_id: Optional[str] = None) -> List[dict]:
        """Live (not soft-deleted) entries of a workflow in creation order."""
