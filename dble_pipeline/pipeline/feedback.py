"""
Feedback Loop signals.

When a stage with a feedback_target completes, the engine emits an advisory
FeedbackSignal (e.g. analytics -> scheduling). Signals never touch node state
or the current stage, and a failing subscriber never fails the workflow.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedbackSignal:
    workflow_id: str
    from_stage: str
    to_stage: str
    reason: str
    timestamp: datetime = field(default_factory=datetime.utcnow)
    iteration: int = 0

    def to_dict(self) -> dict:
        return {
            "workflow_id": self.workflow_id,
            "from_stage": self.from_stage,
            "to_stage": self.to_stage,
            "reason": self.reason,
            "iteration": self.iteration,
            "timestamp": self.timestamp,
        }


FeedbackSubscriber = Callable[[FeedbackSignal], None]


class FeedbackDispatcher:
    """Fan-out of feedback signals to registered subscribers."""

    def __init__(self, subscribers: Optional[List[FeedbackSubscriber]] = None):
        self._subscribers: List[FeedbackSubscriber] = list(subscribers or [])

    def subscribe(self, subscriber: FeedbackSubscriber) -> FeedbackSubscriber:
        self._subscribers.append(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: FeedbackSubscriber):
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def emit(self, signal: FeedbackSignal) -> int:
        """Deliver to every subscriber. Returns how many deliveries succeeded."""
        delivered = 0
        for subscriber in list(self._subscribers):
            try:
                subscriber(signal)
                delivered += 1
            except Exception:
                logger.warning(
                    "[feedback] delivery failed for %s -> %s on workflow %s",
                    signal.from_stage, signal.to_stage, signal.workflow_id,
                    exc_info=True,
                )
        return delivered
