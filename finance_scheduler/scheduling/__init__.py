"""Recurrence projection and notification reconciliation."""

from finance_scheduler.scheduling.messages import render_message
from finance_scheduler.scheduling.projector import (
    POLICY_BY_KIND,
    OccurrenceProjector,
    ProjectedOccurrence,
    ProjectionPolicy,
)
from finance_scheduler.scheduling.sync_engine import NotificationSyncEngine, section_enabled

__all__ = [
    "POLICY_BY_KIND",
    "NotificationSyncEngine",
    "OccurrenceProjector",
    "ProjectedOccurrence",
    "ProjectionPolicy",
    "render_message",
    "section_enabled",
]
