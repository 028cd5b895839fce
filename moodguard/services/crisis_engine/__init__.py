"""Crisis Engine: escalation of risk assessments to responsible humans.

Creates at most one open alert per subject, dispatches a notification
through the configured dispatcher, and audits every decision.
"""

from .care_team import (
    PostgresResponsiblePartyDirectory,
    ResponsiblePartyDirectory,
    StaticResponsiblePartyDirectory,
    create_directory_from_env,
)
from .coordinator import (
    EscalationAction,
    EscalationConfig,
    EscalationCoordinator,
    EscalationOutcome,
    create_coordinator_from_env,
)
from .notifier import (
    AlertSummary,
    KinesisNotificationDispatcher,
    NotificationDispatcher,
    NotificationResult,
)

__all__ = [
    "PostgresResponsiblePartyDirectory",
    "ResponsiblePartyDirectory",
    "StaticResponsiblePartyDirectory",
    "create_directory_from_env",
    "EscalationAction",
    "EscalationConfig",
    "EscalationCoordinator",
    "EscalationOutcome",
    "create_coordinator_from_env",
    "AlertSummary",
    "KinesisNotificationDispatcher",
    "NotificationDispatcher",
    "NotificationResult",
]
