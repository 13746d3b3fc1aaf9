"""Notification dispatch boundary.

Email delivery lives outside the core. The document service calls a
NotificationDispatcher and treats every failure as a warning: a failed
dispatch never rolls back a committed status change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationResult:
    """Result of a dispatch attempt."""

    success: bool
    error: str | None = None
    message_id: str | None = None


class NotificationDispatcher(Protocol):
    """Protocol for document notification senders."""

    def send_document_notification(
        self,
        kind: str,
        document: Mapping[str, Any],
        recipient: str,
    ) -> NotificationResult:
        """Send a notification about a document.

        Args:
            kind: Event kind, e.g. "invoice_sent" or "contract_accepted"
            document: Document payload (id, number, total, status, ...)
            recipient: Email address of the recipient

        Returns:
            NotificationResult; failures are reported, not raised
        """
        ...


class LoggingNotificationDispatcher:
    """Default dispatcher that logs the notification and reports success."""

    def send_document_notification(
        self,
        kind: str,
        document: Mapping[str, Any],
        recipient: str,
    ) -> NotificationResult:
        logger.info(
            "Notification %s for %s to %s (total=%s)",
            kind,
            document.get("number") or document.get("id"),
            recipient,
            document.get("total"),
        )
        return NotificationResult(success=True, message_id=f"log-{kind}-{document.get('id')}")
