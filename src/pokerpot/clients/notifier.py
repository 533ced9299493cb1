"""Notification transports."""

import logging
from typing import Any, Protocol

import httpx

from ..exceptions import NotifierError
from ..money import format_cents

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Delivers buy-in and session notifications to users."""

    def notify_buy_in_request(
        self, session_id: str, member_name: str, amount_cents: int
    ) -> None: ...

    def notify_buy_in_approved(
        self, session_id: str, user_id: str, amount_cents: int
    ) -> None: ...

    def notify_session_completed(self, session_id: str) -> None: ...


class LoggingNotifier:
    """Notifier used when no transport is configured; writes to the log."""

    def notify_buy_in_request(
        self, session_id: str, member_name: str, amount_cents: int
    ) -> None:
        logger.info(
            f"[{session_id}] {member_name} requested a buy-in of "
            f"{format_cents(amount_cents)}"
        )

    def notify_buy_in_approved(
        self, session_id: str, user_id: str, amount_cents: int
    ) -> None:
        logger.info(
            f"[{session_id}] Buy-in of {format_cents(amount_cents)} approved "
            f"for user {user_id}"
        )

    def notify_session_completed(self, session_id: str) -> None:
        logger.info(f"[{session_id}] Session completed")


class WebhookNotifier:
    """Posts notifications as JSON to a webhook that fans them out to devices."""

    def __init__(self, url: str, timeout: float = 10.0):
        """Initialize the webhook client."""
        self.url = url
        self.client = httpx.Client(
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def _post(self, payload: dict[str, Any]) -> None:
        try:
            response = self.client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotifierError(f"Notification '{payload['type']}' failed: {e}") from e

    def notify_buy_in_request(
        self, session_id: str, member_name: str, amount_cents: int
    ) -> None:
        self._post(
            {
                "type": "buyin-request",
                "channel": "buyin-requests",
                "audience": "session-admins",
                "session_id": session_id,
                "title": "New Buy-in Request",
                "body": f"{member_name} requested a buy-in of {format_cents(amount_cents)}",
                "member_name": member_name,
                "amount_cents": amount_cents,
            }
        )

    def notify_buy_in_approved(
        self, session_id: str, user_id: str, amount_cents: int
    ) -> None:
        self._post(
            {
                "type": "buyin-approved",
                "channel": "buyin-requests",
                "audience": "user",
                "user_id": user_id,
                "session_id": session_id,
                "title": "Buy-in Approved",
                "body": f"Your buy-in of {format_cents(amount_cents)} was approved",
                "amount_cents": amount_cents,
            }
        )

    def notify_session_completed(self, session_id: str) -> None:
        self._post(
            {
                "type": "session-completed",
                "channel": "settlements",
                "audience": "session-members",
                "session_id": session_id,
                "title": "Session Completed",
                "body": "The session is complete. Check your settlements.",
            }
        )
