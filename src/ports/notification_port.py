"""Notification port — abstract interface for pushing messages to members.

The daily jobs depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract notification interface used by the scheduler."""

    async def send_message(self, user_id: int, text: str) -> None:
        """Deliver text to a member, addressed by Telegram user id."""
        ...
