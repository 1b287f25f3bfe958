import httpx
from typing import Optional
import logging

from sqlalchemy import select

from app.models import Notification

logger = logging.getLogger(__name__)

SYNC_SUCCESS = "sync_success"
SYNC_FAILURE = "sync_failure"


class Notifier:
    """Posts sync events to the configured notification webhooks."""

    def __init__(self, session_factory, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.session_factory = session_factory
        self.transport = transport

    async def notify(self, event: str, title: str, body: str) -> int:
        """Send to every enabled notification subscribed to event. Returns the number delivered."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Notification).where(Notification.enabled == True)
            )
            notifications = [n for n in result.scalars().all() if event in (n.events or [])]

        if not notifications:
            logger.debug(f"No enabled notifications for {event}")
            return 0

        sent = 0
        async with httpx.AsyncClient(transport=self.transport) as client:
            for notification in notifications:
                try:
                    response = await client.post(
                        notification.url,
                        json={"event": event, "title": title, "body": body},
                        timeout=10.0
                    )
                    response.raise_for_status()
                    sent += 1
                    logger.info(f"Notification sent to: {notification.name}")
                except httpx.HTTPError as e:
                    logger.error(f"Failed to send notification to {notification.name}: {e}")
        return sent
