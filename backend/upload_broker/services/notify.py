"""Best-effort chat notifications (Mattermost/Slack incoming webhook). Never affects a response."""
import logging

import httpx

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(self, webhook_url: str | None, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send(self, text: str) -> None:
        if not self.webhook_url:
            return
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(self.webhook_url, json={"text": text})
                r.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Notification webhook failed: %s", e.__class__.__name__)

    async def upload_presigned(self, key: str, content_type: str) -> None:
        await self.send(f"New upload URL issued for `{key}` ({content_type}); awaiting virus scan.")

    async def multipart_completed(self, key: str, part_count: int) -> None:
        await self.send(f"Multipart upload completed: `{key}` ({part_count} parts); awaiting virus scan.")
