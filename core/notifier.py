import asyncio
from typing import Optional, Set

import httpx

from core.logger import get_logger

logger = get_logger(__name__)

class Notifier:
    """
    Best-effort operator notifications (service start/stop) posted to a webhook.

    Delivery runs as a detached task: callers never wait for it and a failed
    delivery is logged, not raised. Pending tasks are kept referenced so they
    are not garbage collected mid-flight, and `drain` lets shutdown wait for them.
    """
    def __init__(self, webhook_url: Optional[str], timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def notify_detached(self, message: str) -> Optional[asyncio.Task]:
        if not self.enabled:
            return None
        task = asyncio.get_running_loop().create_task(self._deliver(message))
        self._pending.add(task)
        task.add_done_callback(self._finished)
        return task

    async def drain(self):
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _deliver(self, message: str):
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.webhook_url, json={"text": message})
            response.raise_for_status()

    def _finished(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Notification delivery failed", extra={"error": repr(error)})
