"""Webhook delivery for emitted events"""

import asyncio
import hmac
import hashlib
from typing import Optional, List, Set

import httpx
import structlog

from promptops.events.bus import EventBus
from promptops.models.events import Event

logger = structlog.get_logger(__name__)


class WebhookManager:
    """Forward bus events to an HTTP endpoint"""

    def __init__(
        self,
        url: str,
        secret: Optional[str] = None,
        max_retries: int = 3,
        retry_delays: Optional[List[float]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.url = url
        self.secret = secret
        self.max_retries = max_retries
        self.retry_delays = retry_delays if retry_delays is not None else [1, 5, 30]  # seconds
        self.transport = transport
        self.timeout = timeout
        self.delivered = 0
        self.failed = 0
        self._pending: Set[asyncio.Task] = set()
        self._unsubscribe = None

    def attach(self, bus: EventBus):
        """Subscribe to every event on the bus"""
        self._unsubscribe = bus.subscribe(self.handle_event)

    def handle_event(self, event: Event):
        """Schedule delivery without blocking the emitter"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; webhook skipped", event_type=event.event_type.value)
            return

        task = loop.create_task(self.send_webhook(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def send_webhook(self, event: Event) -> bool:
        """Deliver one event; returns whether it was accepted"""
        body = event.model_dump_json()
        signature = self._sign_payload(body, self.secret)

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    response = await client.post(
                        self.url,
                        content=body,
                        headers={
                            "Content-Type": "application/json",
                            "X-PromptOps-Signature": signature,
                            "X-PromptOps-Event": event.event_type.value,
                        },
                    )
                    response.raise_for_status()
                    self.delivered += 1
                    return True
            except httpx.HTTPError as e:
                if attempt < self.max_retries - 1:
                    delay = self.retry_delays[min(attempt, len(self.retry_delays) - 1)] if self.retry_delays else 0
                    await asyncio.sleep(delay)
                else:
                    self.failed += 1
                    logger.error(
                        "Webhook delivery failed",
                        attempts=self.max_retries,
                        event_type=event.event_type.value,
                        error=str(e),
                    )
        return False

    async def flush(self):
        """Wait for in-flight deliveries"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self):
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        for task in list(self._pending):
            task.cancel()
        await self.flush()

    def _sign_payload(self, payload: str, secret: Optional[str]) -> str:
        """Sign webhook payload"""
        if not secret:
            return ""

        signature = hmac.new(
            secret.encode(),
            payload.encode(),
            hashlib.sha256,
        ).hexdigest()

        return f"sha256={signature}"
