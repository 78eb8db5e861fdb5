"""
Telemetry emission to the analytics ingestion endpoint.
"""

import asyncio
import time
import httpx
from typing import Any, Dict, List, Optional, Set

from shared.logging import get_logger
from ..events.models import EventRecord


class TelemetryEmitter:
    """Batches event records and posts them fire-and-forget.

    A batch is sent when ``batch_size`` records are queued or
    ``batch_timeout`` seconds after the first record of the batch was
    queued, whichever comes first. Send failures are logged and the batch
    is dropped; nothing is ever raised to the caller.
    """

    def __init__(self, api_endpoint: str, api_key: Optional[str] = None,
                 batch_size: int = 10, batch_timeout: float = 5.0,
                 timeout: float = 10.0):
        self.api_endpoint = api_endpoint.rstrip("/")
        self.api_key = api_key
        self.batch_size = batch_size
        self.batch_timeout = batch_timeout
        self.timeout = timeout
        self.logger = get_logger("personalization.telemetry")

        self.metadata: Dict[str, Any] = {}
        self.queue: List[Dict[str, Any]] = []
        self.stats = {"queued": 0, "sent": 0, "failed": 0}
        self.closed = False

        self._timer: Optional[asyncio.Task] = None
        self._sends: Set[asyncio.Task] = set()

    def set_metadata(self, **metadata: Any) -> None:
        """Metadata attached to every batch (sessionId, userAgent, ...)."""
        self.metadata.update({k: v for k, v in metadata.items() if v is not None})

    async def emit(self, record: EventRecord) -> None:
        """Queue a record."""
        if self.closed:
            self.logger.debug("Telemetry closed, dropping event", event_type=record.event_type.value)
            return

        self.queue.append(record.to_dict())
        self.stats["queued"] += 1

        if len(self.queue) >= self.batch_size:
            self._start_send(self._take_batch())
        elif self._timer is None:
            self._timer = asyncio.create_task(self._flush_later())

    def _take_batch(self) -> List[Dict[str, Any]]:
        batch, self.queue = self.queue, []
        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()
        return batch

    async def _flush_later(self) -> None:
        await asyncio.sleep(self.batch_timeout)
        batch = self._take_batch()
        if batch:
            await self._send(batch)

    def _start_send(self, batch: List[Dict[str, Any]]) -> None:
        task = asyncio.create_task(self._send(batch))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)

    async def _send(self, batch: List[Dict[str, Any]]) -> bool:
        body = {
            "events": batch,
            "metadata": {**self.metadata, "timestamp": time.time(), "eventCount": len(batch)},
        }
        headers = {"X-API-Key": self.api_key} if self.api_key else {}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.api_endpoint}/api/analytics/track",
                    json=body,
                    headers=headers
                )

            if not response.is_success:
                self.stats["failed"] += len(batch)
                self.logger.warning("Telemetry rejected", status_code=response.status_code, events=len(batch))
                return False

            self.stats["sent"] += len(batch)
            self.logger.debug("Telemetry sent", events=len(batch))
            return True

        except Exception as e:
            self.stats["failed"] += len(batch)
            self.logger.warning("Telemetry send failed", error=str(e), events=len(batch))
            return False

    async def flush(self) -> bool:
        """Send whatever is queued now."""
        batch = self._take_batch()
        if not batch:
            return True
        return await self._send(batch)

    async def close(self) -> None:
        """Flush the remainder and stop accepting events."""
        self.closed = True
        if self._sends:
            await asyncio.gather(*list(self._sends), return_exceptions=True)
        await self.flush()
