"""Work queue abstraction for scan requested events.

The queue is an external collaborator with at-least-once delivery. The core
only needs two operations from it:
- enqueue an event (bounded timeout, failures raised as QueueError)
- re-register the consumer binding ("ensure subscription"), which must never
  take the caller down with it
"""

from typing import Any, Protocol

import httpx
import logfire
import sentry_sdk

from src.config import Settings, get_settings
from src.constants import SCAN_REQUESTED_EVENT
from src.middleware.correlation_id import current_correlation_id
from src.models.scan_models import ScanJob, ScanRequestedEvent


class QueueError(Exception):
    """Raised when an event could not be handed to the work queue."""

    pass


class EventQueue(Protocol):
    """Protocol for the work queue the scheduler and backup runner emit to."""

    async def enqueue(self, event_name: str, payload: dict[str, Any]) -> None:
        """Send one event.

        Raises:
            QueueError: the queue rejected the event or could not be reached
        """
        ...

    async def ensure_subscription(self) -> bool:
        """Refresh the consumer binding.

        Returns:
            True if the binding was refreshed (or nothing needed refreshing)
        """
        ...


class HttpEventQueue:
    """Event queue reached over HTTP.

    Events are POSTed as ``{"name": ..., "data": ...}`` to the event URL. The
    optional sync URL is PUT to re-register the consumer.

    Example:
        >>> queue = HttpEventQueue("https://queue.example.com/e/KEY")
        >>> await queue.enqueue("scan/requested", {"scan_job_id": "..."})
    """

    def __init__(
        self,
        event_url: str,
        sync_url: str | None = None,
        timeout_seconds: float = 10.0,
    ):
        if not event_url:
            raise ValueError("event_url is required")
        self._event_url = event_url
        self._sync_url = sync_url
        self._timeout = timeout_seconds

    async def enqueue(self, event_name: str, payload: dict[str, Any]) -> None:
        headers = {}
        correlation_id = current_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id

        body = {"name": event_name, "data": payload}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._event_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logfire.error(
                "Queue send failed",
                event_name=event_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise QueueError(f"Queue unreachable: {e}") from e

        if response.status_code >= 400:
            logfire.error(
                "Queue rejected event",
                event_name=event_name,
                status_code=response.status_code,
                response_body=response.text[:500],
            )
            raise QueueError(f"Queue returned HTTP {response.status_code}")

        logfire.info("Event enqueued", event_name=event_name)

    async def ensure_subscription(self) -> bool:
        if not self._sync_url:
            logfire.debug("No queue sync URL configured, skipping re-sync")
            return True

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.put(self._sync_url)
        except httpx.HTTPError as e:
            logfire.error(
                "Queue re-sync failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            sentry_sdk.capture_exception(e)
            return False

        if response.status_code >= 400:
            logfire.error(
                "Queue re-sync rejected",
                status_code=response.status_code,
                response_body=response.text[:500],
            )
            sentry_sdk.capture_message(
                f"Queue re-sync returned HTTP {response.status_code}", level="error"
            )
            return False

        logfire.info("Queue consumer re-synced")
        return True


class RecordingEventQueue:
    """In-process queue that records events instead of sending them.

    Example:
        >>> queue = RecordingEventQueue()
        >>> await queue.enqueue("scan/requested", {"scan_job_id": "1"})
        >>> queue.events
        [('scan/requested', {'scan_job_id': '1'})]
    """

    def __init__(
        self,
        fail_for: set[str] | None = None,
        subscription_ok: bool = True,
    ):
        """Initialize the recording queue.

        Args:
            fail_for: scan_job_id values whose enqueue raises QueueError
            subscription_ok: Result returned by ensure_subscription
        """
        self._fail_for = fail_for or set()
        self._subscription_ok = subscription_ok
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.subscription_calls = 0

    async def enqueue(self, event_name: str, payload: dict[str, Any]) -> None:
        if payload.get("scan_job_id") in self._fail_for:
            raise QueueError(f"Simulated failure for {payload.get('scan_job_id')}")
        self.events.append((event_name, payload))

    async def ensure_subscription(self) -> bool:
        self.subscription_calls += 1
        return self._subscription_ok


async def emit_scan_requested(queue: EventQueue, job: ScanJob) -> None:
    """Announce a scan job on the queue (new or re-emitted)."""
    event = ScanRequestedEvent(
        scan_job_id=job.id,
        url=job.url,
        parent_scan_job_id=job.parent_scan_id,
    )
    await queue.enqueue(SCAN_REQUESTED_EVENT, event.model_dump())


def get_event_queue(settings: Settings | None = None) -> HttpEventQueue:
    """Factory for the configured work queue."""
    settings = settings or get_settings()
    return HttpEventQueue(
        event_url=settings.queue_event_url,
        sync_url=settings.queue_sync_url,
        timeout_seconds=settings.queue_timeout_seconds,
    )
