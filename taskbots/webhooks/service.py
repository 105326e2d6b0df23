"""Outbound webhook delivery with bounded retries.

Deliveries are queued as ``pending`` rows in the :class:`~infra.webhook_store.WebhookStore`
and pushed by :meth:`WebhookService.process_webhook_queue`.  A failing
endpoint is retried on a fixed ladder (1 min, 5 min, 15 min, then the last
step repeated) until ``MAX_ATTEMPTS`` is reached, after which the row is
``failed`` for good.

Receivers verify ``X-Webhook-Signature`` as ``sha256=<hex HMAC-SHA256>`` of
the raw request body, keyed by their webhook secret.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from pydantic import BaseModel

from infra.webhook_store import DeliveryStatus, WebhookDelivery, WebhookStore
from taskbots.core.logging import get_logger

logger = get_logger("webhooks.service")

MAX_ATTEMPTS = 3
RETRY_DELAYS = (
    timedelta(minutes=1),
    timedelta(minutes=5),
    timedelta(minutes=15),
)
DELIVERY_TIMEOUT_SECONDS = 10.0
BATCH_SIZE = 50
RESPONSE_SNIPPET_CHARS = 1000


def retry_delay(attempts: int) -> timedelta:
    """Delay before the next try after ``attempts`` failed attempts."""
    index = min(max(attempts, 1) - 1, len(RETRY_DELAYS) - 1)
    return RETRY_DELAYS[index]


def sign_payload(body: str, secret: str | None) -> str:
    if not secret:
        return ""
    digest = hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class QueueRunResult(BaseModel):
    processed: int = 0
    delivered: int = 0
    failed: int = 0


class WebhookService:
    """Queue, deliver and fan out webhook notifications.

    Args:
        store: Delivery persistence.
        http: Shared ``httpx.AsyncClient``; one is created when omitted.
        now: Clock returning an aware UTC datetime (injectable for tests).
        max_attempts: Attempts before a delivery is marked failed.
        timeout: Per-delivery HTTP timeout in seconds.
        batch_size: Rows handled per :meth:`process_webhook_queue` run.
        enabled: Gate for :meth:`notify_bots_of_task_event`.
    """

    def __init__(
        self,
        store: WebhookStore,
        http: httpx.AsyncClient | None = None,
        now: Callable[[], datetime] = _utcnow,
        max_attempts: int = MAX_ATTEMPTS,
        timeout: float = DELIVERY_TIMEOUT_SECONDS,
        batch_size: int = BATCH_SIZE,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self._http = http or httpx.AsyncClient()
        self._now = now
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.batch_size = batch_size
        self.enabled = enabled

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------

    def queue_webhook_event(self, bot_id: str, event: str, payload: dict[str, Any]) -> WebhookDelivery:
        delivery = self.store.create_delivery(bot_id, event, payload, created_at=self._now())
        logger.debug("Queued webhook %s (%s) for bot %s", delivery.id, event, bot_id)
        return delivery

    def _schedule_failure(self, delivery: WebhookDelivery, **fields: Any) -> None:
        attempts = delivery.attempts + 1
        now = self._now()
        if attempts < self.max_attempts:
            status = DeliveryStatus.PENDING
            next_retry_at: datetime | None = now + retry_delay(attempts)
        else:
            status = DeliveryStatus.FAILED
            next_retry_at = None
        self.store.update_delivery(
            delivery.id,
            status=status,
            attempts=attempts,
            last_attempt_at=now,
            next_retry_at=next_retry_at,
            **fields,
        )
        if status == DeliveryStatus.FAILED:
            logger.warning(
                "Webhook %s failed permanently after %d attempts", delivery.id, attempts
            )
        else:
            logger.info(
                "Webhook %s attempt %d failed; retry at %s", delivery.id, attempts, next_retry_at
            )

    async def deliver_webhook(self, delivery_id: str) -> bool:
        """Attempt one delivery.  Returns True on a 2xx response."""
        delivery = self.store.get_delivery(delivery_id)
        if delivery is None:
            logger.warning("Webhook delivery %s not found", delivery_id)
            return False

        bot = self.store.get_bot(delivery.bot_id)
        if bot is None or not bot.is_active or not bot.webhook_url:
            self.store.update_delivery(
                delivery.id,
                status=DeliveryStatus.FAILED,
                last_attempt_at=self._now(),
                next_retry_at=None,
            )
            logger.warning("Webhook %s dropped: bot %s unavailable", delivery.id, delivery.bot_id)
            return False

        body = json.dumps(
            {
                "event": delivery.event,
                "deliveryId": delivery.id,
                "timestamp": self._now().isoformat(),
                "data": delivery.payload,
            }
        )
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": sign_payload(body, bot.webhook_secret),
            "X-Webhook-Event": delivery.event,
            "X-Webhook-Delivery": delivery.id,
        }

        try:
            response = await self._http.post(
                bot.webhook_url, content=body, headers=headers, timeout=self.timeout
            )
        except httpx.HTTPError as exc:
            self._schedule_failure(
                delivery, response=(str(exc) or "Network error")[:RESPONSE_SNIPPET_CHARS]
            )
            return False

        snippet = response.text[:RESPONSE_SNIPPET_CHARS]
        if response.is_success:
            now = self._now()
            self.store.update_delivery(
                delivery.id,
                status=DeliveryStatus.DELIVERED,
                http_status=response.status_code,
                response=snippet,
                attempts=delivery.attempts + 1,
                last_attempt_at=now,
                delivered_at=now,
                next_retry_at=None,
            )
            logger.info("Webhook %s delivered (%d)", delivery.id, response.status_code)
            return True

        self._schedule_failure(delivery, http_status=response.status_code, response=snippet)
        return False

    async def process_webhook_queue(self) -> QueueRunResult:
        """Deliver up to ``batch_size`` due pending rows, oldest first."""
        due = self.store.list_due_deliveries(self._now(), limit=self.batch_size)
        result = QueueRunResult(processed=len(due))
        for delivery in due:
            if await self.deliver_webhook(delivery.id):
                result.delivered += 1
            else:
                result.failed += 1
        if due:
            logger.info(
                "Webhook queue run: processed=%d delivered=%d failed=%d",
                result.processed, result.delivered, result.failed,
            )
        return result

    def notify_bots_of_task_event(
        self,
        project_id: str,
        event: str,
        task: BaseModel | dict[str, Any],
    ) -> list[WebhookDelivery]:
        """Enqueue ``event`` for every bot interested in ``project_id``.

        A bot is interested when its project list names the project, or when
        its list is empty and its owner owns the project.
        """
        if not self.enabled:
            return []

        payload = (
            task.model_dump(mode="json", by_alias=True) if isinstance(task, BaseModel) else dict(task)
        )
        owner = self.store.get_project_owner(project_id)
        queued: list[WebhookDelivery] = []
        for bot in self.store.list_webhook_bots():
            if bot.project_ids:
                interested = project_id in bot.project_ids
            else:
                interested = owner is not None and bot.owner_id == owner
            if interested:
                queued.append(self.queue_webhook_event(bot.id, event, payload))
        logger.info("Event %s on project %s fanned out to %d bot(s)", event, project_id, len(queued))
        return queued
