"""FastAPI operator surface.

Read-only health and daemon status, plus the webhook pipeline: register
subscribers, fan task events out to them, and inspect or drain the
delivery queue.  When webhooks are enabled the lifespan runs the queue
every ``WEBHOOK_POLL_INTERVAL_SECONDS``.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from infra.factory import get_webhook_store
from infra.webhook_store import DeliveryStatus, WebhookBot
from taskbots.core.config import get_settings
from taskbots.core.logging import get_logger
from taskbots.webhooks.service import QueueRunResult, WebhookService

logger = get_logger("web.server")

# ── In-memory state ───────────────────────────────────────────────────────
_daemon: Any = None                      # set by main via set_daemon()
_webhooks: WebhookService | None = None
_queue_task: asyncio.Task | None = None


def set_daemon(daemon: Any) -> None:
    global _daemon
    _daemon = daemon


def set_webhook_service(service: WebhookService | None) -> None:
    global _webhooks
    _webhooks = service


def _require_webhooks() -> WebhookService:
    if _webhooks is None:
        raise HTTPException(status_code=503, detail="Webhooks are disabled")
    return _webhooks


# ── Models ────────────────────────────────────────────────────────────────

class TaskEventRequest(BaseModel):
    project_id: str
    event: str
    task: dict[str, Any] = Field(default_factory=dict)


class ProjectRequest(BaseModel):
    id: str
    owner_id: str


# ── Queue worker ──────────────────────────────────────────────────────────

async def _run_webhook_queue(service: WebhookService, interval: float) -> None:
    while True:
        try:
            await service.process_webhook_queue()
        except Exception as exc:
            logger.error("Webhook queue run failed: %s", exc, exc_info=True)
        await asyncio.sleep(interval)


# ── Lifespan ──────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    global _queue_task
    settings = get_settings()
    owns_service = False
    if settings.webhooks_enabled and _webhooks is None:
        set_webhook_service(
            WebhookService(
                get_webhook_store(),
                timeout=settings.webhook_timeout_seconds,
                batch_size=settings.webhook_batch_size,
            )
        )
        owns_service = True
    if settings.webhooks_enabled and _webhooks is not None:
        _queue_task = asyncio.create_task(
            _run_webhook_queue(_webhooks, settings.webhook_poll_interval_seconds)
        )
        logger.info("Webhook queue worker running")
    yield
    if _queue_task:
        _queue_task.cancel()
        with suppress(asyncio.CancelledError):
            await _queue_task
    _queue_task = None
    if owns_service and _webhooks is not None:
        await _webhooks.aclose()
        _webhooks.store.close()
        set_webhook_service(None)
    logger.info("Lifespan cleanup complete")


app = FastAPI(title="taskbots", version="0.1.0", lifespan=lifespan)


# ── API Endpoints ─────────────────────────────────────────────────────────

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/status")
async def get_status():
    settings = get_settings()
    if _daemon is None:
        return {
            "role": settings.agent_role,
            "agent_name": settings.agent_name,
            "bot_id": "",
            "in_flight": {},
            "tracked_chat_tasks": 0,
            "shutting_down": False,
        }
    return _daemon.status()


@app.post("/api/webhooks/bots")
async def register_webhook_bot(bot: WebhookBot):
    _require_webhooks().store.upsert_bot(bot)
    return {"status": "ok", "bot_id": bot.id}


@app.post("/api/webhooks/projects")
async def register_project(req: ProjectRequest):
    _require_webhooks().store.upsert_project(req.id, req.owner_id)
    return {"status": "ok", "project_id": req.id}


@app.post("/api/webhooks/events")
async def publish_task_event(req: TaskEventRequest):
    deliveries = _require_webhooks().notify_bots_of_task_event(req.project_id, req.event, req.task)
    return {"queued": len(deliveries), "delivery_ids": [d.id for d in deliveries]}


@app.post("/api/webhooks/process", response_model=QueueRunResult)
async def process_queue():
    return await _require_webhooks().process_webhook_queue()


@app.get("/api/webhooks/deliveries")
async def list_deliveries(status: DeliveryStatus | None = None, limit: int = 100):
    deliveries = _require_webhooks().store.list_deliveries(status=status, limit=limit)
    return [d.model_dump(mode="json") for d in deliveries]
