"""Client factories.

:func:`get_task_service_client` is the single entry-point for obtaining a
:class:`~infra.task_service.TaskServiceClient` configured from the
application settings.  :func:`get_webhook_store` does the same for the
webhook delivery store.

Usage::

    from infra.factory import get_task_service_client

    api = get_task_service_client()
    me = await api.verify_auth()
"""

from __future__ import annotations

from infra.task_service import TaskServiceClient, TaskServiceError
from infra.webhook_store import WebhookStore


def _settings():
    """Lazy import to avoid circular imports and allow test overrides."""
    from taskbots.core.config import get_settings
    return get_settings()


def get_task_service_client(
    base_url: str | None = None,
    api_key: str | None = None,
) -> TaskServiceClient:
    """Return a :class:`TaskServiceClient` for the configured service.

    Explicit arguments take precedence over ``TASK_SERVICE_URL`` /
    ``TASK_SERVICE_API_KEY``.

    Raises:
        TaskServiceError: If no base URL or API key is available.
    """
    settings = _settings()
    url = base_url or settings.task_service_url
    key = api_key or settings.task_service_api_key
    if not url or not key:
        raise TaskServiceError(
            "Task Service is not configured. Set TASK_SERVICE_URL and TASK_SERVICE_API_KEY."
        )
    return TaskServiceClient(
        url,
        key,
        timeout=settings.http_timeout_seconds,
        max_retries=settings.http_max_retries,
    )


def get_webhook_store(db_path: str | None = None) -> WebhookStore:
    """Return a :class:`WebhookStore` backed by ``WEBHOOK_DB_PATH``."""
    return WebhookStore(db_path or _settings().webhook_db_path)
