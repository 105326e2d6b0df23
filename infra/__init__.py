"""taskbots infrastructure layer: Task Service client and webhook storage.

All communication with the Task Service goes through this package.
Use :func:`~infra.factory.get_task_service_client` to obtain a client.

Quick start::

    from infra.factory import get_task_service_client

    api = get_task_service_client()
    me = await api.verify_auth()
    page = await api.list_tasks(assigned_to_bot=True, completed=False)
    await api.add_comment(page.tasks[0].id, "[Researcher] Picking up task")
"""

from infra.factory import get_task_service_client, get_webhook_store
from infra.models import (
    Artifact,
    ArtifactContent,
    BotInfo,
    Comment,
    CommentAuthor,
    Pagination,
    Task,
    TaskDetail,
    TaskPage,
    TaskStatus,
)
from infra.task_service import TaskServiceClient, TaskServiceError
from infra.webhook_store import DeliveryStatus, WebhookBot, WebhookDelivery, WebhookStore

__all__ = [
    # Models
    "Artifact",
    "ArtifactContent",
    "BotInfo",
    "Comment",
    "CommentAuthor",
    "Pagination",
    "Task",
    "TaskDetail",
    "TaskPage",
    "TaskStatus",
    # Client
    "TaskServiceClient",
    "TaskServiceError",
    # Webhooks
    "DeliveryStatus",
    "WebhookBot",
    "WebhookDelivery",
    "WebhookStore",
    # Factory
    "get_task_service_client",
    "get_webhook_store",
]
