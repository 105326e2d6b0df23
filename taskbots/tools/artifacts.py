"""Moving task attachments between the Task Service and a local working directory.

Both functions report failures in the returned :class:`ArtifactTransfer`
instead of raising, because their result is handed to the model as a
tool result.
"""

from __future__ import annotations

import base64
import binascii
import mimetypes
from pathlib import Path

from pydantic import BaseModel

from infra.task_service import TaskServiceClient, TaskServiceError
from taskbots.core.logging import get_logger

logger = get_logger("tools.artifacts")

# Upload limit, measured on the base64-encoded payload
MAX_UPLOAD_BASE64_CHARS = 1_000_000


class ArtifactError(Exception):
    """Raised for local artifact problems (bad path, bad encoding)."""


class ArtifactTransfer(BaseModel):
    success: bool
    file_path: str | None = None
    file_name: str | None = None
    artifact_id: str | None = None
    error: str | None = None


def safe_file_name(name: str) -> str:
    """Reduce a server-supplied file name to a plain basename."""
    base = Path(name.replace("\\", "/")).name
    if base in ("", ".", ".."):
        raise ArtifactError(f"Invalid artifact file name: {name!r}")
    return base


def resolve_in_work_dir(work_dir: str | Path, relative: str) -> Path:
    """Resolve ``relative`` inside ``work_dir``; refuse paths that escape it."""
    root = Path(work_dir).resolve()
    target = (root / relative).resolve()
    if target != root and root not in target.parents:
        raise ArtifactError(f"Path escapes the working directory: {relative}")
    return target


def guess_mime_type(file_name: str) -> str:
    return mimetypes.guess_type(file_name)[0] or "application/octet-stream"


async def download_artifact(
    api: TaskServiceClient,
    task_id: str,
    artifact_id: str,
    work_dir: str | Path,
) -> ArtifactTransfer:
    """Fetch an artifact and write its decoded content into ``work_dir``."""
    try:
        artifact = await api.get_artifact(task_id, artifact_id)
        file_name = safe_file_name(artifact.file_name)
        payload = base64.b64decode(artifact.content, validate=False)

        target_dir = Path(work_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        local_path = target_dir / file_name
        local_path.write_bytes(payload)
    except (TaskServiceError, ArtifactError, binascii.Error, OSError) as exc:
        logger.error("Failed to download artifact %s of task %s: %s", artifact_id, task_id, exc)
        return ArtifactTransfer(success=False, error=str(exc))

    logger.info(
        "Artifact downloaded (task=%s, artifact=%s, file=%s, bytes=%d)",
        task_id, artifact_id, file_name, len(payload),
    )
    return ArtifactTransfer(
        success=True,
        file_path=str(local_path),
        file_name=file_name,
        artifact_id=artifact_id,
    )


async def upload_text_artifact(
    api: TaskServiceClient,
    task_id: str,
    file_name: str,
    text: str,
    mime_type: str = "text/plain",
) -> ArtifactTransfer:
    """Attach in-memory text (e.g. captured program output) to a task."""
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    if len(encoded) > MAX_UPLOAD_BASE64_CHARS:
        return ArtifactTransfer(
            success=False,
            error=f"Text too large. Base64 size: {len(encoded)} chars (max {MAX_UPLOAD_BASE64_CHARS})",
        )
    try:
        artifact = await api.upload_artifact(task_id, file_name, mime_type, encoded)
    except TaskServiceError as exc:
        return ArtifactTransfer(success=False, error=str(exc))
    return ArtifactTransfer(success=True, file_name=file_name, artifact_id=artifact.id)


async def upload_artifact(
    api: TaskServiceClient,
    task_id: str,
    file_path: str | Path,
    file_name: str | None = None,
    mime_type: str | None = None,
) -> ArtifactTransfer:
    """Attach a local file to a task.  Oversized files are rejected locally."""
    path = Path(file_path)
    name = file_name or path.name
    if not path.is_file():
        return ArtifactTransfer(success=False, error=f"File not found: {path}")

    try:
        encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    except OSError as exc:
        return ArtifactTransfer(success=False, error=f"Could not read {path}: {exc}")

    if len(encoded) > MAX_UPLOAD_BASE64_CHARS:
        return ArtifactTransfer(
            success=False,
            error=f"File too large. Base64 size: {len(encoded)} chars (max {MAX_UPLOAD_BASE64_CHARS})",
        )

    try:
        artifact = await api.upload_artifact(task_id, name, mime_type or guess_mime_type(name), encoded)
    except TaskServiceError as exc:
        logger.error("Failed to upload %s to task %s: %s", path, task_id, exc)
        return ArtifactTransfer(success=False, error=str(exc))

    logger.info("Artifact uploaded (task=%s, file=%s, artifact=%s)", task_id, name, artifact.id)
    return ArtifactTransfer(success=True, file_path=str(path), file_name=name, artifact_id=artifact.id)
