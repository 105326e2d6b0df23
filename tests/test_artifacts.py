"""Tests for artifact download/upload helpers."""

from __future__ import annotations

import base64

import pytest

from conftest import FakeTaskService
from taskbots.tools.artifacts import (
    MAX_UPLOAD_BASE64_CHARS,
    ArtifactError,
    download_artifact,
    resolve_in_work_dir,
    safe_file_name,
    upload_artifact,
    upload_text_artifact,
)


class TestPaths:
    def test_safe_file_name_strips_directories(self):
        assert safe_file_name("../../etc/passwd") == "passwd"
        assert safe_file_name("dir\\evil.txt") == "evil.txt"

    def test_safe_file_name_rejects_empty(self):
        with pytest.raises(ArtifactError):
            safe_file_name("..")

    def test_resolve_refuses_escape(self, tmp_path):
        assert resolve_in_work_dir(tmp_path, "out/a.txt") == (tmp_path / "out/a.txt").resolve()
        with pytest.raises(ArtifactError):
            resolve_in_work_dir(tmp_path, "../outside.txt")


class TestDownload:
    @pytest.mark.asyncio
    async def test_decodes_into_work_dir(self, tmp_path):
        api = FakeTaskService()
        task = api.add_task()
        artifact = api.seed_artifact(task.id, "data.csv", b"a,b\n1,2\n")

        result = await download_artifact(api, task.id, artifact.id, tmp_path / "work")

        assert result.success
        assert result.file_name == "data.csv"
        assert (tmp_path / "work" / "data.csv").read_bytes() == b"a,b\n1,2\n"

    @pytest.mark.asyncio
    async def test_missing_artifact_reports_error(self, tmp_path):
        api = FakeTaskService()
        task = api.add_task()
        result = await download_artifact(api, task.id, "nope", tmp_path)
        assert not result.success
        assert "not found" in result.error.lower()


class TestUpload:
    @pytest.mark.asyncio
    async def test_uploads_file_with_guessed_mime(self, tmp_path):
        api = FakeTaskService()
        task = api.add_task()
        path = tmp_path / "report.json"
        path.write_text('{"ok": true}')

        result = await upload_artifact(api, task.id, path)

        assert result.success
        stored = api.artifacts[task.id][0]
        assert stored.file_name == "report.json"
        assert stored.mime_type == "application/json"
        assert base64.b64decode(stored.content) == b'{"ok": true}'

    @pytest.mark.asyncio
    async def test_oversized_file_rejected_locally(self, tmp_path):
        api = FakeTaskService()
        task = api.add_task()
        path = tmp_path / "big.bin"
        path.write_bytes(b"\0" * (MAX_UPLOAD_BASE64_CHARS // 4 * 3 + 3))

        result = await upload_artifact(api, task.id, path)

        assert not result.success
        assert "too large" in result.error
        assert api.artifacts[task.id] == []

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        api = FakeTaskService()
        task = api.add_task()
        result = await upload_artifact(api, task.id, tmp_path / "ghost.txt")
        assert not result.success
        assert "not found" in result.error

    @pytest.mark.asyncio
    async def test_text_upload(self):
        api = FakeTaskService()
        task = api.add_task()
        result = await upload_text_artifact(api, task.id, "out.txt", "hello")
        assert result.success
        assert api.artifacts[task.id][0].mime_type == "text/plain"
