"""Tests for the sandboxed and privileged code executors (real subprocesses)."""

from __future__ import annotations

import shutil

import pytest

from taskbots.tools.code_executor import (
    TRUNCATION_MARKER,
    ExecutionResult,
    PrivilegedExecutor,
    SandboxedExecutor,
)

needs_node = pytest.mark.skipif(shutil.which("node") is None, reason="node is not installed")


class TestSandboxedExecutor:
    @pytest.mark.asyncio
    async def test_python_stdout_and_exit_code(self):
        result = await SandboxedExecutor().execute("python", "print(6 * 7)", 10_000)
        assert result.success
        assert result.exit_code == 0
        assert result.stdout == "42"
        assert not result.timed_out

    @pytest.mark.asyncio
    async def test_nonzero_exit_captures_stderr(self):
        code = "import sys\nsys.stderr.write('boom')\nsys.exit(3)"
        result = await SandboxedExecutor().execute("python", code, 10_000)
        assert not result.success
        assert result.exit_code == 3
        assert "boom" in result.stderr

    @pytest.mark.asyncio
    async def test_python_timeout_is_reported(self):
        result = await SandboxedExecutor().execute("python", "import time\ntime.sleep(10)", 500)
        assert result.timed_out
        assert not result.success
        assert result.duration_ms < 5_000
        assert "[TIMED OUT after 500ms]" in result.as_tool_result(500)

    @pytest.mark.asyncio
    async def test_output_over_cap_is_truncated(self):
        result = await SandboxedExecutor(max_output_bytes=1024).execute(
            "python", "print('x' * 5000)", 10_000
        )
        assert result.stdout.endswith(TRUNCATION_MARKER.strip())
        assert len(result.stdout) <= 1024 + len(TRUNCATION_MARKER)

    @pytest.mark.asyncio
    async def test_environment_is_minimal(self, monkeypatch):
        monkeypatch.setenv("TASKBOTS_SECRET_FOR_TEST", "hunter2")
        code = "import os\nprint(os.environ.get('TASKBOTS_SECRET_FOR_TEST', 'absent'))"
        result = await SandboxedExecutor().execute("python", code, 10_000)
        assert result.stdout == "absent"

    @pytest.mark.asyncio
    async def test_unknown_language(self):
        result = await SandboxedExecutor().execute("ruby", "puts 1", 1_000)  # type: ignore[arg-type]
        assert not result.success
        assert "Unsupported language" in result.stderr

    @needs_node
    @pytest.mark.asyncio
    async def test_nodejs(self):
        result = await SandboxedExecutor().execute("nodejs", "console.log(1 + 1)", 10_000)
        assert result.stdout == "2"

    @needs_node
    @pytest.mark.asyncio
    async def test_nodejs_timeout(self):
        result = await SandboxedExecutor().execute("nodejs", "setTimeout(() => {}, 10000)", 500)
        assert result.timed_out


class TestPrivilegedExecutor:
    @pytest.mark.asyncio
    async def test_work_dir_persists_between_calls(self, tmp_path):
        executor = PrivilegedExecutor(tmp_path / "job")
        await executor.execute("python", "open('state.txt', 'w').write('kept')", 10_000)
        result = await executor.execute("python", "print(open('state.txt').read())", 10_000)
        assert result.stdout == "kept"

        executor.cleanup()
        assert not (tmp_path / "job").exists()

    @pytest.mark.asyncio
    async def test_full_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TASKBOTS_VISIBLE_FOR_TEST", "yes")
        executor = PrivilegedExecutor(tmp_path)
        code = "import os\nprint(os.environ['TASKBOTS_VISIBLE_FOR_TEST'])"
        result = await executor.execute("python", code, 10_000)
        assert result.stdout == "yes"


class TestToolResultText:
    def test_format(self):
        text = ExecutionResult(success=True, stdout="out", stderr="", exit_code=0, duration_ms=12).as_tool_result(1000)
        assert text == "Exit code: 0\nDuration: 12ms\n\nstdout:\nout\n"
