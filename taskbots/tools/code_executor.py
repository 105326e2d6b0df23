"""Code execution for agent tool calls.

Two executors share one contract (:class:`CodeExecutor`):

* :class:`SandboxedExecutor`: fresh temp directory per call, stripped
  environment, small output cap.  Used by the researcher.
* :class:`PrivilegedExecutor`: full environment and a persistent per-task
  working directory, so packages installed in one round are there in the
  next.  Used by the orchestrator.

Neither ever raises for a failing script: timeouts, non-zero exits and
spawn failures all come back as an :class:`ExecutionResult`.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import signal
import sys
import tempfile
import time
from pathlib import Path
from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel

from taskbots.core.logging import get_logger

logger = get_logger("tools.code_executor")

Language = Literal["python", "nodejs"]

SANDBOX_MAX_OUTPUT_BYTES = 50 * 1024
PRIVILEGED_MAX_OUTPUT_BYTES = 500 * 1024
TRUNCATION_MARKER = "\n[OUTPUT TRUNCATED]"
_READ_CHUNK = 64 * 1024
# Grace period for pipe readers after the process has been killed
_DRAIN_GRACE_SECONDS = 2.0


class ExecutionResult(BaseModel):
    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int = -1
    duration_ms: int = 0
    timed_out: bool = False

    def as_tool_result(self, timeout_ms: int) -> str:
        """Text handed back to the model as the tool result."""
        text = f"Exit code: {self.exit_code}\nDuration: {self.duration_ms}ms\n"
        if self.stdout:
            text += f"\nstdout:\n{self.stdout}\n"
        if self.stderr:
            text += f"\nstderr:\n{self.stderr}\n"
        if self.timed_out:
            text += f"\n[TIMED OUT after {timeout_ms}ms]\n"
        return text


@runtime_checkable
class CodeExecutor(Protocol):
    async def execute(self, language: Language, code: str, timeout_ms: int) -> ExecutionResult:
        ...


def _script_for(language: str) -> tuple[str, list[str]]:
    """Return (file name, command) for a language."""
    if language == "nodejs":
        return "script.js", ["node", "script.js"]
    if language == "python":
        return "script.py", [sys.executable or "python3", "script.py"]
    raise ValueError(f"Unsupported language: {language!r} (expected 'python' or 'nodejs')")


async def _read_capped(stream: asyncio.StreamReader, limit: int) -> str:
    """Read a pipe to EOF, keeping at most ``limit`` bytes."""
    kept = bytearray()
    truncated = False
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        room = limit - len(kept)
        if room > 0:
            kept.extend(chunk[:room])
        if len(chunk) > max(room, 0):
            truncated = True
    text = kept.decode("utf-8", errors="replace")
    if truncated:
        text += TRUNCATION_MARKER
    return text


def _kill_tree(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass
    except AttributeError:  # pragma: no cover - no process groups on this platform
        proc.kill()


async def run_process(
    argv: list[str],
    cwd: Path,
    env: dict[str, str],
    timeout_ms: int,
    max_output_bytes: int,
) -> ExecutionResult:
    """Spawn ``argv`` and collect capped output, killing it on timeout."""
    start = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as exc:
        logger.error("Process spawn error for %s: %s", argv[0], exc)
        return ExecutionResult(
            success=False,
            stderr=str(exc),
            exit_code=-1,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    out_task = asyncio.create_task(_read_capped(proc.stdout, max_output_bytes))
    err_task = asyncio.create_task(_read_capped(proc.stderr, max_output_bytes))

    timed_out = False
    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        timed_out = True
        _kill_tree(proc)
        await proc.wait()

    done, pending = await asyncio.wait({out_task, err_task}, timeout=_DRAIN_GRACE_SECONDS)
    for task in pending:
        task.cancel()
    stdout = out_task.result() if out_task in done else ""
    stderr = err_task.result() if err_task in done else ""

    duration_ms = int((time.monotonic() - start) * 1000)
    exit_code = proc.returncode if proc.returncode is not None else -1
    if timed_out:
        stderr = (stderr + f"\n[Process killed: exceeded {timeout_ms}ms timeout]").strip()

    logger.debug(
        "Execution finished (exit=%s, duration=%dms, timed_out=%s, stdout=%d, stderr=%d)",
        exit_code, duration_ms, timed_out, len(stdout), len(stderr),
    )
    return ExecutionResult(
        success=exit_code == 0 and not timed_out,
        stdout=stdout.strip(),
        stderr=stderr.strip(),
        exit_code=exit_code,
        duration_ms=duration_ms,
        timed_out=timed_out,
    )


class SandboxedExecutor:
    """Runs each snippet in a throwaway directory with a minimal environment."""

    def __init__(
        self,
        max_output_bytes: int = SANDBOX_MAX_OUTPUT_BYTES,
        isolate_network: bool = False,
    ) -> None:
        self.max_output_bytes = max_output_bytes
        self.isolate_network = isolate_network
        self._unshare = shutil.which("unshare") if isolate_network else None
        if isolate_network and not self._unshare:
            logger.warning("Network isolation requested but 'unshare' is not available")

    def _env(self, tmp_dir: str) -> dict[str, str]:
        env = {
            "PATH": os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin"),
            "HOME": tmp_dir,
            "TMPDIR": tmp_dir,
            "TEMP": tmp_dir,
            "TMP": tmp_dir,
        }
        if os.environ.get("NODE_PATH"):
            env["NODE_PATH"] = os.environ["NODE_PATH"]
        return env

    async def execute(self, language: Language, code: str, timeout_ms: int) -> ExecutionResult:
        try:
            file_name, argv = _script_for(language)
        except ValueError as exc:
            return ExecutionResult(success=False, stderr=str(exc), exit_code=-1)

        tmp_dir = tempfile.mkdtemp(prefix="taskbots-exec-")
        try:
            (Path(tmp_dir) / file_name).write_text(code, encoding="utf-8")
            if self._unshare:
                argv = [self._unshare, "--map-root-user", "--net", *argv]
            logger.debug("Executing %s snippet in %s (timeout=%dms)", language, tmp_dir, timeout_ms)
            return await run_process(
                argv, Path(tmp_dir), self._env(tmp_dir), timeout_ms, self.max_output_bytes
            )
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)


class PrivilegedExecutor:
    """Runs snippets with the full environment in a persistent working directory.

    The directory is created on first use.  Its removal belongs to whoever
    owns the task (see the orchestrator brain), never to a single call.
    """

    def __init__(self, work_dir: str | Path, max_output_bytes: int = PRIVILEGED_MAX_OUTPUT_BYTES) -> None:
        self.work_dir = Path(work_dir)
        self.max_output_bytes = max_output_bytes

    async def execute(self, language: Language, code: str, timeout_ms: int) -> ExecutionResult:
        try:
            file_name, argv = _script_for(language)
        except ValueError as exc:
            return ExecutionResult(success=False, stderr=str(exc), exit_code=-1)

        self.work_dir.mkdir(parents=True, exist_ok=True)
        (self.work_dir / file_name).write_text(code, encoding="utf-8")
        logger.debug("Executing %s in %s (timeout=%dms)", language, self.work_dir, timeout_ms)
        return await run_process(
            argv, self.work_dir, dict(os.environ), timeout_ms, self.max_output_bytes
        )

    def cleanup(self) -> None:
        shutil.rmtree(self.work_dir, ignore_errors=True)
