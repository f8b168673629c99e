"""
Child-process execution with bounded output and tree-wide timeout escalation.

``run_process`` never raises for process-level failures (spawn error, non-zero
exit, timeout); every outcome is a ProcessResult.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import psutil

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_MAX_OUTPUT_BYTES = 2 * 1024 * 1024
DEFAULT_KILL_GRACE_MS = 2_000
TRUNCATION_MARKER = "\n[output truncated]"
READ_CHUNK_BYTES = 64 * 1024
READER_DRAIN_S = 1.0


@dataclass
class ProcessResult:
    ok: bool
    stdout: str
    stderr: str
    exit_code: int
    execution_time: int
    error: Optional[str] = None
    timed_out: bool = False
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ok": self.ok,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exitCode": self.exit_code,
            "executionTime": self.execution_time,
            "timedOut": self.timed_out,
            "truncated": self.truncated,
        }
        if self.error:
            payload["error"] = self.error
        return payload


class _CappedBuffer:
    """Accumulates bytes up to a limit; everything beyond it is dropped."""

    def __init__(self, limit: int):
        self.limit = max(0, int(limit))
        self._chunks: List[bytes] = []
        self._size = 0
        self.truncated = False

    def feed(self, data: bytes) -> None:
        if self.truncated or not data:
            return
        room = self.limit - self._size
        if len(data) > room:
            data = data[:room]
            self.truncated = True
        if data:
            self._chunks.append(data)
            self._size += len(data)

    def text(self) -> str:
        out = b"".join(self._chunks).decode("utf-8", errors="replace")
        if self.truncated:
            out += TRUNCATION_MARKER
        return out


async def _pump(stream: Optional[asyncio.StreamReader], buffer: _CappedBuffer) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            return
        # Keep draining after the cap so the child never blocks on a full pipe.
        buffer.feed(chunk)


async def _feed_stdin(stream: asyncio.StreamWriter, data: bytes, cmd: str) -> None:
    # A child that never reads its stdin blocks drain(); the caller cancels this on timeout.
    try:
        stream.write(data)
        await stream.drain()
    except (BrokenPipeError, ConnectionResetError) as exc:
        logger.debug("stdin closed early by %s: %s", cmd, exc)
    finally:
        stream.close()


def terminate_tree(pid: int, grace_s: float) -> bool:
    """SIGTERM the process and its descendants, SIGKILL whatever outlives the grace period.

    Returns True once nothing in the tree is left running.
    """
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return True
    try:
        procs = root.children(recursive=True) + [root]
    except psutil.NoSuchProcess:
        procs = [root]

    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            continue
        except psutil.Error as exc:
            logger.debug("terminate failed for pid %s: %s", proc.pid, exc)

    _, alive = psutil.wait_procs(procs, timeout=grace_s)
    for proc in alive:
        try:
            proc.kill()
            logger.info("Killed pid %s after grace period", proc.pid)
        except psutil.NoSuchProcess:
            continue
        except psutil.Error as exc:
            logger.warning("kill failed for pid %s: %s", proc.pid, exc)
    if not alive:
        return True
    _, still_alive = psutil.wait_procs(alive, timeout=grace_s)
    return not still_alive


async def run_process(
    cmd: str,
    argv: Optional[List[str]] = None,
    *,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    stdin: Optional[str] = None,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    kill_grace_ms: int = DEFAULT_KILL_GRACE_MS,
) -> ProcessResult:
    """Spawn `cmd` with `argv` (no shell) and collect its output."""
    started = time.monotonic()

    def _elapsed() -> int:
        return int((time.monotonic() - started) * 1000)

    merged_env = dict(os.environ)
    if env:
        merged_env.update({str(k): str(v) for k, v in env.items()})

    try:
        proc = await asyncio.create_subprocess_exec(
            cmd,
            *(argv or []),
            cwd=cwd,
            env=merged_env,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        logger.warning("Failed to spawn %s: %s", cmd, exc)
        return ProcessResult(
            ok=False,
            stdout="",
            stderr="",
            exit_code=-1,
            execution_time=_elapsed(),
            error=f"Failed to spawn process: {exc}",
        )

    out_buf = _CappedBuffer(max_output_bytes)
    err_buf = _CappedBuffer(max_output_bytes)
    readers = [
        asyncio.create_task(_pump(proc.stdout, out_buf)),
        asyncio.create_task(_pump(proc.stderr, err_buf)),
    ]

    writer: Optional[asyncio.Task] = None
    if stdin is not None and proc.stdin is not None:
        writer = asyncio.create_task(_feed_stdin(proc.stdin, stdin.encode("utf-8"), cmd))

    timed_out = False
    try:
        await asyncio.wait_for(proc.wait(), timeout=max(0.001, timeout_ms / 1000.0))
    except asyncio.TimeoutError:
        timed_out = True
        logger.warning("Command %s timed out after %sms; terminating process tree", cmd, timeout_ms)
        await asyncio.to_thread(terminate_tree, proc.pid, kill_grace_ms / 1000.0)
        try:
            await asyncio.wait_for(proc.wait(), timeout=kill_grace_ms / 1000.0)
        except asyncio.TimeoutError:
            logger.error("Process %s (pid %s) did not exit after kill", cmd, proc.pid)

    if writer is not None and not writer.done():
        writer.cancel()
        await asyncio.wait([writer], timeout=READER_DRAIN_S)

    # Grandchildren may still hold the pipes open; do not wait on them forever.
    _, pending = await asyncio.wait(readers, timeout=READER_DRAIN_S)
    for task in pending:
        task.cancel()

    exit_code = proc.returncode if proc.returncode is not None else -1
    truncated = out_buf.truncated or err_buf.truncated
    stdout_text = out_buf.text()
    stderr_text = err_buf.text()

    if timed_out:
        return ProcessResult(
            ok=False,
            stdout=stdout_text,
            stderr=stderr_text,
            exit_code=-1,
            execution_time=_elapsed(),
            error=f"Command timed out after {timeout_ms}ms",
            timed_out=True,
            truncated=truncated,
        )

    ok = exit_code == 0
    return ProcessResult(
        ok=ok,
        stdout=stdout_text,
        stderr=stderr_text,
        exit_code=exit_code,
        execution_time=_elapsed(),
        error=None if ok else f"Process exited with code {exit_code}",
        truncated=truncated,
    )


__all__ = [
    "DEFAULT_TIMEOUT_MS",
    "DEFAULT_MAX_OUTPUT_BYTES",
    "DEFAULT_KILL_GRACE_MS",
    "TRUNCATION_MARKER",
    "ProcessResult",
    "terminate_tree",
    "run_process",
]
