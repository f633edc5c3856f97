"""Process runner: one agent CLI invocation per call, captured as a RunRecord."""

import asyncio
import codecs
import logging
import os
import signal
import time

from council.models import AgentSpec, RunRecord, RunStatus

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 4096
# Seconds between SIGTERM and SIGKILL when a run times out
_TERMINATE_GRACE_SEC = 2.0
_POSIX = os.name == "posix"


def _send_signal(proc: asyncio.subprocess.Process, sig: int) -> None:
    """Signal the whole process group so children of wrapper scripts die too.

    On POSIX the group outlives its leader when a background child still runs,
    so it is signalled even after the leader has exited.
    """
    try:
        if _POSIX:
            os.killpg(proc.pid, sig)
        elif proc.returncode is None:
            proc.send_signal(sig)
    except (ProcessLookupError, PermissionError):
        pass


def _finish(
    record: RunRecord,
    status: RunStatus,
    exit_code: int | None = None,
    error_message: str | None = None,
) -> None:
    """Move a record into a terminal state unless a cancel request already did."""
    if exit_code is not None:
        record.exit_code = exit_code
    if record.end_time is None:
        record.end_time = time.time()
    if record.status.is_terminal:
        return
    record.status = status
    if error_message is not None:
        record.error_message = error_message


def cancel_run(record: RunRecord) -> bool:
    """Kill a running invocation and mark it ``killed``.

    Returns False when the record had already reached a terminal state.
    """
    if record.status.is_terminal:
        return False
    record.status = RunStatus.KILLED
    record.end_time = time.time()
    record.error_message = "Cancelled"
    if record.process is not None:
        _send_signal(record.process, signal.SIGKILL)
    logger.info("Agent %s cancelled", record.spec.name)
    return True


async def _write_stdin(proc: asyncio.subprocess.Process, text: str) -> None:
    if proc.stdin is None:
        return
    try:
        proc.stdin.write(text.encode("utf-8"))
        await proc.stdin.drain()
        proc.stdin.close()
        await proc.stdin.wait_closed()
    except (BrokenPipeError, ConnectionResetError):
        # The process exited (or closed stdin) before reading the whole prompt
        logger.debug("stdin closed early by %s", proc.pid)


async def _read_stream(
    stream: asyncio.StreamReader | None,
    chunks: list[str],
    record: RunRecord,
) -> None:
    """Append decoded chunks as they arrive, until EOF."""
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        data = await stream.read(_CHUNK_SIZE)
        text = decoder.decode(data, final=not data)
        if text and not record.status.is_terminal:
            chunks.append(text)
        if not data:
            break


async def _communicate(
    proc: asyncio.subprocess.Process,
    record: RunRecord,
    stdin_text: str | None,
) -> int:
    tasks = [
        _read_stream(proc.stdout, record.stdout, record),
        _read_stream(proc.stderr, record.stderr, record),
    ]
    if stdin_text is not None:
        tasks.append(_write_stdin(proc, stdin_text))
    await asyncio.gather(*tasks)
    return await proc.wait()


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """Graceful shutdown: SIGTERM first, SIGKILL if the process lingers."""
    _send_signal(proc, signal.SIGTERM)
    try:
        await asyncio.wait_for(proc.wait(), timeout=_TERMINATE_GRACE_SEC)
    except asyncio.TimeoutError:
        _send_signal(proc, signal.SIGKILL)
        await proc.wait()
    # Background children can keep the group alive after the leader exits
    _send_signal(proc, signal.SIGKILL)


async def run_agent(
    spec: AgentSpec,
    prompt: str,
    timeout_sec: float | None = None,
    record: RunRecord | None = None,
) -> RunRecord:
    """Run one agent CLI to completion, timeout or cancellation.

    Args:
        spec: The agent to invoke.
        prompt: Prompt text, written to stdin or appended as the last argument
            depending on ``spec.prompt_via_stdin``.
        timeout_sec: Per-invocation timeout. None or 0 means unbounded.
        record: Optional pre-created record, so callers can hold a handle for
            ``cancel_run`` before the process finishes.

    Returns:
        The record in a terminal state. Never raises for process failures;
        the outcome is in ``record.status``.
    """
    if record is None:
        record = RunRecord(spec=spec)
    if record.status.is_terminal:
        # Cancelled before it was started
        return record

    if spec.prompt_via_stdin:
        argv = list(spec.command)
        stdin_text: str | None = prompt
    else:
        argv = [*spec.command, prompt]
        stdin_text = None

    record.status = RunStatus.RUNNING
    record.start_time = time.time()

    if not spec.command:
        _finish(record, RunStatus.ERROR, error_message="Empty command")
        logger.warning("Agent %s has an empty command", spec.name)
        return record

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if stdin_text is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=_POSIX,
        )
    except (OSError, ValueError) as exc:
        _finish(record, RunStatus.ERROR, error_message=f"Failed to start {argv[0]}: {exc}")
        logger.warning("Agent %s could not be started: %s", spec.name, exc)
        return record

    record.process = proc
    if record.status is RunStatus.KILLED:
        _send_signal(proc, signal.SIGKILL)

    try:
        if timeout_sec:
            returncode = await asyncio.wait_for(_communicate(proc, record, stdin_text), timeout=timeout_sec)
        else:
            returncode = await _communicate(proc, record, stdin_text)
    except asyncio.TimeoutError:
        await _terminate(proc)
        _finish(record, RunStatus.TIMEOUT, exit_code=proc.returncode, error_message=f"Timed out after {timeout_sec}s")
        logger.warning("Agent %s timed out after %ss", spec.name, timeout_sec)
        return record
    except asyncio.CancelledError:
        cancel_run(record)
        raise

    if returncode == 0:
        _finish(record, RunStatus.COMPLETED, exit_code=0)
    else:
        _finish(record, RunStatus.ERROR, exit_code=returncode, error_message=f"Exit code {returncode}")

    logger.info(
        "Agent %s %s in %.2fs (exit %s)",
        spec.name,
        record.status.value,
        record.duration_sec or 0.0,
        record.exit_code,
    )
    return record
