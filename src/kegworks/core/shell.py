"""Asynchronous subprocess execution with timeout."""

from __future__ import annotations

import asyncio
import shlex
import time
from pathlib import Path
from typing import Mapping, Optional

from kegworks.core.errors import CommandTimeoutError
from kegworks.core.logging import get_logger

log = get_logger(__name__)


async def run_capture(
    *cmd: str,
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
) -> tuple[str, str, int]:
    """Run a command asynchronously with optional timeout.

    Args:
        *cmd: Command and its arguments to run.
        cwd: Working directory for the command.
        env: Complete environment for the command.
        timeout: Timeout in seconds, None for no limit.

    Returns:
        A tuple of (stdout, stderr, returncode).

    Raises:
        CommandTimeoutError: If the command times out.
    """
    start = time.perf_counter()
    command = shlex.join(cmd)
    log.debug("command_start", command=command, cwd=str(cwd) if cwd else None, timeout=timeout)

    process = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE
    )

    try:
        out, err = await asyncio.wait_for(process.communicate(), timeout)
        duration_ms = int((time.perf_counter() - start) * 1000)
        log.info(
            "command_complete",
            command=command,
            returncode=process.returncode,
            duration_ms=duration_ms
        )

    except asyncio.TimeoutError as e:
        duration_ms = int((time.perf_counter() - start) * 1000)
        log.error(
            "command_timeout",
            command=command,
            timeout=timeout,
            duration_ms=duration_ms
        )
        try:
            process.kill()
            await process.wait()
        finally:
            raise CommandTimeoutError(
                command=command,
                timeout=timeout,
                context={"duration_ms": duration_ms}
            ) from e

    except asyncio.CancelledError:
        log.warning("command_cancelled", command=command)
        process.kill()
        await process.wait()
        raise

    return (
        out.decode(errors="replace").strip(),
        err.decode(errors="replace").strip(),
        process.returncode,
    )
