"""Subprocess runner for ffmpeg/ffprobe invocations."""
import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from typing import Optional, Sequence

from hlspipe.errors import CommandError, CommandTimeoutError

logger = logging.getLogger(__name__)

# Seconds between SIGTERM and SIGKILL when tearing down a process group
TERMINATE_GRACE = 0.5


@dataclass
class CommandResult:
    """Combined stdout/stderr and exit status of a finished command."""

    output: str
    returncode: int


class CommandRunner:
    """Runs external binaries in their own process group."""

    async def run(
        self,
        binary: str,
        args: Sequence[str],
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run a command and capture its combined output.

        Args:
            binary: Executable name or path
            args: Arguments
            timeout: Deadline in seconds (None waits indefinitely)

        Returns:
            CommandResult of a zero exit

        Raises:
            CommandError: If the binary cannot be started or exits non-zero
            CommandTimeoutError: If the deadline passes first
        """
        return await self._execute(binary, args, None, timeout)

    async def run_with_input(
        self,
        data: bytes,
        binary: str,
        args: Sequence[str],
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run a command, feeding ``data`` to its stdin.

        Input is written while output is being read, so a child that fills
        its output pipe before consuming all input cannot deadlock.
        """
        return await self._execute(binary, args, data, timeout)

    async def _execute(
        self,
        binary: str,
        args: Sequence[str],
        data: Optional[bytes],
        timeout: Optional[float],
    ) -> CommandResult:
        logger.debug(f"Running: {binary} {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                binary,
                *args,
                stdin=asyncio.subprocess.PIPE if data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as e:
            raise CommandError(binary, None, str(e)) from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(data), timeout)
        except asyncio.TimeoutError:
            await terminate(process)
            raise CommandTimeoutError(binary, timeout) from None
        except asyncio.CancelledError:
            await terminate(process)
            raise

        output = stdout.decode(errors="replace") if stdout else ""
        if process.returncode != 0:
            raise CommandError(binary, process.returncode, output)

        return CommandResult(output=output, returncode=process.returncode)


async def terminate(process: asyncio.subprocess.Process):
    """Kill a process group: SIGTERM first, SIGKILL if it lingers."""
    if process.returncode is not None:
        return

    try:
        os.killpg(os.getpgid(process.pid), signal.SIGTERM)
    except ProcessLookupError:
        pass

    try:
        await asyncio.wait_for(process.wait(), TERMINATE_GRACE)
        return
    except asyncio.TimeoutError:
        pass

    try:
        os.killpg(os.getpgid(process.pid), signal.SIGKILL)
    except ProcessLookupError:
        pass
    await process.wait()
    logger.warning(f"Killed process group of pid {process.pid}")
