"""Subprocess execution with bounded output capture."""

import asyncio
import logging
import shlex
import subprocess
import threading
from collections.abc import Sequence
from dataclasses import dataclass

from discpipe.error_handling import ToolError

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_LIMIT = 50 * 1024 * 1024
_CHUNK_SIZE = 64 * 1024


@dataclass
class ToolResult:
    """Outcome of one tool invocation."""

    cmd: list[str]
    returncode: int | None
    output: str
    timed_out: bool = False
    overflowed: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not (self.timed_out or self.overflowed)

    def tail(self, lines: int = 20) -> str:
        return "\n".join(self.output.strip().splitlines()[-lines:])


class ToolRunner:
    """Runs external binaries, capturing stdout and stderr into one buffer.

    Output past ``output_limit`` bytes kills the process. A ``timeout`` kills
    it as well. Both count as tool failures.
    """

    def __init__(
        self,
        output_limit: int = DEFAULT_OUTPUT_LIMIT,
        timeout: float | None = None,
    ):
        self.output_limit = output_limit
        self.timeout = timeout

    def execute(
        self,
        cmd: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> ToolResult:
        """Run ``cmd`` to completion and return everything that happened."""
        cmd = [str(part) for part in cmd]
        timeout = timeout if timeout is not None else self.timeout
        logger.debug(f"Running: {shlex.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ToolError(
                cmd[0],
                message=f"Could not start {cmd[0]}",
                details=str(e),
                recoverable=False,
                original_error=e,
            ) from e

        timed_out = threading.Event()
        timer = None
        if timeout:

            def _expire() -> None:
                timed_out.set()
                process.kill()

            timer = threading.Timer(timeout, _expire)
            timer.daemon = True
            timer.start()

        buffer = bytearray()
        overflowed = False
        try:
            assert process.stdout is not None
            while chunk := process.stdout.read1(_CHUNK_SIZE):
                buffer.extend(chunk)
                if len(buffer) > self.output_limit:
                    overflowed = True
                    process.kill()
                    del buffer[self.output_limit :]
                    break
            process.wait()
        finally:
            if timer:
                timer.cancel()
            if process.stdout:
                process.stdout.close()

        return ToolResult(
            cmd=cmd,
            returncode=process.returncode,
            output=buffer.decode("utf-8", errors="replace"),
            timed_out=timed_out.is_set(),
            overflowed=overflowed,
        )

    def run(
        self,
        cmd: Sequence[str],
        *,
        strict: bool = False,
        timeout: float | None = None,
    ) -> str | None:
        """Run ``cmd`` and return its output.

        A failed run returns ``None`` after logging, or raises
        :class:`ToolError` when ``strict`` is set.
        """
        try:
            result = self.execute(cmd, timeout=timeout)
        except ToolError:
            if strict:
                raise
            logger.exception(f"Could not run {cmd[0]}")
            return None

        if result.ok:
            return result.output

        error = self._failure(result)
        if strict:
            raise error
        logger.error(f"{error.message}: {result.tail(5)}")
        return None

    async def run_async(
        self,
        cmd: Sequence[str],
        *,
        strict: bool = False,
        timeout: float | None = None,
    ) -> str | None:
        """Run in the default executor so the event loop keeps turning."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self.run(cmd, strict=strict, timeout=timeout),
        )

    def _failure(self, result: ToolResult) -> ToolError:
        tool = result.cmd[0]
        if result.timed_out:
            return ToolError(tool, message=f"{tool} timed out", details=result.tail())
        if result.overflowed:
            return ToolError(
                tool,
                message=f"{tool} exceeded the {self.output_limit} byte output limit",
                details=result.tail(),
            )
        return ToolError(tool, result.returncode, result.tail())
