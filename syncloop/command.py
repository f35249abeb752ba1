"""Library for running subprocesses with asyncio.

Every command runs under a process wide concurrency limit and a timeout.
"""

import asyncio
from dataclasses import dataclass
import logging
import os
import shlex
import subprocess

from .exceptions import CommandException

_LOGGER = logging.getLogger(__name__)

MAX_CONCURRENT_COMMANDS = 20
DEFAULT_TIMEOUT = 60.0

_SEM = asyncio.Semaphore(MAX_CONCURRENT_COMMANDS)

# No public API
__all__: list[str] = []


@dataclass
class Command:
    """A command line to run."""

    cmd: list[str]

    exc: type[CommandException] = CommandException
    """Exception raised when the command fails or times out."""

    retcodes: list[int] | None = None
    """Non-zero return codes that are still a success."""

    env: dict[str, str] | None = None
    """Variables added to the environment of the current process."""

    timeout: float = DEFAULT_TIMEOUT

    def __str__(self) -> str:
        """Render the command as a shell would need it typed."""
        return shlex.join(self.cmd)

    def _failure(self, returncode: int, out: bytes, err: bytes) -> CommandException:
        lines = [f"Command '{self}' failed with return code {returncode}"]
        lines.extend(stream.decode("utf-8") for stream in (out, err) if stream)
        message = "\n".join(lines)
        _LOGGER.debug(message)
        return self.exc(message)

    async def _exec(self, stdin: bytes | None) -> bytes:
        _LOGGER.debug("Running command: %s", self)
        proc = await asyncio.create_subprocess_exec(
            *self.cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env={**os.environ, **(self.env or {})},
        )
        try:
            out, err = await proc.communicate(stdin)
        except asyncio.CancelledError:
            proc.kill()
            raise
        if proc.returncode and proc.returncode not in (self.retcodes or ()):
            raise self._failure(proc.returncode, out, err)
        return out

    async def run(self, stdin: bytes | None = None) -> bytes:
        """Run the command and return its stdout."""
        async with _SEM:
            try:
                return await asyncio.wait_for(self._exec(stdin), self.timeout)
            except TimeoutError as err:
                raise self.exc(f"Command '{self}' timed out") from err


async def run(cmd: Command, stdin: bytes | None = None) -> str:
    """Run the specified command and return stdout."""
    out = await cmd.run(stdin)
    return out.decode("utf-8") if out else ""
