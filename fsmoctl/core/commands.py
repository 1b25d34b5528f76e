"""
Bounded external command execution

All blocking calls to external tools (samba-tool, ping, dig, systemctl) go
through run_command so every one of them has a timeout. A command that times
out is killed and reported as failed; it is never retried within a cycle.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command"""
    args: Sequence[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def describe(self) -> str:
        if self.timed_out:
            return f"{self.args[0]} timed out"
        detail = self.stderr.strip().splitlines()[-1] if self.stderr.strip() else ""
        return f"{self.args[0]} exited with {self.returncode}" + (f": {detail[:200]}" if detail else "")


CommandRunner = Callable[[Sequence[str], float], Awaitable[CommandResult]]


async def run_command(args: Sequence[str], timeout: float, stdin: Optional[bytes] = None) -> CommandResult:
    """Run a command with a hard timeout"""
    logger.debug(f"Running: {' '.join(args)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return CommandResult(args=list(args), returncode=127, stderr=f"{args[0]}: command not found")
    except OSError as e:
        return CommandResult(args=list(args), returncode=126, stderr=str(e))

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(stdin), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Command timed out after {timeout}s: {' '.join(args)}")
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
        return CommandResult(args=list(args), returncode=-1, timed_out=True)

    return CommandResult(
        args=list(args),
        returncode=proc.returncode,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
