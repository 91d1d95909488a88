from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from .client import SkillsyncError


@dataclass(frozen=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


class CommandError(SkillsyncError):
    def __init__(self, result: CommandResult) -> None:
        self.result = result
        detail = (result.stderr or result.stdout).strip()
        super().__init__(f"{result.args[0]} exited with {result.returncode}: {detail}")


class CommandRunner(Protocol):
    async def __call__(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout_s: float | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        ...


async def run_command(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    timeout_s: float | None = None,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """
    Run an external program and capture its output.

    Raises CommandError on a non-zero exit status, TimeoutError when ``timeout_s``
    elapses (the process is killed), and FileNotFoundError when the program is missing.
    """
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)

    proc = await asyncio.create_subprocess_exec(
        *args,
        cwd=str(cwd) if cwd is not None else None,
        env=full_env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise TimeoutError(f"{args[0]} timed out after {timeout_s}s") from None

    result = CommandResult(
        args=tuple(args),
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
    )
    if result.returncode != 0:
        raise CommandError(result)
    return result
