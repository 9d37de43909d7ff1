"""Async subprocess runner for flakeup.

Every external command (nix build, nix run, nix flake check, git add) goes
through this module. It provides:

- Structured results (stdout, stderr, returncode) via CommandResult
- Async execution via asyncio.create_subprocess_exec
- Configurable timeouts with automatic process cleanup
- An optional working directory, since nix resolves `.#default` relative to it
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

# Default timeout for CLI commands (seconds).
# git and `nix flake check` on a small flake finish quickly;
# nix build fetches dependencies and should override this.
DEFAULT_TIMEOUT_SECONDS = 60


@dataclass
class CommandResult:
    """Structured result from a CLI invocation.

    All pipeline stages receive one of these — never raw subprocess output.
    """

    stdout: str
    stderr: str
    returncode: int

    def __post_init__(self) -> None:
        self.stdout = self.stdout.strip()
        self.stderr = self.stderr.strip()

    @property
    def success(self) -> bool:
        """True if the command exited with code 0."""
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout and stderr joined, for pattern matching and reporting.

        nix writes build diagnostics to stderr and results to stdout; callers
        that scrape for markers should not care which stream carried them.
        """
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


async def run_command(
    *args: str,
    cwd: str | Path | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> CommandResult:
    """Run a CLI command asynchronously and return a structured result.

    Args:
        *args: Command and arguments (e.g. "nix", "build", "--no-link", ".#default").
        cwd: Working directory for the child process. Defaults to the current one.
        timeout_seconds: Maximum runtime before the process is killed.
            Defaults to DEFAULT_TIMEOUT_SECONDS.

    Returns:
        CommandResult with stdout, stderr, and returncode.

    Raises:
        TimeoutError: If the command exceeds timeout_seconds. The process is killed.
    """
    proc = await asyncio.create_subprocess_exec(
        *args,
        cwd=str(cwd) if cwd is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            proc.communicate(),
            timeout=timeout_seconds,
        )
    except TimeoutError:
        proc.kill()
        await proc.wait()
        cmd_str = " ".join(args)
        msg = f"Command timed out after {timeout_seconds}s: {cmd_str}"
        raise TimeoutError(msg) from None

    return CommandResult(
        stdout=stdout_bytes.decode(errors="replace") if stdout_bytes else "",
        stderr=stderr_bytes.decode(errors="replace") if stderr_bytes else "",
        returncode=proc.returncode or 0,
    )
