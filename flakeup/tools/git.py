"""Git staging — makes generated files visible to flake evaluation.

Nix copies only tracked files into the store when a flake lives inside a
git work tree, so a freshly written flake.nix must be staged before every
`nix build`. Nothing else in git is touched: no commits, no resets.

Staging failure (non-zero exit) is fatal. Warnings git prints while still
succeeding (line-ending conversions, ignored paths) are logged and ignored.
"""

from __future__ import annotations

import logging
from pathlib import Path

import logfire

from flakeup.config import get_settings
from flakeup.tools.cli import run_command

logger = logging.getLogger(__name__)

_GIT_TIMEOUT: float = 30.0


class StagingError(Exception):
    """Raised when `git add` of the generated files fails."""


async def is_git_work_tree(root: Path) -> bool:
    """True if root is inside a git work tree."""
    git = get_settings().git_binary
    try:
        result = await run_command(
            git, "rev-parse", "--is-inside-work-tree", cwd=root, timeout_seconds=_GIT_TIMEOUT
        )
    except FileNotFoundError:
        logger.warning("%s not found on PATH; treating %s as outside version control", git, root)
        return False
    return result.success and result.stdout == "true"


async def stage_files(root: Path, *filenames: str) -> None:
    """Stage the given files (relative to root) that currently exist.

    Args:
        root: Project root; git runs with this as its working directory.
        *filenames: Paths relative to root. Missing files are skipped, so
            flake.lock can be passed before nix has created it.

    Raises:
        StagingError: If git exits non-zero or times out.
    """
    present = [name for name in filenames if (root / name).exists()]
    if not present:
        return

    git = get_settings().git_binary
    with logfire.span("git.stage", files=present):
        try:
            result = await run_command(
                git, "add", "--", *present, cwd=root, timeout_seconds=_GIT_TIMEOUT
            )
        except TimeoutError as e:
            raise StagingError(f"git add timed out: {e}") from e
        except FileNotFoundError as e:
            raise StagingError(f"{git} not found on PATH") from e

        if not result.success:
            raise StagingError(
                f"git add failed (exit {result.returncode}): {result.stderr or result.stdout}"
            )
        if result.stderr:
            logger.warning("git add: %s", result.stderr)
