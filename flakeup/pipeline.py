"""flakeup pipeline — one pass of inspect → render → resolve → verify.

Control only flows forward. Inspector and renderer errors abort before
anything is written; resolver errors abort with flake.nix left on disk;
verification failures are returned, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import logfire

from flakeup.config import get_settings
from flakeup.nix_gen.generator import render_flake
from flakeup.nix_gen.inspector import inspect_project
from flakeup.nix_gen.models import Language, ProjectMetadata
from flakeup.tools.git import is_git_work_tree
from flakeup.tools.hashes import (
    FLAKE_FILENAME,
    HashResolution,
    resolve_hash,
    write_unhashed_flake,
)
from flakeup.tools.verify import VerificationResult, verify_flake

logger = logging.getLogger(__name__)


class FlakeExistsError(Exception):
    """Raised when flake.nix already exists and overwriting was not requested."""


@dataclass
class PipelineResult:
    metadata: ProjectMetadata
    flake_path: Path
    resolution: HashResolution
    verification: VerificationResult | None = None

    @property
    def passed(self) -> bool:
        return self.verification is None or self.verification.passed


async def _should_stage(root: Path, stage: bool | None) -> bool:
    wanted = stage if stage is not None else get_settings().stage_with_git
    if not wanted:
        return False
    if not await is_git_work_tree(root):
        logger.warning("%s is not inside a git work tree; skipping staging", root)
        return False
    return True


async def run_pipeline(
    root: str | Path,
    *,
    language: Language | None = None,
    force: bool = False,
    max_attempts: int | None = None,
    timeout_seconds: float | None = None,
    stage: bool | None = None,
    verify: bool = True,
) -> PipelineResult:
    """Generate, resolve and verify flake.nix for the project at root.

    Args:
        root: Project root directory.
        language: Force the ecosystem instead of detecting it.
        force: Overwrite an existing flake.nix.
        max_attempts: Hash resolution build budget (defaults from settings).
        timeout_seconds: Per-build wall-clock limit (defaults from settings).
        stage: Stage generated files with git (defaults from settings).
        verify: Run the verification checks after the hash converges.

    Raises:
        ManifestNotFoundError / ManifestParseError: From inspection.
        FlakeExistsError: If flake.nix exists and force is False.
        HashResolutionExhausted / BuildTimeoutError: From hash resolution.
        StagingError: If git refuses to stage the generated files.
    """
    root_path = Path(root).resolve()

    with logfire.span("pipeline.run", root=str(root_path)):
        metadata = inspect_project(root_path, language)

        flake_path = root_path / FLAKE_FILENAME
        if flake_path.exists() and not force:
            raise FlakeExistsError(f"{flake_path} already exists (use --force to overwrite)")

        flake_text = render_flake(metadata)
        do_stage = await _should_stage(root_path, stage)

        if metadata.has_dependencies:
            resolution = await resolve_hash(
                root_path,
                flake_text,
                max_attempts=max_attempts,
                timeout_seconds=timeout_seconds,
                stage=do_stage,
            )
            logger.info(
                "Resolved dependency hash %s after %d attempt(s)",
                resolution.hash,
                resolution.attempts,
            )
        else:
            resolution = await write_unhashed_flake(root_path, flake_text, stage=do_stage)
            logger.info("No dependencies to vendor; wrote %s without a hash", flake_path)

        verification = await verify_flake(root_path, metadata.language) if verify else None
        return PipelineResult(
            metadata=metadata,
            flake_path=flake_path,
            resolution=resolution,
            verification=verification,
        )
