"""Hash resolution — finds cargoHash / vendorHash by letting nix report it.

The manual workflow is: build with a fake hash, read the `got:` line out of
the hash-mismatch error, paste it into flake.nix, build again. This module
runs that loop as an explicit state machine:

    Initial ──▶ AttemptingBuild ──exit 0──────────────▶ Converged
                   │    ▲
      mismatch +   │    │ rewrite hash, attempt += 1
      `got:` line  ▼    │
              HashMismatchDetected ──same hash twice──▶ Converged

    AttemptingBuild ──non-zero, no `got:` line──▶ Failed (build_failed)
    any state ──attempts exhausted──────────────▶ Failed (exhausted)
    AttemptingBuild ──wall-clock timeout─────────▶ Failed (timeout)

Design decisions:
  - Builds run one at a time and are fully drained before the next decision.
    Concurrent nix builds of the same flake fight over flake.lock.
  - The attempt budget is bounded. A dependency set that hashes differently
    on every fetch must surface to the user rather than loop forever.
  - flake.nix is rewritten in place and left on disk on failure, so the
    user can inspect it or finish by hand.
  - Build output is opaque text. The only thing read from it is the hash
    token after the `got:` marker.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

import logfire

from flakeup.config import get_settings
from flakeup.nix_gen.generator import set_hash_field
from flakeup.nix_gen.models import HashCandidate
from flakeup.tools.cli import CommandResult, run_command
from flakeup.tools.git import stage_files

# SRI form (sha256-<43 base64 chars>=) from current nix, and the older
# nix32 form (sha256:<52 chars>) some versions still print.
_GOT_HASH_RE = re.compile(r"got:\s+(sha256-[A-Za-z0-9+/]{43}=|sha256:[0-9a-z]{52})")

# CSI and OSC escape sequences; nix colours its error output on a tty and
# sometimes when NIX_* env vars force it.
_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")

FLAKE_FILENAME = "flake.nix"
LOCK_FILENAME = "flake.lock"


class ResolverState(StrEnum):
    INITIAL = "initial"
    ATTEMPTING_BUILD = "attempting_build"
    HASH_MISMATCH_DETECTED = "hash_mismatch_detected"
    CONVERGED = "converged"
    FAILED = "failed"


class HashResolutionExhausted(Exception):
    """Raised when the resolver cannot settle on a dependency hash.

    Attributes:
        diagnostics: Combined output of the last build attempt.
        attempts: Number of builds that ran.
        reason: "exhausted" (attempt budget used up), "build_failed" (a
            failure with no hash mismatch in it), or "timeout".
    """

    reason = "exhausted"

    def __init__(
        self,
        message: str,
        *,
        diagnostics: str = "",
        attempts: int = 0,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics
        self.attempts = attempts
        if reason is not None:
            self.reason = reason


class BuildTimeoutError(HashResolutionExhausted):
    """Raised when a single nix build exceeds its wall-clock limit."""

    reason = "timeout"


@dataclass
class HashResolution:
    """Successful outcome of resolve_hash().

    hash is None when the flake carries no dependency hash at all.
    """

    hash: str | None
    attempts: int


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def extract_hash(output: str) -> str | None:
    """Return the hash nix reported after `got:`, or None if there is none."""
    match = _GOT_HASH_RE.search(strip_ansi(output))
    return match.group(1) if match else None


async def run_nix_build(root: Path, timeout_seconds: float) -> CommandResult:
    """Run `nix build --no-link .#default` in root.

    Separated from resolve_hash for testability — tests mock this function.

    Flags:
        --no-link: no ./result symlink; the resolver only cares whether the
            fixed-output derivation hashes match.
        -L: print full build logs so the mismatch block is never truncated.
    """
    settings = get_settings()
    return await run_command(
        *settings.nix_command,
        "build",
        "--no-link",
        "-L",
        ".#default",
        cwd=root,
        timeout_seconds=timeout_seconds,
    )


def _transition(state: ResolverState, attempt: int, **attributes: object) -> None:
    logfire.info(
        "Hash resolver → {state} (attempt {attempt})",
        state=state.value,
        attempt=attempt,
        **attributes,
    )


async def resolve_hash(
    root: Path,
    flake_text: str,
    *,
    max_attempts: int | None = None,
    timeout_seconds: float | None = None,
    stage: bool | None = None,
) -> HashResolution:
    """Drive nix build until the dependency hash in flake.nix is correct.

    Args:
        root: Project root; flake.nix is written here and nix runs here.
        flake_text: Rendered flake text. Its hash attribute is reset to the
            fake-hash sentinel before the first build.
        max_attempts: Build budget. Defaults to settings.max_hash_attempts.
        timeout_seconds: Per-build limit. Defaults to settings.build_timeout_seconds.
        stage: Stage flake.nix / flake.lock with git before each build.
            Defaults to settings.stage_with_git.

    Returns:
        HashResolution with the final hash and the number of builds run.

    Raises:
        HashResolutionExhausted: If the budget runs out, or a build fails
            without reporting a hash mismatch.
        BuildTimeoutError: If one build exceeds timeout_seconds.
        StagingError: If git refuses to stage the generated files.
    """
    settings = get_settings()
    budget = max_attempts if max_attempts is not None else settings.max_hash_attempts
    timeout = timeout_seconds if timeout_seconds is not None else settings.build_timeout_seconds
    do_stage = stage if stage is not None else settings.stage_with_git
    if budget < 1:
        raise ValueError(f"max_attempts must be at least 1, got {budget}")

    flake_path = root / FLAKE_FILENAME

    with logfire.span("resolver.resolve_hash", root=str(root), max_attempts=budget):
        candidate = HashCandidate.placeholder()
        text = set_hash_field(flake_text, candidate.value)
        flake_path.write_text(text, encoding="utf-8")
        _transition(ResolverState.INITIAL, 0)

        previous_reported: str | None = None
        diagnostics = ""

        for attempt in range(1, budget + 1):
            _transition(ResolverState.ATTEMPTING_BUILD, attempt, hash=candidate.value)
            if do_stage:
                await stage_files(root, FLAKE_FILENAME, LOCK_FILENAME)

            with logfire.span("resolver.attempt", attempt=attempt):
                try:
                    result = await run_nix_build(root, timeout)
                except TimeoutError as e:
                    _transition(ResolverState.FAILED, attempt, reason="timeout")
                    raise BuildTimeoutError(
                        str(e), diagnostics=diagnostics or str(e), attempts=attempt
                    ) from e
                except FileNotFoundError as e:
                    _transition(ResolverState.FAILED, attempt, reason="build_failed")
                    raise HashResolutionExhausted(
                        f"{settings.nix_binary} not found on PATH",
                        diagnostics=str(e),
                        attempts=attempt,
                        reason="build_failed",
                    ) from e

            diagnostics = result.output

            if result.success:
                _transition(ResolverState.CONVERGED, attempt, hash=candidate.value)
                return HashResolution(hash=candidate.value, attempts=attempt)

            reported = extract_hash(diagnostics)
            if reported is None:
                _transition(ResolverState.FAILED, attempt, reason="build_failed")
                raise HashResolutionExhausted(
                    f"nix build failed (exit {result.returncode}) without a hash mismatch",
                    diagnostics=diagnostics,
                    attempts=attempt,
                    reason="build_failed",
                )

            _transition(ResolverState.HASH_MISMATCH_DETECTED, attempt, reported=reported)

            if reported == previous_reported:
                # Two builds in a row agree on the expected hash: fixed point.
                _transition(ResolverState.CONVERGED, attempt, hash=reported)
                return HashResolution(hash=reported, attempts=attempt)

            previous_reported = reported
            candidate = HashCandidate.extracted(reported)
            text = set_hash_field(text, candidate.value)
            flake_path.write_text(text, encoding="utf-8")

        _transition(ResolverState.FAILED, budget, reason="exhausted")
        raise HashResolutionExhausted(
            f"No stable hash after {budget} build attempts",
            diagnostics=diagnostics,
            attempts=budget,
        )


async def write_unhashed_flake(
    root: Path,
    flake_text: str,
    *,
    stage: bool | None = None,
) -> HashResolution:
    """Write a flake whose hash attribute is `null`; there is nothing to resolve.

    buildGoModule refuses a vendorHash for a module without requirements, so
    no build runs here. The verifier is the first thing to build it.
    """
    settings = get_settings()
    do_stage = stage if stage is not None else settings.stage_with_git
    with logfire.span("resolver.write_unhashed", root=str(root)):
        (root / FLAKE_FILENAME).write_text(flake_text, encoding="utf-8")
        if do_stage:
            await stage_files(root, FLAKE_FILENAME, LOCK_FILENAME)
        _transition(ResolverState.CONVERGED, 0, hash=None)
    return HashResolution(hash=None, attempts=0)
