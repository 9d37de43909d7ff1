"""Verification — re-runs the generated flake the way a user would.

After the hash is resolved, four probes confirm the flake is usable:

  1. build    — `nix build --no-link .#default`
  2. run      — `nix run .#default -- --version`
  3. check    — `nix flake check`
  4. develop  — `nix develop --command <cargo|go> version`

Every probe runs even when an earlier one fails: a broken dev shell says
nothing about whether the package builds, and the user needs the whole
table to decide what to fix. Timeouts are recorded as failed entries, not
raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import logfire

from flakeup.config import get_settings
from flakeup.nix_gen.models import Language
from flakeup.tools.cli import run_command

logger = logging.getLogger(__name__)

# Tool invoked inside `nix develop` to prove the shell provides a toolchain.
_DEV_SHELL_PROBE: dict[Language, tuple[str, ...]] = {
    Language.RUST: ("cargo", "--version"),
    Language.GO: ("go", "version"),
}


@dataclass(frozen=True)
class VerificationCheck:
    """One named command in the verification sequence."""

    step: str
    argv: tuple[str, ...]


@dataclass
class VerificationEntry:
    """Outcome of a single verification command."""

    step: str
    passed: bool
    output: str


@dataclass
class VerificationResult:
    """Ordered outcomes of every verification command, one per check."""

    entries: list[VerificationEntry] = field(default_factory=list)

    def append(self, entry: VerificationEntry) -> None:
        self.entries.append(entry)

    @property
    def passed(self) -> bool:
        """True only when every check passed."""
        return all(entry.passed for entry in self.entries)

    @property
    def failed_steps(self) -> list[str]:
        return [entry.step for entry in self.entries if not entry.passed]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


def default_checks(language: Language) -> list[VerificationCheck]:
    """The fixed build / run / check / develop sequence for a language."""
    nix = get_settings().nix_command
    return [
        VerificationCheck("build", (*nix, "build", "--no-link", ".#default")),
        VerificationCheck("run", (*nix, "run", ".#default", "--", "--version")),
        VerificationCheck("check", (*nix, "flake", "check")),
        VerificationCheck("develop", (*nix, "develop", "--command", *_DEV_SHELL_PROBE[language])),
    ]


async def _run_check(
    root: Path, check: VerificationCheck, timeout_seconds: float
) -> VerificationEntry:
    with logfire.span("verifier.check", step=check.step):
        try:
            result = await run_command(*check.argv, cwd=root, timeout_seconds=timeout_seconds)
        except TimeoutError as e:
            entry = VerificationEntry(step=check.step, passed=False, output=str(e))
        except FileNotFoundError as e:
            entry = VerificationEntry(
                step=check.step, passed=False, output=f"{check.argv[0]} not found: {e}"
            )
        else:
            entry = VerificationEntry(
                step=check.step, passed=result.success, output=result.output
            )

        logfire.info(
            "Verification {step}: {status}",
            step=check.step,
            status="passed" if entry.passed else "failed",
        )
        return entry


async def verify_flake(
    root: Path,
    language: Language,
    *,
    checks: list[VerificationCheck] | None = None,
    timeout_seconds: float | None = None,
) -> VerificationResult:
    """Run every verification check against the flake in root.

    Args:
        root: Project root containing flake.nix.
        language: Selects the dev-shell probe for the default checks.
        checks: Override the default check sequence.
        timeout_seconds: Per-command limit. Defaults to settings.check_timeout_seconds.

    Returns:
        VerificationResult with exactly one entry per check, in order.
    """
    timeout = (
        timeout_seconds if timeout_seconds is not None else get_settings().check_timeout_seconds
    )
    sequence = checks if checks is not None else default_checks(language)

    result = VerificationResult()
    for check in sequence:
        result.append(await _run_check(root, check, timeout))

    if not result.passed:
        logger.warning("Verification failed: %s", ", ".join(result.failed_steps))
    return result
