"""Entry point for the flakeup command-line tool.

Intended to be run as a module or through the installed script:

    python -m flakeup init path/to/project
    flakeup render --language go .

Subcommands:
    inspect   print the inspected project metadata as JSON
    render    print the generated flake.nix (fake hash) without writing it
    init      write flake.nix, resolve the dependency hash, verify
    verify    run only the verification checks against an existing flake

Configuration is read from FLAKEUP_* environment variables (or a .env file);
command-line flags override it for a single run. Logfire tracing is
configured here so every stage of a run lands under one process.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import logfire
from pydantic import ValidationError

from flakeup import exit_codes
from flakeup.config import FlakeupSettings, get_settings
from flakeup.nix_gen.generator import HashFieldError, UnresolvedPlaceholderError, render_flake
from flakeup.nix_gen.inspector import ManifestNotFoundError, ManifestParseError, inspect_project
from flakeup.nix_gen.models import Language
from flakeup.pipeline import FlakeExistsError, run_pipeline
from flakeup.tools.git import StagingError
from flakeup.tools.hashes import BuildTimeoutError, HashResolutionExhausted
from flakeup.tools.verify import VerificationResult, verify_flake

logger = logging.getLogger(__name__)

# Lines of build output echoed on resolver failure; the full text is in the logs.
_DIAGNOSTIC_TAIL_LINES = 25


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        level=logging.DEBUG if verbose else logging.INFO,
    )


def _configure_observability(settings: FlakeupSettings) -> None:
    # Token is optional; without one spans stay in-process.
    token = settings.logfire_token
    logfire.configure(
        token=token.get_secret_value() if token else None,
        service_name="flakeup",
        send_to_logfire="if-token-present",
        console=False,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flakeup",
        description="Add Nix flake packaging to a Rust or Go command-line project.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_project_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("path", nargs="?", default=".", help="project root (default: .)")
        p.add_argument(
            "--language",
            choices=[lang.value for lang in Language],
            help="project language (default: detected from the manifest)",
        )

    add_project_args(sub.add_parser("inspect", help="print project metadata as JSON"))
    add_project_args(sub.add_parser("render", help="print the generated flake.nix"))

    init = sub.add_parser("init", help="generate flake.nix, resolve its hash, verify it")
    add_project_args(init)
    init.add_argument("--force", action="store_true", help="overwrite an existing flake.nix")
    init.add_argument("--max-attempts", type=int, help="hash resolution build budget")
    init.add_argument("--timeout", type=float, help="per-build timeout in seconds")
    init.add_argument("--no-git", action="store_true", help="do not stage files with git")
    init.add_argument("--skip-verify", action="store_true", help="stop after hash resolution")

    verify = sub.add_parser("verify", help="run the verification checks")
    add_project_args(verify)
    return parser


def _print_verification(result: VerificationResult) -> None:
    for entry in result:
        status = "PASS" if entry.passed else "FAIL"
        print(f"  [{status}] {entry.step}")
        if not entry.passed and entry.output:
            for line in entry.output.splitlines()[-5:]:
                print(f"         {line}")


def _print_diagnostics(text: str) -> None:
    lines = text.splitlines()[-_DIAGNOSTIC_TAIL_LINES:]
    for line in lines:
        print(f"  {line}", file=sys.stderr)


async def _run(args: argparse.Namespace) -> int:
    language = Language(args.language) if args.language else None
    root = Path(args.path)

    if args.command == "inspect":
        print(inspect_project(root, language).model_dump_json(indent=2))
        return exit_codes.SUCCESS

    if args.command == "render":
        print(render_flake(inspect_project(root, language)), end="")
        return exit_codes.SUCCESS

    if args.command == "verify":
        metadata = inspect_project(root, language)
        verification = await verify_flake(root.resolve(), metadata.language)
        _print_verification(verification)
        return exit_codes.SUCCESS if verification.passed else exit_codes.VERIFICATION_FAILED

    result = await run_pipeline(
        root,
        language=language,
        force=args.force,
        max_attempts=args.max_attempts,
        timeout_seconds=args.timeout,
        stage=False if args.no_git else None,
        verify=not args.skip_verify,
    )
    print(f"Wrote {result.flake_path}")
    if result.resolution.hash is None:
        print("Dependency hash: none (no dependencies to vendor)")
    else:
        resolution = result.resolution
        print(f"Dependency hash: {resolution.hash} ({resolution.attempts} attempt(s))")
    if result.verification is None:
        return exit_codes.SUCCESS
    _print_verification(result.verification)
    return exit_codes.SUCCESS if result.verification.passed else exit_codes.VERIFICATION_FAILED


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run the requested subcommand, return an exit code."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"error: invalid configuration: {e}", file=sys.stderr)
        return exit_codes.USER_ERROR
    _configure_observability(settings)

    try:
        return asyncio.run(_run(args))
    except (ManifestNotFoundError, ManifestParseError) as e:
        print(f"error: {e}", file=sys.stderr)
        return exit_codes.MANIFEST_ERROR
    except BuildTimeoutError as e:
        print(f"error: {e}", file=sys.stderr)
        _print_diagnostics(e.diagnostics)
        return exit_codes.BUILD_TIMEOUT
    except HashResolutionExhausted as e:
        print(f"error: {e} (flake.nix left in place for inspection)", file=sys.stderr)
        _print_diagnostics(e.diagnostics)
        return exit_codes.HASH_RESOLUTION_FAILED
    except (FlakeExistsError, StagingError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return exit_codes.USER_ERROR
    except (UnresolvedPlaceholderError, HashFieldError) as e:
        logger.exception("Internal error")
        print(f"internal error: {e}", file=sys.stderr)
        return exit_codes.INTERNAL_ERROR


if __name__ == "__main__":
    sys.exit(main())
