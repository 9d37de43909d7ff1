"""flakeup configuration — centralized environment variable management.

Every tunable the pipeline uses is declared, validated, and typed here.
No module should call os.environ directly — import settings from here instead.

Usage:
    from flakeup.config import get_settings

    settings = get_settings()
    attempts = settings.max_hash_attempts

Environment variables (all optional, prefixed with FLAKEUP_):

    FLAKEUP_NIX_BINARY              — nix executable to invoke (default: "nix").
    FLAKEUP_GIT_BINARY              — git executable to invoke (default: "git").
    FLAKEUP_NIXPKGS_URL             — flake URL written as the nixpkgs input.
    FLAKEUP_MAX_HASH_ATTEMPTS       — build attempts before hash resolution gives up.
    FLAKEUP_BUILD_TIMEOUT_SECONDS   — wall-clock limit for a single `nix build`.
    FLAKEUP_CHECK_TIMEOUT_SECONDS   — wall-clock limit for each verification command.
    FLAKEUP_ENABLE_EXPERIMENTAL_FEATURES — pass `--extra-experimental-features`.
    FLAKEUP_STAGE_WITH_GIT          — stage generated files before each build.
    FLAKEUP_LOGFIRE_TOKEN           — Logfire project token. If unset, nothing is exported.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlakeupSettings(BaseSettings):
    """Centralized configuration for flakeup.

    Field names map to env vars by uppercasing and prefixing:
    max_hash_attempts → FLAKEUP_MAX_HASH_ATTEMPTS.

    Instantiate via get_settings() to benefit from caching.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLAKEUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── External tools ──────────────────────────────────────────────────────

    nix_binary: str = "nix"
    git_binary: str = "git"

    enable_experimental_features: bool = True
    """Append `--extra-experimental-features "nix-command flakes"` to every nix call.

    Harmless on installs that already enable both features; required on a
    stock Nix install where flakes are still gated.
    """

    stage_with_git: bool = True
    """Stage flake.nix / flake.lock before each build.

    Nix only sees tracked files when evaluating a flake inside a git work tree,
    so an unstaged flake.nix reads as "does not exist".
    """

    # ── Generated flake ─────────────────────────────────────────────────────

    nixpkgs_url: str = "github:NixOS/nixpkgs/nixos-unstable"

    # ── Hash resolution ─────────────────────────────────────────────────────

    max_hash_attempts: int = 3
    """Build attempts before HashResolutionExhausted is raised.

    A vendored dependency set that hashes differently on every fetch would
    otherwise loop forever.
    """

    build_timeout_seconds: float = 900
    """Wall-clock limit for one `nix build`. The first build of a project
    fetches every dependency from the network, so this is generous."""

    check_timeout_seconds: float = 300

    # ── Observability ────────────────────────────────────────────────────────

    logfire_token: SecretStr | None = None
    """Logfire project token. Optional — if unset, spans stay local."""

    # ── Validators ───────────────────────────────────────────────────────────

    @field_validator("max_hash_attempts")
    @classmethod
    def validate_max_hash_attempts(cls, v: int) -> int:
        if v < 1:
            msg = f"max_hash_attempts must be at least 1, got {v}"
            raise ValueError(msg)
        return v

    @field_validator("build_timeout_seconds", "check_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            msg = f"Timeouts must be positive, got {v}"
            raise ValueError(msg)
        return v

    @property
    def nix_command(self) -> tuple[str, ...]:
        """The nix executable plus the global flags every invocation needs."""
        if self.enable_experimental_features:
            return (self.nix_binary, "--extra-experimental-features", "nix-command flakes")
        return (self.nix_binary,)


@lru_cache(maxsize=1)
def get_settings() -> FlakeupSettings:
    """Return the cached FlakeupSettings instance.

    Reads from environment on first call, then caches for the process lifetime.
    Call clear_settings_cache() in tests to reset between test cases.
    """
    return FlakeupSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Use in tests that need to vary environment variables between cases:

        def test_something(monkeypatch):
            monkeypatch.setenv("FLAKEUP_MAX_HASH_ATTEMPTS", "5")
            clear_settings_cache()
            settings = get_settings()
            ...
    """
    get_settings.cache_clear()
