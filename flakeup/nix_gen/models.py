"""Pydantic models for flakeup.

These models carry project facts from the manifest inspector into the
flake generator, and hash candidates through the resolver loop.

The validation rules here mirror what Nix accepts:
- name: a valid derivation name (letters, digits, `+-._?=`, not starting with `.`)
- binary_name: non-empty, no path separators (it becomes `bin/<binary_name>`)
- workspace_members: relative POSIX paths, no duplicates
"""

from __future__ import annotations

import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator

# Derivation names accepted by Nix: no leading dot, restricted alphabet.
_DRV_NAME_RE = re.compile(r"^[A-Za-z0-9+_?=\-][A-Za-z0-9+._?=\-]*$")

# Sentinel written before the real hash is known. Same value as nixpkgs
# lib.fakeHash, so a build with it always fails with a hash mismatch.
FAKE_HASH = "sha256-AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA="


class Language(StrEnum):
    """Project ecosystems flakeup can package."""

    RUST = "rust"
    GO = "go"


class ProjectMetadata(BaseModel):
    """Facts about the project that the flake template needs.

    Built once by inspect_project() and never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    binary_name: str
    version: str
    language: Language
    workspace_members: tuple[str, ...] = ()
    license: str | None = None
    """SPDX expression as written in the manifest (e.g. "MIT OR Apache-2.0")."""

    homepage: str | None = None
    description: str | None = None
    has_dependencies: bool = True
    """False for a Go module with no `require`; its flake gets `vendorHash = null`."""

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v:
            msg = "Package name must not be empty"
            raise ValueError(msg)
        if not _DRV_NAME_RE.match(v):
            msg = (
                f"Package name '{v}' is not a valid Nix derivation name. "
                "Use letters, digits and '+-._?=' (no leading dot)"
            )
            raise ValueError(msg)
        return v

    @field_validator("binary_name")
    @classmethod
    def validate_binary_name(cls, v: str) -> str:
        if not v:
            msg = "Binary name must not be empty"
            raise ValueError(msg)
        if "/" in v or "\\" in v:
            msg = f"Binary name '{v}' must not contain path separators"
            raise ValueError(msg)
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        if not v:
            msg = "Version must not be empty"
            raise ValueError(msg)
        return v

    @field_validator("workspace_members")
    @classmethod
    def validate_workspace_members(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if len(v) != len(set(v)):
            dupes = sorted({m for m in v if v.count(m) > 1})
            msg = f"Duplicate workspace members: {', '.join(dupes)}"
            raise ValueError(msg)
        for member in v:
            if member.startswith("/") or member in ("", "."):
                msg = f"Workspace member '{member}' must be a relative sub-directory"
                raise ValueError(msg)
        return v


class HashSource(StrEnum):
    """Where the current hash value came from."""

    PLACEHOLDER = "placeholder"
    EXTRACTED_FROM_ERROR = "extracted_from_error"


class HashCandidate(BaseModel):
    """The dependency hash currently written into flake.nix."""

    model_config = ConfigDict(frozen=True)

    value: str
    source: HashSource

    @classmethod
    def placeholder(cls) -> HashCandidate:
        return cls(value=FAKE_HASH, source=HashSource.PLACEHOLDER)

    @classmethod
    def extracted(cls, value: str) -> HashCandidate:
        return cls(value=value, source=HashSource.EXTRACTED_FROM_ERROR)
