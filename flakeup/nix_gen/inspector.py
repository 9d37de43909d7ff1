"""Project inspection — reads package metadata from Cargo.toml or go.mod.

The generator never guesses project facts. This module is the single place
where a project directory is turned into a ProjectMetadata value.

Inspection is strictly read-only: manifests are parsed as data (tomllib for
Cargo.toml, a line pattern for go.mod) and nothing from the inspected
project is ever executed — no `cargo metadata`, no `go list`.

Secondary manifests (Cargo workspace members, nested Go modules) are found
by file name below the root. Build output and VCS directories are pruned so
a populated target/ or vendor/ does not leak fake members into the flake.
"""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path

import logfire
from pydantic import ValidationError

from flakeup.nix_gen.models import Language, ProjectMetadata

CARGO_MANIFEST = "Cargo.toml"
GO_MANIFEST = "go.mod"

_MANIFESTS: dict[Language, str] = {
    Language.RUST: CARGO_MANIFEST,
    Language.GO: GO_MANIFEST,
}

# Directories never searched for secondary manifests.
_PRUNED_DIRS = frozenset({"target", "vendor", "node_modules", "result"})

# Member paths end up in Nix source; a name with a newline could not be.
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x1f\x7f]")

# Go has no version field in go.mod; used when there is no VERSION file either.
DEFAULT_GO_VERSION = "0.1.0"

# `module example.com/foo/bar`; the path may be quoted.
_GO_MODULE_RE = re.compile(r"""^\s*module\s+"?([^\s"]+)"?""", re.MULTILINE)

# Major version suffix on a Go module path (example.com/tool/v2).
_GO_MAJOR_SUFFIX_RE = re.compile(r"^v[0-9]+$")

# `require foo v1` or the start of a `require (` block.
_GO_REQUIRE_RE = re.compile(r"^\s*require\b", re.MULTILINE)

_GO_PACKAGE_MAIN_RE = re.compile(r"^\s*package\s+main\b", re.MULTILINE)

# Hosts whose module paths are also browsable URLs.
_GO_FORGE_HOSTS = ("github.com/", "gitlab.com/", "codeberg.org/", "git.sr.ht/")

_LICENSE_FILES = ("LICENSE", "LICENSE.md", "LICENSE.txt", "COPYING")

# First-lines fingerprints for license files; first match wins.
_LICENSE_FINGERPRINTS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\bMIT License\b|Permission is hereby granted, free of charge", re.I), "MIT"),
    (re.compile(r"Apache License,?\s+Version 2\.0", re.I), "Apache-2.0"),
    (re.compile(r"GNU GENERAL PUBLIC LICENSE\s+Version 3", re.I), "GPL-3.0-only"),
    (re.compile(r"Mozilla Public License,?\s+v(?:ersion)?\.?\s*2\.0", re.I), "MPL-2.0"),
    (re.compile(r"\bISC License\b", re.I), "ISC"),
    (re.compile(r"Redistribution and use in source and binary forms", re.I), "BSD-3-Clause"),
]


class ManifestNotFoundError(Exception):
    """Raised when the project root has no recognized manifest file."""


class ManifestParseError(Exception):
    """Raised when a manifest exists but required fields are missing or malformed."""


# ── Filesystem helpers ──────────────────────────────────────────────────────


def _is_pruned(dirname: str) -> bool:
    return (
        dirname.startswith(".")
        or dirname in _PRUNED_DIRS
        or dirname.startswith("result-")
        or _CONTROL_CHAR_RE.search(dirname) is not None
    )


def find_secondary_manifests(root: Path, manifest_name: str) -> list[str]:
    """Return sub-directories (relative, POSIX) holding their own manifest.

    The root's own manifest is excluded. Results are sorted so the same tree
    always yields the same member order.
    """
    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        # Prune in place so os.walk never descends into build output.
        dirnames[:] = sorted(d for d in dirnames if not _is_pruned(d))
        current = Path(dirpath)
        if current == root:
            continue
        if manifest_name in filenames:
            found.append(current.relative_to(root).as_posix())
    return sorted(found)


def detect_language(root: Path) -> Language:
    """Pick the project language from the manifest present at the root.

    Cargo.toml wins when both exist (a Rust project vendoring a Go helper is
    more common than the reverse).

    Raises:
        ManifestNotFoundError: If neither manifest is present.
    """
    for language, manifest in _MANIFESTS.items():
        if (root / manifest).is_file():
            return language
    raise ManifestNotFoundError(
        f"No {CARGO_MANIFEST} or {GO_MANIFEST} found in {root}"
    )


def _read_manifest(root: Path, language: Language) -> str:
    manifest = root / _MANIFESTS[language]
    if not manifest.is_file():
        raise ManifestNotFoundError(f"{manifest.name} not found in {root}")
    try:
        return manifest.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestParseError(f"Could not read {manifest}: {e}") from e


def _sniff_license(root: Path) -> str | None:
    for filename in _LICENSE_FILES:
        path = root / filename
        if not path.is_file():
            continue
        try:
            head = path.read_text(encoding="utf-8", errors="replace")[:2048]
        except OSError:
            return None
        for pattern, spdx in _LICENSE_FINGERPRINTS:
            if pattern.search(head):
                return spdx
        return None
    return None


def _normalize_member(member: str) -> str:
    member = member.strip().replace("\\", "/")
    while member.startswith("./"):
        member = member[2:]
    return member.rstrip("/")


# ── Rust ──────────────────────────────────────────────────────────────────────


def _optional_str(table: dict, key: str, manifest: str) -> str | None:
    value = table.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ManifestParseError(f"{manifest}: '{key}' must be a string, got {type(value).__name__}")
    return value or None


def _inherited(package: dict, workspace_package: dict, key: str) -> str | None:
    """Resolve `key.workspace = true` against [workspace.package]."""
    value = package.get(key)
    if isinstance(value, dict) and value.get("workspace") is True:
        return _optional_str(workspace_package, key, CARGO_MANIFEST)
    return _optional_str(package, key, CARGO_MANIFEST)


def _cargo_workspace_members(root: Path, workspace: dict) -> list[str]:
    declared = workspace.get("members", [])
    excluded = {_normalize_member(e) for e in workspace.get("exclude", []) if isinstance(e, str)}
    if not isinstance(declared, list) or not all(isinstance(m, str) for m in declared):
        raise ManifestParseError(f"{CARGO_MANIFEST}: [workspace].members must be a list of strings")

    members: list[str] = []
    for raw in declared:
        member = _normalize_member(raw)
        if any(ch in member for ch in "*?["):
            expanded = sorted(
                p.relative_to(root).as_posix()
                for p in root.glob(member)
                if (p / CARGO_MANIFEST).is_file()
            )
            members.extend(expanded)
        else:
            members.append(member)

    for discovered in find_secondary_manifests(root, CARGO_MANIFEST):
        members.append(discovered)

    seen: set[str] = set()
    ordered: list[str] = []
    for member in members:
        if member in ("", ".") or member in excluded or member in seen:
            continue
        seen.add(member)
        ordered.append(member)
    return ordered


def _cargo_auto_bins(root: Path) -> list[str]:
    """Binaries Cargo discovers under src/bin/ without a [[bin]] entry."""
    bin_dir = root / "src" / "bin"
    if not bin_dir.is_dir():
        return []
    found = set()
    for entry in bin_dir.iterdir():
        if entry.is_file() and entry.suffix == ".rs":
            found.add(entry.stem)
        elif entry.is_dir() and (entry / "main.rs").is_file():
            found.add(entry.name)
    return sorted(found)


def _cargo_binary_name(root: Path, name: str, bins: list) -> str:
    """Resolve the binary Cargo would build, in the order Cargo itself uses.

    First [[bin]] name, then src/main.rs (named after the package), then a
    lone target under src/bin/.

    Raises:
        ManifestParseError: If the crate has no binary target, or several
            with none named after the package.
    """
    for target in bins:
        if isinstance(target, dict) and isinstance(target.get("name"), str) and target["name"]:
            return target["name"]

    if (root / "src" / "main.rs").is_file():
        return name

    auto_bins = _cargo_auto_bins(root)
    if len(auto_bins) == 1:
        return auto_bins[0]
    if name in auto_bins:
        return name
    if auto_bins:
        raise ManifestParseError(
            f"{CARGO_MANIFEST}: several binaries under src/bin/ ({', '.join(auto_bins)}); "
            "declare the one to package with [[bin]]"
        )
    raise ManifestParseError(
        f"{CARGO_MANIFEST}: '{name}' has no binary target "
        "(no [[bin]], src/main.rs or src/bin/)"
    )


def _inspect_rust(root: Path) -> ProjectMetadata:
    text = _read_manifest(root, Language.RUST)
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ManifestParseError(f"{CARGO_MANIFEST} is not valid TOML: {e}") from e

    package = data.get("package")
    workspace = data.get("workspace", {})
    if not isinstance(workspace, dict):
        raise ManifestParseError(f"{CARGO_MANIFEST}: [workspace] must be a table")
    if package is None:
        if workspace:
            raise ManifestParseError(
                f"{CARGO_MANIFEST} is a virtual workspace with no [package]; "
                "run flakeup against the member crate that builds the binary"
            )
        raise ManifestParseError(f"{CARGO_MANIFEST} has no [package] table")
    if not isinstance(package, dict):
        raise ManifestParseError(f"{CARGO_MANIFEST}: [package] must be a table")

    name = package.get("name")
    if not isinstance(name, str) or not name:
        raise ManifestParseError(f"{CARGO_MANIFEST}: [package].name is missing")

    bins = data.get("bin", [])
    if not isinstance(bins, list):
        raise ManifestParseError(f"{CARGO_MANIFEST}: [[bin]] must be an array of tables")
    binary_name = _cargo_binary_name(root, name, bins)

    workspace_package = workspace.get("package", {})
    if not isinstance(workspace_package, dict):
        workspace_package = {}

    # Cargo defaults an omitted version to 0.0.0.
    version = _inherited(package, workspace_package, "version") or "0.0.0"

    homepage = _inherited(package, workspace_package, "homepage") or _inherited(
        package, workspace_package, "repository"
    )

    try:
        return ProjectMetadata(
            name=name,
            binary_name=binary_name,
            version=version,
            language=Language.RUST,
            workspace_members=tuple(_cargo_workspace_members(root, workspace)),
            license=_inherited(package, workspace_package, "license") or _sniff_license(root),
            homepage=homepage,
            description=_inherited(package, workspace_package, "description"),
        )
    except ValidationError as e:
        raise ManifestParseError(f"{CARGO_MANIFEST}: {e}") from e


# ── Go ────────────────────────────────────────────────────────────────────────


def _strip_go_comments(text: str) -> str:
    return "\n".join(line.split("//", 1)[0] for line in text.splitlines())


def _is_main_package(directory: Path) -> bool:
    for source in sorted(directory.glob("*.go")):
        if source.name.endswith("_test.go") or not source.is_file():
            continue
        try:
            text = source.read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        if _GO_PACKAGE_MAIN_RE.search(_strip_go_comments(text)):
            return True
    return False


def _go_binary_name(root: Path, name: str) -> str:
    """Pick the command to package: `package main` at the root, else cmd/<x>.

    Raises:
        ManifestParseError: If there is no main package, or several under
            cmd/ with none named after the module.
    """
    if _is_main_package(root):
        return name

    cmd_dir = root / "cmd"
    commands = []
    if cmd_dir.is_dir():
        commands = sorted(d.name for d in cmd_dir.iterdir() if d.is_dir() and _is_main_package(d))
    if name in commands:
        return name
    if len(commands) == 1:
        return commands[0]
    if commands:
        raise ManifestParseError(
            f"{GO_MANIFEST}: several commands under cmd/ ({', '.join(commands)}) "
            f"and none is named '{name}'"
        )
    raise ManifestParseError(
        f"{GO_MANIFEST}: no `package main` at the module root or under cmd/"
    )


def _go_version(root: Path) -> str:
    version_file = root / "VERSION"
    if not version_file.is_file():
        return DEFAULT_GO_VERSION
    try:
        version = version_file.read_text(encoding="utf-8").strip().removeprefix("v")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestParseError(f"Could not read {version_file}: {e}") from e
    return version or DEFAULT_GO_VERSION


def _inspect_go(root: Path) -> ProjectMetadata:
    text = _strip_go_comments(_read_manifest(root, Language.GO))
    match = _GO_MODULE_RE.search(text)
    if not match:
        raise ManifestParseError(f"{GO_MANIFEST} has no module directive")
    module_path = match.group(1)

    segments = [s for s in module_path.split("/") if s]
    if len(segments) > 1 and _GO_MAJOR_SUFFIX_RE.match(segments[-1]):
        segments.pop()
    if not segments:
        raise ManifestParseError(f"{GO_MANIFEST}: module path '{module_path}' is empty")
    name = segments[-1]

    homepage = None
    if module_path.startswith(_GO_FORGE_HOSTS):
        homepage = f"https://{'/'.join(module_path.split('/')[:3])}"

    try:
        return ProjectMetadata(
            name=name,
            binary_name=_go_binary_name(root, name),
            version=_go_version(root),
            language=Language.GO,
            workspace_members=tuple(find_secondary_manifests(root, GO_MANIFEST)),
            license=_sniff_license(root),
            homepage=homepage,
            has_dependencies=_GO_REQUIRE_RE.search(text) is not None,
        )
    except ValidationError as e:
        raise ManifestParseError(f"{GO_MANIFEST}: {e}") from e


# ── Entry point ───────────────────────────────────────────────────────────────


def inspect_project(root: str | Path, language: Language | None = None) -> ProjectMetadata:
    """Read project metadata from the manifest at root.

    Args:
        root: Project root directory.
        language: Ecosystem to inspect. If omitted, detected from the manifest
            present at the root.

    Returns:
        A fully validated ProjectMetadata.

    Raises:
        ManifestNotFoundError: If root does not exist or has no manifest
            for the requested language.
        ManifestParseError: If the manifest is malformed or lacks the package
            name / binary name.
    """
    root_path = Path(root).resolve()
    if not root_path.is_dir():
        raise ManifestNotFoundError(f"Project directory not found: {root_path}")

    resolved = language or detect_language(root_path)

    with logfire.span("inspector.inspect", root=str(root_path), language=resolved.value):
        if resolved is Language.RUST:
            metadata = _inspect_rust(root_path)
        else:
            metadata = _inspect_go(root_path)

        logfire.info(
            "Inspected {name} {version}",
            name=metadata.name,
            version=metadata.version,
            binary=metadata.binary_name,
            members=list(metadata.workspace_members),
        )
        return metadata
