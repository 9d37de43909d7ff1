"""flake.nix generator — renders a per-language template from ProjectMetadata.

flakeup never writes Nix syntax by hand anywhere else. This module is the
single place where ProjectMetadata (Python) is translated into flake.nix
text that `nix build` can evaluate.

Rendering is pure: no filesystem writes, no subprocesses, no network.
The same metadata and hash always produce byte-identical text, which is
what lets the resolver rewrite and re-stage the file without spurious diffs.

The nixpkgs URL is resolved from:
  1. The explicit `nixpkgs_url` argument (takes priority — used in tests)
  2. settings.nixpkgs_url from FlakeupSettings (FLAKEUP_NIXPKGS_URL env var)
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from flakeup.config import get_settings
from flakeup.nix_gen.models import FAKE_HASH, Language
from flakeup.nix_gen.templates import TEMPLATES

if TYPE_CHECKING:
    from flakeup.nix_gen.models import ProjectMetadata

_PLACEHOLDER_RE = re.compile(r"@([a-z_][a-z0-9_]*)@")

# `cargoHash = "...";` / `vendorHash = "...";` also matches lib.fakeHash
# or null written by hand, so a user-edited flake can still be resolved.
_HASH_FIELD_RE = re.compile(
    r'^(?P<lead>[ \t]*(?P<attr>cargoHash|vendorHash)[ \t]*=[ \t]*)'
    r'(?P<value>"[^"\n]*"|[A-Za-z_.]+)(?P<tail>[ \t]*;)',
    re.MULTILINE,
)

# SPDX identifiers → nixpkgs lib.licenses attribute names.
_SPDX_TO_NIX: dict[str, str] = {
    "MIT": "mit",
    "Apache-2.0": "asl20",
    "GPL-2.0": "gpl2Only",
    "GPL-2.0-only": "gpl2Only",
    "GPL-2.0-or-later": "gpl2Plus",
    "GPL-3.0": "gpl3Only",
    "GPL-3.0-only": "gpl3Only",
    "GPL-3.0-or-later": "gpl3Plus",
    "LGPL-3.0-only": "lgpl3Only",
    "AGPL-3.0-only": "agpl3Only",
    "BSD-2-Clause": "bsd2",
    "BSD-3-Clause": "bsd3",
    "MPL-2.0": "mpl20",
    "ISC": "isc",
    "Unlicense": "unlicense",
    "Zlib": "zlib",
    "0BSD": "bsd0",
}

_SPDX_SPLIT_RE = re.compile(r"\s+(?:OR|AND|WITH)\s+|/")

_INDENT = " " * 10
_META_INDENT = " " * 12


class UnresolvedPlaceholderError(AssertionError):
    """Raised when a template references a key missing from the context.

    This is a bug in the template set, never a user error — it subclasses
    AssertionError so nothing retries it.
    """


class HashFieldError(Exception):
    """Raised when rendered flake text has no single hash attribute to rewrite."""


def nix_string(value: str) -> str:
    """Wrap a Python string as a Nix string literal.

    Escapes Nix special characters within double-quoted strings:
      \\  →  \\\\   (must be first to avoid double-escaping)
      "   →  \\"
      $   →  \\$    (prevents Nix string interpolation)
    """
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("$", "\\$")
    return f'"{escaped}"'


def nix_list(items: list[str] | tuple[str, ...]) -> str:
    """Format a Python sequence of strings as a Nix list literal.

    Example: ["-p", "cli"] → '[ "-p" "cli" ]'
    """
    if not items:
        return "[ ]"
    return "[ " + " ".join(nix_string(item) for item in items) + " ]"


def nix_licenses(spdx: str | None) -> list[str]:
    """Map an SPDX expression onto nixpkgs license attribute names.

    Identifiers nixpkgs has no obvious counterpart for are dropped rather
    than guessed. Order follows the expression; duplicates are removed.
    """
    if not spdx:
        return []
    attrs: list[str] = []
    for token in _SPDX_SPLIT_RE.split(spdx):
        ident = token.strip().strip("()").strip()
        attr = _SPDX_TO_NIX.get(ident)
        if attr and attr not in attrs:
            attrs.append(attr)
    return attrs


def _resolve_nixpkgs_url(nixpkgs_url: str | None) -> str:
    if nixpkgs_url:
        return nixpkgs_url
    return get_settings().nixpkgs_url


def _meta_attrs(metadata: ProjectMetadata) -> str:
    lines = []
    if metadata.homepage:
        lines.append(f"{_META_INDENT}homepage = {nix_string(metadata.homepage)};\n")
    licenses = nix_licenses(metadata.license)
    if len(licenses) == 1:
        lines.append(f"{_META_INDENT}license = licenses.{licenses[0]};\n")
    elif licenses:
        joined = " ".join(f"licenses.{attr}" for attr in licenses)
        lines.append(f"{_META_INDENT}license = [ {joined} ];\n")
    return "".join(lines)


def _workspace_attrs(metadata: ProjectMetadata) -> str:
    members = metadata.workspace_members
    if not members:
        return ""

    if metadata.language is Language.RUST:
        # Build and test only the binary crate; the other members are still
        # compiled as its dependencies where it uses them.
        package_flags = nix_list(["--package", metadata.name])
        return (
            f"{_INDENT}cargoBuildFlags = {package_flags};\n"
            f"{_INDENT}cargoTestFlags = {package_flags};\n\n"
        )

    # Nested Go modules have their own go.mod and vendor set; keep them out
    # of the root module's package list.
    excluded = nix_list([f"./{member}" for member in members])
    return f"{_INDENT}excludedPackages = {excluded};\n\n"


def _sub_packages(metadata: ProjectMetadata) -> str:
    if metadata.language is not Language.GO or metadata.binary_name == metadata.name:
        return ""
    return f"{_INDENT}subPackages = {nix_list([f'cmd/{metadata.binary_name}'])};\n\n"


def build_context(
    metadata: ProjectMetadata,
    *,
    hash_value: str = FAKE_HASH,
    nixpkgs_url: str | None = None,
) -> dict[str, str]:
    """Derive the placeholder → Nix literal mapping for a project.

    Args:
        metadata: Inspected project facts.
        hash_value: Dependency hash to write. Defaults to the fake-hash sentinel.
        nixpkgs_url: nixpkgs flake input. If omitted, read from settings.

    Returns:
        A mapping covering every placeholder in both templates.
    """
    description = metadata.description or f"{metadata.name} command-line tool"
    return {
        "description": nix_string(description),
        "nixpkgs_url": nix_string(_resolve_nixpkgs_url(nixpkgs_url)),
        "pname": nix_string(metadata.name),
        "version": nix_string(metadata.version),
        "binary_name": nix_string(metadata.binary_name),
        "hash": nix_string(hash_value) if metadata.has_dependencies else "null",
        "workspace_attrs": _workspace_attrs(metadata),
        "sub_packages": _sub_packages(metadata),
        "meta_attrs": _meta_attrs(metadata),
    }


def render_template(template: str, context: dict[str, str]) -> str:
    """Substitute every `@key@` in template from context.

    Raises:
        UnresolvedPlaceholderError: If any referenced key is absent.
    """
    missing = sorted({key for key in _PLACEHOLDER_RE.findall(template) if key not in context})
    if missing:
        msg = f"Template references undefined placeholders: {', '.join(missing)}"
        raise UnresolvedPlaceholderError(msg)
    return _PLACEHOLDER_RE.sub(lambda m: context[m.group(1)], template)


def render_flake(
    metadata: ProjectMetadata,
    *,
    hash_value: str = FAKE_HASH,
    nixpkgs_url: str | None = None,
) -> str:
    """Render flake.nix text for the project.

    The caller is responsible for writing the result to disk.
    """
    context = build_context(metadata, hash_value=hash_value, nixpkgs_url=nixpkgs_url)
    return render_template(TEMPLATES[metadata.language], context)


def set_hash_field(text: str, hash_value: str) -> str:
    """Rewrite the cargoHash / vendorHash value in rendered flake text.

    Raises:
        HashFieldError: If the text has no hash attribute, or more than one.
    """
    matches = _HASH_FIELD_RE.findall(text)
    if len(matches) != 1:
        msg = f"Expected exactly one cargoHash/vendorHash attribute, found {len(matches)}"
        raise HashFieldError(msg)
    return _HASH_FIELD_RE.sub(
        lambda m: f"{m.group('lead')}{nix_string(hash_value)}{m.group('tail')}",
        text,
    )
