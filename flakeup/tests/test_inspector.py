"""Tests for project inspection — Cargo.toml and go.mod parsing.

Every test builds a throwaway project tree under tmp_path; nothing from
the inspected project is ever executed.
"""

import textwrap
from pathlib import Path

import pytest

from flakeup.nix_gen.inspector import (
    DEFAULT_GO_VERSION,
    ManifestNotFoundError,
    ManifestParseError,
    detect_language,
    find_secondary_manifests,
    inspect_project,
)
from flakeup.nix_gen.models import Language

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def write(root: Path, relpath: str, content: str) -> Path:
    path = root / relpath
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content), encoding="utf-8")
    return path


def write_crate(root: Path, content: str) -> Path:
    write(root, "src/main.rs", "fn main() {}\n")
    return write(root, "Cargo.toml", content)


def write_module(root: Path, content: str) -> Path:
    write(root, "main.go", "package main\n\nfunc main() {}\n")
    return write(root, "go.mod", content)


_SIMPLE_CARGO = """\
    [package]
    name = "hello"
    version = "0.3.1"
    edition = "2021"
    license = "MIT OR Apache-2.0"
    description = "Says hello"
    repository = "https://github.com/example/hello"
"""


# ---------------------------------------------------------------------------
# Language detection / missing manifests
# ---------------------------------------------------------------------------


class TestManifestNotFound:
    def test_empty_directory(self, tmp_path):
        with pytest.raises(ManifestNotFoundError):
            inspect_project(tmp_path)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ManifestNotFoundError, match="not found"):
            inspect_project(tmp_path / "nope")

    def test_requested_language_absent(self, tmp_path):
        write_crate(tmp_path, _SIMPLE_CARGO)
        with pytest.raises(ManifestNotFoundError, match="go.mod"):
            inspect_project(tmp_path, Language.GO)

    def test_unrelated_files_only(self, tmp_path):
        write(tmp_path, "package.json", "{}")
        with pytest.raises(ManifestNotFoundError):
            detect_language(tmp_path)


class TestDetectLanguage:
    def test_cargo(self, tmp_path):
        write_crate(tmp_path, _SIMPLE_CARGO)
        assert detect_language(tmp_path) is Language.RUST

    def test_go(self, tmp_path):
        write(tmp_path, "go.mod", "module example.com/tool\n")
        assert detect_language(tmp_path) is Language.GO

    def test_cargo_wins_over_go(self, tmp_path):
        write_crate(tmp_path, _SIMPLE_CARGO)
        write(tmp_path, "go.mod", "module example.com/tool\n")
        assert detect_language(tmp_path) is Language.RUST


# ---------------------------------------------------------------------------
# Rust
# ---------------------------------------------------------------------------


class TestInspectRust:
    def test_simple_package(self, tmp_path):
        write_crate(tmp_path, _SIMPLE_CARGO)
        meta = inspect_project(tmp_path)

        assert meta.language is Language.RUST
        assert meta.name == "hello"
        assert meta.binary_name == "hello"
        assert meta.version == "0.3.1"
        assert meta.license == "MIT OR Apache-2.0"
        assert meta.description == "Says hello"
        assert meta.homepage == "https://github.com/example/hello"
        assert meta.workspace_members == ()

    def test_homepage_preferred_over_repository(self, tmp_path):
        write(
            tmp_path,
            "Cargo.toml",
            _SIMPLE_CARGO + '    homepage = "https://hello.example.org"\n',
        )
        assert inspect_project(tmp_path).homepage == "https://hello.example.org"

    def test_bin_target_name(self, tmp_path):
        write(
            tmp_path,
            "Cargo.toml",
            """\
            [package]
            name = "ripgrep"
            version = "14.1.0"

            [[bin]]
            name = "rg"
            path = "crates/core/main.rs"
            """,
        )
        assert inspect_project(tmp_path).binary_name == "rg"

    def test_single_src_bin_file(self, tmp_path):
        write(tmp_path, "Cargo.toml", '[package]\nname = "pkg"\nversion = "1.0.0"\n')
        write(tmp_path, "src/bin/tool.rs", "fn main() {}\n")
        assert inspect_project(tmp_path).binary_name == "tool"

    def test_single_src_bin_directory(self, tmp_path):
        write(tmp_path, "Cargo.toml", '[package]\nname = "pkg"\nversion = "1.0.0"\n')
        write(tmp_path, "src/bin/tool/main.rs", "fn main() {}\n")
        assert inspect_project(tmp_path).binary_name == "tool"

    def test_src_main_wins_over_src_bin(self, tmp_path):
        write_crate(tmp_path, '[package]\nname = "pkg"\nversion = "1.0.0"\n')
        write(tmp_path, "src/bin/helper.rs", "fn main() {}\n")
        assert inspect_project(tmp_path).binary_name == "pkg"

    def test_src_bin_named_after_package(self, tmp_path):
        write(tmp_path, "Cargo.toml", '[package]\nname = "pkg"\nversion = "1.0.0"\n')
        write(tmp_path, "src/bin/pkg.rs", "fn main() {}\n")
        write(tmp_path, "src/bin/helper.rs", "fn main() {}\n")
        assert inspect_project(tmp_path).binary_name == "pkg"

    def test_missing_version_defaults(self, tmp_path):
        write_crate(tmp_path, '[package]\nname = "tiny"\n')
        assert inspect_project(tmp_path).version == "0.0.0"

    def test_workspace_inheritance(self, tmp_path):
        write(
            tmp_path,
            "Cargo.toml",
            """\
            [workspace]
            members = ["crates/*"]

            [workspace.package]
            version = "2.0.0"
            license = "MIT"

            [package]
            name = "tool"
            version.workspace = true
            license.workspace = true
            """,
        )
        write(tmp_path, "crates/core/Cargo.toml", '[package]\nname = "tool-core"\n')
        write(tmp_path, "crates/macros/Cargo.toml", '[package]\nname = "tool-macros"\n')

        meta = inspect_project(tmp_path)
        assert meta.version == "2.0.0"
        assert meta.license == "MIT"
        assert meta.workspace_members == ("crates/core", "crates/macros")

    def test_declared_and_discovered_members_merged(self, tmp_path):
        write(
            tmp_path,
            "Cargo.toml",
            """\
            [package]
            name = "tool"
            version = "1.0.0"

            [workspace]
            members = ["./xtask/", "."]
            """,
        )
        write(tmp_path, "xtask/Cargo.toml", '[package]\nname = "xtask"\n')
        write(tmp_path, "plugins/extra/Cargo.toml", '[package]\nname = "extra"\n')

        meta = inspect_project(tmp_path)
        assert meta.workspace_members == ("xtask", "plugins/extra")

    def test_excluded_members_dropped(self, tmp_path):
        write(
            tmp_path,
            "Cargo.toml",
            """\
            [package]
            name = "tool"
            version = "1.0.0"

            [workspace]
            members = ["cli"]
            exclude = ["fuzz"]
            """,
        )
        write(tmp_path, "cli/Cargo.toml", '[package]\nname = "cli"\n')
        write(tmp_path, "fuzz/Cargo.toml", '[package]\nname = "fuzz"\n')

        assert inspect_project(tmp_path).workspace_members == ("cli",)

    def test_build_output_not_scanned(self, tmp_path):
        write_crate(tmp_path, _SIMPLE_CARGO)
        write(tmp_path, "target/package/hello-0.3.1/Cargo.toml", _SIMPLE_CARGO)
        write(tmp_path, ".git/modules/x/Cargo.toml", _SIMPLE_CARGO)
        assert inspect_project(tmp_path).workspace_members == ()

    def test_license_file_sniffed_when_manifest_silent(self, tmp_path):
        write_crate(tmp_path, '[package]\nname = "tool"\nversion = "1.0.0"\n')
        write(tmp_path, "LICENSE", "MIT License\n\nCopyright (c) 2024 Someone\n")
        assert inspect_project(tmp_path).license == "MIT"


class TestInspectRustErrors:
    def test_invalid_toml(self, tmp_path):
        write_crate(tmp_path, "[package\nname = ")
        with pytest.raises(ManifestParseError, match="not valid TOML"):
            inspect_project(tmp_path)

    def test_missing_package_name(self, tmp_path):
        write_crate(tmp_path, '[package]\nversion = "1.0.0"\n')
        with pytest.raises(ManifestParseError, match="name is missing"):
            inspect_project(tmp_path)

    def test_virtual_workspace(self, tmp_path):
        write_crate(tmp_path, '[workspace]\nmembers = ["a"]\n')
        with pytest.raises(ManifestParseError, match="virtual workspace"):
            inspect_project(tmp_path)

    def test_no_package_table(self, tmp_path):
        write_crate(tmp_path, "[dependencies]\nserde = \"1\"\n")
        with pytest.raises(ManifestParseError, match="no \\[package\\]"):
            inspect_project(tmp_path)

    def test_invalid_name_wrapped(self, tmp_path):
        write_crate(tmp_path, '[package]\nname = ".bad"\nversion = "1.0.0"\n')
        with pytest.raises(ManifestParseError, match="derivation name"):
            inspect_project(tmp_path)

    def test_library_only_crate(self, tmp_path):
        write(tmp_path, "Cargo.toml", '[package]\nname = "libonly"\nversion = "1.0.0"\n')
        write(tmp_path, "src/lib.rs", "pub fn f() {}\n")
        with pytest.raises(ManifestParseError, match="no binary target"):
            inspect_project(tmp_path)

    def test_ambiguous_src_bin_targets(self, tmp_path):
        write(tmp_path, "Cargo.toml", '[package]\nname = "pkg"\nversion = "1.0.0"\n')
        write(tmp_path, "src/bin/one.rs", "fn main() {}\n")
        write(tmp_path, "src/bin/two.rs", "fn main() {}\n")
        with pytest.raises(ManifestParseError, match="several binaries under src/bin/"):
            inspect_project(tmp_path)

    def test_non_string_license(self, tmp_path):
        write_crate(tmp_path, '[package]\nname = "x"\nlicense = 3\n')
        with pytest.raises(ManifestParseError, match="'license' must be a string"):
            inspect_project(tmp_path)


# ---------------------------------------------------------------------------
# Go
# ---------------------------------------------------------------------------


class TestInspectGo:
    def test_simple_module(self, tmp_path):
        write(tmp_path, "go.mod", "module github.com/example/gotool\n\ngo 1.22\n")
        write(tmp_path, "main.go", "package main\n")
        meta = inspect_project(tmp_path)

        assert meta.language is Language.GO
        assert meta.name == "gotool"
        assert meta.binary_name == "gotool"
        assert meta.version == DEFAULT_GO_VERSION
        assert meta.homepage == "https://github.com/example/gotool"

    def test_major_version_suffix_dropped(self, tmp_path):
        write_module(tmp_path, "module github.com/example/gotool/v3\n")
        meta = inspect_project(tmp_path)
        assert meta.name == "gotool"
        assert meta.homepage == "https://github.com/example/gotool"

    def test_quoted_module_and_comments(self, tmp_path):
        write_module(tmp_path, '// generated\nmodule "example.com/quoted" // trailing\n')
        meta = inspect_project(tmp_path)
        assert meta.name == "quoted"
        assert meta.homepage is None

    def test_single_cmd_directory(self, tmp_path):
        write(tmp_path, "go.mod", "module example.com/project\n")
        write(tmp_path, "cmd/projctl/main.go", "package main\n")
        assert inspect_project(tmp_path).binary_name == "projctl"

    def test_cmd_named_after_module_preferred(self, tmp_path):
        write(tmp_path, "go.mod", "module example.com/project\n")
        write(tmp_path, "cmd/project/main.go", "package main\n")
        write(tmp_path, "cmd/helper/main.go", "package main\n")
        assert inspect_project(tmp_path).binary_name == "project"

    def test_root_main_wins_over_cmd(self, tmp_path):
        write_module(tmp_path, "module example.com/project\n")
        write(tmp_path, "cmd/projctl/main.go", "package main\n")
        assert inspect_project(tmp_path).binary_name == "project"

    def test_version_file(self, tmp_path):
        write_module(tmp_path, "module example.com/project\n")
        write(tmp_path, "VERSION", "v1.4.2\n")
        assert inspect_project(tmp_path).version == "1.4.2"

    def test_no_require_means_no_dependencies(self, tmp_path):
        write_module(tmp_path, "module example.com/project\n\ngo 1.22\n")
        assert inspect_project(tmp_path).has_dependencies is False

    def test_require_block_means_dependencies(self, tmp_path):
        write_module(
            tmp_path,
            """\
            module example.com/project

            go 1.22

            require (
            \tgithub.com/spf13/cobra v1.8.0
            )
            """,
        )
        assert inspect_project(tmp_path).has_dependencies is True

    def test_commented_require_ignored(self, tmp_path):
        write_module(tmp_path, "module example.com/project\n// require example.com/x v1\n")
        assert inspect_project(tmp_path).has_dependencies is False

    def test_nested_modules_are_members(self, tmp_path):
        write_module(tmp_path, "module example.com/project\n")
        write(tmp_path, "tools/go.mod", "module example.com/project/tools\n")
        write(tmp_path, "vendor/example.com/dep/go.mod", "module example.com/dep\n")
        assert inspect_project(tmp_path).workspace_members == ("tools",)

    def test_apache_license_sniffed(self, tmp_path):
        write_module(tmp_path, "module example.com/project\n")
        write(tmp_path, "LICENSE", "\n   Apache License\n   Version 2.0, January 2004\n")
        assert inspect_project(tmp_path).license == "Apache-2.0"

    def test_missing_module_directive(self, tmp_path):
        write(tmp_path, "go.mod", "go 1.22\n")
        with pytest.raises(ManifestParseError, match="no module directive"):
            inspect_project(tmp_path)


class TestInspectGoErrors:
    def test_library_module_rejected(self, tmp_path):
        write(tmp_path, "go.mod", "module example.com/lib\n")
        write(tmp_path, "lib.go", "package lib\n")
        with pytest.raises(ManifestParseError, match="no `package main`"):
            inspect_project(tmp_path)

    def test_test_files_do_not_count_as_main(self, tmp_path):
        write(tmp_path, "go.mod", "module example.com/lib\n")
        write(tmp_path, "main_test.go", "package main\n")
        with pytest.raises(ManifestParseError, match="no `package main`"):
            inspect_project(tmp_path)

    def test_ambiguous_cmd_directories(self, tmp_path):
        write(tmp_path, "go.mod", "module example.com/project\n")
        write(tmp_path, "cmd/a/main.go", "package main\n")
        write(tmp_path, "cmd/b/main.go", "package main\n")
        with pytest.raises(ManifestParseError, match="several commands under cmd/ \\(a, b\\)"):
            inspect_project(tmp_path)

    def test_undecodable_version_file(self, tmp_path):
        write_module(tmp_path, "module example.com/project\n")
        (tmp_path / "VERSION").write_bytes(b"\xff\xfe1.0\n")
        with pytest.raises(ManifestParseError, match="VERSION"):
            inspect_project(tmp_path)


class TestFindSecondaryManifests:
    def test_root_manifest_excluded_and_sorted(self, tmp_path):
        write(tmp_path, "go.mod", "module a\n")
        write(tmp_path, "z/go.mod", "module a/z\n")
        write(tmp_path, "b/c/go.mod", "module a/b/c\n")
        assert find_secondary_manifests(tmp_path, "go.mod") == ["b/c", "z"]

    def test_hidden_and_result_dirs_pruned(self, tmp_path):
        write(tmp_path, ".direnv/go.mod", "module x\n")
        write(tmp_path, "result-bin/go.mod", "module x\n")
        write(tmp_path, "node_modules/pkg/go.mod", "module x\n")
        assert find_secondary_manifests(tmp_path, "go.mod") == []

    def test_control_characters_in_names_skipped(self, tmp_path):
        write(tmp_path, "crates/a\n  }; evil = 1; {/Cargo.toml", "[package]\n")
        write(tmp_path, "crates/ok/Cargo.toml", "[package]\n")
        assert find_secondary_manifests(tmp_path, "Cargo.toml") == ["crates/ok"]
