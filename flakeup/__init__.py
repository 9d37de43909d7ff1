"""flakeup — generate and verify Nix flakes for Rust and Go CLI projects."""

__version__ = "0.1.0"
