"""nix_gen — flake generation for Rust and Go command-line projects.

This package owns the Python side of the project-to-Nix boundary:
- Pydantic models describing the inspected project
- Manifest inspection (Cargo.toml, go.mod)
- Template rendering into flake.nix
"""
