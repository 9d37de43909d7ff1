"""flake.nix template bodies, one per supported language.

Placeholders use the nixpkgs substituteAll spelling `@key@` so they never
collide with Nix `${...}` interpolation. Every value substituted in is
already a Nix literal (quoted string, list, or a whole attribute block)
produced by flakeup.nix_gen.generator.build_context.

Block placeholders (`@workspace_attrs@`, `@meta_attrs@`, `@sub_packages@`)
sit at the start of the following line and expand either to nothing or to
complete lines ending in a newline.
"""

from __future__ import annotations

from flakeup.nix_gen.models import Language

RUST_FLAKE = """\
{
  description = @description@;

  inputs = {
    nixpkgs.url = @nixpkgs_url@;
    flake-utils.url = "github:numtide/flake-utils";
  };

  outputs = { self, nixpkgs, flake-utils }:
    flake-utils.lib.eachDefaultSystem (system:
      let
        pkgs = nixpkgs.legacyPackages.${system};
      in
      {
        packages.default = pkgs.rustPlatform.buildRustPackage {
          pname = @pname@;
          version = @version@;
          src = ./.;

          cargoHash = @hash@;

@workspace_attrs@          meta = with pkgs.lib; {
            description = @description@;
@meta_attrs@            mainProgram = @binary_name@;
          };
        };

        devShells.default = pkgs.mkShell {
          inputsFrom = [ self.packages.${system}.default ];
          packages = with pkgs; [
            cargo
            rustc
            rust-analyzer
            clippy
            rustfmt
          ];
        };
      });
}
"""

GO_FLAKE = """\
{
  description = @description@;

  inputs = {
    nixpkgs.url = @nixpkgs_url@;
    flake-utils.url = "github:numtide/flake-utils";
  };

  outputs = { self, nixpkgs, flake-utils }:
    flake-utils.lib.eachDefaultSystem (system:
      let
        pkgs = nixpkgs.legacyPackages.${system};
      in
      {
        packages.default = pkgs.buildGoModule {
          pname = @pname@;
          version = @version@;
          src = ./.;

          vendorHash = @hash@;

@sub_packages@@workspace_attrs@          ldflags = [ "-s" "-w" ];

          meta = with pkgs.lib; {
            description = @description@;
@meta_attrs@            mainProgram = @binary_name@;
          };
        };

        devShells.default = pkgs.mkShell {
          inputsFrom = [ self.packages.${system}.default ];
          packages = with pkgs; [
            go
            gopls
            gotools
          ];
        };
      });
}
"""

TEMPLATES: dict[Language, str] = {
    Language.RUST: RUST_FLAKE,
    Language.GO: GO_FLAKE,
}
