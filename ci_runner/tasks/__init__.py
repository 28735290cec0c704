"""Built-in task implementations.

Each built-in is a callable ``(ctx: TaskContext, options: dict) -> None``
that raises on failure. Descriptor tasks select one with ``uses:``.
"""

from ci_runner.tasks.rust import cargo_build, cargo_clippy, cargo_test, rust_setup

BUILTINS = {
    "rust-setup": rust_setup,
    "cargo-build": cargo_build,
    "cargo-test": cargo_test,
    "cargo-clippy": cargo_clippy,
}
