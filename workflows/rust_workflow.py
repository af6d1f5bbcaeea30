# The same pipeline as rust.yml, written with the python DSL.
from __future__ import annotations

from seqci import pipeline, sh, uses, secret

PIPELINE = pipeline(
    "Rust CI/CD",
    uses("actions/checkout@v3"),
    sh("Check formatting", "cargo fmt -- --check"),
    sh("Lint with Clippy", "cargo clippy --all-targets --all-features -- -D warnings"),
    sh("Build", "cargo build --release"),
    sh("Test", "cargo test --release -- --test-threads 1"),
    on=["push", "pull_request"],
    env={
        "CARGO_TERM_COLOR": "always",
        "RUST_BACKTRACE": "full",
        "ZEROX_API_KEY": secret("ZEROX_API_KEY"),
    },
    runs_on="ubuntu-latest",
)
