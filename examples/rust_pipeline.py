# rust_pipeline.py
# Same pipeline as gridci.yml, written with the Python DSL.
from __future__ import annotations

from gridci.dsl import build, cache_restore, checkout, make_pipeline, on_manual, on_pull_request, on_push, test


def pipeline():
    return make_pipeline(
        "rust",
        checkout(),
        cache_restore(key_files=["Cargo.lock", "Cargo.toml"], paths=["target"]),
        build("cargo build"),
        test("cargo test"),
        triggers=[
            on_manual(),
            on_push("src/**", ".github/workflows/**", "Cargo.toml"),
            on_pull_request("main"),
        ],
        platforms=["linux", "windows", "macos"],
        env={"CARGO_TERM_COLOR": "always"},
    )
