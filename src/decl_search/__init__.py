"""decl-search package."""

from . import (
    adapter,
    config,
    controller,
    diagnostics,
    edits,
    executor,
    features,
    generate,
    imports,
    localize,
    logging,
    main,
    oracle,
    pairs,
    reranker,
    resolver,
    selection,
    stubs,
    types,
)  # noqa: F401

__all__ = [
    "adapter",
    "config",
    "controller",
    "diagnostics",
    "edits",
    "executor",
    "features",
    "generate",
    "imports",
    "localize",
    "logging",
    "main",
    "oracle",
    "pairs",
    "reranker",
    "resolver",
    "selection",
    "stubs",
    "types",
]
