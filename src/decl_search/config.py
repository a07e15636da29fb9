"""Configuration loading helpers for decl-search."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

SYMBOL_MODES = (
    "interface-indexer",
    "namespace-members",
    "function-any-overload",
    "missing-exports",
    "export-to-any",
    "type-to-any",
)
STRATEGIES = ("repair", "sweep", "topk", "symbol")


def _filter_kwargs(data: Dict[str, Any], *, allowed: set[str]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key in allowed}


def _tuple_fields(data: Dict[str, Any], names: Tuple[str, ...]) -> Dict[str, Any]:
    for name in names:
        if isinstance(data.get(name), list):
            data[name] = tuple(data[name])
    return data


@dataclass(frozen=True)
class OracleConfig:
    command: Tuple[str, ...] = ("tsc",)
    timeout_sec: float = 600.0
    core_codes: Tuple[str, ...] = (
        "TS2307",
        "TS2305",
        "TS7016",
        "TS2339",
        "TS2345",
        "TS2322",
        "TS2554",
        "TS2769",
        "TS2353",
        "TS2741",
        "TS7053",
    )
    parser_codes: Tuple[str, ...] = (
        "TS1002",
        "TS1003",
        "TS1005",
        "TS1009",
        "TS1010",
        "TS1109",
        "TS1110",
        "TS1126",
        "TS1127",
        "TS1128",
        "TS1131",
        "TS1160",
        "TS1161",
    )
    types_dir: str = ".decl-search/@types"
    package_name: str = "__decl_search_injected__"
    tsconfig: str = "tsconfig.json"


@dataclass(frozen=True)
class ExtractConfig:
    only_external: bool = True
    max_members_per_import: int = 64


@dataclass(frozen=True)
class LocalizeConfig:
    mode: str = "per-file"
    top_m: Optional[int] = None


@dataclass(frozen=True)
class SearchConfig:
    trial_max: int = 20
    strategies: Tuple[str, ...] = ("repair", "sweep", "topk", "symbol")
    sweep_k: int = 1
    topk: int = 3
    symbol_mode: Optional[str] = None
    symbol_widen_max: int = 8
    use_call_arity: bool = True
    repair_max: int = 8
    stop_on_improvement: bool = True
    stop_after_ties: Optional[int] = None
    stop_when_clean: bool = True


@dataclass(frozen=True)
class ResolverConfig:
    backend: str = "auto"
    node: str = "node"
    timeout_sec: float = 120.0


@dataclass(frozen=True)
class RerankerConfig:
    model_path: Optional[str] = None


@dataclass(frozen=True)
class TrainConfig:
    epochs: int = 30
    lr: float = 0.05
    l2: float = 1e-4
    seed: int = 0
    test_frac: float = 0.2


@dataclass(frozen=True)
class RunConfig:
    concurrency: int = 1
    project_timeout_sec: Optional[float] = None


@dataclass(frozen=True)
class BaselineConfig:
    source: str = "stub"
    adapter_command: Optional[Tuple[str, ...]] = None
    adapter_timeout_sec: float = 120.0


@dataclass(frozen=True)
class LoggingConfig:
    dir: str = ".decl_search_runs"
    stream: bool = False


@dataclass(frozen=True)
class Config:
    """Aggregated configuration for a search run."""

    oracle: OracleConfig = field(default_factory=OracleConfig)
    extract: ExtractConfig = field(default_factory=ExtractConfig)
    localize: LocalizeConfig = field(default_factory=LocalizeConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    reranker: RerankerConfig = field(default_factory=RerankerConfig)
    train: TrainConfig = field(default_factory=TrainConfig)
    run: RunConfig = field(default_factory=RunConfig)
    baseline: BaselineConfig = field(default_factory=BaselineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        def section(name: str, klass: type, tuples: Tuple[str, ...] = ()) -> Any:
            raw = data.get(name) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"Config section '{name}' must be a mapping.")
            kwargs = _filter_kwargs(dict(raw), allowed=set(klass.__annotations__.keys()))
            return klass(**_tuple_fields(kwargs, tuples))

        cfg = cls(
            oracle=section("oracle", OracleConfig, ("command", "core_codes", "parser_codes")),
            extract=section("extract", ExtractConfig),
            localize=section("localize", LocalizeConfig),
            search=section("search", SearchConfig, ("strategies",)),
            resolver=section("resolver", ResolverConfig),
            reranker=section("reranker", RerankerConfig),
            train=section("train", TrainConfig),
            run=section("run", RunConfig),
            baseline=section("baseline", BaselineConfig, ("adapter_command",)),
            logging=section("logging", LoggingConfig),
        )
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if self.localize.mode not in ("per-file", "per-error"):
            raise ValueError(f"Unknown localize.mode {self.localize.mode!r} (use per-file|per-error).")
        if self.search.sweep_k not in (1, 2):
            raise ValueError("search.sweep_k must be 1 or 2.")
        if self.search.symbol_mode is not None and self.search.symbol_mode not in SYMBOL_MODES:
            raise ValueError(f"Unknown search.symbol_mode {self.search.symbol_mode!r}.")
        unknown = [name for name in self.search.strategies if name not in STRATEGIES]
        if unknown:
            raise ValueError(f"Unknown search strategies: {', '.join(unknown)}.")
        if self.search.trial_max < 1:
            raise ValueError("search.trial_max must be at least 1.")
        if self.resolver.backend not in ("auto", "compiler", "lexical", "none"):
            raise ValueError(f"Unknown resolver.backend {self.resolver.backend!r}.")
        if self.baseline.source not in ("stub", "adapter"):
            raise ValueError(f"Unknown baseline.source {self.baseline.source!r} (use stub|adapter).")

    @classmethod
    def load(cls, path: str | Path | None = None) -> "Config":
        """Load configuration from *path* if it exists, otherwise defaults."""

        if path is None:
            path = Path("decl-search.yaml")
        else:
            path = Path(path)
        if not path.exists():
            return cls.default()
        raw = yaml.safe_load(path.read_text()) or {}
        if not isinstance(raw, dict):
            raise ValueError("Config file must contain a mapping at the top level.")
        return cls.from_dict(raw)


__all__ = [
    "BaselineConfig",
    "Config",
    "ExtractConfig",
    "LocalizeConfig",
    "LoggingConfig",
    "OracleConfig",
    "RerankerConfig",
    "ResolverConfig",
    "RunConfig",
    "SearchConfig",
    "TrainConfig",
    "SYMBOL_MODES",
    "STRATEGIES",
]
