"""Core datatypes for decl-search."""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple, Union
from typing import Literal

BindingKind = Literal["default", "namespace", "named", "require"]

BASELINE_ID = "000-top1"


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class Diagnostic:
    """One oracle diagnostic line."""

    file: str
    line: int
    col: int
    code: str
    message: str


@dataclass(frozen=True)
class ImportBinding:
    """A single import/require binding found in a source file."""

    module: str
    kind: BindingKind
    imported_name: str
    local_name: str
    is_type_only: bool = False


@dataclass
class ModuleStubInfo:
    """Per-module aggregate of everything the sources reference."""

    has_default_import: bool = False
    has_namespace_import: bool = False
    named_value_names: Set[str] = field(default_factory=set)
    named_type_names: Set[str] = field(default_factory=set)
    member_accesses_by_export_name: Dict[str, Set[str]] = field(default_factory=dict)
    call_arities_by_export_name: Dict[str, Set[int]] = field(default_factory=dict)


@dataclass(frozen=True)
class RankedModule:
    module: str
    score: int
    rank: int


@dataclass(frozen=True)
class SymbolOverride:
    """Structured edit descriptor carried by symbol-level candidates."""

    kind: str
    module: str
    name: Optional[str] = None
    members: Tuple[str, ...] = ()
    arity: Optional[int] = None
    code: Optional[str] = None
    op: Optional[str] = None
    prop: Optional[str] = None
    chain_depth: Optional[int] = None
    via: Optional[str] = None

    def key(self) -> str:
        """Normalized description used to deduplicate equivalent edits."""

        parts = [self.kind, self.module, self.op or "", self.name or "", ",".join(sorted(self.members))]
        if self.arity is not None:
            parts.append(f"arity={self.arity}")
        return "::".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["members"] = list(self.members)
        return data


@dataclass(frozen=True)
class Candidate:
    """One declaration hypothesis to be verified by the oracle."""

    candidate_id: str
    declaration_text: str
    strategy: str
    module_overrides: Optional[FrozenSet[str]] = None
    symbol_override: Optional[SymbolOverride] = None

    @property
    def is_baseline(self) -> bool:
        return self.candidate_id == BASELINE_ID

    @property
    def text_hash(self) -> str:
        return text_hash(self.declaration_text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "strategy": self.strategy,
            "text_hash": self.text_hash,
            "module_overrides": sorted(self.module_overrides) if self.module_overrides is not None else None,
            "symbol_override": self.symbol_override.to_dict() if self.symbol_override else None,
        }


@dataclass(frozen=True)
class Trial:
    """Result of executing one candidate against the oracle."""

    trial_id: int
    candidate_id: str
    injected_declaration_hash: str
    declaration_count: int
    oracle_exit_code: int
    timed_out: bool
    diagnostics: Tuple[Diagnostic, ...]
    code_counts: Dict[str, int]
    core_diagnostic_count: int
    total_diagnostic_count: int
    delta_from_baseline: int
    delta_errors: Dict[str, int]
    valid_injection: bool
    duration_sec: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["diagnostics"] = [asdict(diag) for diag in self.diagnostics]
        return data


@dataclass(frozen=True)
class SelectionOutcome:
    chosen_candidate_id: Optional[str]
    trials_run: int
    stop_reason: str


@dataclass(frozen=True)
class ResolvedSite:
    """Import binding a diagnostic site was traced back to."""

    module: str
    binding_kind: BindingKind
    imported_name: str
    local_name: str
    prop: Optional[str] = None
    chain: Tuple[str, ...] = ()
    arity: Union[int, str, None] = None
    via: str = "identifier"

    @property
    def chain_depth(self) -> int:
        return len(self.chain)


@dataclass
class ProjectContext:
    """Execution context for one project under search."""

    project_dir: str
    project_id: str
    url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProjectResult:
    """Everything persisted for one project in the trial log."""

    project_id: str
    project_dir: str
    url: Optional[str] = None
    skip_reason: Optional[str] = None
    baseline_diagnostics: List[Diagnostic] = field(default_factory=list)
    baseline_code_counts: Dict[str, int] = field(default_factory=dict)
    ranking: List[RankedModule] = field(default_factory=list)
    candidates: List[Candidate] = field(default_factory=list)
    features: Dict[str, Dict[str, float]] = field(default_factory=dict)
    trials: List[Trial] = field(default_factory=list)
    outcome: Optional[SelectionOutcome] = None
    duration_sec: float = 0.0

    def to_record(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "project_dir": self.project_dir,
            "url": self.url,
            "skip_reason": self.skip_reason,
            "baseline": {
                "code_counts": dict(self.baseline_code_counts),
                "diagnostics": [asdict(diag) for diag in self.baseline_diagnostics],
            },
            "ranking": [asdict(ranked) for ranked in self.ranking],
            "candidates": [
                dict(candidate.to_dict(), features=self.features.get(candidate.candidate_id, {}))
                for candidate in self.candidates
            ],
            "trials": [trial.to_dict() for trial in self.trials],
            "outcome": asdict(self.outcome) if self.outcome else None,
            "duration_sec": round(self.duration_sec, 3),
        }
