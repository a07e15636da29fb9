"""Candidate generation: module-level overrides, symbol widening and repair."""

from __future__ import annotations

from itertools import combinations
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from . import edits, stubs, types
from .config import SearchConfig

_NAMESPACE_MERGEABLE = frozenset({"function", "class", "namespace", "enum"})


def baseline_candidate(text: str) -> types.Candidate:
    return types.Candidate(candidate_id=types.BASELINE_ID, declaration_text=text, strategy="top1")


class CandidateSet:
    """Ordered, deduplicated and budgeted collection of non-baseline candidates.

    A candidate is rejected when its descriptor key or its text hash has been
    seen before; the baseline's hash is seeded so edits that do not change the
    text never turn into trials.
    """

    def __init__(self, baseline: types.Candidate, *, budget: int):
        self.baseline = baseline
        self.budget = max(0, budget)
        self.candidates: List[types.Candidate] = []
        self._keys: Set[str] = set()
        self._hashes: Set[str] = {baseline.text_hash}

    @property
    def full(self) -> bool:
        return len(self.candidates) >= self.budget

    def offer(
        self,
        strategy: str,
        text: str,
        *,
        key: str,
        module_overrides: Optional[Iterable[str]] = None,
        symbol_override: Optional[types.SymbolOverride] = None,
    ) -> Optional[types.Candidate]:
        if self.full or key in self._keys:
            return None
        digest = types.text_hash(text)
        if digest in self._hashes:
            return None
        self._keys.add(key)
        self._hashes.add(digest)
        candidate = types.Candidate(
            candidate_id=f"{len(self.candidates) + 1:03d}-{strategy}",
            declaration_text=text,
            strategy=strategy,
            module_overrides=frozenset(module_overrides) if module_overrides is not None else None,
            symbol_override=symbol_override,
        )
        self.candidates.append(candidate)
        return candidate

    def offer_symbol(self, strategy: str, edit: types.SymbolOverride) -> Optional[types.Candidate]:
        text = edits.apply_symbol_edit(self.baseline.declaration_text, edit)
        return self.offer(strategy, text, key=edit.key(), symbol_override=edit)


def sweep(cset: CandidateSet, ranking: Sequence[types.RankedModule], k: int = 1) -> List[types.Candidate]:
    """Override every ranked module (k=1) or every pair of them (k=2)."""

    if k not in (1, 2):
        raise ValueError("sweep k must be 1 or 2")
    strategy = "any-module" if k == 1 else "any-pair"
    added: List[types.Candidate] = []
    for group in combinations([ranked.module for ranked in ranking], k):
        text = edits.override_modules(cset.baseline.declaration_text, group)
        candidate = cset.offer(strategy, text, key=f"{strategy}::{'|'.join(sorted(group))}", module_overrides=group)
        if candidate:
            added.append(candidate)
    return added


def topk(cset: CandidateSet, ranking: Sequence[types.RankedModule], k: int) -> Optional[types.Candidate]:
    """One candidate overriding the first *k* ranked modules at once."""

    modules = [ranked.module for ranked in ranking[: max(0, k)]]
    if len(modules) < 2:
        return None
    text = edits.override_modules(cset.baseline.declaration_text, modules)
    return cset.offer("any-topk", text, key=f"any-topk::{'|'.join(sorted(modules))}", module_overrides=modules)


def _symbol_edits(
    text: str,
    module: str,
    info: types.ModuleStubInfo,
    mode: str,
    use_call_arity: bool,
) -> List[types.SymbolOverride]:
    declared = edits.exported_names(text, module)
    out: List[types.SymbolOverride] = []
    if mode == "interface-indexer":
        for name in sorted(n for n, kinds in declared.items() if "interface" in kinds):
            out.append(types.SymbolOverride(kind=mode, module=module, name=name))
    elif mode == "namespace-members":
        for name, members in sorted(info.member_accesses_by_export_name.items()):
            if name == "default" or not members:
                continue
            kinds = declared.get(name, set())
            if kinds and not kinds <= _NAMESPACE_MERGEABLE:
                continue
            out.append(types.SymbolOverride(kind=mode, module=module, name=name, members=tuple(sorted(members))))
    elif mode == "function-any-overload":
        for name in sorted(n for n, kinds in declared.items() if "function" in kinds):
            arities = sorted(info.call_arities_by_export_name.get(name, ())) if use_call_arity else []
            if not arities:
                out.append(types.SymbolOverride(kind=mode, module=module, name=name))
            for arity in arities:
                out.append(types.SymbolOverride(kind=mode, module=module, name=name, arity=arity))
    elif mode == "missing-exports":
        wanted = set(info.named_value_names)
        if info.has_namespace_import:
            wanted.update(n for n in info.member_accesses_by_export_name if n != "default")
        values = sorted(
            n for n in wanted if not edits.exports_value(declared.get(n, ())) and stubs.declarable(n)
        )
        type_names = sorted(
            f"type:{n}"
            for n in info.named_type_names
            if not edits.exports_type(declared.get(n, ())) and stubs.declarable(n)
        )
        if values or type_names:
            out.append(types.SymbolOverride(kind=mode, module=module, members=tuple(values + type_names)))
    elif mode == "export-to-any":
        block = stubs.find_block(text, module)
        permissive = _permissive_consts(text, module, block)
        for name, kinds in sorted(declared.items()):
            if name == "default":
                if edits.export_to_any(text, module, name) != text:
                    out.append(types.SymbolOverride(kind=mode, module=module, name=name))
            elif kinds & edits.VALUE_KINDS and name not in permissive:
                out.append(types.SymbolOverride(kind=mode, module=module, name=name))
    elif mode == "type-to-any":
        for name, kinds in sorted(declared.items()):
            if kinds & edits.TYPE_KINDS:
                out.append(types.SymbolOverride(kind=mode, module=module, name=name))
    else:
        raise ValueError(f"Unknown symbol mode: {mode}")
    return out


def _permissive_consts(text: str, module: str, block: Optional[stubs.ModuleBlock]) -> Set[str]:
    """Exported names already declared as a single ``: any`` constant."""

    if block is None or block.shorthand:
        return set()
    by_name: Dict[str, List[edits.Statement]] = {}
    for stmt in edits.parse_statements(text, block):
        if stmt.exported and stmt.name:
            by_name.setdefault(stmt.name, []).append(stmt)
    out: Set[str] = set()
    for name, stmts in by_name.items():
        if len(stmts) == 1 and stmts[0].kind in ("const", "let", "var"):
            if text[stmts[0].start : stmts[0].end].rstrip(" ;\n").endswith(": any"):
                out.add(name)
    return out


def symbol_widen(
    cset: CandidateSet,
    ranking: Sequence[types.RankedModule],
    infos: Mapping[str, types.ModuleStubInfo],
    mode: str,
    *,
    limit: int,
    use_call_arity: bool = True,
) -> List[types.Candidate]:
    """Apply one widening *mode* per (module, symbol), modules in rank order."""

    added: List[types.Candidate] = []
    text = cset.baseline.declaration_text
    for ranked in ranking:
        info = infos.get(ranked.module, types.ModuleStubInfo())
        for edit in _symbol_edits(text, ranked.module, info, mode, use_call_arity):
            if len(added) >= limit or cset.full:
                return added
            candidate = cset.offer_symbol(mode, edit)
            if candidate:
                added.append(candidate)
    return added


def repair_ops(
    diag: types.Diagnostic,
    site: types.ResolvedSite,
    *,
    use_call_arity: bool = True,
) -> List[types.SymbolOverride]:
    """Targeted edits for one resolved site, most specific first."""

    base = dict(
        kind="repair-from-top1",
        module=site.module,
        code=diag.code,
        prop=site.prop,
        chain_depth=site.chain_depth,
        via=site.via,
    )
    arity = site.arity if use_call_arity and isinstance(site.arity, int) else None
    namespace_like = site.binding_kind == "namespace" or (
        site.binding_kind == "require" and site.imported_name == "*"
    )
    if namespace_like:
        root = site.chain[0] if site.chain else None
    elif site.binding_kind == "default":
        root = "default"
    else:
        root = site.imported_name or None

    ops: List[types.SymbolOverride] = []
    if diag.code in ("TS2339", "TS7053") and site.via == "identifier":
        if namespace_like and not site.chain and site.prop:
            ops.append(types.SymbolOverride(op="add-export", name=site.prop, **base))
        if root:
            ops.append(types.SymbolOverride(op="export-to-any", name=root, **base))
    elif diag.code in ("TS2339", "TS7053"):
        if root:
            ops.append(types.SymbolOverride(op="export-to-any", name=root, **base))
    else:
        callee = root if not namespace_like or len(site.chain) == 1 else None
        if callee and (not site.chain or namespace_like) and site.via == "identifier":
            ops.append(types.SymbolOverride(op="any-overload", name=callee, arity=arity, **base))
        if root:
            ops.append(types.SymbolOverride(op="export-to-any", name=root, **base))
    if root and root != "default":
        ops.append(types.SymbolOverride(op="add-export", name=root, **{**base, "prop": None}))
    return ops


def repair(
    cset: CandidateSet,
    sites: Sequence[Tuple[types.Diagnostic, Optional[types.ResolvedSite]]],
    *,
    limit: int,
    use_call_arity: bool = True,
    modules: Optional[Iterable[str]] = None,
) -> List[types.Candidate]:
    """Repair-from-top1: one candidate per resolved site, first applicable edit wins."""

    allowed = set(modules) if modules is not None else None
    added: List[types.Candidate] = []
    ordered = sorted(sites, key=lambda pair: (pair[0].file, pair[0].line, pair[0].col, pair[0].code))
    for diag, site in ordered:
        if len(added) >= limit or cset.full:
            break
        if site is None or (allowed is not None and site.module not in allowed):
            continue
        for edit in repair_ops(diag, site, use_call_arity=use_call_arity):
            candidate = cset.offer_symbol("repair", edit)
            if candidate:
                added.append(candidate)
                break
    return added


def generate(
    baseline: types.Candidate,
    ranking: Sequence[types.RankedModule],
    infos: Mapping[str, types.ModuleStubInfo],
    cfg: SearchConfig,
    *,
    sites: Sequence[Tuple[types.Diagnostic, Optional[types.ResolvedSite]]] = (),
) -> List[types.Candidate]:
    """All non-baseline candidates for one project, in strategy order, within budget."""

    cset = CandidateSet(baseline, budget=cfg.trial_max - 1)
    for strategy in cfg.strategies:
        if cset.full:
            break
        if strategy == "repair":
            repair(
                cset,
                sites,
                limit=cfg.repair_max,
                use_call_arity=cfg.use_call_arity,
                modules=[ranked.module for ranked in ranking],
            )
        elif strategy == "sweep":
            sweep(cset, ranking, cfg.sweep_k)
        elif strategy == "topk":
            topk(cset, ranking, cfg.topk)
        elif strategy == "symbol" and cfg.symbol_mode:
            symbol_widen(
                cset,
                ranking,
                infos,
                cfg.symbol_mode,
                limit=cfg.symbol_widen_max,
                use_call_arity=cfg.use_call_arity,
            )
    return cset.candidates
