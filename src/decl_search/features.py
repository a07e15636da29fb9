"""Pre-trial feature vectors for the pairwise reranker.

Features are computed from what is known before a candidate runs: the
localizer ranking, the baseline trial's diagnostics and the candidate's own
declaration text. Nothing here may look at a candidate's trial outcome.
"""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Optional, Sequence

from . import localize, stubs, types


def _targets(candidate: types.Candidate) -> Sequence[str]:
    if candidate.module_overrides is not None:
        return sorted(candidate.module_overrides)
    if candidate.symbol_override is not None:
        return [candidate.symbol_override.module]
    return []


def _mentions(diags: Iterable[types.Diagnostic], needles: Sequence[str]) -> Dict[str, int]:
    """Diagnostic counts by code whose message quotes any of *needles*."""

    quoted = [f"'{needle}'" for needle in needles if needle] + [f'"{needle}"' for needle in needles if needle]
    counts: Dict[str, int] = {}
    if not quoted:
        return counts
    for diag in diags:
        if any(q in diag.message for q in quoted):
            counts[diag.code] = counts.get(diag.code, 0) + 1
    return counts


def candidate_features(
    candidate: types.Candidate,
    *,
    ranking: Mapping[str, types.RankedModule],
    baseline_trial: Optional[types.Trial],
    baseline_decl_count: int,
) -> Dict[str, float]:
    feats: Dict[str, float] = {}
    decl_count = stubs.declaration_count(candidate.declaration_text)
    feats["is_baseline"] = 1.0 if candidate.is_baseline else 0.0
    feats["decl_count"] = float(decl_count)
    feats["decl_count_delta"] = float(decl_count - baseline_decl_count)

    targets = _targets(candidate)
    ranks = [ranking[m].rank for m in targets if m in ranking]
    scores = [ranking[m].score for m in targets if m in ranking]
    feats["override_count"] = float(len(candidate.module_overrides or ()))
    feats["is_module_override"] = 1.0 if candidate.module_overrides else 0.0
    feats["target_rank_min"] = float(min(ranks)) if ranks else 0.0
    feats["target_freq_sum"] = float(sum(scores))
    feats["target_freq_max"] = float(max(scores)) if scores else 0.0

    edit = candidate.symbol_override
    needles = list(targets)
    if edit is not None:
        feats["is_symbol_override"] = 1.0
        feats[f"symbol_kind::{edit.kind}"] = 1.0
        if edit.op:
            feats[f"repair_op::{edit.op}"] = 1.0
        if edit.code:
            feats[f"repair_code::{edit.code}"] = 1.0
        if edit.chain_depth is not None:
            feats["repair_chain_depth"] = float(edit.chain_depth)
        if edit.members:
            feats["symbol_member_count"] = float(len(edit.members))
        needles += [name for name in (edit.name, edit.prop) if name and name != "default"]

    if baseline_trial is not None:
        feats["base_core"] = float(baseline_trial.core_diagnostic_count)
        feats["base_total"] = float(baseline_trial.total_diagnostic_count)
        for code, count in baseline_trial.code_counts.items():
            feats[f"base_code::{code}"] = float(count)
        mentions = _mentions(baseline_trial.diagnostics, needles)
        feats["diag_mentions"] = float(sum(mentions.values()))
        for code, count in mentions.items():
            feats[f"diag_mentions::{code}"] = float(count)
    return feats


def features_for(
    candidates: Iterable[types.Candidate],
    *,
    ranking: Iterable[types.RankedModule],
    baseline_trial: Optional[types.Trial],
    baseline_text: str,
) -> Dict[str, Dict[str, float]]:
    lookup = localize.rank_lookup(ranking)
    base_count = stubs.declaration_count(baseline_text)
    return {
        candidate.candidate_id: candidate_features(
            candidate,
            ranking=lookup,
            baseline_trial=baseline_trial,
            baseline_decl_count=base_count,
        )
        for candidate in candidates
    }
