"""Pairwise training export from persisted trial logs."""

from __future__ import annotations

import json
from dataclasses import fields
from itertools import combinations
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from . import types

# Trial fields are outcomes; none of them may leak into a feature vector.
OUTCOME_FIELDS = frozenset(f.name for f in fields(types.Trial))


def read_jsonl(path: str | Path) -> Iterator[Dict[str, Any]]:
    """Yield JSON objects from *path*, skipping blank and corrupt lines."""

    with Path(path).open(encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(record, dict):
                yield record


def write_jsonl(path: str | Path, rows: Iterable[Mapping[str, Any]]) -> int:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with target.open("w", encoding="utf-8") as handle:
        for row in rows:
            handle.write(json.dumps(row, sort_keys=True) + "\n")
            count += 1
    return count


def _outcome_key(trial: Mapping[str, Any]) -> tuple[int, int]:
    delta_errors = trial.get("delta_errors") or {}
    return int(trial.get("core_diagnostic_count", 0)), int(sum(delta_errors.values()))


def better(a: Mapping[str, Any], b: Mapping[str, Any]) -> Optional[bool]:
    """True if *a* beat *b*, False if *b* beat *a*, None when they are not comparable."""

    ka, kb = _outcome_key(a), _outcome_key(b)
    if ka == kb:
        return None
    return ka < kb


def clean_features(features: Mapping[str, Any]) -> Dict[str, float]:
    return {
        key: float(value)
        for key, value in features.items()
        if key not in OUTCOME_FIELDS and isinstance(value, (int, float)) and not isinstance(value, bool)
    }


def project_pairs(
    record: Mapping[str, Any],
    *,
    max_pairs: Optional[int] = None,
    allow_invalid: bool = False,
) -> List[Dict[str, Any]]:
    """Comparable trial pairs of one project record, labelled by outcome."""

    if record.get("skip_reason"):
        return []
    feats = {
        cand.get("candidate_id"): clean_features(cand.get("features") or {})
        for cand in record.get("candidates") or []
        if isinstance(cand, dict)
    }
    trials = [
        trial
        for trial in record.get("trials") or []
        if isinstance(trial, dict)
        and trial.get("candidate_id") in feats
        and (allow_invalid or trial.get("valid_injection"))
    ]
    trials.sort(key=lambda trial: str(trial.get("candidate_id")))
    rows: List[Dict[str, Any]] = []
    for a, b in combinations(trials, 2):
        if max_pairs is not None and len(rows) >= max_pairs:
            break
        verdict = better(a, b)
        if verdict is None:
            continue
        rows.append(
            {
                "url": record.get("url"),
                "project_id": record.get("project_id"),
                "a": {"candidate_id": a["candidate_id"], "features": feats[a["candidate_id"]]},
                "b": {"candidate_id": b["candidate_id"], "features": feats[b["candidate_id"]]},
                "label": 1 if verdict else 0,
            }
        )
    return rows


def export_pairs(
    records: Iterable[Mapping[str, Any]],
    *,
    max_pairs_per_project: Optional[int] = None,
    allow_invalid: bool = False,
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for record in records:
        rows.extend(project_pairs(record, max_pairs=max_pairs_per_project, allow_invalid=allow_invalid))
    return rows
