"""Pairwise logistic-regression reranker: scoring, SGD training and JSON I/O."""

from __future__ import annotations

import json
import math
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import types

MODEL_VERSION = "pairwise_logreg_v1"


def sigmoid(z: float) -> float:
    """Numerically stable logistic function."""

    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    ez = math.exp(z)
    return ez / (1.0 + ez)


def _num(value: Any) -> float:
    return float(value) if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value) else 0.0


@dataclass(frozen=True)
class RerankerModel:
    """Immutable trained model; safe to share across worker threads."""

    feature_keys: Tuple[str, ...]
    bias: float
    weights: Dict[str, float]
    hyperparams: Dict[str, Any] = field(default_factory=dict)
    version: str = MODEL_VERSION

    def logit(self, feats_a: Mapping[str, float], feats_b: Mapping[str, float]) -> float:
        z = self.bias
        for key in self.feature_keys:
            weight = self.weights.get(key, 0.0)
            if weight:
                z += weight * (_num(feats_a.get(key)) - _num(feats_b.get(key)))
        return z

    def score(self, feats_a: Mapping[str, float], feats_b: Mapping[str, float]) -> float:
        """P(A preferred over B) = sigmoid(bias + w . (A - B))."""

        return sigmoid(self.logit(feats_a, feats_b))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "featureKeys": list(self.feature_keys),
            "weights": {"bias": self.bias, "w": {key: self.weights.get(key, 0.0) for key in self.feature_keys}},
            "hyperparams": dict(self.hyperparams),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RerankerModel":
        keys = data.get("featureKeys", data.get("feature_keys"))
        weights = data.get("weights")
        if not isinstance(keys, list) or not isinstance(weights, dict):
            raise ValueError("Reranker model must contain featureKeys and weights.")
        raw_w = weights.get("w") or {}
        return cls(
            feature_keys=tuple(str(key) for key in keys),
            bias=float(weights.get("bias", 0.0)),
            weights={str(key): float(raw_w.get(key, 0.0)) for key in keys},
            hyperparams=dict(data.get("hyperparams") or {}),
            version=str(data.get("version") or MODEL_VERSION),
        )

    def save(self, path: str | Path) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(self.to_dict(), indent=2) + "\n")
        return target

    @classmethod
    def load(cls, path: str | Path) -> "RerankerModel":
        return cls.from_dict(json.loads(Path(path).read_text()))


def order_candidates(
    model: RerankerModel,
    candidates: Sequence[types.Candidate],
    features: Mapping[str, Mapping[str, float]],
    *,
    baseline_id: str = types.BASELINE_ID,
) -> List[Tuple[types.Candidate, float]]:
    """Score each candidate against the baseline; highest preference first, stable on ties."""

    base = features.get(baseline_id, {})
    scored = [(cand, model.score(features.get(cand.candidate_id, {}), base)) for cand in candidates]
    order = sorted(range(len(scored)), key=lambda idx: (-scored[idx][1], idx))
    return [scored[idx] for idx in order]


# --- training -------------------------------------------------------------


def collect_feature_keys(rows: Iterable[Mapping[str, Any]]) -> List[str]:
    keys = set()
    for row in rows:
        for side in ("a", "b"):
            feats = (row.get(side) or {}).get("features") or {}
            keys.update(k for k, v in feats.items() if isinstance(v, (int, float)) and not isinstance(v, bool))
    return sorted(keys)


def _diff(row: Mapping[str, Any], keys: Sequence[str]) -> List[float]:
    fa = (row.get("a") or {}).get("features") or {}
    fb = (row.get("b") or {}).get("features") or {}
    return [_num(fa.get(key)) - _num(fb.get(key)) for key in keys]


def split_by_project(
    rows: Sequence[Mapping[str, Any]], *, test_frac: float, seed: int
) -> Tuple[List[Mapping[str, Any]], List[Mapping[str, Any]]]:
    """Project-level split: every pair of one project lands on the same side."""

    projects = sorted({str(row.get("url") or row.get("project_id") or "") for row in rows})
    random.Random(seed).shuffle(projects)
    n_test = int(round(len(projects) * test_frac)) if len(projects) > 1 else 0
    n_test = min(n_test, len(projects) - 1) if projects else 0
    test_projects = set(projects[:n_test])
    train = [row for row in rows if str(row.get("url") or row.get("project_id") or "") not in test_projects]
    test = [row for row in rows if str(row.get("url") or row.get("project_id") or "") in test_projects]
    return train, test


def accuracy(model: RerankerModel, rows: Sequence[Mapping[str, Any]]) -> Optional[float]:
    if not rows:
        return None
    hits = 0
    for row in rows:
        fa = (row.get("a") or {}).get("features") or {}
        fb = (row.get("b") or {}).get("features") or {}
        predicted = 1 if model.score(fa, fb) >= 0.5 else 0
        hits += int(predicted == int(row.get("label", 0)))
    return hits / len(rows)


@dataclass(frozen=True)
class TrainReport:
    pairs_total: int
    pairs_train: int
    pairs_test: int
    train_acc: Optional[float]
    test_acc: Optional[float]

    def lines(self) -> List[str]:
        def fmt(acc: Optional[float]) -> str:
            return "n/a" if acc is None else f"{acc:.4f}"

        return [
            f"pairs_total\t{self.pairs_total}",
            f"pairs_train\t{self.pairs_train}",
            f"pairs_test\t{self.pairs_test}",
            f"train_acc\t{fmt(self.train_acc)}",
            f"test_acc\t{fmt(self.test_acc)}",
        ]


def train(
    rows: Sequence[Mapping[str, Any]],
    *,
    epochs: int = 30,
    lr: float = 0.05,
    l2: float = 1e-4,
    seed: int = 0,
    test_frac: float = 0.2,
    fit_bias: bool = False,
) -> Tuple[RerankerModel, TrainReport]:
    """Fit weights by SGD on (A - B, label) pairs.

    The bias is held at zero unless *fit_bias* is set, which keeps
    ``score(A, B) == 1 - score(B, A)``.
    """

    keys = collect_feature_keys(rows)
    train_rows, test_rows = split_by_project(rows, test_frac=test_frac, seed=seed)
    rng = random.Random(seed)
    weights = [0.0] * len(keys)
    bias = 0.0
    samples = [(_diff(row, keys), float(int(row.get("label", 0)))) for row in train_rows]
    order = list(range(len(samples)))
    for _epoch in range(max(0, epochs)):
        rng.shuffle(order)
        for idx in order:
            x, y = samples[idx]
            z = bias + sum(w * xi for w, xi in zip(weights, x))
            g = sigmoid(z) - y
            for j, xj in enumerate(x):
                weights[j] -= lr * (g * xj + l2 * weights[j])
            if fit_bias:
                bias -= lr * (g + l2 * bias)
    model = RerankerModel(
        feature_keys=tuple(keys),
        bias=bias,
        weights=dict(zip(keys, weights)),
        hyperparams={
            "epochs": epochs,
            "lr": lr,
            "l2": l2,
            "seed": seed,
            "test_frac": test_frac,
            "fit_bias": fit_bias,
        },
    )
    report = TrainReport(
        pairs_total=len(rows),
        pairs_train=len(train_rows),
        pairs_test=len(test_rows),
        train_acc=accuracy(model, train_rows),
        test_acc=accuracy(model, test_rows),
    )
    return model, report
