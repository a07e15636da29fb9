"""Selection policy and early stopping over a project's trials."""

from __future__ import annotations

import enum
from typing import Iterable, List, Optional, Tuple

from . import types


class SearchState(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SCORED = "scored"
    STOPPED = "stopped"


def selection_key(trial: types.Trial) -> Tuple[bool, int, int, str]:
    """Total order: valid first, then fewer core, then fewer total, then id."""

    return (
        not trial.valid_injection,
        trial.core_diagnostic_count,
        trial.total_diagnostic_count,
        trial.candidate_id,
    )


def choose(trials: Iterable[types.Trial]) -> Optional[types.Trial]:
    """Best valid trial, or ``None`` when no trial injected validly."""

    valid = [trial for trial in trials if trial.valid_injection]
    return min(valid, key=selection_key) if valid else None


class SelectionPolicy:
    """Tracks trials as they complete and decides when the search stops.

    Stop rules, checked after every trial:

    * ``baseline-clean``: the baseline is valid with zero core diagnostics.
    * ``improved``: a valid trial has fewer core diagnostics than the baseline.
    * ``ties-exhausted``: ``stop_after_ties`` consecutive valid trials tie the baseline.
    * ``budget-exhausted``: ``budget`` trials have run.
    """

    def __init__(
        self,
        *,
        budget: int,
        stop_on_improvement: bool = True,
        stop_after_ties: Optional[int] = None,
        stop_when_clean: bool = True,
    ):
        self.budget = budget
        self.stop_on_improvement = stop_on_improvement
        self.stop_after_ties = stop_after_ties
        self.stop_when_clean = stop_when_clean
        self.state = SearchState.PENDING
        self.trials: List[types.Trial] = []
        self.baseline: Optional[types.Trial] = None
        self.best: Optional[types.Trial] = None
        self.stop_reason: Optional[str] = None
        self._ties = 0

    @property
    def stopped(self) -> bool:
        return self.state is SearchState.STOPPED

    def begin(self, candidate: types.Candidate) -> None:
        if self.stopped:
            raise RuntimeError("search already stopped")
        if not self.trials and not candidate.is_baseline:
            raise ValueError("the baseline candidate must run first")
        self.state = SearchState.RUNNING

    def _improves(self, trial: types.Trial) -> bool:
        base = self.baseline
        if not trial.valid_injection or base is None:
            return False
        return not base.valid_injection or trial.core_diagnostic_count < base.core_diagnostic_count

    def record(self, trial: types.Trial) -> Optional[str]:
        """Account for a finished trial; returns the stop reason if the search ends now."""

        self.trials.append(trial)
        if trial.valid_injection and (self.best is None or selection_key(trial) < selection_key(self.best)):
            self.best = trial
        reason: Optional[str] = None
        if self.baseline is None:
            self.baseline = trial
            if self.stop_when_clean and trial.valid_injection and trial.core_diagnostic_count == 0:
                reason = "baseline-clean"
        elif self._improves(trial):
            self._ties = 0
            if self.stop_on_improvement:
                reason = "improved"
        elif trial.valid_injection and trial.core_diagnostic_count == self.baseline.core_diagnostic_count:
            self._ties += 1
            if self.stop_after_ties and self._ties >= self.stop_after_ties:
                reason = "ties-exhausted"
        else:
            self._ties = 0
        if reason is None and len(self.trials) >= self.budget:
            reason = "budget-exhausted"
        if reason is not None:
            self.stop(reason)
        else:
            self.state = SearchState.SCORED
        return reason

    def stop(self, reason: str) -> None:
        if self.stop_reason is None:
            self.stop_reason = reason
        self.state = SearchState.STOPPED

    def outcome(self) -> types.SelectionOutcome:
        if not self.stopped:
            self.stop("candidates-exhausted")
        chosen = choose(self.trials)
        return types.SelectionOutcome(
            chosen_candidate_id=chosen.candidate_id if chosen else None,
            trials_run=len(self.trials),
            stop_reason=self.stop_reason or "candidates-exhausted",
        )
