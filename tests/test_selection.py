import random

import pytest

from decl_search import selection, types


def _trial(cid: str, core: int, total: int | None = None, *, valid: bool = True) -> types.Trial:
    return types.Trial(
        trial_id=0,
        candidate_id=cid,
        injected_declaration_hash="h",
        declaration_count=0,
        oracle_exit_code=2,
        timed_out=False,
        diagnostics=(),
        code_counts={},
        core_diagnostic_count=core,
        total_diagnostic_count=core if total is None else total,
        delta_from_baseline=0,
        delta_errors={},
        valid_injection=valid,
    )


def _cand(cid: str) -> types.Candidate:
    return types.Candidate(candidate_id=cid, declaration_text=cid, strategy="t")


def test_choose_orders_by_validity_core_total_then_id():
    trials = [
        _trial("000-top1", 3, 5),
        _trial("002-b", 1, 4),
        _trial("001-a", 1, 4),
        _trial("003-c", 1, 3),
        _trial("004-bad", 0, 0, valid=False),
    ]
    assert selection.choose(trials).candidate_id == "003-c"
    shuffled = list(trials)
    random.Random(7).shuffle(shuffled)
    assert selection.choose(shuffled).candidate_id == "003-c"
    assert selection.choose([_trial("000-top1", 0, valid=False)]) is None


def test_baseline_wins_exact_ties():
    assert selection.choose([_trial("001-a", 2), _trial("000-top1", 2)]).candidate_id == "000-top1"


def test_baseline_must_run_first():
    policy = selection.SelectionPolicy(budget=5)
    with pytest.raises(ValueError):
        policy.begin(_cand("001-a"))


def test_clean_baseline_stops_immediately():
    policy = selection.SelectionPolicy(budget=5)
    policy.begin(_cand("000-top1"))
    assert policy.state is selection.SearchState.RUNNING
    assert policy.record(_trial("000-top1", 0)) == "baseline-clean"
    outcome = policy.outcome()
    assert outcome == types.SelectionOutcome("000-top1", 1, "baseline-clean")


def test_stop_on_improvement():
    policy = selection.SelectionPolicy(budget=10)
    policy.begin(_cand("000-top1"))
    assert policy.record(_trial("000-top1", 3)) is None
    assert policy.state is selection.SearchState.SCORED
    policy.begin(_cand("001-a"))
    assert policy.record(_trial("001-a", 4)) is None
    policy.begin(_cand("002-b"))
    assert policy.record(_trial("002-b", 2)) == "improved"
    assert policy.stopped
    with pytest.raises(RuntimeError):
        policy.begin(_cand("003-c"))
    assert policy.outcome().chosen_candidate_id == "002-b"


def test_stop_after_consecutive_ties():
    policy = selection.SelectionPolicy(budget=10, stop_after_ties=2)
    for cid, core, expected in [
        ("000-top1", 3, None),
        ("001-a", 3, None),
        ("002-b", 5, None),
        ("003-c", 3, None),
        ("004-d", 3, "ties-exhausted"),
    ]:
        policy.begin(_cand(cid))
        assert policy.record(_trial(cid, core)) == expected
    assert policy.outcome() == types.SelectionOutcome("000-top1", 5, "ties-exhausted")


def test_budget_and_exhaustion_reasons():
    policy = selection.SelectionPolicy(budget=2, stop_on_improvement=False)
    policy.begin(_cand("000-top1"))
    policy.record(_trial("000-top1", 3))
    policy.begin(_cand("001-a"))
    assert policy.record(_trial("001-a", 1)) == "budget-exhausted"
    assert policy.outcome().chosen_candidate_id == "001-a"

    open_policy = selection.SelectionPolicy(budget=5)
    open_policy.begin(_cand("000-top1"))
    open_policy.record(_trial("000-top1", 3))
    assert open_policy.outcome().stop_reason == "candidates-exhausted"


def test_invalid_baseline_is_improved_by_any_valid_trial():
    policy = selection.SelectionPolicy(budget=5)
    policy.begin(_cand("000-top1"))
    assert policy.record(_trial("000-top1", 0, valid=False)) is None
    policy.begin(_cand("001-a"))
    assert policy.record(_trial("001-a", 4)) == "improved"
