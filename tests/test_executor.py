from pathlib import Path

import pytest

from decl_search import config as config_module, executor, oracle, types


def _run(output: str, *, exit_code: int = 2, timed_out: bool = False) -> oracle.OracleRun:
    return oracle.OracleRun(exit_code=exit_code, stdout=output, stderr="", timed_out=timed_out, duration_sec=0.25)


def _cand(cid: str, text: str = "declare module 'x';\n") -> types.Candidate:
    return types.Candidate(candidate_id=cid, declaration_text=text, strategy="test")


CFG = config_module.OracleConfig()
TWO_CORE = "a.ts(1,1): error TS2307: Cannot find module 'x'.\na.ts(2,1): error TS2339: Property 'y' does not exist.\nb.ts(1,1): error TS6133: 'z' is declared but never read.\n"


def test_score_run_counts_core_and_total():
    trial = executor.score_run(_run(TWO_CORE), _cand(types.BASELINE_ID), trial_id=1, config=CFG)
    assert trial.valid_injection
    assert trial.core_diagnostic_count == 2
    assert trial.total_diagnostic_count == 3
    assert trial.delta_from_baseline == 0
    assert trial.declaration_count == 1
    assert trial.injected_declaration_hash == types.text_hash("declare module 'x';\n")


def test_parser_level_codes_invalidate_injection():
    out = "node_modules/.decl/index.d.ts(3,1): error TS1005: ';' expected.\n"
    trial = executor.score_run(_run(out), _cand("001-any-module"), trial_id=2, config=CFG)
    assert not trial.valid_injection
    assert trial.core_diagnostic_count == 0


def test_crash_and_timeout_are_invalid():
    crashed = executor.score_run(_run("Segmentation fault", exit_code=134), _cand("001-x"), trial_id=1, config=CFG)
    assert not crashed.valid_injection and crashed.total_diagnostic_count == 0
    clean = executor.score_run(_run("", exit_code=0), _cand("002-x"), trial_id=2, config=CFG)
    assert clean.valid_injection
    timed = executor.score_run(_run("", exit_code=-1, timed_out=True), _cand("003-x"), trial_id=3, config=CFG)
    assert timed.timed_out and not timed.valid_injection


def test_delta_is_relative_to_baseline_trial():
    base = executor.score_run(_run(TWO_CORE), _cand(types.BASELINE_ID), trial_id=1, config=CFG)
    better = executor.score_run(
        _run("a.ts(1,1): error TS2307: Cannot find module 'x'.\n"), _cand("001-x"), trial_id=2, config=CFG, baseline=base
    )
    assert better.delta_from_baseline == -1
    assert better.delta_errors == {"TS2339": -1, "TS6133": -1}


def test_trial_executor_writes_and_runs_sequentially(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    (tmp_path / "tsconfig.json").write_text("{}")
    seen = []

    def fake_run_oracle(command, project_dir, tsconfig, *, timeout_sec):
        decl = oracle.declaration_path(project_dir, CFG).read_text()
        seen.append((tsconfig, decl))
        return _run(TWO_CORE) if "alpha" in decl else _run("", exit_code=0)

    monkeypatch.setattr(oracle, "run_oracle", fake_run_oracle)
    ctx = types.ProjectContext(project_dir=str(tmp_path), project_id="demo")
    runner = executor.TrialExecutor(ctx, config=config_module.Config.default())
    assert runner.has_tsconfig()
    first = runner.execute(_cand(types.BASELINE_ID, "declare module 'alpha' {\n}\n"))
    second = runner.execute(_cand("001-any-module", "declare module 'beta';\n"))
    assert [t.trial_id for t in runner.trials] == [1, 2]
    assert runner.baseline is first
    assert second.delta_from_baseline == -2
    assert all(tsconfig == oracle.INJECTED_TSCONFIG for tsconfig, _ in seen)
    assert (tmp_path / oracle.INJECTED_TSCONFIG).exists()
    runner.cleanup()
    assert not (tmp_path / oracle.INJECTED_TSCONFIG).exists()
