"""Trial execution: materialise one candidate, run the oracle, score the outcome."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from . import config as config_module, diagnostics, oracle, stubs, types


class TrialExecutor:
    """Runs candidates for one project, sequentially, against a shared injected file.

    The first trial executed is the reference every later delta is computed
    against; callers run the baseline candidate first.
    """

    def __init__(self, ctx: types.ProjectContext, *, config: config_module.Config):
        self.ctx = ctx
        self.config = config
        self.baseline: Optional[types.Trial] = None
        self.trials: List[types.Trial] = []
        self.injected: Optional[oracle.InjectedConfig] = None

    @property
    def project_dir(self) -> Path:
        return Path(self.ctx.project_dir)

    def has_tsconfig(self) -> bool:
        return (self.project_dir / self.config.oracle.tsconfig).is_file()

    def check_original(self, *, timeout_sec: Optional[float] = None) -> oracle.OracleRun:
        """Run the checker on the untouched project configuration."""

        cfg = self.config.oracle
        return oracle.run_oracle(
            cfg.command,
            self.project_dir,
            cfg.tsconfig,
            timeout_sec=timeout_sec if timeout_sec is not None else cfg.timeout_sec,
        )

    def prepare(self) -> oracle.InjectedConfig:
        if self.injected is None:
            self.injected = oracle.write_injected_tsconfig(self.project_dir, self.config.oracle)
        return self.injected

    def execute(self, candidate: types.Candidate, *, timeout_sec: Optional[float] = None) -> types.Trial:
        """Write *candidate*'s declarations, check the project and record a trial."""

        cfg = self.config.oracle
        self.prepare()
        oracle.write_declarations(self.project_dir, cfg, candidate.declaration_text)
        run = oracle.run_oracle(
            cfg.command,
            self.project_dir,
            oracle.INJECTED_TSCONFIG,
            timeout_sec=timeout_sec if timeout_sec is not None else cfg.timeout_sec,
        )
        trial = score_run(
            run,
            candidate,
            trial_id=len(self.trials) + 1,
            config=cfg,
            baseline=self.baseline,
        )
        if self.baseline is None:
            self.baseline = trial
        self.trials.append(trial)
        return trial

    def cleanup(self) -> None:
        oracle.cleanup(self.project_dir, self.config.oracle)
        self.injected = None


def score_run(
    run: oracle.OracleRun,
    candidate: types.Candidate,
    *,
    trial_id: int,
    config: config_module.OracleConfig,
    baseline: Optional[types.Trial] = None,
) -> types.Trial:
    """Turn one oracle run into a :class:`types.Trial`.

    A run is an invalid injection when it timed out, when the checker
    reported parser-level codes, or when it exited non-zero without a
    single parseable diagnostic (a crash is never a clean result).
    """

    diags = diagnostics.parse_diagnostics(run.output)
    counts = diagnostics.count_codes(diags)
    core = diagnostics.core_count(counts, config.core_codes)
    crashed = run.exit_code != 0 and not diags
    valid = not run.timed_out and not crashed and not diagnostics.has_parser_codes(diags, config.parser_codes)
    if baseline is None:
        delta = 0
        delta_errors: dict = {}
    else:
        delta = core - baseline.core_diagnostic_count
        delta_errors = diagnostics.delta_counts(counts, baseline.code_counts)
    return types.Trial(
        trial_id=trial_id,
        candidate_id=candidate.candidate_id,
        injected_declaration_hash=candidate.text_hash,
        declaration_count=stubs.declaration_count(candidate.declaration_text),
        oracle_exit_code=run.exit_code,
        timed_out=run.timed_out,
        diagnostics=tuple(diags),
        code_counts=counts,
        core_diagnostic_count=core,
        total_diagnostic_count=len(diags),
        delta_from_baseline=delta,
        delta_errors=delta_errors,
        valid_injection=valid,
        duration_sec=round(run.duration_sec, 3),
    )
