"""Controller orchestrating the per-project search and the project worker pool."""

from __future__ import annotations

import hashlib
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from . import (
    adapter,
    config as config_module,
    diagnostics,
    executor as executor_module,
    features as features_module,
    generate,
    imports,
    localize,
    logging,
    oracle,
    reranker,
    resolver,
    selection,
    stubs,
    types,
)

TRIAL_LOG = "trials"


def project_id_for(project_dir: str, url: Optional[str] = None) -> str:
    """Stable, filesystem-safe id: readable slug plus a short hash of the source."""

    source = url or str(Path(project_dir).resolve())
    tail = source.rstrip("/").split("/")[-1] or "project"
    slug = re.sub(r"[^A-Za-z0-9._-]+", "-", tail).strip("-")[:48] or "project"
    return f"{slug}-{hashlib.sha1(source.encode('utf-8')).hexdigest()[:8]}"


def make_context(project_dir: str, url: Optional[str] = None) -> types.ProjectContext:
    return types.ProjectContext(project_dir=project_dir, project_id=project_id_for(project_dir, url), url=url)


class _Deadline:
    def __init__(self, seconds: Optional[float]):
        self.at = time.monotonic() + seconds if seconds is not None else None

    def remaining(self) -> Optional[float]:
        return None if self.at is None else self.at - time.monotonic()

    def expired(self) -> bool:
        left = self.remaining()
        return left is not None and left <= 0

    def clamp(self, timeout_sec: float) -> float:
        left = self.remaining()
        return timeout_sec if left is None else max(0.001, min(timeout_sec, left))


def _skip(result: types.ProjectResult, reason: str, logger: logging.RunLogger, **data) -> types.ProjectResult:
    result.skip_reason = reason
    logger.log_event("project.skip", project=result.project_id, skip_reason=reason, **data)
    return result


def _baseline_text(
    ctx: types.ProjectContext,
    infos: Dict[str, types.ModuleStubInfo],
    cfg: config_module.Config,
) -> str:
    if cfg.baseline.source == "adapter":
        payload = adapter.request_payload(ctx.project_dir, infos)
        return adapter.run_adapter(
            cfg.baseline.adapter_command or (),
            payload,
            timeout_sec=cfg.baseline.adapter_timeout_sec,
            cwd=ctx.project_dir,
        )
    return stubs.build_baseline(infos, infos.keys())


def _resolve_sites(
    ctx: types.ProjectContext,
    trial: types.Trial,
    cfg: config_module.Config,
    logger: logging.RunLogger,
) -> List[Tuple[types.Diagnostic, Optional[types.ResolvedSite]]]:
    core = [
        diag
        for diag in diagnostics.core_diagnostics(trial.diagnostics, cfg.oracle.core_codes)
        if resolver.category(diag.code)
    ]
    if not core:
        return []
    front = resolver.SymbolResolver(
        ctx.project_dir,
        backend=cfg.resolver.backend,
        node=cfg.resolver.node,
        timeout_sec=cfg.resolver.timeout_sec,
    )
    sites = front.resolve_many(core)
    if front.compiler.error and cfg.resolver.backend in ("auto", "compiler"):
        logger.log_event(
            "resolver.unavailable",
            project=ctx.project_id,
            error=front.compiler.error,
            fallback=front.used_backend,
        )
    return list(zip(core, sites))


def search_project(
    ctx: types.ProjectContext,
    *,
    config: config_module.Config,
    logger: logging.RunLogger,
    model: Optional[reranker.RerankerModel] = None,
) -> types.ProjectResult:
    """Run the full candidate search for one project and append it to the trial log."""

    started = time.monotonic()
    result = types.ProjectResult(project_id=ctx.project_id, project_dir=ctx.project_dir, url=ctx.url)
    logger.log_event("project.start", project=ctx.project_id, dir=ctx.project_dir, url=ctx.url)
    runner = executor_module.TrialExecutor(ctx, config=config)
    try:
        _search(ctx, result, runner, config=config, logger=logger, model=model, deadline=_Deadline(config.run.project_timeout_sec))
    except oracle.OracleUnavailable as exc:
        _skip(result, "oracle-unavailable", logger, detail=str(exc))
        raise
    finally:
        runner.cleanup()
        result.duration_sec = time.monotonic() - started
        logger.append_record(TRIAL_LOG, result.to_record())
    outcome = result.outcome
    logger.log_event(
        "project.finish",
        project=ctx.project_id,
        skip_reason=result.skip_reason,
        chosen=outcome.chosen_candidate_id if outcome else None,
        trials=len(result.trials),
        duration_sec=round(result.duration_sec, 3),
    )
    return result


def _search(
    ctx: types.ProjectContext,
    result: types.ProjectResult,
    runner: executor_module.TrialExecutor,
    *,
    config: config_module.Config,
    logger: logging.RunLogger,
    model: Optional[reranker.RerankerModel],
    deadline: _Deadline,
) -> None:
    cfg = config
    if not runner.has_tsconfig():
        _skip(result, "no-tsconfig", logger)
        return

    original = runner.check_original(timeout_sec=deadline.clamp(cfg.oracle.timeout_sec))
    if original.timed_out:
        _skip(result, "baseline-timeout", logger)
        return
    diags = diagnostics.parse_diagnostics(original.output)
    result.baseline_diagnostics = diags
    result.baseline_code_counts = diagnostics.count_codes(diags)
    core_diags = diagnostics.core_diagnostics(diags, cfg.oracle.core_codes)
    logger.log_event(
        "oracle.baseline",
        project=ctx.project_id,
        exit_code=original.exit_code,
        total=len(diags),
        core=len(core_diags),
    )
    if not core_diags:
        _skip(result, "no-core-diagnostics", logger)
        return

    index = imports.ImportIndex(max_members_per_import=cfg.extract.max_members_per_import)
    ranking, extracted = localize.localize(
        ctx.project_dir,
        core_diags,
        index,
        mode=cfg.localize.mode,
        top_m=cfg.localize.top_m,
        only_external=cfg.extract.only_external,
    )
    result.ranking = ranking
    logger.log_event(
        "localize.done",
        project=ctx.project_id,
        files=len(extracted),
        modules=[ranked.module for ranked in ranking[:10]],
    )
    builder = imports.StubInfoBuilder(only_external=cfg.extract.only_external)
    kept = [ranked.module for ranked in ranking]
    for _file, found in sorted(extracted.items()):
        builder.add_file(found, modules=kept)
    infos = builder.build()
    if not infos:
        _skip(result, "no-stub-modules-found", logger)
        return

    try:
        text = _baseline_text(ctx, infos, cfg)
    except adapter.AdapterError as exc:
        _skip(result, exc.reason, logger, detail=exc.detail)
        return
    baseline = generate.baseline_candidate(text)
    logger.log_event(
        "stubs.built",
        project=ctx.project_id,
        source=cfg.baseline.source,
        modules=len(infos),
        declarations=stubs.declaration_count(text),
    )
    logger.log_json(
        f"{ctx.project_id}.ranking",
        [{"module": ranked.module, "score": ranked.score, "rank": ranked.rank} for ranked in ranking],
    )
    logger.log_text(f"{ctx.project_id}.baseline", text)

    policy = selection.SelectionPolicy(
        budget=cfg.search.trial_max,
        stop_on_improvement=cfg.search.stop_on_improvement,
        stop_after_ties=cfg.search.stop_after_ties,
        stop_when_clean=cfg.search.stop_when_clean,
    )
    result.candidates = [baseline]
    if deadline.expired():
        _skip(result, "project-timeout", logger)
        return
    top1 = _run_trial(ctx, runner, policy, baseline, cfg=cfg, logger=logger, deadline=deadline)
    result.trials.append(top1)

    if not policy.stopped:
        sites = _resolve_sites(ctx, top1, cfg, logger) if "repair" in cfg.search.strategies else []
        generated = generate.generate(baseline, ranking, infos, cfg.search, sites=sites)
        result.candidates.extend(generated)
        result.features = features_module.features_for(
            result.candidates,
            ranking=ranking,
            baseline_trial=top1,
            baseline_text=text,
        )
        logger.log_event(
            "candidates.generated",
            project=ctx.project_id,
            count=len(generated),
            strategies=sorted({cand.strategy for cand in generated}),
        )
        queue = generated
        if model is not None and generated:
            ordered = reranker.order_candidates(model, generated, result.features)
            queue = [cand for cand, _score in ordered]
            logger.log_event(
                "reranker.order",
                project=ctx.project_id,
                order=[[cand.candidate_id, round(score, 4)] for cand, score in ordered],
            )
        for candidate in queue:
            if policy.stopped:
                break
            if deadline.expired():
                policy.stop("project-timeout")
                break
            result.trials.append(
                _run_trial(ctx, runner, policy, candidate, cfg=cfg, logger=logger, deadline=deadline)
            )
    else:
        result.features = features_module.features_for(
            result.candidates, ranking=ranking, baseline_trial=top1, baseline_text=text
        )

    result.outcome = policy.outcome()
    logger.log_event(
        "search.stop",
        project=ctx.project_id,
        stop_reason=result.outcome.stop_reason,
        chosen=result.outcome.chosen_candidate_id,
        trials=result.outcome.trials_run,
    )


def _run_trial(
    ctx: types.ProjectContext,
    runner: executor_module.TrialExecutor,
    policy: selection.SelectionPolicy,
    candidate: types.Candidate,
    *,
    cfg: config_module.Config,
    logger: logging.RunLogger,
    deadline: _Deadline,
) -> types.Trial:
    policy.begin(candidate)
    trial = runner.execute(candidate, timeout_sec=deadline.clamp(cfg.oracle.timeout_sec))
    reason = policy.record(trial)
    logger.log_event(
        "trial.result",
        project=ctx.project_id,
        candidate_id=candidate.candidate_id,
        core=trial.core_diagnostic_count,
        total=trial.total_diagnostic_count,
        delta=trial.delta_from_baseline,
        valid=trial.valid_injection,
        timed_out=trial.timed_out,
        stop_reason=reason,
    )
    return trial


def run_projects(
    contexts: Iterable[types.ProjectContext],
    *,
    config: config_module.Config | None = None,
    logger: logging.RunLogger | None = None,
    model: Optional[reranker.RerankerModel] = None,
) -> List[types.ProjectResult]:
    """Search many projects on a worker pool; results come back in input order.

    Trials inside one project stay sequential. An unavailable oracle aborts
    the whole run.
    """

    cfg = config or config_module.Config.default()
    log = logger or logging.RunLogger(cfg.logging.dir, stream=cfg.logging.stream)
    if model is None and cfg.reranker.model_path:
        model = reranker.RerankerModel.load(cfg.reranker.model_path)
    items = list(contexts)
    log.log_event("run.start", projects=len(items), concurrency=cfg.run.concurrency, reranker=model is not None)
    results: Dict[int, types.ProjectResult] = {}
    workers = max(1, cfg.run.concurrency)
    abort = threading.Event()

    def work(ctx: types.ProjectContext) -> Optional[types.ProjectResult]:
        if abort.is_set():
            return None
        try:
            return search_project(ctx, config=cfg, logger=log, model=model)
        except oracle.OracleUnavailable:
            abort.set()
            raise

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {pool.submit(work, ctx): idx for idx, ctx in enumerate(items)}
        for future in as_completed(futures):
            try:
                res = future.result()
            except oracle.OracleUnavailable:
                pool.shutdown(wait=True, cancel_futures=True)
                raise
            if res is not None:
                results[futures[future]] = res
    ordered = [results[idx] for idx in range(len(items))]
    log.log_event(
        "run.finish",
        projects=len(ordered),
        skipped=sum(1 for res in ordered if res.skip_reason),
        improved=sum(1 for res in ordered if res.outcome and res.outcome.stop_reason == "improved"),
    )
    return ordered
