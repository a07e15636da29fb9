"""CLI entrypoint for decl-search."""

from __future__ import annotations

import argparse
import shlex
import sys
from dataclasses import replace
from pathlib import Path
from typing import Iterable, List

from . import config as config_module, controller, logging, oracle, pairs, reranker, types


def _parse_args(args: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="decl-search")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML configuration file (defaults to ./decl-search.yaml if omitted)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Search declaration candidates for one or more projects")
    search.add_argument("--project", action="append", default=[], help="Project directory (repeatable)")
    search.add_argument(
        "--projects-file",
        default=None,
        help="File with one project per line: '<dir>' or '<dir><TAB><url>'",
    )
    search.add_argument("--run-id", default=None)
    search.add_argument("--log-dir", default=None)
    search.add_argument("--stream", action="store_true", help="Echo events to stdout")
    search.add_argument("--concurrency", type=int, default=None)
    search.add_argument("--trial-max", type=int, default=None)
    search.add_argument("--strategies", default=None, help="Comma-separated strategy order")
    search.add_argument("--sweep-k", type=int, choices=(1, 2), default=None)
    search.add_argument("--topk", type=int, default=None)
    search.add_argument("--symbol-mode", choices=config_module.SYMBOL_MODES, default=None)
    search.add_argument("--localize-mode", choices=("per-file", "per-error"), default=None)
    search.add_argument("--top-m", type=int, default=None)
    search.add_argument("--stop-after-ties", type=int, default=None)
    search.add_argument("--no-stop-on-improvement", action="store_true")
    search.add_argument("--reranker-model", default=None)
    search.add_argument("--oracle-cmd", default=None, help="Checker command, e.g. 'npx tsc'")
    search.add_argument("--timeout-sec", type=float, default=None)

    export = sub.add_parser("export-pairs", help="Build pairwise training rows from trial logs")
    export.add_argument("--trial-log", action="append", required=True, help="trials.jsonl path (repeatable)")
    export.add_argument("--out-file", required=True)
    export.add_argument("--max-pairs-per-project", type=int, default=None)
    export.add_argument("--allow-invalid", action="store_true")

    train = sub.add_parser("train", help="Train the pairwise reranker")
    train.add_argument("--pairwise", required=True, help="Pairwise JSONL produced by export-pairs")
    train.add_argument("--out-model", required=True)
    train.add_argument("--epochs", type=int, default=None)
    train.add_argument("--lr", type=float, default=None)
    train.add_argument("--l2", type=float, default=None)
    train.add_argument("--seed", type=int, default=None)
    train.add_argument("--test-frac", type=float, default=None)
    train.add_argument("--fit-bias", action="store_true")
    return parser.parse_args(list(args) if args is not None else None)


def _overrides(ns: argparse.Namespace, cfg: config_module.Config) -> config_module.Config:
    search = cfg.search
    if ns.trial_max is not None:
        search = replace(search, trial_max=ns.trial_max)
    if ns.strategies:
        search = replace(search, strategies=tuple(s.strip() for s in ns.strategies.split(",") if s.strip()))
    if ns.sweep_k is not None:
        search = replace(search, sweep_k=ns.sweep_k)
    if ns.topk is not None:
        search = replace(search, topk=ns.topk)
    if ns.symbol_mode is not None:
        search = replace(search, symbol_mode=ns.symbol_mode)
    if ns.stop_after_ties is not None:
        search = replace(search, stop_after_ties=ns.stop_after_ties)
    if ns.no_stop_on_improvement:
        search = replace(search, stop_on_improvement=False)
    localize = cfg.localize
    if ns.localize_mode is not None:
        localize = replace(localize, mode=ns.localize_mode)
    if ns.top_m is not None:
        localize = replace(localize, top_m=ns.top_m)
    oracle_cfg = cfg.oracle
    if ns.oracle_cmd:
        oracle_cfg = replace(oracle_cfg, command=tuple(shlex.split(ns.oracle_cmd)))
    if ns.timeout_sec is not None:
        oracle_cfg = replace(oracle_cfg, timeout_sec=ns.timeout_sec)
    run = cfg.run if ns.concurrency is None else replace(cfg.run, concurrency=ns.concurrency)
    log_cfg = cfg.logging
    if ns.log_dir:
        log_cfg = replace(log_cfg, dir=ns.log_dir)
    if ns.stream:
        log_cfg = replace(log_cfg, stream=True)
    rerank = cfg.reranker if ns.reranker_model is None else replace(cfg.reranker, model_path=ns.reranker_model)
    updated = replace(
        cfg,
        search=search,
        localize=localize,
        oracle=oracle_cfg,
        run=run,
        logging=log_cfg,
        reranker=rerank,
    )
    updated.validate()
    return updated


def _contexts(ns: argparse.Namespace) -> List[types.ProjectContext]:
    contexts = [controller.make_context(path) for path in ns.project]
    if ns.projects_file:
        for line in Path(ns.projects_file).read_text().splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split("\t")
            contexts.append(controller.make_context(parts[0], parts[1] if len(parts) > 1 else None))
    return contexts


def _search(ns: argparse.Namespace, cfg: config_module.Config) -> int:
    try:
        cfg = _overrides(ns, cfg)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    contexts = _contexts(ns)
    if not contexts:
        print("error: no projects given (use --project or --projects-file)", file=sys.stderr)
        return 2
    logger = logging.RunLogger(cfg.logging.dir, ns.run_id, stream=cfg.logging.stream)
    try:
        results = controller.run_projects(contexts, config=cfg, logger=logger)
    except oracle.OracleUnavailable as exc:
        logger.log_event("run.abort", error=str(exc))
        print(f"error: {exc}", file=sys.stderr)
        return 2
    for res in results:
        outcome = res.outcome
        status = res.skip_reason or (outcome.stop_reason if outcome else "unknown")
        chosen = outcome.chosen_candidate_id if outcome else "-"
        print(f"{res.project_id}\t{status}\t{chosen}\t{len(res.trials)}")
    print(f"wrote_results\t{logger.path_for(controller.TRIAL_LOG, 'jsonl')}")
    return 0


def _export(ns: argparse.Namespace, cfg: config_module.Config) -> int:
    records = [record for path in ns.trial_log for record in pairs.read_jsonl(path)]
    rows = pairs.export_pairs(
        records,
        max_pairs_per_project=ns.max_pairs_per_project,
        allow_invalid=ns.allow_invalid,
    )
    count = pairs.write_jsonl(ns.out_file, rows)
    logger = logging.RunLogger(cfg.logging.dir, stream=cfg.logging.stream)
    logger.log_event("pairs.export", projects=len(records), pairs=count, out_file=ns.out_file)
    print(f"projects\t{len(records)}")
    print(f"pairs\t{count}")
    print(f"wrote\t{ns.out_file}")
    return 0


def _train(ns: argparse.Namespace, cfg: config_module.Config) -> int:
    rows = list(pairs.read_jsonl(ns.pairwise))
    if not rows:
        print(f"error: no pairwise rows in {ns.pairwise}", file=sys.stderr)
        return 2
    tc = cfg.train
    model, report = reranker.train(
        rows,
        epochs=ns.epochs if ns.epochs is not None else tc.epochs,
        lr=ns.lr if ns.lr is not None else tc.lr,
        l2=ns.l2 if ns.l2 is not None else tc.l2,
        seed=ns.seed if ns.seed is not None else tc.seed,
        test_frac=ns.test_frac if ns.test_frac is not None else tc.test_frac,
        fit_bias=ns.fit_bias,
    )
    path = model.save(ns.out_model)
    logger = logging.RunLogger(cfg.logging.dir, stream=cfg.logging.stream)
    logger.log_event("train.done", model=str(path), **vars(report))
    for line in report.lines():
        print(line)
    print(f"wrote_model\t{path}")
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    ns = _parse_args(argv)
    cfg = config_module.Config.load(ns.config)
    if ns.command == "search":
        return _search(ns, cfg)
    if ns.command == "export-pairs":
        return _export(ns, cfg)
    return _train(ns, cfg)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
