"""Rank external dependencies by how strongly diagnostics implicate them."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Set

from . import imports, types


class ModuleTally:
    """Per-run counters of module mentions in diagnostic-bearing files."""

    def __init__(self) -> None:
        self.files: Dict[str, Set[str]] = {}
        self.errors: Dict[str, int] = {}

    def add_file(self, file: str, modules: Iterable[str], diagnostic_count: int) -> None:
        for mod in set(modules):
            self.files.setdefault(mod, set()).add(file)
            self.errors[mod] = self.errors.get(mod, 0) + diagnostic_count

    def score(self, module: str, mode: str) -> int:
        if mode == "per-error":
            return self.errors.get(module, 0)
        return len(self.files.get(module, ()))

    def ranked(self, *, mode: str = "per-file", top_m: Optional[int] = None) -> List[types.RankedModule]:
        """Order by descending score, ties broken lexicographically, then keep the top M."""

        order = sorted(self.files, key=lambda mod: (-self.score(mod, mode), mod))
        if top_m is not None and top_m >= 0:
            order = order[:top_m]
        return [types.RankedModule(module=mod, score=self.score(mod, mode), rank=idx) for idx, mod in enumerate(order, start=1)]


def diagnostic_files(project_dir: str | Path, diagnostics: Iterable[types.Diagnostic]) -> Dict[str, int]:
    """Existing source files the diagnostics point at, with their diagnostic counts."""

    root = Path(project_dir)
    counts: Dict[str, int] = {}
    for diag in diagnostics:
        if not diag.file:
            continue
        path = Path(diag.file)
        if not path.is_absolute():
            path = root / path
        if not path.is_file():
            continue
        counts[diag.file] = counts.get(diag.file, 0) + 1
    return counts


def localize(
    project_dir: str | Path,
    core_diagnostics: Iterable[types.Diagnostic],
    index: imports.ImportIndex,
    *,
    mode: str = "per-file",
    top_m: Optional[int] = None,
    only_external: bool = True,
) -> tuple[List[types.RankedModule], Dict[str, imports.FileImports]]:
    """Rank modules imported by diagnostic-bearing files.

    Returns the ranking together with the extracted imports of those files so
    the stub builder does not need to re-read them.
    """

    root = Path(project_dir)
    tally = ModuleTally()
    extracted: Dict[str, imports.FileImports] = {}
    for file, count in sorted(diagnostic_files(root, core_diagnostics).items()):
        path = Path(file) if Path(file).is_absolute() else root / file
        found = index.get(path)
        extracted[file] = found
        modules = [
            mod for mod in found.modules() if not only_external or imports.is_external_specifier(mod)
        ]
        if modules:
            tally.add_file(file, modules, count)
    return tally.ranked(mode=mode, top_m=top_m), extracted


def rank_lookup(ranking: Iterable[types.RankedModule]) -> Mapping[str, types.RankedModule]:
    return {ranked.module: ranked for ranked in ranking}
