"""Oracle diagnostic parsing and classification."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping

from . import types

# "<file>(<line>,<col>): error <CODE>: <message>"; the location prefix is absent for
# project-level errors such as an unreadable tsconfig.
_DIAG_LINE_RE = re.compile(
    r"^(?:(?P<file>.+?)\((?P<line>\d+),(?P<col>\d+)\):\s+)?error\s+(?P<code>TS\d{4,5}):\s*(?P<message>.*)$"
)


def parse_diagnostics(text: str) -> List[types.Diagnostic]:
    """Parse oracle output into diagnostics, skipping anything off-grammar."""

    out: List[types.Diagnostic] = []
    for raw in (text or "").splitlines():
        match = _DIAG_LINE_RE.match(raw.rstrip())
        if not match:
            continue
        file = (match.group("file") or "").strip().replace("\\", "/")
        out.append(
            types.Diagnostic(
                file=file,
                line=int(match.group("line") or 0),
                col=int(match.group("col") or 0),
                code=match.group("code"),
                message=match.group("message").strip(),
            )
        )
    return out


def count_codes(diagnostics: Iterable[types.Diagnostic]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for diag in diagnostics:
        counts[diag.code] = counts.get(diag.code, 0) + 1
    return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))


def core_count(counts: Mapping[str, int], core_codes: Iterable[str]) -> int:
    return sum(counts.get(code, 0) for code in set(core_codes))


def core_diagnostics(diagnostics: Iterable[types.Diagnostic], core_codes: Iterable[str]) -> List[types.Diagnostic]:
    core = set(core_codes)
    return [diag for diag in diagnostics if diag.code in core]


def has_parser_codes(diagnostics: Iterable[types.Diagnostic], parser_codes: Iterable[str]) -> bool:
    """True when any parser-level code is present, which invalidates an injection."""

    parser = set(parser_codes)
    return any(diag.code in parser for diag in diagnostics)


def delta_counts(after: Mapping[str, int], before: Mapping[str, int]) -> Dict[str, int]:
    """Per-code difference ``after - before``, omitting unchanged codes."""

    delta: Dict[str, int] = {}
    for code in sorted(set(after) | set(before)):
        diff = after.get(code, 0) - before.get(code, 0)
        if diff:
            delta[code] = diff
    return delta
