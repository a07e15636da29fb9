"""Lexical import extraction for localisation and stub building."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Union

from . import types

_IDENT = r"[A-Za-z_$][\w$]*"
_IDENT_RE = re.compile(rf"^{_IDENT}$")
_IMPORT_FROM_RE = re.compile(
    r"(?<![\w$.])import\s+(?P<clause>[^'\";()]*?)\s+from\s*['\"](?P<mod>[^'\"\n]+)['\"]"
)
_IMPORT_EQUALS_RE = re.compile(
    rf"(?<![\w$.])import\s+(?P<local>{_IDENT})\s*=\s*require\s*\(\s*['\"](?P<mod>[^'\"\n]+)['\"]\s*\)"
)
_REQUIRE_RE = re.compile(
    rf"(?<![\w$.])(?:const|let|var)\s+(?P<local>{_IDENT})\s*=\s*require\s*\(\s*['\"](?P<mod>[^'\"\n]+)['\"]\s*\)"
    rf"(?:\s*\.\s*(?P<member>{_IDENT}))?"
)
_REQUIRE_DESTRUCTURE_RE = re.compile(
    r"(?<![\w$.])(?:const|let|var)\s*\{(?P<names>[^{}]*)\}\s*=\s*require\s*\(\s*['\"](?P<mod>[^'\"\n]+)['\"]\s*\)"
)
_CLOSERS = {"(": ")", "[": "]", "{": "}"}


def is_external_specifier(spec: str) -> bool:
    """Bare package specifiers only; relative paths and local aliases are not dependencies."""

    s = (spec or "").strip()
    if not s:
        return False
    if s.startswith((".", "/", "node:", "@/", "~/", "#")):
        return False
    return True


def _lex(text: str) -> tuple[str, List[bool]]:
    """Comment-blanked text plus a per-offset flag for string and comment characters."""

    out: List[str] = []
    masked: List[bool] = []
    i = 0
    n = len(text)
    quote: Optional[str] = None
    while i < n:
        ch = text[i]
        if quote:
            out.append(ch)
            masked.append(True)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                masked.append(True)
                i += 2
                continue
            if ch == quote or (ch == "\n" and quote != "`"):
                quote = None
            i += 1
            continue
        if ch in "'\"`":
            quote = ch
            out.append(ch)
            masked.append(True)
            i += 1
            continue
        if text.startswith("//", i):
            end = text.find("\n", i)
            end = n if end == -1 else end
            out.append(" " * (end - i))
            masked.extend([True] * (end - i))
            i = end
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            end = n if end == -1 else end + 2
            out.append("".join(c if c == "\n" else " " for c in text[i:end]))
            masked.extend([True] * (end - i))
            i = end
            continue
        out.append(ch)
        masked.append(False)
        i += 1
    return "".join(out), masked


def strip_comments(text: str) -> str:
    """Blank out comments while keeping offsets and line breaks intact."""

    return _lex(text)[0]


def count_call_args(text: str, open_index: int, *, limit: int = 4000) -> Union[int, str, None]:
    """Count top-level arguments of the call whose ``(`` sits at *open_index*.

    Returns ``"spread"`` when a spread argument appears and ``None`` when the
    parentheses do not balance within *limit* characters.
    """

    if open_index >= len(text) or text[open_index] != "(":
        return None
    stack = [")"]
    commas = 0
    seen_token = False
    spread = False
    quote: Optional[str] = None
    i = open_index + 1
    end = min(len(text), open_index + limit)
    while i < end:
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue
        if ch in "'\"`":
            quote = ch
            seen_token = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
            seen_token = True
        elif ch in ")]}":
            if ch != stack[-1]:
                return None
            stack.pop()
            if not stack:
                if spread:
                    return "spread"
                return commas + 1 if seen_token else 0
        elif len(stack) == 1 and ch == ",":
            commas += 1
        elif len(stack) == 1 and text.startswith("...", i):
            spread = True
            seen_token = True
            i += 3
            continue
        elif not ch.isspace():
            seen_token = True
        i += 1
    return None


def _parse_named(inside: str, mod: str, clause_type_only: bool) -> List[types.ImportBinding]:
    out: List[types.ImportBinding] = []
    for seg in inside.split(","):
        s = seg.strip()
        if not s:
            continue
        is_type = clause_type_only
        if s.startswith("type "):
            is_type = True
            s = s[5:].strip()
        parts = s.split()
        if len(parts) == 1:
            imported = local = parts[0]
        elif len(parts) == 3 and parts[1] == "as":
            imported, local = parts[0], parts[2]
        else:
            continue
        if not _IDENT_RE.match(local) or not (_IDENT_RE.match(imported) or imported == "default"):
            continue
        kind = "default" if imported == "default" else "named"
        out.append(types.ImportBinding(mod, kind, imported, local, is_type))
    return out


def _parse_clause(clause: str, mod: str) -> List[types.ImportBinding]:
    clause = " ".join(clause.split())
    type_only = False
    if clause.startswith("type ") and not clause.startswith("type,"):
        type_only = True
        clause = clause[5:].strip()
    named_part = None
    brace = clause.find("{")
    if brace != -1:
        if not clause.endswith("}"):
            return []
        named_part = clause[brace + 1 : -1]
        head = clause[:brace].strip().rstrip(",").strip()
    else:
        head = clause
    out: List[types.ImportBinding] = []
    for piece in [p.strip() for p in head.split(",") if p.strip()]:
        ns = re.match(rf"^\*\s*as\s+({_IDENT})$", piece)
        if ns:
            out.append(types.ImportBinding(mod, "namespace", "*", ns.group(1), type_only))
        elif _IDENT_RE.match(piece):
            out.append(types.ImportBinding(mod, "default", "default", piece, type_only))
        else:
            return []
    if named_part is not None:
        out.extend(_parse_named(named_part, mod, type_only))
    return out


def extract_bindings(text: str) -> List[types.ImportBinding]:
    """Return every import/require binding in *text*; malformed syntax is skipped."""

    masked = _lex(text)[1]

    def matches(pattern: re.Pattern[str]) -> Iterable[re.Match[str]]:
        # Import-looking text inside a string literal or comment is not a binding.
        return (m for m in pattern.finditer(text) if not masked[m.start()])

    found: List[tuple[int, types.ImportBinding]] = []
    for match in matches(_IMPORT_FROM_RE):
        for binding in _parse_clause(match.group("clause"), match.group("mod")):
            found.append((match.start(), binding))
    for match in matches(_IMPORT_EQUALS_RE):
        found.append((match.start(), types.ImportBinding(match.group("mod"), "require", "*", match.group("local"))))
    for match in matches(_REQUIRE_RE):
        imported = match.group("member") or "*"
        found.append((match.start(), types.ImportBinding(match.group("mod"), "require", imported, match.group("local"))))
    for match in matches(_REQUIRE_DESTRUCTURE_RE):
        for seg in match.group("names").split(","):
            parts = [p.strip() for p in seg.split(":")]
            if not parts[0]:
                continue
            imported = parts[0]
            local = parts[1] if len(parts) == 2 else imported
            if _IDENT_RE.match(imported) and _IDENT_RE.match(local):
                found.append((match.start(), types.ImportBinding(match.group("mod"), "require", imported, local)))
    found.sort(key=lambda item: item[0])
    return [binding for _pos, binding in found]


@dataclass
class FileImports:
    """Bindings of one file plus the member accesses and call arities seen on them."""

    bindings: List[types.ImportBinding] = field(default_factory=list)
    members: Dict[str, Dict[str, Set[str]]] = field(default_factory=dict)
    arities: Dict[str, Dict[str, Set[int]]] = field(default_factory=dict)

    def modules(self) -> Set[str]:
        return {binding.module for binding in self.bindings}


def _scan_usage(text: str, local: str, cap: int, members: Dict[str, Set[str]], arities: Dict[str, Set[int]]) -> None:
    pattern = re.compile(
        rf"(?<![\w$.]){re.escape(local)}(?![\w$])(?:\s*\??\.\s*(?P<m1>{_IDENT})(?:\s*\??\.\s*(?P<m2>{_IDENT}))?)?\s*(?P<call>\()?"
    )
    seen = 0
    for match in pattern.finditer(text):
        m1, m2 = match.group("m1"), match.group("m2")
        if m1 and (m1 in members or len(members) < cap):
            bucket = members.setdefault(m1, set())
            if m2 and len(bucket) < cap:
                bucket.add(m2)
        if match.group("call") and not m2:
            arity = count_call_args(text, match.end() - 1)
            if isinstance(arity, int):
                arities.setdefault(m1 or "", set()).add(arity)
        seen += 1
        if seen >= cap * 8:
            break


def extract_file(text: str, *, max_members_per_import: int = 64) -> FileImports:
    """Pure extraction over one file's text."""

    clean = strip_comments(text)
    result = FileImports(bindings=extract_bindings(clean))
    for binding in result.bindings:
        if binding.is_type_only or binding.local_name in result.members:
            continue
        members: Dict[str, Set[str]] = {}
        arities: Dict[str, Set[int]] = {}
        _scan_usage(clean, binding.local_name, max(1, max_members_per_import), members, arities)
        result.members[binding.local_name] = members
        result.arities[binding.local_name] = arities
    return result


class ImportIndex:
    """Per-run cache of extracted imports keyed by absolute file path."""

    def __init__(self, *, max_members_per_import: int = 64):
        self.max_members_per_import = max_members_per_import
        self._cache: Dict[str, FileImports] = {}

    def get(self, path: Path | str) -> FileImports:
        key = str(Path(path).resolve())
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        try:
            text = Path(key).read_text(encoding="utf-8", errors="replace")
        except OSError:
            text = ""
        extracted = extract_file(text, max_members_per_import=self.max_members_per_import)
        self._cache[key] = extracted
        return extracted

    def __len__(self) -> int:
        return len(self._cache)


def _export_key(binding: types.ImportBinding, member: str) -> Optional[str]:
    """Map a usage on a binding's local name to the export it touches."""

    if binding.kind == "named" or (binding.kind == "require" and binding.imported_name != "*"):
        return binding.imported_name if member == "" else None
    if binding.kind == "default":
        return "default" if member == "" else None
    return member or None


class StubInfoBuilder:
    """Mutable accumulator of :class:`types.ModuleStubInfo`, scoped to one project run."""

    def __init__(self, *, only_external: bool = True):
        self.only_external = only_external
        self.infos: Dict[str, types.ModuleStubInfo] = {}

    def add_file(self, extracted: FileImports, *, modules: Optional[Iterable[str]] = None) -> None:
        allowed = set(modules) if modules is not None else None
        for binding in extracted.bindings:
            if self.only_external and not is_external_specifier(binding.module):
                continue
            if allowed is not None and binding.module not in allowed:
                continue
            info = self.infos.setdefault(binding.module, types.ModuleStubInfo())
            self._add_binding(info, binding, extracted)

    def _add_binding(self, info: types.ModuleStubInfo, binding: types.ImportBinding, extracted: FileImports) -> None:
        members = extracted.members.get(binding.local_name, {})
        arities = extracted.arities.get(binding.local_name, {})
        if binding.kind == "default":
            info.has_default_import = True
            if members:
                info.member_accesses_by_export_name.setdefault("default", set()).update(members)
        elif binding.kind == "namespace" or (binding.kind == "require" and binding.imported_name == "*"):
            info.has_namespace_import = True
            for name, sub in members.items():
                info.member_accesses_by_export_name.setdefault(name, set()).update(sub)
        elif binding.is_type_only:
            info.named_type_names.add(binding.imported_name)
        else:
            info.named_value_names.add(binding.imported_name)
            if members:
                info.member_accesses_by_export_name.setdefault(binding.imported_name, set()).update(members)
        for member, counts in arities.items():
            key = _export_key(binding, member)
            if key:
                info.call_arities_by_export_name.setdefault(key, set()).update(counts)

    def build(self) -> Dict[str, types.ModuleStubInfo]:
        return dict(sorted(self.infos.items()))
