"""Map diagnostic sites back to the import bindings they originate from.

Two backends are available:

* ``compiler`` runs ``resolve_sites.js`` under Node, which loads the
  ``typescript`` package installed in the project under test and walks the
  real syntax tree around each site.
* ``lexical`` is a best-effort text scan over the same source file, used
  when the project's compiler services cannot be loaded.

Every failure is reported as ``None`` for the affected site; resolution is
never fatal to a search.
"""

from __future__ import annotations

import json
import re
import subprocess
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from . import imports, types

PROPERTY_CODES = frozenset({"TS2339", "TS7053"})
CALL_CODES = frozenset({"TS2345", "TS2554", "TS2769", "TS2322", "TS2353", "TS2741"})
_SCRIPT = Path(__file__).resolve().with_name("resolve_sites.js")
_IDENT_CHARS = re.compile(r"[\w$]")


def category(code: str) -> Optional[str]:
    if code in PROPERTY_CODES:
        return "property"
    if code in CALL_CODES:
        return "call"
    return None


def _site_from_payload(payload: Dict[str, object]) -> Optional[types.ResolvedSite]:
    if not payload.get("ok"):
        return None
    module = payload.get("module")
    kind = payload.get("bindingKind")
    if not isinstance(module, str) or kind not in ("default", "namespace", "named", "require"):
        return None
    arity = payload.get("arity")
    return types.ResolvedSite(
        module=module,
        binding_kind=kind,  # type: ignore[arg-type]
        imported_name=str(payload.get("importedName") or ""),
        local_name=str(payload.get("localName") or ""),
        prop=payload.get("prop") if isinstance(payload.get("prop"), str) else None,  # type: ignore[arg-type]
        chain=tuple(str(part) for part in payload.get("chain") or ()),  # type: ignore[union-attr]
        arity=arity if isinstance(arity, (int, str)) else None,
        via=str(payload.get("via") or "identifier"),
    )


class _Source:
    """Comment-stripped text of one file plus its bindings by local name."""

    def __init__(self, text: str):
        self.text = imports.strip_comments(text)
        self.line_starts = [0]
        for idx, ch in enumerate(self.text):
            if ch == "\n":
                self.line_starts.append(idx + 1)
        self.bindings = {b.local_name: b for b in imports.extract_bindings(self.text)}

    def offset(self, line: int, col: int) -> Optional[int]:
        if line < 1 or line > len(self.line_starts) or col < 1:
            return None
        pos = self.line_starts[line - 1] + col - 1
        return pos if pos <= len(self.text) else None


def _ident_at(text: str, pos: int) -> tuple[int, int]:
    start = pos
    while start > 0 and _IDENT_CHARS.match(text[start - 1]):
        start -= 1
    end = pos
    while end < len(text) and _IDENT_CHARS.match(text[end]):
        end += 1
    return start, end


def _chain_before(text: str, end: int) -> Optional[List[str]]:
    """Dotted identifier chain ending right before *end*, e.g. ``a.b.c``."""

    parts: List[str] = []
    pos = end
    while True:
        while pos > 0 and text[pos - 1] in " \t!":
            pos -= 1
        stop = pos
        while pos > 0 and _IDENT_CHARS.match(text[pos - 1]):
            pos -= 1
        if pos == stop:
            return None
        parts.insert(0, text[pos:stop])
        probe = pos
        while probe > 0 and text[probe - 1] in " \t":
            probe -= 1
        if probe > 0 and text[probe - 1] == "." and not text[max(0, probe - 3) : probe] == "...":
            pos = probe - 1
            if pos > 0 and text[pos - 1] == "?":
                pos -= 1
            continue
        if parts[0][0].isdigit():
            return None
        return parts


def _open_paren_before(text: str, pos: int) -> Optional[int]:
    depth = 0
    i = pos - 1
    while i >= 0:
        ch = text[i]
        if ch in ")]}":
            depth += 1
        elif ch in "([{":
            if depth == 0:
                return i if ch == "(" else None
            depth -= 1
        elif ch == ";" and depth == 0:
            return None
        i -= 1
    return None


class LexicalBackend:
    """Text-only resolution over the diagnostic's source file."""

    def __init__(self, project_dir: str | Path):
        self.root = Path(project_dir)
        self._sources: Dict[str, Optional[_Source]] = {}

    def _source(self, file: str) -> Optional[_Source]:
        if file not in self._sources:
            path = Path(file) if Path(file).is_absolute() else self.root / file
            try:
                self._sources[file] = _Source(path.read_text(encoding="utf-8", errors="replace"))
            except OSError:
                self._sources[file] = None
        return self._sources[file]

    def _binding_for(self, src: _Source, chain: List[str]) -> Optional[types.ResolvedSite]:
        binding = src.bindings.get(chain[0])
        if binding is not None:
            return types.ResolvedSite(
                module=binding.module,
                binding_kind=binding.kind,
                imported_name=binding.imported_name,
                local_name=binding.local_name,
                chain=tuple(chain[1:]),
            )
        # One level of call-result propagation: `const x = f(...)` with `f` imported.
        decls = list(
            re.finditer(
                rf"(?<![\w$.])(?:const|let|var)\s+{re.escape(chain[0])}\s*=\s*(?:await\s+)?(?:new\s+)?(?P<callee>[\w$]+(?:\s*\.\s*[\w$]+)*)\s*\(",
                src.text,
            )
        )
        if len(decls) != 1:
            return None
        callee = [part.strip() for part in decls[0].group("callee").split(".")]
        binding = src.bindings.get(callee[0])
        if binding is None:
            return None
        return types.ResolvedSite(
            module=binding.module,
            binding_kind=binding.kind,
            imported_name=binding.imported_name,
            local_name=binding.local_name,
            chain=tuple(callee[1:]),
            via="call-result",
        )

    def resolve(self, diag: types.Diagnostic) -> Optional[types.ResolvedSite]:
        cat = category(diag.code)
        src = self._source(diag.file) if cat else None
        pos = src.offset(diag.line, diag.col) if src else None
        if src is None or pos is None:
            return None
        text = src.text
        if cat == "property":
            start, end = _ident_at(text, pos)
            prop = text[start:end] or None
            dot = start
            while dot > 0 and text[dot - 1] in " \t":
                dot -= 1
            if dot == 0 or text[dot - 1] != "." or not prop:
                return None
            dot -= 1
            if dot > 0 and text[dot - 1] == "?":
                dot -= 1
            chain = _chain_before(text, dot)
            if not chain:
                return None
            site = self._binding_for(src, chain)
            if site is None:
                return None
            return replace(site, prop=prop)
        # Call diagnostics point either at the callee or inside the argument list.
        start, end = _ident_at(text, pos)
        open_index: Optional[int] = None
        if end > start:
            probe = end
            while True:
                while probe < len(text) and text[probe] in " \t":
                    probe += 1
                if probe < len(text) and text[probe] == ".":
                    _s, probe = _ident_at(text, probe + 1)
                    continue
                break
            if probe < len(text) and text[probe] == "(":
                open_index = probe
        if open_index is None:
            open_index = _open_paren_before(text, pos)
        if open_index is None:
            return None
        chain = _chain_before(text, open_index)
        if not chain or chain[-1] in ("if", "for", "while", "switch", "catch", "function", "return"):
            return None
        site = self._binding_for(src, chain)
        if site is None:
            return None
        arity = imports.count_call_args(text, open_index)
        return replace(site, arity=arity)


class CompilerBackend:
    """Batch resolution through the project's own TypeScript installation."""

    def __init__(self, project_dir: str | Path, *, node: str = "node", timeout_sec: float = 120.0):
        self.root = Path(project_dir)
        self.node = node
        self.timeout_sec = timeout_sec
        self.error: Optional[str] = None

    def available(self) -> bool:
        return (self.root / "node_modules" / "typescript" / "package.json").exists()

    def resolve_many(self, diagnostics: Sequence[types.Diagnostic]) -> Optional[List[Optional[types.ResolvedSite]]]:
        """Resolve all sites in one Node process; ``None`` if the backend itself failed."""

        sites = [
            {"id": idx, "file": diag.file, "line": diag.line, "col": diag.col, "category": category(diag.code)}
            for idx, diag in enumerate(diagnostics)
            if category(diag.code)
        ]
        results: List[Optional[types.ResolvedSite]] = [None] * len(diagnostics)
        if not sites:
            return results
        try:
            proc = subprocess.run(
                [self.node, str(_SCRIPT)],
                cwd=str(self.root),
                input=json.dumps({"project": str(self.root.resolve()), "sites": sites}),
                capture_output=True,
                text=True,
                timeout=self.timeout_sec,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            self.error = f"{type(exc).__name__}: {exc}"
            return None
        try:
            payload = json.loads(proc.stdout or "{}")
        except json.JSONDecodeError:
            self.error = f"invalid resolver output (exit {proc.returncode}): {proc.stderr.strip()[:500]}"
            return None
        if not payload.get("ok"):
            self.error = str(payload.get("error") or "resolver failed")
            return None
        for item in payload.get("results") or []:
            idx = item.get("id")
            if isinstance(idx, int) and 0 <= idx < len(results):
                results[idx] = _site_from_payload(item)
        return results


class SymbolResolver:
    """Front door used by the repair strategy."""

    def __init__(
        self,
        project_dir: str | Path,
        *,
        backend: str = "auto",
        node: str = "node",
        timeout_sec: float = 120.0,
    ):
        self.project_dir = Path(project_dir)
        self.backend = backend
        self.compiler = CompilerBackend(project_dir, node=node, timeout_sec=timeout_sec)
        self.lexical = LexicalBackend(project_dir)
        self.used_backend: Optional[str] = None

    def resolve_many(self, diagnostics: Iterable[types.Diagnostic]) -> List[Optional[types.ResolvedSite]]:
        diags = list(diagnostics)
        if self.backend == "none":
            self.used_backend = "none"
            return [None] * len(diags)
        if self.backend in ("auto", "compiler"):
            if self.compiler.available():
                resolved = self.compiler.resolve_many(diags)
                if resolved is not None:
                    self.used_backend = "compiler"
                    return resolved
            elif self.compiler.error is None:
                self.compiler.error = "typescript not installed in project"
            if self.backend == "compiler":
                self.used_backend = "none"
                return [None] * len(diags)
        self.used_backend = "lexical"
        return [self.lexical.resolve(diag) for diag in diags]

    def resolve(self, diag: types.Diagnostic) -> Optional[types.ResolvedSite]:
        return self.resolve_many([diag])[0]
