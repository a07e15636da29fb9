"""Pure edit-descriptor transforms over declaration text.

Every function here takes declaration text plus a structured descriptor and
returns new text; none of them mutate state. When an edit does not apply
(unknown module, missing symbol, shorthand block) the input text is
returned unchanged and the generator drops the candidate as a duplicate of
its parent.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from . import stubs, types

_STMT_RE = re.compile(
    r"(?P<export>export\s+)?(?:declare\s+)?(?P<default>default\s+)?(?:abstract\s+)?"
    r"(?P<kind>const|let|var|function|class|interface|type|namespace|module|enum)?\s*(?P<name>[A-Za-z_$][\w$]*)?"
)
_BRACED = frozenset({"interface", "class", "namespace", "module", "enum"})
_CONTINUES = set("=,|&(:<>?.")
VALUE_KINDS = frozenset({"const", "let", "var", "function", "class", "enum"})
TYPE_KINDS = frozenset({"interface", "type"})


# Values and type aliases live in separate declaration spaces, so a name may
# need one export of each.
def exports_value(kinds: Iterable[str]) -> bool:
    return bool(set(kinds) & (VALUE_KINDS | {"namespace", "module"}))


def exports_type(kinds: Iterable[str]) -> bool:
    return bool(set(kinds) & (TYPE_KINDS | {"class", "enum"}))


@dataclass(frozen=True)
class Statement:
    """One top-level statement inside a module block (absolute offsets)."""

    kind: str
    name: Optional[str]
    exported: bool
    start: int
    end: int


def _statement_end(text: str, i: int, end: int, braced: bool) -> int:
    depth = 0
    quote: Optional[str] = None
    j = i
    while j < end:
        ch = text[j]
        if quote:
            if ch == "\\":
                j += 2
                continue
            if ch == quote:
                quote = None
        elif text.startswith("//", j):
            nl = text.find("\n", j, end)
            j = end if nl == -1 else nl
            continue
        elif text.startswith("/*", j):
            close = text.find("*/", j + 2, end)
            j = end if close == -1 else close + 2
            continue
        elif ch in "'\"`":
            quote = ch
        elif ch in "({[":
            depth += 1
        elif ch in ")}]":
            depth -= 1
            if ch == "}" and depth == 0 and braced:
                k = j + 1
                while k < end and text[k] in " \t":
                    k += 1
                return k + 1 if k < end and text[k] == ";" else j + 1
        elif ch == ";" and depth <= 0:
            return j + 1
        elif ch == "\n" and depth <= 0 and not braced:
            prev = text[i:j].rstrip()
            if prev and prev[-1] not in _CONTINUES:
                return j
        j += 1
    return end


def parse_statements(text: str, block: stubs.ModuleBlock) -> List[Statement]:
    """Split a braced block body into top-level statements."""

    out: List[Statement] = []
    i = block.body_start
    end = block.body_end
    while i < end:
        ch = text[i]
        if ch.isspace() or ch == ";":
            i += 1
            continue
        if text.startswith("//", i):
            nl = text.find("\n", i, end)
            i = end if nl == -1 else nl
            continue
        if text.startswith("/*", i):
            close = text.find("*/", i + 2, end)
            i = end if close == -1 else close + 2
            continue
        match = _STMT_RE.match(text, i, end)
        kind = match.group("kind") if match else None
        name = match.group("name") if match else None
        if match and match.group("default"):
            kind, name = kind or "default", "default"
        stop = _statement_end(text, i, end, kind in _BRACED)
        out.append(Statement(kind or "other", name, bool(match and match.group("export")), i, max(stop, i + 1)))
        i = max(stop, i + 1)
    return out


def exported_names(text: str, module: str) -> dict[str, set[str]]:
    """Map exported name -> statement kinds for *module*'s block."""

    block = stubs.find_block(text, module)
    names: dict[str, set[str]] = {}
    if block is None or block.shorthand:
        return names
    for stmt in parse_statements(text, block):
        if stmt.exported and stmt.name:
            names.setdefault(stmt.name, set()).add(stmt.kind)
    return names


def _indent(text: str, block: stubs.ModuleBlock) -> str:
    for line in text[block.body_start : block.body_end].splitlines():
        stripped = line.lstrip()
        if stripped:
            return line[: len(line) - len(stripped)]
    return "  "


def _insert_before_close(text: str, block: stubs.ModuleBlock, lines: Sequence[str]) -> str:
    if not lines or block.shorthand:
        return text
    indent = _indent(text, block)
    line_start = text.rfind("\n", block.body_start, block.body_end)
    payload = "".join(f"{indent}{line}\n" for line in lines)
    if line_start == -1 or text[line_start + 1 : block.body_end].strip():
        return text[: block.body_end] + "\n" + payload + text[block.body_end :]
    return text[: line_start + 1] + payload + text[line_start + 1 :]


def _replace_statements(text: str, stmts: Sequence[Statement], replacement: str) -> str:
    """Drop *stmts*, putting *replacement* where the first one stood."""

    if not stmts:
        return text
    ordered = sorted(stmts, key=lambda s: s.start)
    out = text
    for stmt in reversed(ordered[1:]):
        line_start = out.rfind("\n", 0, stmt.start) + 1
        cut_end = stmt.end + 1 if out[stmt.end : stmt.end + 1] == "\n" else stmt.end
        if out[line_start : stmt.start].strip():
            line_start = stmt.start
        out = out[:line_start] + out[cut_end:]
    first = ordered[0]
    return out[: first.start] + replacement + out[first.end :]


def _block(text: str, module: str) -> Optional[stubs.ModuleBlock]:
    block = stubs.find_block(text, module)
    if block is None or block.shorthand:
        return None
    return block


def override_modules(text: str, modules: Iterable[str]) -> str:
    """Replace each module's block with the shorthand permissive form."""

    out = text
    for module in sorted(set(modules)):
        out = stubs.replace_block(out, module, stubs.any_module_block(module))
    return out


def add_index_signature(text: str, module: str, name: str) -> str:
    block = _block(text, module)
    if block is None:
        return text
    for stmt in parse_statements(text, block):
        if stmt.kind == "interface" and stmt.name == name and stmt.exported:
            brace = text.find("{", stmt.start, stmt.end)
            if brace == -1 or "[key: string]: any" in text[brace : stmt.end]:
                return text
            indent = _indent(text, block)
            return text[: brace + 1] + f"\n{indent}{indent}[key: string]: any;" + text[brace + 1 :]
    return text


def add_namespace_members(text: str, module: str, name: str, members: Iterable[str]) -> str:
    block = _block(text, module)
    members = sorted(m for m in set(members) if stubs.declarable(m))
    if block is None or not members or not stubs.declarable(name):
        return text
    lines = [f"export namespace {name} {{"]
    lines.extend(f"  export const {member}: any;" for member in members)
    lines.append("}")
    return _insert_before_close(text, block, lines)


def add_any_overload(text: str, module: str, name: str, arity: Optional[int] = None) -> str:
    """Add ``(...args: any[]): any`` (or a fixed-arity ``any``) overload after *name*'s declarations."""

    block = _block(text, module)
    if block is None:
        return text
    decls = [s for s in parse_statements(text, block) if s.kind == "function" and s.name == name and s.exported]
    if not decls:
        return text
    if arity is None:
        params = "...args: any[]"
    else:
        params = ", ".join(f"a{idx}: any" for idx in range(max(0, arity)))
    last = decls[-1]
    indent = _indent(text, block)
    return text[: last.end] + f"\n{indent}export function {name}({params}): any;" + text[last.end :]


def add_exports(text: str, module: str, values: Iterable[str] = (), type_names: Iterable[str] = ()) -> str:
    """Declare permissive exports for names the block does not yet export."""

    block = _block(text, module)
    if block is None:
        return text
    present = exported_names(text, module)
    lines = [
        f"export const {n}: any;"
        for n in sorted(set(values))
        if stubs.declarable(n) and not exports_value(present.get(n, ()))
    ]
    lines += [
        f"export type {n} = any;"
        for n in sorted(set(type_names))
        if stubs.declarable(n) and not exports_type(present.get(n, ()))
    ]
    return _insert_before_close(text, block, lines)


def export_to_any(text: str, module: str, name: str) -> str:
    """Rewrite the value binding *name* (or the default export) to ``any`` in place."""

    block = _block(text, module)
    if block is None:
        return text
    stmts = parse_statements(text, block)
    if name == "default":
        targets = [s for s in stmts if s.kind == "default" or (s.name == "default" and s.exported)]
        replacement = "const __default_any: any;\n" + _indent(text, block) + "export default __default_any;"
        body = text[block.body_start : block.body_end]
        if not targets or "__default_any" in body:
            return text
        # Already permissive: `export default X` where X is declared `: any`.
        bound = re.match(r"export\s+default\s+([A-Za-z_$][\w$]*)\s*;?\s*$", text[targets[0].start : targets[0].end])
        if len(targets) == 1 and bound and re.search(rf"\b(?:const|let|var)\s+{re.escape(bound.group(1))}\s*:\s*any\b", body):
            return text
        return _replace_statements(text, targets, replacement)
    targets = [s for s in stmts if s.exported and s.name == name and s.kind in VALUE_KINDS]
    if not targets:
        return text
    if len(targets) == 1 and targets[0].kind in ("const", "let", "var") and re.search(
        rf"{re.escape(name)}\s*:\s*any\s*;?\s*$", text[targets[0].start : targets[0].end]
    ):
        return text
    replacement = f"export const {name}: any;"
    if any(s.kind in ("class", "enum") for s in targets):
        replacement += f"\n{_indent(text, block)}export type {name} = any;"
    return _replace_statements(text, targets, replacement)


def type_to_any(text: str, module: str, name: str) -> str:
    """Rewrite interface/type alias *name* to a permissive alias."""

    block = _block(text, module)
    if block is None:
        return text
    targets = [
        s for s in parse_statements(text, block) if s.exported and s.name == name and s.kind in TYPE_KINDS
    ]
    if not targets:
        return text
    replacement = f"export type {name} = any;"
    if len(targets) == 1 and text[targets[0].start : targets[0].end].strip() == replacement:
        return text
    return _replace_statements(text, targets, replacement)


def apply_symbol_edit(text: str, edit: types.SymbolOverride) -> str:
    """Dispatch a symbol-level descriptor to its transform."""

    kind = edit.op if edit.kind == "repair-from-top1" else edit.kind
    name = edit.name or ""
    if kind == "interface-indexer":
        return add_index_signature(text, edit.module, name)
    if kind in ("namespace-members", "namespace-member"):
        return add_namespace_members(text, edit.module, name, edit.members)
    if kind in ("function-any-overload", "any-overload"):
        return add_any_overload(text, edit.module, name, edit.arity)
    if kind in ("missing-exports", "add-export"):
        values = list(edit.members) if edit.kind == "missing-exports" else [edit.prop or name]
        types_only = [m[5:] for m in values if m.startswith("type:")]
        values = [m for m in values if not m.startswith("type:")]
        return add_exports(text, edit.module, values, types_only)
    if kind == "export-to-any":
        return export_to_any(text, edit.module, name)
    if kind == "type-to-any":
        return type_to_any(text, edit.module, name)
    if kind == "module-any":
        return override_modules(text, [edit.module])
    raise ValueError(f"Unknown symbol edit kind: {kind}")
