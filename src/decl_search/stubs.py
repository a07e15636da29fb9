"""Baseline declaration stubs and the ambient module block reader."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional

from . import types

HEADER = "// Auto-generated by decl-search (baseline stub)\n"

# Names that cannot appear as `export const <name>` in a declaration file.
RESERVED = frozenset(
    """break case catch class const continue debugger default delete do else enum export extends false
    finally for function if import in instanceof new null return super switch this throw true try typeof
    var void while with""".split()
)
_IDENT_RE = re.compile(r"^[A-Za-z_$][\w$]*$")
_DECLARE_MODULE_RE = re.compile(r"declare\s+module\s+(['\"])(?P<mod>(?:\\.|(?!\1).)*)\1\s*(?P<tail>[{;]?)")
_EXPORT_RE = re.compile(r"(?m)^\s*export\b")


def esc(module: str) -> str:
    return module.replace("\\", "\\\\").replace("'", "\\'")


def _unesc(module: str) -> str:
    return re.sub(r"\\(.)", r"\1", module)


def declarable(name: str) -> bool:
    return bool(_IDENT_RE.match(name)) and name not in RESERVED


def module_block(module: str, info: types.ModuleStubInfo) -> str:
    """One self-contained permissive block for *module*."""

    lines = [f"declare module '{esc(module)}' {{"]
    if info.has_default_import:
        lines.append("  const __default: any;")
        lines.append("  export default __default;")
    lines.append("  export const __any: any;")
    for name in sorted(n for n in info.named_value_names if declarable(n) and n != "__any"):
        lines.append(f"  export const {name}: any;")
    for name in sorted(n for n in info.named_type_names if declarable(n)):
        lines.append(f"  export type {name} = any;")
    lines.append("}")
    return "\n".join(lines) + "\n"


def any_module_block(module: str) -> str:
    """Shorthand ambient module: every import from it is typed ``any``."""

    return f"declare module '{esc(module)}';\n"


def build_baseline(infos: Mapping[str, types.ModuleStubInfo], modules: Iterable[str]) -> str:
    """Concatenate blocks for *modules*; byte-identical for identical inputs."""

    chunks = [HEADER]
    for module in sorted(set(modules)):
        info = infos.get(module)
        if info is None:
            continue
        chunks.append(module_block(module, info))
        chunks.append("\n")
    return "".join(chunks)


def declaration_count(text: str) -> int:
    """Exported declarations plus shorthand modules in *text*."""

    shorthand = sum(1 for block in split_blocks(text) if block.shorthand)
    return len(_EXPORT_RE.findall(text)) + shorthand


@dataclass(frozen=True)
class ModuleBlock:
    """Location of one ``declare module`` block inside declaration text."""

    module: str
    start: int
    end: int
    body_start: int
    body_end: int
    shorthand: bool


def _matching_brace(text: str, open_index: int) -> Optional[int]:
    depth = 0
    quote: Optional[str] = None
    i = open_index
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif text.startswith("//", i):
            nl = text.find("\n", i)
            i = len(text) if nl == -1 else nl
            continue
        elif text.startswith("/*", i):
            close = text.find("*/", i + 2)
            i = len(text) if close == -1 else close + 2
            continue
        elif ch in "'\"`":
            quote = ch
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return None


def split_blocks(text: str) -> List[ModuleBlock]:
    """Find top-level module blocks; an unterminated block runs to the end of text."""

    blocks: List[ModuleBlock] = []
    pos = 0
    while True:
        match = _DECLARE_MODULE_RE.search(text, pos)
        if not match:
            break
        module = _unesc(match.group("mod"))
        tail = match.group("tail")
        if tail == ";" or tail == "":
            end = match.end()
            if end < len(text) and text[end] == "\n":
                end += 1
            blocks.append(ModuleBlock(module, match.start(), end, end, end, True))
            pos = end
            continue
        open_index = match.end() - 1
        close = _matching_brace(text, open_index)
        if close is None:
            blocks.append(ModuleBlock(module, match.start(), len(text), open_index + 1, len(text), False))
            break
        end = close + 1
        if end < len(text) and text[end] == "\n":
            end += 1
        blocks.append(ModuleBlock(module, match.start(), end, open_index + 1, close, False))
        pos = end
    return blocks


def find_block(text: str, module: str) -> Optional[ModuleBlock]:
    for block in split_blocks(text):
        if block.module == module:
            return block
    return None


def replace_block(text: str, module: str, new_block: str) -> str:
    """Swap *module*'s block for *new_block*, appending it when absent."""

    block = find_block(text, module)
    if block is None:
        sep = "" if not text or text.endswith("\n") else "\n"
        return f"{text}{sep}{new_block}"
    return text[: block.start] + new_block + text[block.end :]
