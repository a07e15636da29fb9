from pathlib import Path

import pytest

from decl_search import resolver, types

SOURCE = """import * as ns from 'beta';
import run from 'alpha';
import { make } from 'maker';

ns.foo();
run(1, 2);
const inst = make();
inst.doThing;
local.thing;
"""


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "index.ts").write_text(SOURCE)
    return tmp_path


def _diag(code: str, line: int, col: int) -> types.Diagnostic:
    return types.Diagnostic(file="src/index.ts", line=line, col=col, code=code, message="")


def test_category():
    assert resolver.category("TS2339") == "property"
    assert resolver.category("TS2554") == "call"
    assert resolver.category("TS2307") is None


def test_lexical_property_on_namespace(project: Path):
    site = resolver.LexicalBackend(project).resolve(_diag("TS2339", 5, 4))
    assert site is not None
    assert (site.module, site.binding_kind, site.prop, site.chain) == ("beta", "namespace", "foo", ())
    assert site.via == "identifier"


def test_lexical_call_site_with_arity(project: Path):
    backend = resolver.LexicalBackend(project)
    at_callee = backend.resolve(_diag("TS2554", 6, 1))
    assert at_callee is not None
    assert (at_callee.module, at_callee.binding_kind, at_callee.arity) == ("alpha", "default", 2)
    in_args = backend.resolve(_diag("TS2345", 6, 5))
    assert in_args is not None and in_args.module == "alpha" and in_args.arity == 2


def test_lexical_call_result_propagation(project: Path):
    site = resolver.LexicalBackend(project).resolve(_diag("TS2339", 8, 6))
    assert site is not None
    assert (site.module, site.imported_name, site.via, site.prop) == ("maker", "make", "call-result", "doThing")


def test_lexical_unresolvable_sites(project: Path):
    backend = resolver.LexicalBackend(project)
    assert backend.resolve(_diag("TS2339", 9, 7)) is None
    assert backend.resolve(_diag("TS2307", 1, 1)) is None
    assert backend.resolve(types.Diagnostic("src/missing.ts", 1, 1, "TS2339", "")) is None
    assert backend.resolve(_diag("TS2339", 99, 1)) is None


def test_symbol_resolver_backend_selection(project: Path):
    diags = [_diag("TS2339", 5, 4), _diag("TS2339", 9, 7)]
    auto = resolver.SymbolResolver(project, backend="auto")
    sites = auto.resolve_many(diags)
    assert auto.used_backend == "lexical"
    assert auto.compiler.error
    assert sites[0] is not None and sites[1] is None

    strict = resolver.SymbolResolver(project, backend="compiler")
    assert strict.resolve_many(diags) == [None, None]
    assert strict.used_backend == "none"

    off = resolver.SymbolResolver(project, backend="none")
    assert off.resolve(diags[0]) is None


def test_compiler_backend_payload_parsing():
    payload = {
        "ok": True,
        "module": "beta",
        "bindingKind": "namespace",
        "importedName": "*",
        "localName": "ns",
        "chain": ["a"],
        "via": "identifier",
        "prop": "b",
        "arity": None,
    }
    site = resolver._site_from_payload(payload)
    assert site == types.ResolvedSite(
        module="beta", binding_kind="namespace", imported_name="*", local_name="ns", prop="b", chain=("a",)
    )
    assert resolver._site_from_payload({"ok": False, "reason": "not-an-import"}) is None
