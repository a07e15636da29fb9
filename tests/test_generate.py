from dataclasses import replace

from decl_search import config as config_module, generate, stubs, types


def _ranking(*modules: str):
    return [types.RankedModule(module=m, score=len(modules) - i, rank=i + 1) for i, m in enumerate(modules)]


def _infos():
    return {
        "alpha": types.ModuleStubInfo(named_value_names={"run"}),
        "beta": types.ModuleStubInfo(has_namespace_import=True, member_accesses_by_export_name={"util": {"x"}}),
        "gamma": types.ModuleStubInfo(has_default_import=True),
    }


def _baseline(modules=("alpha", "beta")):
    return generate.baseline_candidate(stubs.build_baseline(_infos(), modules))


def test_sweep_k1_generates_one_candidate_per_module():
    base = _baseline()
    cset = generate.CandidateSet(base, budget=10)
    added = generate.sweep(cset, _ranking("alpha", "beta"), 1)
    assert [c.candidate_id for c in added] == ["001-any-module", "002-any-module"]
    assert [c.module_overrides for c in added] == [frozenset({"alpha"}), frozenset({"beta"})]
    first = stubs.find_block(added[0].declaration_text, "alpha")
    assert first is not None and first.shorthand
    assert not stubs.find_block(added[0].declaration_text, "beta").shorthand


def test_sweep_k2_and_topk():
    base = _baseline(("alpha", "beta", "gamma"))
    ranking = _ranking("alpha", "beta", "gamma")
    cset = generate.CandidateSet(base, budget=10)
    pairs = generate.sweep(cset, ranking, 2)
    assert [sorted(c.module_overrides) for c in pairs] == [["alpha", "beta"], ["alpha", "gamma"], ["beta", "gamma"]]
    top = generate.topk(cset, ranking, 3)
    assert top is not None and top.module_overrides == frozenset({"alpha", "beta", "gamma"})
    assert generate.topk(generate.CandidateSet(base, budget=10), ranking[:1], 3) is None


def test_candidate_set_dedups_by_key_and_text():
    base = _baseline()
    cset = generate.CandidateSet(base, budget=10)
    assert cset.offer("noop", base.declaration_text, key="k0") is None
    first = cset.offer("x", base.declaration_text + "// a\n", key="k1")
    assert first is not None
    assert cset.offer("x", base.declaration_text + "// b\n", key="k1") is None
    assert cset.offer("y", base.declaration_text + "// a\n", key="k2") is None


def test_budget_caps_total_candidates():
    cfg = replace(config_module.SearchConfig(), trial_max=2, strategies=("sweep", "topk"))
    out = generate.generate(_baseline(), _ranking("alpha", "beta"), _infos(), cfg)
    assert len(out) == 1


def test_symbol_widen_missing_exports_and_limit():
    base = _baseline()
    cset = generate.CandidateSet(base, budget=10)
    added = generate.symbol_widen(cset, _ranking("alpha", "beta"), _infos(), "missing-exports", limit=5)
    assert len(added) == 1
    edit = added[0].symbol_override
    assert edit.module == "beta" and edit.members == ("util",)
    assert "export const util: any;" in added[0].declaration_text

    cset = generate.CandidateSet(base, budget=10)
    assert generate.symbol_widen(cset, _ranking("alpha", "beta"), _infos(), "missing-exports", limit=0) == []


def test_symbol_widen_export_to_any_skips_permissive_names():
    text = "declare module 'alpha' {\n  export const loose: any;\n  export function run(): void;\n  export const v: string;\n}\n"
    base = generate.baseline_candidate(text)
    cset = generate.CandidateSet(base, budget=10)
    added = generate.symbol_widen(cset, _ranking("alpha"), {}, "export-to-any", limit=8)
    assert [c.symbol_override.name for c in added] == ["run", "v"]

    cset = generate.CandidateSet(base, budget=10)
    overloads = generate.symbol_widen(
        cset,
        _ranking("alpha"),
        {"alpha": types.ModuleStubInfo(call_arities_by_export_name={"run": {1, 2}})},
        "function-any-overload",
        limit=8,
    )
    assert [c.symbol_override.arity for c in overloads] == [1, 2]


def test_repair_adds_missing_namespace_export():
    base = _baseline()
    diag = types.Diagnostic("src/a.ts", 3, 8, "TS2339", "Property 'foo' does not exist on type 'typeof import(\"beta\")'.")
    site = types.ResolvedSite(module="beta", binding_kind="namespace", imported_name="*", local_name="b", prop="foo")
    cset = generate.CandidateSet(base, budget=10)
    added = generate.repair(cset, [(diag, site), (diag, site), (diag, None)], limit=8)
    assert len(added) == 1
    cand = added[0]
    assert cand.candidate_id == "001-repair"
    assert cand.symbol_override.op == "add-export"
    assert cand.symbol_override.code == "TS2339"
    block = stubs.find_block(cand.declaration_text, "beta")
    assert "export const foo: any;" in cand.declaration_text[block.body_start : block.body_end]


def test_repair_ops_for_call_sites():
    diag = types.Diagnostic("src/a.ts", 1, 1, "TS2554", "Expected 1 arguments, but got 2.")
    named = types.ResolvedSite(module="alpha", binding_kind="named", imported_name="run", local_name="run", arity=2)
    ops = generate.repair_ops(diag, named)
    assert [(op.op, op.name, op.arity) for op in ops] == [
        ("any-overload", "run", 2),
        ("export-to-any", "run", None),
        ("add-export", "run", None),
    ]
    spread = replace(named, arity="spread")
    assert generate.repair_ops(diag, spread)[0].arity is None
    assert generate.repair_ops(diag, named, use_call_arity=False)[0].arity is None


def test_generate_orders_by_strategy_list():
    cfg = replace(config_module.SearchConfig(), strategies=("topk", "sweep"), topk=2)
    out = generate.generate(_baseline(), _ranking("alpha", "beta"), _infos(), cfg)
    assert [c.strategy for c in out] == ["any-topk", "any-module", "any-module"]
    assert [c.candidate_id for c in out] == ["001-any-topk", "002-any-module", "003-any-module"]


def test_missing_exports_adds_type_alias_for_value_only_name():
    text = "declare module 'alpha' {\n  export const Thing: any;\n}\n"
    infos = {"alpha": types.ModuleStubInfo(named_value_names={"Thing"}, named_type_names={"Thing"})}
    cset = generate.CandidateSet(generate.baseline_candidate(text), budget=10)
    added = generate.symbol_widen(cset, _ranking("alpha"), infos, "missing-exports", limit=5)
    assert [c.symbol_override.members for c in added] == [("type:Thing",)]
    assert "  export const Thing: any;\n  export type Thing = any;\n}" in added[0].declaration_text
