from decl_search import stubs, types


def _infos():
    return {
        "zeta": types.ModuleStubInfo(has_default_import=True),
        "alpha": types.ModuleStubInfo(
            named_value_names={"run", "default", "__any", "Thing"},
            named_type_names={"Thing", "Opts"},
        ),
        "it's": types.ModuleStubInfo(),
    }


def test_module_block_layout():
    block = stubs.module_block("alpha", _infos()["alpha"])
    assert block == (
        "declare module 'alpha' {\n"
        "  export const __any: any;\n"
        "  export const Thing: any;\n"
        "  export const run: any;\n"
        "  export type Opts = any;\n"
        "  export type Thing = any;\n"
        "}\n"
    )
    default_block = stubs.module_block("zeta", _infos()["zeta"])
    assert "  const __default: any;\n  export default __default;\n" in default_block


def test_build_baseline_is_deterministic_and_sorted():
    infos = _infos()
    text = stubs.build_baseline(infos, ["zeta", "alpha", "it's", "unknown"])
    assert text == stubs.build_baseline(dict(reversed(list(infos.items()))), ["alpha", "it's", "zeta"])
    assert text.startswith(stubs.HEADER)
    assert text.index("'alpha'") < text.index("'it\\'s'") < text.index("'zeta'")
    assert "unknown" not in text


def test_split_blocks_and_replace_block():
    text = stubs.build_baseline(_infos(), ["alpha", "zeta", "it's"])
    blocks = stubs.split_blocks(text)
    assert [b.module for b in blocks] == ["alpha", "it's", "zeta"]
    assert all(not b.shorthand for b in blocks)
    assert text[blocks[0].body_end] == "}"

    swapped = stubs.replace_block(text, "alpha", stubs.any_module_block("alpha"))
    alpha = stubs.find_block(swapped, "alpha")
    assert alpha is not None and alpha.shorthand
    assert "export const run" not in swapped
    appended = stubs.replace_block(swapped, "new-mod", stubs.any_module_block("new-mod"))
    assert appended.endswith("declare module 'new-mod';\n")


def test_declaration_count_counts_exports_and_shorthand_modules():
    text = stubs.build_baseline(_infos(), ["alpha", "zeta"])
    assert stubs.declaration_count(text) == 4 + 2
    swapped = stubs.replace_block(text, "alpha", stubs.any_module_block("alpha"))
    assert stubs.declaration_count(swapped) == 2 + 1


def test_declarable_rejects_reserved_and_invalid_names():
    assert stubs.declarable("run")
    assert not stubs.declarable("default")
    assert not stubs.declarable("my-name")
