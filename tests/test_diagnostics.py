from decl_search import config as config_module, diagnostics

OUTPUT = """src/index.ts(3,15): error TS2307: Cannot find module 'left-pad' or its corresponding type declarations.
src/index.ts(7,5): error TS2339: Property 'foo' does not exist on type 'typeof import("lib")'.
src\\util.ts(1,1): error TS2307: Cannot find module 'chalk'.
error TS5083: Cannot read file '/tmp/tsconfig.base.json'.
Found 4 errors in 2 files.
  continuation line that is not a diagnostic
"""


def test_parse_diagnostics_reads_grammar_and_skips_noise():
    diags = diagnostics.parse_diagnostics(OUTPUT)
    assert [d.code for d in diags] == ["TS2307", "TS2339", "TS2307", "TS5083"]
    first = diags[0]
    assert (first.file, first.line, first.col) == ("src/index.ts", 3, 15)
    assert diags[2].file == "src/util.ts"
    assert diags[3].file == "" and diags[3].line == 0


def test_count_codes_orders_by_frequency_then_code():
    counts = diagnostics.count_codes(diagnostics.parse_diagnostics(OUTPUT))
    assert list(counts.items()) == [("TS2307", 2), ("TS2339", 1), ("TS5083", 1)]


def test_core_count_and_parser_detection():
    cfg = config_module.OracleConfig()
    diags = diagnostics.parse_diagnostics(OUTPUT)
    counts = diagnostics.count_codes(diags)
    assert diagnostics.core_count(counts, cfg.core_codes) == 3
    assert len(diagnostics.core_diagnostics(diags, cfg.core_codes)) == 3
    assert not diagnostics.has_parser_codes(diags, cfg.parser_codes)
    broken = diagnostics.parse_diagnostics("x.d.ts(1,1): error TS1005: ';' expected.")
    assert diagnostics.has_parser_codes(broken, cfg.parser_codes)


def test_delta_counts_omits_unchanged_codes():
    delta = diagnostics.delta_counts({"TS2307": 1, "TS2339": 2}, {"TS2307": 3, "TS2339": 2, "TS2345": 1})
    assert delta == {"TS2307": -2, "TS2345": -1}
