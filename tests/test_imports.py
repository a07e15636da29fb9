from pathlib import Path

from decl_search import imports

SOURCE = """
import React, { useState, type FC } from 'react';
import * as lodash from "lodash";
import type { Options } from 'opts';
import helper from './helper';
import cfg = require('legacy-config');
const chalk = require('chalk');
const { red, blue: azure } = require('colors');
const parse = require('parser').parse;
// import ignored from 'commented-out';

lodash.chunk([1, 2, 3], 2);
lodash.get(obj, 'a.b');
lodash.fp.map(fn);
React.createElement('div');
chalk.bold.red('x');
useState(0);
parse(a, b, ...rest);
"""


def test_is_external_specifier():
    assert imports.is_external_specifier("react")
    assert imports.is_external_specifier("@scope/pkg")
    for spec in ("./local", "../up", "/abs", "node:fs", "@/alias", "~/alias", "#internal", ""):
        assert not imports.is_external_specifier(spec)


def test_extract_bindings_covers_import_forms():
    bindings = imports.extract_bindings(imports.strip_comments(SOURCE))
    by_local = {b.local_name: b for b in bindings}
    assert by_local["React"].kind == "default"
    assert by_local["useState"].kind == "named"
    assert by_local["FC"].is_type_only
    assert by_local["lodash"].kind == "namespace"
    assert by_local["Options"].is_type_only
    assert by_local["helper"].module == "./helper"
    assert by_local["cfg"].kind == "require" and by_local["cfg"].imported_name == "*"
    assert by_local["chalk"].imported_name == "*"
    assert by_local["azure"].imported_name == "blue"
    assert by_local["parse"].imported_name == "parse"
    assert "ignored" not in by_local


def test_count_call_args():
    text = "f(a, [b, c], { d: 1 }, 'x,y')"
    assert imports.count_call_args(text, 1) == 4
    assert imports.count_call_args("f()", 1) == 0
    assert imports.count_call_args("f(...xs)", 1) == "spread"
    assert imports.count_call_args("f(a, (b", 1) is None


def test_extract_file_collects_members_and_arities():
    found = imports.extract_file(SOURCE)
    assert set(found.members["lodash"]) == {"chunk", "get", "fp"}
    assert found.members["lodash"]["fp"] == {"map"}
    assert found.arities["lodash"]["chunk"] == {2}
    assert found.arities["useState"][""] == {1}
    assert "parse" not in found.arities or "" not in found.arities["parse"]


def test_member_cap_limits_distinct_members():
    text = "import * as m from 'm';\n" + "\n".join(f"m.member{i}();" for i in range(10))
    found = imports.extract_file(text, max_members_per_import=3)
    assert len(found.members["m"]) == 3


def test_import_index_caches_by_path(tmp_path: Path):
    path = tmp_path / "a.ts"
    path.write_text("import x from 'x';\n")
    index = imports.ImportIndex()
    first = index.get(path)
    path.write_text("import y from 'y';\n")
    assert index.get(tmp_path / "." / "a.ts") is first
    assert len(index) == 1
    assert index.get(tmp_path / "missing.ts").bindings == []


def test_stub_info_builder_aggregates_by_module():
    builder = imports.StubInfoBuilder()
    builder.add_file(imports.extract_file(SOURCE))
    infos = builder.build()
    assert "./helper" not in infos
    assert list(infos) == sorted(infos)
    react = infos["react"]
    assert react.has_default_import
    assert react.named_value_names == {"useState"}
    assert react.named_type_names == {"FC"}
    assert react.member_accesses_by_export_name["default"] == {"createElement"}
    lodash = infos["lodash"]
    assert lodash.has_namespace_import
    assert lodash.member_accesses_by_export_name["fp"] == {"map"}
    assert lodash.call_arities_by_export_name["chunk"] == {2}
    assert infos["colors"].named_value_names == {"red", "blue"}
    assert infos["react"].call_arities_by_export_name["useState"] == {1}


def test_stub_info_builder_restricts_to_modules():
    builder = imports.StubInfoBuilder(only_external=False)
    builder.add_file(imports.extract_file(SOURCE), modules=["./helper"])
    assert list(builder.build()) == ["./helper"]


def test_import_text_inside_strings_is_not_a_binding():
    text = (
        "const help = \"usage: import x from 'evil-pkg'\";\n"
        "const tpl = `const y = require('also-evil')`;\n"
        "import real from 'real';\n"
    )
    assert [b.module for b in imports.extract_bindings(imports.strip_comments(text))] == ["real"]
    assert [b.module for b in imports.extract_bindings(text)] == ["real"]
