import sys

import pytest

from decl_search import adapter, types

ECHO = (
    "import json, sys\n"
    "req = json.load(sys.stdin)\n"
    "mods = [m['module'] for m in req['modules']]\n"
    "print(json.dumps({'ok': True, 'dts': ''.join(\"declare module '%s';\\n\" % m for m in mods)}))\n"
)


def _infos():
    return {
        "lib": types.ModuleStubInfo(has_default_import=True, named_value_names={"b", "a"}, call_arities_by_export_name={"a": {2}}),
    }


def test_request_payload_is_sorted_json_friendly():
    payload = adapter.request_payload("/proj", _infos())
    assert payload["project"] == "/proj"
    module = payload["modules"][0]
    assert module["module"] == "lib"
    assert module["namedValueNames"] == ["a", "b"]
    assert module["callArities"] == {"a": [2]}


def test_run_adapter_returns_dts():
    dts = adapter.run_adapter([sys.executable, "-c", ECHO], adapter.request_payload("/proj", _infos()), timeout_sec=30)
    assert dts == "declare module 'lib';\n"


@pytest.mark.parametrize(
    "script,reason",
    [
        ("print('not json')", "adapter-invalid-output"),
        ("import json; print(json.dumps({'ok': False, 'error': 'boom'}))", "adapter-invalid-output"),
        ("import json; print(json.dumps({'ok': True, 'dts': ''}))", "adapter-invalid-output"),
        ("import sys; sys.exit(3)", "adapter-failed"),
        ("import time; time.sleep(10)", "adapter-timeout"),
    ],
)
def test_run_adapter_failures_carry_skip_reason(script: str, reason: str):
    with pytest.raises(adapter.AdapterError) as excinfo:
        adapter.run_adapter([sys.executable, "-c", script], {"project": "/p", "modules": []}, timeout_sec=2)
    assert excinfo.value.reason == reason


def test_run_adapter_without_command():
    with pytest.raises(adapter.AdapterError) as excinfo:
        adapter.run_adapter([], {}, timeout_sec=1)
    assert excinfo.value.reason == "adapter-failed"
