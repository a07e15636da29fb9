from pathlib import Path

import pytest

from decl_search import config as config_module


def test_load_missing_file_returns_defaults(tmp_path: Path):
    cfg = config_module.Config.load(tmp_path / "absent.yaml")
    assert cfg == config_module.Config.default()
    assert cfg.search.trial_max == 20
    assert cfg.oracle.command == ("tsc",)
    assert "TS2307" in cfg.oracle.core_codes
    assert cfg.localize.top_m is None


def test_load_yaml_sections_and_ignore_unknown_keys(tmp_path: Path):
    path = tmp_path / "decl-search.yaml"
    path.write_text(
        """
oracle:
  command: [npx, tsc]
  timeout_sec: 30
search:
  trial_max: 5
  strategies: [sweep, repair]
  symbol_mode: export-to-any
  mystery: 1
localize:
  mode: per-error
  top_m: 4
baseline:
  source: adapter
  adapter_command: [node, adapter.js]
"""
    )
    cfg = config_module.Config.load(path)
    assert cfg.oracle.command == ("npx", "tsc")
    assert cfg.search.strategies == ("sweep", "repair")
    assert cfg.search.symbol_mode == "export-to-any"
    assert cfg.localize.mode == "per-error" and cfg.localize.top_m == 4
    assert cfg.baseline.adapter_command == ("node", "adapter.js")


@pytest.mark.parametrize(
    "data",
    [
        {"localize": {"mode": "everything"}},
        {"search": {"sweep_k": 3}},
        {"search": {"symbol_mode": "bogus"}},
        {"search": {"strategies": ["sweep", "magic"]}},
        {"search": {"trial_max": 0}},
        {"resolver": {"backend": "psychic"}},
        {"baseline": {"source": "oracle"}},
        {"search": ["not", "a", "mapping"]},
    ],
)
def test_invalid_configuration_raises(data):
    with pytest.raises(ValueError):
        config_module.Config.from_dict(data)


def test_non_mapping_top_level_raises(tmp_path: Path):
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        config_module.Config.load(path)
