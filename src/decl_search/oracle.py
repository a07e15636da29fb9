"""Type-checker oracle invocation and injected declaration materialisation."""

from __future__ import annotations

import json
import os
import re
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from . import config as config_module

INJECTED_TSCONFIG = "tsconfig.__decl_search__.json"


class OracleUnavailable(RuntimeError):
    """Raised when the oracle executable cannot be started at all."""


@dataclass(frozen=True)
class OracleRun:
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool
    duration_sec: float

    @property
    def output(self) -> str:
        return f"{self.stdout}\n{self.stderr}"


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def run_oracle(command: Sequence[str], project_dir: str | Path, tsconfig: str, *, timeout_sec: float) -> OracleRun:
    """Run the checker once against *tsconfig* without emitting output."""

    cmd = [*command, "--noEmit", "--pretty", "false", "-p", tsconfig]
    env = {**os.environ, "CI": "1", "FORCE_COLOR": "0"}
    started = time.monotonic()
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(project_dir),
            capture_output=True,
            text=True,
            timeout=timeout_sec,
            env=env,
        )
    except subprocess.TimeoutExpired as exc:
        return OracleRun(-1, _decode(exc.stdout), _decode(exc.stderr), True, time.monotonic() - started)
    except (FileNotFoundError, PermissionError) as exc:
        raise OracleUnavailable(f"cannot start oracle {cmd[0]!r}: {exc}") from exc
    return OracleRun(proc.returncode, proc.stdout, proc.stderr, False, time.monotonic() - started)


def strip_jsonc(text: str) -> str:
    out = re.sub(r"/\*[\s\S]*?\*/", "", text)
    out = re.sub(r"(^|\s)//.*$", r"\1", out, flags=re.MULTILINE)
    return re.sub(r",\s*([}\]])", r"\1", out)


def read_tsconfig_types(project_dir: str | Path, tsconfig: str = "tsconfig.json") -> Optional[List[str]]:
    """``compilerOptions.types`` of the project config, or ``None`` when unset or unreadable."""

    path = Path(project_dir) / tsconfig
    try:
        data = json.loads(strip_jsonc(path.read_text(encoding="utf-8")))
    except (OSError, ValueError):
        return None
    types_field = (data.get("compilerOptions") or {}).get("types") if isinstance(data, dict) else None
    if isinstance(types_field, list):
        return [item for item in types_field if isinstance(item, str)]
    return None


@dataclass(frozen=True)
class InjectedConfig:
    tsconfig_path: Path
    declaration_path: Path
    original_types_count: int
    injected_types_count: int


def write_injected_tsconfig(project_dir: str | Path, cfg: config_module.OracleConfig) -> InjectedConfig:
    """Derive a config that extends the project's and puts the injected type root first."""

    root = Path(project_dir)
    original = read_tsconfig_types(root, cfg.tsconfig)
    compiler_options: dict = {"typeRoots": [f"./{cfg.types_dir}", "./node_modules/@types"]}
    injected_types: Optional[List[str]] = None
    if original is not None:
        injected_types = list(dict.fromkeys([*original, cfg.package_name]))
        compiler_options["types"] = injected_types
    payload = {"extends": f"./{cfg.tsconfig}", "compilerOptions": compiler_options}
    tsconfig_path = root / INJECTED_TSCONFIG
    tsconfig_path.write_text(json.dumps(payload, indent=2) + "\n")
    return InjectedConfig(
        tsconfig_path=tsconfig_path,
        declaration_path=declaration_path(root, cfg),
        original_types_count=len(original or []),
        injected_types_count=len(injected_types or []),
    )


def declaration_path(project_dir: str | Path, cfg: config_module.OracleConfig) -> Path:
    return Path(project_dir) / cfg.types_dir / cfg.package_name / "index.d.ts"


def write_declarations(project_dir: str | Path, cfg: config_module.OracleConfig, text: str) -> Path:
    """Overwrite the single injected declaration file for this project."""

    path = declaration_path(project_dir, cfg)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def cleanup(project_dir: str | Path, cfg: config_module.OracleConfig) -> None:
    """Remove everything the search injected into the project."""

    root = Path(project_dir)
    (root / INJECTED_TSCONFIG).unlink(missing_ok=True)
    types_root = root / cfg.types_dir
    shutil.rmtree(types_root / cfg.package_name, ignore_errors=True)
    # Drop now-empty parents we created (e.g. ".decl-search/@types").
    for parent in [types_root, *types_root.relative_to(root).parents]:
        target = root / parent
        if target == root:
            break
        try:
            target.rmdir()
        except OSError:
            break
