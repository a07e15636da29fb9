"""External baseline source: a command that writes declarations for a project."""

from __future__ import annotations

import json
import subprocess
from dataclasses import asdict
from typing import Any, Dict, Mapping, Sequence

from . import types


class AdapterError(RuntimeError):
    """The adapter could not produce a usable baseline; ``reason`` is the skip reason."""

    def __init__(self, reason: str, detail: str = ""):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason
        self.detail = detail


def request_payload(project_dir: str, infos: Mapping[str, types.ModuleStubInfo]) -> Dict[str, Any]:
    modules = []
    for module, info in sorted(infos.items()):
        data = asdict(info)
        modules.append(
            {
                "module": module,
                "hasDefaultImport": data["has_default_import"],
                "hasNamespaceImport": data["has_namespace_import"],
                "namedValueNames": sorted(data["named_value_names"]),
                "namedTypeNames": sorted(data["named_type_names"]),
                "memberAccesses": {k: sorted(v) for k, v in sorted(data["member_accesses_by_export_name"].items())},
                "callArities": {k: sorted(v) for k, v in sorted(data["call_arities_by_export_name"].items())},
            }
        )
    return {"project": project_dir, "modules": modules}


def run_adapter(
    command: Sequence[str],
    payload: Mapping[str, Any],
    *,
    timeout_sec: float,
    cwd: str | None = None,
) -> str:
    """Send *payload* on stdin and return the ``dts`` text of a ``{ok: true}`` reply."""

    if not command:
        raise AdapterError("adapter-failed", "no adapter command configured")
    try:
        proc = subprocess.run(
            list(command),
            cwd=cwd,
            input=json.dumps(payload),
            capture_output=True,
            text=True,
            timeout=timeout_sec,
        )
    except subprocess.TimeoutExpired as exc:
        raise AdapterError("adapter-timeout", f"no reply within {timeout_sec}s") from exc
    except OSError as exc:
        raise AdapterError("adapter-failed", str(exc)) from exc
    if proc.returncode != 0:
        raise AdapterError("adapter-failed", f"exit {proc.returncode}: {proc.stderr.strip()[:500]}")
    try:
        reply = json.loads(proc.stdout or "")
    except json.JSONDecodeError as exc:
        raise AdapterError("adapter-invalid-output", f"non-JSON reply: {exc}") from exc
    if not isinstance(reply, dict) or not reply.get("ok"):
        raise AdapterError("adapter-invalid-output", str(reply.get("error") if isinstance(reply, dict) else reply))
    dts = reply.get("dts")
    if not isinstance(dts, str) or not dts.strip():
        raise AdapterError("adapter-invalid-output", "reply has no dts text")
    return dts if dts.endswith("\n") else dts + "\n"
