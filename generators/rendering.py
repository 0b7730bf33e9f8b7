"""Shared Jinja2 environment and literal formatting for Bicep / HCL text."""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Declared by every module itself; never taken from configuration
RESERVED_PARAMS = frozenset({"name", "location", "tags", "resourceGroupName"})


def template_environment(base_dir: str | Path) -> Environment:
    """Jinja2 environment for infrastructure text.

    Autoescape is limited to html/xml so Bicep and HCL are emitted
    verbatim; undefined variables raise instead of rendering empty.
    """
    env = Environment(
        loader=FileSystemLoader(str(base_dir)),
        autoescape=select_autoescape(["html", "xml"]),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["bicep"] = bicep_literal
    env.filters["hcl"] = hcl_literal
    env.filters["snake"] = snake_case
    env.filters["ident"] = identifier
    return env


# ── Naming ────────────────────────────────────────────────────────

def snake_case(name: str) -> str:
    """``vaultUri`` → ``vault_uri``; ``kv1-private-endpoint`` → ``kv1_private_endpoint``."""
    s = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", str(name))
    s = re.sub(r"[^A-Za-z0-9_]", "_", s)
    return s.lower()


def identifier(name: str) -> str:
    """Symbolic name safe for a Bicep module / Terraform block label."""
    s = re.sub(r"[^A-Za-z0-9_]", "_", str(name))
    if not s or s[0].isdigit():
        s = f"m_{s}"
    return s


# ── Literals ──────────────────────────────────────────────────────

def bicep_type(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "string"


def hcl_type(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, list):
        return "list(any)"
    if isinstance(value, dict):
        return "any"
    return "string"


def bicep_literal(value: Any, indent: int = 0) -> str:
    pad = "  " * indent
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, list):
        if not value:
            return "[]"
        items = "\n".join(f"{pad}  {bicep_literal(v, indent + 1)}" for v in value)
        return f"[\n{items}\n{pad}]"
    if isinstance(value, dict):
        if not value:
            return "{}"
        lines = []
        for key, v in value.items():
            label = key if _IDENT_RE.match(str(key)) else bicep_literal(str(key))
            lines.append(f"{pad}  {label}: {bicep_literal(v, indent + 1)}")
        return "{\n" + "\n".join(lines) + f"\n{pad}}}"
    # Bicep has no float literal; anything else is emitted as a string
    text = str(value).replace("\\", "\\\\").replace("'", "\\'").replace("${", "\\${")
    return f"'{text}'"


def hcl_literal(value: Any, indent: int = 0) -> str:
    pad = "  " * indent
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return json.dumps(value)
    if isinstance(value, list):
        return "[" + ", ".join(hcl_literal(v, indent) for v in value) + "]"
    if isinstance(value, dict):
        if not value:
            return "{}"
        lines = []
        for key, v in value.items():
            label = key if _IDENT_RE.match(str(key)) else json.dumps(str(key))
            lines.append(f"{pad}  {label} = {hcl_literal(v, indent + 1)}")
        return "{\n" + "\n".join(lines) + f"\n{pad}}}"
    return json.dumps(str(value)).replace("${", "$${").replace("%{", "%%{")


def module_params(configuration: dict[str, Any]) -> list[dict[str, str]]:
    """Configuration keys as typed module parameters, in declaration order."""
    params = []
    for key, value in configuration.items():
        if key in RESERVED_PARAMS:
            continue
        params.append({
            "key": key,
            "bicep_name": identifier(key),
            "bicep_type": bicep_type(value),
            "tf_name": snake_case(key),
            "tf_type": hcl_type(value),
        })
    return params
