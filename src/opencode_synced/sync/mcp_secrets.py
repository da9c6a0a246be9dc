"""Embedded MCP secret extraction.

OpenCode configs often carry credentials inline, in
``mcp.<server>.environment`` and ``mcp.<server>.headers``.  Before a
config file is pushed, values that look sensitive are lifted out into an
overrides fragment, which is merged into the machine-local overrides
document instead of the mirror.

The heuristic is conservative: a value is only treated as a secret when
its key names a credential or the value itself has a well-known token
shape.  Substitution placeholders such as ``{env:GITHUB_TOKEN}`` are left
in place since they carry no secret.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from typing import Any

from .merge import deep_merge

SECRET_CONTAINERS = ("environment", "headers")

_SENSITIVE_KEY = re.compile(
    r"(token|secret|passw(or)?d|api[_-]?key|apikey|auth|credential|"
    r"private[_-]?key|bearer|session|cookie)",
    re.IGNORECASE,
)
_TOKEN_SHAPES = (
    re.compile(r"^(Bearer|Basic)\s+\S{8,}$", re.IGNORECASE),
    re.compile(r"^sk-[A-Za-z0-9_-]{16,}$"),
    re.compile(r"^gh[pousr]_[A-Za-z0-9]{20,}$"),
    re.compile(r"^github_pat_[A-Za-z0-9_]{20,}$"),
    re.compile(r"^xox[abprs]-[A-Za-z0-9-]{10,}$"),
    re.compile(r"^AKIA[0-9A-Z]{16}$"),
)
_PLACEHOLDER = re.compile(r"^(\{env:[^}]+\}|\{file:[^}]+\}|\$\{?[A-Za-z_][A-Za-z0-9_]*\}?)$")


def looks_sensitive(key: str, value: Any) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    if _PLACEHOLDER.match(value.strip()):
        return False
    if _SENSITIVE_KEY.search(key):
        return True
    return any(pattern.match(value.strip()) for pattern in _TOKEN_SHAPES)


@dataclass
class McpSecretExtraction:
    """Result of scanning one config document.

    Attributes:
        sanitized_config: Deep copy with sensitive values removed.
        secret_overrides: Overrides fragment holding exactly those values.
    """

    sanitized_config: dict[str, Any]
    secret_overrides: dict[str, Any] = field(default_factory=dict)


def extract_mcp_secrets(config: dict[str, Any]) -> McpSecretExtraction:
    sanitized = copy.deepcopy(config)
    secrets: dict[str, Any] = {}

    servers = sanitized.get("mcp")
    if not isinstance(servers, dict):
        return McpSecretExtraction(sanitized_config=sanitized)

    for server_name, server in servers.items():
        if not isinstance(server, dict):
            continue
        for container in SECRET_CONTAINERS:
            values = server.get(container)
            if not isinstance(values, dict):
                continue
            for key in list(values):
                if not looks_sensitive(key, values[key]):
                    continue
                (
                    secrets.setdefault("mcp", {})
                    .setdefault(server_name, {})
                    .setdefault(container, {})
                )[key] = values.pop(key)

    return McpSecretExtraction(sanitized_config=sanitized, secret_overrides=secrets)


def has_overrides(overrides: dict[str, Any] | None) -> bool:
    return bool(overrides)


def merge_overrides(
    base: dict[str, Any], extra: dict[str, Any]
) -> dict[str, Any]:
    return deep_merge(base, extra)


def strip_override_keys(
    overrides: dict[str, Any], keys: dict[str, Any]
) -> dict[str, Any]:
    """Return *overrides* minus every leaf path present in *keys*.

    Dicts left empty by the removal are pruned.
    """
    result: dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in keys:
            result[key] = copy.deepcopy(value)
            continue
        marker = keys[key]
        if isinstance(value, dict) and isinstance(marker, dict):
            remaining = strip_override_keys(value, marker)
            if remaining:
                result[key] = remaining
    return result
