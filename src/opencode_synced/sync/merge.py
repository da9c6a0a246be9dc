"""Override merge engine.

Machine-local overrides are merged onto synced config after every pull
and stripped back out before every push.  The two operations satisfy::

    strip_overrides(deep_merge(base, o), o, base) == base

for any JSON-object ``base`` and ``o``, which is what keeps the mirror
copy free of machine-specific values.

JSON ``null`` is a real value here.  ``MISSING`` marks an absent value.
"""

from __future__ import annotations

import copy
import json
from typing import Any


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def same_json(left: Any, right: Any) -> bool:
    """Compare two JSON values the way they serialize.

    Plain ``==`` treats ``1``, ``1.0`` and ``True`` as equal; the
    serialized forms do not.
    """
    return json.dumps(left, sort_keys=True) == json.dumps(right, sort_keys=True)


def deep_merge(base: Any, override: Any) -> Any:
    """Merge *override* onto *base* without mutating either.

    Dicts merge key by key; lists and scalars are replaced wholesale.
    A ``MISSING`` override leaves *base* untouched.
    """
    if override is MISSING:
        return copy.deepcopy(base)
    if not isinstance(base, dict) or not isinstance(override, dict):
        return copy.deepcopy(override)

    result = copy.deepcopy(base)
    for key, value in override.items():
        if value is MISSING:
            continue
        current = result.get(key, MISSING)
        if isinstance(value, dict) and isinstance(current, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def strip_overrides(
    local: dict[str, Any],
    overrides: dict[str, Any],
    base: dict[str, Any] | None,
) -> dict[str, Any]:
    """Remove override-contributed values from *local*.

    For every key in *overrides*: when both the override and local values
    are dicts, recurse; a key emptied that way falls back to the base
    value, or is dropped when *base* has none.  Otherwise the base value
    is restored, or the key is deleted if *base* does not define it.
    """
    if not isinstance(local, dict) or not isinstance(overrides, dict):
        return local

    result = dict(local)
    for key, override_value in overrides.items():
        base_value = base.get(key, MISSING) if isinstance(base, dict) else MISSING
        current = result.get(key, MISSING)

        if isinstance(override_value, dict) and isinstance(current, dict):
            stripped = strip_overrides(
                current,
                override_value,
                base_value if isinstance(base_value, dict) else None,
            )
            if stripped or isinstance(base_value, dict):
                result[key] = stripped
            elif base_value is MISSING:
                result.pop(key, None)
            else:
                result[key] = copy.deepcopy(base_value)
            continue

        if base_value is MISSING:
            result.pop(key, None)
        else:
            result[key] = copy.deepcopy(base_value)
    return result


def apply_overrides_to_runtime_config(
    config: dict[str, Any], overrides: dict[str, Any]
) -> None:
    """Merge *overrides* into *config* in place."""
    merged = deep_merge(config, overrides)
    config.clear()
    config.update(merged)
