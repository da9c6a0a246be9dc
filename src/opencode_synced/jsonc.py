"""JSON-with-comments support.

The sync config and overrides files are JSONC: ``//`` and ``/* */``
comments plus trailing commas are allowed.  ``strip_jsonc`` is a pure
text-to-text transform that removes both, after which the standard
``json`` parser takes over.  Everything inside string literals is left
untouched, including comment markers and escaped quotes.

Writers live here too so every persisted JSON document goes through one
atomic write path.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

JSONC_HEADER = "// Generated by opencode-synced\n"


def strip_comments(text: str) -> str:
    """Remove ``//`` line comments and ``/* */`` block comments.

    Newlines that terminate a line comment are kept so line numbers in
    parse errors stay meaningful.  An unterminated block comment swallows
    the rest of the input; an unterminated string is copied through as-is
    and left for the JSON parser to reject.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        nxt = text[i + 1] if i + 1 < n else ""
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif ch == "/" and nxt == "/":
            end = text.find("\n", i + 2)
            if end == -1:
                break
            i = end
        elif ch == "/" and nxt == "*":
            end = text.find("*/", i + 2)
            if end == -1:
                break
            i = end + 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def strip_trailing_commas(text: str) -> str:
    """Drop commas whose next non-whitespace character is ``}`` or ``]``."""
    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in "}]":
                i += 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def strip_jsonc(text: str) -> str:
    """Turn JSONC text into strict JSON text."""
    return strip_trailing_commas(strip_comments(text))


def parse_jsonc(text: str) -> Any:
    """Parse JSONC text.

    Raises:
        json.JSONDecodeError: If the text is not valid once comments and
            trailing commas are removed.
    """
    return json.loads(strip_jsonc(text.lstrip("\ufeff")))


def read_jsonc_file(path: Path) -> Any:
    """Read and parse a JSONC file."""
    return parse_jsonc(path.read_text(encoding="utf-8"))


def dump_json(data: Any, *, jsonc: bool = False) -> str:
    """Serialise *data* the way every sync file is written.

    Two-space indentation, a trailing newline, and for JSONC targets a
    one-line generated-by header.
    """
    body = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    return JSONC_HEADER + body if jsonc else body


def write_json_file(
    path: Path,
    data: Any,
    *,
    jsonc: bool = False,
    mode: int | None = None,
) -> None:
    """Write *data* to *path* atomically.

    Writes to a temp file in the target directory and then
    ``os.replace()``s it so readers never see a partial document.
    Parent directories are created as needed.

    Args:
        path: Destination file.
        data: JSON-serialisable value.
        jsonc: Prefix the generated-by comment header.
        mode: Permission bits to apply to the final file.  When omitted,
            an existing file keeps its bits and a new file gets 0644.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if mode is None:
        try:
            mode = path.stat().st_mode & 0o777
        except FileNotFoundError:
            mode = 0o644

    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(dump_json(data, jsonc=jsonc))
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
