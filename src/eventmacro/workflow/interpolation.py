"""Template interpolation for workflow strings.

Supported tokens:

- ``{{name}}``   workflow variable
- ``{{@key}}``   global value; dotted paths walk nested objects (``{{@app.meta.version}}``)

Whitespace inside the braces is ignored. Unknown tokens are kept verbatim.
"""

import json
from typing import Any, Mapping

OPEN = "{{"
CLOSE = "}}"
GLOBAL_SIGIL = "@"

_MISSING = object()


def to_text(value: Any) -> str:
    """Render a JSON value as text: strings as-is, everything else compact JSON."""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def lookup_global(globals_: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path into the globals table, or return the missing sentinel."""
    segments = [seg.strip() for seg in path.split(".")]
    current = globals_.get(segments[0], _MISSING)
    for seg in segments[1:]:
        if current is _MISSING or not isinstance(current, dict):
            return _MISSING
        current = current.get(seg, _MISSING)
    return current


def _resolve(token: str, variables: Mapping[str, Any], globals_: Mapping[str, Any]) -> Any:
    if token.startswith(GLOBAL_SIGIL):
        return lookup_global(globals_, token[len(GLOBAL_SIGIL):].strip())
    return variables.get(token, _MISSING)


def interpolate(
    template: str,
    variables: Mapping[str, Any],
    globals_: Mapping[str, Any],
) -> str:
    """
    Replace ``{{...}}`` tokens in ``template``.

    Args:
        template: Raw string possibly containing tokens
        variables: Per-run variable scope
        globals_: Global table (read-only)

    Returns:
        The interpolated string. An unterminated ``{{`` copies the rest of
        the input unchanged.
    """
    out: list[str] = []
    idx = 0
    while True:
        start = template.find(OPEN, idx)
        if start < 0:
            break
        out.append(template[idx:start])

        end = template.find(CLOSE, start + len(OPEN))
        if end < 0:
            out.append(template[start:])
            idx = len(template)
            break

        original = template[start:end + len(CLOSE)]
        token = template[start + len(OPEN):end].strip()
        value = _resolve(token, variables, globals_) if token else _MISSING
        out.append(original if value is _MISSING else to_text(value))
        idx = end + len(CLOSE)

    out.append(template[idx:])
    return "".join(out)


def interpolate_value(
    value: Any,
    variables: Mapping[str, Any],
    globals_: Mapping[str, Any],
) -> Any:
    """Interpolate every string leaf of a JSON value, keeping its shape."""
    if isinstance(value, str):
        return interpolate(value, variables, globals_)
    if isinstance(value, list):
        return [interpolate_value(v, variables, globals_) for v in value]
    if isinstance(value, dict):
        return {k: interpolate_value(v, variables, globals_) for k, v in value.items()}
    return value
