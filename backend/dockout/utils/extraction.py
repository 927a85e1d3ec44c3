"""Ordered field-path lookup used wherever an upstream payload shape drifts."""
import json
import re
from typing import Any, Iterable, Optional, Sequence, Tuple

Path = Tuple[str, ...]

_XML_MESSAGE = re.compile(r"<message[^>]*>([^<]+)</message>")


def dig(data: Any, path: Sequence[str]) -> Any:
    current = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def first_present(data: Any, paths: Iterable[Path]) -> Optional[Any]:
    """Return the value of the first path that resolves to a non-empty value."""
    for path in paths:
        value = dig(data, path)
        if value not in (None, ""):
            return value
    return None


def sap_error_reason(text: str) -> Optional[str]:
    """Message of an OData error body, JSON (``error.message.value``) or XML ``<message>``."""
    try:
        parsed = json.loads(text) if text else None
    except ValueError:
        parsed = None

    if parsed is not None:
        value = dig(parsed, ("error", "message", "value"))
        return str(value) if value else None

    match = _XML_MESSAGE.search(text or "")
    return match.group(1) if match else None
