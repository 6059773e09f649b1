"""Classification of workflow values as remote resource references."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit

_REMOTE_SCHEMES = frozenset({"http", "https"})


def is_remote_url(value: Any) -> bool:
    """Return ``True`` if *value* is an absolute ``http``/``https`` URL.

    Anything that is not a string, fails to parse, has another scheme, or
    has no host is treated as a literal value.  Never raises.

    Args:
        value: Candidate workflow value.

    Returns:
        Whether the value should be staged as a remote asset.
    """
    if not isinstance(value, str):
        return False
    try:
        parts = urlsplit(value)
        host = parts.hostname
    except ValueError:
        return False
    return parts.scheme.lower() in _REMOTE_SCHEMES and bool(host)
