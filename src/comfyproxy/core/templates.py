"""Workflow template resolution.

A workflow template is an engine workflow (any JSON tree) containing
``{{identifier}}`` placeholders.  Resolution works on the serialized JSON
text rather than walking the tree, so placeholders are found at any depth,
inside keys as well as values, and even in unquoted positions when the
template is supplied as raw JSON text::

    >>> resolve_template('{"prompt": "{{p}}", "seed": {{s}}}', {"p": "cat", "s": "42"})
    {'prompt': 'cat', 'seed': 42}

Rules
-----
- Identifiers are word characters only (``\\w+``).
- A placeholder whose identifier is not in the value map is left as-is.
- Values missing from the template are ignored.
- String values are escaped for a JSON string context before substitution,
  so quotes and backslashes cannot break out of the enclosing string.
  Non-string scalars are rendered as JSON literals (``42``, ``true``).
- If the substituted text no longer parses, :class:`TemplateError` is raised.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from comfyproxy.core.errors import TemplateError

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def serialize_template(template: Any) -> str:
    """Return the JSON text of *template*.

    Strings are taken to already be JSON text; anything else is dumped.
    """
    if isinstance(template, str):
        return template
    return json.dumps(template, ensure_ascii=False)


def render_value(value: Any) -> str:
    """Return the text substituted for a placeholder bound to *value*."""
    if isinstance(value, str):
        # Strip the surrounding quotes, keep the escapes.
        return json.dumps(value, ensure_ascii=False)[1:-1]
    return json.dumps(value)


def find_placeholders(template: Any) -> set[str]:
    """Return the set of placeholder identifiers present in *template*."""
    return set(PLACEHOLDER_PATTERN.findall(serialize_template(template)))


def resolve_template(template: Any, values: Mapping[str, Any]) -> Any:
    """Substitute *values* into *template* and return the parsed result.

    Args:
        template: Workflow structure, or its JSON text.
        values: Placeholder identifier → value.  Remote URLs must already
            have been staged.

    Returns:
        The resolved workflow structure.

    Raises:
        TemplateError: If the substituted text is not valid JSON.
    """
    rendered = {key: render_value(value) for key, value in values.items()}

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key in rendered:
            return rendered[key]
        return match.group(0)

    text = PLACEHOLDER_PATTERN.sub(_replace, serialize_template(template))
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise TemplateError(f"Resolved workflow is not valid JSON: {exc}") from exc
