"""Template resolution for action parameters."""

import json
import re
from collections.abc import Mapping
from typing import Any

from fusion_automation.core.automation.facts import MISSING, resolve_fact

TOKEN_PATTERN = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")


def _stringify(value: Any) -> str:
    if value is MISSING or value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def render_template(template: str, context: Mapping[str, Any]) -> str:
    """Replace every ``{{ path }}`` token in a string.

    Missing variables render as an empty string; objects and lists render as JSON.

    Args:
        template: Template string
        context: Template context (fact map plus earlier action results)

    Returns:
        Rendered string
    """
    return TOKEN_PATTERN.sub(
        lambda match: _stringify(resolve_fact(context, match.group(1))), template
    )


def resolve_templates(params: Any, context: Mapping[str, Any]) -> Any:
    """Resolve templates in every string of a params structure.

    Args:
        params: Params dict (or nested list/str/scalar)
        context: Template context

    Returns:
        New structure with all string values rendered
    """
    if isinstance(params, str):
        return render_template(params, context)
    if isinstance(params, Mapping):
        return {key: resolve_templates(value, context) for key, value in params.items()}
    if isinstance(params, (list, tuple)):
        return [resolve_templates(item, context) for item in params]
    return params
