"""
Selector Helpers

Maps free-text room and light names to LIFX selectors, and turns
"selector not found" failures into errors that list what does exist.
"""

import logging
from typing import Any, Dict, List, Tuple

from lifx_mcp.client import LifxApiError, LifxClient
from lifx_mcp.tools.base import Tool, ToolResult


logger = logging.getLogger(__name__)


def _unique(values: List[Any]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return list(seen)


def groups_and_labels(lights: List[Dict[str, Any]]) -> Tuple[List[str], List[str]]:
    """Distinct group names and light labels, in first-seen order."""
    groups = _unique([(light.get("group") or {}).get("name") for light in lights])
    labels = _unique([light.get("label") for light in lights])
    return groups, labels


def not_found_message(client: LifxClient, action: str, selector: str, error: LifxApiError) -> str:
    """
    Build the error text for a failed state change.

    A 404 is enriched with the available groups and labels; if listing
    them fails too, the original API error is reported.
    """
    if not error.not_found:
        return f"Failed to {action}: {error.message}"
    try:
        groups, labels = groups_and_labels(client.list_lights("all"))
    except LifxApiError:
        return f"Failed to {action}: {error.message}"
    return (
        f'Failed to {action}: Could not find light with selector "{selector}". '
        f"Available groups: [{', '.join(groups)}]. "
        f"Available labels: [{', '.join(labels)}]. "
        f'Try using "group:GroupName" or "label:LightLabel" format.'
    )


def match_names(name: str, groups: List[str], labels: List[str]) -> List[Dict[str, str]]:
    """
    Case-insensitive matches of a name against groups and labels.

    Exact matches sort before partial ones; groups before labels within a tier.
    """
    wanted = name.lower()
    suggestions = []
    for kind, candidates in (("group", groups), ("label", labels)):
        for candidate in candidates:
            lowered = candidate.lower()
            if lowered == wanted or wanted in lowered:
                suggestions.append({
                    "type": kind,
                    "selector": f"{kind}:{candidate}",
                    "display_name": candidate,
                    "match_type": "exact" if lowered == wanted else "partial",
                })
    # Stable sort keeps group-before-label inside each tier
    suggestions.sort(key=lambda s: s["match_type"] != "exact")
    return suggestions


class ResolveSelectorTool(Tool):
    """Resolve an ambiguous room or light name to a selector."""

    @property
    def name(self) -> str:
        return "resolve_selector"

    @property
    def description(self) -> str:
        return (
            "Helper tool to resolve ambiguous room/light names to proper LIFX selectors. "
            "Use this when users mention room names that might be groups or labels."
        )

    @property
    def input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "name": {
                    "type": "string",
                    "description": 'The room or light name to resolve (e.g., "bedroom", "kitchen")',
                },
            },
            "required": ["name"],
        }

    def run(self, input: Dict[str, Any]) -> ToolResult:
        name = str(input.get("name") or "").strip()
        if not name:
            return ToolResult.fail("Name parameter is required")

        try:
            lights = self.client.list_lights("all")
        except LifxApiError as e:
            logger.error(f"Failed to resolve selector: {e.message}")
            return ToolResult.fail(f"Failed to resolve selector: {e.message}")

        groups, labels = groups_and_labels(lights)
        suggestions = match_names(name, groups, labels)
        logger.debug(f"Resolved {len(suggestions)} selector suggestions for {name!r}")

        if suggestions:
            help_text = None
            message = f'Best match for "{name}" is {suggestions[0]["selector"]}'
        else:
            help_text = (
                f'No matches found for "{name}". '
                f"Available groups: [{', '.join(groups)}]. "
                f"Available labels: [{', '.join(labels)}]."
            )
            message = help_text

        return ToolResult.ok({
            "query": name,
            "suggestions": suggestions,
            "available_groups": groups,
            "available_labels": labels,
            "recommendation": suggestions[0]["selector"] if suggestions else None,
            "help": help_text,
            "message": message,
        })
