"""
Light Tools

Listing and state changes: power, color, brightness, toggle.
"""

import logging
from typing import Any, Callable, Dict

from lifx_mcp.client import LifxApiError
from lifx_mcp.tools.base import (
    DURATION_PROPERTY,
    SELECTOR_PROPERTY,
    Tool,
    ToolResult,
    result_count,
)
from lifx_mcp.tools.selector import groups_and_labels, not_found_message


logger = logging.getLogger(__name__)

COLOR_PROPERTY = {
    "type": "string",
    "description": 'Color name (red, blue, green, etc.), hex code (#ff0000), or formats like "kelvin:3500"',
}

BRIGHTNESS_PROPERTY = {
    "type": "number",
    "minimum": 0,
    "maximum": 1,
    "description": "Brightness level from 0.0 (off) to 1.0 (full brightness)",
}


def _summarize_light(light: Dict[str, Any]) -> Dict[str, Any]:
    color = light.get("color") or {}
    return {
        "id": light.get("id"),
        "uuid": light.get("uuid"),
        "label": light.get("label"),
        "connected": light.get("connected"),
        "power": light.get("power"),
        "color": {
            "hue": color.get("hue"),
            "saturation": color.get("saturation"),
            "brightness": light.get("brightness"),
            "kelvin": color.get("kelvin"),
        },
        "group": light.get("group"),
        "location": light.get("location"),
        "product": light.get("product"),
    }


class ListLightsTool(Tool):
    """List lights with the groups and labels usable as selectors."""

    @property
    def name(self) -> str:
        return "list_lights"

    @property
    def description(self) -> str:
        return (
            "Get information about available LIFX lights, groups, and labels. "
            "Returns detailed information to help with selector usage."
        )

    @property
    def input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "selector": dict(SELECTOR_PROPERTY, default="all"),
            },
        }

    def run(self, input: Dict[str, Any]) -> ToolResult:
        selector = input.get("selector") or "all"
        try:
            raw = self.client.list_lights(selector)
        except LifxApiError as e:
            logger.error(f"Failed to list lights: {e.message}")
            return ToolResult.fail(f"Failed to list lights: {e.message}")

        lights = [_summarize_light(light) for light in raw]
        groups, labels = groups_and_labels(raw)
        logger.debug(f"Listed {len(lights)} lights ({len(groups)} groups, {len(labels)} labels)")

        return ToolResult.ok({
            "lights": lights,
            "count": len(lights),
            "available_groups": groups,
            "available_labels": labels,
            "selector_examples": {group.lower(): f"group:{group}" for group in groups},
            "selector_help": {
                "all_lights": "all",
                "by_group": "group:GroupName (e.g., group:Bedroom)",
                "by_label": "label:LightLabel (e.g., label:Kitchen Light)",
                "by_id": "id:lightId (e.g., id:d073d58529b9)",
            },
            "message": f"Found {len(lights)} lights",
        })


class _StateTool(Tool):
    """Shared PUT /state flow with selector-aware errors."""

    action = "set light state"

    def _apply(self, selector: str, payload: Dict[str, Any], summary: Callable[[int], str]) -> ToolResult:
        try:
            response = self.client.set_state(selector, payload)
        except LifxApiError as e:
            logger.error(f"Failed to {self.action}: {e.message}")
            return ToolResult.fail(not_found_message(self.client, self.action, selector, e))

        return ToolResult.ok({
            "results": response.get("results") or [],
            "message": summary(result_count(response)),
        })


class SetLightStateTool(_StateTool):
    """Power, color, brightness and duration in one call."""

    @property
    def name(self) -> str:
        return "set_light_state"

    @property
    def description(self) -> str:
        return (
            "Control LIFX light power, color, and brightness. Use appropriate selectors "
            "based on available groups and labels from list_lights."
        )

    @property
    def input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "selector": SELECTOR_PROPERTY,
                "power": {"type": "string", "enum": ["on", "off"], "description": "Power state"},
                "color": COLOR_PROPERTY,
                "brightness": BRIGHTNESS_PROPERTY,
                "duration": DURATION_PROPERTY,
            },
            "required": ["selector"],
        }

    def run(self, input: Dict[str, Any]) -> ToolResult:
        selector = input.get("selector")
        if not selector:
            return ToolResult.fail("Selector is required")

        payload = {key: input[key] for key in ("power", "color", "brightness") if input.get(key) is not None}
        payload["duration"] = input.get("duration", 1.0)
        logger.debug(f"Setting light state for {selector}: {payload}")
        return self._apply(selector, payload, lambda count: f"Successfully updated {count} lights")


class SetBrightnessTool(_StateTool):
    action = "set brightness"

    @property
    def name(self) -> str:
        return "set_brightness"

    @property
    def description(self) -> str:
        return "Set brightness of LIFX lights. Use appropriate selectors based on available groups and labels."

    @property
    def input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "selector": SELECTOR_PROPERTY,
                "brightness": BRIGHTNESS_PROPERTY,
                "duration": DURATION_PROPERTY,
            },
            "required": ["selector", "brightness"],
        }

    def run(self, input: Dict[str, Any]) -> ToolResult:
        selector = input.get("selector")
        brightness = input.get("brightness")
        if not selector or brightness is None:
            return ToolResult.fail("Selector and brightness are required")

        payload = {"brightness": brightness, "duration": input.get("duration", 1.0)}
        percent = round(float(brightness) * 100)
        return self._apply(
            selector,
            payload,
            lambda count: f"Successfully set brightness to {percent}% for {count} lights",
        )


class SetColorTool(_StateTool):
    action = "set color"

    @property
    def name(self) -> str:
        return "set_color"

    @property
    def description(self) -> str:
        return "Set color of LIFX lights. Use appropriate selectors based on available groups and labels."

    @property
    def input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "selector": SELECTOR_PROPERTY,
                "color": COLOR_PROPERTY,
                "duration": DURATION_PROPERTY,
            },
            "required": ["selector", "color"],
        }

    def run(self, input: Dict[str, Any]) -> ToolResult:
        selector = input.get("selector")
        color = input.get("color")
        if not selector or not color:
            return ToolResult.fail("Selector and color are required")

        payload = {"color": color, "duration": input.get("duration", 1.0)}
        return self._apply(selector, payload, lambda count: f"Successfully set color to {color} for {count} lights")


class ToggleLightsTool(Tool):
    @property
    def name(self) -> str:
        return "toggle_lights"

    @property
    def description(self) -> str:
        return "Toggle LIFX lights on/off. Use appropriate selectors based on available groups and labels."

    @property
    def input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "selector": SELECTOR_PROPERTY,
                "duration": DURATION_PROPERTY,
            },
            "required": ["selector"],
        }

    def run(self, input: Dict[str, Any]) -> ToolResult:
        selector = input.get("selector")
        if not selector:
            return ToolResult.fail("Selector is required")

        try:
            response = self.client.toggle(selector, input.get("duration", 1.0))
        except LifxApiError as e:
            logger.error(f"Failed to toggle lights: {e.message}")
            return ToolResult.fail(f"Failed to toggle lights: {e.message}")

        count = result_count(response)
        return ToolResult.ok({
            "results": response.get("results") or [],
            "message": f"Successfully toggled {count} lights",
        })
