"""
Effect Tools

Waveform effects (breathe, pulse) on LIFX lights.
"""

import logging
from typing import Any, Dict

from lifx_mcp.client import LifxApiError
from lifx_mcp.tools.base import SELECTOR_PROPERTY, Tool, ToolResult, result_count


logger = logging.getLogger(__name__)


class _EffectTool(Tool):
    """Shared parameters and flow for waveform effects."""

    effect = ""

    @property
    def name(self) -> str:
        return f"{self.effect}_effect"

    @property
    def input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "selector": SELECTOR_PROPERTY,
                "color": {"type": "string", "description": "Target color of the effect"},
                "from_color": {
                    "type": "string",
                    "description": "Starting color (optional, uses current color if not specified)",
                },
                "period": {"type": "number", "minimum": 0.1, "description": "Seconds per cycle"},
                "cycles": {"type": "number", "minimum": 1, "description": "Number of cycles"},
                "persist": {
                    "type": "boolean",
                    "description": "Whether the light keeps the last effect color (default: false)",
                },
            },
            "required": ["selector", "color"],
        }

    def run(self, input: Dict[str, Any]) -> ToolResult:
        selector = input.get("selector")
        color = input.get("color")
        if not selector or not color:
            return ToolResult.fail("Selector and color are required")

        payload = {
            "color": color,
            "period": input.get("period", 1.0),
            "cycles": input.get("cycles", 1),
            "persist": input.get("persist", False),
        }
        if input.get("from_color"):
            payload["from_color"] = input["from_color"]

        logger.debug(f"Applying {self.effect} effect to {selector}: {payload}")
        try:
            response = self.client.effect(selector, self.effect, payload)
        except LifxApiError as e:
            logger.error(f"Failed to apply {self.effect} effect: {e.message}")
            return ToolResult.fail(f"Failed to apply {self.effect} effect: {e.message}")

        return ToolResult.ok({
            "results": response.get("results") or [],
            "message": f"Successfully applied {self.effect} effect to {result_count(response)} lights",
        })


class BreatheEffectTool(_EffectTool):
    effect = "breathe"

    @property
    def description(self) -> str:
        return "Apply breathing effect to LIFX lights. Creates a smooth fading in and out effect."


class PulseEffectTool(_EffectTool):
    effect = "pulse"

    @property
    def description(self) -> str:
        return "Apply pulse effect to LIFX lights. Creates quick flashing between colors."
