# LIFX MCP Worker Package
# Run as a Tool Process: python -m lifx_mcp
