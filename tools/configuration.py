"""Configuration tools for the WebP converter server"""

from typing import Any, Dict

from mcp.server.fastmcp import FastMCP


def register_configuration_tools(
    mcp: FastMCP,
    conversion_manager,
    defaults_manager
):
    """Register configuration tools with the MCP server"""

    @mcp.tool()
    def get_defaults() -> dict:
        """Get the effective conversion settings.

        Returns merged settings from all sources (runtime, config, env, hardcoded):
        jpeg_quality, default_quality, max_image_dimension and method.
        """
        return defaults_manager.get_all_defaults()

    @mcp.tool()
    def set_defaults(conversion: Dict[str, Any], persist: bool = False) -> dict:
        """Set runtime conversion settings.

        Args:
            conversion: Dict of settings, e.g. {"jpeg_quality": 85, "max_image_dimension": 4000}
            persist: If True, also write them to ~/.config/webp-converter/config.json.
                Otherwise, changes are ephemeral.

        Returns:
            Success status and any validation errors. Nothing is applied when
            validation or persisting fails.
        """
        if persist:
            persist_result = defaults_manager.persist_defaults(conversion)
            if "errors" in persist_result:
                return {"success": False, "errors": persist_result["errors"]}
            if "error" in persist_result:
                return {"success": False, "errors": [f"Failed to persist defaults: {persist_result['error']}"]}

        result = defaults_manager.set_defaults(conversion)
        if "errors" in result:
            return {"success": False, "errors": result["errors"]}

        conversion_manager.settings = defaults_manager.get_settings()
        return {"success": True, "updated": result["updated"]}
