"""Configuration tools for the image optimizer MCP server"""

from typing import Any, Dict

from mcp.server.fastmcp import FastMCP


def register_configuration_tools(mcp: FastMCP, app):
    """Register configuration tools with the MCP server"""

    @mcp.tool()
    def get_settings() -> dict:
        """Get the effective optimizer settings (shop, encode policy, limits).

        Returns merged settings from all sources (runtime, config, env, hardcoded).
        The access token is masked.
        """
        return app.settings_manager.public_settings()

    @mcp.tool()
    def set_settings(settings: Dict[str, Any], persist: bool = False) -> dict:
        """Set runtime settings, e.g. {"size_threshold_kb": 300, "max_width": 1600}.

        Args:
            settings: Setting names and values
            persist: If True, also write them to ~/.config/image-optimizer-mcp/config.json
                (the access token is never persisted)

        Returns:
            Success status and any validation errors.
        """
        if app.bulk_runner.is_running:
            return {"success": False, "errors": ["Settings cannot change during a bulk run"]}

        result = app.settings_manager.set(settings)
        if "errors" in result:
            return {"success": False, "errors": result["errors"]}

        if persist:
            persist_result = app.settings_manager.persist(result["updated"])
            if "error" in persist_result:
                return {"success": False, "errors": [persist_result["error"]]}

        app.refresh()
        return {"success": True, "updated": result["updated"]}
