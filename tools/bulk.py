"""Bulk optimize/restore tools for the image optimizer MCP server"""

import logging

from mcp.server.fastmcp import FastMCP

from models.bulk import BulkMode

logger = logging.getLogger("ImageOptimizer")


def register_bulk_tools(mcp: FastMCP, app):
    """Register bulk run tools with the MCP server"""

    def _start(mode: BulkMode) -> dict:
        runner = app.bulk_runner
        if runner.is_running:
            return {"error": "A bulk run is already in progress", **runner.status()}

        view = runner.snapshot()
        if mode is BulkMode.OPTIMIZE:
            items = [c for c in view if not c.optimized]
            empty_message = "All images are already optimized!"
        else:
            items = [c for c in view if c.optimized]
            empty_message = "No optimized images to restore!"
        if not items:
            return {"started": False, "message": empty_message}

        credentials = app.credentials
        if not credentials.is_valid:
            return {"error": "Invalid session: shop domain and access token are required"}

        runner.engine = app.build_engine()
        runner.start(credentials, items, mode)
        verb = "Starting optimization for" if mode is BulkMode.OPTIMIZE else "Restoring"
        return {"started": True, "total": len(items), "message": f"{verb} {len(items)} images..."}

    @mcp.tool()
    def start_bulk_optimize() -> dict:
        """Optimize every pending image from the last scan, one at a time, in the background.

        Poll bulk_status for progress; call stop_bulk to stop after the current image.
        """
        return _start(BulkMode.OPTIMIZE)

    @mcp.tool()
    def start_bulk_restore() -> dict:
        """Restore every optimized image from the last scan, one at a time, in the background."""
        return _start(BulkMode.RESTORE)

    @mcp.tool()
    def bulk_status() -> dict:
        """Progress of the current bulk run, or the summary of the last one."""
        return app.bulk_runner.status()

    @mcp.tool()
    def stop_bulk() -> dict:
        """Stop the current bulk run once its in-flight image finishes."""
        if not app.bulk_runner.stop():
            return {"stopped": False, "message": "No bulk run in progress"}
        return {"stopped": True, "message": "Stopping bulk process..."}
