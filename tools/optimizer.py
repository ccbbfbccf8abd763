"""Scan, optimize and restore tools for the image optimizer MCP server"""

import logging
from dataclasses import asdict
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from errors import OptimizerError
from managers.bulk_runner import optimized_entry, restored_entry
from managers.catalog_scanner import filter_candidates, paginate, summarize
from models.asset import Candidate

logger = logging.getLogger("ImageOptimizer")


def register_optimizer_tools(mcp: FastMCP, app):
    """Register scan/optimize/restore tools with the MCP server"""

    @mcp.tool()
    def scan_images(scope: str = "all") -> dict:
        """Scan the shop's product images and merge them with stored optimization state.

        Stale records (images no longer in the shop) are removed as part of a
        complete scan. Paging failures never fail the tool; whatever was
        collected before the failure is returned.

        Args:
            scope: "all" or "products" (both page product images)

        Returns:
            Dict with results (list of images), summary counts and store stats.
        """
        candidates = app.scanner.scan(app.catalog_client(), scope=scope)
        if not app.bulk_runner.is_running:
            app.bulk_runner.set_view(candidates)
        return {
            "status": "success",
            "results": [asdict(c) for c in candidates],
            "summary": summarize(candidates),
            "stats": app.record_store.stats(),
        }

    @mcp.tool()
    def list_images(
        status: str = "all",
        query: Optional[str] = None,
        sort: str = "default",
        page: int = 1,
        per_page: int = 10,
    ) -> dict:
        """List images from the last scan (with live bulk updates applied).

        Args:
            status: "all", "pending" or "optimized"
            query: Case-insensitive match on product title or alt text
            sort: "default", "size_desc" (pixel area) or "savings_desc"
            page: 1-based page number
            per_page: Page size (default: 10)
        """
        try:
            filtered = filter_candidates(app.bulk_runner.snapshot(), status=status, query=query, sort=sort)
        except ValueError as e:
            return {"error": str(e)}
        return {
            "results": [asdict(c) for c in paginate(filtered, page=page, per_page=per_page)],
            "matched": len(filtered),
            "page": page,
        }

    @mcp.tool()
    def optimize_image(item: Dict[str, Any]) -> dict:
        """Optimize one image: download, re-encode (WebP/AVIF), upload, record savings.

        Shopify assigns a new image id on upload; the new id is returned as newAssetId.

        Args:
            item: Image as returned by scan_images (needs id, url, parent_id; width is used as a resize hint)
        """
        try:
            candidate = Candidate.from_dict(item)
            result = app.build_engine().commit(app.credentials, candidate)
        except (OptimizerError, ValueError) as e:
            logger.error(f"[Action Error] optimize {item.get('id')}: {e}")
            return {"status": "error", "error": str(e)}
        except Exception as e:
            logger.exception("[Action Error] optimize")
            return {"status": "error", "error": f"Server Error: {e}"}
        # re-key the listed entry under the id Shopify assigned on upload
        app.bulk_runner.replace_in_view(candidate.id, lambda entry: optimized_entry(entry, result))
        return {"status": "success", "type": "commit", "id": candidate.id, "data": result.to_dict()}

    @mcp.tool()
    def restore_image(item: Dict[str, Any]) -> dict:
        """Restore one optimized image to its original source and forget its record.

        Args:
            item: Image as returned by scan_images (needs id, url, parent_id)
        """
        try:
            candidate = Candidate.from_dict(item)
            result = app.build_engine().restore(app.credentials, candidate)
        except (OptimizerError, ValueError) as e:
            logger.error(f"[Action Error] restore {item.get('id')}: {e}")
            return {"status": "error", "error": str(e)}
        except Exception as e:
            logger.exception("[Action Error] restore")
            return {"status": "error", "error": f"Server Error: {e}"}
        app.bulk_runner.replace_in_view(candidate.id, restored_entry)
        return {"status": "success", "type": "restore", "id": candidate.id, "data": result}

    @mcp.tool()
    def optimizer_stats() -> dict:
        """Totals across the record store: optimized image count and kilobytes saved."""
        return app.record_store.stats()
