import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from mcp.server.fastmcp import FastMCP

from managers.bulk_runner import BulkJobRunner
from managers.catalog_scanner import CatalogScanner
from managers.optimizer_engine import OptimizerEngine
from managers.record_store import RecordStore
from managers.settings_manager import OptimizerSettings, SettingsManager
from shopify_client import CatalogClient, MutationClient, ShopCredentials
from tools.bulk import register_bulk_tools
from tools.configuration import register_configuration_tools
from tools.optimizer import register_optimizer_tools

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("ImageOptimizer")


class AppContext:
    """Wires settings, record store and the optimizer components together"""

    def __init__(self, settings_manager: SettingsManager, record_store: Optional[RecordStore] = None):
        self.settings_manager = settings_manager
        settings = self.settings
        self.record_store = record_store or RecordStore.from_url(settings.database_url)
        self.scanner = CatalogScanner(self.record_store, max_results=settings.max_scan_results)
        self.bulk_runner = BulkJobRunner(self.build_engine())

    @property
    def settings(self) -> OptimizerSettings:
        return self.settings_manager.settings()

    @property
    def credentials(self) -> ShopCredentials:
        return self.settings.credentials

    def catalog_client(self) -> CatalogClient:
        settings = self.settings
        return CatalogClient(
            settings.credentials,
            api_version=settings.api_version,
            page_size=settings.page_size,
            images_per_product=settings.images_per_product,
            timeout=settings.request_timeout,
        )

    def build_engine(self) -> OptimizerEngine:
        settings = self.settings
        return OptimizerEngine(
            self.record_store,
            MutationClient(api_version=settings.api_version, timeout=settings.request_timeout),
            policy=settings.transcode_policy,
            timeout=settings.request_timeout,
        )

    def refresh(self):
        """Apply changed settings to long-lived components"""
        self.scanner.max_results = self.settings.max_scan_results
        if not self.bulk_runner.is_running:
            self.bulk_runner.engine = self.build_engine()


app_context = AppContext(SettingsManager())


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle"""
    logger.info("Starting image optimizer MCP server...")
    if not app_context.credentials.is_valid:
        logger.warning("SHOPIFY_SHOP / SHOPIFY_ACCESS_TOKEN not set; shop calls will fail until configured")
    try:
        yield app_context
    finally:
        if app_context.bulk_runner.stop():
            logger.info("Stopping bulk run for shutdown")
        logger.info("Shutting down image optimizer MCP server")


mcp = FastMCP("Image_Optimizer_MCP_Server", lifespan=app_lifespan)

register_optimizer_tools(mcp, app_context)
register_bulk_tools(mcp, app_context)
register_configuration_tools(mcp, app_context)

if __name__ == "__main__":
    mcp.run(transport="streamable-http")
