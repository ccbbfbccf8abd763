"""Manager classes for the image optimizer MCP server"""

from managers.bulk_runner import BulkJobRunner
from managers.catalog_scanner import CatalogScanner
from managers.optimizer_engine import OptimizerEngine
from managers.record_store import RecordStore
from managers.settings_manager import SettingsManager

__all__ = ["BulkJobRunner", "CatalogScanner", "OptimizerEngine", "RecordStore", "SettingsManager"]
