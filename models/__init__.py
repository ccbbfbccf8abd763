"""Data models for the image optimizer"""

from models.asset import AssetRecord, Base, Candidate
from models.bulk import BulkMode, BulkProgress, BulkSummary, RunContext

__all__ = [
    "AssetRecord",
    "Base",
    "BulkMode",
    "BulkProgress",
    "BulkSummary",
    "Candidate",
    "RunContext",
]
