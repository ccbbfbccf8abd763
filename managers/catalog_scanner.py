"""Catalog scanning and reconciliation against the record store"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from managers.record_store import RecordStore
from models.asset import STATUS_OPTIMIZED, AssetRecord, Candidate, percent_saved
from shopify_client import CatalogClient, CatalogImage, CatalogProduct

logger = logging.getLogger("ImageOptimizer")

SCAN_SCOPES = ("all", "products")
FILTER_STATUSES = ("all", "pending", "optimized")
SORT_OPTIONS = ("default", "size_desc", "savings_desc")


@dataclass
class ScanReport:
    """Bookkeeping for one scan, kept for diagnostics and tests"""
    candidates: List[Candidate] = field(default_factory=list)
    seen_ids: Set[str] = field(default_factory=set)
    pages: int = 0
    complete: bool = False
    truncated: bool = False
    stale_deleted: int = 0
    error: Optional[str] = None


class CatalogScanner:
    """Pages the remote catalog and merges each image with its stored record"""

    def __init__(self, record_store: RecordStore, max_results: int = 2500):
        self.record_store = record_store
        self.max_results = max_results
        self.last_report: Optional[ScanReport] = None

    def scan(self, catalog_client: CatalogClient, scope: str = "all") -> List[Candidate]:
        """Return candidates for every catalog image. Never raises.

        Paging errors are logged and the candidates gathered so far are
        returned. Stale records are only cleaned up after a complete,
        untruncated pass over the catalog.
        """
        logger.info("[Scan] Starting...")
        report = ScanReport()
        self.last_report = report
        if scope not in SCAN_SCOPES:
            logger.warning(f"[Scan] Unknown scope '{scope}'; nothing to page")
            report.error = f"Unknown scope: {scope}"
            return []

        try:
            records = self.record_store.find_all()
            record_map: Dict[str, AssetRecord] = {r.shopify_image_id: r for r in records}
            optimized_count = sum(1 for r in records if r.status == STATUS_OPTIMIZED)
            logger.info(f"[Scan] DB has {len(records)} records, {optimized_count} optimized")

            self._scan_products(catalog_client, record_map, report)
            report.complete = True

            if report.truncated:
                logger.warning(
                    f"[Scan] Result cap of {self.max_results} reached; skipping stale record cleanup"
                )
            else:
                stale_ids = [key for key in record_map if key not in report.seen_ids]
                if stale_ids:
                    logger.info(f"[Scan] Found {len(stale_ids)} stale DB records. Cleaning up...")
                    report.stale_deleted = self.record_store.delete_many(stale_ids)
                    logger.info(f"[Scan] Deleted {report.stale_deleted} stale records")
        except Exception as e:
            report.error = str(e)
            logger.exception("[Scan Error]")

        logger.info(f"[Scan] Found {len(report.candidates)} images in shop")
        return list(report.candidates)

    def _scan_products(self, catalog_client: CatalogClient, record_map: Dict[str, AssetRecord], report: ScanReport):
        has_next_page = True
        cursor = None
        while has_next_page:
            page = catalog_client.fetch_products_page(cursor)
            report.pages += 1
            for product in page.products:
                for image in product.images:
                    report.seen_ids.add(image.id)
                    report.candidates.append(build_candidate(product, image, record_map.get(image.id)))

            has_next_page = page.has_next_page
            cursor = page.end_cursor
            if has_next_page and len(report.candidates) >= self.max_results:
                report.truncated = True
                has_next_page = False


def build_candidate(product: CatalogProduct, image: CatalogImage, record: Optional[AssetRecord]) -> Candidate:
    optimized = record is not None and record.status == STATUS_OPTIMIZED
    original_kb = record.original_kb if record is not None else 0
    optimized_kb = record.optimized_kb if optimized else 0
    return Candidate(
        id=image.id,
        url=image.url,
        parent_id=product.id,
        parent_title=product.title,
        type="Product",
        width=image.width,
        height=image.height,
        alt=image.alt_text,
        optimized=optimized,
        saved_kb=(record.savings_kb or 0) if optimized else 0,
        original_kb=original_kb or 0,
        optimized_kb=optimized_kb or 0,
        percent=percent_saved(original_kb, optimized_kb) if optimized else 0,
    )


def filter_candidates(
    candidates: List[Candidate],
    status: str = "all",
    query: Optional[str] = None,
    sort: str = "default",
) -> List[Candidate]:
    """Filter by status and search text, then sort"""
    if status not in FILTER_STATUSES:
        raise ValueError(f"Invalid status filter: {status}. Must be one of {FILTER_STATUSES}")
    if sort not in SORT_OPTIONS:
        raise ValueError(f"Invalid sort option: {sort}. Must be one of {SORT_OPTIONS}")

    data = list(candidates)
    if query:
        lower = query.lower()
        data = [
            c for c in data
            if (c.parent_title and lower in c.parent_title.lower()) or (c.alt and lower in c.alt.lower())
        ]

    if status == "pending":
        data = [c for c in data if not c.optimized]
    elif status == "optimized":
        data = [c for c in data if c.optimized]

    if sort == "size_desc":
        data.sort(key=lambda c: (c.width or 0) * (c.height or 0), reverse=True)
    elif sort == "savings_desc":
        data.sort(key=lambda c: c.saved_kb or 0, reverse=True)
    return data


def paginate(candidates: List[Candidate], page: int = 1, per_page: int = 10) -> List[Candidate]:
    page = max(1, page)
    return candidates[(page - 1) * per_page: page * per_page]


def summarize(candidates: List[Candidate]) -> Dict[str, int]:
    optimized = sum(1 for c in candidates if c.optimized)
    return {
        "total_images": len(candidates),
        "optimized": optimized,
        "pending": len(candidates) - optimized,
        "saved_kb": sum(c.saved_kb or 0 for c in candidates),
    }
