"""Commit and restore of single images"""

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from errors import CleanupWarning, NotFoundError
from image_processor import TranscodePolicy, fetch_image_bytes, transcode
from managers.record_store import RecordStore
from models.asset import STATUS_OPTIMIZED, Candidate, bytes_to_kb, percent_saved
from shopify_client import MutationClient, ShopCredentials

logger = logging.getLogger("ImageOptimizer")


@dataclass(frozen=True)
class CommitResult:
    before_kb: int
    after_kb: int
    percent: int
    new_id: str
    format: str

    @property
    def saved_kb(self) -> int:
        return self.before_kb - self.after_kb

    def to_dict(self) -> Dict[str, Any]:
        return {
            "beforeKb": self.before_kb,
            "afterKb": self.after_kb,
            "percent": self.percent,
            "newAssetId": self.new_id,
            "format": self.format,
        }


class OptimizerEngine:
    """Downloads, transcodes and uploads images, keeping the record store in step.

    Neither operation retries; callers decide what to do with a failure.
    """

    def __init__(
        self,
        record_store: RecordStore,
        mutation_client: MutationClient,
        policy: Optional[TranscodePolicy] = None,
        timeout: float = 30,
        fetcher: Callable[..., bytes] = fetch_image_bytes,
    ):
        self.record_store = record_store
        self.mutation_client = mutation_client
        self.policy = policy or TranscodePolicy()
        self.timeout = timeout
        self._fetch = fetcher

    def commit(self, credentials: ShopCredentials, candidate: Candidate) -> CommitResult:
        logger.info(f"[Optimize] Starting: {candidate.id}")
        credentials.require()

        logger.info(f"[Optimize] Downloading: {candidate.url}")
        original = self._fetch(candidate.url, timeout=self.timeout)
        original_kb = bytes_to_kb(len(original))
        logger.info(f"[Optimize] Downloaded: {original_kb}KB")

        result = transcode(original, candidate.width, self.policy)
        optimized_kb = bytes_to_kb(result.bytes_len)
        logger.info(f"[Optimize] Compressed: {original_kb}KB -> {optimized_kb}KB ({result.format})")
        if result.bytes_len >= len(original):
            logger.warning(f"[Optimize] Output for {candidate.id} is not smaller than the original")

        new_id, optimized_url = self.mutation_client.replace_image(
            credentials,
            candidate.parent_id,
            candidate.id,
            result.data,
            filename=f"optimized.{result.format}",
        )
        logger.info(f"[Optimize] Uploaded. New GID: {new_id}")

        self.record_store.upsert(
            new_id,
            status=STATUS_OPTIMIZED,
            product_id=candidate.parent_id,
            original_url=candidate.url,
            optimized_url=optimized_url,
            original_kb=original_kb,
            optimized_kb=optimized_kb,
            savings_kb=original_kb - optimized_kb,
        )

        if new_id != candidate.id:
            logger.info(f"[Optimize] ID changed: {candidate.id} -> {new_id}")
            self._drop_rotated_record(candidate.id)

        logger.info(f"[Optimize] Complete! Saved {original_kb - optimized_kb}KB")
        return CommitResult(
            before_kb=original_kb,
            after_kb=optimized_kb,
            percent=percent_saved(original_kb, optimized_kb),
            new_id=new_id,
            format=result.format,
        )

    def restore(self, credentials: ShopCredentials, candidate: Candidate) -> Dict[str, str]:
        logger.info(f"[Restore] Starting: {candidate.id}")
        credentials.require()

        record = self.record_store.find_by_key(candidate.id)
        if record is None or not record.original_url:
            raise NotFoundError("Original image not found in DB. Cannot restore.")
        logger.info(f"[Restore] Found original: {record.original_url}")

        self.mutation_client.restore_image(
            credentials,
            candidate.parent_id or record.product_id,
            candidate.id,
            record.original_url,
        )
        logger.info("[Restore] Success.")

        self.record_store.delete_by_key(candidate.id)
        return {"status": "restored"}

    def _drop_rotated_record(self, old_id: str):
        try:
            self.record_store.delete_by_key(old_id)
        except Exception as e:
            logger.error(f"[Optimize] Error deleting old record {old_id}: {e}")
            warnings.warn(f"Could not delete record under rotated id {old_id}: {e}", CleanupWarning)
