"""Durable store of per-image optimization records"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models.asset import AssetRecord, Base

logger = logging.getLogger("ImageOptimizer")

RECORD_FIELDS = (
    "product_id",
    "original_url",
    "optimized_url",
    "status",
    "savings_kb",
    "original_kb",
    "optimized_kb",
)


def create_store_engine(database_url: str) -> Engine:
    """Create an engine, preparing the SQLite directory or in-memory pool as needed"""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url)


class RecordStore:
    """Keyed access to AssetRecord rows. The key is the current remote image id."""

    def __init__(self, engine: Engine):
        self.engine = engine
        Base.metadata.create_all(engine)
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        logger.info(f"Initialized RecordStore on {engine.url.render_as_string(hide_password=True)}")

    @classmethod
    def from_url(cls, database_url: str) -> "RecordStore":
        return cls(create_store_engine(database_url))

    def find_all(self, **filters: Any) -> List[AssetRecord]:
        """Return every record matching the given column filters"""
        with self._session_factory() as session:
            stmt = select(AssetRecord).filter_by(**filters).order_by(AssetRecord.created_at)
            return list(session.scalars(stmt))

    def find_by_key(self, asset_id: str) -> Optional[AssetRecord]:
        with self._session_factory() as session:
            return session.scalars(
                select(AssetRecord).where(AssetRecord.shopify_image_id == asset_id)
            ).first()

    def upsert(self, asset_id: str, **fields: Any) -> AssetRecord:
        """Insert a record under asset_id, or update the one already there"""
        unknown = set(fields) - set(RECORD_FIELDS)
        if unknown:
            raise ValueError(f"Unknown record fields: {sorted(unknown)}")
        with self._session_factory.begin() as session:
            record = session.scalars(
                select(AssetRecord).where(AssetRecord.shopify_image_id == asset_id)
            ).first()
            if record is None:
                record = AssetRecord(shopify_image_id=asset_id, **fields)
                session.add(record)
            else:
                for name, value in fields.items():
                    setattr(record, name, value)
            session.flush()
            return record

    def delete_by_key(self, asset_id: str) -> bool:
        """Delete the record under asset_id. Returns False if there was none."""
        with self._session_factory.begin() as session:
            result = session.execute(delete(AssetRecord).where(AssetRecord.shopify_image_id == asset_id))
            return result.rowcount > 0

    def delete_many(self, asset_ids: Iterable[str]) -> int:
        """Delete all records whose key is in asset_ids, in one statement"""
        keys = list(asset_ids)
        if not keys:
            return 0
        with self._session_factory.begin() as session:
            result = session.execute(delete(AssetRecord).where(AssetRecord.shopify_image_id.in_(keys)))
            return result.rowcount

    def stats(self) -> Dict[str, int]:
        with self._session_factory() as session:
            count, saved = session.execute(
                select(func.count(AssetRecord.id), func.coalesce(func.sum(AssetRecord.savings_kb), 0))
            ).one()
        return {"total_optimized": int(count or 0), "total_saved_kb": int(saved or 0)}
