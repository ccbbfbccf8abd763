"""Asset data models"""

import math
import uuid
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

STATUS_OPTIMIZED = "optimized"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class AssetRecord(Base):
    """Optimization state of one remote image.

    A row exists only while the image is optimized; restoring deletes it.
    The key (shopify_image_id) is the current known remote identifier and
    is replaced whenever the remote system rotates it.
    """

    __tablename__ = "image_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shopify_image_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    optimized_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    savings_kb: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    original_kb: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    optimized_kb: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    @property
    def asset_id(self) -> str:
        return self.shopify_image_id

    def __repr__(self) -> str:
        return f"AssetRecord({self.shopify_image_id!r}, status={self.status!r}, savings_kb={self.savings_kb})"


@dataclass(frozen=True)
class Candidate:
    """Transient merged view of a catalog image and its optional record"""
    id: str
    url: str
    parent_id: str
    parent_title: str = ""
    type: str = "Product"
    width: Optional[int] = None
    height: Optional[int] = None
    alt: Optional[str] = None
    optimized: bool = False
    saved_kb: int = 0
    original_kb: int = 0
    optimized_kb: int = 0
    percent: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candidate":
        """Build a candidate from a tool payload, ignoring unknown keys"""
        known = {f.name for f in fields(cls)}
        missing = [name for name in ("id", "url", "parent_id") if not data.get(name)]
        if missing:
            raise ValueError(f"Candidate is missing required fields: {', '.join(missing)}")
        return cls(**{key: value for key, value in data.items() if key in known})


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives"""
    return int(math.floor(value + 0.5))


def bytes_to_kb(size_bytes: int) -> int:
    return round_half_up(size_bytes / 1024)


def percent_saved(before_kb: int, after_kb: int) -> int:
    """Rounded percentage saved, 0 when there was nothing to begin with"""
    if not before_kb:
        return 0
    return round_half_up((before_kb - after_kb) / before_kb * 100)
