"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TrackedItem(Base):
    """A product URL a user asked to watch."""

    __tablename__ = "tracked_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refresh_interval: Mapped[int] = mapped_column(Integer, default=3600, nullable=False)  # seconds
    last_checked: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_check_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    stock_status: Mapped[str] = mapped_column(String(16), default="unknown", nullable=False)

    # Alert settings
    price_drop_threshold: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    target_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    notify_back_in_stock: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Extraction hints, set by user confirmation or a unanimous extraction
    anchor_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    preferred_method: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    skip_ai_verification: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    skip_ai_extraction: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    checking_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    price_history: Mapped[list["PriceObservation"]] = relationship(
        "PriceObservation", back_populates="item", cascade="all, delete-orphan", passive_deletes=True
    )
    stock_history: Mapped[list["StockStatusObservation"]] = relationship(
        "StockStatusObservation", back_populates="item", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        CheckConstraint("refresh_interval > 0", name="ck_refresh_interval_positive"),
        Index("ix_tracked_items_due", "checking_paused", "next_check_at"),
    )


class PriceObservation(Base):
    """Append-only price history, one row per observed change."""

    __tablename__ = "price_observations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tracked_items.id", ondelete="CASCADE"), nullable=False
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    ai_status: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)  # verified, corrected
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    item: Mapped["TrackedItem"] = relationship("TrackedItem", back_populates="price_history")

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_price_positive"),
        Index("ix_price_observations_item_recorded", "item_id", "recorded_at"),
    )


class StockStatusObservation(Base):
    """Stock status transitions for an item."""

    __tablename__ = "stock_status_observations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tracked_items.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    item: Mapped["TrackedItem"] = relationship("TrackedItem", back_populates="stock_history")

    __table_args__ = (Index("ix_stock_status_observations_item_changed", "item_id", "changed_at"),)
