# --- models section: saved bundle snapshots + key-value persistence ---

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    String, Text, Integer, Numeric, DateTime, Boolean, JSON,
    ForeignKey, func, Index, CheckConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool
from sqlalchemy import text
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, Optional
import logging, os, uuid

# Load environment variables early (before reading DATABASE_URL)
from dotenv import load_dotenv
load_dotenv()

# -------------------------------------------------------------------
# Engine / Session
# -------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "")

if DATABASE_URL:
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")
    engine = create_async_engine(
        DATABASE_URL,
        echo=os.getenv("NODE_ENV") == "development",
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=1800,  # Recycle connections after 30 minutes
        pool_timeout=15,
        connect_args={
            "server_settings": {
                "application_name": "storefront_pricing",
            },
            "command_timeout": 60,
            "timeout": 30,
        },
    )
else:
    DATABASE_URL = "sqlite+aiosqlite:///:memory:"
    engine = create_async_engine(
        DATABASE_URL,
        echo=os.getenv("NODE_ENV") == "development",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# JSONB on Postgres, plain JSON elsewhere (sqlite in dev/tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _redact_db_url(url: str) -> str:
    try:
        if "@" in url and "://" in url:
            head, tail = url.split("://", 1)
            creds, hostpart = tail.split("@", 1)
            if ":" in creds:
                user, _pwd = creds.split(":", 1)
                return f"{head}://{user}:******@{hostpart}"
            return url
        if "://" in url:
            return url
    except ValueError:
        pass
    return "******"

logger = logging.getLogger(__name__)
logger.info(f"Creating SQL engine for { _redact_db_url(DATABASE_URL) }")

async def probe_db_connection():
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("DB connectivity probe: OK")
    except Exception as e:
        logger.exception(f"DB connectivity probe failed: {e}")

# -------------------------------------------------------------------
# Base
# -------------------------------------------------------------------
class Base(DeclarativeBase):
    pass

# -------------------------------------------------------------------
# MODELS
# -------------------------------------------------------------------

class Bundle(Base):
    """A saved bundle. Pricing columns are a frozen snapshot taken at save time."""
    __tablename__ = "bundles"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    original_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    markup_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stock_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    tags: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    items = relationship(
        "BundleItem",
        back_populates="bundle",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BundleItem.position",
    )

    __table_args__ = (
        CheckConstraint("discount_percent >= 0 AND markup_percent >= 0", name="ck_bundles_percent_non_negative"),
        CheckConstraint("discount_percent = 0 OR markup_percent = 0", name="ck_bundles_discount_xor_markup"),
        CheckConstraint("stock_limit IS NULL OR stock_limit >= 0", name="ck_bundles_stock_limit"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "price": float(self.price),
            "original_price": float(self.original_price),
            "discount_percent": self.discount_percent,
            "markup_percent": self.markup_percent,
            "stock_limit": self.stock_limit,
            "tags": self.tags or [],
            "is_active": self.is_active,
            "items": [item.to_dict() for item in self.items],
            "created_at": self.created_at.isoformat() if self.created_at is not None else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at is not None else None,
        }


class BundleItem(Base):
    __tablename__ = "bundle_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    bundle_id: Mapped[str] = mapped_column(String, ForeignKey("bundles.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product_id: Mapped[str] = mapped_column(String, nullable=False)
    variant_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Unit price at save time (part of the frozen snapshot)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    bundle = relationship("Bundle", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_bundle_items_quantity"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price": float(self.unit_price),
        }


class KeyValueEntry(Base):
    """Backing table for the key-value persistence port."""
    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

# -------------------------------------------------------------------
# Indexes
# -------------------------------------------------------------------
Index('ix_bundles_created_at', Bundle.created_at)
Index('ix_bundle_items_bundle', BundleItem.bundle_id)
Index('ix_kv_entries_expires_at', KeyValueEntry.expires_at)

# -------------------------------------------------------------------
# Init helpers
# -------------------------------------------------------------------
async def init_db():
    """Ensure tables exist."""
    await probe_db_connection()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB init complete (tables ensured).")

async def check_db_health() -> Dict[str, Any]:
    """Round-trip a trivial query; used by /api/health."""
    started = datetime.now()
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"DB health check failed: {e}")
        return {"status": "unhealthy", "error": str(e)[:200]}
    latency_ms = int((datetime.now() - started).total_seconds() * 1000)
    return {"status": "healthy", "latency_ms": latency_ms, "url": _redact_db_url(DATABASE_URL)}
