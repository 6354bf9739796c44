"""
Storage Service Layer
Saved bundle snapshots plus the key-value persistence port used for
delivery data and the gateway access token.
"""
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
import json
import logging
import time
from datetime import datetime, timedelta

from database import AsyncSessionLocal, Bundle, BundleItem, KeyValueEntry
from schemas.bundle_schemas import BundleDraft, BundlePricingResult
from settings import (
    DELIVERY_CHECK_TTL_HOURS,
    GATEWAY_ENABLED,
    GATEWAY_HEADER_NAME,
)

logger = logging.getLogger(__name__)


# ===============================================================================
# Key-value persistence port
# ===============================================================================

class KeyValueStore(Protocol):
    """Minimal async key-value interface injected into stateful helpers."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None: ...

    async def clear(self, key: str) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store. Entries with a ttl expire lazily on read."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._entries[key] = (value, expires_at)

    async def clear(self, key: str) -> None:
        self._entries.pop(key, None)


class DatabaseKeyValueStore:
    """
    Key-value store on the ``kv_entries`` table.

    Failed reads are logged and read as missing. Failed writes and clears
    are rolled back and re-raised to the caller.
    """

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self._session_factory = session_factory

    async def get(self, key: str) -> Optional[str]:
        async with self._session_factory() as session:
            try:
                entry = await session.get(KeyValueEntry, key)
                if entry is None:
                    return None
                if entry.expires_at is not None and entry.expires_at <= datetime.utcnow():
                    await session.delete(entry)
                    await session.commit()
                    return None
                return entry.payload
            except Exception:
                logger.exception("Failed to read kv entry key=%s", key)
                return None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = datetime.utcnow() + timedelta(seconds=int(ttl)) if ttl else None
        async with self._session_factory() as session:
            try:
                entry = await session.get(KeyValueEntry, key)
                if entry is None:
                    session.add(KeyValueEntry(key=key, payload=value, expires_at=expires_at))
                else:
                    entry.payload = value
                    entry.expires_at = expires_at
                await session.commit()
            except Exception:
                logger.exception("Failed to write kv entry key=%s", key)
                await session.rollback()
                raise

    async def clear(self, key: str) -> None:
        async with self._session_factory() as session:
            try:
                await session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
                await session.commit()
            except Exception:
                logger.exception("Failed to clear kv entry key=%s", key)
                await session.rollback()
                raise


# ===============================================================================
# Delivery data (selected address / guest PIN code / last delivery check)
# ===============================================================================

DELIVERY_STORAGE_KEY = "tpp_delivery_data"
DELIVERY_DATA_VERSION = "1.0"


class DeliveryStorage:
    """
    Persists the shopper's delivery context through an injected store.

    Stored payload: ``selected_address_id`` (signed-in users),
    ``guest_pin_code`` (guests), ``delivery_check`` (last TAT lookup), plus
    ``timestamp`` (epoch ms) and ``version``. Delivery data never expires on
    its own; ``is_check_recent`` decides when to re-verify.
    """

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def save(self, data: Dict[str, Any]) -> bool:
        payload = {**data, "timestamp": self._now_ms(), "version": DELIVERY_DATA_VERSION}
        try:
            await self._store.set(DELIVERY_STORAGE_KEY, json.dumps(payload))
        except Exception:
            logger.exception("Saving delivery data failed")
            return False
        logger.debug(f"Saved delivery data keys={sorted(payload)}")
        return True

    async def get(self) -> Optional[Dict[str, Any]]:
        raw = await self._store.get(DELIVERY_STORAGE_KEY)
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored delivery data is not valid JSON; ignoring it")
            return None
        return data if isinstance(data, dict) else None

    async def clear(self) -> bool:
        try:
            await self._store.clear(DELIVERY_STORAGE_KEY)
        except Exception:
            logger.exception("Clearing delivery data failed")
            return False
        return True

    async def update_field(self, field: str, value: Any) -> bool:
        current = await self.get() or {}
        current[field] = value
        return await self.save(current)

    async def is_check_recent(self) -> bool:
        data = await self.get()
        if not data or not data.get("timestamp"):
            return False
        hours_since = (self._now_ms() - int(data["timestamp"])) / (1000 * 60 * 60)
        return hours_since < DELIVERY_CHECK_TTL_HOURS

    async def get_stored_pin_code(self) -> Optional[str]:
        data = await self.get() or {}
        check = data.get("delivery_check") or {}
        return data.get("guest_pin_code") or check.get("pin_code") or None

    async def get_stored_address_id(self) -> Optional[str]:
        data = await self.get() or {}
        return data.get("selected_address_id") or None


# ===============================================================================
# Gateway access token
# ===============================================================================

GATEWAY_TOKEN_KEY = "gatewayToken"


class GatewayTokenStore:
    """Gateway JWT persisted through an injected store."""

    def __init__(
        self,
        store: KeyValueStore,
        enabled: bool = GATEWAY_ENABLED,
        header_name: str = GATEWAY_HEADER_NAME,
    ):
        self._store = store
        self.enabled = enabled
        self.header_name = header_name

    async def get_token(self) -> Optional[str]:
        if not self.enabled:
            return None
        return await self._store.get(GATEWAY_TOKEN_KEY)

    async def set_token(self, token: str) -> None:
        await self._store.set(GATEWAY_TOKEN_KEY, token)

    async def clear_token(self) -> None:
        await self._store.clear(GATEWAY_TOKEN_KEY)

    async def has_access(self) -> bool:
        if not self.enabled:
            return True
        return await self.get_token() is not None

    async def headers(self) -> Dict[str, str]:
        token = await self.get_token()
        if not token:
            return {}
        return {self.header_name: token}


# ===============================================================================
# Saved bundles
# ===============================================================================

class StorageService:
    """Database operations for saved bundles."""

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal):
        self._session_factory = session_factory

    def get_session(self) -> AsyncSession:
        """Get database session context manager"""
        return self._session_factory()

    async def create_bundle(self, draft: BundleDraft, pricing: BundlePricingResult) -> Bundle:
        """Persist a validated draft together with its frozen pricing snapshot."""
        bundle = Bundle(
            title=draft.title.strip(),
            description=draft.description.strip() or None,
            price=pricing.bundle_price,
            original_price=pricing.original_price,
            discount_percent=pricing.discount_percent,
            markup_percent=pricing.markup_percent,
            stock_limit=draft.stock_limit,
            tags=list(draft.tags),
            is_active=True,
        )
        bundle.items = [
            BundleItem(
                position=position,
                product_id=item.product_id,
                variant_id=item.variant_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for position, item in enumerate(draft.items)
        ]
        async with self.get_session() as session:
            session.add(bundle)
            await session.commit()
            await session.refresh(bundle, attribute_names=["items", "created_at", "updated_at"])
        logger.info(
            f"Saved bundle {bundle.id}: original={pricing.original_price} price={pricing.bundle_price} "
            f"discount={pricing.discount_percent}% markup={pricing.markup_percent}%"
        )
        return bundle

    async def get_bundle(self, bundle_id: str) -> Optional[Bundle]:
        async with self.get_session() as session:
            return await session.get(Bundle, bundle_id)

    async def get_bundles(self, limit: int = 100) -> List[Bundle]:
        async with self.get_session() as session:
            query = select(Bundle).order_by(Bundle.created_at.desc()).limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())


storage = StorageService()
