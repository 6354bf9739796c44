"""
Storefront Backend Client
Async HTTP client for the storefront REST backend: saving admin bundles,
validating coupons and listing active coupons.

The backend is authoritative. Local engines only pre-check and rank; every
coupon is re-validated server-side on apply.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
import json
import logging

import httpx

from schemas.bundle_schemas import BundleDraft
from schemas.coupon_schemas import CartItem, Coupon, normalize_coupon
from services.bundle_validation import ensure_valid_bundle
from services.coupon_helpers import CouponErrorCode, get_coupon_error_message, validate_coupon_format
from services.formatting import round_currency, to_decimal
from services.pricing import pricing_engine
from services.storage import GatewayTokenStore
from settings import (
    BACKEND_API_URL,
    BACKEND_MAX_RETRIES,
    BACKEND_TIMEOUT_SECONDS,
    sanitize_code,
)
from utils import retry_async

logger = logging.getLogger(__name__)

NETWORK_ERROR_MESSAGE = "Unable to reach the store. Please check your connection and try again."


class BackendError(Exception):
    """A failed backend call, carrying the single user-facing message."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        shortfall: Optional[Decimal] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.shortfall = shortfall

    @property
    def is_business_rejection(self) -> bool:
        """HTTP 400: the backend understood the request and said no."""
        return self.status_code == 400

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "shortfall": float(self.shortfall) if self.shortfall is not None else None,
        }


@dataclass
class CouponValidationResponse:
    success: bool
    coupon: Optional[Coupon] = None
    discount: Decimal = Decimal("0")
    savings_text: str = ""
    message: str = ""
    code: Optional[str] = None
    shortfall: Optional[Decimal] = None


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


def _coupon_rows(payload: Any) -> List[Dict[str, Any]]:
    """Active coupon rows from ``{data: {all_coupons}}``, ``{data: [...]}`` or a bare list."""
    data = payload.get("data", payload) if isinstance(payload, dict) else payload
    if isinstance(data, dict):
        data = data.get("all_coupons") or data.get("coupons") or []
    if not isinstance(data, list):
        return []
    return [row for row in data if isinstance(row, dict)]


class BackendClient:
    """
    Thin async wrapper over the storefront REST API.

    A fresh ``httpx.AsyncClient`` is opened per call; pass ``transport`` to
    route requests elsewhere (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str = BACKEND_API_URL,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
        gateway: Optional[GatewayTokenStore] = None,
        auth_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.gateway = gateway
        self.auth_token = auth_token
        self._transport = transport

    async def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        if self.gateway is not None:
            headers.update(await self.gateway.headers())
        return headers

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = await self._headers()
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            return await client.request(method, path, headers=headers, **kwargs)

    @retry_async(max_retries=BACKEND_MAX_RETRIES, base_delay=0.25, retry_on=(httpx.TransportError,))
    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """GETs are idempotent, so transport failures are retried."""
        return await self._send("GET", path, params=params)

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            if method == "GET":
                response = await self._get(path, params=kwargs.get("params"))
            else:
                response = await self._send(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            body = _json_body(e.response)
            body = body if isinstance(body, dict) else {}
            code = body.get("code")
            shortfall = to_decimal(body.get("shortfall"), default=None)
            message = body.get("message") or body.get("error") or get_coupon_error_message(code)
            if status == 400:
                # Expected business rejection (min order not met, bad code, ...)
                logger.info(f"Backend rejected {method} {path}: status={status} code={code} message={message}")
            else:
                logger.error(f"Backend error on {method} {path}: status={status} code={code}", exc_info=True)
            raise BackendError(message, status_code=status, code=code, shortfall=shortfall) from e
        except httpx.RequestError as e:
            logger.error(f"Backend unreachable for {method} {path}: {type(e).__name__}: {e}", exc_info=True)
            raise BackendError(NETWORK_ERROR_MESSAGE, code="NETWORK_ERROR") from e

        return _json_body(response)

    # =========================================================================
    # Bundles (admin)
    # =========================================================================

    async def save_bundle(
        self,
        draft: BundleDraft,
        bundle_id: Optional[str] = None,
        image: Optional[Tuple[str, bytes, str]] = None,
    ) -> Dict[str, Any]:
        """
        Create (or update, when ``bundle_id`` is given) a bundle.

        The draft is validated first; an invalid draft raises
        ``BundleValidationError`` and nothing is sent. The request is
        multipart and carries the client-computed pricing snapshot.

        Returns:
            The saved bundle as returned by the backend.
        """
        ensure_valid_bundle(draft)
        pricing = pricing_engine.price_bundle(draft.items, draft.bundle_price)

        fields: Dict[str, str] = {
            "title": draft.title.strip(),
            "description": draft.description.strip(),
            "price": str(round_currency(draft.bundle_price)),
            "original_price": str(round_currency(pricing.original_price)),
            "discount_percent": str(pricing.discount_percent),
            "markup_percent": str(pricing.markup_percent),
            "tags": json.dumps(draft.tags),
            "items": json.dumps(draft.items_payload()),
        }
        if draft.stock_limit is not None:
            fields["stock_limit"] = str(draft.stock_limit)

        files: List[Tuple[str, Any]] = [
            (name, (None, value.encode("utf-8"))) for name, value in fields.items()
        ]
        if image is not None:
            files.append(("image", image))

        if bundle_id:
            method, path = "PUT", f"/api/bundles/admin/{bundle_id}"
        else:
            method, path = "POST", "/api/bundles/admin"

        payload = await self._request(method, path, files=files)
        logger.info(
            f"Saved bundle via backend ({method}): original={pricing.original_price} "
            f"price={pricing.bundle_price} mode={pricing.mode.value}"
        )
        data = payload.get("data", payload) if isinstance(payload, dict) else payload
        return data if isinstance(data, dict) else {}

    # =========================================================================
    # Coupons
    # =========================================================================

    async def validate_coupon(
        self,
        code: str,
        cart_total,
        cart_items: Sequence[CartItem] = (),
    ) -> CouponValidationResponse:
        """
        Ask the backend to validate a coupon against the cart.

        Malformed codes are rejected locally without a request. Backend
        rejections come back as unsuccessful responses; network and server
        failures raise ``BackendError``.
        """
        valid_format, format_error = validate_coupon_format(code)
        if not valid_format:
            error_code = (
                CouponErrorCode.MISSING_CODE if not (code or "").strip() else CouponErrorCode.INVALID_FORMAT
            )
            return CouponValidationResponse(success=False, message=format_error, code=error_code.value)

        body = {
            "code": sanitize_code(code),
            "cart_total": float(to_decimal(cart_total)),
            "cart_items": [
                {
                    "product_id": item.product_id,
                    "quantity": item.quantity,
                    "price": float(item.price),
                    "category_id": item.category_id,
                }
                for item in cart_items
            ],
        }
        try:
            payload = await self._request("POST", "/api/coupons/validate", json=body)
        except BackendError as e:
            if not e.is_business_rejection:
                raise
            return CouponValidationResponse(
                success=False,
                message=get_coupon_error_message(e.code, e.shortfall, e.message),
                code=e.code,
                shortfall=e.shortfall,
            )

        payload = payload if isinstance(payload, dict) else {}
        if not payload.get("success"):
            return CouponValidationResponse(
                success=False,
                message=payload.get("message") or get_coupon_error_message(payload.get("code")),
                code=payload.get("code"),
            )

        data = payload.get("data") or {}
        coupon_raw = data.get("coupon")
        return CouponValidationResponse(
            success=True,
            coupon=normalize_coupon(coupon_raw) if isinstance(coupon_raw, dict) else None,
            discount=to_decimal(data.get("discount")),
            savings_text=str(data.get("savings_text") or ""),
            message=str(payload.get("message") or ""),
        )

    async def get_active_coupons(self, cart_total=None) -> List[Coupon]:
        """Active coupons, optionally filtered by the backend for a cart total."""
        params: Dict[str, Any] = {}
        total = to_decimal(cart_total, default=None)
        if total:
            params["cart_total"] = str(total)

        payload = await self._request("GET", "/api/coupons/active", params=params)
        coupons = [normalize_coupon(row) for row in _coupon_rows(payload)]
        logger.debug(f"Fetched {len(coupons)} active coupons (cart_total={total})")
        return coupons
