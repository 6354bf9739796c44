"""
Bundles Router
Admin bundle pricing preview, validation and saved snapshots
"""
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from decimal import Decimal
from typing import Optional, List, Dict, Any, Union
import logging

from schemas.bundle_schemas import BundleDraft, normalize_bundle_draft
from services.bundle_validation import ensure_valid_bundle, validate_bundle_draft
from services.pricing import pricing_engine
from services.storage import storage

logger = logging.getLogger(__name__)
router = APIRouter()


class BundleItemRequest(BaseModel):
    product_id: Optional[Union[str, int]] = None
    variant_id: Optional[Union[str, int]] = None
    quantity: int = 1
    unit_price: Optional[Decimal] = None
    product_title: Optional[str] = None
    has_variants: Optional[bool] = None
    # Form shape: the selected product / variant objects
    product: Optional[Dict[str, Any]] = None
    variant: Optional[Dict[str, Any]] = None


class BundleDraftRequest(BaseModel):
    title: str = ""
    description: str = ""
    price: Optional[Decimal] = None
    items: List[BundleItemRequest] = []
    stock_limit: Optional[int] = None
    tags: Optional[Union[List[str], str]] = None


def _to_draft(request: BundleDraftRequest) -> BundleDraft:
    raw = request.model_dump(exclude_none=True)
    raw["items"] = [item.model_dump(exclude_none=True) for item in request.items]
    return normalize_bundle_draft(raw)


@router.post("/bundles/pricing")
async def price_bundle(request: BundleDraftRequest):
    """Live pricing preview for the bundle form"""
    draft = _to_draft(request)
    if draft.bundle_price is None:
        raise HTTPException(status_code=400, detail="Bundle price is required")

    result = pricing_engine.price_bundle(draft.items, draft.bundle_price)
    return {
        "pricing": result.to_dict(),
        "display": pricing_engine.describe(result),
    }


@router.post("/bundles/validate")
async def validate_bundle(request: BundleDraftRequest):
    """Form validation without saving"""
    result = validate_bundle_draft(_to_draft(request))
    return {"valid": result.valid, "errors": result.errors}


@router.post("/bundles", status_code=201)
async def create_bundle(request: BundleDraftRequest):
    """Validate, price and save a bundle snapshot"""
    draft = _to_draft(request)
    # BundleValidationError is turned into a 400 by the app-level handler
    ensure_valid_bundle(draft)

    pricing = pricing_engine.price_bundle(draft.items, draft.bundle_price)
    bundle = await storage.create_bundle(draft, pricing)
    return {
        "success": True,
        "message": "Bundle created successfully",
        "bundle": bundle.to_dict(),
        "pricing": pricing.to_dict(),
    }


@router.get("/bundles")
async def get_bundles(limit: int = 100):
    """Saved bundles, newest first"""
    bundles = await storage.get_bundles(limit=limit)
    return [bundle.to_dict() for bundle in bundles]


@router.get("/bundles/{bundle_id}")
async def get_bundle(bundle_id: str):
    bundle = await storage.get_bundle(bundle_id)
    if not bundle:
        raise HTTPException(status_code=404, detail="Bundle not found")
    return bundle.to_dict()
