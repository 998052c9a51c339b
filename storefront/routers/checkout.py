import logging
from typing import Any, Optional
from fastapi import APIRouter, Depends, HTTPException

from storefront.routers.products import get_catalog
from storefront.services.checkout import (
    CheckoutError,
    CheckoutRequest,
    CheckoutService,
    get_payment_client,
)
from storefront.services.content_store import ContentStoreClient

logger = logging.getLogger(__name__)

router = APIRouter()

def get_checkout_service(
    catalog: ContentStoreClient = Depends(get_catalog),
    payment_client: Optional[Any] = Depends(get_payment_client),
) -> CheckoutService:
    return CheckoutService(catalog, payment_client)

@router.post("/session")
async def create_checkout_session(
    checkout_in: CheckoutRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    """Revalidate the items against the catalog and open a payment session"""
    try:
        session = await service.create_session(checkout_in)
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail={"error": e.code, "message": e.message})

    logger.info("Created payment session %s for %s item(s)", session.session_id, len(checkout_in.items))
    return {"session_id": session.session_id, "amount": session.amount, "currency": session.currency}
