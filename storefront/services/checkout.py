import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from storefront.core.config import settings
from storefront.services.content_store import ContentStoreClient

logger = logging.getLogger(__name__)

PAYMENT_PROCESSOR_UNAVAILABLE = "payment_processor_unavailable"
INVALID_ITEM = "invalid_item"
PRICE_MISMATCH = "price_mismatch"
INSUFFICIENT_STOCK = "insufficient_stock"
PROCESSOR_ERROR = "processor_error"

COUNTRY_CODES = {
    "United States": "US",
    "Canada": "CA",
    "United Kingdom": "GB",
    "Australia": "AU",
    "New Zealand": "NZ",
}

# Client and store prices may differ by at most this many cents
PRICE_TOLERANCE_CENTS = 1


class CheckoutError(Exception):
    def __init__(self, code: str, message: str, status_code: int = 400):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class CheckoutLineItem(BaseModel):
    id: str
    sku: str
    name: Optional[str] = None
    price: float
    quantity: int


class ShippingDetails(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    address_line1: str = ""
    address_line2: Optional[str] = None
    city: str = ""
    state: Optional[str] = None
    postal_code: str = ""
    country: Optional[str] = None


class CheckoutRequest(BaseModel):
    items: List[CheckoutLineItem]
    shipping_details: Optional[ShippingDetails] = None
    origin: Optional[str] = None


class VerifiedItem(BaseModel):
    id: str
    sku: str
    name: str
    price: float
    quantity: int


class CheckoutSession(BaseModel):
    session_id: str
    amount: int
    currency: str


def country_code(country_name: Optional[str]) -> str:
    return COUNTRY_CODES.get(country_name or "", settings.DEFAULT_COUNTRY_CODE)


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


def price_matches(store_price: float, client_price: float) -> bool:
    return abs(to_cents(store_price) - to_cents(client_price)) <= PRICE_TOLERANCE_CENTS


def display_name(product_name: str, variant: Dict[str, Any]) -> str:
    color = (variant.get("color") or {}).get("name")
    size = (variant.get("size") or {}).get("name")
    name = product_name
    if color:
        name += f" - {color}"
    if size:
        name += f" ({size})"
    return name


def get_payment_client() -> Optional[Any]:
    if not settings.RAZORPAY_KEY_ID or not settings.RAZORPAY_KEY_SECRET:
        logger.error("Missing Razorpay credentials in environment variables")
        return None
    import razorpay
    return razorpay.Client(auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET))


class CheckoutService:
    def __init__(self, content_store: ContentStoreClient, payment_client: Optional[Any]):
        self.content_store = content_store
        self.payment_client = payment_client

    async def verify_item(self, item: CheckoutLineItem) -> VerifiedItem:
        label = item.name or "item"
        if not item.id or not item.sku or item.quantity <= 0:
            raise CheckoutError(INVALID_ITEM, "Invalid item data")

        result = await self.content_store.get_product_variant(item.id, item.sku)
        if result is None:
            logger.error("Could not look up %s (%s/%s) in the content store", label, item.id, item.sku)
            raise CheckoutError(INVALID_ITEM, f"Unable to verify {label}. Please try again.")

        product = result.get("product")
        if not product or not product.get("_id"):
            logger.error("Product not found: %s, Name: %s", item.id, item.name)
            raise CheckoutError(INVALID_ITEM, f"Product not found: {item.name or 'Unknown product'}")

        variant = result.get("variant")
        if not variant or not variant.get("_id"):
            logger.error("Variant not found: %s for item %s", item.sku, item.name)
            raise CheckoutError(INVALID_ITEM, f"Product variant not found: {item.name or 'Unknown variant'}")

        if variant.get("productId") != item.id:
            logger.warning("Variant %s belongs to product %s, not %s", item.sku, variant.get("productId"), item.id)

        store_price = variant.get("price")
        if not isinstance(store_price, (int, float)) or not price_matches(store_price, item.price):
            logger.error("Price mismatch for %s: Store=%s, Client=%s", item.name, store_price, item.price)
            raise CheckoutError(PRICE_MISMATCH, "Price mismatch detected. Please refresh and try again.")

        stock = variant.get("stock")
        if not isinstance(stock, (int, float)) or not stock or stock < item.quantity:
            logger.error("Insufficient stock for %s: Available=%s, Requested=%s", item.name, stock, item.quantity)
            raise CheckoutError(INSUFFICIENT_STOCK, f"Not enough stock for {label}. Available: {stock or 0}")

        return VerifiedItem(
            id=item.id,
            sku=item.sku,
            name=display_name(product.get("name") or label, variant),
            price=store_price,
            quantity=item.quantity,
        )

    async def verify_items(self, items: List[CheckoutLineItem]) -> List[VerifiedItem]:
        if not items:
            raise CheckoutError(INVALID_ITEM, "No items provided")

        verified = []
        for item in items:
            verified.append(await self.verify_item(item))
        return verified

    def build_order(self, verified: List[VerifiedItem], shipping: Optional[ShippingDetails]) -> Dict[str, Any]:
        order_id = f"order-{int(time.time() * 1000)}"
        items_total = sum(to_cents(item.price) * item.quantity for item in verified)
        shipping_cents = to_cents(settings.SHIPPING_FLAT_RATE)
        summary = json.dumps([{"name": item.name, "quantity": item.quantity} for item in verified])

        notes = {
            "order_id": order_id,
            "item_count": str(len(verified)),
            # Razorpay caps note values at 256 characters
            "order_summary": summary[:256],
        }
        if shipping:
            notes.update({
                "customer_email": shipping.email or "",
                "shipping_name": f"{shipping.first_name} {shipping.last_name}".strip(),
                "shipping_phone": shipping.phone or "",
                "shipping_address": ", ".join(
                    part for part in [shipping.address_line1, shipping.address_line2, shipping.city, shipping.state, shipping.postal_code] if part
                )[:256],
                "shipping_country": country_code(shipping.country),
            })

        return {
            "amount": items_total + shipping_cents,
            "currency": settings.PAYMENT_CURRENCY,
            "receipt": order_id,
            "payment_capture": 1,
            "notes": notes,
        }

    async def create_session(self, request: CheckoutRequest) -> CheckoutSession:
        if self.payment_client is None:
            logger.error("Payment processor is not initialized")
            raise CheckoutError(PAYMENT_PROCESSOR_UNAVAILABLE, "Payment processor unavailable. Please try again later.", 503)

        verified = await self.verify_items(request.items)
        data = self.build_order(verified, request.shipping_details)

        try:
            order = await asyncio.to_thread(self.payment_client.order.create, data=data)
        except Exception as e:
            logger.error("Payment session creation error: %s", e)
            raise CheckoutError(PROCESSOR_ERROR, "Failed to create payment session. Please try again later.", 500)

        session_id = order.get("id") if isinstance(order, dict) else None
        if not session_id:
            logger.error("Payment processor returned no order id: %s", order)
            raise CheckoutError(PROCESSOR_ERROR, "Failed to create payment session. Please try again later.", 500)

        return CheckoutSession(session_id=session_id, amount=data["amount"], currency=data["currency"])
