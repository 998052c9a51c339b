import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from storefront.models.cart import CartItem
from storefront.services.content_store import ContentStoreClient

logger = logging.getLogger(__name__)


def _stock_ok(stock: Any, quantity: int, strict: bool) -> bool:
    if isinstance(stock, bool) or not isinstance(stock, (int, float)):
        return False
    if strict:
        return stock >= quantity
    return stock > 0


class ValidationGate:
    """
    Checks cart lines and favorites against the content store.

    Non-strict checks (ordinary add/update) only require the variant to be in
    stock and let an item through when the lookup itself fails. Strict checks
    (checkout) require enough stock for the requested quantity and reject on
    lookup failure.
    """

    def __init__(self, content_store: ContentStoreClient):
        self.content_store = content_store

    def _check(self, item: CartItem, product: Optional[Dict[str, Any]], variant: Optional[Dict[str, Any]], strict: bool) -> bool:
        if not product or not product.get("_id"):
            logger.warning("Product not found: %s", item.product_id)
            return False

        if not variant or not variant.get("_id"):
            logger.warning("Variant not found: %s for product %s", item.variant_id, item.product_id)
            return False

        if variant.get("productId") != item.product_id:
            logger.warning("Variant %s does not belong to product %s", item.variant_id, item.product_id)
            return False

        stock = variant.get("stock")
        if not _stock_ok(stock, item.quantity, strict):
            if strict:
                logger.warning("Insufficient stock for %s: Available=%s, Requested=%s", product.get("name"), stock or 0, item.quantity)
            else:
                logger.warning("Item out of stock: %s", product.get("name"))
            return False

        return True

    async def validate_one(self, item: CartItem, strict: bool = False) -> bool:
        if not item or not item.product_id or not item.variant_id or item.quantity <= 0:
            return False

        result = await self.content_store.get_product_variant(item.product_id, item.variant_id)
        if result is None:
            logger.error("Error validating cart item %s, lookup failed", item.key)
            return not strict

        return self._check(item, result.get("product"), result.get("variant"), strict)

    async def validate_many(self, items: Sequence[CartItem], strict: bool = False) -> List[CartItem]:
        if not items:
            return []

        product_ids = list(dict.fromkeys(item.product_id for item in items))
        variant_ids = list(dict.fromkeys(item.variant_id for item in items))
        batch = await self.content_store.get_products_and_variants(product_ids, variant_ids)

        if not isinstance(batch, dict) or not isinstance(batch.get("products"), list) or not isinstance(batch.get("variants"), list):
            logger.warning("Batched validation failed, validating %s item(s) one by one", len(items))
            results = await asyncio.gather(*(self.validate_one(item, strict) for item in items))
            return [item for item, ok in zip(items, results) if ok]

        product_map = {product.get("_id"): product for product in batch["products"] if isinstance(product, dict)}
        variant_map = {variant.get("_id"): variant for variant in batch["variants"] if isinstance(variant, dict)}

        valid_items: List[CartItem] = []
        for item in items:
            if item.quantity <= 0:
                continue
            if self._check(item, product_map.get(item.product_id), variant_map.get(item.variant_id), strict):
                valid_items.append(item)
        return valid_items

    async def validate_product(self, product_id: str) -> bool:
        if not isinstance(product_id, str) or not product_id:
            return False

        exists = await self.content_store.product_exists(product_id)
        if exists is None:
            return True
        if not exists:
            logger.warning("Product not found: %s", product_id)
        return exists

    async def validate_products(self, product_ids: Sequence[str]) -> List[str]:
        if not product_ids:
            return []
        results = await asyncio.gather(*(self.validate_product(product_id) for product_id in product_ids))
        return [product_id for product_id, ok in zip(product_ids, results) if ok]
