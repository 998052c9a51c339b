import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from storefront.models.cart import CartItem, CartKey
from storefront.services.local_storage import LocalListStore
from storefront.services.observable import Derived
from storefront.services.reconciler import cart_fingerprint, merge_cart_items
from storefront.services.remote_repository import CartRepository
from storefront.services.synced_store import SessionContext, SyncedListStore
from storefront.services.validation import ValidationGate

logger = logging.getLogger(__name__)


@dataclass
class CheckoutValidation:
    valid: bool
    invalid_items: List[CartItem] = field(default_factory=list)


class CartStore(SyncedListStore[CartItem]):
    label = "cart"

    def __init__(
        self,
        context: SessionContext,
        local: LocalListStore[CartItem],
        repository: CartRepository,
        gate: ValidationGate,
        sync_interval: float = 60.0,
    ):
        super().__init__(context, local, repository, sync_interval)
        self.gate = gate
        self.count = Derived(self.items, lambda items: sum(item.quantity for item in items))

    def key_of(self, item: CartItem) -> CartKey:
        return item.key

    def fingerprint(self, items: Sequence[CartItem]) -> str:
        return cart_fingerprint(items)

    def merge(self, server_items: Sequence[CartItem], local_items: Sequence[CartItem]) -> List[CartItem]:
        return merge_cart_items(server_items, local_items)

    async def validate(self, items: Sequence[CartItem]) -> List[CartItem]:
        return await self.gate.validate_many(items)

    def find(self, product_id: str, variant_id: str) -> Optional[CartItem]:
        return next((item for item in self.items.value if item.key == (product_id, variant_id)), None)

    async def _persist_item(self, key: CartKey, was_in_sync: bool) -> None:
        updated = self.current
        profile_id = self.context.active_profile
        if profile_id is None:
            self.local.save(updated)
            return

        item = next((item for item in updated if item.key == key), None)
        if item is None:
            saved = await self.repository.remove(profile_id, key)
        else:
            saved = await self.repository.upsert(profile_id, item)

        # only a list that was fully synced before this write is fully synced after it
        if saved and was_in_sync:
            self.last_synced_hash = self.fingerprint(updated)

    async def add(self, product_id: str, variant_id: str, quantity: int = 1) -> bool:
        if quantity <= 0:
            return False

        try:
            self.error.set(None)
            new_item = CartItem(product_id=product_id, variant_id=variant_id, quantity=quantity)

            self.validating.set(True)
            try:
                is_valid = await self.gate.validate_one(new_item)
            finally:
                self.validating.set(False)

            if not is_valid:
                self.error.set("This item is not available or out of stock.")
                return False

            def apply(items: List[CartItem]) -> List[CartItem]:
                if any(item.key == new_item.key for item in items):
                    return [item.with_quantity(item.quantity + quantity) if item.key == new_item.key else item for item in items]
                return [*items, new_item]

            in_sync = self._in_sync()
            self.items.update(apply)
            await self._persist_item(new_item.key, in_sync)
            return True
        except Exception as e:
            logger.error("Error adding item to cart: %s", e)
            self.error.set("Failed to add item to cart. Please try again.")
            return False

    async def remove(self, product_id: str, variant_id: str) -> bool:
        try:
            self.error.set(None)
            key = (product_id, variant_id)
            in_sync = self._in_sync()
            self.items.update(lambda items: [item for item in items if item.key != key])
            await self._persist_item(key, in_sync)
            return True
        except Exception as e:
            logger.error("Error removing item from cart: %s", e)
            self.error.set("Failed to remove item from cart. Please try again.")
            return False

    async def update_quantity(self, product_id: str, variant_id: str, quantity: int) -> bool:
        if quantity <= 0:
            return await self.remove(product_id, variant_id)

        try:
            self.error.set(None)
            if self.find(product_id, variant_id) is None:
                return False

            updated_item = CartItem(product_id=product_id, variant_id=variant_id, quantity=quantity)

            self.validating.set(True)
            try:
                is_valid = await self.gate.validate_one(updated_item)
            finally:
                self.validating.set(False)

            if not is_valid:
                self.error.set("This item is not available in the requested quantity.")
                return False

            in_sync = self._in_sync()
            self.items.update(
                lambda items: [updated_item if item.key == updated_item.key else item for item in items]
            )
            await self._persist_item(updated_item.key, in_sync)
            return True
        except Exception as e:
            logger.error("Error updating cart item quantity: %s", e)
            self.error.set("Failed to update item quantity. Please try again.")
            return False

    async def clear(self) -> bool:
        try:
            self.error.set(None)
            profile_id = self.context.active_profile

            if profile_id is not None:
                if not await self.repository.clear_all(profile_id):
                    self.error.set("Failed to clear cart. Please try again.")
                    return False
                self._commit([])
                self.last_synced_hash = self.fingerprint([])
            else:
                self._commit([])
                self.local.clear()

            return True
        except Exception as e:
            logger.error("Error clearing cart: %s", e)
            self.error.set("Failed to clear cart. Please try again.")
            return False

    async def validate_for_checkout(self) -> CheckoutValidation:
        """Strictly revalidate every line, evicting the ones that can no longer be bought."""
        try:
            self.validating.set(True)
            self.error.set(None)

            current = self.current
            valid_items = await self.gate.validate_many(current, strict=True)
            valid_keys = {item.key for item in valid_items}
            invalid_items = [item for item in current if item.key not in valid_keys]

            if invalid_items:
                self._commit(valid_items)
                await self._persist_all(valid_items)
                self.error.set(f"{len(invalid_items)} item(s) were removed from your cart because they are no longer available.")

            return CheckoutValidation(valid=not invalid_items, invalid_items=invalid_items)
        except Exception as e:
            logger.error("Error validating cart for checkout: %s", e)
            self.error.set("Failed to validate cart for checkout. Please try again.")
            return CheckoutValidation(valid=False)
        finally:
            self.validating.set(False)

    async def summary(self) -> Dict[str, Any]:
        """Price the current lines from the content store."""
        items = self.current
        lines = []
        subtotal = 0.0

        batch = None
        if items:
            batch = await self.gate.content_store.get_products_and_variants(
                list(dict.fromkeys(item.product_id for item in items)),
                list(dict.fromkeys(item.variant_id for item in items)),
            )

        found = batch if isinstance(batch, dict) else {}
        products = {p.get("_id"): p for p in found.get("products") or [] if isinstance(p, dict)}
        variants = {v.get("_id"): v for v in found.get("variants") or [] if isinstance(v, dict)}

        for item in items:
            price = (variants.get(item.variant_id) or {}).get("price")
            total = round(price * item.quantity, 2) if isinstance(price, (int, float)) else None
            if total is not None:
                subtotal += total
            lines.append({
                "product_id": item.product_id,
                "variant_id": item.variant_id,
                "name": (products.get(item.product_id) or {}).get("name"),
                "quantity": item.quantity,
                "price": price,
                "total": total,
            })

        return {
            "items": lines,
            "count": self.count.value,
            "subtotal": round(subtotal, 2),
            "priced": bool(found) or not items,
        }
