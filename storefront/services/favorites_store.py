import logging
from typing import List, Sequence

from storefront.services.local_storage import LocalListStore
from storefront.services.observable import Derived
from storefront.services.reconciler import favorites_fingerprint, merge_favorites
from storefront.services.remote_repository import FavoritesRepository
from storefront.services.synced_store import SessionContext, SyncedListStore
from storefront.services.validation import ValidationGate

logger = logging.getLogger(__name__)


class FavoritesStore(SyncedListStore[str]):
    """Favorite product ids. Membership only, no quantities."""

    label = "favorites"

    def __init__(
        self,
        context: SessionContext,
        local: LocalListStore[str],
        repository: FavoritesRepository,
        gate: ValidationGate,
        sync_interval: float = 60.0,
    ):
        super().__init__(context, local, repository, sync_interval)
        self.gate = gate
        self.count = Derived(self.items, len)

    def key_of(self, item: str) -> str:
        return item

    def fingerprint(self, items: Sequence[str]) -> str:
        return favorites_fingerprint(items)

    def merge(self, server_items: Sequence[str], local_items: Sequence[str]) -> List[str]:
        return merge_favorites(server_items, local_items)

    async def validate(self, items: Sequence[str]) -> List[str]:
        return await self.gate.validate_products(items)

    def contains(self, product_id: str) -> bool:
        return isinstance(product_id, str) and product_id in self.items.value

    async def _persist_change(self, product_id: str, added: bool, was_in_sync: bool) -> None:
        profile_id = self.context.active_profile
        if profile_id is None:
            self.local.save(self.current)
            return

        if added:
            saved = await self.repository.upsert(profile_id, product_id)
        else:
            saved = await self.repository.remove(profile_id, product_id)
        if saved and was_in_sync:
            self.last_synced_hash = self.fingerprint(self.current)

    async def add(self, product_id: str) -> bool:
        if not isinstance(product_id, str) or not product_id:
            return False

        try:
            self.error.set(None)

            self.validating.set(True)
            try:
                is_valid = await self.gate.validate_product(product_id)
            finally:
                self.validating.set(False)

            if not is_valid:
                self.error.set("This product could not be added to favorites.")
                return False

            in_sync = self._in_sync()
            self.items.update(lambda items: items if product_id in items else [*items, product_id])
            await self._persist_change(product_id, added=True, was_in_sync=in_sync)
            return True
        except Exception as e:
            logger.error("Error adding to favorites: %s", e)
            self.error.set("Failed to add item to favorites. Please try again.")
            return False

    async def remove(self, product_id: str) -> bool:
        if not isinstance(product_id, str):
            return False

        try:
            self.error.set(None)
            in_sync = self._in_sync()
            self.items.update(lambda items: [item for item in items if item != product_id])
            await self._persist_change(product_id, added=False, was_in_sync=in_sync)
            return True
        except Exception as e:
            logger.error("Error removing from favorites: %s", e)
            self.error.set("Failed to remove item from favorites. Please try again.")
            return False

    async def toggle(self, product_id: str) -> bool:
        if self.contains(product_id):
            return await self.remove(product_id)
        return await self.add(product_id)

    async def clear(self) -> bool:
        try:
            self.error.set(None)
            profile_id = self.context.active_profile

            if profile_id is not None:
                if not await self.repository.clear_all(profile_id):
                    self.error.set("Failed to clear favorites. Please try again.")
                    return False
                self._commit([])
                self.last_synced_hash = self.fingerprint([])
            else:
                self._commit([])
                self.local.purge()

            return True
        except Exception as e:
            logger.error("Error clearing favorites: %s", e)
            self.error.set("Failed to clear favorites. Please try again.")
            return False
