"""
Session-bound list stores.

A store holds one list (cart lines or favorite product ids) for one shopper
session and keeps it in step with wherever that session persists it: device
storage while the shopper is a guest, the remote repository once they are
logged in. ``CartStore`` and ``FavoritesStore`` fill in the item-specific
parts (merge rule, fingerprint, validation) and their own mutations.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Generic, Hashable, List, Optional, Sequence, TypeVar

from storefront.services.local_storage import LocalListStore
from storefront.services.observable import Derived, Observable
from storefront.services.remote_repository import BatchResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SessionContext:
    """Who the shopper session belongs to. Callers serialize login/logout."""
    is_authenticated: bool = False
    profile_id: Optional[int] = None

    @property
    def active_profile(self) -> Optional[int]:
        return self.profile_id if self.is_authenticated else None

    def authenticate(self, profile_id: int) -> None:
        self.is_authenticated = True
        self.profile_id = profile_id

    def clear(self) -> None:
        self.is_authenticated = False
        self.profile_id = None


class SyncedListStore(Generic[T]):
    label = "items"

    def __init__(self, context: SessionContext, local: LocalListStore[T], repository, sync_interval: float = 60.0):
        self.context = context
        self.local = local
        self.repository = repository
        self.sync_interval = sync_interval

        self.items: Observable[List[T]] = Observable([])
        self.loading = Observable(True)
        self.error: Observable[Optional[str]] = Observable(None)
        self.syncing = Observable(False)
        self.validating = Observable(False)
        self.is_empty = Derived(self.items, lambda items: not items)

        self.last_synced_hash: Optional[str] = None
        self.last_sync_result: Optional[BatchResult] = None
        self._holding_local = False
        self._sync_task: Optional[asyncio.Task] = None

    # Item-specific parts

    def key_of(self, item: T) -> Hashable:
        raise NotImplementedError

    def fingerprint(self, items: Sequence[T]) -> str:
        raise NotImplementedError

    def merge(self, server_items: Sequence[T], local_items: Sequence[T]) -> List[T]:
        raise NotImplementedError

    async def validate(self, items: Sequence[T]) -> List[T]:
        raise NotImplementedError

    # Helpers

    @property
    def current(self) -> List[T]:
        return list(self.items.value)

    async def _validated(self, items: Sequence[T]) -> List[T]:
        self.validating.set(True)
        try:
            return await self.validate(items)
        finally:
            self.validating.set(False)

    def _commit(self, items: List[T]) -> None:
        self.items.set(items)

    def _in_sync(self) -> bool:
        return self.last_synced_hash == self.fingerprint(self.current)

    async def _sync_and_release_local(self, items: List[T]) -> None:
        # the device copy is dropped only once the account holds the merged list
        if await self.sync_to_remote(items):
            self.local.purge()
        else:
            self._holding_local = True
            logger.warning("Initial sync of %s failed, keeping the device copy until a sync succeeds", self.label)

    async def _persist_all(self, items: List[T]) -> bool:
        if self.context.active_profile is not None:
            return await self.sync_to_remote(items)
        self.local.save(items)
        return True

    # Lifecycle

    async def initialize(self, profile_id: Optional[int] = None) -> None:
        self.loading.set(True)
        self.error.set(None)

        try:
            if profile_id is None:
                guest_items = self.local.load()
                validated = await self._validated(guest_items)
                self._commit(validated)
                if guest_items:
                    self.local.save(validated)
                return

            self.context.authenticate(profile_id)
            server_items = await self.repository.fetch_all(profile_id)
            guest_items = self.local.load()

            if guest_items:
                validated = await self._validated(self.merge(server_items, guest_items))
                self._commit(validated)
                await self._sync_and_release_local(validated)
            else:
                validated = await self._validated(server_items)
                self._commit(validated)

            await self.start_auto_sync()
        except Exception as e:
            logger.error("Error initializing %s: %s", self.label, e)
            self.error.set(f"Failed to initialize your {self.label}. Please refresh the page.")
        finally:
            self.loading.set(False)

    async def handle_login(self, profile_id: int) -> None:
        try:
            self.context.authenticate(profile_id)

            server_items = await self.repository.fetch_all(profile_id)
            merged = self.merge(server_items, self.current)
            validated = await self._validated(merged)
            self._commit(validated)

            await self._sync_and_release_local(validated)
            await self.start_auto_sync()
            logger.info("Merged %s for profile %s: %s entries", self.label, profile_id, len(validated))
        except Exception as e:
            logger.error("Error handling user login for %s: %s", self.label, e)
            self.error.set(f"Failed to sync your {self.label} after login. Please refresh the page.")

    async def handle_logout(self) -> None:
        await self.stop_auto_sync()
        self.last_synced_hash = None
        self._holding_local = False
        self.local.save(self.current)
        self.context.clear()

    # Incremental sync

    async def sync_to_remote(self, items: Optional[Sequence[T]] = None) -> bool:
        """Push the full list to the remote repository. No-op when the fingerprint is unchanged."""
        profile_id = self.context.active_profile
        if profile_id is None:
            return False

        desired = list(self.current if items is None else items)
        current_hash = self.fingerprint(desired)
        if current_hash == self.last_synced_hash:
            return True

        self.syncing.set(True)
        try:
            result = await self.repository.reconcile_batch(profile_id, desired)
            self.last_sync_result = result
            if not result.ok:
                return False
            self.last_synced_hash = current_hash
            if self._holding_local:
                self.local.purge()
                self._holding_local = False
            return True
        except Exception as e:
            logger.error("Error syncing %s for profile %s: %s", self.label, profile_id, e)
            return False
        finally:
            self.syncing.set(False)

    async def _auto_sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sync_interval)
            if self.context.active_profile is None:
                return
            if self.fingerprint(self.current) == self.last_synced_hash:
                continue
            try:
                if not await self.sync_to_remote():
                    logger.warning("Auto-sync of %s failed, retrying next tick", self.label)
            except Exception as e:
                logger.error("Auto-sync of %s failed: %s", self.label, e)

    async def start_auto_sync(self) -> None:
        # a previous loop may be mid-sync; let it unwind before starting another
        await self.stop_auto_sync()
        if self.context.active_profile is not None:
            self._sync_task = asyncio.get_running_loop().create_task(self._auto_sync_loop())

    async def stop_auto_sync(self) -> None:
        task, self._sync_task = self._sync_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def auto_sync_running(self) -> bool:
        return self._sync_task is not None and not self._sync_task.done()
