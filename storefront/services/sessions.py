import asyncio
import logging
import os
import re
import time
from contextlib import asynccontextmanager
from typing import Callable, Dict, Optional

from sqlalchemy.engine import Engine

from storefront.core.config import settings
from storefront.services.cart_store import CartStore
from storefront.services.content_store import ContentStoreClient
from storefront.services.favorites_store import FavoritesStore
from storefront.services.local_storage import FileStorage, KeyValueStorage, cart_list_store, favorites_list_store
from storefront.services.remote_repository import CartRepository, FavoritesRepository
from storefront.services.synced_store import SessionContext
from storefront.services.validation import ValidationGate

logger = logging.getLogger(__name__)

DEVICE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,64}$")


def file_storage_factory(root: str) -> Callable[[str], KeyValueStorage]:
    def factory(device_id: str) -> KeyValueStorage:
        return FileStorage(os.path.join(root, f"{device_id}.json"))
    return factory


class ShopperSession:
    """One device's cart and favorites, sharing a single session identity."""

    def __init__(
        self,
        device_id: str,
        cart: CartStore,
        favorites: FavoritesStore,
        context: SessionContext,
        last_used: float = 0.0,
    ):
        self.device_id = device_id
        self.cart = cart
        self.favorites = favorites
        self.context = context
        self.last_used = last_used

    async def initialize(self, profile_id: Optional[int] = None) -> None:
        await self.cart.initialize(profile_id)
        await self.favorites.initialize(profile_id)

    async def login(self, profile_id: int) -> None:
        if self.context.active_profile == profile_id:
            return
        if self.context.is_authenticated:
            await self.logout()
        logger.info("Device %s logging in as profile %s", self.device_id, profile_id)
        await self.cart.handle_login(profile_id)
        await self.favorites.handle_login(profile_id)

    async def logout(self) -> None:
        if not self.context.is_authenticated:
            return
        logger.info("Device %s logging out of profile %s", self.device_id, self.context.profile_id)
        await self.cart.handle_logout()
        await self.favorites.handle_logout()

    async def close(self, flush: bool = False) -> None:
        """Stop periodic syncs, pushing any unsynced changes first when ``flush`` is set."""
        if flush and self.context.is_authenticated:
            await self.cart.sync_to_remote()
            await self.favorites.sync_to_remote()
        await self.cart.stop_auto_sync()
        await self.favorites.stop_auto_sync()


class SessionRegistry:
    """
    Live shopper sessions by device id.

    Each device has its own lock, held across bootstrap and login/logout, so
    one device's slow content-store lookups never hold up another device and
    two requests from the same device never run a transition twice. Sessions
    idle for longer than ``idle_timeout`` seconds are flushed and dropped; the
    next request rebuilds them from device storage and the account.
    """

    def __init__(
        self,
        engine: Engine,
        content_store: ContentStoreClient,
        storage_factory: Callable[[str], KeyValueStorage],
        sync_interval: float = settings.SYNC_INTERVAL_SECONDS,
        cart_expiry_days: int = settings.CART_EXPIRY_DAYS,
        favorites_expiry_days: int = settings.FAVORITES_EXPIRY_DAYS,
        idle_timeout: float = settings.SESSION_IDLE_SECONDS,
        sweep_interval: float = settings.SESSION_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gate = ValidationGate(content_store)
        self.cart_repository = CartRepository(engine)
        self.favorites_repository = FavoritesRepository(engine)
        self.storage_factory = storage_factory
        self.sync_interval = sync_interval
        self.cart_expiry_days = cart_expiry_days
        self.favorites_expiry_days = favorites_expiry_days
        self.idle_timeout = idle_timeout
        self.sweep_interval = sweep_interval
        self.clock = clock
        self.sessions: Dict[str, ShopperSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def _build(self, device_id: str) -> ShopperSession:
        storage = self.storage_factory(device_id)
        context = SessionContext()
        cart = CartStore(
            context,
            cart_list_store(storage, self.cart_expiry_days),
            self.cart_repository,
            self.gate,
            self.sync_interval,
        )
        favorites = FavoritesStore(
            context,
            favorites_list_store(storage, self.favorites_expiry_days),
            self.favorites_repository,
            self.gate,
            self.sync_interval,
        )
        return ShopperSession(device_id, cart, favorites, context, last_used=self.clock())

    @asynccontextmanager
    async def _device_lock(self, device_id: str):
        while True:
            lock = self._locks.setdefault(device_id, asyncio.Lock())
            async with lock:
                # eviction drops the lock; whoever waited on the old one starts over
                if self._locks.get(device_id) is lock:
                    yield
                    return

    async def get(self, device_id: str, profile_id: Optional[int] = None) -> ShopperSession:
        """
        Return the device's session, bootstrapping it on first use.

        A known session follows the caller's identity: a new profile logs in,
        a missing one logs out.
        """
        known = self.sessions.get(device_id)
        if known is not None:
            known.last_used = self.clock()

        async with self._device_lock(device_id):
            session = self.sessions.get(device_id)
            if session is None:
                session = self._build(device_id)
                await session.initialize(profile_id)
                self.sessions[device_id] = session
            elif profile_id is None:
                await session.logout()
            else:
                await session.login(profile_id)
            session.last_used = self.clock()
            return session

    async def logout(self, device_id: str, profile_id: int) -> None:
        """Log the device out if it is currently logged in as ``profile_id``."""
        if device_id not in self.sessions:
            return
        async with self._device_lock(device_id):
            session = self.sessions.get(device_id)
            if session is not None and session.context.profile_id == profile_id:
                await session.logout()

    async def evict_idle(self) -> int:
        evicted = 0
        for device_id, session in list(self.sessions.items()):
            if self.clock() - session.last_used < self.idle_timeout:
                continue
            async with self._device_lock(device_id):
                session = self.sessions.get(device_id)
                if session is None or self.clock() - session.last_used < self.idle_timeout:
                    continue
                await session.close(flush=True)
                del self.sessions[device_id]
                del self._locks[device_id]
                evicted += 1

        if evicted:
            logger.info("Evicted %s idle shopper session(s), %s remain", evicted, len(self.sessions))
        return evicted

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.evict_idle()
            except Exception as e:
                logger.error("Idle session sweep failed: %s", e)

    def start_sweeper(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def close_all(self) -> None:
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass

        for session in list(self.sessions.values()):
            await session.close(flush=True)
        self.sessions.clear()
        self._locks.clear()
