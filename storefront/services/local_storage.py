import json
import logging
import os
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Dict, Generic, Hashable, List, Optional, Protocol, TypeVar

from storefront.models.cart import CartItem

logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyValueStorage(Protocol):
    """Device storage: string values by string key. Any call may raise."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(data or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class FileStorage:
    """
    Key-value storage backed by a single JSON object on disk.

    One file per device, so a device's cart and favorites live side by side
    the way they would in a browser's localStorage.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Storage file {self.path} does not hold an object")
        return data

    def _write(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)


class LocalListStore(Generic[T]):
    """
    Persists one list under a storage key with an inactivity expiry.

    The activity timestamp lives next to the list under ``<key>_timestamp``
    (milliseconds since the epoch). Nothing here raises: storage errors are
    logged and reads degrade to an empty list.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str,
        expiry: timedelta,
        parse_item: Callable[[Any], Optional[T]],
        dump_item: Callable[[T], Any],
        item_key: Callable[[T], Hashable],
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.key = key
        self.timestamp_key = f"{key}_timestamp"
        self.expiry = expiry
        self.parse_item = parse_item
        self.dump_item = dump_item
        self.item_key = item_key
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _timestamp(self) -> int:
        try:
            raw = self.storage.get(self.timestamp_key)
            return int(raw) if raw else 0
        except Exception as e:
            logger.error("Error reading %s: %s", self.timestamp_key, e)
            return 0

    def touch(self) -> None:
        try:
            self.storage.set(self.timestamp_key, str(self._now_ms()))
        except Exception as e:
            logger.error("Error updating %s: %s", self.timestamp_key, e)

    def has_expired(self) -> bool:
        timestamp = self._timestamp()
        expiry_ms = int(self.expiry.total_seconds() * 1000)
        return timestamp > 0 and self._now_ms() - timestamp > expiry_ms

    def purge(self) -> None:
        try:
            self.storage.remove(self.key)
            self.storage.remove(self.timestamp_key)
        except Exception as e:
            logger.error("Error purging %s: %s", self.key, e)

    def clear(self) -> None:
        """Drop the list but keep the activity timestamp."""
        try:
            self.storage.remove(self.key)
        except Exception as e:
            logger.error("Error clearing %s: %s", self.key, e)

    def load(self) -> List[T]:
        try:
            if self.has_expired():
                logger.info("Local data under %s has expired, clearing storage", self.key)
                self.purge()
                return []

            stored = self.storage.get(self.key)
            if not stored:
                return []

            parsed = json.loads(stored)
            if not isinstance(parsed, list):
                return []

            items: List[T] = []
            seen = set()
            for raw in parsed:
                item = self.parse_item(raw)
                if item is None:
                    continue
                key = self.item_key(item)
                if key in seen:
                    continue
                seen.add(key)
                items.append(item)

            self.touch()
            return items
        except Exception as e:
            logger.error("Error loading %s: %s", self.key, e)
            return []

    def save(self, items: List[T]) -> None:
        try:
            self.storage.set(self.key, json.dumps([self.dump_item(item) for item in items]))
            self.touch()
        except Exception as e:
            logger.error("Error saving %s: %s", self.key, e)


def parse_cart_item(raw: Any) -> Optional[CartItem]:
    if not isinstance(raw, dict):
        return None
    product_id = raw.get("product_id")
    variant_id = raw.get("variant_id")
    quantity = raw.get("quantity")
    if not isinstance(product_id, str) or not isinstance(variant_id, str):
        return None
    # bool is an int subclass; "true" is not a quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        return None
    return CartItem(product_id=product_id, variant_id=variant_id, quantity=quantity)


def parse_favorite(raw: Any) -> Optional[str]:
    return raw if isinstance(raw, str) and raw else None


def cart_list_store(storage: KeyValueStorage, expiry_days: int, clock: Callable[[], float] = time.time) -> LocalListStore[CartItem]:
    return LocalListStore(
        storage,
        key="storefront_cart",
        expiry=timedelta(days=expiry_days),
        parse_item=parse_cart_item,
        dump_item=lambda item: item.model_dump(),
        item_key=lambda item: item.key,
        clock=clock,
    )


def favorites_list_store(storage: KeyValueStorage, expiry_days: int, clock: Callable[[], float] = time.time) -> LocalListStore[str]:
    return LocalListStore(
        storage,
        key="storefront_favorites",
        expiry=timedelta(days=expiry_days),
        parse_item=parse_favorite,
        dump_item=lambda product_id: product_id,
        item_key=lambda product_id: product_id,
        clock=clock,
    )
