"""
Reconciliation of cart and favorites lists.

Two operations live here, both pure:

* merging a guest (local) list into the server list at login, and
* planning the writes that bring the remote collection in line with the
  full desired list (inserts, quantity updates, and deletion of every remote
  row the desired list no longer contains).

Merging keeps the larger quantity when both sides hold the same key. It
cannot tell a deliberate decrease on another device from a stale copy, and
planning deletes anything not in the desired list, so callers must always
pass the complete list rather than a delta.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Dict, Generic, Iterable, List, Sequence, Tuple, TypeVar

from storefront.models.cart import CartItem, CartKey, UserCart
from storefront.models.favorite import UserFavorite

T = TypeVar("T")


@dataclass
class SyncPlan(Generic[T]):
    inserts: List[T] = field(default_factory=list)
    updates: List[Tuple[int, T]] = field(default_factory=list)
    deletes: List[int] = field(default_factory=list)

    @property
    def write_count(self) -> int:
        return len(self.inserts) + len(self.updates) + len(self.deletes)

    @property
    def is_empty(self) -> bool:
        return self.write_count == 0


def _digest(payload) -> str:
    encoded = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def cart_fingerprint(items: Iterable[CartItem]) -> str:
    entries = sorted(
        ({"pid": item.product_id, "vid": item.variant_id, "qty": item.quantity} for item in items),
        key=lambda entry: (entry["pid"], entry["vid"]),
    )
    return _digest(entries)


def favorites_fingerprint(product_ids: Iterable[str]) -> str:
    return _digest(sorted(set(product_ids)))


def merge_cart_items(server_items: Sequence[CartItem], local_items: Sequence[CartItem]) -> List[CartItem]:
    merged: Dict[CartKey, CartItem] = {}
    for item in server_items:
        merged.setdefault(item.key, item)

    for local_item in local_items:
        existing = merged.get(local_item.key)
        if existing is None:
            merged[local_item.key] = local_item
        elif local_item.quantity > existing.quantity:
            merged[local_item.key] = existing.with_quantity(local_item.quantity)

    # dicts keep insertion order: server items first, then new local items
    return list(merged.values())


def merge_favorites(server_ids: Sequence[str], local_ids: Sequence[str]) -> List[str]:
    return list(dict.fromkeys([*server_ids, *local_ids]))


def plan_cart_sync(current: Sequence[CartItem], remote_rows: Sequence[UserCart]) -> SyncPlan[CartItem]:
    plan: SyncPlan[CartItem] = SyncPlan()

    remaining: Dict[CartKey, UserCart] = {}
    for row in remote_rows:
        if row.key in remaining:
            # duplicate rows for one key: keep the first, drop the rest
            plan.deletes.append(row.id)
        else:
            remaining[row.key] = row

    for item in current:
        row = remaining.pop(item.key, None)
        if row is None:
            plan.inserts.append(item)
        elif row.quantity != item.quantity:
            plan.updates.append((row.id, item))

    plan.deletes.extend(row.id for row in remaining.values())
    return plan


def plan_favorites_sync(current: Sequence[str], remote_rows: Sequence[UserFavorite]) -> SyncPlan[str]:
    plan: SyncPlan[str] = SyncPlan()

    remaining: Dict[str, UserFavorite] = {}
    for row in remote_rows:
        if row.product_id in remaining:
            plan.deletes.append(row.id)
        else:
            remaining[row.product_id] = row

    for product_id in dict.fromkeys(current):
        if remaining.pop(product_id, None) is None:
            plan.inserts.append(product_id)

    plan.deletes.extend(row.id for row in remaining.values())
    return plan
