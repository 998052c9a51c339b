import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Hashable, List, Optional, Sequence, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session, select, delete

from storefront.core.utils import utcnow
from storefront.models.cart import CartItem, CartKey, UserCart
from storefront.models.favorite import UserFavorite
from storefront.services.reconciler import SyncPlan, plan_cart_sync, plan_favorites_sync

logger = logging.getLogger(__name__)


@dataclass
class WriteOutcome:
    operation: str
    key: Hashable
    ok: bool
    error: Optional[str] = None


@dataclass
class BatchResult:
    """Per-item outcome of a reconcile batch. Partial failures are not rolled back."""
    outcomes: List[WriteOutcome] = field(default_factory=list)
    fetch_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.fetch_error is None and all(outcome.ok for outcome in self.outcomes)

    @property
    def failures(self) -> List[WriteOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def write_count(self) -> int:
        return len(self.outcomes)


class _RemoteRepository:
    def __init__(self, engine: Engine):
        self.engine = engine

    async def _run(self, fn: Callable[..., Any], *args):
        return await asyncio.to_thread(fn, *args)

    async def _execute(self, operations: List[Tuple[str, List[Hashable], Awaitable[Any]]]) -> BatchResult:
        # all-settled: a failing write does not cancel its siblings
        results = await asyncio.gather(*(op for _, _, op in operations), return_exceptions=True)

        batch = BatchResult()
        for (operation, keys, _), result in zip(operations, results):
            error = str(result) if isinstance(result, BaseException) else None
            for key in keys:
                batch.outcomes.append(WriteOutcome(operation=operation, key=key, ok=error is None, error=error))

        if batch.failures:
            logger.error("Some sync operations failed: %s", [(f.operation, f.key, f.error) for f in batch.failures])
        return batch


class CartRepository(_RemoteRepository):
    """Per-profile cart rows in the ``user_carts`` table."""

    def _select_rows(self, profile_id: int) -> List[UserCart]:
        with Session(self.engine) as session:
            return list(session.exec(select(UserCart).where(UserCart.profile_id == profile_id)).all())

    def _upsert(self, profile_id: int, item: CartItem) -> None:
        with Session(self.engine) as session:
            existing = session.exec(
                select(UserCart).where(
                    UserCart.profile_id == profile_id,
                    UserCart.product_id == item.product_id,
                    UserCart.variant_id == item.variant_id,
                )
            ).first()

            if existing:
                if existing.quantity == item.quantity:
                    return
                existing.quantity = item.quantity
                existing.updated_at = utcnow()
                session.add(existing)
            else:
                session.add(UserCart(
                    profile_id=profile_id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    quantity=item.quantity,
                ))
            session.commit()

    def _insert(self, profile_id: int, item: CartItem) -> None:
        with Session(self.engine) as session:
            session.add(UserCart(
                profile_id=profile_id,
                product_id=item.product_id,
                variant_id=item.variant_id,
                quantity=item.quantity,
            ))
            session.commit()

    def _update_quantity(self, row_id: int, quantity: int) -> None:
        with Session(self.engine) as session:
            row = session.get(UserCart, row_id)
            if row is None:
                raise LookupError(f"Cart row {row_id} no longer exists")
            row.quantity = quantity
            row.updated_at = utcnow()
            session.add(row)
            session.commit()

    def _delete_ids(self, row_ids: Sequence[int]) -> None:
        with Session(self.engine) as session:
            session.exec(delete(UserCart).where(UserCart.id.in_(list(row_ids))))
            session.commit()

    def _delete_key(self, profile_id: int, key: CartKey) -> None:
        product_id, variant_id = key
        with Session(self.engine) as session:
            session.exec(delete(UserCart).where(
                UserCart.profile_id == profile_id,
                UserCart.product_id == product_id,
                UserCart.variant_id == variant_id,
            ))
            session.commit()

    def _delete_profile(self, profile_id: int) -> None:
        with Session(self.engine) as session:
            session.exec(delete(UserCart).where(UserCart.profile_id == profile_id))
            session.commit()

    async def fetch_all(self, profile_id: int) -> List[CartItem]:
        try:
            rows = await self._run(self._select_rows, profile_id)
        except Exception as e:
            logger.error("Error loading cart for profile %s: %s", profile_id, e)
            return []
        return [row.to_item() for row in rows]

    async def upsert(self, profile_id: int, item: CartItem) -> bool:
        try:
            await self._run(self._upsert, profile_id, item)
            return True
        except Exception as e:
            logger.error("Error saving cart item %s for profile %s: %s", item.key, profile_id, e)
            return False

    async def remove(self, profile_id: int, key: CartKey) -> bool:
        try:
            await self._run(self._delete_key, profile_id, key)
            return True
        except Exception as e:
            logger.error("Error removing cart item %s for profile %s: %s", key, profile_id, e)
            return False

    async def clear_all(self, profile_id: int) -> bool:
        try:
            await self._run(self._delete_profile, profile_id)
            return True
        except Exception as e:
            logger.error("Error clearing cart for profile %s: %s", profile_id, e)
            return False

    async def reconcile_batch(self, profile_id: int, desired: Sequence[CartItem]) -> BatchResult:
        try:
            rows = await self._run(self._select_rows, profile_id)
        except Exception as e:
            logger.error("Error fetching existing cart items for profile %s: %s", profile_id, e)
            return BatchResult(fetch_error=str(e))

        plan: SyncPlan[CartItem] = plan_cart_sync(desired, rows)
        keys_by_id = {row.id: row.key for row in rows}

        operations = []
        for item in plan.inserts:
            operations.append(("insert", [item.key], self._run(self._insert, profile_id, item)))
        for row_id, item in plan.updates:
            operations.append(("update", [item.key], self._run(self._update_quantity, row_id, item.quantity)))
        if plan.deletes:
            operations.append(("delete", [keys_by_id[row_id] for row_id in plan.deletes], self._run(self._delete_ids, plan.deletes)))

        return await self._execute(operations)


class FavoritesRepository(_RemoteRepository):
    """Per-profile favorite rows in the ``user_favorites`` table."""

    def _select_rows(self, profile_id: int) -> List[UserFavorite]:
        with Session(self.engine) as session:
            return list(session.exec(select(UserFavorite).where(UserFavorite.profile_id == profile_id)).all())

    def _add(self, profile_id: int, product_id: str) -> None:
        with Session(self.engine) as session:
            existing = session.exec(
                select(UserFavorite).where(
                    UserFavorite.profile_id == profile_id,
                    UserFavorite.product_id == product_id,
                )
            ).first()
            if existing:
                return
            session.add(UserFavorite(profile_id=profile_id, product_id=product_id))
            session.commit()

    def _insert(self, profile_id: int, product_id: str) -> None:
        with Session(self.engine) as session:
            session.add(UserFavorite(profile_id=profile_id, product_id=product_id))
            session.commit()

    def _delete_ids(self, row_ids: Sequence[int]) -> None:
        with Session(self.engine) as session:
            session.exec(delete(UserFavorite).where(UserFavorite.id.in_(list(row_ids))))
            session.commit()

    def _delete_key(self, profile_id: int, product_id: str) -> None:
        with Session(self.engine) as session:
            session.exec(delete(UserFavorite).where(
                UserFavorite.profile_id == profile_id,
                UserFavorite.product_id == product_id,
            ))
            session.commit()

    def _delete_profile(self, profile_id: int) -> None:
        with Session(self.engine) as session:
            session.exec(delete(UserFavorite).where(UserFavorite.profile_id == profile_id))
            session.commit()

    async def fetch_all(self, profile_id: int) -> List[str]:
        try:
            rows = await self._run(self._select_rows, profile_id)
        except Exception as e:
            logger.error("Error loading favorites for profile %s: %s", profile_id, e)
            return []
        return list(dict.fromkeys(row.product_id for row in rows))

    async def upsert(self, profile_id: int, product_id: str) -> bool:
        try:
            await self._run(self._add, profile_id, product_id)
            return True
        except Exception as e:
            logger.error("Error adding favorite %s for profile %s: %s", product_id, profile_id, e)
            return False

    async def remove(self, profile_id: int, product_id: str) -> bool:
        try:
            await self._run(self._delete_key, profile_id, product_id)
            return True
        except Exception as e:
            logger.error("Error removing favorite %s for profile %s: %s", product_id, profile_id, e)
            return False

    async def clear_all(self, profile_id: int) -> bool:
        try:
            await self._run(self._delete_profile, profile_id)
            return True
        except Exception as e:
            logger.error("Error clearing favorites for profile %s: %s", profile_id, e)
            return False

    async def reconcile_batch(self, profile_id: int, desired: Sequence[str]) -> BatchResult:
        try:
            rows = await self._run(self._select_rows, profile_id)
        except Exception as e:
            logger.error("Error fetching existing favorites for profile %s: %s", profile_id, e)
            return BatchResult(fetch_error=str(e))

        plan: SyncPlan[str] = plan_favorites_sync(desired, rows)
        keys_by_id = {row.id: row.product_id for row in rows}

        operations = []
        for product_id in plan.inserts:
            operations.append(("insert", [product_id], self._run(self._insert, profile_id, product_id)))
        if plan.deletes:
            operations.append(("delete", [keys_by_id[row_id] for row_id in plan.deletes], self._run(self._delete_ids, plan.deletes)))

        return await self._execute(operations)
