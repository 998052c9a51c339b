import asyncio
import json

from storefront.models.cart import CartItem
from storefront.services.cart_store import CartStore
from storefront.services.local_storage import cart_list_store
from storefront.services.remote_repository import BatchResult, CartRepository, WriteOutcome


def item(product_id, variant_id, quantity):
    return CartItem(product_id=product_id, variant_id=variant_id, quantity=quantity)


def stored_cart(storage):
    raw = storage.get("storefront_cart")
    return json.loads(raw) if raw else None


async def test_guest_add_persists_locally_and_notifies(cart_store, storage):
    counts = []
    cart_store.count.subscribe(counts.append)

    assert await cart_store.add("prod-tee", "var-tee-m", 2)

    assert cart_store.items.value == [item("prod-tee", "var-tee-m", 2)]
    assert counts == [0, 2]
    assert not cart_store.is_empty.value
    assert stored_cart(storage) == [{"product_id": "prod-tee", "variant_id": "var-tee-m", "quantity": 2}]


async def test_adding_an_existing_line_sums_quantities(cart_store):
    await cart_store.add("prod-tee", "var-tee-m", 2)
    await cart_store.add("prod-cap", "var-cap")
    await cart_store.add("prod-tee", "var-tee-m", 3)

    assert cart_store.items.value == [item("prod-tee", "var-tee-m", 5), item("prod-cap", "var-cap", 1)]
    assert cart_store.count.value == 6


async def test_add_rejects_unavailable_items_and_bad_quantities(cart_store):
    assert not await cart_store.add("prod-sold-out", "var-sold-out")
    assert cart_store.error.value == "This item is not available or out of stock."

    assert not await cart_store.add("prod-tee", "var-tee-m", 0)
    assert cart_store.items.value == []


async def test_update_quantity_to_zero_is_the_same_as_remove(cart_store, storage, clock, engine, gate, context):
    other = CartStore(context, cart_list_store(storage, 30, clock=clock), CartRepository(engine), gate)
    for store in (cart_store, other):
        store.items.set([item("prod-tee", "var-tee-m", 2), item("prod-cap", "var-cap", 1)])

    assert await cart_store.update_quantity("prod-tee", "var-tee-m", 0)
    assert await other.remove("prod-tee", "var-tee-m")

    assert cart_store.items.value == other.items.value == [item("prod-cap", "var-cap", 1)]


async def test_update_quantity_of_absent_line_fails_quietly(cart_store):
    assert not await cart_store.update_quantity("prod-tee", "var-tee-m", 3)
    assert cart_store.error.value is None


async def test_update_quantity_validates_the_line(cart_store, catalog):
    await cart_store.add("prod-tee", "var-tee-m", 1)

    assert await cart_store.update_quantity("prod-tee", "var-tee-m", 4)
    assert cart_store.find("prod-tee", "var-tee-m").quantity == 4

    catalog.variants["var-tee-m"]["stock"] = 0
    assert not await cart_store.update_quantity("prod-tee", "var-tee-m", 5)
    assert cart_store.error.value == "This item is not available in the requested quantity."
    assert cart_store.find("prod-tee", "var-tee-m").quantity == 4


async def test_guest_initialize_drops_lines_that_no_longer_validate(cart_store, storage, clock):
    cart_list_store(storage, 30, clock=clock).save([
        item("prod-tee", "var-tee-m", 1),
        item("prod-sold-out", "var-sold-out", 1),
    ])

    await cart_store.initialize()

    assert cart_store.items.value == [item("prod-tee", "var-tee-m", 1)]
    assert not cart_store.loading.value
    assert len(stored_cart(storage)) == 1
    assert not cart_store.auto_sync_running


async def test_login_merges_guest_cart_into_account(cart_store, storage, profile_id):
    await cart_store.repository.upsert(profile_id, item("prod-tee", "var-tee-m", 2))
    await cart_store.add("prod-tee", "var-tee-m", 5)
    await cart_store.add("prod-cap", "var-cap", 1)

    await cart_store.handle_login(profile_id)
    try:
        assert cart_store.items.value == [item("prod-tee", "var-tee-m", 5), item("prod-cap", "var-cap", 1)]
        assert await cart_store.repository.fetch_all(profile_id) == cart_store.items.value
        assert storage.get("storefront_cart") is None
        assert cart_store.auto_sync_running
        assert cart_store.last_synced_hash == cart_store.fingerprint(cart_store.items.value)
    finally:
        await cart_store.stop_auto_sync()


async def test_authenticated_initialize_with_guest_lines_merges_and_purges(cart_store, storage, clock, profile_id):
    await cart_store.repository.upsert(profile_id, item("prod-cap", "var-cap", 1))
    cart_list_store(storage, 30, clock=clock).save([item("prod-tee", "var-tee-m", 1)])

    await cart_store.initialize(profile_id)
    try:
        assert {line.key for line in cart_store.items.value} == {("prod-cap", "var-cap"), ("prod-tee", "var-tee-m")}
        assert storage.get("storefront_cart") is None
        assert len(await cart_store.repository.fetch_all(profile_id)) == 2
    finally:
        await cart_store.stop_auto_sync()


async def test_logout_stops_sync_and_keeps_cart_on_device(cart_store, storage, context, profile_id):
    await cart_store.handle_login(profile_id)
    await cart_store.add("prod-cap", "var-cap", 2)

    await cart_store.handle_logout()

    assert not cart_store.auto_sync_running
    assert cart_store.last_synced_hash is None
    assert not context.is_authenticated and context.profile_id is None
    assert stored_cart(storage) == [{"product_id": "prod-cap", "variant_id": "var-cap", "quantity": 2}]
    assert cart_store.items.value == [item("prod-cap", "var-cap", 2)]


async def test_authenticated_mutations_write_through(cart_store, profile_id):
    await cart_store.handle_login(profile_id)
    try:
        await cart_store.add("prod-tee", "var-tee-m", 1)
        await cart_store.add("prod-cap", "var-cap", 2)
        await cart_store.remove("prod-tee", "var-tee-m")

        assert await cart_store.repository.fetch_all(profile_id) == [item("prod-cap", "var-cap", 2)]
        assert cart_store.last_synced_hash == cart_store.fingerprint(cart_store.items.value)
    finally:
        await cart_store.stop_auto_sync()


async def test_single_write_does_not_mark_an_unsynced_cart_as_synced(cart_store, context, profile_id):
    context.authenticate(profile_id)
    cart_store.items.set([item("prod-tee", "var-tee-m", 1)])

    await cart_store.add("prod-cap", "var-cap", 1)

    assert cart_store.last_synced_hash is None
    assert await cart_store.sync_to_remote()
    assert await cart_store.repository.fetch_all(profile_id) == [item("prod-cap", "var-cap", 1), item("prod-tee", "var-tee-m", 1)]


async def test_unchanged_cart_is_not_synced_twice(cart_store, context, profile_id, monkeypatch):
    context.authenticate(profile_id)
    cart_store.items.set([item("prod-tee", "var-tee-m", 1)])

    calls = []
    original = cart_store.repository.reconcile_batch

    async def counting(profile, desired):
        result = await original(profile, desired)
        calls.append(result.write_count)
        return result

    monkeypatch.setattr(cart_store.repository, "reconcile_batch", counting)

    assert await cart_store.sync_to_remote()
    assert await cart_store.sync_to_remote()

    assert calls == [1]


async def test_failed_sync_leaves_fingerprint_for_retry(cart_store, context, profile_id, monkeypatch):
    context.authenticate(profile_id)
    cart_store.items.set([item("prod-tee", "var-tee-m", 1)])

    async def failing(profile, desired):
        return BatchResult(outcomes=[WriteOutcome("insert", ("prod-tee", "var-tee-m"), ok=False, error="boom")])

    monkeypatch.setattr(cart_store.repository, "reconcile_batch", failing)

    assert not await cart_store.sync_to_remote()
    assert cart_store.last_synced_hash is None
    assert cart_store.last_sync_result.failures[0].error == "boom"


async def test_guest_sync_is_a_noop(cart_store):
    assert not await cart_store.sync_to_remote()


async def test_periodic_sync_pushes_changes(storage, clock, engine, gate, context, profile_id):
    store = CartStore(context, cart_list_store(storage, 30, clock=clock), CartRepository(engine), gate, sync_interval=0.01)
    await store.handle_login(profile_id)
    try:
        store.items.set([item("prod-cap", "var-cap", 3)])

        for _ in range(100):
            if store.last_synced_hash == store.fingerprint(store.items.value):
                break
            await asyncio.sleep(0.02)

        assert await store.repository.fetch_all(profile_id) == [item("prod-cap", "var-cap", 3)]
    finally:
        await store.stop_auto_sync()
    assert not store.auto_sync_running


async def test_clear_as_guest_keeps_timestamp(cart_store, storage):
    await cart_store.add("prod-cap", "var-cap")

    assert await cart_store.clear()

    assert cart_store.is_empty.value
    assert storage.get("storefront_cart") is None
    assert storage.get("storefront_cart_timestamp") is not None


async def test_clear_when_remote_fails_leaves_cart_intact(cart_store, context, profile_id, monkeypatch):
    context.authenticate(profile_id)
    await cart_store.add("prod-cap", "var-cap")

    async def failing(profile):
        return False

    monkeypatch.setattr(cart_store.repository, "clear_all", failing)

    assert not await cart_store.clear()
    assert cart_store.items.value == [item("prod-cap", "var-cap", 1)]
    assert cart_store.error.value == "Failed to clear cart. Please try again."


async def test_clear_as_member_empties_account(cart_store, context, profile_id):
    context.authenticate(profile_id)
    await cart_store.add("prod-cap", "var-cap")

    assert await cart_store.clear()

    assert await cart_store.repository.fetch_all(profile_id) == []
    assert cart_store.last_synced_hash == cart_store.fingerprint([])


async def test_validate_for_checkout_evicts_unavailable_lines(cart_store, catalog, storage):
    await cart_store.add("prod-tee", "var-tee-l", 2)
    await cart_store.add("prod-cap", "var-cap", 1)
    catalog.variants["var-tee-l"]["stock"] = 1

    result = await cart_store.validate_for_checkout()

    assert not result.valid
    assert result.invalid_items == [item("prod-tee", "var-tee-l", 2)]
    assert cart_store.items.value == [item("prod-cap", "var-cap", 1)]
    assert cart_store.error.value == "1 item(s) were removed from your cart because they are no longer available."
    assert len(stored_cart(storage)) == 1


async def test_validate_for_checkout_passes_a_healthy_cart(cart_store):
    await cart_store.add("prod-tee", "var-tee-l", 2)

    result = await cart_store.validate_for_checkout()

    assert result.valid and result.invalid_items == []
    assert cart_store.error.value is None


async def test_summary_prices_lines(cart_store):
    await cart_store.add("prod-tee", "var-tee-m", 2)
    await cart_store.add("prod-cap", "var-cap", 1)

    summary = await cart_store.summary()

    assert summary["count"] == 3
    assert summary["subtotal"] == 55.5
    assert summary["priced"]
    assert summary["items"][0]["name"] == "Classic Tee"
    assert summary["items"][0]["total"] == 40.0


async def test_summary_without_catalog_leaves_prices_blank(cart_store, catalog):
    await cart_store.add("prod-cap", "var-cap", 1)
    catalog.fail = True

    summary = await cart_store.summary()

    assert not summary["priced"]
    assert summary["items"][0]["price"] is None
    assert summary["subtotal"] == 0


async def test_failed_login_sync_keeps_guest_copy_until_a_sync_succeeds(cart_store, storage, profile_id, monkeypatch):
    await cart_store.add("prod-tee", "var-tee-m", 2)
    working = cart_store.repository.reconcile_batch

    async def backend_down(profile, desired):
        return BatchResult(fetch_error="backend down")

    monkeypatch.setattr(cart_store.repository, "reconcile_batch", backend_down)
    await cart_store.handle_login(profile_id)
    try:
        assert cart_store.items.value == [item("prod-tee", "var-tee-m", 2)]
        assert stored_cart(storage) == [{"product_id": "prod-tee", "variant_id": "var-tee-m", "quantity": 2}]
        assert cart_store.last_synced_hash is None

        monkeypatch.setattr(cart_store.repository, "reconcile_batch", working)
        assert await cart_store.sync_to_remote()

        assert storage.get("storefront_cart") is None
        assert await cart_store.repository.fetch_all(profile_id) == [item("prod-tee", "var-tee-m", 2)]
    finally:
        await cart_store.stop_auto_sync()


async def test_failed_bootstrap_sync_keeps_guest_copy(cart_store, storage, clock, profile_id, monkeypatch):
    cart_list_store(storage, 30, clock=clock).save([item("prod-cap", "var-cap", 1)])

    async def backend_down(profile, desired):
        return BatchResult(fetch_error="backend down")

    monkeypatch.setattr(cart_store.repository, "reconcile_batch", backend_down)
    await cart_store.initialize(profile_id)
    try:
        assert cart_store.items.value == [item("prod-cap", "var-cap", 1)]
        assert stored_cart(storage) == [{"product_id": "prod-cap", "variant_id": "var-cap", "quantity": 1}]
    finally:
        await cart_store.stop_auto_sync()


async def test_empty_guest_bootstrap_writes_nothing(cart_store, storage):
    await cart_store.initialize()

    assert storage.data == {}


async def test_restarting_auto_sync_waits_for_the_previous_loop(cart_store, context, profile_id):
    context.authenticate(profile_id)
    await cart_store.start_auto_sync()
    first = cart_store._sync_task

    await cart_store.start_auto_sync()
    try:
        assert first.done() and first.cancelled()
        assert cart_store.auto_sync_running
        assert cart_store._sync_task is not first
    finally:
        await cart_store.stop_auto_sync()
