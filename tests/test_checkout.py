import pytest

from storefront.core.config import settings
from storefront.services.checkout import (
    CheckoutError,
    CheckoutLineItem,
    CheckoutRequest,
    CheckoutService,
    ShippingDetails,
    country_code,
    price_matches,
)


def line(price=20.00, quantity=1, product_id="prod-tee", sku="var-tee-m", name="Classic Tee"):
    return CheckoutLineItem(id=product_id, sku=sku, name=name, price=price, quantity=quantity)


@pytest.fixture
def service(catalog, payment_client):
    return CheckoutService(catalog, payment_client)


def test_price_tolerance_is_one_cent():
    assert price_matches(20.00, 19.99)
    assert price_matches(20.00, 20.01)
    assert not price_matches(20.00, 19.98)
    assert price_matches(0.1 + 0.2, 0.3)


def test_country_code_defaults_to_us():
    assert country_code("Canada") == "CA"
    assert country_code("United Kingdom") == "GB"
    assert country_code("Atlantis") == "US"
    assert country_code(None) == "US"


async def test_price_within_a_cent_passes(service):
    verified = await service.verify_item(line(price=19.99))

    assert verified.price == 20.00
    assert verified.name == "Classic Tee - Black (M)"


async def test_price_off_by_two_cents_is_rejected(service):
    with pytest.raises(CheckoutError) as exc:
        await service.verify_item(line(price=19.98))

    assert exc.value.code == "price_mismatch"
    assert exc.value.status_code == 400


async def test_insufficient_stock_is_rejected(service):
    with pytest.raises(CheckoutError) as exc:
        await service.verify_item(line(sku="var-tee-l", quantity=3))

    assert exc.value.code == "insufficient_stock"
    assert "Available: 2" in exc.value.message


async def test_unknown_product_and_variant_are_invalid(service):
    with pytest.raises(CheckoutError) as exc:
        await service.verify_item(line(product_id="prod-missing"))
    assert exc.value.code == "invalid_item"

    with pytest.raises(CheckoutError) as exc:
        await service.verify_item(line(sku="var-missing"))
    assert exc.value.code == "invalid_item"


async def test_lookup_failure_is_reported_as_invalid_item(service, catalog):
    catalog.fail = True
    with pytest.raises(CheckoutError) as exc:
        await service.verify_item(line())
    assert exc.value.code == "invalid_item"


async def test_empty_or_malformed_requests_are_invalid(service):
    with pytest.raises(CheckoutError) as exc:
        await service.verify_items([])
    assert exc.value.code == "invalid_item"

    with pytest.raises(CheckoutError) as exc:
        await service.verify_item(line(quantity=0))
    assert exc.value.code == "invalid_item"


async def test_missing_payment_processor_is_unavailable(catalog):
    service = CheckoutService(catalog, None)

    with pytest.raises(CheckoutError) as exc:
        await service.create_session(CheckoutRequest(items=[line()]))

    assert exc.value.code == "payment_processor_unavailable"
    assert exc.value.status_code == 503


async def test_create_session_charges_verified_prices_plus_shipping(service, payment_client):
    request = CheckoutRequest(
        items=[line(price=19.99, quantity=2), line(price=15.50, product_id="prod-cap", sku="var-cap", name="Logo Cap")],
        shipping_details=ShippingDetails(
            first_name="Ada",
            last_name="Lovelace",
            email="ada@example.com",
            address_line1="1 Analytical Way",
            city="Toronto",
            postal_code="M5V 2T6",
            country="Canada",
        ),
    )

    session = await service.create_session(request)

    expected = 2 * 2000 + 1550 + int(round(settings.SHIPPING_FLAT_RATE * 100))
    assert session.session_id == "order_1"
    assert session.amount == expected
    assert session.currency == settings.PAYMENT_CURRENCY

    order = payment_client.order.created[0]
    assert order["amount"] == expected
    assert order["notes"]["shipping_country"] == "CA"
    assert order["notes"]["shipping_name"] == "Ada Lovelace"
    assert order["receipt"] == order["notes"]["order_id"]
    assert all(len(value) <= 256 for value in order["notes"].values())


async def test_processor_failure_maps_to_processor_error(service, payment_client):
    payment_client.order.error = RuntimeError("gateway timeout")

    with pytest.raises(CheckoutError) as exc:
        await service.create_session(CheckoutRequest(items=[line()]))

    assert exc.value.code == "processor_error"
    assert exc.value.status_code == 500
