"""Tests for the checkout transaction engine."""

import asyncio

import pytest

from catalog import update_product
from checkout import build_line_items, compute_totals, place_order
from conftest import SHIPPING, product_record
from errors import AuthorizationError, ConflictError, ExternalProviderError, ValidationError
from payments import FakeGateway
from schemas import CartLine, CheckoutBody, OrderItem, ProductUpdateBody


def cart(*lines, payment_method="mock"):
    return CheckoutBody(
        items=[CartLine(product_id=pid, quantity=qty) for pid, qty in lines],
        payment_method=payment_method,
        shipping=SHIPPING,
    )


def line(price, quantity):
    return OrderItem(product_id="p", name="p", price=price, quantity=quantity, subtotal=round(price * quantity, 2))


@pytest.fixture()
async def stocked_store(store):
    await store.submit(
        {
            "users": [],
            "products": [
                product_record("p1", price=50.0, stock=10),
                product_record("p2", price=19.99, stock=3, images=["/a.png", "/b.png"]),
            ],
            "orders": [],
        }
    )
    return store


async def product(store, product_id):
    document = await store.snapshot()
    return next(p for p in document["products"] if p["id"] == product_id)


class TestTotals:
    def test_below_free_shipping_threshold(self):
        totals = compute_totals([line(50.0, 2)])

        assert totals.subtotal == 100.0
        assert totals.shipping == 14.99
        assert totals.tax == 8.0
        assert totals.total == 122.99

    def test_free_shipping_above_threshold(self):
        totals = compute_totals([line(50.0, 4)])

        assert totals.subtotal == 200.0
        assert totals.shipping == 0
        assert totals.tax == 16.0
        assert totals.total == 216.0

    def test_exactly_threshold_still_pays_shipping(self):
        assert compute_totals([line(75.0, 2)]).shipping == 14.99

    def test_zero_subtotal_ships_free(self):
        totals = compute_totals([line(0.0, 1)])

        assert totals.shipping == 0
        assert totals.total == 0

    def test_total_is_rounded_sum_of_parts(self):
        totals = compute_totals([line(19.99, 3), line(7.33, 1)])

        assert totals.subtotal == 67.3
        assert totals.tax == round(67.3 * 0.08, 2)
        assert totals.total == round(totals.subtotal + totals.shipping + totals.tax, 2)


class TestLineItems:
    def test_prices_come_from_snapshot(self):
        items = build_line_items([product_record("p1", price=50.0)], [CartLine(product_id="p1", quantity=3)])

        assert items[0].price == 50.0
        assert items[0].subtotal == 150.0
        assert items[0].name == "Product p1"
        assert items[0].image == "/uploads/p1.png"
        assert items[0].backup_image is None

    @pytest.mark.parametrize(
        "cart_lines",
        [
            [],
            [CartLine(product_id="missing", quantity=1)],
            [CartLine(product_id="p1", quantity=0)],
            [CartLine(product_id="p1", quantity=-2)],
            [CartLine(product_id="p1", quantity=11)],
            [CartLine(product_id="p1", quantity=6), CartLine(product_id="p1", quantity=5)],
        ],
    )
    def test_invalid_carts_are_rejected(self, cart_lines):
        with pytest.raises(ValidationError):
            build_line_items([product_record("p1", stock=10)], cart_lines)

    def test_camel_case_cart_payload_is_accepted(self):
        body = CheckoutBody.model_validate(
            {"items": [{"productId": "p1", "qty": 2}], "paymentMethod": "stripe", "shipping": SHIPPING}
        )

        assert body.items == [CartLine(product_id="p1", quantity=2)]
        assert body.payment_method == "stripe"


class TestPlaceOrder:
    async def test_mock_payment_commits_order_and_stock(self, stocked_store, alice, gateway):
        order = await place_order(stocked_store, alice, cart(("p1", 2)), gateway)

        assert order.id.startswith("ORD-")
        assert order.user_id == "u_alice"
        assert order.status == "Processing"
        assert order.payment_status == "paid"
        assert order.totals.model_dump() == {"subtotal": 100.0, "shipping": 14.99, "tax": 8.0, "total": 122.99}
        assert (await product(stocked_store, "p1"))["stock"] == 8

        document = await stocked_store.snapshot()
        assert document["orders"][0]["id"] == order.id
        assert document["orders"][0]["items"][0]["quantity"] == 2
        assert gateway.calls == []

    async def test_large_order_ships_free(self, stocked_store, alice, gateway):
        order = await place_order(stocked_store, alice, cart(("p1", 4)), gateway)

        assert order.totals.total == 216.0
        assert (await product(stocked_store, "p1"))["stock"] == 6

    async def test_newest_order_comes_first(self, stocked_store, alice, gateway):
        first = await place_order(stocked_store, alice, cart(("p1", 1)), gateway)
        second = await place_order(stocked_store, alice, cart(("p1", 1)), gateway)

        ids = [o["id"] for o in (await stocked_store.snapshot())["orders"]]
        assert ids == [second.id, first.id]

    async def test_multi_line_cart(self, stocked_store, alice, gateway):
        order = await place_order(stocked_store, alice, cart(("p1", 1), ("p2", 3)), gateway)

        assert order.totals.subtotal == 109.97
        assert order.items[1].backup_image == "/b.png"
        assert (await product(stocked_store, "p2"))["stock"] == 0

    @pytest.mark.parametrize(
        "lines",
        [
            [("p1", 11)],
            [("p1", 2), ("unknown", 1)],
            [("p1", 2), ("p2", 4)],
            [("p1", 0)],
        ],
    )
    async def test_rejected_cart_has_no_effect(self, stocked_store, alice, gateway, lines):
        before = await stocked_store.snapshot()
        revision = stocked_store.revision

        with pytest.raises(ValidationError):
            await place_order(stocked_store, alice, cart(*lines), gateway)

        assert stocked_store.revision == revision
        assert await stocked_store.snapshot() == before

    async def test_empty_cart_is_rejected(self, stocked_store, alice, gateway):
        with pytest.raises(ValidationError, match="Cart is empty"):
            await place_order(stocked_store, alice, cart(), gateway)

    async def test_anonymous_caller_is_rejected(self, stocked_store, gateway):
        with pytest.raises(AuthorizationError):
            await place_order(stocked_store, None, cart(("p1", 1)), gateway)

    async def test_order_keeps_snapshot_after_product_changes(self, stocked_store, alice, admin, gateway):
        order = await place_order(stocked_store, alice, cart(("p1", 2)), gateway)

        await update_product(stocked_store, admin, "p1", ProductUpdateBody(name="Renamed", price=99.0, images=["/new.png"]))

        stored = (await stocked_store.snapshot())["orders"][0]
        assert stored["id"] == order.id
        assert stored["items"][0]["name"] == "Product p1"
        assert stored["items"][0]["price"] == 50.0
        assert stored["items"][0]["image"] == "/uploads/p1.png"
        assert stored["totals"]["total"] == 122.99


class TestExternalPayment:
    async def test_provider_session_is_stamped_on_order(self, stocked_store, alice, gateway):
        order = await place_order(stocked_store, alice, cart(("p1", 2), payment_method="stripe"), gateway)

        assert order.payment_status == "requires_action"
        assert order.payment_reference.startswith("cs_test_")
        assert order.checkout_url.endswith(order.payment_reference)
        assert (await product(stocked_store, "p1"))["stock"] == 8

        call = gateway.calls[0]
        assert call["line_items"] == [("Product p1", 5000, 2)]
        assert call["success_url"].endswith("/orders.html?status=success")
        assert call["cancel_url"].endswith("/checkout.html?status=cancel")

    async def test_unconfigured_provider_rejects_before_any_effect(self, stocked_store, alice):
        gateway = FakeGateway(configured=False)
        before = await stocked_store.snapshot()

        with pytest.raises(ValidationError, match="not configured"):
            await place_order(stocked_store, alice, cart(("p1", 2), payment_method="stripe"), gateway)

        assert gateway.calls == []
        assert await stocked_store.snapshot() == before

    async def test_provider_failure_leaves_no_stock_or_order_change(self, stocked_store, alice, gateway):
        gateway.configure(should_succeed=False, failure_reason="Invalid API key")
        before = await stocked_store.snapshot()
        revision = stocked_store.revision

        with pytest.raises(ExternalProviderError, match="Invalid API key"):
            await place_order(stocked_store, alice, cart(("p1", 2), payment_method="stripe"), gateway)

        assert len(gateway.calls) == 1
        assert stocked_store.revision == revision
        assert await stocked_store.snapshot() == before

    async def test_store_change_during_provider_call_rejects_order(self, stocked_store, alice):
        class RestockingGateway(FakeGateway):
            async def create_checkout_session(self, items, success_url, cancel_url):
                session = await super().create_checkout_session(items, success_url, cancel_url)

                def restock(document):
                    document["products"][1]["stock"] = 7

                await stocked_store.update(restock)
                return session

        gateway = RestockingGateway()

        with pytest.raises(ConflictError):
            await place_order(stocked_store, alice, cart(("p1", 2), payment_method="stripe"), gateway)

        assert len(gateway.calls) == 1
        document = await stocked_store.snapshot()
        assert document["orders"] == []
        assert (await product(stocked_store, "p1"))["stock"] == 10
        assert (await product(stocked_store, "p2"))["stock"] == 7


class TestConcurrentCheckouts:
    async def test_racing_checkouts_never_both_commit(self, stocked_store, alice, admin, gateway):
        # Both carts are valid against the starting stock of 10, but only
        # one can be honoured; the other sees a conflict or the new stock.
        results = await asyncio.gather(
            place_order(stocked_store, alice, cart(("p1", 6)), gateway),
            place_order(stocked_store, admin, cart(("p1", 6)), gateway),
            return_exceptions=True,
        )

        committed = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(committed) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], (ConflictError, ValidationError))

        document = await stocked_store.snapshot()
        assert len(document["orders"]) == 1
        assert (await product(stocked_store, "p1"))["stock"] == 4

    async def test_retry_after_conflict_sees_fresh_stock(self, stocked_store, alice, admin, gateway):
        await asyncio.gather(
            place_order(stocked_store, alice, cart(("p1", 6)), gateway),
            place_order(stocked_store, admin, cart(("p1", 6)), gateway),
            return_exceptions=True,
        )

        with pytest.raises(ValidationError, match="Insufficient stock"):
            await place_order(stocked_store, admin, cart(("p1", 6)), gateway)
        order = await place_order(stocked_store, admin, cart(("p1", 4)), gateway)

        assert order.user_id == "u_admin"
        assert (await product(stocked_store, "p1"))["stock"] == 0
