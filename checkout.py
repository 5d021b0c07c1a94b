"""Checkout transaction engine.

Turns a cart into exactly one durable order, or fails with no effect.

    1. Take one versioned snapshot of the store
    2. Validate every cart line against that snapshot (all or nothing)
    3. Price the lines and compute the order totals
    4. For external payment, create the provider session
    5. Decrement stock and prepend the order in the working copy
    6. Commit both with a single guarded submit

The provider is called before the commit, so a provider failure leaves
neither a stock decrement nor an order behind. The guarded submit rejects
the commit with ConflictError if any other write landed after step 1, so
two racing checkouts can never both decrement the same stock figure.
"""

import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import structlog

from config import APP_ORIGIN, FREE_SHIPPING_THRESHOLD, SHIPPING_FLAT_FEE, TAX_RATE
from database import DocumentStore
from errors import AuthorizationError, ConflictError, ExternalProviderError, ValidationError
from payments import PaymentGateway
from schemas import EXTERNAL_PAYMENT_METHODS, CartLine, CheckoutBody, Identity, Order, OrderItem, Totals

logger = structlog.get_logger(__name__)

SUCCESS_URL = f"{APP_ORIGIN}/orders.html?status=success"
CANCEL_URL = f"{APP_ORIGIN}/checkout.html?status=cancel"


def compute_totals(items: Iterable[OrderItem]) -> Totals:
    subtotal = round(sum(item.subtotal for item in items), 2)
    shipping = 0.0 if subtotal > FREE_SHIPPING_THRESHOLD or subtotal == 0 else SHIPPING_FLAT_FEE
    tax = round(subtotal * TAX_RATE, 2)
    total = round(subtotal + shipping + tax, 2)
    return Totals(subtotal=subtotal, shipping=shipping, tax=tax, total=total)


def build_line_items(products: List[dict], cart: List[CartLine]) -> List[OrderItem]:
    """Price every cart line from the snapshot, rejecting the cart on any bad line."""
    if not cart:
        raise ValidationError("Cart is empty")

    by_id = {p["id"]: p for p in products}
    requested = Counter()
    items = []
    for line in cart:
        product = by_id.get(line.product_id)
        if product is None:
            raise ValidationError(f"Unknown product: {line.product_id}")
        if line.quantity <= 0:
            raise ValidationError(f"Quantity must be positive for {product['name']}")
        # Repeated lines for one product draw on the same stock.
        requested[product["id"]] += line.quantity
        if requested[product["id"]] > product["stock"]:
            raise ValidationError(f"Insufficient stock for {product['name']}")

        price = float(product["price"])
        images = product.get("images") or []
        items.append(
            OrderItem(
                product_id=product["id"],
                name=product["name"],
                price=price,
                quantity=line.quantity,
                subtotal=round(price * line.quantity, 2),
                image=images[0] if images else None,
                backup_image=images[1] if len(images) > 1 else None,
            )
        )
    return items


def new_order_id(existing_ids) -> str:
    while True:
        order_id = f"ORD-{uuid.uuid4().hex[:10].upper()}"
        if order_id not in existing_ids:
            return order_id


def apply_order(document: dict, order: Order) -> None:
    """Decrement stock for every line and put the order first."""
    products = {p["id"]: p for p in document["products"]}
    for item in order.items:
        product = products[item.product_id]
        product["stock"] -= item.quantity
        if product["stock"] < 0:
            raise ValidationError(f"Insufficient stock for {product['name']}")
    document["orders"].insert(0, order.model_dump())


async def place_order(
    store: DocumentStore,
    identity: Optional[Identity],
    body: CheckoutBody,
    gateway: PaymentGateway,
) -> Order:
    if identity is None:
        raise AuthorizationError("Sign in to check out")

    external = body.payment_method in EXTERNAL_PAYMENT_METHODS
    if external and not gateway.configured:
        raise ValidationError("Stripe is not configured on server")

    revision, document = await store.versioned_snapshot()
    try:
        items = build_line_items(document["products"], body.items)
    except ValidationError as exc:
        logger.info("checkout_rejected", user_id=identity.id, reason=exc.detail)
        raise

    order = Order(
        id=new_order_id({o["id"] for o in document["orders"]}),
        user_id=identity.id,
        user_name=identity.name,
        created_at=datetime.now(timezone.utc).isoformat(),
        payment_method=body.payment_method,
        payment_status="pending" if external else "paid",
        status="Processing",
        shipping=body.shipping,
        items=items,
        totals=compute_totals(items),
    )

    if external:
        try:
            session = await gateway.create_checkout_session(order.items, SUCCESS_URL, CANCEL_URL)
        except ExternalProviderError as exc:
            logger.warning("payment_provider_failed", user_id=identity.id, reason=exc.detail)
            raise
        order.payment_reference = session.session_id
        order.payment_status = "requires_action"
        order.checkout_url = session.url

    apply_order(document, order)
    try:
        await store.submit(document, expected_revision=revision)
    except ConflictError:
        if external:
            logger.warning("checkout_session_orphaned", order_id=order.id, session_id=order.payment_reference)
        raise

    logger.info(
        "order_placed",
        order_id=order.id,
        user_id=identity.id,
        total=order.totals.total,
        payment_method=order.payment_method,
    )
    return order
