"""Product and order administration, plus the catalog queries.

Every mutator follows the store's read-modify-write contract: check the
caller first, then change one record in a fresh snapshot and submit it
guarded against the snapshot's revision.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from pydantic import ValidationError as SchemaError

from auth import ensure_admin
from database import DocumentStore
from errors import NotFoundError, ValidationError
from schemas import Identity, OrderStatusBody, Product, ProductCreateBody, ProductUpdateBody

logger = structlog.get_logger(__name__)

SORTS = {
    "popular": (lambda p: p.get("review_count", 0), True),
    "price-low": (lambda p: p.get("price", 0), False),
    "price-high": (lambda p: p.get("price", 0), True),
    "rating": (lambda p: p.get("rating", 0), True),
}


def _find(collection: List[dict], record_id: str, kind: str) -> dict:
    for record in collection:
        if record["id"] == record_id:
            return record
    raise NotFoundError(f"{kind} not found")


# ----------------------- Queries -----------------------
def list_products(document: dict, q: Optional[str] = None, category: Optional[str] = None, sort: str = "popular"):
    needle = (q or "").strip().lower()

    def matches(product: dict) -> bool:
        if category and category != "All" and product.get("category") != category:
            return False
        if not needle:
            return True
        return any(needle in str(product.get(field, "")).lower() for field in ("name", "brand", "description"))

    products = [p for p in document["products"] if matches(p)]
    key, reverse = SORTS.get(sort, SORTS["popular"])
    return sorted(products, key=key, reverse=reverse)


def get_product(document: dict, product_id: str) -> dict:
    return _find(document["products"], product_id, "Product")


def list_orders(document: dict, identity: Identity) -> List[dict]:
    if identity.is_admin:
        return document["orders"]
    return [o for o in document["orders"] if o["user_id"] == identity.id]


def stats(document: dict) -> dict:
    return {name: len(document[name]) for name in ("users", "products", "orders")}


# ----------------------- Mutators -----------------------
def new_product_id(existing_ids) -> str:
    while True:
        product_id = f"p_{uuid.uuid4().hex[:8]}"
        if product_id not in existing_ids:
            return product_id


async def create_product(store: DocumentStore, identity: Identity, body: ProductCreateBody) -> dict:
    ensure_admin(identity)

    def add(document: dict) -> dict:
        product = Product(id=new_product_id({p["id"] for p in document["products"]}), **body.model_dump())
        record = product.model_dump()
        document["products"].append(record)
        return record

    record = await store.update(add)
    logger.info("product_created", product_id=record["id"])
    return record


async def update_product(store: DocumentStore, identity: Identity, product_id: str, body: ProductUpdateBody) -> dict:
    ensure_admin(identity)
    changes = body.model_dump(exclude_none=True)

    def merge(document: dict) -> dict:
        products = document["products"]
        current = _find(products, product_id, "Product")
        merged = {**current, **changes, "updated_at": datetime.now(timezone.utc).isoformat()}
        try:
            record = Product(**merged).model_dump()
        except SchemaError as exc:
            raise ValidationError(f"Invalid product update: {exc.errors()[0]['msg']}") from exc
        products[products.index(current)] = record
        return record

    record = await store.update(merge)
    logger.info("product_updated", product_id=product_id, fields=sorted(changes))
    return record


async def update_order_status(store: DocumentStore, identity: Identity, order_id: str, body: OrderStatusBody) -> dict:
    ensure_admin(identity)

    def apply(document: dict) -> dict:
        order = _find(document["orders"], order_id, "Order")
        if body.status is not None:
            order["status"] = body.status
        if body.payment_status is not None:
            order["payment_status"] = body.payment_status
        return order

    order = await store.update(apply)
    logger.info("order_status_changed", order_id=order_id, status=order["status"], payment_status=order["payment_status"])
    return order


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "name": "Pro Grip Basketball",
        "brand": "Spalding",
        "category": "Basketball",
        "price": 39.99,
        "rating": 4.6,
        "review_count": 212,
        "stock": 40,
        "images": [
            "https://images.unsplash.com/photo-1519861531473-9200262188bf",
        ],
        "short_description": "Indoor/outdoor composite leather ball.",
        "description": "Deep channels and a tacky composite cover for reliable grip on any court.",
        "highlights": ["Official size 7", "Composite leather"],
        "specs": {"size": "7", "material": "Composite leather"},
    },
    {
        "name": "Trail Runner 3",
        "brand": "Salomon",
        "category": "Running",
        "price": 129.0,
        "rating": 4.7,
        "review_count": 158,
        "stock": 25,
        "images": [
            "https://images.unsplash.com/photo-1542291026-7eec264c27ff",
            "https://images.unsplash.com/photo-1460353581641-37baddab0fa2",
        ],
        "short_description": "Lightweight trail shoe with aggressive lugs.",
        "description": "Cushioned midsole and a grippy outsole for mixed terrain.",
        "highlights": ["Rock plate", "Quick laces"],
        "specs": {"drop": "8mm", "weight": "290g"},
    },
    {
        "name": "Carbon Tennis Racket",
        "brand": "Wilson",
        "category": "Tennis",
        "price": 189.5,
        "rating": 4.5,
        "review_count": 64,
        "stock": 12,
        "images": [
            "https://images.unsplash.com/photo-1617083934551-ac1f1d1b9f5a",
        ],
        "short_description": "Stiff carbon frame for control.",
        "description": "A 100 sq in head with a balanced swing weight for all-court players.",
        "highlights": ["100 sq in head", "16x19 pattern"],
        "specs": {"weight": "300g", "head": "100 sq in"},
    },
    {
        "name": "Yoga Mat Pro",
        "brand": "Manduka",
        "category": "Fitness",
        "price": 79.0,
        "rating": 4.8,
        "review_count": 301,
        "stock": 50,
        "images": [
            "https://images.unsplash.com/photo-1592432678016-e910b452f9a2",
        ],
        "short_description": "Dense 6mm mat that never slips.",
        "description": "Closed-cell surface keeps sweat out and grip in.",
        "highlights": ["6mm", "Lifetime guarantee"],
        "specs": {"length": "180cm", "thickness": "6mm"},
    },
    {
        "name": "Adjustable Dumbbells",
        "brand": "Bowflex",
        "category": "Fitness",
        "price": 349.0,
        "rating": 4.4,
        "review_count": 97,
        "stock": 8,
        "images": [
            "https://images.unsplash.com/photo-1586401100295-7a8096fd231a",
        ],
        "short_description": "Fifteen weights in one pair.",
        "description": "Dial from 2 to 24 kg per hand in seconds.",
        "highlights": ["2-24 kg", "Compact stand"],
        "specs": {"range": "2-24 kg"},
    },
]


async def seed_demo_products(store: DocumentStore, identity: Identity) -> dict:
    ensure_admin(identity)

    def seed(document: dict) -> bool:
        if document["products"]:
            return False
        for p in DEMO_PRODUCTS:
            product = Product(id=new_product_id({x["id"] for x in document["products"]}), **p)
            document["products"].append(product.model_dump())
        return True

    document = await store.snapshot()
    if document["products"]:
        return {"seeded": False, "message": "Products already exist"}
    if not await store.update(seed):
        return {"seeded": False, "message": "Products already exist"}
    logger.info("demo_products_seeded", count=len(DEMO_PRODUCTS))
    return {"seeded": True, "products": len(DEMO_PRODUCTS)}
