from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from accounts import authenticate, ensure_admin_user, register_user
from auth import create_token, get_admin_user, get_current_user, get_session_user
from catalog import (
    create_product,
    get_product,
    list_orders,
    list_products,
    seed_demo_products,
    stats,
    update_order_status,
    update_product,
)
from checkout import place_order
from config import AUTH_COOKIE, HOST, PORT, TOKEN_TTL_DAYS
from database import db
from errors import CommerceError
from log_config import configure_logging
from payments import get_gateway
from schemas import (
    CheckoutBody,
    Identity,
    LoginBody,
    OrderStatusBody,
    ProductCreateBody,
    ProductUpdateBody,
    RegisterBody,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # A store that cannot be opened is fatal: let the error stop startup.
    await db.open()
    await ensure_admin_user(db)
    yield
    await db.close()


app = FastAPI(title="SportStore API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CommerceError)
async def commerce_error_handler(request: Request, exc: CommerceError):
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, detail=exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "SportStore API running"}


@app.get("/test")
async def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_path": db.path,
        "revision": None,
        "collections": [],
    }
    if db.is_open:
        document = await db.snapshot()
        response["database"] = "✅ Connected & Working"
        response["revision"] = db.revision
        response["collections"] = {name: len(document[name]) for name in db.list_collection_names()}
    return response


# ----------------------- Auth -----------------------
@app.post("/api/auth/register", status_code=201)
async def register(body: RegisterBody):
    user = await register_user(db, body)
    return {"message": "Registered successfully", "user": {"id": user.id, "name": user.name, "email": user.email}}


@app.post("/api/auth/login")
async def login(body: LoginBody, response: Response):
    identity = await authenticate(db, body.email, body.password)
    token = create_token(identity)
    response.set_cookie(
        AUTH_COOKIE,
        token,
        httponly=True,
        samesite="lax",
        max_age=60 * 60 * 24 * TOKEN_TTL_DAYS,
    )
    return {"token": token, "user": identity.model_dump()}


@app.post("/api/auth/logout")
def logout(response: Response):
    response.delete_cookie(AUTH_COOKIE)
    return {"message": "Logged out"}


@app.get("/api/auth/me")
def me(user: Optional[Identity] = Depends(get_session_user)):
    return {"user": user.model_dump() if user else None}


# ----------------------- Products -----------------------
@app.get("/api/products")
async def products_index(q: Optional[str] = None, category: Optional[str] = None, sort: str = "popular"):
    document = await db.snapshot()
    return {"products": list_products(document, q=q, category=category, sort=sort)}


@app.get("/api/products/{product_id}")
async def products_show(product_id: str):
    document = await db.snapshot()
    return {"product": get_product(document, product_id)}


@app.post("/api/products", status_code=201)
async def products_create(body: ProductCreateBody, user: Identity = Depends(get_admin_user)):
    return {"product": await create_product(db, user, body)}


@app.put("/api/products/{product_id}")
async def products_update(product_id: str, body: ProductUpdateBody, user: Identity = Depends(get_admin_user)):
    return {"product": await update_product(db, user, product_id, body)}


# ----------------------- Checkout & Orders -----------------------
@app.post("/api/checkout", status_code=201)
async def checkout(body: CheckoutBody, user: Identity = Depends(get_current_user)):
    order = await place_order(db, user, body, get_gateway())
    return {"order": order.model_dump()}


@app.get("/api/orders")
async def orders_index(user: Identity = Depends(get_current_user)):
    document = await db.snapshot()
    return {"orders": list_orders(document, user)}


@app.put("/api/orders/{order_id}/status")
async def orders_update_status(order_id: str, body: OrderStatusBody, user: Identity = Depends(get_admin_user)):
    return {"order": await update_order_status(db, user, order_id, body)}


# ----------------------- Admin -----------------------
@app.get("/api/admin/stats")
async def admin_stats(user: Identity = Depends(get_admin_user)):
    document = await db.snapshot()
    return stats(document)


@app.post("/api/seed")
async def seed(user: Identity = Depends(get_admin_user)):
    return await seed_demo_products(db, user)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
