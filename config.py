import os

HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", 8000))
APP_ORIGIN = os.getenv("APP_ORIGIN", f"http://{HOST}:{PORT}")

DATABASE_PATH = os.getenv("DATABASE_PATH", os.path.join("data", "db.json"))

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
TOKEN_TTL_DAYS = 7
AUTH_COOKIE = "auth_token"

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@sportstore.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_PRICE_CURRENCY = os.getenv("STRIPE_PRICE_CURRENCY", "usd")
STRIPE_API_URL = "https://api.stripe.com/v1/checkout/sessions"

# Checkout pricing
SHIPPING_FLAT_FEE = 14.99
FREE_SHIPPING_THRESHOLD = 150
TAX_RATE = 0.08
