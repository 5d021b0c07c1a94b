"""Payment gateway port and adapters.

Checkout only talks to the PaymentGateway interface:
- StripeGateway creates hosted Stripe Checkout sessions over HTTP
- FakeGateway simulates the provider for development and tests

get_gateway() / set_gateway() select the active implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional
from uuid import uuid4

import httpx
import structlog

from config import STRIPE_API_URL, STRIPE_PRICE_CURRENCY, STRIPE_SECRET_KEY
from errors import ExternalProviderError
from schemas import OrderItem

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckoutSession:
    """A hosted payment page the customer is redirected to."""

    session_id: str
    url: str


class PaymentGateway(ABC):
    @property
    @abstractmethod
    def configured(self) -> bool:
        """Whether the provider credentials are present."""
        ...

    @abstractmethod
    async def create_checkout_session(
        self,
        items: List[OrderItem],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """Create a payment session for ``items``.

        Raises ExternalProviderError when the provider refuses or cannot
        be reached.
        """
        ...


def unit_amount(price: float) -> int:
    """Price in the currency's minor unit (cents)."""
    return int(round(price * 100))


class StripeGateway(PaymentGateway):
    def __init__(
        self,
        secret_key: str,
        currency: str = "usd",
        api_url: str = STRIPE_API_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.secret_key = secret_key
        self.currency = currency
        self.api_url = api_url
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def build_params(self, items: List[OrderItem], success_url: str, cancel_url: str) -> dict:
        params = {
            "mode": "payment",
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        for idx, item in enumerate(items):
            prefix = f"line_items[{idx}]"
            params[f"{prefix}[price_data][currency]"] = self.currency
            params[f"{prefix}[price_data][product_data][name]"] = item.name
            params[f"{prefix}[price_data][unit_amount]"] = str(unit_amount(item.price))
            params[f"{prefix}[quantity]"] = str(item.quantity)
        return params

    async def create_checkout_session(
        self,
        items: List[OrderItem],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        params = self.build_params(items, success_url, cancel_url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.api_url,
                    data=params,
                    headers={"Authorization": f"Bearer {self.secret_key}"},
                )
        except httpx.HTTPError as exc:
            logger.warning("stripe_unreachable", error=str(exc))
            raise ExternalProviderError(f"Stripe checkout creation failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_error:
            message = (data.get("error") or {}).get("message") or "Stripe error"
            logger.warning("stripe_rejected", status_code=response.status_code, message=message)
            raise ExternalProviderError(f"Stripe checkout creation failed: {message}")

        if not data.get("id") or not data.get("url"):
            raise ExternalProviderError("Stripe checkout creation failed: malformed response")
        return CheckoutSession(session_id=data["id"], url=data["url"])


class FakeGateway(PaymentGateway):
    """Configurable fake gateway; records every call it receives."""

    def __init__(self, configured: bool = True) -> None:
        self._configured = configured
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.calls: list[dict] = []

    @property
    def configured(self) -> bool:
        return self._configured

    def configure(self, should_succeed: bool, failure_reason: str = "Card declined") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    async def create_checkout_session(
        self,
        items: List[OrderItem],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        self.calls.append(
            {
                "method": "create_checkout_session",
                "line_items": [(item.name, unit_amount(item.price), item.quantity) for item in items],
                "success_url": success_url,
                "cancel_url": cancel_url,
            }
        )
        if not self.should_succeed:
            raise ExternalProviderError(f"Stripe checkout creation failed: {self.failure_reason}")
        session_id = f"cs_test_{uuid4().hex[:16]}"
        return CheckoutSession(session_id=session_id, url=f"https://checkout.stripe.test/pay/{session_id}")


_current_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    """Return the active gateway. Defaults to Stripe with the configured key."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = StripeGateway(STRIPE_SECRET_KEY, currency=STRIPE_PRICE_CURRENCY)
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None
