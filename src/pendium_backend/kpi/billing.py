"""
Read-only access to Stripe customers and subscriptions.

Only listing calls are issued; nothing here creates, updates or cancels billing
objects.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import stripe

from .config import BillingConfig
from .errors import BillingServiceError
from .models import BillingCustomer, BillingSubscription

logger = logging.getLogger(__name__)


class BillingSource:
    """Interface for anything that can list customers/subscriptions in a range."""

    def list_customers(self, start: datetime, end: datetime) -> Sequence[BillingCustomer]:
        raise NotImplementedError

    def list_subscriptions(self, start: datetime, end: datetime) -> Sequence[BillingSubscription]:
        raise NotImplementedError


class StripeBillingSource(BillingSource):
    def __init__(self, api_key: str, page_limit: int = 100) -> None:
        if not api_key:
            raise ValueError("A Stripe secret key is required for the billing source.")
        self.api_key = api_key
        self.page_limit = max(1, min(page_limit, 100))

    def list_customers(self, start: datetime, end: datetime) -> Sequence[BillingCustomer]:
        try:
            page = stripe.Customer.list(
                api_key=self.api_key,
                created=_created_range(start, end),
                limit=self.page_limit,
            )
            return tuple(_to_customer(customer) for customer in page.auto_paging_iter())
        except stripe.StripeError as exc:
            logger.exception("Failed to list Stripe customers")
            raise BillingServiceError("Failed to list customers from Stripe") from exc

    def list_subscriptions(self, start: datetime, end: datetime) -> Sequence[BillingSubscription]:
        try:
            page = stripe.Subscription.list(
                api_key=self.api_key,
                created=_created_range(start, end),
                status="all",
                limit=self.page_limit,
            )
            return tuple(_to_subscription(subscription) for subscription in page.auto_paging_iter())
        except stripe.StripeError as exc:
            logger.exception("Failed to list Stripe subscriptions")
            raise BillingServiceError("Failed to list subscriptions from Stripe") from exc


def build_billing_source(config: BillingConfig) -> Optional[BillingSource]:
    if config.enable and config.api_key:
        return StripeBillingSource(config.api_key, page_limit=config.page_limit)
    return None


def _created_range(start: datetime, end: datetime) -> dict:
    return {"gte": int(start.timestamp()), "lt": int(end.timestamp())}


def _field(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def _from_unix(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value or 0), tz=timezone.utc)


def _to_customer(customer: Any) -> BillingCustomer:
    return BillingCustomer(
        id=str(_field(customer, "id", "")),
        email=_field(customer, "email"),
        created=_from_unix(_field(customer, "created")),
    )


def _to_subscription(subscription: Any) -> BillingSubscription:
    customer = _field(subscription, "customer")
    if not isinstance(customer, str):
        customer = _field(customer, "id")
    return BillingSubscription(
        id=str(_field(subscription, "id", "")),
        customer_id=customer,
        status=str(_field(subscription, "status", "")),
        created=_from_unix(_field(subscription, "created")),
        product_refs=_product_refs(_field(_field(subscription, "items"), "data", [])),
    )


def _strip_object_prefix(identifier: str) -> str:
    # Stripe ids look like ``prod_...``/``price_...``; the prefix itself would
    # match the "pro" marker.
    for prefix in ("prod_", "price_", "plan_"):
        if identifier.startswith(prefix):
            return identifier[len(prefix):]
    return identifier


def _product_refs(items: Iterable[Any]) -> Tuple[str, ...]:
    refs: List[str] = []
    for item in items:
        price = _field(item, "price") or _field(item, "plan")
        product = _field(price, "product")
        if isinstance(product, str):
            refs.append(_strip_object_prefix(product))
        elif product is not None:
            product_id = _field(product, "id")
            if product_id:
                refs.append(_strip_object_prefix(str(product_id)))
            if _field(product, "name"):
                refs.append(str(_field(product, "name")))
        price_id = _field(price, "id")
        if price_id:
            refs.append(_strip_object_prefix(str(price_id)))
        for key in ("nickname", "lookup_key"):
            if _field(price, key):
                refs.append(str(_field(price, key)))
    return tuple(refs)
