"""Stripe listing and mapping to billing records."""

from unittest.mock import MagicMock, patch

import pytest
import stripe

from pendium_backend.kpi.billing import StripeBillingSource, build_billing_source
from pendium_backend.kpi.config import BillingConfig
from pendium_backend.kpi.errors import BillingServiceError
from pendium_backend.kpi.service import summarize_subscriptions

from factories import utc


def _page(items):
    page = MagicMock()
    page.auto_paging_iter.return_value = iter(items)
    return page


def _subscription(sub_id, status, product, nickname=None):
    return {
        "id": sub_id,
        "customer": "cus_1",
        "status": status,
        "created": 1709251200,
        "items": {"data": [{"price": {"id": "price_123", "nickname": nickname, "product": product}}]},
    }


class TestStripeBillingSource:
    def test_lists_customers_in_range(self):
        source = StripeBillingSource("sk_test_123")
        with patch("stripe.Customer.list", return_value=_page([{"id": "cus_1", "email": "a@x.com", "created": 1709251200}])) as mock_list:
            customers = source.list_customers(utc(2024, 3, 1), utc(2024, 4, 1))

        assert customers[0].id == "cus_1"
        assert customers[0].created == utc(2024, 3, 1)
        kwargs = mock_list.call_args.kwargs
        assert kwargs["created"] == {"gte": 1709251200, "lt": 1711929600}
        assert kwargs["api_key"] == "sk_test_123"

    def test_product_prefix_does_not_count_as_pro(self):
        source = StripeBillingSource("sk_test_123")
        items = [
            _subscription("sub_1", "active", "prod_ABC", nickname="Basic monthly"),
            _subscription("sub_2", "active", "prod_XYZ", nickname="Pro monthly"),
            _subscription("sub_3", "trialing", {"id": "prod_Q", "name": "Pendium Pro"}),
        ]
        with patch("stripe.Subscription.list", return_value=_page(items)):
            subscriptions = source.list_subscriptions(utc(2024, 3, 1), utc(2024, 4, 1))

        data = summarize_subscriptions(3, subscriptions, ("pro", "Pro"))
        assert data["activeBasic"] == 1
        assert data["activePro"] == 1
        assert data["trialPro"] == 1

    def test_stripe_errors_become_billing_errors(self):
        source = StripeBillingSource("sk_test_123")
        with patch("stripe.Customer.list", side_effect=stripe.StripeError("boom")):
            with pytest.raises(BillingServiceError):
                source.list_customers(utc(2024, 3, 1), utc(2024, 4, 1))

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            StripeBillingSource("")


class TestBuildBillingSource:
    def test_disabled(self):
        assert build_billing_source(BillingConfig(enable=False, api_key="sk_test")) is None

    def test_missing_key(self):
        assert build_billing_source(BillingConfig(enable=True)) is None

    def test_enabled(self):
        source = build_billing_source(BillingConfig(enable=True, api_key="sk_test", page_limit=500))
        assert isinstance(source, StripeBillingSource)
        assert source.page_limit == 100
