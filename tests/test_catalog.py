"""Tests for the catalog service (Stripe product/price reconciliation).

Covers:
- Idempotent product creation per (campaign_id, name)
- Search-index lag and search failures (list-and-filter fallback)
- Self-healing of lost or wrong campaign_id metadata
- Price ladder dedup (single list call, 100 then 0 created)
- Partial-failure tolerance inside the ladder
- Cache mirroring, and cache failures that must not escalate
- FirstMatchLookup ordering
"""

from unittest.mock import patch

import pytest
import stripe

from shop2give.errors import CacheSyncError, StripeConfigurationError, ValidationError
from shop2give.models.product import Price, Product
from shop2give.services.catalog_service import (
    DEFAULT_LADDER,
    ProductSpec,
    ensure_price_ladder,
    ensure_product,
    find_product_by_campaign_key,
)
from shop2give.services.lookup import FirstMatchLookup

CAMPAIGN_ID = "3f6c1a52-8d2e-4a8b-9f0e-2d7c5b1e9a44"


def donation_spec(campaign_id=CAMPAIGN_ID):
    return ProductSpec(
        name="Donation",
        campaign_id=campaign_id,
        description="Donation product for campaign: Clean Water",
        metadata={"campaign_title": "Clean Water"},
    )


class TestEnsureProduct:
    """Reconciliation of one product per (campaign_id, name)."""

    def test_creates_then_reuses_product(self, fake_stripe):
        """Second call finds the product instead of creating another."""
        first, created_first = ensure_product(donation_spec())
        second, created_second = ensure_product(donation_spec())

        assert created_first is True
        assert created_second is False
        assert first["id"] == second["id"]
        assert fake_stripe.calls["Product.create"] == 1
        assert len(fake_stripe.products) == 1

    def test_created_product_carries_campaign_metadata(self, fake_stripe):
        product, _ = ensure_product(donation_spec())
        assert product["metadata"]["campaign_id"] == CAMPAIGN_ID
        assert product["metadata"]["campaign_title"] == "Clean Water"
        assert product["active"] is True

    def test_mirrors_product_into_cache(self, fake_stripe):
        product, _ = ensure_product(donation_spec())

        row = Product.query.filter_by(stripe_product_id=product["id"]).first()
        assert row is not None
        assert row.campaign_id == CAMPAIGN_ID
        assert row.name == "Donation"
        assert row.metadata_["campaign_id"] == CAMPAIGN_ID

    def test_finds_recent_product_while_search_index_lags(self, fake_stripe):
        """Products missing from search are still found by listing."""
        fake_stripe.index_new_products = False

        first, _ = ensure_product(donation_spec())
        second, created = ensure_product(donation_spec())

        assert created is False
        assert second["id"] == first["id"]
        assert fake_stripe.calls["Product.create"] == 1
        # Listed once per call: the first found nothing, the second found it.
        assert fake_stripe.calls["Product.list"] == 2

    def test_search_error_falls_back_to_listing(self, fake_stripe):
        ensure_product(donation_spec())
        fake_stripe.search_error = stripe.error.APIConnectionError("search unavailable")

        _, created = ensure_product(donation_spec())

        assert created is False
        assert fake_stripe.calls["Product.create"] == 1

    def test_search_hit_skips_listing(self, fake_stripe):
        ensure_product(donation_spec())
        fake_stripe.calls.clear()

        ensure_product(donation_spec())

        assert fake_stripe.calls["Product.list"] == 0

    def test_name_match_is_case_insensitive(self, fake_stripe):
        ensure_product(donation_spec())
        spec = donation_spec()
        spec.name = "DONATION"

        _, created = ensure_product(spec)
        assert created is False

    def test_other_campaign_gets_its_own_product(self, fake_stripe):
        ensure_product(donation_spec())
        _, created = ensure_product(donation_spec("9b1d7e0c-2f4a-4c6e-8a3b-5d9f1e7c2b60"))

        assert created is True
        assert len(fake_stripe.products) == 2

    def test_heals_missing_campaign_metadata(self, fake_stripe):
        """Metadata lost in Stripe is patched back; no duplicate is created."""
        product, _ = ensure_product(donation_spec())
        fake_stripe.products[product["id"]]["metadata"].pop("campaign_id")

        healed, created = ensure_product(donation_spec())

        assert created is False
        assert healed["id"] == product["id"]
        assert fake_stripe.products[product["id"]]["metadata"]["campaign_id"] == CAMPAIGN_ID
        assert fake_stripe.calls["Product.create"] == 1
        assert fake_stripe.calls["Product.modify"] == 1

    def test_heals_wrong_campaign_metadata(self, fake_stripe):
        product, _ = ensure_product(donation_spec())
        fake_stripe.products[product["id"]]["metadata"]["campaign_id"] = "stale-value"

        _, created = ensure_product(donation_spec())

        assert created is False
        assert fake_stripe.products[product["id"]]["metadata"]["campaign_id"] == CAMPAIGN_ID
        assert len(fake_stripe.products) == 1

    def test_archived_product_is_not_reused(self, fake_stripe):
        product, _ = ensure_product(donation_spec())
        fake_stripe.products[product["id"]]["active"] = False

        replacement, created = ensure_product(donation_spec())

        assert created is True
        assert replacement["id"] != product["id"]

    @pytest.mark.parametrize("campaign_id", ["", "bad'id", "a\\b", "x" * 501, None])
    def test_rejects_invalid_campaign_id(self, fake_stripe, campaign_id):
        with pytest.raises(ValidationError):
            ensure_product(donation_spec(campaign_id))
        assert sum(fake_stripe.calls.values()) == 0

    def test_missing_stripe_key_raises_before_any_call(self, app, fake_stripe, monkeypatch):
        monkeypatch.setitem(app.config, "STRIPE_SECRET_KEY", None)

        with pytest.raises(StripeConfigurationError) as exc_info:
            ensure_product(donation_spec())
        assert exc_info.value.message == "Missing Stripe API key"
        assert sum(fake_stripe.calls.values()) == 0

    def test_cache_failure_is_not_escalated(self, fake_stripe):
        """Stripe succeeded, so the caller still gets the product."""
        with patch(
            "shop2give.services.catalog_service.mirror_product",
            side_effect=CacheSyncError("database unavailable"),
        ):
            product, created = ensure_product(donation_spec())

        assert created is True
        assert product["id"] in fake_stripe.products
        assert Product.query.count() == 0


class TestFindProductByCampaignKey:
    """Direct lookup without side effects."""

    def test_returns_none_when_nothing_matches(self, fake_stripe):
        assert find_product_by_campaign_key(CAMPAIGN_ID, "Donation") is None

    def test_ignores_products_with_other_names(self, fake_stripe):
        fake_stripe.Product.create(
            name="T-shirt", metadata={"campaign_id": CAMPAIGN_ID}
        )
        assert find_product_by_campaign_key(CAMPAIGN_ID, "Donation") is None


class TestPriceLadder:
    """ensure_price_ladder dedup and failure handling."""

    def _product_id(self):
        product, _ = ensure_product(donation_spec())
        return product["id"]

    def test_default_ladder_is_5_to_500_step_5(self):
        assert len(DEFAULT_LADDER) == 100
        assert DEFAULT_LADDER[0] == 5
        assert DEFAULT_LADDER[-1] == 500
        assert all(b - a == 5 for a, b in zip(DEFAULT_LADDER, DEFAULT_LADDER[1:]))

    def test_second_run_creates_nothing(self, fake_stripe):
        """100 prices on the first run, 0 new (100 skipped) on the second."""
        product_id = self._product_id()

        first = ensure_price_ladder(product_id, DEFAULT_LADDER, campaign_id=CAMPAIGN_ID)
        second = ensure_price_ladder(product_id, DEFAULT_LADDER, campaign_id=CAMPAIGN_ID)

        assert first == {"created": 100, "skipped": 0, "errors": []}
        assert second == {"created": 0, "skipped": 100, "errors": []}
        assert len(fake_stripe.active_prices(product_id)) == 100
        # One list call per run, not one per price point.
        assert fake_stripe.calls["Price.list"] == 2

    def test_created_prices_use_cents_and_link_metadata(self, fake_stripe):
        product_id = self._product_id()
        ensure_price_ladder(product_id, [25], campaign_id=CAMPAIGN_ID)

        (price,) = fake_stripe.active_prices(product_id)
        assert price["unit_amount"] == 2500
        assert price["currency"] == "usd"
        assert price["metadata"] == {
            "amount_usd": "25",
            "product_id": product_id,
            "campaign_id": CAMPAIGN_ID,
        }

    def test_prices_are_mirrored(self, fake_stripe):
        product_id = self._product_id()
        ensure_price_ladder(product_id, [5, 10, 15], campaign_id=CAMPAIGN_ID)

        row = Product.query.filter_by(stripe_product_id=product_id).first()
        assert [p.unit_amount for p in row.prices] == [500, 1000, 1500]
        assert Price.query.count() == 3

    def test_one_bad_point_does_not_abort_the_ladder(self, fake_stripe):
        product_id = self._product_id()
        fake_stripe.failing_unit_amounts = {2500}

        result = ensure_price_ladder(product_id, DEFAULT_LADDER, campaign_id=CAMPAIGN_ID)

        assert result["created"] == 99
        assert len(result["errors"]) == 1
        assert result["errors"][0].startswith(f"Price 25 for product {product_id}: ")
        assert "Price rejected" in result["errors"][0]

    def test_invalid_point_is_recorded(self, fake_stripe):
        product_id = self._product_id()

        result = ensure_price_ladder(product_id, [5, 0, 10], campaign_id=CAMPAIGN_ID)

        assert result["created"] == 2
        assert len(result["errors"]) == 1
        assert result["errors"][0].startswith(f"Price 0 for product {product_id}")

    def test_existing_price_without_amount_metadata_is_healed(self, fake_stripe):
        """Older prices matched on unit_amount get amount_usd patched in."""
        product_id = self._product_id()
        legacy = fake_stripe.Price.create(
            product=product_id, unit_amount=500, currency="usd"
        )

        result = ensure_price_ladder(product_id, [5, 10], campaign_id=CAMPAIGN_ID)

        assert result["created"] == 1
        assert result["skipped"] == 1
        assert legacy["metadata"]["amount_usd"] == "5"
        assert legacy["metadata"]["campaign_id"] == CAMPAIGN_ID
        assert len(fake_stripe.active_prices(product_id)) == 2

    def test_complete_metadata_is_not_rewritten(self, fake_stripe):
        product_id = self._product_id()
        ensure_price_ladder(product_id, [5, 10], campaign_id=CAMPAIGN_ID)
        ensure_price_ladder(product_id, [5, 10], campaign_id=CAMPAIGN_ID)
        assert fake_stripe.calls["Price.modify"] == 0

    def test_archived_prices_are_replaced(self, fake_stripe):
        product_id = self._product_id()
        ensure_price_ladder(product_id, [5], campaign_id=CAMPAIGN_ID)
        for price in fake_stripe.active_prices(product_id):
            price["active"] = False

        result = ensure_price_ladder(product_id, [5], campaign_id=CAMPAIGN_ID)
        assert result["created"] == 1


class TestFirstMatchLookup:
    """Phase ordering and laziness."""

    def test_first_phase_wins(self):
        lookup = (
            FirstMatchLookup(lambda c: c > 1)
            .phase("search", lambda: [0, 2])
            .phase("scan", lambda: [3])
        )
        assert lookup.find() == (2, "search")

    def test_later_phase_used_when_earlier_misses(self):
        lookup = (
            FirstMatchLookup(lambda c: c > 1)
            .phase("search", lambda: [])
            .phase("scan", lambda: [1, 5])
        )
        assert lookup.find() == (5, "scan")

    def test_later_phases_are_not_evaluated_after_a_match(self):
        def explode():
            raise AssertionError("scan should not run")

        lookup = (
            FirstMatchLookup(lambda c: True)
            .phase("search", lambda: ["hit"])
            .phase("scan", explode)
        )
        assert lookup.find() == ("hit", "search")

    def test_phase_predicate_overrides_default(self):
        lookup = (
            FirstMatchLookup(lambda c: False)
            .phase("cache", lambda: ["x"], predicate=lambda c: c == "x")
        )
        assert lookup.find() == ("x", "cache")

    def test_no_match(self):
        assert FirstMatchLookup(lambda c: True).phase("search", list).find() == (None, None)
