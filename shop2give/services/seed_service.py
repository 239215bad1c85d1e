"""Seed service — donation products for every active campaign.

For each campaign: ensure a "Donation" product exists in Stripe, then
ensure the 5..500 USD price ladder on it. Re-running is safe; existing
products and prices are counted as skipped. One bad campaign is recorded
in results["errors"] and the run carries on with the next.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from shop2give.errors import ApiError, StripeConfigurationError
from shop2give.extensions import db
from shop2give.models.campaign import Campaign
from shop2give.services.catalog_service import (
    DEFAULT_LADDER,
    DONATION_PRODUCT_NAME,
    ProductSpec,
    ensure_price_ladder,
    ensure_product,
    validate_campaign_id,
)
from shop2give.services.stripe_config import require_stripe_key

logger = logging.getLogger(__name__)


def _empty_results():
    return {
        "productsCreated": 0,
        "productsSkipped": 0,
        "pricesCreated": 0,
        "pricesSkipped": 0,
        "errors": [],
    }


def _campaign_fields(campaign):
    """Accept Campaign rows or plain {"id", "title"} dicts."""
    if isinstance(campaign, dict):
        return campaign.get("id"), campaign.get("title") or ""
    return campaign.id, campaign.title or ""


def get_active_campaigns():
    return Campaign.query.filter_by(status="active").order_by(Campaign.created_at).all()


def seed_campaign(campaign, results, ladder=DEFAULT_LADDER):
    """Donation product + price ladder for one campaign, counted into results."""
    campaign_id, title = _campaign_fields(campaign)
    validate_campaign_id(campaign_id)
    logger.info(f"Processing campaign: {campaign_id} - {title}")

    spec = ProductSpec(
        name=DONATION_PRODUCT_NAME,
        campaign_id=campaign_id,
        description=f"Donation product for campaign: {title}" if title else None,
        metadata={"campaign_title": title, "type": "donation"},
    )
    product, created = ensure_product(spec)
    if created:
        results["productsCreated"] += 1
    else:
        logger.info(f"Using existing product for campaign {campaign_id}: {product['id']}")
        results["productsSkipped"] += 1

    ladder_result = ensure_price_ladder(product["id"], ladder, campaign_id=campaign_id)
    results["pricesCreated"] += ladder_result["created"]
    results["pricesSkipped"] += ladder_result["skipped"]
    results["errors"].extend(ladder_result["errors"])


def seed_stripe_products(campaigns=None, ladder=DEFAULT_LADDER):
    """Seed every given (or every active) campaign.

    Returns {"success": True, "results": {...}} once the run completes,
    even if some campaigns failed, or {"success": False, "error": ...}
    if the run could not start.
    """
    logger.info("Starting Stripe product seeding...")

    try:
        require_stripe_key()
    except StripeConfigurationError as e:
        logger.error("STRIPE_SECRET_KEY is not set")
        return {"success": False, "error": e.message}

    if campaigns is None:
        try:
            campaigns = get_active_campaigns()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching campaigns: {e}")
            return {"success": False, "error": "Failed to fetch campaigns"}

    if not campaigns:
        logger.warning("No active campaigns found to seed")
        return {"success": False, "error": "No campaigns found"}

    logger.info(f"Found {len(campaigns)} campaigns for Stripe product creation")
    results = _empty_results()

    for campaign in campaigns:
        campaign_id = getattr(campaign, "id", None)
        try:
            campaign_id, _title = _campaign_fields(campaign)
            seed_campaign(campaign, results, ladder)
        except ApiError as e:
            logger.error(f"Error processing campaign {campaign_id}: {e.message}")
            results["errors"].append(f"Campaign {campaign_id}: {e.message}")
        except Exception as e:
            # One broken campaign never ends the run.
            db.session.rollback()
            logger.exception(f"Unexpected error processing campaign {campaign_id}")
            results["errors"].append(f"Campaign {campaign_id}: {e}")

    logger.info(
        f"Finished Stripe product seeding: created {results['productsCreated']} products "
        f"and {results['pricesCreated']} prices, skipped {results['productsSkipped']} "
        f"products and {results['pricesSkipped']} prices"
    )
    if results["errors"]:
        logger.warning(f"Encountered {len(results['errors'])} errors during seeding")

    return {"success": True, "results": results}
