"""Catalog service — Stripe products/prices and their local cache.

Responsible for:
- Finding a campaign's product in Stripe (search, then list-and-filter)
- Creating or healing products so one active product exists per
  (campaign_id, name) no matter how often we are re-run
- Creating the donation price ladder without duplicating prices
- Mirroring every Stripe write into the products / prices tables
- The read and write operations behind /stripe-products

Stripe is the system of record. Cache writes always follow a successful
Stripe write; a failed cache write is logged as a warning and never
reported to the caller.
"""

import logging
import re
from dataclasses import dataclass, field

import stripe
from sqlalchemy.exc import SQLAlchemyError

from shop2give.errors import (
    ApiError,
    CacheSyncError,
    ExternalSystemError,
    NotFoundError,
    ValidationError,
)
from shop2give.extensions import db
from shop2give.models.product import Price, Product
from shop2give.services.lookup import FirstMatchLookup
from shop2give.services.stripe_config import require_stripe_key, stripe_error_message

logger = logging.getLogger(__name__)

DONATION_PRODUCT_NAME = "Donation"
DONATION_PRODUCT_DESCRIPTION = "Campaign donation with selectable amounts"
DEFAULT_CURRENCY = "usd"

# Whole-dollar donation amounts offered on every campaign: 5, 10, ... 500
DEFAULT_LADDER = tuple(range(5, 501, 5))

CAMPAIGN_KEY = "campaign_id"
AMOUNT_KEY = "amount_usd"

# Stripe caps metadata values at 500 chars; quotes would break the search query.
_CAMPAIGN_ID_RE = re.compile(r"^[A-Za-z0-9_\-]{1,500}$")
_CURRENCY_RE = re.compile(r"^[a-z]{3}$")


# ──────────────────────────────────────────────
# Specs
# ──────────────────────────────────────────────

def validate_campaign_id(campaign_id):
    if not isinstance(campaign_id, str) or not _CAMPAIGN_ID_RE.match(campaign_id):
        raise ValidationError(f"Invalid campaign id: {campaign_id!r}")
    return campaign_id


def _string_metadata(metadata):
    """Stripe metadata is string -> string."""
    return {str(k): str(v) for k, v in (metadata or {}).items()}


@dataclass
class ProductSpec:
    """Desired state of one Stripe product."""

    name: str
    campaign_id: str = None
    description: str = None
    images: list = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    active: bool = True

    def stripe_metadata(self):
        metadata = _string_metadata(self.metadata)
        if self.campaign_id:
            metadata[CAMPAIGN_KEY] = self.campaign_id
        return metadata

    def create_params(self):
        params = {
            "name": self.name,
            "metadata": self.stripe_metadata(),
            "active": self.active,
        }
        if self.description:
            params["description"] = self.description
        if self.images:
            params["images"] = list(self.images)
        return params


@dataclass
class PriceSpec:
    """One price to create on a product. unit_amount is in cents."""

    unit_amount: int
    currency: str = DEFAULT_CURRENCY
    recurring_interval: str = None
    recurring_interval_count: int = None
    metadata: dict = field(default_factory=dict)

    def validate(self):
        if isinstance(self.unit_amount, bool) or not isinstance(self.unit_amount, int) \
                or self.unit_amount <= 0:
            raise ValidationError(
                f"Expected unitAmount to be a positive integer got {self.unit_amount!r}"
            )
        if not isinstance(self.currency, str) or not _CURRENCY_RE.match(self.currency):
            raise ValidationError(
                f"Expected currency to be a lowercase ISO 4217 code got {self.currency!r}"
            )
        if self.recurring_interval is not None and \
                self.recurring_interval not in Price.INTERVALS:
            raise ValidationError(
                f"Expected recurring interval to be one of {', '.join(Price.INTERVALS)}"
            )
        count = self.recurring_interval_count
        if count is not None:
            if self.recurring_interval is None:
                raise ValidationError("Recurring intervalCount requires an interval")
            if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
                raise ValidationError(
                    f"Expected recurring intervalCount to be a positive integer got {count!r}"
                )
        return self

    @property
    def identity(self):
        return (self.unit_amount, self.currency)

    def create_params(self, stripe_product_id):
        params = {
            "product": stripe_product_id,
            "unit_amount": self.unit_amount,
            "currency": self.currency,
            "metadata": _string_metadata(self.metadata),
        }
        if self.recurring_interval:
            params["recurring"] = {"interval": self.recurring_interval}
            if self.recurring_interval_count:
                params["recurring"]["interval_count"] = self.recurring_interval_count
        return params


def _price_identity(stripe_price):
    return (stripe_price.get("unit_amount"), stripe_price.get("currency"))


def _same_name(a, b):
    return (a or "").casefold() == (b or "").casefold()


# ──────────────────────────────────────────────
# Cache mirroring
# ──────────────────────────────────────────────

def mirror_product(stripe_product, campaign_id=None):
    """Upsert the products row for a Stripe product.

    Returns the row. Raises CacheSyncError if the database write fails.
    """
    metadata = dict(stripe_product.get("metadata") or {})
    try:
        row = Product.query.filter_by(stripe_product_id=stripe_product["id"]).first()
        if row is None:
            row = Product(stripe_product_id=stripe_product["id"])
            db.session.add(row)
        row.name = stripe_product.get("name")
        row.description = stripe_product.get("description")
        row.campaign_id = campaign_id or metadata.get(CAMPAIGN_KEY) or row.campaign_id
        row.active = bool(stripe_product.get("active", True))
        row.metadata_ = metadata
        db.session.commit()
        return row
    except SQLAlchemyError as e:
        db.session.rollback()
        raise CacheSyncError(f"Failed to cache product {stripe_product['id']}: {e}") from e


def mirror_price(stripe_price):
    """Upsert the prices row for a Stripe price. Raises CacheSyncError."""
    product_ref = stripe_price.get("product")
    if not isinstance(product_ref, str):
        product_ref = product_ref["id"]
    recurring = stripe_price.get("recurring") or {}
    try:
        product_row = Product.query.filter_by(stripe_product_id=product_ref).first()
        if product_row is None:
            raise CacheSyncError(f"Product {product_ref} is not cached")

        row = Price.query.filter_by(stripe_price_id=stripe_price["id"]).first()
        if row is None:
            row = Price(stripe_price_id=stripe_price["id"])
            db.session.add(row)
        row.product_id = product_row.id
        row.unit_amount = stripe_price.get("unit_amount")
        row.currency = stripe_price.get("currency")
        row.recurring_interval = recurring.get("interval")
        row.recurring_interval_count = recurring.get("interval_count")
        row.active = bool(stripe_price.get("active", True))
        row.metadata_ = dict(stripe_price.get("metadata") or {})
        db.session.commit()
        return row
    except SQLAlchemyError as e:
        db.session.rollback()
        raise CacheSyncError(f"Failed to cache price {stripe_price['id']}: {e}") from e


def _mirror_quietly(mirror, *args):
    """Run a mirror function; a CacheSyncError becomes a warning."""
    try:
        return mirror(*args)
    except CacheSyncError as e:
        logger.warning(f"Cache out of sync with Stripe: {e}")
        return None


# ──────────────────────────────────────────────
# Reconciliation
# ──────────────────────────────────────────────

def _search_products(campaign_id):
    query = f"metadata['{CAMPAIGN_KEY}']:'{campaign_id}' AND active:'true'"
    try:
        return stripe.Product.search(query=query, limit=100).data
    except stripe.error.StripeError as e:
        logger.warning(
            f"Product search failed for campaign {campaign_id}, "
            f"falling back to listing: {stripe_error_message(e)}"
        )
        return []


def _list_active_products():
    return stripe.Product.list(active=True, limit=100).auto_paging_iter()


def _cached_products(campaign_id, name):
    """Stripe products our cache links to this campaign (metadata may be stale)."""
    rows = Product.query.filter_by(campaign_id=campaign_id).all()
    for row in rows:
        if not _same_name(row.name, name):
            continue
        try:
            yield stripe.Product.retrieve(row.stripe_product_id)
        except stripe.error.InvalidRequestError:
            logger.info(f"Cached product {row.stripe_product_id} no longer exists in Stripe")


def find_product_by_campaign_key(campaign_id, name):
    """Find the active Stripe product for (campaign_id, name), or None.

    Search first, then list active products and filter on metadata,
    because the search index can miss products created in the last minute.
    The cache row is a last hint for products whose metadata lost the key.
    """

    def keyed(product):
        return (
            product.get("active", True)
            and _same_name(product.get("name"), name)
            and (product.get("metadata") or {}).get(CAMPAIGN_KEY) == campaign_id
        )

    def named(product):
        return product.get("active", True) and _same_name(product.get("name"), name)

    lookup = (
        FirstMatchLookup(keyed, description=f"{campaign_id}/{name}")
        .phase("search", lambda: _search_products(campaign_id))
        .phase("scan", _list_active_products)
        .phase("cache", lambda: _cached_products(campaign_id, name), predicate=named)
    )
    product, phase = lookup.find()
    if product is not None:
        logger.info(f"Found product {product['id']} for campaign {campaign_id} via {phase}")
    return product


def ensure_product(spec):
    """Make Stripe hold exactly the product described by spec.

    Returns (stripe_product, created). An existing product whose metadata
    lacks or mismatches campaign_id is patched, never duplicated.
    Raises ValidationError or ExternalSystemError.
    """
    validate_campaign_id(spec.campaign_id)
    stripe.api_key = require_stripe_key()

    try:
        product = find_product_by_campaign_key(spec.campaign_id, spec.name)
        if product is not None:
            created = False
            metadata = dict(product.get("metadata") or {})
            if metadata.get(CAMPAIGN_KEY) != spec.campaign_id:
                metadata[CAMPAIGN_KEY] = spec.campaign_id
                product = stripe.Product.modify(product["id"], metadata=metadata)
                logger.info(
                    f"Updated metadata for product {product['id']} "
                    f"with campaign_id: {spec.campaign_id}"
                )
        else:
            product = stripe.Product.create(**spec.create_params())
            created = True
            logger.info(f"Created Stripe product {product['id']} for campaign {spec.campaign_id}")
    except stripe.error.StripeError as e:
        logger.error(f"Stripe error ensuring product for campaign {spec.campaign_id}: {e}")
        raise ExternalSystemError(
            f"Error ensuring product for campaign {spec.campaign_id}: {stripe_error_message(e)}"
        ) from e

    _mirror_quietly(mirror_product, product, spec.campaign_id)
    return product, created


def _ladder_index(stripe_product_id, currency):
    """Map amount key -> active price, from a single paginated list call.

    Prices created by the ladder carry metadata amount_usd. Older prices
    without it are matched on (unit_amount, currency) so they get healed
    instead of duplicated.
    """
    index = {}
    prices = stripe.Price.list(product=stripe_product_id, active=True, limit=100)
    for price in prices.auto_paging_iter():
        key = (price.get("metadata") or {}).get(AMOUNT_KEY)
        if key is None:
            unit_amount = price.get("unit_amount")
            if price.get("currency") != currency or price.get("recurring") \
                    or not unit_amount or unit_amount % 100:
                continue
            key = str(unit_amount // 100)
        index.setdefault(key, price)
    return index


def ensure_price_ladder(stripe_product_id, points=DEFAULT_LADDER, campaign_id=None,
                        currency=DEFAULT_CURRENCY):
    """Ensure one active price per whole-dollar amount in points.

    Returns {"created": n, "skipped": n, "errors": [...]}. A failing point
    is recorded in errors and the remaining points are still processed.
    """
    result = {"created": 0, "skipped": 0, "errors": []}
    stripe.api_key = require_stripe_key()

    try:
        existing = _ladder_index(stripe_product_id, currency)
    except stripe.error.StripeError as e:
        logger.error(f"Error listing prices for product {stripe_product_id}: {e}")
        result["errors"].append(
            f"Prices for product {stripe_product_id}: {stripe_error_message(e)}"
        )
        return result

    logger.info(f"Ensuring {len(points)} price tariffs for product {stripe_product_id}")

    for point in points:
        key = str(point)
        try:
            if isinstance(point, bool) or not isinstance(point, int) or point <= 0:
                raise ValidationError("amount must be a positive whole number of dollars")

            wanted = {AMOUNT_KEY: key, "product_id": stripe_product_id}
            if campaign_id:
                wanted[CAMPAIGN_KEY] = campaign_id

            price = existing.get(key)
            if price is not None:
                metadata = dict(price.get("metadata") or {})
                if any(metadata.get(k) != v for k, v in wanted.items()):
                    metadata.update(wanted)
                    price = stripe.Price.modify(price["id"], metadata=metadata)
                    logger.info(f"Updated metadata for price {price['id']}, amount: {point}")
                result["skipped"] += 1
            else:
                price = stripe.Price.create(
                    product=stripe_product_id,
                    unit_amount=point * 100,  # Stripe uses cents
                    currency=currency,
                    metadata=wanted,
                )
                existing[key] = price
                result["created"] += 1
        except (stripe.error.StripeError, ValidationError) as e:
            message = stripe_error_message(e) if isinstance(e, stripe.error.StripeError) else e.message
            logger.error(f"Error creating/updating price {point} for product {stripe_product_id}: {message}")
            result["errors"].append(f"Price {point} for product {stripe_product_id}: {message}")
            continue

        _mirror_quietly(mirror_price, price)

    logger.info(
        f"Finished prices for product {stripe_product_id}: "
        f"{result['created']} created, {result['skipped']} skipped, "
        f"{len(result['errors'])} errors"
    )
    return result


# ──────────────────────────────────────────────
# Cache reads
# ──────────────────────────────────────────────

def get_product_row(product_id):
    """Look up a cached product by local id or Stripe id ("prod_...")."""
    if not product_id:
        return None
    column = Product.stripe_product_id if product_id.startswith("prod_") else Product.id
    return Product.query.filter(column == product_id).first()


def get_all_products():
    return [p.to_dict() for p in Product.query.order_by(Product.created_at).all()]


def get_products_by_campaign(campaign_id):
    rows = Product.query.filter_by(campaign_id=campaign_id).all()
    return [p.to_dict() for p in rows]


def get_product_by_name(name):
    """Case-insensitive exact name match."""
    rows = Product.query.filter(db.func.lower(Product.name) == name.lower()).all()
    return [p.to_dict() for p in rows]


def get_products_by_name_and_campaign_id(name, campaign_id):
    rows = (
        Product.query
        .filter_by(campaign_id=campaign_id)
        .filter(db.func.lower(Product.name) == name.lower())
        .all()
    )
    return [p.to_dict() for p in rows]


def product_exists(name, campaign_id):
    count = (
        Product.query
        .filter_by(campaign_id=campaign_id)
        .filter(db.func.lower(Product.name) == name.lower())
        .count()
    )
    return count > 0


def get_donation_product_for_campaign(campaign_id):
    row = Product.query.filter_by(
        campaign_id=campaign_id, name=DONATION_PRODUCT_NAME
    ).first()
    return row.to_dict() if row else None


def get_product_by_id(product_id):
    """Cached product, or for an uncached "prod_" id, straight from Stripe."""
    row = get_product_row(product_id)
    if row is not None:
        return row.to_dict()

    if not product_id.startswith("prod_"):
        raise NotFoundError(f"Product with ID {product_id} not found")

    stripe.api_key = require_stripe_key()
    try:
        product = stripe.Product.retrieve(product_id)
        prices = stripe.Price.list(product=product_id, limit=100)
    except stripe.error.InvalidRequestError as e:
        raise NotFoundError(
            f"Product not found in cache or Stripe: {stripe_error_message(e)}"
        ) from e
    except stripe.error.StripeError as e:
        raise ExternalSystemError(f"Error getting product: {stripe_error_message(e)}") from e

    data = dict(product)
    data["prices"] = [dict(price) for price in prices.data]
    return data


# ──────────────────────────────────────────────
# Cache-backed writes
# ──────────────────────────────────────────────

def _require_product_row(product_id):
    """Cached row for product_id; adopts an uncached Stripe product if needed."""
    if not product_id:
        raise ValidationError("Missing required parameter productId")

    row = get_product_row(product_id)
    if row is not None:
        return row

    if not product_id.startswith("prod_"):
        raise NotFoundError(f"Product with ID {product_id} not found")

    stripe.api_key = require_stripe_key()
    try:
        stripe_product = stripe.Product.retrieve(product_id)
    except stripe.error.InvalidRequestError as e:
        raise NotFoundError(f"Product with ID {product_id} not found") from e
    except stripe.error.StripeError as e:
        raise ExternalSystemError(f"Error getting product: {stripe_error_message(e)}") from e

    try:
        return mirror_product(stripe_product)
    except CacheSyncError as e:
        logger.warning(f"Cache out of sync with Stripe: {e}")
        raise ApiError(f"Product {product_id} could not be cached") from e


def _price_payload(stripe_price):
    row = _mirror_quietly(mirror_price, stripe_price)
    return row.to_dict() if row is not None else dict(stripe_price)


def _ensure_prices(stripe_product_id, price_specs):
    """Create the prices in price_specs that the product does not have yet.

    Dedup key is (unit_amount, currency) among the product's active prices.
    Returns the price payloads in price_specs order.
    """
    existing = {}
    for price in stripe.Price.list(
        product=stripe_product_id, active=True, limit=100
    ).auto_paging_iter():
        existing.setdefault(_price_identity(price), price)

    payloads = []
    for spec in price_specs:
        price = existing.get(spec.identity)
        if price is None:
            price = stripe.Price.create(**spec.create_params(stripe_product_id))
            existing[spec.identity] = price
            logger.info(f"Created price {price['id']} on product {stripe_product_id}")
        payloads.append(_price_payload(price))
    return payloads


def create_product(spec, price_specs=()):
    """Create a product (and optional prices) unless it already exists."""
    for price_spec in price_specs:
        price_spec.validate()

    if spec.campaign_id and product_exists(spec.name, spec.campaign_id):
        raise ValidationError(
            f'A product with the name "{spec.name}" already exists for this campaign'
        )

    if spec.campaign_id:
        stripe_product, _created = ensure_product(spec)
    else:
        stripe.api_key = require_stripe_key()
        try:
            stripe_product = stripe.Product.create(**spec.create_params())
        except stripe.error.StripeError as e:
            raise ExternalSystemError(f"Error creating product: {stripe_error_message(e)}") from e
        _mirror_quietly(mirror_product, stripe_product)

    try:
        prices = _ensure_prices(stripe_product["id"], price_specs) if price_specs else []
    except stripe.error.StripeError as e:
        raise ExternalSystemError(f"Error creating product prices: {stripe_error_message(e)}") from e

    row = get_product_row(stripe_product["id"])
    data = row.to_dict(include_prices=False) if row is not None else dict(stripe_product)
    data["prices"] = prices
    return data


def add_price_to_product(product_id, price_spec):
    """Add one price; returns the existing price if an identical one is active."""
    price_spec.validate()
    row = _require_product_row(product_id)
    stripe.api_key = require_stripe_key()
    try:
        return _ensure_prices(row.stripe_product_id, [price_spec])[0]
    except stripe.error.StripeError as e:
        raise ExternalSystemError(f"Error adding price to product: {stripe_error_message(e)}") from e


def update_donation_product_tariffs(product_id, price_specs):
    """Add the tariffs the product is missing; return it with the requested prices."""
    for price_spec in price_specs:
        price_spec.validate()
    row = _require_product_row(product_id)
    stripe.api_key = require_stripe_key()
    try:
        prices = _ensure_prices(row.stripe_product_id, price_specs)
    except stripe.error.StripeError as e:
        raise ExternalSystemError(
            f"Error updating donation product tariffs: {stripe_error_message(e)}"
        ) from e

    row = get_product_row(row.stripe_product_id)
    data = row.to_dict(include_prices=False)
    data["prices"] = prices
    return data


def create_donation_product_for_campaign(campaign_id, price_specs=(), metadata=None,
                                         images=None):
    """Create the campaign's "Donation" product, or extend the existing one."""
    validate_campaign_id(campaign_id)
    existing = get_donation_product_for_campaign(campaign_id)
    if existing is not None:
        return update_donation_product_tariffs(existing["id"], price_specs)

    spec = ProductSpec(
        name=DONATION_PRODUCT_NAME,
        campaign_id=campaign_id,
        description=DONATION_PRODUCT_DESCRIPTION,
        images=images or [],
        metadata={**(metadata or {}), "type": "donation"},
    )
    return create_product(spec, price_specs)


def update_product(product_id, name=None, description=None, images=None,
                   metadata=None, active=None):
    row = _require_product_row(product_id)

    params = {}
    if name is not None:
        params["name"] = name
    if description is not None:
        params["description"] = description
    if images is not None:
        params["images"] = list(images)
    if active is not None:
        params["active"] = bool(active)
    if metadata is not None:
        params["metadata"] = _string_metadata(metadata)
        # Never drop the reconciliation key on a campaign product.
        if row.campaign_id:
            params["metadata"].setdefault(CAMPAIGN_KEY, row.campaign_id)
    if not params:
        raise ValidationError("Nothing to update")

    stripe.api_key = require_stripe_key()
    try:
        updated = stripe.Product.modify(row.stripe_product_id, **params)
    except stripe.error.StripeError as e:
        raise ExternalSystemError(f"Error updating product: {stripe_error_message(e)}") from e

    campaign_id = row.campaign_id
    mirrored = _mirror_quietly(mirror_product, updated, campaign_id)
    return mirrored.to_dict() if mirrored is not None else dict(updated)


def delete_product(product_id):
    """Archive the product in Stripe, then drop it (and its prices) from the cache.

    Stripe does not allow deleting products that have prices, so the
    Stripe side is deactivated rather than deleted.
    """
    row = _require_product_row(product_id)
    stripe_product_id = row.stripe_product_id

    stripe.api_key = require_stripe_key()
    try:
        stripe.Product.modify(stripe_product_id, active=False)
    except stripe.error.StripeError as e:
        raise ExternalSystemError(f"Error deleting product: {stripe_error_message(e)}") from e

    try:
        db.session.delete(row)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning(f"Cache out of sync with Stripe: failed to remove {stripe_product_id}: {e}")

    return {"deleted": True}
