"""Product API actions — one request type per action.

The /stripe-products endpoint receives {"action": "...", ...}. Each action
is parsed into its own frozen dataclass (validated up front), then
dispatched through HANDLERS. Registering an action without a handler is
caught at import time, so a new action cannot silently fall through.
"""

import json
import logging
from dataclasses import dataclass, field

from shop2give.errors import PermissionDeniedError, ValidationError
from shop2give.services import catalog_service as catalog
from shop2give.services.catalog_service import DEFAULT_CURRENCY, PriceSpec, ProductSpec

logger = logging.getLogger(__name__)

# action name -> request class
ACTIONS = {}


def register(action, read_only=False):
    def decorator(cls):
        cls.action = action
        cls.read_only = read_only
        ACTIONS[action] = cls
        return cls

    return decorator


# ──────────────────────────────────────────────
# Payload parsing
# ──────────────────────────────────────────────

def _required_str(payload, key):
    value = payload.get(key)
    if value is None or value == "":
        raise ValidationError(f"Missing required parameter {key}")
    if not isinstance(value, str):
        raise ValidationError(
            f"Expected parameter {key} to be a string got {json.dumps(value)}"
        )
    return value


def _optional_str(payload, key):
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(
            f"Expected parameter {key} to be a string got {json.dumps(value)}"
        )
    return value


def _optional_dict(payload, key):
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError(f"Expected parameter {key} to be an object")
    return value


def _optional_list(payload, key):
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationError(f"Expected parameter {key} to be an array")
    return value


def _optional_bool(payload, key):
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationError(f"Expected parameter {key} to be a boolean")
    return value


def parse_price(data):
    """{"unitAmount": 500, "currency": "usd", "recurring": {...}} -> PriceSpec."""
    if not isinstance(data, dict):
        raise ValidationError("Expected each price to be an object")
    if data.get("unitAmount") is None:
        raise ValidationError("Missing required parameter unitAmount")

    currency = data.get("currency") or DEFAULT_CURRENCY
    if isinstance(currency, str):
        currency = currency.lower()

    recurring = data.get("recurring") or {}
    if not isinstance(recurring, dict):
        raise ValidationError("Expected parameter recurring to be an object")

    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationError("Expected parameter metadata to be an object")

    spec = PriceSpec(
        unit_amount=data["unitAmount"],
        currency=currency,
        recurring_interval=recurring.get("interval"),
        recurring_interval_count=recurring.get("intervalCount"),
        metadata=metadata,
    )
    return spec.validate()


def _parse_prices(payload, required=False):
    prices = _optional_list(payload, "prices")
    if not prices:
        if required:
            raise ValidationError("Missing required parameter prices")
        return ()
    return tuple(parse_price(p) for p in prices)


# ──────────────────────────────────────────────
# Read actions
# ──────────────────────────────────────────────

@register("getAllProducts", read_only=True)
@dataclass(frozen=True)
class GetAllProducts:
    @classmethod
    def from_payload(cls, payload):
        return cls()


@register("getProductsByCampaign", read_only=True)
@dataclass(frozen=True)
class GetProductsByCampaign:
    campaign_id: str

    @classmethod
    def from_payload(cls, payload):
        return cls(campaign_id=_required_str(payload, "campaignId"))


@register("getProductById", read_only=True)
@dataclass(frozen=True)
class GetProductById:
    product_id: str

    @classmethod
    def from_payload(cls, payload):
        return cls(product_id=_required_str(payload, "productId"))


@register("getProductByName", read_only=True)
@dataclass(frozen=True)
class GetProductByName:
    name: str

    @classmethod
    def from_payload(cls, payload):
        return cls(name=_required_str(payload, "name"))


@register("productExists", read_only=True)
@dataclass(frozen=True)
class ProductExists:
    name: str
    campaign_id: str

    @classmethod
    def from_payload(cls, payload):
        return cls(
            name=_required_str(payload, "name"),
            campaign_id=_required_str(payload, "campaignId"),
        )


@register("getDonationProductForCampaign", read_only=True)
@dataclass(frozen=True)
class GetDonationProductForCampaign:
    campaign_id: str

    @classmethod
    def from_payload(cls, payload):
        return cls(campaign_id=_required_str(payload, "campaignId"))


@register("getProductsByNameAndCampaignId", read_only=True)
@dataclass(frozen=True)
class GetProductsByNameAndCampaignId:
    name: str
    campaign_id: str

    @classmethod
    def from_payload(cls, payload):
        return cls(
            name=_required_str(payload, "name"),
            campaign_id=_required_str(payload, "campaignId"),
        )


# ──────────────────────────────────────────────
# Write actions (admin / campaign_owner)
# ──────────────────────────────────────────────

@register("createProduct")
@dataclass(frozen=True)
class CreateProduct:
    spec: ProductSpec
    prices: tuple = ()

    @classmethod
    def from_payload(cls, payload):
        spec = ProductSpec(
            name=_required_str(payload, "name"),
            campaign_id=_optional_str(payload, "campaignId"),
            description=_optional_str(payload, "description"),
            images=_optional_list(payload, "images") or [],
            metadata=_optional_dict(payload, "metadata") or {},
            active=True if payload.get("active") is None else _optional_bool(payload, "active"),
        )
        return cls(spec=spec, prices=_parse_prices(payload))


@register("createDonationProductForCampaign")
@dataclass(frozen=True)
class CreateDonationProductForCampaign:
    campaign_id: str
    prices: tuple = ()
    metadata: dict = field(default_factory=dict)
    images: list = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload):
        return cls(
            campaign_id=_required_str(payload, "campaignId"),
            prices=_parse_prices(payload),
            metadata=_optional_dict(payload, "metadata") or {},
            images=_optional_list(payload, "images") or [],
        )


@register("updateDonationProductTariffs")
@dataclass(frozen=True)
class UpdateDonationProductTariffs:
    product_id: str
    prices: tuple

    @classmethod
    def from_payload(cls, payload):
        return cls(
            product_id=_required_str(payload, "productId"),
            prices=_parse_prices(payload, required=True),
        )


@register("addPriceToProduct")
@dataclass(frozen=True)
class AddPriceToProduct:
    product_id: str
    price: PriceSpec

    @classmethod
    def from_payload(cls, payload):
        product_id = _required_str(payload, "productId")
        prices = _parse_prices(payload, required=True)
        return cls(product_id=product_id, price=prices[0])


@register("updateProduct")
@dataclass(frozen=True)
class UpdateProduct:
    product_id: str
    name: str = None
    description: str = None
    images: list = None
    metadata: dict = None
    active: bool = None

    @classmethod
    def from_payload(cls, payload):
        return cls(
            product_id=_required_str(payload, "productId"),
            name=_optional_str(payload, "name"),
            description=_optional_str(payload, "description"),
            images=_optional_list(payload, "images"),
            metadata=_optional_dict(payload, "metadata"),
            active=_optional_bool(payload, "active"),
        )


@register("deleteProduct")
@dataclass(frozen=True)
class DeleteProduct:
    product_id: str

    @classmethod
    def from_payload(cls, payload):
        return cls(product_id=_required_str(payload, "productId"))


# ──────────────────────────────────────────────
# Dispatch
# ──────────────────────────────────────────────

HANDLERS = {
    GetAllProducts: lambda req: catalog.get_all_products(),
    GetProductsByCampaign: lambda req: catalog.get_products_by_campaign(req.campaign_id),
    GetProductById: lambda req: catalog.get_product_by_id(req.product_id),
    GetProductByName: lambda req: catalog.get_product_by_name(req.name),
    ProductExists: lambda req: {
        "exists": catalog.product_exists(req.name, req.campaign_id)
    },
    GetDonationProductForCampaign: lambda req: catalog.get_donation_product_for_campaign(
        req.campaign_id
    ),
    GetProductsByNameAndCampaignId: lambda req: catalog.get_products_by_name_and_campaign_id(
        req.name, req.campaign_id
    ),
    CreateProduct: lambda req: catalog.create_product(req.spec, req.prices),
    CreateDonationProductForCampaign: lambda req: catalog.create_donation_product_for_campaign(
        req.campaign_id, req.prices, metadata=req.metadata, images=req.images
    ),
    UpdateDonationProductTariffs: lambda req: catalog.update_donation_product_tariffs(
        req.product_id, req.prices
    ),
    AddPriceToProduct: lambda req: catalog.add_price_to_product(req.product_id, req.price),
    UpdateProduct: lambda req: catalog.update_product(
        req.product_id,
        name=req.name,
        description=req.description,
        images=req.images,
        metadata=req.metadata,
        active=req.active,
    ),
    DeleteProduct: lambda req: catalog.delete_product(req.product_id),
}

_unhandled = sorted(name for name, cls in ACTIONS.items() if cls not in HANDLERS)
if _unhandled:
    raise RuntimeError(f"Product actions without a handler: {', '.join(_unhandled)}")


def parse_product_request(payload):
    """Turn a request body into its action dataclass. Raises ValidationError."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    action = payload.get("action")
    if action is None or action == "":
        raise ValidationError("Missing required parameter action")
    cls = ACTIONS.get(action) if isinstance(action, str) else None
    if cls is None:
        raise ValidationError(f"Unknown action: {action}")
    return cls.from_payload(payload)


def dispatch(request_action, user):
    """Run a parsed action for user. Write actions need a catalog-write role."""
    if not request_action.read_only and not user.can_write_catalog:
        logger.info(f"User {user.id} ({user.role}) denied {request_action.action}")
        raise PermissionDeniedError("Insufficient permissions for this operation")

    logger.info(f"User {user.id} running product action {request_action.action}")
    return HANDLERS[type(request_action)](request_action)
