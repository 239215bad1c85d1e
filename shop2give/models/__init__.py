# Models package — import all models here so Alembic can discover them.

from shop2give.models.campaign import Campaign  # noqa: F401
from shop2give.models.product import Product, Price  # noqa: F401
from shop2give.models.billing import StripeCustomer, StripeSubscription  # noqa: F401
from shop2give.models.checkout_log import CheckoutLog  # noqa: F401
from shop2give.models.rate_limit import RateLimitEvent, RateLimitCounter  # noqa: F401
