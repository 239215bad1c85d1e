"""Shared test fixtures for the Shop2Give API test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, Flask-Limiter off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- fake_stripe: in-memory Stripe patched into the catalog + checkout services
- login_as: bearer-token users without calling Supabase
- csrf_headers: a valid X-CSRF-Token header for a user
- campaigns: ten active campaigns
"""

import itertools
import re
import uuid
from collections import Counter
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from shop2give import create_app
from shop2give.extensions import db as _db
from shop2give.models.campaign import Campaign
from shop2give.services.auth_service import AuthUser
from shop2give.services.csrf_service import CSRF_HEADER, generate_csrf_token


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


# ──────────────────────────────────────────────
# Fake Stripe
# ──────────────────────────────────────────────

class FakeStripeObject(dict):
    """dict with attribute access, like stripe.StripeObject."""

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name)


class FakeList:
    def __init__(self, data):
        self.data = list(data)

    def auto_paging_iter(self):
        return iter(self.data)


class _ProductAPI:
    _SEARCH_RE = re.compile(r"metadata\['campaign_id'\]:'([^']*)'")

    def __init__(self, fake):
        self.fake = fake

    def search(self, query, limit=10):
        self.fake.calls["Product.search"] += 1
        if self.fake.search_error is not None:
            raise self.fake.search_error
        match = self._SEARCH_RE.search(query)
        campaign_id = match.group(1) if match else None
        hits = [
            p for pid, p in self.fake.products.items()
            if pid in self.fake.search_index
            and p["active"]
            and p["metadata"].get("campaign_id") == campaign_id
        ]
        return FakeList(hits[:limit])

    def list(self, active=None, limit=10):
        self.fake.calls["Product.list"] += 1
        return FakeList(
            p for p in self.fake.products.values()
            if active is None or p["active"] == active
        )

    def create(self, **params):
        self.fake.calls["Product.create"] += 1
        product = FakeStripeObject(
            id=f"prod_{next(self.fake.ids)}",
            object="product",
            name=params["name"],
            description=params.get("description"),
            images=params.get("images", []),
            active=params.get("active", True),
            metadata=dict(params.get("metadata") or {}),
        )
        self.fake.products[product["id"]] = product
        if self.fake.index_new_products:
            self.fake.search_index.add(product["id"])
        return product

    def retrieve(self, product_id):
        self.fake.calls["Product.retrieve"] += 1
        if product_id not in self.fake.products:
            raise stripe.error.InvalidRequestError(
                f"No such product: '{product_id}'", "id"
            )
        return self.fake.products[product_id]

    def modify(self, product_id, **params):
        self.fake.calls["Product.modify"] += 1
        product = self.retrieve(product_id)
        metadata = params.pop("metadata", None)
        if metadata is not None:
            product["metadata"].update(metadata)
        product.update(params)
        return product


class _PriceAPI:
    def __init__(self, fake):
        self.fake = fake

    def list(self, product=None, active=None, limit=10):
        self.fake.calls["Price.list"] += 1
        return FakeList(
            p for p in self.fake.prices.values()
            if (product is None or p["product"] == product)
            and (active is None or p["active"] == active)
        )

    def create(self, **params):
        self.fake.calls["Price.create"] += 1
        if params["unit_amount"] in self.fake.failing_unit_amounts:
            raise stripe.error.InvalidRequestError("Price rejected", "unit_amount")
        price = FakeStripeObject(
            id=f"price_{next(self.fake.ids)}",
            object="price",
            product=params["product"],
            unit_amount=params["unit_amount"],
            currency=params["currency"],
            recurring=params.get("recurring"),
            active=True,
            metadata=dict(params.get("metadata") or {}),
        )
        self.fake.prices[price["id"]] = price
        return price

    def modify(self, price_id, **params):
        self.fake.calls["Price.modify"] += 1
        price = self.fake.prices[price_id]
        metadata = params.pop("metadata", None)
        if metadata is not None:
            price["metadata"].update(metadata)
        price.update(params)
        return price


class _CustomerAPI:
    def __init__(self, fake):
        self.fake = fake

    def create(self, **params):
        self.fake.calls["Customer.create"] += 1
        customer = FakeStripeObject(
            id=f"cus_{next(self.fake.ids)}",
            object="customer",
            email=params.get("email"),
            metadata=dict(params.get("metadata") or {}),
        )
        self.fake.customers[customer["id"]] = customer
        return customer

    def delete(self, customer_id):
        self.fake.calls["Customer.delete"] += 1
        self.fake.customers.pop(customer_id)
        self.fake.deleted_customers.append(customer_id)
        return FakeStripeObject(id=customer_id, deleted=True)


class _SessionAPI:
    def __init__(self, fake):
        self.fake = fake

    def create(self, **params):
        self.fake.calls["checkout.Session.create"] += 1
        if self.fake.session_error is not None:
            raise self.fake.session_error
        session = FakeStripeObject(
            id=f"cs_test_{next(self.fake.ids)}",
            object="checkout.session",
            url=f"https://checkout.stripe.com/c/pay/cs_test_{len(self.fake.sessions)}",
            **params,
        )
        self.fake.sessions.append(session)
        return session


class FakeStripe:
    """Stateful stand-in for the stripe module.

    index_new_products=False simulates the search index lagging behind
    writes: created products are only visible through Product.list.
    """

    error = stripe.error

    def __init__(self):
        self.api_key = None
        self.ids = itertools.count(1)
        self.products = {}
        self.prices = {}
        self.customers = {}
        self.deleted_customers = []
        self.sessions = []
        self.search_index = set()
        self.index_new_products = True
        self.search_error = None
        self.session_error = None
        self.failing_unit_amounts = set()
        self.calls = Counter()

        self.Product = _ProductAPI(self)
        self.Price = _PriceAPI(self)
        self.Customer = _CustomerAPI(self)
        self.checkout = SimpleNamespace(Session=_SessionAPI(self))

    def active_prices(self, product_id):
        return [
            p for p in self.prices.values()
            if p["product"] == product_id and p["active"]
        ]


@pytest.fixture
def fake_stripe():
    """Patch the stripe module used by the services with a FakeStripe."""
    fake = FakeStripe()
    with patch("shop2give.services.catalog_service.stripe", fake), \
            patch("shop2give.services.checkout_service.stripe", fake):
        yield fake


# ──────────────────────────────────────────────
# Auth helpers
# ──────────────────────────────────────────────

@pytest.fixture
def login_as():
    """Return a factory: login_as(role) -> (AuthUser, Authorization headers).

    Tokens are resolved by a patched get_user_from_token, so no request
    reaches Supabase.
    """
    users = {}

    def lookup(token):
        return users.get(token)

    with patch(
        "shop2give.services.auth_service.get_user_from_token",
        side_effect=lookup,
    ):
        def _login(role="user", user_id=None, email=None):
            user = AuthUser(
                id=user_id or str(uuid.uuid4()),
                email=email or f"{role}@example.com",
                role=role,
            )
            token = f"token-{user.id}"
            users[token] = user
            return user, {"Authorization": f"Bearer {token}"}

        yield _login


@pytest.fixture
def csrf_headers(app):
    """Return a factory: csrf_headers(user) -> {"X-CSRF-Token": token}."""

    def _headers(user):
        return {CSRF_HEADER: generate_csrf_token(user.id)}

    return _headers


@pytest.fixture
def campaigns(app, db_session):
    """Ten active campaigns plus one draft (which the seeder must ignore)."""
    rows = [
        Campaign(title=f"Campaign {i}", status="active")
        for i in range(10)
    ]
    rows.append(Campaign(title="Not launched", status="draft"))
    _db.session.add_all(rows)
    _db.session.commit()
    return rows[:10]
