import os
import logging

import click
from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException

from shop2give.config import config_by_name
from shop2give.cors import with_cors
from shop2give.errors import ApiError, RateLimitError
from shop2give.extensions import db, migrate, login_manager, limiter


def create_app(config_name=None, csrf_store=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # The synthetic test identity must never be reachable in production.
    if config_name == "production" and app.config.get("AUTH_TEST_MODE_ENABLED"):
        app.logger.warning(
            "AUTH_TEST_MODE_ENABLED is set in production; ignoring it"
        )
        app.config["AUTH_TEST_MODE_ENABLED"] = False

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    from shop2give.services.csrf_service import init_csrf_store
    init_csrf_store(app, csrf_store)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from shop2give import models  # noqa: F401

    # --- Register blueprints ---
    from shop2give.blueprints.products import products_bp
    from shop2give.blueprints.checkout import checkout_bp
    from shop2give.blueprints.seed import seed_bp
    from shop2give.blueprints.csrf import csrf_bp

    app.register_blueprint(products_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(seed_bp)
    app.register_blueprint(csrf_bp)

    # Bearer auth is resolved per request; never carry a user over.
    @app.teardown_request
    def forget_request_user(exc):
        g.pop("_login_user", None)

    # --- Error handlers ---
    @app.errorhandler(ApiError)
    def api_error(e):
        if isinstance(e, RateLimitError):
            from shop2give.services.rate_limiter import rate_limit_response
            return rate_limit_response(e)
        if e.status_code >= 500:
            app.logger.error(f"{type(e).__name__}: {e.message}")
        return with_cors(jsonify(success=False, error=e.message)), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e):
        return with_cors(jsonify(success=False, error=e.description)), e.code

    @app.errorhandler(Exception)
    def server_error(e):
        # Stack trace stays in the server log; the caller gets the message.
        app.logger.exception("Unhandled error")
        return with_cors(jsonify(success=False, error=str(e) or "Internal server error")), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security + CORS headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security and CORS headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # JSON API, never framed
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        if "Access-Control-Allow-Origin" not in response.headers:
            with_cors(response)
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-stripe-products")
    @click.option(
        "--campaign-id", "campaign_ids", multiple=True,
        help="Seed only these campaigns (default: every active campaign).",
    )
    def seed_stripe_products_command(campaign_ids):
        """Create the Donation product and 5..500 USD price ladder per campaign.

        Safe to re-run: existing products and prices are skipped.

        Usage:
            flask seed-stripe-products
            flask seed-stripe-products --campaign-id <uuid> --campaign-id <uuid>
        """
        from shop2give.models.campaign import Campaign
        from shop2give.services.seed_service import seed_stripe_products

        campaigns = None
        if campaign_ids:
            campaigns = Campaign.query.filter(Campaign.id.in_(campaign_ids)).all()
            missing = set(campaign_ids) - {c.id for c in campaigns}
            for campaign_id in sorted(missing):
                click.echo(f"WARNING: campaign {campaign_id} not found, skipping")

        result = seed_stripe_products(campaigns)
        if not result["success"]:
            click.echo(f"ERROR: {result['error']}")
            raise SystemExit(1)

        results = result["results"]
        click.echo("")
        click.echo("=" * 60)
        click.echo("Stripe product seeding finished")
        click.echo("=" * 60)
        click.echo(f"  Products:  {results['productsCreated']} created, {results['productsSkipped']} skipped")
        click.echo(f"  Prices:    {results['pricesCreated']} created, {results['pricesSkipped']} skipped")
        click.echo(f"  Errors:    {len(results['errors'])}")
        for error in results["errors"]:
            click.echo(f"    - {error}")
        click.echo("=" * 60)

    @app.cli.command("verify-stripe-catalog")
    def verify_stripe_catalog():
        """Check every active campaign has a Donation product with the full ladder.

        Reads Stripe directly (not the local cache) so it also catches
        products whose campaign_id metadata went missing.
        """
        import stripe as _stripe

        from shop2give.services.catalog_service import (
            AMOUNT_KEY,
            DEFAULT_LADDER,
            DONATION_PRODUCT_NAME,
            find_product_by_campaign_key,
        )
        from shop2give.services.seed_service import get_active_campaigns

        api_key = app.config.get("STRIPE_SECRET_KEY")
        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        key_mode = "Live" if api_key.startswith("sk_live_") else "Test"
        click.echo(f"Stripe key mode: {key_mode}")
        click.echo("")

        _stripe.api_key = api_key
        expected = {str(amount) for amount in DEFAULT_LADDER}
        problems = 0

        for campaign in get_active_campaigns():
            product = find_product_by_campaign_key(campaign.id, DONATION_PRODUCT_NAME)
            if product is None:
                click.echo(f"  {campaign.id} ({campaign.title}): MISSING donation product")
                problems += 1
                continue

            prices = _stripe.Price.list(product=product["id"], active=True, limit=100)
            amounts = {
                (price.get("metadata") or {}).get(AMOUNT_KEY)
                for price in prices.auto_paging_iter()
            }
            missing = expected - amounts
            status = "ok" if not missing else f"{len(missing)} ladder prices missing"
            click.echo(f"  {campaign.id} ({campaign.title}): {product['id']}, {status}")
            if missing:
                problems += 1

        click.echo("")
        click.echo(f"{problems} campaign(s) need attention" if problems else "Catalog OK")
