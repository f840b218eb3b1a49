import os
import logging

import click
from flask import Flask, jsonify

from hotmess.config import config_by_name
from hotmess.errors import SettlementError
from hotmess.extensions import db, migrate, login_manager, limiter


def create_app(config_name=None):
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

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from hotmess import models  # noqa: F401

    # --- Register blueprints ---
    from hotmess.blueprints.checkout import checkout_bp
    from hotmess.blueprints.webhooks import webhooks_bp
    from hotmess.blueprints.escrow import escrow_bp
    from hotmess.blueprints.connect import connect_bp

    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(escrow_bp)
    app.register_blueprint(connect_bp)

    # --- Health check ---
    @app.route("/health")
    def health():
        return jsonify(status="ok")

    # --- Error handlers ---
    @app.errorhandler(SettlementError)
    def settlement_error(e):
        db.session.rollback()
        if e.status_code >= 500:
            app.logger.error(f"{e.code}: {e.message}")
        else:
            app.logger.info(f"Rejected request ({e.code}): {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify(error="not_found", message="Not found."), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify(error="method_not_allowed", message="Method not allowed."), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify(error="rate_limited", message="Too many requests."), 429

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        app.logger.error(f"Unhandled error: {getattr(e, 'original_exception', e)}",
                         exc_info=True)
        return jsonify(error="internal_error", message="Something went wrong."), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON API: nothing to load, nothing to frame
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("issue-token")
    @click.option("--email", required=True, help="User email")
    @click.option("--name", default=None, help="Full name (new users only)")
    @click.option("--admin", is_flag=True, help="Create the user as an admin.")
    def issue_token(email, name, admin):
        """Create the user if needed and print a fresh API token.

        The previous token (if any) stops working.

        Usage:
            flask issue-token --email buyer@example.com
        """
        import secrets

        from hotmess.extensions import hash_api_token
        from hotmess.models.user import User

        email = email.lower().strip()
        user = User.query.filter_by(email=email).first()
        if user is None:
            user = User(email=email, full_name=name, is_admin=admin)
            db.session.add(user)
            click.echo(f"Created user: {email}")

        token = secrets.token_urlsafe(32)
        user.api_token_hash = hash_api_token(token)
        db.session.commit()

        click.echo("")
        click.echo(f"  User:   {user.email} (id: {user.id})")
        click.echo(f"  Token:  {token}")
        click.echo("")
        click.echo("Send it as:  Authorization: Bearer <token>")

    @app.cli.command("release-escrows")
    def release_escrows():
        """Auto-release escrow orders whose confirmation window has lapsed.

        Orders with an open or investigating dispute are skipped.
        Safe to run on a schedule (e.g. every 15 minutes).

        Usage:
            flask release-escrows
        """
        from hotmess.services.escrow_service import release_due_escrows

        results = release_due_escrows()

        click.echo(f"Released: {len(results['released'])}")
        for order_id in results["released"]:
            click.echo(f"  + {order_id}")
        click.echo(f"Skipped:  {len(results['skipped'])}")
        for order_id, reason in results["skipped"]:
            click.echo(f"  - {order_id} ({reason})")
        if results["errors"]:
            click.echo(f"Errors:   {len(results['errors'])}")
            for order_id, message in results["errors"]:
                click.echo(f"  ! {order_id}: {message}")

    @app.cli.command("reconcile-ledger")
    def reconcile_ledger():
        """Report users whose stored balance differs from their ledger sum.

        Read-only. Exits non-zero when drift is found so it can gate a deploy
        or page someone from cron.

        Usage:
            flask reconcile-ledger
        """
        from hotmess.services.ledger_service import find_drift

        drift = find_drift()
        if not drift:
            click.echo("Ledger OK: every balance matches its entries.")
            return

        click.echo(f"Ledger drift found for {len(drift)} balance(s):")
        for row in drift:
            click.echo(
                f"  {row['email']} [{row['currency']}] "
                f"stored={row['stored']} ledger={row['ledger']} "
                f"diff={row['stored'] - row['ledger']:+d}"
            )
        raise SystemExit(1)

    @app.cli.command("seed-demo")
    def seed_demo():
        """Create a demo seller, buyer, listing, products, and business.

        Usage:
            flask seed-demo
        """
        import secrets
        from datetime import datetime, timedelta, timezone

        from hotmess.extensions import hash_api_token
        from hotmess.models.business import Business
        from hotmess.models.catalog import Product, TicketListing
        from hotmess.models.user import User
        from hotmess.services.ledger_service import get_or_create_platform_account

        tokens = {}
        users = {}
        for role, email in (("seller", "seller@hotmess.local"), ("buyer", "buyer@hotmess.local")):
            user = User.query.filter_by(email=email).first()
            if user is None:
                user = User(email=email, full_name=f"Demo {role.title()}")
                db.session.add(user)
            token = secrets.token_urlsafe(32)
            user.api_token_hash = hash_api_token(token)
            users[role] = user
            tokens[role] = token
        db.session.flush()

        get_or_create_platform_account()

        listing = TicketListing(
            seller_id=users["seller"].id,
            event_name="HOTMESS Warehouse Night",
            event_date=datetime.now(timezone.utc) + timedelta(days=14),
            price_minor=2500,
            price_xp=1000,
            ticket_quantity=2,
        )
        tee = Product(
            seller_id=users["seller"].id,
            name="HOTMESS Tee",
            product_type="physical",
            price_minor=3000,
            shipping_minor=450,
            price_xp=800,
            price_sweat=50,
            inventory_count=20,
        )
        mix = Product(
            seller_id=users["seller"].id,
            name="Warehouse Night Mix (download)",
            product_type="digital",
            price_minor=500,
            price_xp=200,
        )
        business = Business(name="Demo Bar", owner_id=users["buyer"].id)
        db.session.add_all([listing, tee, mix, business])
        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Seed data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  Seller token: {tokens['seller']}")
        click.echo(f"  Buyer token:  {tokens['buyer']}")
        click.echo(f"  Listing:      {listing.id}")
        click.echo(f"  Tee:          {tee.id}")
        click.echo(f"  Mix:          {mix.id}")
        click.echo(f"  Business:     {business.id}")
        click.echo("=" * 60)
