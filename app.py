import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate

from config import Config
from models import db
from models.user import Role, User
from routes import activity_bp, auth_bp, booking_bp, health_bp
from security.csrf import csrf_protect
from services.errors import BookingError
from utils.auth_context import load_current_user
from utils.engine import booking_engine, init_booking_core
from utils.seed import seed_activities, seed_roles


def create_app(config_object=Config, clock=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(activity_bp)
    app.register_blueprint(booking_bp)

    # store failures and refusals raised outside an Outcome (listings, availability)
    @app.errorhandler(BookingError)
    def booking_error(error):
        return jsonify(error.to_dict()), error.http_status

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    init_booking_core(app, clock=clock)

    # Seed default roles at startup (safe & idempotent)
    with app.app_context():
        if app.config.get("TESTING"):
            db.create_all()
        seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    app.before_request(csrf_protect)

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    app.logger.info("Booking service ready (timezone %s)", app.config.get("FACILITY_TIMEZONE"))
    return app

#-------------------------


def register_cli(app):
    @app.cli.command("grant-role")
    @click.argument("email")
    @click.argument("role", type=click.Choice(["MEMBER", "STAFF", "ADMIN"], case_sensitive=False))
    def grant_role(email, role):
        """Give a user the MEMBER, STAFF or ADMIN role (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        role = role.upper()
        row = Role.query.filter_by(name=role).first()
        if not row:
            row = Role(name=role)
            db.session.add(row)

        if row not in user.roles:
            user.roles.append(row)
        db.session.commit()

        click.echo(f"{user.email} granted {role}")

    @app.cli.command("seed-activities")
    def seed_activities_command():
        """Insert the demo activity catalog into an empty database."""
        added = seed_activities()
        click.echo(f"Added {added} activities" if added else "Catalog already populated")

    @app.cli.command("reconcile-slots")
    def reconcile_slots():
        """Recompute slot counters from booking history."""
        corrections = booking_engine().capacity.rebuild()
        if not corrections:
            click.echo("All slot counters consistent")
            return
        for key, (old, new) in corrections.items():
            click.echo(f"{key.activity_id} {key.date.isoformat()} {key.time_slot}: {old} -> {new}")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
