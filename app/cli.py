import os
import click
from flask import current_app
from flask.cli import with_appcontext
from flask_migrate import upgrade as alembic_upgrade, stamp as alembic_stamp, migrate as alembic_migrate


def _assert_safe_for_upgrade():
    # Prevent accidental prod upgrades unless explicitly allowed
    env = (current_app.config.get("ENV") or "").lower()
    app_env = (os.getenv("APP_ENV") or "").lower()
    if app_env == "production" or env == "production":
        if (os.getenv("ALLOW_DB_MIGRATIONS") or "").lower() not in ("1", "true", "yes"):
            raise click.ClickException("Refusing to run DB migration in production without ALLOW_DB_MIGRATIONS=true")


@click.command("db-migrate-safe")
@click.option("-m", "--message", default="auto migration", help="Migration message")
@with_appcontext
def db_migrate_safe(message):
    """Generate a new migration script from current models."""
    alembic_migrate(message=message)
    click.echo("Migration script generated.")


@click.command("db-upgrade-safe")
@with_appcontext
def db_upgrade_safe():
    """Apply migrations to the configured database."""
    _assert_safe_for_upgrade()
    alembic_upgrade()
    click.echo("Database upgraded.")


@click.command("db-stamp-safe")
@click.option("--revision", default="head", help="Revision to stamp, default 'head'")
@with_appcontext
def db_stamp_safe(revision):
    """Mark the database at a given revision without running migrations."""
    _assert_safe_for_upgrade()
    alembic_stamp(revision)
    click.echo(f"Database stamped at {revision}.")


@click.command("inventory-add")
@click.option("--city", "city_id", type=int, required=True, help="City id")
@click.option("--product", "product_id", type=int, required=True, help="Product id")
@click.option("--quantity", type=int, required=True, help="Number of units to add")
@with_appcontext
def inventory_add(city_id, product_id, quantity):
    """Add units to a city's pool for one bag type."""
    from app.errors import BookingError
    from app.services.inventory_ledger import create_units
    from app.utils import transactional

    try:
        with transactional("Failed to add inventory"):
            units = create_units(city_id, product_id, quantity)
    except BookingError as e:
        raise click.ClickException(e.message) from e
    click.echo(f"Added {len(units)} units: {units[0].sku} .. {units[-1].sku}")


@click.command("sweep-abandoned")
@with_appcontext
def sweep_abandoned():
    """Send recovery offers for unpaid checkouts and cancel expired ones."""
    from app.services.sweeps import send_abandoned_notices, cancel_stale_orders

    notices = send_abandoned_notices()
    cancelled = cancel_stale_orders()
    click.echo(f"Recovery offers sent: {notices}. Expired orders cancelled: {cancelled}.")


@click.command("send-reminders")
@with_appcontext
def send_reminders_command():
    """Text customers about tomorrow's deliveries and pickups."""
    from app.services.sweeps import send_reminders

    counts = send_reminders()
    click.echo(f"Delivery reminders: {counts['deliveries']}. Pickup reminders: {counts['pickups']}.")


@click.command("close-shipped-returns")
@with_appcontext
def close_shipped_returns_command():
    """Mark ship-back orders returned once their return date has passed."""
    from app.services.sweeps import close_shipped_returns

    closed = close_shipped_returns()
    click.echo(f"Closed {closed} ship-back orders.")


def register_cli(app):
    app.cli.add_command(db_migrate_safe)
    app.cli.add_command(db_upgrade_safe)
    app.cli.add_command(db_stamp_safe)
    app.cli.add_command(inventory_add)
    app.cli.add_command(sweep_abandoned)
    app.cli.add_command(send_reminders_command)
    app.cli.add_command(close_shipped_returns_command)

