# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/optica/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default admin/receptionist users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --username ana --email ana@optica.local --password "Password123!" --role specialist
#   Create a user (prompts if options are omitted).
#
# Discount inspection:
# - python -m flask discounts pending
#   List requests waiting for a decision.
# - python -m flask discounts active --product-id 3 [--patient-id 7] [--quantity 2]
#   Show the winning discount and a price preview.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import DiscountRequest, User
from .models.auth import VALID_ROLES
from .models.discounts import STATUS_PENDING
from .services.auth_service import create_user, PasswordValidationError
from .services import discount_resolver, product_discount_service
from .validation import NotFoundError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create tables and default users.

    Creates:
    - Users: admin/admin@optica.local (admin), reception/reception@optica.local (receptionist)
    - All passwords default to: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing Optica discount service...")

    db.create_all()
    click.echo("PASS Tables ready")

    default_password = "Password123!"
    default_users = [
        ("admin", "admin@optica.local", "admin"),
        ("reception", "reception@optica.local", "receptionist"),
    ]

    for username, email, role in default_users:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(username=username, email=email, password=default_password, role=role)
            click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
        except (ValueError, PasswordValidationError) as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{username}': {e}")

    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo("   admin     -> admin@optica.local     / Password123!")
    click.echo("   reception -> reception@optica.local / Password123!")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, email, password, role):
    """
    Create a new user.

    Password must be 8+ chars with uppercase, lowercase, digit and special char.
    """
    try:
        user = create_user(username=username, email=email, password=password, role=role)
        click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        raise SystemExit(1)
    except ValueError as e:
        db.session.rollback()
        click.echo(f"FAIL Failed to create user: {e}")
        raise SystemExit(1)


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Role'}")
    click.echo("="*80)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {user.role}")

    click.echo("="*80 + "\n")


@click.group('discounts')
def discounts_group():
    """Discount request inspection commands."""


@discounts_group.command('pending')
@with_appcontext
def list_pending():
    """List discount requests waiting for a decision."""
    rows = (
        db.session.query(DiscountRequest)
        .filter(DiscountRequest.status == STATUS_PENDING)
        .order_by(DiscountRequest.created_at.asc(), DiscountRequest.id.asc())
        .all()
    )

    if not rows:
        click.echo("No pending discount requests.")
        return

    click.echo(f"{'ID':<6} {'Product':<8} {'Scope':<14} {'Pct':>7} {'Expiry':<12} {'By':<5}")
    for r in rows:
        scope = "global" if r.is_global else f"patient {r.patient_id}"
        expiry = r.expiry_date.isoformat() if r.expiry_date else "-"
        click.echo(
            f"{r.id:<6} {r.product_id:<8} {scope:<14} {r.discount_percentage:>7.2f} {expiry:<12} {r.requested_by:<5}"
        )


@discounts_group.command('active')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--patient-id', type=int, help='Patient ID (optional)')
@click.option('--quantity', type=int, default=1, show_default=True, help='Units to price')
@with_appcontext
def show_active(product_id, patient_id, quantity):
    """Show the winning discount for a product (and patient) with a price preview."""
    winner = discount_resolver.resolve(product_id, patient_id)
    if winner is None:
        click.echo("No active discount.")
    else:
        scope = "global" if winner.is_global else f"patient {winner.patient_id}"
        click.echo(f"Winner: request {winner.id} ({scope}) at {winner.discount_percentage:.2f}%")

    try:
        result = product_discount_service.calculate_product_price(
            product_id, patient_id=patient_id, quantity=quantity
        )
    except (NotFoundError, ValidationError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    preview = result.to_dict()
    click.echo(f"Original: {preview['original_total']}")
    click.echo(f"Discount: {preview['discount_amount']}")
    click.echo(f"Final:    {preview['final_total']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(discounts_group)
