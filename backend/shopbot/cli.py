# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shopbot/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--email admin@shop.local --password "Password123"]
#   Create tables if missing and the first admin user (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --email staff@shop.local --password "Password123" --role staff
#
# Catalog:
# - python -m flask products seed
#   Insert a small demo catalog (skips SKUs that already exist).
# - python -m flask products list

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, User
from .services.auth_service import AuthError, PasswordValidationError, VALID_ROLES, create_user
from .services import products_service
from .validation import ConflictError

DEMO_PRODUCTS = [
    {
        "sku": "UJ-OIL-100",
        "name": "Mafuta ya Nywele 100ml",
        "price_tzs": 15000,
        "stock_qty": 25,
        "short_description": "Hair oil, 100ml",
        "description": "Natural hair oil for dry scalp.",
        "usage_instructions": "Apply a few drops to the scalp twice a week.",
        "warnings": "External use only.",
    },
    {
        "sku": "UJ-SOAP-01",
        "name": "Sabuni ya Asili",
        "price_tzs": 5000,
        "stock_qty": 60,
        "short_description": "Natural soap bar",
        "description": "Handmade soap with shea butter.",
    },
    {
        "sku": "UJ-CREAM-50",
        "name": "Cream ya Ngozi 50g",
        "price_tzs": 22000,
        "stock_qty": 0,
        "short_description": "Skin cream, 50g",
        "description": "Moisturising skin cream.",
        "warnings": "Stop use if irritation occurs.",
    },
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--email', default='admin@shop.local', help='Admin email')
@click.option('--password', default='Password123', help='Admin password')
@with_appcontext
def init_system(email, password):
    """
    Create missing tables and the first admin user.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing shopbot...")
    db.create_all()
    click.echo("PASS Tables ready")

    if db.session.query(User).filter_by(role="admin").first():
        click.echo("WARN  An admin user already exists, skipping...")
        return

    try:
        user = create_user(email=email, password=password, role="admin", full_name="Administrator")
        click.echo(f"PASS Created admin: {user.email}")
    except (PasswordValidationError, AuthError) as e:
        click.echo(f"FAIL Failed to create admin: {str(e)}")
        return

    click.echo("\nSECURITY WARNING: change the admin password in production!")


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
    """Admin console user commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(VALID_ROLES), default='staff', help='Role')
@click.option('--name', 'full_name', default=None, help='Full name')
@with_appcontext
def create_user_cli(email, password, role, full_name):
    """Create a user (prompts if options are omitted)."""
    try:
        user = create_user(email=email, password=password, role=role, full_name=full_name)
        click.echo(f"PASS Created user: {user.email} with role '{user.role}'")
        click.echo("SECURITY Password securely hashed with bcrypt")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit")
    except AuthError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*72)
    click.echo(f"{'ID':<5} {'Email':<35} {'Role':<8} {'Active'}")
    click.echo("="*72)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<35} {user.role:<8} {active_str}")
    click.echo("="*72 + "\n")


@click.group('products')
def products_group():
    """Catalog commands."""


@products_group.command('seed')
@with_appcontext
def seed_products():
    """Insert the demo catalog."""
    created = 0
    for data in DEMO_PRODUCTS:
        try:
            products_service.create_product(patch=data)
            created += 1
            click.echo(f"PASS Created {data['sku']}")
        except ConflictError:
            click.echo(f"WARN  {data['sku']} already exists, skipping...")
    click.echo(f"DONE {created} product(s) created")


@products_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include inactive products')
@with_appcontext
def list_products_cli(show_all):
    query = db.session.query(Product)
    if not show_all:
        query = query.filter(Product.is_active.is_(True))
    products = query.order_by(Product.name.asc()).all()
    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'SKU':<15} {'Name':<32} {'Price':>10} {'Stock':>7}")
    click.echo("="*80)
    for p in products:
        click.echo(f"{p.id:<5} {p.sku:<15} {p.name[:32]:<32} {p.price_tzs:>10} {p.stock_qty:>7}")
    click.echo("="*80 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
