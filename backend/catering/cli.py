# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/catering/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system seed-departments
#   Insert the default university departments if missing.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection:
# - python -m flask users list
#   List all users with their roles.
# - python -m flask users promote someone@university.edu FINANCE_OFFICER
#   Set a user's role (users appear after their first authenticated request).
#
# Departments:
# - python -m flask departments set-approver CS approver@university.edu
#   Designate the approver notified of new CS requests (--clear removes it).
#
# Maintenance:
# - python -m flask notifications cleanup --retention-days 30
#   Delete read notifications older than the retention window.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Department, User
from .capabilities import VALID_ROLES, parse_role
from .services import department_service, notification_service
from .validation import ValidationError


DEFAULT_DEPARTMENTS = [
    ("Computer Science", "CS"),
    ("Mathematics", "MATH"),
    ("Physics", "PHYS"),
    ("Chemistry", "CHEM"),
    ("Finance Office", "FIN"),
    ("Registry", "REG"),
    ("Student Affairs", "SA"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('seed-departments')
@with_appcontext
def seed_departments():
    """Insert default departments (skips names that already exist)."""
    created = 0
    for name, code in DEFAULT_DEPARTMENTS:
        if db.session.query(Department).filter_by(name=name).first():
            continue
        if db.session.query(Department).filter_by(code=code).first():
            click.echo(f"SKIP Code {code} already used; not creating {name}")
            continue
        db.session.add(Department(name=name, code=code))
        created += 1
    db.session.commit()
    click.echo(f"PASS Created {created} departments.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-departments' next.")


@click.group('users')
def users_group():
    """User inspection and role management commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<35} {'Role'}")
    click.echo("="*90)

    for user in users:
        click.echo(f"{user.id:<5} {user.name:<25} {user.email:<35} {user.role}")

    click.echo("="*90 + "\n")


@users_group.command('promote')
@click.argument('email')
@click.argument('role')
@with_appcontext
def promote_user(email, role):
    """
    Set a user's role by email.

    Bootstraps the first FINANCE_OFFICER / ADMIN, who can then manage
    roles through the API.
    """
    parsed = parse_role(role)
    if parsed is None:
        raise click.BadParameter(f"role must be one of {', '.join(sorted(VALID_ROLES))}")

    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        raise click.ClickException(f"No user with email {email}")

    previous = user.role
    user.role = parsed.value
    db.session.commit()
    click.echo(f"PASS {user.email}: {previous} -> {user.role}")


@click.group('notifications')
def notifications_group():
    """Notification maintenance commands."""


@notifications_group.command('cleanup')
@click.option('--retention-days', type=int, default=None, help='Defaults to NOTIFICATION_RETENTION_DAYS')
@with_appcontext
def cleanup_notifications(retention_days):
    """Delete read notifications older than the retention window."""
    if retention_days is None:
        retention_days = current_app.config["NOTIFICATION_RETENTION_DAYS"]
    deleted = notification_service.cleanup_read_notifications(retention_days)
    click.echo(f"Deleted {deleted} read notifications older than {retention_days} days.")


@click.group('departments')
def departments_group():
    """Department maintenance commands."""


@departments_group.command('set-approver')
@click.argument('code')
@click.argument('email', required=False)
@click.option('--clear', is_flag=True, help='Remove the designated approver')
@with_appcontext
def set_approver(code, email, clear):
    """
    Designate the approver for the department with CODE.

    New requests for the department notify this user and appear in their
    approval queue.
    """
    if bool(email) == clear:
        raise click.UsageError("Pass an EMAIL or --clear (not both)")

    dept = db.session.query(Department).filter_by(code=code.strip().upper()).first()
    if not dept:
        raise click.ClickException(f"No department with code {code}")

    approver = None
    if email:
        approver = db.session.query(User).filter_by(email=email.strip().lower()).first()
        if not approver:
            raise click.ClickException(f"No user with email {email}")

    try:
        department_service.assign_approver(dept, approver)
    except ValidationError as e:
        raise click.ClickException(e.message)

    who = approver.email if approver else "nobody"
    click.echo(f"PASS {dept.code}: approver -> {who}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(notifications_group)
    app.cli.add_command(departments_group)
