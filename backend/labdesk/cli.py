# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--lab "Lab Name"] [--lab-code LAB]
#   Idempotent bootstrap: default laboratory, roles, permissions and users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Laboratory management (MULTI-TENANT):
# - python -m flask labs list
# - python -m flask labs create --name "Smile Dental Lab" --code SMILE
#   Creates the laboratory plus its default roles and role permissions.
#
# Users:
# - python -m flask users list [--lab-id 1]
# - python -m flask users create --lab-id 1 --email a@lab.local --name "A" --password "..." --role admin
#
# Permissions:
# - python -m flask perms list [--role technician] [--lab-id 1]
# - python -m flask perms grant --lab-id 1 technician MANAGE_INVOICES
# - python -m flask perms revoke --lab-id 1 technician MANAGE_INVOICES
#
# Invoices:
# - python -m flask invoices verify-totals [--lab-id 1]
#   Re-derive every invoice total from its line items; exits 1 on any mismatch.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Laboratory, User, Role, Permission, RolePermission
from .permissions import DEFAULT_ROLES
from .services.auth_service import create_user, create_default_roles, assign_role, PasswordValidationError
from .services import permission_service
from .services.invoice_service import find_total_mismatches


ROLE_NAMES = [name for name, _ in DEFAULT_ROLES]


def _bootstrap_lab(lab: Laboratory) -> int:
    create_default_roles(lab.id)
    permission_service.initialize_permissions()
    return permission_service.assign_default_role_permissions(lab.id)


def _resolve_lab(lab_id):
    if lab_id:
        return db.session.get(Laboratory, lab_id)
    return db.session.query(Laboratory).order_by(Laboratory.id).first()


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--lab', 'lab_name', default='Default Laboratory', help='Laboratory name')
@click.option('--lab-code', default='DEFAULT', help='Laboratory code')
@with_appcontext
def init_system(lab_name, lab_code):
    """
    Initialize LabDesk: laboratory, permissions, roles and default users.

    Creates one user per default role with password "Password123!".

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing LabDesk...")

    lab = db.session.query(Laboratory).filter_by(code=lab_code).first()
    if not lab:
        lab = Laboratory(name=lab_name, code=lab_code, is_active=True)
        db.session.add(lab)
        db.session.commit()
        click.echo(f"PASS Created laboratory: {lab.name} (ID: {lab.id}, Code: {lab.code})")
    else:
        click.echo(f"PASS Using existing laboratory: {lab.name} (ID: {lab.id})")

    click.echo("\nSECURITY Initializing roles and permissions...")
    assignment_count = _bootstrap_lab(lab)
    perm_count = db.session.query(Permission).count()
    click.echo(f"PASS {perm_count} permissions, {assignment_count} new role assignments")

    click.echo("\nUSERS Creating default users...")
    default_password = "Password123!"

    for role_name in ROLE_NAMES:
        email = f"{role_name}@labdesk.local"
        try:
            existing = db.session.query(User).filter_by(lab_id=lab.id, email=email).first()
            if existing:
                click.echo(f"WARN  User '{email}' already exists, skipping...")
                continue

            user = create_user(
                email=email,
                name=role_name.replace("_", " ").title(),
                password=default_password,
                lab_id=lab.id,
            )
            assign_role(user.id, role_name)
            click.echo(f"PASS Created user: {email} with role '{role_name}'")

        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed for '{email}': {str(e)}")
        except ValueError as e:
            click.echo(f"FAIL Failed to create user '{email}': {str(e)}")

    click.echo("\n" + "=" * 60)
    click.echo("DONE LabDesk initialized")
    click.echo("=" * 60)
    click.echo(f"\nLaboratory: {lab.name} (ID: {lab.id})")
    click.echo(f"Default users: <role>@labdesk.local / {default_password} (CHANGE IN PRODUCTION!)")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# LABORATORY MANAGEMENT COMMANDS (MULTI-TENANT)
# =============================================================================

@click.group('labs')
def labs_group():
    """Laboratory (tenant) management commands."""


@labs_group.command('list')
@with_appcontext
def list_labs():
    """List all laboratories."""
    labs = db.session.query(Laboratory).order_by(Laboratory.id).all()

    if not labs:
        click.echo("No laboratories found.")
        return

    click.echo("\n" + "=" * 70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Users'}")
    click.echo("=" * 70)

    for lab in labs:
        user_count = db.session.query(User).filter_by(lab_id=lab.id).count()
        active_str = "Yes" if lab.is_active else "No"
        click.echo(f"{lab.id:<5} {lab.name:<30} {lab.code or '-':<15} {active_str:<8} {user_count}")

    click.echo("=" * 70 + "\n")


@labs_group.command('create')
@click.option('--name', required=True, help='Laboratory name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_lab_cli(name, code):
    """Create a new laboratory with its default roles."""
    existing = db.session.query(Laboratory).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Laboratory with code '{code}' already exists")
        return

    lab = Laboratory(name=name, code=code, is_active=True)
    db.session.add(lab)
    db.session.commit()
    _bootstrap_lab(lab)

    click.echo(f"PASS Created laboratory: {lab.name} (ID: {lab.id}, Code: {lab.code})")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--lab-id', type=int, help='Laboratory ID (uses the first laboratory if not specified)')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLE_NAMES), prompt=True, help='Role')
@with_appcontext
def create_user_cli(lab_id, email, name, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    8+ chars, uppercase, lowercase, digit, special char.
    """
    lab = _resolve_lab(lab_id)
    if not lab:
        click.echo("FAIL Laboratory not found. Run 'python -m flask system init' first.")
        return

    try:
        user = create_user(email=email, name=name, password=password, lab_id=lab.id)
        assign_role(user.id, role)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
        return
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")
        return

    click.echo(f"PASS Created user: {user.email} with role '{role}'")
    click.echo(f"     Laboratory: {lab.name} (ID: {lab.id})")


@users_group.command('list')
@click.option('--lab-id', type=int, help='Filter by laboratory ID')
@with_appcontext
def list_users(lab_id):
    """List all users with their roles."""
    query = db.session.query(User)
    if lab_id:
        query = query.filter_by(lab_id=lab_id)
    users = query.order_by(User.lab_id, User.email).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Lab':<5} {'Email':<35} {'Active':<8} {'Roles'}")
    click.echo("=" * 80)
    for user in users:
        roles = ", ".join(permission_service.get_user_role_names(user.id)) or "-"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.lab_id:<5} {user.email:<35} {active_str:<8} {roles}")
    click.echo("=" * 80 + "\n")


# =============================================================================
# PERMISSION COMMANDS
# =============================================================================

@click.group('perms')
def perms_group():
    """Permission inspection and repair commands."""


@perms_group.command('list')
@click.option('--role', 'role_name', help='Only permissions granted to this role')
@click.option('--lab-id', type=int, help='Laboratory whose role to inspect')
@with_appcontext
def list_permissions(role_name, lab_id):
    """List permissions (optionally those of one role)."""
    if role_name:
        lab = _resolve_lab(lab_id)
        if not lab:
            click.echo("FAIL Laboratory not found")
            return
        role = db.session.query(Role).filter_by(lab_id=lab.id, name=role_name).first()
        if not role:
            click.echo(f"FAIL Role '{role_name}' not found in laboratory {lab.id}")
            return
        perms = (
            db.session.query(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .filter(RolePermission.role_id == role.id)
            .order_by(Permission.category, Permission.code)
            .all()
        )
    else:
        perms = db.session.query(Permission).order_by(Permission.category, Permission.code).all()

    for perm in perms:
        click.echo(f"{perm.category:<12} {perm.code:<28} {perm.name}")
    click.echo(f"\n{len(perms)} permissions")


@perms_group.command('grant')
@click.argument('role_name')
@click.argument('permission_code')
@click.option('--lab-id', type=int, help='Laboratory ID (first laboratory if omitted)')
@with_appcontext
def grant_permission(role_name, permission_code, lab_id):
    """Grant a permission to a laboratory role."""
    lab = _resolve_lab(lab_id)
    if not lab:
        click.echo("FAIL Laboratory not found")
        return
    try:
        permission_service.grant_permission_to_role(lab.id, role_name, permission_code)
    except ValueError as e:
        click.echo(f"FAIL {str(e)}")
        return
    click.echo(f"PASS Granted {permission_code} to '{role_name}' in laboratory {lab.id}")


@perms_group.command('revoke')
@click.argument('role_name')
@click.argument('permission_code')
@click.option('--lab-id', type=int, help='Laboratory ID (first laboratory if omitted)')
@with_appcontext
def revoke_permission(role_name, permission_code, lab_id):
    """Revoke a permission from a laboratory role."""
    lab = _resolve_lab(lab_id)
    if not lab:
        click.echo("FAIL Laboratory not found")
        return
    try:
        removed = permission_service.revoke_permission_from_role(lab.id, role_name, permission_code)
    except ValueError as e:
        click.echo(f"FAIL {str(e)}")
        return
    if removed:
        click.echo(f"PASS Revoked {permission_code} from '{role_name}'")
    else:
        click.echo(f"WARN  '{role_name}' did not have {permission_code}")


# =============================================================================
# INVOICE MAINTENANCE
# =============================================================================

@click.group('invoices')
def invoices_group():
    """Invoice consistency commands."""


@invoices_group.command('verify-totals')
@click.option('--lab-id', type=int, help='Only check one laboratory')
@with_appcontext
def verify_totals(lab_id):
    """Recompute every invoice total from its line items and report mismatches."""
    mismatches = find_total_mismatches(lab_id)
    if not mismatches:
        click.echo("PASS All invoice totals match their line items")
        return

    for m in mismatches:
        click.echo(
            f"FAIL Invoice {m['invoice_id']} ({m['invoice_number'] or 'draft'}, lab {m['lab_id']}): "
            f"stored {m['stored_total_cents']} != computed {m['computed_total_cents']}"
        )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(labs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(invoices_group)
