# Overview: Flask CLI command groups for bootstrap, inspection, and webhook replay.

# backend/wishcraft/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: python -m flask --app wishcraft <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask --app wishcraft system init-db
#   Create any missing tables (use `flask db upgrade` for migrated deployments).
# - python -m flask --app wishcraft system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Registry inspection:
# - python -m flask --app wishcraft registries activity 1 [--action item_purchased] [--limit 50]
#   Show a registry's activity log, newest first.
#
# Webhook replay:
# - python -m flask --app wishcraft reconcile replay order.json [--topic orders/create]
#   Feed a saved webhook body through reconciliation (safe to repeat).
#
# Group gifts:
# - python -m flask --app wishcraft group-gifts status 7
#   Show completion state and every contribution (owner view).

import json

import click
from flask.cli import with_appcontext

from .errors import MalformedPayloadError, NotFoundError, TransientInfrastructureError, WishcraftError
from .extensions import db
from .services import activity_service, contribution_service, reconciliation_service, registry_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Existing tables and data are left alone."""
    from . import models  # noqa: F401

    db.create_all()
    click.echo("OK  Database tables ready")


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

    click.echo("OK  Database reset complete")


@click.group('registries')
def registries_group():
    """Registry inspection commands."""


@registries_group.command('activity')
@click.argument('registry_id', type=int)
@click.option('--action', help='Filter by action (e.g. item_purchased)')
@click.option('--limit', type=int, default=50, help='Max rows to show')
@with_appcontext
def registry_activity_cli(registry_id, action, limit):
    """
    Show a registry's activity log.

    Example:
        flask registries activity 1
        flask registries activity 1 --action contribution_completed
    """
    try:
        registry = registry_service.get_registry(registry_id)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    activities = activity_service.list_activity(registry.id, action=action, limit=limit)
    if not activities:
        click.echo("No activity found.")
        return

    click.echo(f"\nRegistry {registry.id}: {registry.title}")
    click.echo("=" * 110)
    click.echo(f"{'ID':<6} {'When':<20} {'Action':<24} {'Actor':<26} {'Description'}")
    click.echo("=" * 110)

    for activity in activities:
        actor = "system" if activity.is_system else (activity.actor_email or activity.actor_type)
        when = activity.created_at.strftime("%Y-%m-%d %H:%M:%S") if activity.created_at else ""
        click.echo(
            f"{activity.id:<6} {when:<20} {activity.action:<24} {actor[:25]:<26} {activity.description or ''}"
        )

    click.echo("=" * 110)


@click.group('reconcile')
def reconcile_group():
    """Webhook reconciliation commands."""


_REPLAY_HANDLERS = {
    'orders/create': reconciliation_service.reconcile_order_created,
    'orders/cancelled': reconciliation_service.reconcile_order_cancelled,
    'orders/fulfilled': reconciliation_service.reconcile_order_fulfilled,
}


@reconcile_group.command('replay')
@click.argument('payload_file', type=click.File('r'))
@click.option('--topic', type=click.Choice(sorted(_REPLAY_HANDLERS)), default='orders/create',
              help='Webhook topic the payload was delivered under')
@with_appcontext
def replay_cli(payload_file, topic):
    """
    Reconcile a saved webhook body. Idempotent: recorded lines come back as duplicates.

    Example:
        flask reconcile replay order_1001.json
        flask reconcile replay order_1001.json --topic orders/cancelled
    """
    try:
        payload = json.load(payload_file)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON: {e}")

    try:
        result = _REPLAY_HANDLERS[topic](payload)
    except MalformedPayloadError as e:
        raise click.ClickException(f"Malformed payload: {e}")
    except TransientInfrastructureError as e:
        raise click.ClickException(f"Database unavailable, try again: {e}")

    click.echo(json.dumps(result.to_dict(), indent=2))


@click.group('group-gifts')
def group_gifts_group():
    """Group gift inspection commands."""


@group_gifts_group.command('status')
@click.argument('purchase_id', type=int)
@with_appcontext
def group_gift_status_cli(purchase_id):
    """
    Show a group gift's completion state and contributions.

    Example:
        flask group-gifts status 7
    """
    try:
        state = contribution_service.get_completion_state(purchase_id)
        contributions = contribution_service.list_contributions(purchase_id, include_private=True)
    except WishcraftError as e:
        raise click.ClickException(str(e))

    click.echo(f"\nGroup gift {purchase_id}")
    click.echo(f"  Collected: {state.total_collected_cents / 100:.2f} of {state.target_amount_cents / 100:.2f}"
               f" ({state.percent_complete}%)")
    click.echo(f"  Remaining: {state.remaining_cents / 100:.2f}")
    click.echo(f"  Funded: {'yes' if state.is_funded else 'no'}"
               f"{' (overfunded)' if state.is_overfunded else ''}")
    click.echo(f"  Completed contributions: {state.contributor_count}")

    if not contributions:
        click.echo("\nNo contributions.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<6} {'Status':<10} {'Amount':>10}  {'Contributor'}")
    click.echo("=" * 80)
    for c in contributions:
        who = c["contributor_name"] or c["contributor_email"] or "-"
        if c["is_anonymous"]:
            who = f"{who} (anonymous)"
        click.echo(f"{c['id']:<6} {c['payment_status']:<10} {c['amount_cents'] / 100:>10.2f}  {who}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(registries_group)
    app.cli.add_command(reconcile_group)
    app.cli.add_command(group_gifts_group)
