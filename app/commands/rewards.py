"""
CLI Commands for the rewards program.

These commands can be run manually or via cron jobs:

# Points expiry (run daily at 00:15)
15 0 * * * cd /app && flask rewards expire-points

# Voucher expiry (run daily at 00:30)
30 0 * * * cd /app && flask rewards expire-vouchers

# Rolling spend refresh (run daily at 01:00)
0 1 * * * cd /app && flask rewards refresh-spend
"""

import click
from flask.cli import with_appcontext

from ..models.rewards import RewardsAccount
from ..services.expiry_scheduler import (
    expire_due_points,
    expire_overdue_vouchers,
    refresh_rolling_spend,
)
from ..services.audit_query import AuditQueryService
from ..services import rewards_catalog


@click.group('rewards')
def rewards_cli():
    """Rewards program commands."""
    pass


@rewards_cli.command('expire-points')
@click.option('--dry-run', is_flag=True, help='Preview without expiring points')
@click.option('--batch-size', type=int, default=500, help='Max batches per run (default: 500)')
@with_appcontext
def expire_points(dry_run, batch_size):
    """
    Expire point batches past their expiry date.

    Run this daily. Safe to re-run: already expired batches are skipped.
    """
    result = expire_due_points(dry_run=dry_run, batch_size=batch_size)

    prefix = '[DRY RUN] ' if dry_run else ''
    click.echo(f"{prefix}Due batches: {result['due']}")
    if dry_run:
        click.echo(f"{prefix}Would expire: {result['expired_points']} pts across {result['accounts']} accounts")
        return

    click.echo(f"  Expired: {result['expired_batches']} batches, {result['expired_points']} pts")
    click.echo(f"  Accounts affected: {result['accounts']}")

    if result['errors']:
        click.echo(f"  Errors: {len(result['errors'])}")
        for error in result['errors'][:5]:
            click.echo(f"    - Batch {error['batch_id']} (account {error['account_id']}): {error['error']}")


@rewards_cli.command('expire-vouchers')
@with_appcontext
def expire_vouchers():
    """Move pending/confirmed vouchers past their expiry date to expired."""
    result = expire_overdue_vouchers()
    click.echo(f"Expired vouchers: {result['expired']}")


@rewards_cli.command('refresh-spend')
@with_appcontext
def refresh_spend():
    """Recompute rolling 12-month spend and tiers for every account."""
    result = refresh_rolling_spend()
    click.echo(f"Processed: {result['processed']} accounts")
    click.echo(f"  Changed: {result['changed']}")
    click.echo(f"  Tier changes: {result['tier_changes']}")
    if result['skipped']:
        click.echo(f"  Skipped (concurrent update): {result['skipped']}")


@rewards_cli.command('seed-catalog')
@with_appcontext
def seed_catalog():
    """Insert the default rewards catalog. Existing entries are left alone."""
    created = rewards_catalog.seed_default_catalog()
    click.echo(f"Seeded {len(created)} rewards")
    for item in created:
        click.echo(f"  {item.id}: {item.points} pts ({item.reward_type})")


@rewards_cli.command('verify-ledger')
@click.option('--user-id', help='Individual account to verify')
@click.option('--company-id', help='Company pool to verify')
@with_appcontext
def verify_ledger(user_id, company_id):
    """
    Check cached balances against the ledger.

    Verifies every account when no filter is given. Exits non-zero on mismatch.
    """
    query = RewardsAccount.query
    if user_id:
        query = query.filter_by(user_id=user_id)
    if company_id:
        query = query.filter_by(company_id=company_id)

    accounts = query.order_by(RewardsAccount.id).all()
    if not accounts:
        click.echo("No matching accounts")
        return

    audit = AuditQueryService()
    failures = 0
    for account in accounts:
        report = audit.verify_ledger(account)
        if report['ok']:
            continue
        failures += 1
        click.echo(
            f"Account {account.id}: ledger sum {report['ledger_sum']} != "
            f"cached {report['cached_balance']} ({len(report['mismatches'])} bad snapshots)"
        )
        for mismatch in report['mismatches'][:5]:
            click.echo(
                f"    - Entry {mismatch['entry_id']}: expected {mismatch['expected_balance']}, "
                f"recorded {mismatch['recorded_balance']}"
            )

    click.echo(f"\nVerified {len(accounts)} accounts, {failures} with mismatches")
    if failures:
        raise SystemExit(1)


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(rewards_cli)
