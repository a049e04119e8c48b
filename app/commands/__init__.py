"""
CLI Commands for the rewards program.

Usage:
    flask rewards expire-points [--dry-run]   # Expire due point batches
    flask rewards expire-vouchers             # Expire overdue vouchers
    flask rewards refresh-spend               # Recompute rolling spend and tiers
    flask rewards seed-catalog                # Insert the default catalog
    flask rewards verify-ledger --user-id u1  # Reconcile balances to the ledger
"""
from .rewards import init_app as init_rewards_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_rewards_commands(app)
