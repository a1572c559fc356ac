"""Orderflow management CLI.

Creates and drops the database schema and runs the periodic maintenance
jobs: the expired-cart sweep and payment reconciliation.

Usage:
    python src/manage.py setup-db     # Create all tables
    python src/manage.py drop-db      # Drop all tables
    python src/manage.py sweep-carts  # Destroy carts past their expiry
    python src/manage.py reconcile    # Settle checkouts with an unknown capture outcome
"""

import argparse
import sys


def _domain():
    from orderflow.domain import orderflow

    orderflow.init()
    return orderflow


def setup_database():
    """Create the database schema."""
    from orderflow.utils.db import setup_db

    domain = _domain()
    print("Creating orderflow database schema...")
    setup_db(domain)
    print("Done.")


def drop_database():
    """Drop the database schema."""
    from orderflow.utils.db import drop_db

    domain = _domain()
    print("Dropping orderflow database schema...")
    drop_db(domain)
    print("Done.")


def sweep_carts():
    from orderflow.cart.manager import CartManager

    domain = _domain()
    with domain.domain_context():
        removed = CartManager().sweep_expired()
    print(f"Removed {removed} expired cart(s).")


def reconcile(max_age_minutes=None):
    from orderflow.checkout.orchestrator import OrderOrchestrator
    from orderflow.checkout.reconciliation import PaymentReconciler

    domain = _domain()
    with domain.domain_context():
        report = PaymentReconciler(OrderOrchestrator(), max_age_minutes=max_age_minutes).reconcile()
    print(
        f"Examined {report.examined} order(s): "
        f"{len(report.confirmed)} confirmed, {len(report.cancelled)} cancelled, "
        f"{len(report.abandoned)} abandoned, {len(report.still_pending)} still pending, "
        f"{len(report.errors)} error(s)."
    )
    return report


def main():
    parser = argparse.ArgumentParser(description="Orderflow management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    subparsers.add_parser("sweep-carts", help="Destroy expired shopping carts")
    reconcile_parser = subparsers.add_parser("reconcile", help="Resolve pending payment captures")
    reconcile_parser.add_argument(
        "--max-age-minutes",
        type=int,
        default=None,
        help="Abandon unknown captures older than this (default: RECONCILIATION_MAX_AGE_MINUTES)",
    )

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "sweep-carts":
        sweep_carts()
    elif args.command == "reconcile":
        reconcile(args.max_age_minutes)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
