"""
Wallet Meter CLI

Commands:
  serve           - Run the admin API server
  init-db         - Create the database schema
  charge-cycle    - Charge every wallet reseller once
  charge-once     - Charge a single reseller (supports --dry-run and --force)
  reenable-sweep  - Re-enable configs of resellers back above the threshold
  diagnose        - Show a reseller's wallet, usage and recent charges
"""

import argparse
import json
import os
import sys


def _database(args):
    from persistence.database import Database, get_database

    if args.database_url:
        os.environ["DATABASE_URL"] = args.database_url
        Database.reset_instance()
    return get_database()


def _load_reseller(db, reseller_id):
    from persistence.repository import ResellerRepository

    reseller = ResellerRepository(db).get(reseller_id)
    if reseller is None:
        print(f"Error: reseller {reseller_id} not found")
        sys.exit(1)
    return reseller


def cmd_serve(args):
    """Run the admin API server."""
    import uvicorn

    port = args.port or int(os.environ.get("PORT", 8000))
    host = args.host or "0.0.0.0"

    print(f"Starting Wallet Meter on {host}:{port}")

    uvicorn.run(
        "api.server:app",
        host=host,
        port=port,
        reload=args.reload,
        workers=args.workers,
    )


def cmd_init_db(args):
    """Create the schema."""
    db = _database(args)
    print(f"Database ready: {db.database_url}")


def cmd_charge_cycle(args):
    """Charge every active or wallet-suspended wallet reseller."""
    from billing.scheduler import BillingScheduler

    summary = BillingScheduler(_database(args)).run_charge_cycle(source=args.source)

    print("Charge cycle complete")
    print(f"  Resellers: {summary.resellers}")
    print(f"  Charged: {summary.charged}")
    print(f"  Skipped: {summary.skipped}")
    print(f"  Lock failed: {summary.lock_failed}")
    print(f"  Suspended: {summary.suspended}")
    print(f"  Errors: {summary.errors}")
    print(f"  Total cost: {summary.total_cost}")

    if summary.errors:
        sys.exit(1)


def cmd_charge_once(args):
    """Charge a single reseller."""
    from billing.charging import ChargeEngine
    from billing.results import ResultStatus

    db = _database(args)
    reseller = _load_reseller(db, args.reseller)

    if args.force:
        print("Force mode: idempotency window ignored")

    result = ChargeEngine(db).charge_for_reseller(
        reseller,
        source="admin",
        force=args.force,
        dry_run=args.dry_run,
    )

    if result.status == ResultStatus.DRY_RUN:
        print(f"Dry run for reseller {reseller.id}")
        print(f"  Delta bytes: {result.delta_bytes}")
        print(f"  Cost: {result.cost}")
        print(f"  Current balance: {result.current_balance}")
        print(f"  Balance after charge: {result.balance_after_charge}")
    elif result.status == ResultStatus.CHARGED:
        print(f"Charged reseller {reseller.id}")
        print(f"  Delta bytes: {result.delta_bytes}")
        print(f"  Cost: {result.cost}")
        print(f"  New balance: {result.new_balance}")
        print(f"  Suspended: {'Yes' if result.suspended else 'No'}")
    elif result.status == ResultStatus.SKIPPED:
        print(f"Skipped reseller {reseller.id}: {result.reason}")
    else:
        print(f"Charge failed for reseller {reseller.id}: {result.error}")
        sys.exit(1)


def cmd_reenable_sweep(args):
    """Re-enable wallet-suspended configs where the wallet recovered."""
    from billing.scheduler import BillingScheduler

    summary = BillingScheduler(_database(args)).run_reenable_sweep()
    print(f"Re-enable sweep: {summary.resellers} resellers, {summary.enabled} enabled, {summary.failed} failed")


def cmd_diagnose(args):
    """Show wallet state, usage totals, the last snapshot and recent charges."""
    from billing.usage import DeltaCalculator
    from core.config import GIB, get_config
    from persistence.repository import LedgerRepository, SnapshotRepository

    db = _database(args)
    reseller = _load_reseller(db, args.reseller)
    config = get_config()
    usage = DeltaCalculator(db).delta(reseller)
    snapshot = SnapshotRepository(db).latest(reseller.id)
    entries = LedgerRepository(db).list_for_reseller(reseller.id, limit=args.entries)

    if args.json:
        print(json.dumps({
            "reseller": reseller.to_dict(),
            "current_total_bytes": usage.current_total,
            "delta_bytes": usage.delta_bytes,
            "last_snapshot": snapshot.to_dict() if snapshot else None,
            "ledger": [e.to_dict() for e in entries],
        }, indent=2))
        return

    print(f"Reseller {reseller.id} ({reseller.name})")
    print("=" * 40)
    print(f"Billing type: {reseller.billing_type}")
    print(f"Status: {reseller.status}")
    print(f"Wallet balance: {reseller.wallet_balance}")
    print(f"Price per GB: {reseller.price_per_gb(config.price_per_gb)}")
    print(f"Suspension threshold: {config.suspension_threshold}")
    print(f"Current total: {usage.current_total} bytes ({usage.current_total / GIB:.4f} GB)")
    if snapshot:
        print(f"Last snapshot: {snapshot.total_bytes} bytes at {snapshot.measured_at}")
    else:
        print("Last snapshot: none")
    print(f"Unbilled delta: {usage.delta_bytes} bytes ({usage.delta_bytes / GIB:.4f} GB)")
    print(f"Recent charges ({len(entries)}):")
    for entry in entries:
        print(
            f"  {entry.created_at}  {entry.action_type:<14} {entry.charged_gb:>10.4f} GB"
            f"  -{entry.amount_charged}  -> {entry.wallet_balance_after}"
        )


def build_parser():
    parser = argparse.ArgumentParser(
        prog="wallet-meter",
        description="Wallet Meter - usage-metered reseller billing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--database-url", help="sqlite:///path (defaults to DATABASE_URL)")
    parser.add_argument("--log-level", help="Minimum log level (defaults to LOG_LEVEL)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the server")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true")
    serve_parser.add_argument("--workers", type=int, default=1)

    subparsers.add_parser("init-db", help="Create the database schema")

    # charge-cycle
    cycle_parser = subparsers.add_parser("charge-cycle", help="Charge all wallet resellers")
    cycle_parser.add_argument("--source", default="scheduled", help="Audit tag for this run")

    # charge-once
    once_parser = subparsers.add_parser("charge-once", help="Charge a single reseller")
    once_parser.add_argument("--reseller", type=int, required=True, help="Reseller ID")
    once_parser.add_argument("--dry-run", action="store_true", help="Show the charge without applying it")
    once_parser.add_argument("--force", action="store_true", help="Ignore the idempotency window")

    subparsers.add_parser("reenable-sweep", help="Re-enable configs after wallet recovery")

    # diagnose
    diagnose_parser = subparsers.add_parser("diagnose", help="Show a reseller's billing state")
    diagnose_parser.add_argument("--reseller", type=int, required=True, help="Reseller ID")
    diagnose_parser.add_argument("--entries", type=int, default=10, help="Ledger entries to show")
    diagnose_parser.add_argument("--json", action="store_true", help="Print JSON")

    return parser


COMMANDS = {
    "serve": cmd_serve,
    "init-db": cmd_init_db,
    "charge-cycle": cmd_charge_cycle,
    "charge-once": cmd_charge_once,
    "reenable-sweep": cmd_reenable_sweep,
    "diagnose": cmd_diagnose,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    from core.log_setup import configure_logging
    configure_logging(level=args.log_level)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return
    handler(args)


if __name__ == "__main__":
    main()
