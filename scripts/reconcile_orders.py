#!/usr/bin/env python3
"""
Order Reconciliation Script

Finishes provisioning for orders stuck in `paid` (payment confirmed, access
not yet granted). Every provisioning step is idempotent, so the script can
run on a schedule and be re-run after a failure.

Usage:
    python reconcile_orders.py
    python reconcile_orders.py --limit 500
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.config import Settings
from api.dependencies import build_container


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Complete provisioning for paid orders",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Reconcile up to 100 paid orders
  python reconcile_orders.py

  # Reconcile a larger batch with debug logging
  python reconcile_orders.py --limit 500 --log-level DEBUG
        """
    )

    parser.add_argument(
        "--limit",
        "-n",
        type=int,
        default=100,
        help="Maximum number of paid orders to examine (default: 100)"
    )

    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: LOG_LEVEL or INFO)"
    )

    args = parser.parse_args()

    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, (args.log_level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    container = None
    try:
        container = build_container(settings)
        report = container.reconciliation.reconcile_paid_orders(limit=args.limit)

        print()
        print("=" * 60)
        print("RECONCILIATION SUMMARY")
        print("=" * 60)
        print(f"Paid orders examined: {report.examined}")
        print(f"  Provisioned:        {len(report.provisioned)}")
        print(f"  Failed:             {len(report.failed)}")
        for checkout_id in report.failed:
            print(f"    - {checkout_id}")
        print("=" * 60)

        return 1 if report.failed else 0

    except KeyboardInterrupt:
        print("\n\nReconciliation interrupted by user")
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1

    finally:
        if container is not None:
            container.close()


if __name__ == "__main__":
    sys.exit(main())
