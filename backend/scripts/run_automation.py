#!/usr/bin/env python3
"""Run one rule-engine operation against the configured database.

Examples:
  python backend/scripts/run_automation.py quality
  python backend/scripts/run_automation.py quality --family missing_data
  python backend/scripts/run_automation.py discount 42 --preview
  python backend/scripts/run_automation.py stale-pricing --pretty
  python backend/scripts/run_automation.py cleanup --days 90
  python backend/scripts/run_automation.py standardize
  python backend/scripts/run_automation.py report
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any

# Add backend/ to path when run as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from workers.automation import run_operation


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a data-quality or business-rule operation")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    sub = parser.add_subparsers(dest="command", required=True)

    quality = sub.add_parser("quality", help="Run quality checks (all families by default)")
    quality.add_argument("--family", help="Run a single family, e.g. missing_data or 'Data Anomalies'")

    discount = sub.add_parser("discount", help="Apply the tiered discount to an order")
    discount.add_argument("order_id", type=int)
    discount.add_argument("--preview", action="store_true", help="Compute without writing")
    discount.add_argument(
        "--allow-compounding",
        action="store_true",
        help="Apply even if the order already carries a discount",
    )

    sub.add_parser("stale-pricing", help="Report products with stale pricing")

    cleanup = sub.add_parser("cleanup", help="Deduplicate and prune orders")
    cleanup.add_argument("--days", type=int, default=None, help="Age threshold for closed orders")

    sub.add_parser("standardize", help="Normalize text fields and reconcile order totals")
    sub.add_parser("report", help="Today's findings and the 30-day trend")
    return parser


def _dispatch(args: argparse.Namespace) -> tuple[str, dict[str, Any]]:
    if args.command == "quality":
        if args.family:
            return "run_quality_family", {"family": args.family}
        return "run_quality_checks", {}
    if args.command == "discount":
        if args.preview:
            return "preview_discount", {"order_id": args.order_id}
        return "apply_discount", {"order_id": args.order_id, "allow_compounding": bool(args.allow_compounding)}
    if args.command == "stale-pricing":
        return "detect_stale_pricing", {}
    if args.command == "cleanup":
        return "cleanup_orders", {"days_threshold": args.days}
    if args.command == "standardize":
        return "standardize_data", {}
    return "quality_report", {}


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    operation, kwargs = _dispatch(args)

    try:
        summary = asyncio.run(run_operation(operation, **kwargs))
    except Exception as exc:  # noqa: BLE001
        summary = {"status": "failed", "operation": operation, "error": str(exc)}

    if args.pretty:
        print(json.dumps(summary, indent=2, sort_keys=True, default=str))
    else:
        print(json.dumps(summary, default=str))

    return 0 if summary.get("status") == "success" else 1


if __name__ == "__main__":
    raise SystemExit(main())
