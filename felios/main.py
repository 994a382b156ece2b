from __future__ import annotations

import argparse
import logging
import sqlite3
import sys
from dataclasses import replace
from pathlib import Path
from typing import Dict, List

from . import store
from .engine import GenerationResult, generate
from .io_utils import default_config, ensure_directory, load_config, write_csv
from .models import STRATEGIES


def _parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate Felios shift and operation-assignment data into a SQLite store."
    )
    parser.add_argument("--db", default="felios.db", help="Path to the SQLite database (default: felios.db)")
    parser.add_argument("--config", help="Path to a generation config JSON file")
    parser.add_argument("--seed", type=int, help="Override config.random_seed for a reproducible run")
    parser.add_argument(
        "--strategy",
        choices=STRATEGIES,
        help="Assignment strategy: per employee (budget first) or per operation (all days or nothing)",
    )
    parser.add_argument(
        "--keep-catalog",
        action="store_true",
        help="Reuse projects/operations/employees already in the database; only regenerate shifts and assignments",
    )
    parser.add_argument(
        "--outdir",
        default=None,
        help="Directory for CSV exports and the unfilled-operations report (default: no exports)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Generate against an in-memory database and print a summary only",
    )
    return parser.parse_args(argv)


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _print_summary(result: GenerationResult) -> None:
    print(f"Strategy: {result.strategy}")
    print(f"Working days: {result.working_days}")
    print(f"Employees: {result.employees}")
    print(f"Shift records: {len(result.shift_records)}")
    assigned_ops = len({rec.operation_id for rec in result.assignments})
    print(
        f"Assignments: {len(result.assignments)} ({result.assigned_hours}h) "
        f"over {assigned_ops}/{result.operations} operations"
    )
    if result.unfilled:
        print(f"Unfilled operations: {len(result.unfilled)}")
    else:
        print("Unfilled operations: none")


def _write_unfilled_markdown(unfilled: List[Dict[str, object]], outdir: Path) -> Path:
    path = outdir / "unfilled_operations.md"
    lines: List[str] = ["# Unfilled Operations", ""]
    if not unfilled:
        lines.append("Every operation received at least one assignment.")
    else:
        for item in unfilled:
            lines.append(f"- **{item['id']} – {item['name']}**")
            lines.append(f"  - Reason: {item['reason']}")
            lines.append(f"  - Resource: {item['resource_id']}")
            lines.append(f"  - Demand: {item['demand']}h on {item['active_days']} working day(s)")
            lines.append("")
    path.write_text("\n".join(lines).strip() + "\n")
    return path


def main(argv: List[str] | None = None) -> None:
    args = _parse_args(argv)
    try:
        cfg = load_config(args.config) if args.config else default_config()
    except (OSError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)
    if args.seed is not None:
        cfg = replace(cfg, random_seed=args.seed)
    if args.strategy:
        cfg = replace(cfg, strategy=args.strategy)
    _configure_logging(cfg.logging_level)

    if args.dry_run and args.keep_catalog:
        print("--keep-catalog cannot be combined with --dry-run", file=sys.stderr)
        sys.exit(2)

    con = store.connect(":memory:" if args.dry_run else args.db)
    try:
        result = generate(con, cfg, keep_catalog=args.keep_catalog)
    except sqlite3.Error as exc:
        print(f"database error: {exc}", file=sys.stderr)
        sys.exit(1)
    finally:
        con.close()

    _print_summary(result)
    if args.dry_run:
        return
    print(f"Wrote {args.db}")
    if not args.outdir:
        return

    outdir = ensure_directory(args.outdir)
    assignments_path = outdir / "operation_assignments.csv"
    shifts_path = outdir / "employee_shifts.csv"
    write_csv(result.assignments_frame(), assignments_path)
    write_csv(result.shifts_frame(), shifts_path)
    report_path = _write_unfilled_markdown(result.unfilled, outdir)
    print(f"Wrote {assignments_path}")
    print(f"Wrote {shifts_path}")
    print(f"Wrote {report_path}")


if __name__ == "__main__":
    main()
