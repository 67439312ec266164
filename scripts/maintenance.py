#!/usr/bin/env python3
"""
Command-line maintenance utility for the loan engine database.
"""

import argparse
import json
import sys
from pathlib import Path

# Add the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from equiploan.core import config
from equiploan.core.db import init_db
from equiploan.core.errors import NotFoundError
from equiploan.core.maintenance import (
    check_database_integrity,
    recalculate_trust_scores,
    refresh_loan_statuses,
    perform_full_maintenance,
    MaintenanceReport,
    MaintenanceError
)


def format_report(report: MaintenanceReport) -> str:
    """Format a maintenance report for display."""
    lines = []

    lines.append(f"Operation: {report.operation}")
    if report.completed_at and report.started_at:
        duration = report.completed_at - report.started_at
        lines.append(f"Duration: {duration.total_seconds():.2f} seconds")

    # Status summary
    if report.errors:
        lines.append(f"Status: FAILED ({len(report.errors)} errors)")
    elif report.issues_found > 0:
        lines.append(f"Status: REPAIRED ({report.issues_resolved}/{report.issues_found} issues)")
    else:
        lines.append("Status: SUCCESS")

    if report.metadata:
        lines.append("Details:")
        for key, value in report.metadata.items():
            lines.append(f"  {key}: {value}")

    if report.errors:
        lines.append("Errors:")
        for error in report.errors:
            lines.append(f"  - {error}")

    if report.actions_taken and len(report.actions_taken) <= 20:  # Don't flood output
        lines.append("Actions Taken:")
        for action in report.actions_taken:
            lines.append(f"  - {action}")
    elif report.actions_taken:
        lines.append(f"Actions Taken: {len(report.actions_taken)}")

    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(
        description="Loan engine maintenance utilities",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --check-integrity              # Check database integrity and loan consistency
  %(prog)s --refresh-status               # Persist overdue flags for open loans
  %(prog)s --recalculate-trust            # Replay every student's trust score
  %(prog)s --recalculate-trust --student ID
  %(prog)s --full-maintenance --json      # Run everything, output JSON

Environment variables:
- DB_PATH=./data/equiploan.db (database location)
- MAINTENANCE_ENABLED=true
        """
    )

    parser.add_argument("--check-integrity", "-i", action="store_true",
                        help="Check SQLite integrity and loan consistency")
    parser.add_argument("--refresh-status", "-s", action="store_true",
                        help="Resolve and persist status for every open loan")
    parser.add_argument("--recalculate-trust", "-t", action="store_true",
                        help="Replay trust scores from returned-loan history")
    parser.add_argument("--student", help="Limit --recalculate-trust to one student record id")
    parser.add_argument("--full-maintenance", "-f", action="store_true",
                        help="Perform all maintenance operations in sequence")
    parser.add_argument("--json", "-j", action="store_true",
                        help="Output results as JSON instead of human-readable text")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Suppress non-error output")

    args = parser.parse_args()

    individual = [args.check_integrity, args.refresh_status, args.recalculate_trust]
    if not (any(individual) or args.full_maintenance):
        parser.error("Must specify at least one maintenance operation")

    if args.full_maintenance and any(individual):
        parser.error("--full-maintenance cannot be combined with individual operations")

    if args.student and not args.recalculate_trust:
        parser.error("--student requires --recalculate-trust")

    # A trust replay under a bad policy would rewrite every score
    issues = config.validate_config()
    if issues:
        for issue in issues:
            print(f"CONFIG ERROR: {issue}", file=sys.stderr)
        sys.exit(1)

    init_db()

    try:
        reports = []

        if args.full_maintenance:
            if not args.quiet:
                print("Running full maintenance suite...")
            reports = perform_full_maintenance()
        else:
            if args.check_integrity:
                if not args.quiet:
                    print("Checking database integrity...")
                reports.append(check_database_integrity())

            if args.refresh_status:
                if not args.quiet:
                    print("Refreshing loan statuses...")
                reports.append(refresh_loan_statuses())

            if args.recalculate_trust:
                if not args.quiet:
                    print("Recalculating trust scores...")
                reports.append(recalculate_trust_scores(args.student))

    except (MaintenanceError, NotFoundError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps([report.to_dict() for report in reports], indent=2))
    elif not args.quiet:
        for report in reports:
            print()
            print(format_report(report))

    sys.exit(1 if any(report.errors for report in reports) else 0)


if __name__ == "__main__":
    main()
