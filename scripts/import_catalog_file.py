"""
Import a catalog file from the command line.

Runs the same pipeline as the API (parse -> validate -> commit) directly
against the configured Supabase project.

Usage:
    # Dry run: parse and validate, print issues
    python scripts/import_catalog_file.py data/items.csv \
        --entity-type item --scope 6f1c...e2

    # Commit when there are no errors, write the issue report
    python scripts/import_catalog_file.py data/menu.zip \
        --entity-type category --scope 6f1c...e2 \
        --commit --report issues.csv

    # Replace an open session left behind by an earlier run
    python scripts/import_catalog_file.py data/items.csv \
        --entity-type item --scope 6f1c...e2 --replace --commit
"""

import argparse
import os
import sys

# Allow imports from the project root when running as a script
_root_dir = os.path.join(os.path.dirname(__file__), "..")
sys.path.insert(0, _root_dir)

from dotenv import load_dotenv
load_dotenv(os.path.join(_root_dir, ".env"))

from exceptions import AppError, ConcurrencyError
from models.actor import Actor, IMPORT_ADMIN, IMPORT_WRITE
from models.import_session import EntityType, ImportSession, ImportSessionStatus
from services.import_pipeline_service import get_import_pipeline_service

MAX_ISSUES_SHOWN = 25


def print_session(session: ImportSession) -> None:
    print(f"Session:  {session.id}")
    print(f"Type:     {session.entity_type.value}")
    print(f"Source:   {session.source_name or '-'}")
    print(f"Rows:     {len(session.draft)}")
    print(f"Status:   {session.status.value}")
    print(f"Errors:   {len(session.issues.errors)}")
    print(f"Warnings: {len(session.issues.warnings)}")

    for label, issues in (("ERROR", session.issues.errors), ("WARN ", session.issues.warnings)):
        for issue in issues[:MAX_ISSUES_SHOWN]:
            field = f" [{issue.field}]" if issue.field else ""
            print(f"  {label} row {issue.row_index}{field} {issue.code}: {issue.message}")
        if len(issues) > MAX_ISSUES_SHOWN:
            print(f"  ... {len(issues) - MAX_ISSUES_SHOWN} more")


def run_import(args: argparse.Namespace) -> bool:
    capabilities = {IMPORT_WRITE} | ({IMPORT_ADMIN} if args.admin else set())
    actor = Actor(id=args.actor, capabilities=frozenset(capabilities))
    pipeline = get_import_pipeline_service()

    with open(args.file, "rb") as f:
        content = f.read()

    try:
        session = pipeline.parse(
            actor, content, args.entity_type, args.scope,
            filename=os.path.basename(args.file),
        )
    except ConcurrencyError as e:
        existing_id = e.details.get("session_id")
        if not (args.replace and existing_id):
            raise
        print(f"Discarding open session {existing_id}")
        pipeline.discard(actor, existing_id)
        session = pipeline.parse(
            actor, content, args.entity_type, args.scope,
            filename=os.path.basename(args.file),
        )

    print_session(session)

    if args.commit:
        if session.issues.has_errors:
            print("\nNot committing: fix the errors above first.")
        else:
            print("\nCommitting...")
            session = pipeline.commit(actor, session.id)
            print_session(session)

    if args.report:
        fmt = "xlsx" if args.report.lower().endswith(".xlsx") else "csv"
        with open(args.report, "wb") as f:
            f.write(pipeline.export_report(actor, session.id, fmt=fmt))
        print(f"\nReport written to {args.report}")

    if args.commit:
        return session.status == ImportSessionStatus.CONFIRMED
    return not session.issues.has_errors


def main():
    parser = argparse.ArgumentParser(
        description="Import a catalog CSV/ZIP file into one business."
    )
    parser.add_argument("file", help="CSV/TSV file or ZIP archive")
    parser.add_argument(
        "--entity-type",
        required=True,
        choices=[t.value for t in EntityType],
        help="Entity type the file contains",
    )
    parser.add_argument("--scope", required=True, help="Business ID to import into")
    parser.add_argument(
        "--actor",
        default="cli",
        help="Actor ID recorded as session owner (default: cli)",
    )
    parser.add_argument(
        "--admin",
        action="store_true",
        help="Act with import:admin (access other owners' sessions)",
    )
    parser.add_argument(
        "--commit",
        action="store_true",
        help="Commit to the catalog when validation finds no errors",
    )
    parser.add_argument(
        "--replace",
        action="store_true",
        help="Discard an open session for the same lane instead of failing",
    )
    parser.add_argument(
        "--report",
        default="",
        help="Write the issue report to this path (.csv or .xlsx)",
    )

    args = parser.parse_args()

    if not os.path.isfile(args.file):
        print(f"ERROR: File not found: {args.file}")
        sys.exit(1)

    try:
        success = run_import(args)
    except AppError as e:
        print(f"ERROR [{e.code}]: {e.message}")
        if e.details:
            print(f"  {e.details}")
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
