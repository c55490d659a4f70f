#!/usr/bin/env python3
"""Import a JSON task export for an existing user.

Usage:
  python scripts/import_tasks.py --email student@example.com Edulink_tasks.json
  python scripts/import_tasks.py --email student@example.com --role Student --dry-run Edulink_tasks.json

Idempotent: tasks whose id already exists are skipped.
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.edulink.constants import WORKSPACE_ROLES
from app.edulink.models import User
from app.edulink.modules.tasks.transfer import TaskImportError, import_tasks
from scripts._db_utils import script_session


class _DryRun(Exception):
    pass


def main() -> int:
    parser = argparse.ArgumentParser(description="Import tasks from an Edulink JSON export")
    parser.add_argument("path", type=Path, help="JSON file produced by the Export button")
    parser.add_argument("--email", required=True, help="Owner of the imported tasks")
    parser.add_argument("--role", choices=WORKSPACE_ROLES, default=None, help="Workspace role for records without one")
    parser.add_argument("--dry-run", action="store_true", help="Parse and count, but roll back")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///edulink.db").strip()
    raw = args.path.read_bytes()

    try:
        with script_session(db_url) as s:
            user = s.query(User).filter(User.email.ilike(args.email.strip())).one_or_none()
            if not user:
                print(f"User not found: {args.email}")
                return 1
            result = import_tasks(s, user, raw, args.role)
            print(f"Imported: {result.imported}")
            print(f"Skipped (duplicate id): {result.duplicates}")
            for err in result.errors:
                print(f"Skipped record #{err.index}: {err.message}")
            if args.dry_run:
                raise _DryRun()
    except _DryRun:
        print("Dry run: changes rolled back.")
    except TaskImportError as e:
        print(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
