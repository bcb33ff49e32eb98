#!/usr/bin/env python3
"""
Install a YAML workflow pack (workflows, rules, settings) for one
organization.

Usage:
  python3 scripts/load_workflows.py --organization-id ORG [--actor-id USER]
      [--database-url URL] [--create-tables] [--check-only] [PACK_PATH]

PACK_PATH is a YAML file or a directory of YAML fragments; it defaults to
the bundled approval_config/sets/standard pack.  The database URL comes
from --database-url or the DATABASE_URL environment variable.

The pack is validated and compiled before anything is written, and the
install runs in one transaction: either every workflow and rule of the
pack is created, or none is.
"""

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from approval_config import get_active_config, install_pack
from approval_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from approval_kernel.exceptions import ConfigurationError
from approval_kernel.logging_config import configure_logging

DEFAULT_ACTOR = "system"


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Install an approval workflow pack")
    p.add_argument(
        "pack_path",
        nargs="?",
        default=None,
        help="YAML file or fragment directory (default: bundled standard pack)",
    )
    p.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="Database URL (default: DATABASE_URL environment variable)",
    )
    p.add_argument("--organization-id", required=True, help="Organization to install into")
    p.add_argument(
        "--actor-id",
        default=DEFAULT_ACTOR,
        help=f"User recorded as creator in the audit trail (default: {DEFAULT_ACTOR!r})",
    )
    p.add_argument(
        "--create-tables",
        action="store_true",
        help="Create the schema before installing",
    )
    p.add_argument(
        "--check-only",
        action="store_true",
        help="Validate and compile the pack without touching the database",
    )
    p.add_argument("--log-level", default="WARNING", help="Structured log level")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(level=args.log_level.upper())

    try:
        pack = get_active_config(args.pack_path)
    except ConfigurationError as exc:
        print("VALIDATION FAILED:", file=sys.stderr)
        for err in exc.errors:
            print(f"  ERROR: {err}", file=sys.stderr)
        return 1
    except FileNotFoundError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(f"Pack: {pack.source_path}")
    print(f"  checksum:  {pack.checksum[:16]}...")
    print(f"  workflows: {len(pack.workflows)}")
    print(f"  rules:     {len(pack.rules)}")
    if args.check_only:
        return 0

    if not args.database_url:
        print("ERROR: --database-url or DATABASE_URL is required", file=sys.stderr)
        return 2

    init_engine_from_url(args.database_url)
    if args.create_tables:
        create_tables()

    with session_scope(get_session_factory()) as session:
        result = install_pack(session, args.organization_id, pack, args.actor_id)

    print(
        f"Installed {len(result.workflow_ids)} workflow(s) and "
        f"{len(result.rule_ids)} rule(s) for organization {result.organization_id}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
