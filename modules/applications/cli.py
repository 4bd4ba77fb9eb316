"""Application pipeline CLI: database setup and stage ledger commands."""
import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

from common.errors import TrackerError
from common.scope import OwnerScope
from . import ledger, templates
from .database import get_engine, get_session, init_db, migrate_db


def _iso_datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO timestamp: {value!r}")


def _fmt(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def _print_entries(entries) -> None:
    if not entries:
        print("   (no stages)")
        return
    for e in entries:
        print(
            f"   #{e.id:<5} {e.order:>3}  {e.template.name:<20} {e.status:<10} "
            f"started {_fmt(e.started_at)}  completed {_fmt(e.completed_at)}"
        )


def db_main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="db", description="Database setup")
    parser.add_argument("command", choices=["init", "migrate"])
    parser.add_argument("--db", type=Path, help="SQLite file (default: from config)")
    args = parser.parse_args(argv)

    if args.command == "init":
        init_db(get_engine(args.db))
        print("🗄️  Database initialized")
    else:
        migrate_db(args.db)
        print("🗄️  Database migrated to head")
    return 0


def stages_main(argv=None) -> int:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--owner", required=True, help="Owner (user id) to act for")
    common.add_argument("--db", type=Path, help="SQLite file (default: from config)")

    parser = argparse.ArgumentParser(prog="stages", description="Stage templates and ledger")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("templates", help="List stage templates", parents=[common])
    p.add_argument("--seed", action="store_true", help="Create the default pipeline if empty")

    p = sub.add_parser("list", help="List an application's stage history", parents=[common])
    p.add_argument("--application", type=int, required=True)

    p = sub.add_parser("add", help="Append a stage entry", parents=[common])
    p.add_argument("--application", type=int, required=True)
    p.add_argument("--template", type=int, required=True)

    p = sub.add_parser(
        "advance", help="Complete the current stage and start a new one", parents=[common]
    )
    p.add_argument("--application", type=int, required=True)
    p.add_argument("--template", type=int, required=True)
    p.add_argument("--comment")

    p = sub.add_parser("transition", help="Change a stage entry's status", parents=[common])
    p.add_argument("--entry", type=int, required=True)
    p.add_argument("--status", required=True)
    p.add_argument("--completed-at", type=_iso_datetime)

    p = sub.add_parser("remove", help="Delete a stage entry", parents=[common])
    p.add_argument("--entry", type=int, required=True)

    args = parser.parse_args(argv)

    try:
        scope = OwnerScope(args.owner)
        with get_session(get_engine(args.db)) as session:
            if args.command == "templates":
                if args.seed:
                    result = templates.seed_default_templates(session, scope)
                    print(f"🌱 Seeded {result['created']} templates")
                for t in templates.list_templates(session, scope):
                    print(f"   #{t.id:<5} {t.order:>3}  {t.name}")

            elif args.command == "list":
                _print_entries(ledger.list_stages(session, scope, args.application))

            elif args.command == "add":
                entry = ledger.append_stage(session, scope, args.application, args.template)
                print(f"➕ Stage #{entry.id} added ({entry.status})")

            elif args.command == "advance":
                entry = ledger.advance_stage(
                    session, scope, args.application, args.template, comment=args.comment
                )
                print(f"⏩ Application {args.application} now at stage #{entry.id}")

            elif args.command == "transition":
                entry = ledger.transition_stage(
                    session, scope, args.entry, args.status, completed_at=args.completed_at
                )
                print(f"🔁 Stage #{entry.id} is now {entry.status}")

            elif args.command == "remove":
                ledger.remove_stage(session, scope, args.entry)
                print(f"🗑️  Stage #{args.entry} removed")
    except TrackerError as e:
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(stages_main())
