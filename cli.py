#!/usr/bin/env python3
"""Unified CLI for the job application tracker.

Usage:
    python cli.py db --help
    python cli.py stages --help
    python cli.py analytics --help
"""
import logging
import os
import sys
import argparse


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description='Job Application Tracker',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Modules:
  db         Create or migrate the SQLite database
  stages     Stage templates and per-application stage history
  analytics  Funnel, timing and effectiveness reports

Examples:
  python cli.py db init
  python cli.py stages templates --owner alice --seed
  python cli.py stages add --owner alice --application 12 --template 2
  python cli.py stages transition --owner alice --entry 40 --status completed
  python cli.py analytics funnel --owner alice --json
"""
    )

    parser.add_argument(
        'module',
        choices=['db', 'stages', 'analytics'],
        help='Module to run'
    )

    # Parse just the module, pass rest to submodule
    args, remaining = parser.parse_known_args(argv)

    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # Dispatch to module CLI
    if args.module == 'db':
        from modules.applications.cli import db_main
        return db_main(remaining)

    elif args.module == 'stages':
        from modules.applications.cli import stages_main
        return stages_main(remaining)

    elif args.module == 'analytics':
        from modules.analytics.cli import main as analytics_main
        return analytics_main(remaining)


if __name__ == '__main__':
    sys.exit(main())
