"""Analytics CLI."""
import argparse
import json
import sys
from pathlib import Path

from common.errors import TrackerError
from common.scope import OwnerScope
from modules.applications.database import get_engine, get_session
from .service import REPORTS


def _print_report(name: str, report) -> None:
    if name == "overview":
        print(f"   Applications:   {report.total_applications} "
              f"({report.active_applications} active, {report.closed_applications} closed)")
        print(f"   Response rate:  {report.response_rate:.2f}%")
        print(f"   First response: {report.avg_days_to_first_response:.2f} days avg")
    elif name == "funnel":
        for s in report.stages:
            print(f"   {s.stage_order:>3}  {s.stage_name:<20} {s.count:>5}  "
                  f"conv {s.conversion_rate:6.2f}%  drop {s.drop_off_rate:6.2f}%")
    elif name == "stages":
        for s in report.stages:
            print(f"   {s.stage_order:>3}  {s.stage_name:<20} avg {s.avg_days:7.2f}d  "
                  f"min {s.min_days:7.2f}d  max {s.max_days:7.2f}d  apps {s.applications_count}")
    elif name == "resumes":
        for r in report.resumes:
            print(f"   {r.resume_title:<30} {r.applications_count:>4} apps  "
                  f"{r.responses_count:>4} responses  {r.interviews_count:>4} interviews  "
                  f"{r.response_rate:6.2f}%")
    elif name == "sources":
        for s in report.sources:
            print(f"   {s.source_name:<30} {s.applications_count:>4} apps  "
                  f"{s.responses_count:>4} responses  {s.response_rate:6.2f}%")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="analytics", description="Pipeline analytics")
    parser.add_argument("report", choices=list(REPORTS))
    parser.add_argument("--owner", required=True)
    parser.add_argument("--db", type=Path, help="SQLite file (default: from config)")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    args = parser.parse_args(argv)

    try:
        scope = OwnerScope(args.owner)
        with get_session(get_engine(args.db)) as session:
            report = REPORTS[args.report](session, scope)
    except TrackerError as e:
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return 1

    if args.json:
        print(report.model_dump_json(indent=2))
    else:
        print(f"📊 Analytics: {args.report} ({args.owner})")
        _print_report(args.report, report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
