from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import date

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.abspath(os.path.join(SCRIPT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


def load_env_file(env_path: str) -> None:
    if not os.path.exists(env_path):
        return
    with open(env_path, "r", encoding="utf-8") as env_file:
        for line in env_file:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            os.environ.setdefault(key, value)


def parse_args() -> argparse.Namespace:
    today = date.today()
    parser = argparse.ArgumentParser(description="Build a performance report and print it as JSON.")
    parser.add_argument(
        "--env-file",
        default=os.path.join(PROJECT_ROOT, ".env"),
        help="Path to .env file.",
    )
    parser.add_argument(
        "--report",
        default="departments",
        choices=["departments", "employees", "milestones"],
        help="Report to build.",
    )
    parser.add_argument(
        "--reference-date",
        type=date.fromisoformat,
        default=today,
        help="Reference date (YYYY-MM-DD) for the today and last-30-days windows.",
    )
    parser.add_argument("--month", type=int, default=today.month, help="Selected month (1-12).")
    parser.add_argument("--year", type=int, default=today.year, help="Selected year.")
    parser.add_argument("--employee-id", type=int, default=None, help="Limit the scoreboard to one employee.")
    parser.add_argument(
        "--deadline-seconds",
        type=float,
        default=None,
        help="Overall deadline; sources still running after it are reported as partial failures.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    load_env_file(os.path.abspath(args.env_file))

    from src.api.dependencies import get_performance_report_service
    from src.core.config import get_settings
    from src.core.logging import configure_logging

    configure_logging(get_settings().log_level)
    service = get_performance_report_service()
    if args.report == "employees":
        report = service.build_employee_scoreboard(
            args.reference_date,
            args.month,
            args.year,
            employee_id=args.employee_id,
            deadline_seconds=args.deadline_seconds,
        )
    elif args.report == "milestones":
        report = service.build_milestone_report(
            args.reference_date, args.month, args.year, deadline_seconds=args.deadline_seconds
        )
    else:
        report = service.build_report(
            args.reference_date, args.month, args.year, deadline_seconds=args.deadline_seconds
        )
    print(json.dumps(report.model_dump(by_alias=True), indent=2, default=str))
    if report.is_partial:
        sys.exit(2)


if __name__ == "__main__":
    main()
