"""
issue-scheduler command line.

Create Jira issues on a schedule from YAML issue templates.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from issue_scheduler import recurrence
from issue_scheduler.config import DEFAULT_CONFIG, Config, load_config
from issue_scheduler.errors import IssueSchedulerError, NotFoundError
from issue_scheduler.execution import ExecutionHandler
from issue_scheduler.jira import JiraClient
from issue_scheduler.loader import LoadReport, TemplateSource, glob_sources, reload_templates
from issue_scheduler.reconciler import is_in_sync, reconcile
from issue_scheduler.scheduler import LocalScheduler
from issue_scheduler.templates import TemplateStore

LOG_FILE = "issue_scheduler.log"
DEFAULT_PREVIEW_COUNT = 5
UTC = timezone.utc

logger = logging.getLogger("issue_scheduler")


def setup_logging(log_file: Optional[str] = LOG_FILE) -> logging.Logger:
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    return logger


def template_sources(config: Config) -> List[TemplateSource]:
    return glob_sources(config.issue_templates, base_dir=config.base_dir)


def load_store(config: Config) -> Tuple[TemplateStore, LoadReport]:
    store = TemplateStore()
    report = reload_templates(store, template_sources(config))
    return store, report


def command_validate(config_path: Path) -> int:
    config = load_config(config_path)
    _, report = load_store(config)
    print(f"Config valid: {config_path}")
    for line in report.summary_lines():
        print(line)
    return 0 if report.ok else 1


def command_preview(config_path: Path, template_name: Optional[str], count: int) -> int:
    config = load_config(config_path)
    store, _ = load_store(config)
    templates = [store.find(template_name)] if template_name else store.list()
    now_utc = datetime.now(tz=UTC)

    for template in templates:
        print("=" * 80)
        print(f"Template: {template.name}")
        print(f"Project: {template.project} | Summary: {template.summary}")
        print(f"Schedule ({recurrence.schedule_kind(template.schedule)}): {template.schedule}")
        print(f"Next {count} run(s):")
        runs = recurrence.next_fire_times(template.schedule, count, now=now_utc, default_tz=config.timezone)
        if not runs:
            print("- none")
        for run_dt in runs:
            print(f"- {run_dt.astimezone(config.timezone).isoformat()}")
    print("=" * 80)
    return 0


def build_handler(config: Config, store: TemplateStore) -> ExecutionHandler:
    return ExecutionHandler(
        store=store,
        sources=lambda: template_sources(config),
        issue_client=JiraClient.from_config(config),
    )


def command_run(config_path: Path, template_name: str) -> int:
    config = load_config(config_path)
    store = TemplateStore()
    handler = build_handler(config, store)
    result = handler.on_fire(template_name, datetime.now(tz=UTC))
    if result.status != "created":
        raise NotFoundError(template_name)
    print(f"Created {result.issue_key}")
    return 0


def refresh_schedule(config: Config, store: TemplateStore, scheduler: LocalScheduler) -> bool:
    """Reload templates and reconcile the scheduler when the job set changed."""
    reload_templates(store, template_sources(config))
    if is_in_sync(store, scheduler):
        return False
    try:
        reconcile(store, scheduler)
    except IssueSchedulerError as exc:
        logger.error("Schedule refresh failed: %s", exc)
    return True


def command_daemon(config_path: Path, poll_seconds: Optional[int]) -> int:
    config = load_config(config_path)
    store, _ = load_store(config)
    scheduler = LocalScheduler(default_tz=config.timezone)
    handler = build_handler(config, store)
    scheduler.on_fire(handler.handle_job)
    reconcile(store, scheduler)

    try:
        scheduler.run_forever(
            poll_seconds or config.poll_seconds,
            refresh=lambda: refresh_schedule(config, store, scheduler),
        )
    except KeyboardInterrupt:
        logger.info("Daemon interrupted by user.")
        return 130
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create Jira issues on a schedule from YAML issue templates",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG,
        help=f"Path to config YAML (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument("--log-file", default=LOG_FILE, help=f"Log file (default: {LOG_FILE})")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("validate", help="Load and validate all issue templates")

    preview_parser = subparsers.add_parser("preview", help="Show upcoming runs for templates")
    preview_parser.add_argument("--template", help="Preview a single template by name")
    preview_parser.add_argument("--count", type=int, default=DEFAULT_PREVIEW_COUNT, help="Next run count")

    run_parser = subparsers.add_parser("run", help="Create the issue for one template now")
    run_parser.add_argument("--template", required=True, help="Template name (its file path)")

    daemon_parser = subparsers.add_parser("daemon", help="Run the scheduler loop")
    daemon_parser.add_argument(
        "--poll-seconds",
        type=int,
        default=None,
        help="Polling interval in seconds (default: poll_seconds from config)",
    )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_file)
    config_path = Path(args.config).expanduser().resolve()

    try:
        if args.command == "validate":
            return command_validate(config_path)
        if args.command == "preview":
            if args.count <= 0:
                raise IssueSchedulerError("--count must be >= 1")
            return command_preview(config_path, template_name=args.template, count=args.count)
        if args.command == "run":
            return command_run(config_path, template_name=args.template)
        if args.command == "daemon":
            if args.poll_seconds is not None and args.poll_seconds <= 0:
                raise IssueSchedulerError("--poll-seconds must be >= 1")
            return command_daemon(config_path, poll_seconds=args.poll_seconds)
        raise IssueSchedulerError(f"Unsupported command: {args.command}")
    except IssueSchedulerError as exc:
        logger.error(str(exc))
        return 1
    except Exception as exc:  # pragma: no cover - defensive
        logger.exception("Unexpected error: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
