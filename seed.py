#!/usr/bin/env python3
"""
Seed the charity register store.

Modes:
- file:     import local extract files (organizations + trustees required)
- download: download the current extracts and import them from memory
- api:      crawl a range of registration numbers through the registry API
            (with --refresh --number N: re-fetch one organization and rescore it)
- score:    score every organization that has no score yet

Every mode except `score` finishes by scoring unscored organizations.

Usage:
    python seed.py --mode file --charity-file publicextract.charity.json --trustee-file publicextract.charity_trustee.json
    python seed.py --mode download
    python seed.py --mode api --start 200000 --end 210000 --concurrency 5 --rate-limit 10
    python seed.py --mode api --refresh --number 1089464
    python seed.py --mode score --number 1089464
"""

import argparse
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from charity_register.collectors.bulk_downloader import BulkDownloader, RegisterExtract, default_file_set
from charity_register.collectors.crawler import Crawler, CrawlStats
from charity_register.collectors.registry_client import RegistryClient
from charity_register.config import get_api_keys, get_log_dir, get_registry_base_url
from charity_register.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CHECKPOINT_INTERVAL,
    DEFAULT_CONCURRENCY,
    DEFAULT_CRAWL_END,
    DEFAULT_CRAWL_MAX_RETRIES,
    DEFAULT_CRAWL_START,
    DEFAULT_PROGRESS_INTERVAL,
    DEFAULT_RATE_LIMIT,
)
from charity_register.db import check_connection
from charity_register.errors import CancelledError, NotFoundError, OrganizationNotFoundError, PipelineError
from charity_register.importers.stream_importer import ImportProgress, StreamImporter
from charity_register.scorers import ScoringEngine
from charity_register.utils.logger import PipelineLogger
from charity_register.utils.rate_limiter import TokenBucketRateLimiter

console = Console()


def install_signal_handlers(cancel_event: threading.Event, logger) -> None:
    """SIGINT/SIGTERM set the cancellation event; a second signal is not special-cased."""

    def handle(signum, frame):
        logger.warning(f"Received signal {signal.Signals(signum).name}, shutting down gracefully...")
        cancel_event.set()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def print_import_summary(results: dict) -> None:
    table = Table(title="Import Summary")
    table.add_column("File", style="cyan")
    table.add_column("Processed", justify="right")
    table.add_column("Success", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("Rate/sec", justify="right")
    for label, progress in results.items():
        table.add_row(
            label,
            str(progress.processed),
            str(progress.success),
            str(progress.failed),
            str(progress.skipped),
            f"{progress.rate():.1f}",
        )
    console.print(table)


def print_crawl_summary(stats: CrawlStats, client: RegistryClient) -> None:
    summary = (
        f"Processed: {stats.processed}\n"
        f"Successful: [green]{stats.successful}[/green]\n"
        f"Failed: [red]{stats.failed}[/red]\n"
        f"Skipped: [yellow]{stats.skipped}[/yellow]\n"
        f"Last number: {stats.current_id}\n"
        f"Rate: {stats.rate():.2f}/sec"
    )
    console.print(Panel(summary, title="Crawl Summary", border_style="blue"))

    table = Table(title="API Key Usage")
    table.add_column("Key", style="cyan")
    table.add_column("Requests", justify="right")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Rate limited", justify="right", style="yellow")
    table.add_column("Last used")
    for key_stats in client.get_key_stats():
        last_used = key_stats.last_used.strftime("%Y-%m-%d %H:%M:%S") if key_stats.last_used else "-"
        table.add_row(
            key_stats.label,
            str(key_stats.total_requests),
            str(key_stats.failed_requests),
            str(key_stats.rate_limited),
            last_used,
        )
    console.print(table)


def print_score_summary(result: dict) -> None:
    console.print(
        f"Scoring: {result['scored']}/{result['total']} scored, "
        f"[red]{result['failed']}[/red] failed"
    )


def run_file_mode(args, importer: StreamImporter, logger) -> int:
    required = {"organizations": args.charity_file, "trustees": args.trustee_file}
    for label, path in required.items():
        if not path:
            logger.error(f"--{'charity' if label == 'organizations' else 'trustee'}-file is required in file mode")
            return 1
        if not Path(path).exists():
            logger.error(f"File not found: {path}")
            return 1

    results: dict[str, ImportProgress] = {}
    with logger.time_operation("import organizations", path=args.charity_file):
        results["organizations"] = importer.import_organizations(args.charity_file)
    with logger.time_operation("import trustees", path=args.trustee_file):
        results["trustees"] = importer.import_trustees(args.trustee_file)

    for label, path, method in (
        ("financials", args.financial_file, importer.import_financials),
        ("filing history", args.history_file, importer.import_filing_history),
    ):
        if not path:
            continue
        if not Path(path).exists():
            logger.warning(f"Optional file not found, skipping {label}: {path}")
            continue
        with logger.time_operation(f"import {label}", path=path):
            results[label] = method(path)

    print_import_summary(results)
    return 0


def run_download_mode(args, importer: StreamImporter, cancel_event: threading.Event, logger) -> int:
    progress = Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=console,
    )
    tasks = {}

    def on_progress(resource: RegisterExtract, read: int, total: int) -> None:
        if resource not in tasks:
            tasks[resource] = progress.add_task(resource.value, total=total)
        progress.update(tasks[resource], completed=read)

    downloader = BulkDownloader(progress_handler=on_progress, logger=logger)
    with progress:
        files, error = downloader.download_files(default_file_set(), cancel_event)

    if error is not None:
        logger.warning(str(error))

    for mandatory in (RegisterExtract.CHARITY, RegisterExtract.CHARITY_TRUSTEE):
        if mandatory not in files:
            logger.error(f"Mandatory extract {mandatory.value} could not be downloaded")
            return 1

    results: dict[str, ImportProgress] = {}
    results["organizations"] = importer.import_organizations_from_stream(files[RegisterExtract.CHARITY].reader())
    results["trustees"] = importer.import_trustees_from_stream(files[RegisterExtract.CHARITY_TRUSTEE].reader())
    if RegisterExtract.ANNUAL_RETURN_PARTB in files:
        results["financials"] = importer.import_financials_from_stream(
            files[RegisterExtract.ANNUAL_RETURN_PARTB].reader()
        )
    if RegisterExtract.ANNUAL_RETURN_HISTORY in files:
        results["filing history"] = importer.import_filing_history_from_stream(
            files[RegisterExtract.ANNUAL_RETURN_HISTORY].reader()
        )

    print_import_summary(results)
    return 0


def build_client(args, logger) -> Optional[RegistryClient]:
    api_keys = get_api_keys(args.api_keys)
    if not api_keys:
        logger.error("No API key: set CHARITY_API_KEYS (or CHARITY_API_KEY) or pass --api-keys")
        return None

    return RegistryClient(
        api_keys,
        rate_limiter=TokenBucketRateLimiter(args.rate_limit),
        max_retries=args.max_retries,
        base_url=get_registry_base_url(),
        logger=logger,
        verbose=args.verbose,
    )


def format_score(score) -> str:
    return (
        f"overall {score.overall_score:.1f} ({score.confidence_level} confidence) | "
        f"efficiency {score.efficiency_score:.1f}, financial health {score.financial_health_score:.1f}, "
        f"transparency {score.transparency_score:.1f}, governance {score.governance_score:.1f}"
    )


def print_rescore(engine: ScoringEngine, registered_number: int) -> None:
    """Score one organization and show the stored score it replaces."""
    previous = engine.get_cached(registered_number)
    score = engine.calculate(registered_number)
    console.print(f"{registered_number}: {format_score(score)}")
    if previous is not None:
        console.print(f"  previous: overall {previous.overall_score:.1f} ({previous.confidence_level} confidence)")


def run_refresh_mode(args, engine: ScoringEngine, cancel_event: threading.Event, logger) -> int:
    """Re-fetch one organization from the registry, then rescore it."""
    client = build_client(args, logger)
    if client is None:
        return 1

    crawler = Crawler(client, workers=1, verbose=args.verbose, logger=logger)
    try:
        organization = crawler.refresh(args.number, cancel_event)
    except NotFoundError:
        logger.error(f"Registration number {args.number} not found in the registry")
        return 1

    status = organization.status or "unknown"
    if organization.is_removed:
        status = f"[red]{status} (removed)[/red]"
    console.print(f"[bold]{organization.name}[/bold] ({organization.registered_number}): {status}")

    print_rescore(engine, organization.registered_number)
    return 0


def run_api_mode(args, cancel_event: threading.Event, logger) -> int:
    client = build_client(args, logger)
    if client is None:
        return 1

    console.print(
        f"[bold]Crawling registry[/bold] {args.start}-{args.end} with {args.concurrency} workers, "
        f"{args.rate_limit} req/s, {len(client.api_keys)} API key(s)"
    )

    progress = Progress(
        TextColumn("[bold blue]Crawl"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("ok {task.fields[ok]} | skip {task.fields[skip]} | fail {task.fields[fail]}"),
        TimeElapsedColumn(),
        console=console,
    )
    task = progress.add_task("crawl", total=args.end - args.start + 1, ok=0, skip=0, fail=0)

    def on_progress(snap: CrawlStats) -> None:
        progress.update(task, completed=snap.processed, ok=snap.successful, skip=snap.skipped, fail=snap.failed)

    crawler = Crawler(
        client,
        workers=args.concurrency,
        checkpoint_interval=args.checkpoint_interval,
        verbose=args.verbose,
        fetch_financial_history=args.fetch_financial_history,
        logger=logger,
        on_progress=on_progress,
    )
    with progress:
        stats = crawler.run(args.start, args.end, resume_from=args.resume, cancel_event=cancel_event)

    print_crawl_summary(stats, client)
    if cancel_event.is_set():
        console.print("[yellow]Crawl interrupted; progress saved to checkpoint[/yellow]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed the charity register store from extracts or the registry API")
    parser.add_argument("--mode", choices=["file", "download", "api", "score"], default="file", help="Seed mode")

    files = parser.add_argument_group("file mode")
    files.add_argument("--charity-file", type=str, help="Path to publicextract.charity.json")
    files.add_argument("--trustee-file", type=str, help="Path to publicextract.charity_trustee.json")
    files.add_argument("--financial-file", type=str, help="Path to publicextract.charity_annual_return_partb.json")
    files.add_argument("--history-file", type=str, help="Path to publicextract.charity_annual_return_history.json")

    crawl = parser.add_argument_group("api mode")
    crawl.add_argument("--start", type=int, default=DEFAULT_CRAWL_START, help="First registration number")
    crawl.add_argument("--end", type=int, default=DEFAULT_CRAWL_END, help="Last registration number (inclusive)")
    crawl.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help="Worker threads (default: 5)")
    crawl.add_argument("--rate-limit", type=int, default=DEFAULT_RATE_LIMIT, help="Requests per second (default: 10)")
    crawl.add_argument(
        "--max-retries", type=int, default=DEFAULT_CRAWL_MAX_RETRIES, help="Retries per request (default: 5)"
    )
    crawl.add_argument("--resume", type=int, default=0, help="Resume from this number (overrides the checkpoint)")
    crawl.add_argument(
        "--checkpoint-interval",
        type=int,
        default=DEFAULT_CHECKPOINT_INTERVAL,
        help="Save a checkpoint every N numbers (default: 100)",
    )
    crawl.add_argument("--api-keys", type=str, help="Comma-separated API keys (default: CHARITY_API_KEYS)")
    crawl.add_argument(
        "--fetch-financial-history", action="store_true", help="Also fetch the spending breakdown per organization"
    )
    crawl.add_argument(
        "--refresh",
        action="store_true",
        help="Re-fetch the organization given by --number, replace its stored rows and rescore it",
    )

    parser.add_argument("--batch-size", type=int, default=DEFAULT_BATCH_SIZE, help="Records per transaction")
    parser.add_argument(
        "--progress-interval", type=int, default=DEFAULT_PROGRESS_INTERVAL, help="Log progress every N records"
    )
    parser.add_argument(
        "--number", type=int, help="Registration number to score (score mode) or refresh (api mode with --refresh)"
    )
    parser.add_argument("--log-file", type=str, help="Also log to this file (under the data dir's logs/)")
    parser.add_argument("--verbose", action="store_true", help="Show detailed output")
    return parser


def validate_args(args) -> Optional[str]:
    """Error message for an unusable argument combination, None when the arguments are fine."""
    for flag, value, minimum in (
        ("--concurrency", args.concurrency, 1),
        ("--rate-limit", args.rate_limit, 1),
        ("--max-retries", args.max_retries, 0),
        ("--checkpoint-interval", args.checkpoint_interval, 1),
        ("--batch-size", args.batch_size, 1),
        ("--progress-interval", args.progress_interval, 1),
    ):
        if value < minimum:
            return f"{flag} must be at least {minimum}, got {value}"
    if args.end < args.start:
        return f"--end ({args.end}) is before --start ({args.start})"
    if args.refresh and not args.number:
        return "--refresh needs --number"
    if args.refresh and args.mode != "api":
        return "--refresh is only valid with --mode api"
    return None


def main():
    args = build_parser().parse_args()
    load_dotenv()

    log_level = "DEBUG" if args.verbose else "INFO"
    logger = PipelineLogger(
        "charity_register", log_level=log_level, log_file=args.log_file, log_dir=get_log_dir(), phase=args.mode
    )

    problem = validate_args(args)
    if problem:
        logger.error(problem)
        sys.exit(1)

    if not check_connection():
        logger.error("Cannot connect to the database (check CHARITY_DB_HOST/PORT/USER/PASSWORD/DATABASE)")
        sys.exit(1)

    cancel_event = threading.Event()
    install_signal_handlers(cancel_event, logger)
    started = time.monotonic()
    logger.log_run_start(f"Seed run ({args.mode} mode)")

    engine = ScoringEngine(logger=logger)

    if args.mode == "score" and args.number:
        try:
            print_rescore(engine, args.number)
        except OrganizationNotFoundError as e:
            logger.error(str(e))
            sys.exit(1)
        sys.exit(0)

    if args.mode == "api" and args.refresh:
        try:
            status = run_refresh_mode(args, engine, cancel_event, logger)
        except PipelineError as e:
            logger.error(f"Refresh of {args.number} failed: {e}")
            status = 1
        sys.exit(status)

    importer = StreamImporter(
        batch_size=args.batch_size,
        progress_interval=args.progress_interval,
        verbose=args.verbose,
        logger=logger,
    )

    try:
        if args.mode == "file":
            status = run_file_mode(args, importer, logger)
        elif args.mode == "download":
            status = run_download_mode(args, importer, cancel_event, logger)
        elif args.mode == "api":
            status = run_api_mode(args, cancel_event, logger)
        else:
            status = 0
    except CancelledError:
        logger.warning("Cancelled before completion")
        sys.exit(1)

    if status != 0:
        sys.exit(status)

    if not cancel_event.is_set():
        print_score_summary(engine.score_all_unscored(progress_interval=args.progress_interval, verbose=args.verbose))

    errors = logger.get_error_summary()
    if errors["total_errors"]:
        console.print(f"[yellow]{errors['total_errors']} errors logged during the run[/yellow]")

    logger.log_run_complete(
        f"Seed run ({args.mode} mode)", time.monotonic() - started, cancelled=cancel_event.is_set()
    )
    sys.exit(0)


if __name__ == "__main__":
    main()
