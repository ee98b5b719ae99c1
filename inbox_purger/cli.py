#!/usr/bin/env python3
"""
Inbox Purger - command line entry points for the purge handlers and trigger admin
"""
import argparse
import asyncio
import logging
import os
import signal
import sys

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from inbox_purger.errors import NotAuthenticatedError
from inbox_purger.gmail_service import GmailService
from inbox_purger.models import BatchStats, PurgeConfig


console = Console()


def configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def build_service() -> GmailService:
    return GmailService(
        PurgeConfig.from_env(),
        credentials_path=os.getenv('GMAIL_CREDENTIALS_PATH', 'data/credentials.json'),
        token_path=os.getenv('GMAIL_TOKEN_PATH', 'data/token.json')
    )


# === Rendering ===

def print_batch(stats: BatchStats) -> None:
    table = Table(title="Purge Batch Results", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="cyan", width=25)
    table.add_column("Value", justify="right", style="green", width=14)

    table.add_row("Outcome", stats.outcome)
    table.add_row("Threads Fetched", f"{stats.fetched:,}")
    table.add_row("Threads Deleted", f"{stats.deleted:,}")
    table.add_row("Threads Skipped", f"{stats.skipped:,}")
    remaining = "-" if stats.remaining_estimate is None else f"{stats.remaining_estimate:,}"
    table.add_row("Remaining (approx.)", remaining)
    table.add_row("Elapsed", f"{stats.elapsed_seconds:.1f}s")
    console.print(table)

    if stats.error:
        console.print(f"[red]Error: {stats.error}[/red]")
    if stats.continuation_armed:
        console.print("[yellow]Continuation trigger armed[/yellow]")


def print_stats(report: dict) -> None:
    console.print(f"\n[bold cyan]Backlog[/bold cyan] [dim]({report['query']})[/dim]")
    console.print(f"  - Threads to purge: {report['total_matching']:,}")
    console.print(f"  - Estimated batches: {report['estimated_batches']:,}")
    console.print(f"  - Estimated completion: {report['estimated_minutes']:,} minutes")


def print_quota(report: dict) -> None:
    colour = "red" if report['limit_reached'] else "green"
    console.print(f"[{colour}]Runs on {report['day']}: {report['runs']}/{report['max_daily_runs']}[/{colour}]")
    if report['limit_reached']:
        console.print("[yellow]Daily limit reached - next run is deferred a day[/yellow]")


def print_triggers(rows: list) -> None:
    if not rows:
        console.print("[yellow]No active triggers[/yellow]")
        return

    table = Table(title="Active Triggers", show_header=True, header_style="bold cyan")
    table.add_column("Handler", style="cyan")
    table.add_column("Kind")
    table.add_column("Frequency")
    table.add_column("Next Fire", style="green")
    for row in rows:
        table.add_row(row['handler'], row['kind'], row['frequency'], row['fire_at'])
    console.print(table)


# === Commands ===

def serve(service: GmailService, poll_seconds: float) -> None:
    """Run the dispatcher in the foreground until interrupted"""
    if not service.service:
        raise NotAuthenticatedError()

    dispatcher = service.dispatcher()

    def _handle_interrupt(signum, frame):
        """Handle Ctrl+C gracefully"""
        if not dispatcher.interrupted:
            console.print("\n[yellow]Interrupt received. Stopping after the current handler...[/yellow]")
            dispatcher.stop()
        else:
            console.print("\n[red]Force quit requested. Exiting immediately.[/red]")
            sys.exit(1)

    signal.signal(signal.SIGINT, _handle_interrupt)
    asyncio.run(dispatcher.serve(poll_seconds))


def main(argv=None) -> int:
    """Main entry point"""
    load_dotenv()
    configure_logging()

    parser = argparse.ArgumentParser(description='Scheduled purge of old, unprotected Gmail inbox threads')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('auth', help='Run the OAuth consent flow and store a token')
    subparsers.add_parser('install', help='Replace all triggers with a daily kickoff')
    subparsers.add_parser('run', help='Run one purge batch (main handler)')
    subparsers.add_parser('continue', help='Run one purge batch (continuation handler)')
    subparsers.add_parser('stats', help='Report the backlog and estimated completion')
    subparsers.add_parser('quota', help="Report today's run count against the limit")
    subparsers.add_parser('triggers', help='List active triggers')
    subparsers.add_parser('stop', help='Remove every trigger')
    serve_parser = subparsers.add_parser('serve', help='Fire due triggers until interrupted')
    serve_parser.add_argument('--poll-seconds', type=float,
                              default=float(os.getenv('PURGER_POLL_SECONDS', '30')),
                              help='Seconds between trigger checks (default: 30)')

    args = parser.parse_args(argv)
    service = build_service()

    if args.command == 'auth':
        if not os.path.exists(service.credentials_path):
            console.print("[red]Error: Gmail credentials file not found[/red]")
            console.print("Please download your credentials.json from Google Cloud Console")
            return 1
        service.run_local_flow()
        console.print("[green]Authenticated[/green]")
        return 0

    service.authenticate()
    admin = service.admin()

    try:
        if args.command == 'install':
            print_stats(admin.install())
            print_triggers(admin.report_timer_status())
        elif args.command == 'run':
            print_batch(service.run_once())
        elif args.command == 'continue':
            print_batch(service.run_continuation())
        elif args.command == 'stats':
            print_stats(admin.report_stats())
        elif args.command == 'quota':
            print_quota(admin.report_quota_status())
        elif args.command == 'triggers':
            print_triggers(admin.report_timer_status())
        elif args.command == 'stop':
            console.print(f"[green]Removed {admin.stop()} trigger(s)[/green]")
        elif args.command == 'serve':
            serve(service, args.poll_seconds)
    except NotAuthenticatedError:
        console.print("[red]Not authenticated. Run `inbox-purger auth` first.[/red]")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
