"""
Operator command line.

Edits campaigns in the shared JSON file and signals a running service
(SIGHUP via its PID file) so it picks the changes up.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime

import pytz
from diskcache import Cache
from rich.console import Console
from rich.table import Table

from courtbot.auth import AuthManager
from courtbot.config import BotSettings, GatewayCredentials
from courtbot.errors import PersistenceError, TargetValidationError
from courtbot.log import configure_logging
from courtbot.models import BurstTarget
from courtbot.notifier import CampaignExpired, Event, TargetAdded, TargetRemoved
from courtbot.service import (
    CourtBot,
    build_notifier,
    drain_webhook,
    read_pid_file,
    signal_service,
)
from courtbot.store import CampaignStore, JsonCampaignRepository

logger = logging.getLogger(__name__)

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="courtbot",
        description="Court reservation bot: waitlist polling and burst booking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s add poll 2025-12-01 18:00 60          # Wait for a cancellation
  %(prog)s add burst 52667 2025-12-01 18:00 60   # Race for court 52667
  %(prog)s list                                   # Show configured targets
  %(prog)s run                                    # Start the service
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run the booking service")
    sub.add_parser("status", help="Show service and campaign status")
    sub.add_parser("list", help="List configured targets")

    add = sub.add_parser("add", help="Add a target")
    add_sub = add.add_subparsers(dest="kind", required=True)

    poll = add_sub.add_parser("poll", help="Poll every court for a cancellation")
    poll.add_argument("date", help="YYYY-MM-DD")
    poll.add_argument("start", help="HH:MM (facility local time)")
    poll.add_argument("duration", type=int, help="Minutes")

    burst = add_sub.add_parser("burst", help="Burst-book one court")
    burst.add_argument("court", help="Court id")
    burst.add_argument("date", help="YYYY-MM-DD")
    burst.add_argument("start", help="HH:MM (facility local time)")
    burst.add_argument("duration", type=int, help="Minutes")

    remove = sub.add_parser("remove", help="Remove a target")
    remove.add_argument("id", help="Target id")

    sub.add_parser("enable", help="Enable campaigns")
    sub.add_parser("disable", help="Disable campaigns (targets are kept)")
    sub.add_parser("reload", help="Ask the running service to reload campaigns")

    cleanup = sub.add_parser("cleanup", help="Remove expired targets")
    cleanup.add_argument(
        "--beyond",
        type=float,
        metavar="DAYS",
        help="Instead remove targets more than DAYS days out",
    )

    token = sub.add_parser("token", help="Manage the bearer token")
    token_sub = token.add_subparsers(dest="token_command", required=True)
    token_set = token_sub.add_parser("set", help="Store a new bearer token")
    token_set.add_argument("token")
    token_sub.add_parser("show", help="Show token status")
    token_sub.add_parser("clear", help="Forget the cached token")

    return parser


def open_store(settings: BotSettings) -> CampaignStore:
    store = CampaignStore(
        JsonCampaignRepository(
            settings.campaign_state_path, default_enabled=settings.scheduler_enabled
        ),
        timezone=settings.facility_timezone,
    )
    store.load()
    return store


def notify_service(settings: BotSettings) -> None:
    if signal_service(settings.pid_file):
        console.print("[dim]Running service notified to reload[/dim]")
    else:
        console.print("[dim]Service not running; changes apply on next start[/dim]")


def announce(settings: BotSettings, *events: Event) -> None:
    notifier, webhook = build_notifier(settings)
    for event in events:
        notifier.notify(event)
    if webhook is not None:
        asyncio.run(drain_webhook(webhook))


def print_targets(store: CampaignStore, settings: BotSettings) -> None:
    targets = store.list()
    if not targets:
        console.print("[yellow]No targets configured[/yellow]")
        return

    tz = pytz.timezone(settings.facility_timezone)
    now = datetime.now(pytz.utc)

    table = Table(title=f"Targets ({'ENABLED' if store.enabled else 'DISABLED'})")
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Date")
    table.add_column("Start")
    table.add_column("Min", justify="right")
    table.add_column("Court")
    table.add_column("Days out", justify="right")

    for target in sorted(targets, key=lambda t: (t.date, t.desired_start, t.id)):
        court = target.resource_id if isinstance(target, BurstTarget) else "any"
        table.add_row(
            target.id,
            target.kind,
            target.date.isoformat(),
            target.desired_start.strftime("%H:%M"),
            str(target.duration),
            court,
            f"{target.days_until(now, tz):.1f}",
        )

    console.print(table)


def print_status(store: CampaignStore, settings: BotSettings, auth: AuthManager) -> None:
    pid = read_pid_file(settings.pid_file)
    token = auth.status()
    targets = store.list()
    bursts = sum(1 for t in targets if isinstance(t, BurstTarget))

    table = Table(title="Court Bot Status", show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Service", f"[green]running (pid {pid})[/green]" if pid else "[red]stopped[/red]")
    table.add_row("Campaigns", "[green]ENABLED[/green]" if store.enabled else "[yellow]DISABLED[/yellow]")
    table.add_row("Polling targets", str(len(targets) - bursts))
    table.add_row("Burst targets", str(bursts))
    table.add_row("Token", f"{token['preview']} ({token['source']})")
    table.add_row("State file", str(settings.campaign_state_path))
    console.print(table)


def run_service(settings: BotSettings) -> int:
    configure_logging(settings.log_level, settings.log_file, settings.error_log_file)
    bot = CourtBot(settings, GatewayCredentials())
    try:
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        console.print("\n👋 Cancelled by user")
        return 1
    return 0


def handle_token(args: argparse.Namespace, settings: BotSettings) -> int:
    credentials = GatewayCredentials()
    with Cache(str(settings.token_cache_dir)) as cache:
        auth = AuthManager(cache, credentials.auth_bearer_token)

        if args.token_command == "set":
            try:
                auth.update_token(args.token)
            except ValueError as e:
                console.print(f"[red]❌ {e}[/red]")
                return 1
            console.print(f"✅ Token updated: {auth.status()['preview']}")
        elif args.token_command == "clear":
            auth.clear()
            console.print("✅ Cached token cleared")
        else:
            status = auth.status()
            if status["has_token"]:
                console.print(
                    f"🔐 {status['preview']} (source: {status['source']}, "
                    f"length: {status['length']})"
                )
            else:
                console.print("[yellow]⚠️ No bearer token configured[/yellow]")
    return 0


def dispatch(args: argparse.Namespace, settings: BotSettings) -> int:
    if args.command == "run":
        return run_service(settings)

    if args.command == "token":
        return handle_token(args, settings)

    if args.command == "reload":
        if signal_service(settings.pid_file):
            console.print("✅ Reload requested")
            return 0
        console.print("[red]❌ Service is not running[/red]")
        return 1

    store = open_store(settings)

    if args.command == "list":
        print_targets(store, settings)
        return 0

    if args.command == "status":
        with Cache(str(settings.token_cache_dir)) as cache:
            auth = AuthManager(cache, GatewayCredentials().auth_bearer_token)
            print_status(store, settings, auth)
        return 0

    if args.command == "add":
        raw = {
            "kind": "polling" if args.kind == "poll" else "burst",
            "date": args.date,
            "desired_start": args.start,
            "duration": args.duration,
        }
        if args.kind == "burst":
            raw["resource_id"] = args.court

        try:
            target = store.add(raw)
        except TargetValidationError as e:
            console.print("[red]❌ Invalid target:[/red]")
            for error in e.errors:
                console.print(f"  • {error}")
            return 1
        console.print(f"✅ Added {target.kind} target [cyan]{target.id}[/cyan]")
        announce(settings, TargetAdded.from_target(target))
        notify_service(settings)
        return 0

    if args.command == "remove":
        if not store.remove(args.id):
            console.print(f"[yellow]Target {args.id} not found[/yellow]")
            return 1
        console.print(f"✅ Removed target {args.id}")
        announce(settings, TargetRemoved(args.id))
        notify_service(settings)
        return 0

    if args.command in ("enable", "disable"):
        store.set_enabled(args.command == "enable")
        console.print(f"✅ Campaigns {args.command}d")
        notify_service(settings)
        return 0

    if args.command == "cleanup":
        if args.beyond is not None:
            count = store.expire_by_lead_window(args.beyond)
            console.print(f"🧹 Removed {count} target(s) more than {args.beyond} days out")
        else:
            count = store.expire_by_date()
            console.print(f"🧹 Removed {count} expired target(s)")
        if count:
            announce(settings, CampaignExpired(count))
            notify_service(settings)
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Main entry point with argument parsing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = BotSettings()
    if args.verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})

    if args.command != "run":
        configure_logging(settings.log_level if args.verbose else "WARNING")

    try:
        return dispatch(args, settings)
    except PersistenceError as e:
        console.print(f"[red]❌ {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
