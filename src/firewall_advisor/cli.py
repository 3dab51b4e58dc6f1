"""Command-line entry point: key management, manual actions and the monitor."""

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.live import Live
from rich.markup import escape

from firewall_advisor.actions import AppleScriptActions, RemoteControl
from firewall_advisor.analysis import AnalysisClient
from firewall_advisor.config import DEFAULT_CONFIG, Settings, load_settings
from firewall_advisor.credentials import (
    CredentialRing,
    JSONCredentialStore,
    clean_key,
    slot_name,
)
from firewall_advisor.dashboard import AdvisorDashboard
from firewall_advisor.enrichment import GeoEnricher, NullEnricher
from firewall_advisor.history import HistoryStore
from firewall_advisor.logging_setup import setup_logging
from firewall_advisor.models import ActionKind, RuleDuration
from firewall_advisor.pipeline import AdvisorPipeline
from firewall_advisor.providers import ProviderRegistry
from firewall_advisor.watcher import WindowWatcher
from firewall_advisor.windows import (
    FixtureWindowSource,
    StaticPermission,
    SystemEventsPermission,
    SystemEventsSource,
)

logger = logging.getLogger(__name__)

DEFAULT_DEMO = "demo/alerts.yaml"

# Demo timing (seconds)
DEMO_ALERT_HOLD = 8.0
DEMO_ALERT_GAP = 2.0
REFRESH_INTERVAL = 0.25

DURATIONS = {
    "always": RuleDuration.ALWAYS,
    "process": RuleDuration.PROCESS_LIFETIME,
}


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        prog="firewall-advisor",
        description="Firewall Advisor — AI-assisted analysis of firewall alerts",
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG,
        help=f"Path to the YAML config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level (DEBUG, INFO, WARNING, ERROR)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    add_key = commands.add_parser("add-key", help="Store an API key in the next free slot")
    add_key.add_argument("value", help="The API key")
    add_key.add_argument("--slot", type=int, default=None, help="Write to this slot instead")

    remove_key = commands.add_parser("remove-key", help="Remove a stored API key")
    remove_key.add_argument("slot", type=int, nargs="?", default=0, help="Slot (default: 0)")

    commands.add_parser("list-keys", help="List configured API keys")
    commands.add_parser("status", help="Show configuration status")

    allow = commands.add_parser("allow", help="Click Allow on the current firewall alert")
    allow.add_argument(
        "duration",
        nargs="?",
        choices=sorted(DURATIONS),
        default="process",
        help="Rule lifetime (default: process)",
    )
    commands.add_parser("block", help="Click Block on the current firewall alert")

    watch = commands.add_parser("watch", help="Monitor firewall alerts with a live dashboard")
    watch.add_argument(
        "--demo",
        nargs="?",
        const=DEFAULT_DEMO,
        default=None,
        metavar="FILE",
        help=f"Replay alert windows from a fixture file (default: {DEFAULT_DEMO})",
    )
    watch.add_argument(
        "--serve",
        action="store_true",
        help="Also start the remote-control HTTP API",
    )
    watch.add_argument(
        "--port",
        type=int,
        default=None,
        help="Remote-control API port (default: from config)",
    )
    return parser.parse_args(argv)


def build_ring(settings: Settings) -> CredentialRing:
    """Create the credential ring described by *settings*."""
    return CredentialRing(
        JSONCredentialStore(settings.storage.keys_path),
        env_vars=settings.analysis.env_vars,
        backup_slots=settings.analysis.backup_slots,
    )


def _add_key(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    registry = ProviderRegistry(settings.providers)
    key = clean_key(args.value)
    if not registry.is_valid_key(key):
        console.print(
            "[red]✗ Invalid key format.[/red] Expected an Anthropic (sk-ant-),"
            " OpenAI (sk-), Gemini (AIza) or relay key."
        )
        return 1
    ring = build_ring(settings)
    try:
        slot = ring.add(key, slot=args.slot)
    except ValueError as exc:
        console.print(f"[red]✗ {exc}[/red]")
        return 1
    provider = registry.detect(key)
    console.print(f"[green]✓[/green] {provider.value} key added to slot {slot}")
    return 0


def _remove_key(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    ring = build_ring(settings)
    try:
        ring.remove(args.slot)
    except ValueError as exc:
        console.print(f"[red]✗ {exc}[/red]")
        return 1
    console.print(f"[green]✓[/green] API key removed from slot {args.slot}")
    return 0


def _list_keys(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    ring = build_ring(settings)
    registry = ProviderRegistry(settings.providers)
    slots = ring.list_slots()
    if not slots:
        console.print("No API keys configured")
    else:
        console.print("Configured API keys:")
        for key_slot in slots:
            value = ring.store.get(slot_name(key_slot.slot))
            provider = registry.detect(value or "")
            console.print(f"  Slot {key_slot.slot}: {key_slot.prefix} ({provider.value})")
    env_source = ring.env_source()
    if env_source:
        console.print(f"  Environment: {env_source} is set")
    return 0


def _status(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    ring = build_ring(settings)
    count = len(ring)
    console.print("[bold]Firewall Advisor[/bold]")
    console.print(f"  Target:   {settings.target.app_name} ({settings.target.bundle_id})")
    console.print(f"  API keys: {count}")
    console.print(f"  Has key:  {'yes' if count else 'no'}")
    console.print(f"  Remote:   {'enabled' if settings.remote.command else 'disabled'}")
    return 0


def _perform(kind: ActionKind, duration: RuleDuration, settings: Settings, console: Console) -> int:
    actions = AppleScriptActions(settings.target.app_name)
    if actions.perform_action(kind, duration):
        console.print(f"[green]✓[/green] Clicked {kind.value} on the firewall alert")
        return 0
    console.print(f"[red]✗ Failed to click {kind.value}[/red]")
    return 1


async def _replay_fixtures(source: FixtureWindowSource, path: str, dashboard: AdvisorDashboard) -> None:
    """Show each fixture alert for a while, then close it like an operator would."""
    alerts = FixtureWindowSource.load_alerts(path)
    for index, alert in enumerate(alerts, start=1):
        dashboard.update_status(f"[bold]Demo alert {index}/{len(alerts)}[/bold]")
        source.push_alert(alert)
        await asyncio.sleep(DEMO_ALERT_HOLD)
        source.clear()
        await asyncio.sleep(DEMO_ALERT_GAP)
    dashboard.update_status("[dim italic]Demo complete.[/dim italic]")


async def _watch(args: argparse.Namespace, settings: Settings, console: Console) -> int:
    """Run the monitor until interrupted (or until the demo ends)."""
    ring = build_ring(settings)
    client = AnalysisClient(ring, ProviderRegistry(settings.providers), settings.analysis)
    history = HistoryStore(settings.history.max_count, settings.history.path)

    if args.demo:
        source = FixtureWindowSource(settings.target.app_name)
        permissions = StaticPermission(True)
        enricher = NullEnricher()
    else:
        source = SystemEventsSource()
        permissions = SystemEventsPermission()
        enricher = GeoEnricher()

    remote = RemoteControl(
        AppleScriptActions(settings.target.app_name),
        command=settings.remote.command,
        stale_after=settings.remote.stale_after,
    )
    pipeline = AdvisorPipeline(client, enricher, history, remote)
    pipeline.attach_dismissal(source, settings.target, settings.dismissal)

    watcher = WindowWatcher(source, permissions, settings.target, settings.monitor)
    watcher.on("alert", pipeline.handle_alert)

    dashboard = AdvisorDashboard(settings.target, history)
    dashboard.register_callbacks(pipeline)

    if not watcher.start():
        permissions.request()
        console.print(
            "[red]✗ Accessibility permission is required to read firewall alerts.[/red]"
            " Grant it in System Settings and run again."
        )
        return 1

    server = None
    background: list[asyncio.Task] = []
    if args.serve:
        import uvicorn

        from firewall_advisor.server import create_app

        port = args.port or settings.server.port
        server = uvicorn.Server(
            uvicorn.Config(
                create_app(remote, client, watcher, history),
                host=settings.server.host,
                port=port,
                log_level="warning",
            )
        )
        background.append(asyncio.create_task(server.serve()))
        dashboard.update_status(
            f"[bold green]Remote control on http://{settings.server.host}:{port}[/bold green]"
            " — Ctrl+C to stop"
        )

    demo_task = None
    if args.demo:
        demo_task = asyncio.create_task(_replay_fixtures(source, args.demo, dashboard))
        background.append(demo_task)

    try:
        with Live(dashboard, console=console, refresh_per_second=4):
            while True:
                dashboard.monitoring = watcher.is_monitoring
                dashboard.credential_count = len(ring)
                if demo_task is not None and demo_task.done() and server is None:
                    break
                await asyncio.sleep(REFRESH_INTERVAL)
    finally:
        await watcher.stop()
        await pipeline.shutdown()
        if server is not None:
            server.should_exit = True
        for task in background:
            if task is not demo_task or not task.done():
                task.cancel()
        await asyncio.gather(*background, return_exceptions=True)

    if demo_task is not None and not demo_task.cancelled() and demo_task.exception():
        console.print(f"[red]✗ Demo failed: {demo_task.exception()}[/red]")
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the firewall advisor CLI."""
    args = _parse_args(argv)
    console = Console()

    try:
        settings = load_settings(args.config)
    except ValueError as exc:
        console.print(f"[red]✗ Invalid config {escape(args.config)}: {escape(str(exc))}[/red]")
        return 1
    setup_logging(args.log_level or settings.logging.level)

    if args.command == "add-key":
        return _add_key(args, settings, console)
    if args.command == "remove-key":
        return _remove_key(args, settings, console)
    if args.command == "list-keys":
        return _list_keys(args, settings, console)
    if args.command == "status":
        return _status(args, settings, console)
    if args.command == "allow":
        return _perform(ActionKind.ALLOW, DURATIONS[args.duration], settings, console)
    if args.command == "block":
        return _perform(ActionKind.BLOCK, RuleDuration.NONE, settings, console)

    try:
        return asyncio.run(_watch(args, settings, console))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
