"""Entry point for watchdogd — `watchdogd` console script."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel

from watchdogd.api.server import create_app
from watchdogd.config import EXAMPLE_CONFIG, ConfigError, Settings, WatchdogConfig, load_config, settings
from watchdogd.health.issues import Severity
from watchdogd.health.probes import build_probes
from watchdogd.health.scheduler import CheckScheduler, IssueState
from watchdogd.notifications import NotificationDispatcher, SlackWebhookSender

console = Console()


def build_scheduler(
    config: WatchdogConfig, settings: Settings, notify: bool = True,
) -> CheckScheduler:
    """Wire probes, state and notifications from the loaded configuration."""
    notifier = None
    if notify and config.slack_webhooks:
        notifier = NotificationDispatcher(
            config.slack_webhooks,
            SlackWebhookSender(
                username=settings.notify_username,
                icon_emoji=settings.notify_icon_emoji,
            ),
        )
    return CheckScheduler(
        build_probes(config, settings),
        IssueState(),
        interval=config.interval,
        notifier=notifier,
        stagger=settings.probe_stagger_ms / 1000,
    )


def run_server(config: WatchdogConfig) -> None:
    """Start the status server; the check loop runs in its lifespan."""
    scheduler = build_scheduler(config, settings)
    counts = scheduler.probe_counts
    console.print(
        Panel.fit(
            f"[bold]watchdogd[/bold]\n"
            f"Bind:     {config.host}:{config.port}\n"
            f"Interval: {config.interval:g}s\n"
            f"Probes:   {counts['health_check']} http, {counts['certificate']} certificate, "
            f"{counts['timestamp']} timestamp, {counts['scheme_manager']} scheme manager\n"
            f"Slack:    {len(config.slack_webhooks)} webhook(s)",
            border_style="green",
        )
    )
    app = create_app(config, settings, scheduler=scheduler)
    uvicorn.run(app, host=config.host, port=config.port, log_level=settings.log_level.lower())


def run_once(config: WatchdogConfig) -> int:
    """Run a single check cycle and print the issues found."""
    scheduler = build_scheduler(config, settings, notify=False)
    snapshot = asyncio.run(scheduler.check(initial=True))

    if not snapshot.issues:
        console.print("[bold green]Everything is ok![/bold green]")
        return 0
    for issue in snapshot.issues:
        style = "red" if issue.severity is Severity.DANGER else "yellow"
        console.print(f"[{style}]{issue.severity.value:>7}[/{style}] {issue.message}")
    return 1 if snapshot.issues.filter(Severity.DANGER) else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="watchdogd — periodic infrastructure watchdog")
    parser.add_argument(
        "--config", default=settings.config_path, help="Path to configuration file",
    )
    parser.add_argument(
        "--once", action="store_true", help="Run the checks once, print the issues and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    try:
        config = load_config(args.config)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        console.print("It should look something like")
        console.print(EXAMPLE_CONFIG, markup=False, highlight=False)
        sys.exit(1)

    if args.once:
        sys.exit(run_once(config))
    run_server(config)


if __name__ == "__main__":
    main()
