# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for the mail scheduler.

Every command except ``serve`` and ``worker`` opens the job store, runs one
operation and exits, so the CLI can be used next to a running server.

Usage:
    mail-scheduler serve --port 3001
    mail-scheduler worker
    mail-scheduler users sync alice@example.com --name "Alice"
    mail-scheduler senders add USER_ID news@example.com --name "Newsletter"
    mail-scheduler schedule SENDER_ID recipients.csv --start 2025-01-01T09:00:00Z
    mail-scheduler jobs list SENDER_ID --status SCHEDULED
    mail-scheduler stats SENDER_ID

Example:
    $ mail-scheduler --config /etc/mail-scheduler.ini schedule 7c9e... list.csv \\
        --delay 5 --hourly-limit 100 --subject "Spring news"
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.table import Table

from .config import SchedulerConfig
from .config_loader import load_config
from .core import MailScheduler
from .errors import SchedulerError
from .logger import configure_logging

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")

db_option = click.option("--db", "db_path", default=None, help="Database path or PostgreSQL DSN.")
json_option = click.option("--json", "as_json", is_flag=True, help="Output as JSON.")


def print_error(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    console.print_json(json.dumps(data, indent=2, default=str))


def format_ts(value: float | None) -> str:
    """Render an epoch timestamp as UTC ISO-8601, or "-"."""
    if value is None:
        return "-"
    return datetime.fromtimestamp(float(value), timezone.utc).isoformat(timespec="seconds")


def _config(ctx: click.Context, db_path: str | None) -> SchedulerConfig:
    config: SchedulerConfig = ctx.obj["config"]
    if db_path:
        config = replace(config, db_path=db_path)
    return config


def run_with_service(config: SchedulerConfig, action: Callable[[MailScheduler], Awaitable[T]]) -> T:
    """Open the store, run ``action`` and close everything.

    Scheduler errors are printed and turned into exit code 1.
    """

    async def _run() -> T:
        service = MailScheduler(config)
        await service.init()
        try:
            return await action(service)
        finally:
            await service.stop()

    try:
        return asyncio.run(_run())
    except SchedulerError as exc:
        print_error(exc.message)
        if exc.details:
            print_json(exc.details)
        sys.exit(1)


@click.group()
@click.version_option(package_name="mail-scheduler")
@click.option("--config", "config_path", envvar="MSD_CONFIG", default=None, help="INI configuration file.")
@click.option("--log-level", default=None, help="Logging level (default: MSD_LOG_LEVEL or INFO).")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """Schedule and dispatch rate-limited e-mail batches."""
    configure_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config_path)


# ============================================================================
# Processes
# ============================================================================

@main.command()
@db_option
@click.option("--host", "-h", default=None, help="Host to bind to.")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on.")
@click.option("--no-worker", is_flag=True, help="Serve the API without dispatch consumers.")
@click.pass_context
def serve(ctx: click.Context, db_path: str | None, host: str | None, port: int | None, no_worker: bool) -> None:
    """Run the HTTP API (and, by default, the dispatch worker)."""
    import uvicorn

    from .server import build_app

    config = _config(ctx, db_path)
    if no_worker:
        config = replace(config, run_worker=False)
    host = host or config.host
    port = port or config.port
    console.print("\n[bold cyan]Starting mail scheduler[/bold cyan]")
    console.print(f"  DB:      {config.db_path}")
    console.print(f"  Listen:  {host}:{port}")
    console.print(f"  Worker:  {'yes' if config.run_worker else 'no'}")
    console.print()
    uvicorn.run(build_app(config), host=host, port=port)


@main.command()
@db_option
@click.option("--concurrency", "-c", type=int, default=None, help="Number of consumer tasks.")
@click.pass_context
def worker(ctx: click.Context, db_path: str | None, concurrency: int | None) -> None:
    """Run the dispatch worker without the HTTP API."""
    config = _config(ctx, db_path)
    if concurrency:
        config = replace(config, worker=replace(config.worker, concurrency=concurrency))

    async def _run() -> None:
        service = MailScheduler(config)
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await service.start(run_worker=True)
        console.print(f"[bold cyan]Dispatch worker running[/bold cyan] on {config.db_path} (Ctrl+C to stop)")
        try:
            await stop.wait()
        finally:
            await service.stop()

    asyncio.run(_run())


# ============================================================================
# Users
# ============================================================================

@main.group()
def users() -> None:
    """Manage users."""


@users.command("sync")
@click.argument("email")
@click.option("--name", "-n", default=None, help="Display name.")
@click.option("--image", default=None, help="Avatar URL.")
@db_option
@json_option
@click.pass_context
def users_sync(ctx: click.Context, email: str, name: str | None, image: str | None,
               db_path: str | None, as_json: bool) -> None:
    """Create or update a user by e-mail."""
    user = run_with_service(
        _config(ctx, db_path),
        lambda svc: svc.sync_user({"email": email, "name": name, "image": image}),
    )
    if as_json:
        print_json(user)
        return
    print_success(f"User {user['email']} synced (id {user['id']})")


@users.command("show")
@click.argument("email")
@db_option
@json_option
@click.pass_context
def users_show(ctx: click.Context, email: str, db_path: str | None, as_json: bool) -> None:
    """Show a user by e-mail."""
    user = run_with_service(_config(ctx, db_path), lambda svc: svc.get_user_by_email(email))
    if as_json:
        print_json(user)
        return
    console.print(f"\n[bold cyan]User: {user['email']}[/bold cyan]\n")
    console.print(f"  ID:       {user['id']}")
    console.print(f"  Name:     {user.get('name') or '-'}")
    console.print(f"  Created:  {format_ts(user.get('created_at'))}")
    console.print()


# ============================================================================
# Senders
# ============================================================================

@main.group()
def senders() -> None:
    """Manage sender profiles."""


@senders.command("add")
@click.argument("user_id")
@click.argument("email")
@click.option("--name", "-n", default=None, help="Display name used in From.")
@click.option("--hourly-limit", type=int, default=None, help="Max e-mails per rolling hour (1-1000).")
@click.option("--delay", "delay_seconds", type=int, default=None, help="Seconds between sends (1-60).")
@db_option
@json_option
@click.pass_context
def senders_add(ctx: click.Context, user_id: str, email: str, name: str | None, hourly_limit: int | None,
                delay_seconds: int | None, db_path: str | None, as_json: bool) -> None:
    """Create a sender for USER_ID."""
    payload: dict[str, Any] = {"user_id": user_id, "email": email, "name": name}
    if hourly_limit is not None:
        payload["hourly_limit"] = hourly_limit
    if delay_seconds is not None:
        payload["delay_seconds"] = delay_seconds
    sender = run_with_service(_config(ctx, db_path), lambda svc: svc.create_sender(payload))
    if as_json:
        print_json(sender)
        return
    print_success(f"Sender {sender['email']} created (id {sender['id']})")


@senders.command("list")
@click.argument("user_id")
@db_option
@json_option
@click.pass_context
def senders_list(ctx: click.Context, user_id: str, db_path: str | None, as_json: bool) -> None:
    """List the senders of USER_ID."""
    rows = run_with_service(_config(ctx, db_path), lambda svc: svc.list_senders(user_id))
    if as_json:
        print_json(rows)
        return
    if not rows:
        console.print("[dim]No senders found.[/dim]")
        return
    table = Table(title="Senders")
    table.add_column("ID", style="cyan")
    table.add_column("Email")
    table.add_column("Name")
    table.add_column("Hourly", justify="right")
    table.add_column("Delay", justify="right")
    table.add_column("Active", justify="center")
    for s in rows:
        table.add_row(
            s["id"],
            s["email"],
            s.get("name") or "-",
            str(s["hourly_limit"]),
            f"{s['delay_seconds']}s",
            "[green]✓[/green]" if s["is_active"] else "[red]✗[/red]",
        )
    console.print(table)


@senders.command("show")
@click.argument("sender_id")
@db_option
@json_option
@click.pass_context
def senders_show(ctx: click.Context, sender_id: str, db_path: str | None, as_json: bool) -> None:
    """Show a sender and its job count."""
    sender = run_with_service(_config(ctx, db_path), lambda svc: svc.get_sender(sender_id))
    if as_json:
        print_json(sender)
        return
    console.print(f"\n[bold cyan]Sender: {sender['email']}[/bold cyan]\n")
    console.print(f"  ID:            {sender['id']}")
    console.print(f"  User:          {sender['user_id']}")
    console.print(f"  Name:          {sender.get('name') or '-'}")
    console.print(f"  Hourly limit:  {sender['hourly_limit']}")
    console.print(f"  Delay:         {sender['delay_seconds']}s")
    console.print(f"  Active:        {'Yes' if sender['is_active'] else 'No'}")
    console.print(f"  Jobs:          {sender['email_job_count']}")
    console.print()


@senders.command("update")
@click.argument("sender_id")
@click.option("--email", default=None)
@click.option("--name", "-n", default=None)
@click.option("--hourly-limit", type=int, default=None)
@click.option("--delay", "delay_seconds", type=int, default=None)
@click.option("--active/--inactive", "is_active", default=None)
@db_option
@json_option
@click.pass_context
def senders_update(ctx: click.Context, sender_id: str, email: str | None, name: str | None,
                   hourly_limit: int | None, delay_seconds: int | None, is_active: bool | None,
                   db_path: str | None, as_json: bool) -> None:
    """Update fields of a sender."""
    fields = {
        "email": email,
        "name": name,
        "hourly_limit": hourly_limit,
        "delay_seconds": delay_seconds,
        "is_active": is_active,
    }
    payload = {key: value for key, value in fields.items() if value is not None}
    if not payload:
        print_error("Nothing to update.")
        sys.exit(1)
    sender = run_with_service(_config(ctx, db_path), lambda svc: svc.update_sender(sender_id, payload))
    if as_json:
        print_json(sender)
        return
    print_success(f"Sender {sender_id} updated")


@senders.command("delete")
@click.argument("sender_id")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompt.")
@db_option
@click.pass_context
def senders_delete(ctx: click.Context, sender_id: str, force: bool, db_path: str | None) -> None:
    """Delete a sender. Its jobs are kept."""
    if not force and not click.confirm(f"Delete sender {sender_id}?"):
        console.print("[dim]Cancelled.[/dim]")
        return
    run_with_service(_config(ctx, db_path), lambda svc: svc.delete_sender(sender_id))
    print_success(f"Sender {sender_id} deleted")


# ============================================================================
# Scheduling and jobs
# ============================================================================

@main.command()
@click.argument("sender_id")
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--start", "start_time", default=None, help="ISO-8601 start time (default: now).")
@click.option("--delay", "delay_seconds", type=int, default=2, show_default=True, help="Seconds between e-mails.")
@click.option("--hourly-limit", type=int, default=50, show_default=True, help="Max e-mails per rolling hour.")
@click.option("--subject", default=None, help="Subject for rows without one.")
@click.option("--body", default=None, help="Body for rows without one.")
@db_option
@json_option
@click.pass_context
def schedule(ctx: click.Context, sender_id: str, csv_file: Path, start_time: str | None, delay_seconds: int,
             hourly_limit: int, subject: str | None, body: str | None, db_path: str | None,
             as_json: bool) -> None:
    """Schedule one e-mail per row of CSV_FILE (columns: email, subject, body)."""
    request = {
        "sender_id": sender_id,
        "csv_data": csv_file.read_text(encoding="utf-8"),
        "start_time": start_time or datetime.now(timezone.utc).isoformat(),
        "delay_seconds": delay_seconds,
        "hourly_limit": hourly_limit,
        "default_subject": subject,
        "default_body": body,
    }
    result = run_with_service(_config(ctx, db_path), lambda svc: svc.schedule_batch(request))
    if as_json:
        print_json({"count": result.scheduled_count, "jobs": result.jobs})
        return
    print_success(f"Scheduled {result.scheduled_count} emails")
    first, last = result.jobs[0], result.jobs[-1]
    console.print(f"  First:  {format_ts(first['scheduled_at'])}  {first['recipient']}")
    console.print(f"  Last:   {format_ts(last['scheduled_at'])}  {last['recipient']}")


@main.group()
def jobs() -> None:
    """Inspect and cancel e-mail jobs."""


@jobs.command("list")
@click.argument("sender_id")
@click.option("--status", "-s", default=None, help="SCHEDULED, SENT or FAILED.")
@click.option("--limit", type=int, default=100, show_default=True)
@db_option
@json_option
@click.pass_context
def jobs_list(ctx: click.Context, sender_id: str, status: str | None, limit: int,
              db_path: str | None, as_json: bool) -> None:
    """List the jobs of SENDER_ID by scheduled time."""
    rows = run_with_service(_config(ctx, db_path), lambda svc: svc.list_jobs(sender_id, status, limit))
    if as_json:
        print_json(rows)
        return
    if not rows:
        console.print("[dim]No jobs found.[/dim]")
        return
    table = Table(title=f"Jobs of {sender_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Recipient")
    table.add_column("Scheduled")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("Error")
    colors = {"SENT": "green", "FAILED": "red"}
    for job in rows:
        color = colors.get(job["status"], "yellow")
        table.add_row(
            job["id"],
            job["recipient"],
            format_ts(job["scheduled_at"]),
            f"[{color}]{job['status']}[/{color}]",
            f"{job['retry_count']}/{job['max_retries']}",
            job.get("error") or "",
        )
    console.print(table)


@jobs.command("show")
@click.argument("job_id")
@db_option
@json_option
@click.pass_context
def jobs_show(ctx: click.Context, job_id: str, db_path: str | None, as_json: bool) -> None:
    """Show a job and its sender."""
    job = run_with_service(_config(ctx, db_path), lambda svc: svc.get_job(job_id))
    if as_json:
        print_json(job)
        return
    sender = job.get("sender") or {}
    console.print(f"\n[bold cyan]Job: {job['id']}[/bold cyan]\n")
    console.print(f"  Sender:     {sender.get('email') or job['sender_id']}")
    console.print(f"  Recipient:  {job['recipient']}")
    console.print(f"  Subject:    {job['subject']}")
    console.print(f"  Status:     {job['status']}")
    console.print(f"  Scheduled:  {format_ts(job['scheduled_at'])}")
    console.print(f"  Sent:       {format_ts(job.get('sent_at'))}")
    console.print(f"  Retries:    {job['retry_count']}/{job['max_retries']}")
    if job.get("error"):
        console.print(f"  Error:      [red]{job['error']}[/red]")
    console.print()


@jobs.command("cancel")
@click.argument("job_id")
@db_option
@click.pass_context
def jobs_cancel(ctx: click.Context, job_id: str, db_path: str | None) -> None:
    """Cancel a job that has not been sent."""
    run_with_service(_config(ctx, db_path), lambda svc: svc.cancel_job(job_id))
    print_success(f"Job {job_id} cancelled")


@main.command()
@click.argument("sender_id")
@db_option
@json_option
@click.pass_context
def stats(ctx: click.Context, sender_id: str, db_path: str | None, as_json: bool) -> None:
    """Show job counts of SENDER_ID and queue counts."""
    data = run_with_service(_config(ctx, db_path), lambda svc: svc.stats(sender_id))
    if as_json:
        print_json(data)
        return
    table = Table(title=f"Stats for {sender_id}")
    table.add_column("Status", style="cyan")
    table.add_column("All time", justify="right")
    table.add_column("Last 24h", justify="right")
    for name in ("SCHEDULED", "SENT", "FAILED"):
        table.add_row(
            name,
            str(data["status_counts"].get(name, 0)),
            str(data["last_24_hours"].get(name, 0)),
        )
    console.print(table)
    queue = data["queue_metrics"]
    console.print("  Queue: " + ", ".join(f"{key}={value}" for key, value in queue.items()))


if __name__ == "__main__":
    main()
