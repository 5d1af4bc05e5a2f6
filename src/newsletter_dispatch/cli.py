# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for the newsletter delivery engine.

Works directly against the database, without going through the HTTP API.

Usage:
    newsletter-dispatch --db ./newsletter.db send nl-42 --resume-type failed
    newsletter-dispatch --db ./newsletter.db progress nl-42
    newsletter-dispatch --db ./newsletter.db status nl-42
    newsletter-dispatch --db ./newsletter.db export nl-42 -o failed.csv
    newsletter-dispatch --db ./newsletter.db estimate nl-42
    newsletter-dispatch serve --port 8000

SMTP settings for ``send`` come from the ``NLD_SMTP_*`` environment
variables, pacing from ``EMAIL_PROVIDER`` and ``BATCH_*``.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from .config import ServerSettings, load_dispatch_config, load_server_settings
from .core import NewsletterCore
from .entities.campaign import ResumeType
from .exceptions import NewsletterDispatchError
from .transport import MailTransport, SmtpTransport

console = Console()
err_console = Console(stderr=True)

RESUME_CHOICES = click.Choice([mode.value for mode in ResumeType])


def run_async(coro):
    """Execute an async coroutine synchronously from CLI context."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as syntax-highlighted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def build_transport(settings: ServerSettings) -> MailTransport | None:
    """SMTP transport from settings, or None when no relay is configured."""
    if not settings.smtp_host:
        return None
    return SmtpTransport(**settings.smtp_kwargs())


def _with_core(
    ctx: click.Context,
    action: Callable[[NewsletterCore], Awaitable[Any]],
    *,
    transport: MailTransport | None = None,
) -> Any:
    """Open a core on the selected database, run ``action`` and close it.

    Domain errors are printed and turn into exit code 1.
    """
    settings: ServerSettings = ctx.obj["settings"]
    core = NewsletterCore(
        db_path=settings.db_path,
        config=load_dispatch_config(),
        transport=transport,
        site_url=settings.site_url,
        site_name=settings.site_name,
    )

    async def _run():
        await core.init()
        try:
            return await action(core)
        finally:
            await core.close()

    try:
        return run_async(_run())
    except NewsletterDispatchError as exc:
        print_error(str(exc))
        sys.exit(1)


@click.group()
@click.version_option(package_name="newsletter-dispatch")
@click.option("--db", "db_path", envvar="NLD_DB_PATH", default=None, help="SQLite database path.")
@click.pass_context
def main(ctx: click.Context, db_path: str | None) -> None:
    """Newsletter batch delivery engine."""
    settings = load_server_settings()
    if db_path:
        settings.db_path = db_path
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@main.command("send")
@click.argument("campaign_id")
@click.option("--resume-type", "-r", type=RESUME_CHOICES, default="all", show_default=True,
              help="Which recipients to send to.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def send(ctx: click.Context, campaign_id: str, resume_type: str, as_json: bool) -> None:
    """Send CAMPAIGN_ID to the recipients selected by --resume-type."""
    transport = build_transport(ctx.obj["settings"])
    summary = _with_core(ctx, lambda core: core.batch_send(campaign_id, resume_type), transport=transport)

    if as_json:
        print_json(summary)
        return
    if summary["total"] == 0:
        console.print(f"[yellow]No recipients to send for '{campaign_id}' ({resume_type}).[/yellow]")
        return
    print_success(
        f"Campaign '{campaign_id}': {summary['successful']} sent, {summary['failed']} failed "
        f"in {summary['batches']} batch(es)."
    )


@main.command("progress")
@click.argument("campaign_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def progress(ctx: click.Context, campaign_id: str, as_json: bool) -> None:
    """Show counters and status of CAMPAIGN_ID."""
    data = _with_core(ctx, lambda core: core.get_progress(campaign_id))

    if as_json:
        print_json(data)
        return

    batch_info = data.get("batch_info") or {}
    console.print(f"\n[bold cyan]Campaign: {campaign_id}[/bold cyan]\n")
    console.print(f"  Status:      {data['status']}")
    console.print(f"  Recipients:  {data['recipient_count']}")
    console.print(f"  Sent:        [green]{data['successful_sends']}[/green]")
    console.print(f"  Failed:      [red]{data['failed_sends']}[/red]")
    console.print(f"  Batches:     {batch_info.get('total_batches', '-')} x {batch_info.get('batch_size', '-')}")
    console.print(f"  Completed:   {batch_info.get('completed_at') or '-'}")
    console.print(f"  Sent date:   {data.get('last_sent_at') or '-'}")
    console.print(f"  Last error:  {data.get('last_error') or '-'}")
    console.print()


@main.command("status")
@click.argument("campaign_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, campaign_id: str, as_json: bool) -> None:
    """Show the per-recipient delivery breakdown of CAMPAIGN_ID."""
    report = _with_core(ctx, lambda core: core.delivery_status(campaign_id))

    if as_json:
        print_json(report)
        return

    summary = report["summary"]
    console.print(f"\n[bold cyan]Campaign: {campaign_id}[/bold cyan] ({report['status']})\n")
    console.print(
        f"  Total: {summary['total']}  Sent: [green]{summary['sent']}[/green]  "
        f"Failed: [red]{summary['failed']}[/red]  Pending: {summary['pending']}  "
        f"Not attempted: {summary['not_attempted']}"
    )

    if report["failed_emails"]:
        table = Table(title="Failed deliveries")
        table.add_column("Email", style="cyan")
        table.add_column("Attempts", justify="right")
        table.add_column("Last attempt")
        table.add_column("Error")
        for item in report["failed_emails"]:
            table.add_row(
                item["email"],
                str(item["attempts"]),
                item.get("last_attempt_at") or "-",
                item.get("error") or "-",
            )
        console.print(table)
    console.print()


@main.command("export")
@click.argument("campaign_id")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Write the CSV to a file instead of stdout.")
@click.pass_context
def export(ctx: click.Context, campaign_id: str, output: Path | None) -> None:
    """Export failed and never-attempted recipients of CAMPAIGN_ID as CSV."""
    data = _with_core(ctx, lambda core: core.export_csv(campaign_id))
    if output is None:
        click.echo(data, nl=False)
        return
    output.write_text(data, encoding="utf-8")
    print_success(f"Exported {max(len(data.splitlines()) - 1, 0)} row(s) to {output}")


@main.command("estimate")
@click.argument("campaign_id")
@click.option("--resume-type", "-r", type=RESUME_CHOICES, default="all", show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def estimate(ctx: click.Context, campaign_id: str, resume_type: str, as_json: bool) -> None:
    """Estimate duration and quota impact of sending CAMPAIGN_ID."""
    data = _with_core(ctx, lambda core: core.estimate(campaign_id, resume_type))

    if as_json:
        print_json(data)
        return

    quota = data["quota"]
    console.print(f"\n[bold cyan]Estimate: {campaign_id}[/bold cyan] ({resume_type})\n")
    console.print(f"  Provider:    {data['provider']}")
    console.print(f"  Recipients:  {data['recipients']}")
    console.print(f"  Batches:     {data['batches']} x {data['batch_size']} ({data['batch_delay_ms']} ms apart)")
    console.print(f"  Duration:    ~{data['estimated_time_minutes']} min")
    quota_style = "red" if quota["would_exceed"] else "green"
    console.print(
        f"  Quota:       [{quota_style}]{quota['remaining_quota']} of {quota['daily_limit']} left today[/{quota_style}]"
    )
    console.print()


@main.command("serve")
@click.option("--host", "-h", default=None, help="Host to bind to (default: NLD_HOST or 0.0.0.0).")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: NLD_PORT or 8000).")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Run the HTTP API with uvicorn."""
    from .server import run

    settings: ServerSettings = ctx.obj["settings"]
    if host:
        settings.host = host
    if port:
        settings.port = port
    console.print(f"[bold]Serving on http://{settings.host}:{settings.port}[/bold] (db: {settings.db_path})")
    run(settings, reload=reload)


if __name__ == "__main__":
    main()
