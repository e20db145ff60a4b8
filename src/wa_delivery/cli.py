# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for the WhatsApp delivery worker.

Usage:
    wa-delivery init-db
    wa-delivery run
    wa-delivery tenants add acme --name "ACME" --secret <meta app token>
    wa-delivery phones add pn-1 --tenant acme --provider-id 1234567890
    wa-delivery enqueue text pn-1 +15551234567 "hello"
    wa-delivery enqueue template pn-1 +15551234567 '{"name": "welcome", "language": {"code": "en"}}'
    wa-delivery enqueue media pn-1 +15551234567 image https://cdn.example.com/a.png --caption "Look"
    wa-delivery messages --status failed
    wa-delivery usage --tenant acme --date 2025-01-31

Every command reads settings through ``--config`` (or ``WAD_CONFIG``) with
environment fallbacks.
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .config_loader import WorkerSettings, load_settings
from .delivery_db import DeliveryDb, QueueDb
from .entities.message import MESSAGE_STATUSES
from .errors import SenderNotFoundError
from .logger import configure_logging
from .models import MediaType
from .queue import JobQueue
from .service import DeliveryService
from .submit import submit_message

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def _settings(ctx: click.Context) -> WorkerSettings:
    return ctx.obj["settings"]


async def _open_db(settings: WorkerSettings) -> DeliveryDb:
    db = DeliveryDb(settings.database_url)
    await db.init_db()
    return db


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to config.ini (default: $WAD_CONFIG or ./config.ini).",
)
@click.version_option(package_name="wa-delivery-worker")
@click.pass_context
def main(ctx: click.Context, config_path: str | None) -> None:
    """wa-delivery - WhatsApp Business message delivery worker."""
    try:
        settings = load_settings(config_path)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    configure_logging(settings.log_level)


@main.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the message and queue tables."""
    settings = _settings(ctx)

    async def _init() -> None:
        db = DeliveryDb(settings.database_url)
        queue_db = QueueDb(settings.queue_url)
        try:
            await db.init_db()
            await queue_db.init_db()
        finally:
            await queue_db.close()
            await db.close()

    run_async(_init())
    print_success(f"Schema ready ({settings.database_url})")


@main.command("run")
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run the delivery worker until SIGINT/SIGTERM."""
    settings = _settings(ctx)
    console.print(
        f"Starting worker on queue [cyan]{settings.queue_name}[/cyan] "
        f"(concurrency {settings.concurrency}, limiter {settings.limiter_max}/{settings.limiter_duration_ms}ms)"
    )
    run_async(DeliveryService(settings).run_forever())


# ============================================================================
# Senders
# ============================================================================

@main.group("tenants")
def tenants() -> None:
    """Manage tenants and their provider credential."""


@tenants.command("add")
@click.argument("tenant_id")
@click.option("--name", "-n", help="Human-readable tenant name.")
@click.option("--secret", required=True, help="Provider access token used as bearer credential.")
@click.pass_context
def tenants_add(ctx: click.Context, tenant_id: str, name: str | None, secret: str) -> None:
    """Add or update a tenant."""

    async def _add() -> None:
        db = await _open_db(_settings(ctx))
        try:
            await db.tenants.add({"id": tenant_id, "name": name or tenant_id, "meta_app_secret": secret})
        finally:
            await db.close()

    run_async(_add())
    print_success(f"Tenant '{tenant_id}' saved")


@main.group("phones")
def phones() -> None:
    """Manage sender phone numbers."""


@phones.command("add")
@click.argument("phone_number_id")
@click.option("--tenant", "tenant_id", required=True, help="Owning tenant id.")
@click.option("--provider-id", required=True, help="WhatsApp Business phone number id.")
@click.option("--display", "display_phone_number", help="Display phone number.")
@click.pass_context
def phones_add(
    ctx: click.Context,
    phone_number_id: str,
    tenant_id: str,
    provider_id: str,
    display_phone_number: str | None,
) -> None:
    """Add or update a sender phone number."""

    async def _add() -> bool:
        db = await _open_db(_settings(ctx))
        try:
            if await db.tenants.get(tenant_id) is None:
                return False
            await db.phone_numbers.add(
                {
                    "id": phone_number_id,
                    "tenant_id": tenant_id,
                    "whatsapp_business_phone_number_id": provider_id,
                    "display_phone_number": display_phone_number,
                }
            )
            return True
        finally:
            await db.close()

    if not run_async(_add()):
        print_error(f"Tenant '{tenant_id}' not found")
        sys.exit(1)
    print_success(f"Phone number '{phone_number_id}' saved")


# ============================================================================
# Enqueue
# ============================================================================

def _enqueue(ctx: click.Context, phone_number_id: str, to: str, message_type: str, content: dict[str, Any]) -> None:
    settings = _settings(ctx)

    async def _submit():
        db = await _open_db(settings)
        queue_db = QueueDb(settings.queue_url)
        try:
            await queue_db.init_db()
            queue = JobQueue(queue_db.jobs, name=settings.queue_name, default_max_attempts=settings.max_attempts)
            return await submit_message(
                db, queue, phone_number_id=phone_number_id, to=to, type=message_type, content=content
            )
        finally:
            await queue_db.close()
            await db.close()

    try:
        message_job, job_id = run_async(_submit())
    except ValidationError as exc:
        print_error(f"Invalid message: {exc.errors()[0].get('msg')}")
        sys.exit(1)
    except SenderNotFoundError as exc:
        print_error(exc.message)
        sys.exit(1)
    print_success(f"Message {message_job.message_id} queued (job {job_id})")


@main.group("enqueue")
def enqueue() -> None:
    """Queue an outbound message for delivery."""


@enqueue.command("text")
@click.argument("phone_number_id")
@click.argument("to")
@click.argument("text")
@click.pass_context
def enqueue_text(ctx: click.Context, phone_number_id: str, to: str, text: str) -> None:
    """Queue a text message."""
    _enqueue(ctx, phone_number_id, to, "text", {"text": text})


@enqueue.command("template")
@click.argument("phone_number_id")
@click.argument("to")
@click.argument("template_json")
@click.pass_context
def enqueue_template(ctx: click.Context, phone_number_id: str, to: str, template_json: str) -> None:
    """Queue a template message; TEMPLATE_JSON is the provider template object."""
    try:
        template = json.loads(template_json)
    except json.JSONDecodeError as exc:
        print_error(f"Invalid template JSON: {exc}")
        sys.exit(1)
    if not isinstance(template, dict):
        print_error("Template JSON must be an object")
        sys.exit(1)
    _enqueue(ctx, phone_number_id, to, "template", {"template": template})


@enqueue.command("media")
@click.argument("phone_number_id")
@click.argument("to")
@click.argument("media_type", type=click.Choice([m.value for m in MediaType]))
@click.argument("media_url")
@click.option("--caption", help="Optional caption.")
@click.pass_context
def enqueue_media(
    ctx: click.Context,
    phone_number_id: str,
    to: str,
    media_type: str,
    media_url: str,
    caption: str | None,
) -> None:
    """Queue a media message."""
    content: dict[str, Any] = {"mediaType": media_type, "mediaUrl": media_url}
    if caption:
        content["caption"] = caption
    _enqueue(ctx, phone_number_id, to, "media", content)


# ============================================================================
# Inspection
# ============================================================================

@main.command("messages")
@click.option("--status", type=click.Choice(list(MESSAGE_STATUSES)), help="Filter by status.")
@click.option("--limit", type=int, default=50, show_default=True, help="Maximum rows.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def messages(ctx: click.Context, status: str | None, limit: int, as_json: bool) -> None:
    """List message records, newest first."""

    async def _list():
        db = await _open_db(_settings(ctx))
        try:
            return await db.messages.list_messages(status=status, limit=limit)
        finally:
            await db.close()

    rows = run_async(_list())
    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return
    if not rows:
        console.print("[dim]No messages.[/dim]")
        return

    table = Table(title="Messages")
    table.add_column("ID", style="cyan")
    table.add_column("Sender")
    table.add_column("To")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Provider ID")
    table.add_column("Error")
    styles = {"sent": "green", "failed": "red", "queued": "yellow"}
    for row in rows:
        status_value = row["status"]
        error = f"{row['error_code']}: {row['error_message']}" if row.get("error_code") else ""
        table.add_row(
            row["id"],
            row["phone_number_id"],
            row["to_address"],
            row["type"],
            f"[{styles.get(status_value, 'white')}]{status_value}[/]",
            row.get("whatsapp_message_id") or "",
            error,
        )
    console.print(table)


@main.command("usage")
@click.option("--tenant", "tenant_id", help="Filter by tenant id.")
@click.option("--date", "usage_date", help="Filter by UTC day (YYYY-MM-DD).")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def usage(ctx: click.Context, tenant_id: str | None, usage_date: str | None, as_json: bool) -> None:
    """List billable usage per tenant, sender and day."""

    async def _list():
        db = await _open_db(_settings(ctx))
        try:
            return await db.usage_records.list_usage(tenant_id=tenant_id, usage_date=usage_date)
        finally:
            await db.close()

    rows = run_async(_list())
    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return
    if not rows:
        console.print("[dim]No usage recorded.[/dim]")
        return

    table = Table(title="Usage")
    table.add_column("Date")
    table.add_column("Tenant", style="cyan")
    table.add_column("Sender")
    table.add_column("Messages", justify="right")
    table.add_column("Cost", justify="right")
    for row in rows:
        table.add_row(
            row["usage_date"],
            row["tenant_id"],
            row["phone_number_id"],
            str(row["message_count"]),
            str(row["cost_cents"]),
        )
    console.print(table)


if __name__ == "__main__":
    main()
