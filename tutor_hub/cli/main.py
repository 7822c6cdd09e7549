"""TutorHub CLI — tutor command."""

from __future__ import annotations

import json
from typing import Any

import click

from tutor_hub.cli.client import TutorClient


def _format_table(rows: list[dict], columns: list[str]) -> str:
    """Simple table formatter."""
    if not rows:
        return "No results."
    widths = {c: len(c) for c in columns}
    for row in rows:
        for c in columns:
            val = str(row.get(c, ""))
            widths[c] = max(widths[c], len(val))

    header = "  ".join(c.upper().ljust(widths[c]) for c in columns)
    separator = "  ".join("-" * widths[c] for c in columns)
    lines = [header, separator]
    for row in rows:
        line = "  ".join(str(row.get(c, "")).ljust(widths[c]) for c in columns)
        lines.append(line)
    return "\n".join(lines)


@click.group()
@click.option("--api", default="http://localhost:8400", envvar="TUTOR_API", help="API base URL")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
@click.option("--user", "user_id", default=None, envvar="TUTOR_USER_ID", help="Acting user id")
@click.pass_context
def cli(ctx: click.Context, api: str, output_format: str, user_id: str | None) -> None:
    """TutorHub CLI — administer users, session requests and notifications."""
    ctx.ensure_object(dict)
    ctx.obj = TutorClient(base_url=api, user_id=user_id)
    ctx.meta["output_format"] = output_format


def _output(ctx: click.Context, data: Any, columns: list[str] | None = None) -> None:
    fmt = ctx.meta.get("output_format", "table")
    if fmt == "json":
        click.echo(json.dumps(data, indent=2, default=str))
    elif isinstance(data, list) and columns:
        click.echo(_format_table(data, columns))
    else:
        click.echo(json.dumps(data, indent=2, default=str))


# --- Admin commands ---


@cli.group()
def admin() -> None:
    """Platform administration."""


@admin.command("stats")
@click.pass_context
def admin_stats(ctx: click.Context) -> None:
    """Show platform statistics."""
    client: TutorClient = ctx.obj
    _output(ctx, client.admin_stats())


@admin.command("users")
@click.option("--search", default=None)
@click.option("--type", "user_type", type=click.Choice(["student", "teacher", "parent", "admin"]), default=None)
@click.option("--status", type=click.Choice(["active", "inactive", "suspended"]), default=None)
@click.pass_context
def admin_users(ctx: click.Context, search: str | None, user_type: str | None, status: str | None) -> None:
    """List users."""
    client: TutorClient = ctx.obj
    params: dict[str, Any] = {}
    if search:
        params["search"] = search
    if user_type:
        params["type"] = user_type
    if status:
        params["status"] = status
    data = client.list_users(**params)
    _output(ctx, data, ["id", "name", "email", "type", "status", "last_activity"])


@admin.command("suspend")
@click.argument("user_id")
@click.pass_context
def admin_suspend(ctx: click.Context, user_id: str) -> None:
    """Suspend a user account."""
    client: TutorClient = ctx.obj
    client.suspend_user(user_id)
    click.echo(f"Suspended {user_id}")


@admin.command("reactivate")
@click.argument("user_id")
@click.pass_context
def admin_reactivate(ctx: click.Context, user_id: str) -> None:
    """Reactivate a suspended user account."""
    client: TutorClient = ctx.obj
    client.reactivate_user(user_id)
    click.echo(f"Reactivated {user_id}")


@admin.command("verifications")
@click.pass_context
def admin_verifications(ctx: click.Context) -> None:
    """List pending teacher verifications."""
    client: TutorClient = ctx.obj
    data = client.list_verifications()
    _output(ctx, data, ["id", "name", "email", "subject", "experience", "documents"])


@admin.command("approve")
@click.argument("teacher_id")
@click.pass_context
def admin_approve(ctx: click.Context, teacher_id: str) -> None:
    """Approve a teacher's verification."""
    client: TutorClient = ctx.obj
    client.approve_teacher(teacher_id)
    click.echo(f"Approved {teacher_id}")


@admin.command("reject")
@click.argument("teacher_id")
@click.option("--reason", required=True)
@click.pass_context
def admin_reject(ctx: click.Context, teacher_id: str, reason: str) -> None:
    """Reject a teacher's verification."""
    client: TutorClient = ctx.obj
    client.reject_teacher(teacher_id, reason)
    click.echo(f"Rejected {teacher_id}")


@admin.command("settings")
@click.pass_context
def admin_settings(ctx: click.Context) -> None:
    """Show system settings."""
    client: TutorClient = ctx.obj
    settings = client.get_settings()
    rows = [{"key": k, "value": v} for k, v in sorted(settings.items())]
    _output(ctx, rows, ["key", "value"])


@admin.command("set-setting")
@click.argument("key")
@click.argument("value")
@click.pass_context
def admin_set_setting(ctx: click.Context, key: str, value: str) -> None:
    """Set a system setting. VALUE is parsed as JSON when possible."""
    client: TutorClient = ctx.obj
    try:
        parsed: Any = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    result = client.set_setting(key, parsed)
    _output(ctx, result)


@admin.command("health")
@click.pass_context
def admin_health(ctx: click.Context) -> None:
    """Show system health."""
    client: TutorClient = ctx.obj
    _output(ctx, client.system_health())


@admin.command("expire-requests")
@click.pass_context
def admin_expire_requests(ctx: click.Context) -> None:
    """Expire overdue pending session requests now."""
    client: TutorClient = ctx.obj
    result = client.expire_requests()
    click.echo(f"Expired {result['expired']} request(s)")


# --- Session request commands ---


@cli.group()
def requests() -> None:
    """Session requests for the acting user."""


@requests.command("list")
@click.option("--status", type=click.Choice(["pending", "accepted", "declined", "cancelled", "expired"]), default=None)
@click.pass_context
def requests_list(ctx: click.Context, status: str | None) -> None:
    """List session requests."""
    client: TutorClient = ctx.obj
    params = {"status": status} if status else {}
    data = client.list_requests(**params)
    _output(ctx, data, ["id", "student_id", "teacher_id", "status", "requested_start", "tokens_required"])


@requests.command("accept")
@click.argument("request_id")
@click.option("--response", default=None, help="Message to the student")
@click.pass_context
def requests_accept(ctx: click.Context, request_id: str, response: str | None) -> None:
    """Accept a pending request."""
    client: TutorClient = ctx.obj
    client.accept_request(request_id, response)
    click.echo(f"Accepted {request_id}")


@requests.command("decline")
@click.argument("request_id")
@click.option("--reason", default=None)
@click.pass_context
def requests_decline(ctx: click.Context, request_id: str, reason: str | None) -> None:
    """Decline a pending request; the student's tokens are refunded."""
    client: TutorClient = ctx.obj
    client.decline_request(request_id, reason)
    click.echo(f"Declined {request_id}")


# --- Notification commands ---


@cli.group()
def notifications() -> None:
    """Notifications for the acting user."""


@notifications.command("list")
@click.option("--unread", is_flag=True, help="Only unread notifications")
@click.option("--limit", default=20, type=int)
@click.pass_context
def notifications_list(ctx: click.Context, unread: bool, limit: int) -> None:
    """List notifications."""
    client: TutorClient = ctx.obj
    params: dict[str, Any] = {"limit": limit}
    if unread:
        params["unread_only"] = True
    data = client.list_notifications(**params)
    if ctx.meta.get("output_format") == "json":
        _output(ctx, data)
        return
    click.echo(f"{data['unread_count']} unread of {data['total']}")
    _output(ctx, data["notifications"], ["id", "type", "title", "is_read", "created_at"])


@notifications.command("read-all")
@click.pass_context
def notifications_read_all(ctx: click.Context) -> None:
    """Mark every notification as read."""
    client: TutorClient = ctx.obj
    client.mark_all_read()
    click.echo("All notifications marked as read")


if __name__ == "__main__":
    cli()
