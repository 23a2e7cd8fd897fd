#!/usr/bin/env python3
"""
Summarizer CLI - operator tooling for the Summarizer Pro backend.

Commands:
    settings    System settings (shared OpenRouter key, per-tier key rules)
    models      Tier -> model table
    users       List users, change a tier, student approval, purge a user
    usage       Per-user stats, daily analytics, reset
    stats       Dashboard totals
    logs        Admin audit trail
    config      Manage local configuration
    health      Check backend health
"""
import json
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import typer
from rich.console import Console
from rich.table import Table

from summarizer_cli.api import (
    api_request as _api_request,
    load_config,
    save_config,
    get_url,
    path_segment,
    APIError,
    ConfigError,
    ConnectionError,
    CONFIG_FILE,
    DEFAULT_URL,
)

# Initialize Typer apps
app = typer.Typer(
    name="summarizer",
    help="Summarizer CLI - Summarizer Pro backend administration",
    no_args_is_help=True,
)
settings_app = typer.Typer(help="System settings (requires ADMIN_API_KEY)")
models_app = typer.Typer(help="Tier to model mapping (requires ADMIN_API_KEY)")
users_app = typer.Typer(help="User administration (requires ADMIN_API_KEY)")
usage_app = typer.Typer(help="Usage statistics")
config_app = typer.Typer(help="Manage local configuration (~/.summarizer)")

app.add_typer(settings_app, name="settings")
app.add_typer(models_app, name="models")
app.add_typer(users_app, name="users")
app.add_typer(usage_app, name="usage")
app.add_typer(config_app, name="config")

# Rich console for colored output
console = Console()
err_console = Console(stderr=True)


def api_request(method: str, endpoint: str, data: dict = None, timeout: int = 30) -> dict:
    """Make API request with CLI error handling."""
    try:
        return _api_request(method, endpoint, data, timeout)
    except APIError as e:
        err_console.print(f"[red]Error {e.status_code}:[/red] {e.detail}")
        raise typer.Exit(1)
    except ConfigError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except ConnectionError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def mask_key(key: str) -> str:
    """Mask a sensitive key for display."""
    if not key:
        return ""
    return key[:12] + "..." if len(key) > 12 else "***"


def parse_bool(value: str) -> str:
    """Normalize yes/no style input to the 'true'/'false' strings the server stores."""
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "y", "1", "on"):
        return "true"
    if lowered in ("false", "no", "n", "0", "off"):
        return "false"
    raise typer.BadParameter(f"Expected true or false, got '{value}'")


# =============================================================================
# Config Commands
# =============================================================================

@config_app.command("init")
def config_init():
    """Initialize config directory and file.

    Example: summarizer config init
    """
    if CONFIG_FILE.exists():
        console.print(f"Config already exists: [cyan]{CONFIG_FILE}[/cyan]")
        config = load_config()
        if config:
            console.print("\nCurrent settings:")
            for k, v in config.items():
                if "key" in k.lower():
                    v = mask_key(v)
                console.print(f"  {k}: [dim]{v}[/dim]")
        return

    save_config({"url": DEFAULT_URL})
    console.print(f"[green]✓[/green] Created: [cyan]{CONFIG_FILE}[/cyan]")
    console.print("\nAdd your admin key:")
    console.print("  [cyan]summarizer config set admin_api_key xxx[/cyan]")
    console.print("  [cyan]summarizer config set admin_email you@example.com[/cyan]")


@config_app.command("show")
def config_show(
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show current configuration.

    Example: summarizer config show
    """
    config = load_config()

    if not config:
        console.print(f"No config at [cyan]{CONFIG_FILE}[/cyan]")
        console.print("Run: [cyan]summarizer config init[/cyan]")
        return

    masked = {k: mask_key(v) if "key" in k.lower() else v for k, v in config.items()}
    if as_json:
        console.print(json.dumps(masked, indent=2))
        return

    console.print(f"[bold]Config:[/bold] {CONFIG_FILE}\n")
    for k, v in masked.items():
        console.print(f"  {k}: [cyan]{v}[/cyan]")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Config key (admin_api_key, admin_email, url)"),
    value: str = typer.Argument(..., help="Config value"),
):
    """Set a configuration value.

    Example: summarizer config set url https://api.example.com
    """
    config = load_config()
    config[key] = value
    save_config(config)
    display = mask_key(value) if "key" in key.lower() else value
    console.print(f"[green]✓[/green] Set {key} = [cyan]{display}[/cyan]")


@config_app.command("get")
def config_get(
    key: str = typer.Argument(..., help="Config key"),
    raw: bool = typer.Option(False, "--raw", help="Output raw value"),
):
    """Get a configuration value.

    Example: summarizer config get url --raw
    """
    value = load_config().get(key)
    if value is None:
        err_console.print(f"[red]Key not found:[/red] {key}")
        raise typer.Exit(1)

    if raw:
        print(value)
    else:
        display = mask_key(value) if "key" in key.lower() else value
        console.print(f"{key}: [cyan]{display}[/cyan]")


@config_app.command("path")
def config_path():
    """Show config file path."""
    print(CONFIG_FILE)


# =============================================================================
# Settings Commands
# =============================================================================

@settings_app.command("list")
def settings_list(
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List system settings. Secret values come back masked.

    Example: summarizer settings list
    """
    result = api_request("GET", "/api/admin/settings")
    settings = result.get("settings", {})

    if as_json:
        console.print(json.dumps(result, indent=2))
        return

    if not settings:
        console.print("No settings found.")
        return

    table = Table()
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_column("Updated By", style="dim")
    table.add_column("Description", style="dim")

    for key, entry in settings.items():
        value = entry.get("value") or ""
        if entry.get("isSecret"):
            value = f"[yellow]{value or '(unset)'}[/yellow]"
        table.add_row(key, value, entry.get("updatedBy") or "-", entry.get("description") or "")

    console.print(table)


@settings_app.command("set")
def settings_set(
    key: str = typer.Argument(..., help="Setting key (e.g. openrouter_api_key)"),
    value: str = typer.Argument(..., help="New value"),
):
    """Update a system setting.

    Example: summarizer settings set openrouter_api_key sk-or-v1-xxx
    """
    api_request("PUT", f"/api/admin/settings/{path_segment(key)}", {"value": value})
    display = mask_key(value) if "key" in key.lower() else value
    console.print(f"[green]✓[/green] Updated {key} = [cyan]{display}[/cyan]")


@settings_app.command("require-key")
def settings_require_key(
    tier: str = typer.Argument(..., help="Tier name (free, trial, premium, ...)"),
    required: str = typer.Argument(..., help="true if the tier must bring its own API key"),
):
    """Set whether a tier must bring its own OpenRouter key.

    Example: summarizer settings require-key trial false
    """
    value = parse_bool(required)
    api_request("PUT", f"/api/admin/settings/require_api_key_for_{path_segment(tier)}", {"value": value})
    state = "must bring their own key" if value == "true" else "use the shared key"
    console.print(f"[green]✓[/green] {tier} users {state}")


# =============================================================================
# Model Commands
# =============================================================================

@models_app.command("list")
def models_list(
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show the model assigned to each tier.

    Example: summarizer models list
    """
    result = api_request("GET", "/api/admin/models")
    models = result.get("models", [])

    if as_json:
        console.print(json.dumps(result, indent=2))
        return

    if not models:
        console.print("No models configured.")
        return

    table = Table()
    table.add_column("Tier", style="cyan")
    table.add_column("Model")
    table.add_column("Max Output", justify="right")
    table.add_column("$/1M In", justify="right")
    table.add_column("$/1M Out", justify="right")
    table.add_column("Context", justify="right", style="dim")

    for m in models:
        table.add_row(
            m.get("tier"),
            m.get("modelId"),
            f"{m.get('maxOutputTokens', 0):,}",
            f"${m.get('costPer1MInput', 0):.2f}",
            f"${m.get('costPer1MOutput', 0):.2f}",
            f"{m['contextWindow']:,}" if m.get("contextWindow") else "-",
        )

    console.print(table)


@models_app.command("show")
def models_show(
    tier: str = typer.Argument(..., help="Tier name"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show one tier's model and pricing.

    Example: summarizer models show managed
    """
    result = api_request("GET", f"/api/admin/models/{path_segment(tier)}")
    model = result.get("model", {})

    if as_json:
        console.print(json.dumps(result, indent=2))
        return

    console.print(f"[bold]{model.get('tier', tier)}[/bold]: [cyan]{model.get('modelId')}[/cyan]")
    if model.get("modelName"):
        console.print(f"  Name: {model['modelName']}")
    console.print(f"  Max output: {model.get('maxOutputTokens', 0):,} tokens")
    console.print(
        f"  Pricing: ${model.get('costPer1MInput', 0):.2f} in / ${model.get('costPer1MOutput', 0):.2f} out per 1M"
    )
    if model.get("contextWindow"):
        console.print(f"  Context: {model['contextWindow']:,} tokens")
    if model.get("updatedBy"):
        console.print(f"  [dim]Updated by {model['updatedBy']} at {model.get('updatedAt')}[/dim]")


@models_app.command("set")
def models_set(
    tier: str = typer.Argument(..., help="Tier to update"),
    model_id: str = typer.Option(None, "--model", "-m", help="Provider model id"),
    model_name: str = typer.Option(None, "--name", help="Display name"),
    max_output_tokens: int = typer.Option(None, "--max-output", help="Output token cap"),
    cost_in: float = typer.Option(None, "--cost-in", help="USD per 1M input tokens"),
    cost_out: float = typer.Option(None, "--cost-out", help="USD per 1M output tokens"),
    context_window: int = typer.Option(None, "--context", help="Context window in tokens"),
):
    """Change a tier's model or pricing. Omitted options stay as they are.

    Example: summarizer models set managed --model anthropic/claude-sonnet-4.5 --cost-in 3 --cost-out 15
    """
    fields = {
        "modelId": model_id,
        "modelName": model_name,
        "maxOutputTokens": max_output_tokens,
        "costPer1MInput": cost_in,
        "costPer1MOutput": cost_out,
        "contextWindow": context_window,
    }
    data = {k: v for k, v in fields.items() if v is not None}
    if not data:
        err_console.print("[red]Error:[/red] Nothing to update. Pass at least one option.")
        raise typer.Exit(1)

    result = api_request("PUT", f"/api/admin/models/{path_segment(tier)}", data)
    model = result.get("model", {})
    console.print(f"[green]✓[/green] {tier} now uses [bold]{model.get('modelId')}[/bold]")
    console.print(
        f"  ${model.get('costPer1MInput', 0):.2f} in / ${model.get('costPer1MOutput', 0):.2f} out per 1M tokens, "
        f"max {model.get('maxOutputTokens', 0):,} output tokens"
    )


# =============================================================================
# User Commands
# =============================================================================

@users_app.command("list")
def users_list(
    page: int = typer.Option(1, "--page", help="Page number"),
    limit: int = typer.Option(50, "--limit", "-n", help="Users per page"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List users, newest first.

    Example: summarizer users list --page 2
    """
    result = api_request("GET", f"/api/admin/users?page={page}&limit={limit}")
    users = result.get("users", [])
    pagination = result.get("pagination", {})

    if as_json:
        console.print(json.dumps(result, indent=2))
        return

    if not users:
        console.print("No users found.")
        return

    table = Table()
    table.add_column("User", style="cyan")
    table.add_column("Email")
    table.add_column("Tier")
    table.add_column("Status", style="dim")
    table.add_column("Student")
    table.add_column("Videos", justify="right")
    table.add_column("Cost", justify="right")

    for u in users:
        table.add_row(
            u.get("extensionUserId"),
            u.get("email") or "-",
            u.get("tier"),
            u.get("subscriptionStatus") or "-",
            "[green]yes[/green]" if u.get("studentVerified") else "no",
            f"{u.get('totalVideos', 0):,}",
            f"${u.get('totalCost', 0):.4f}",
        )

    console.print(table)
    console.print(
        f"[dim]Page {pagination.get('page', page)} of {pagination.get('totalPages', 1)} "
        f"({pagination.get('totalUsers', len(users))} users)[/dim]"
    )


@users_app.command("approve-student")
def users_approve_student(
    extension_user_id: str = typer.Argument(..., help="Extension user id"),
):
    """Verify a user as a student. Unlocks the student plans for a year.

    Example: summarizer users approve-student abc123
    """
    result = api_request("POST", f"/api/admin/users/{path_segment(extension_user_id)}/student/approve")
    user = result.get("user", {})
    console.print(f"[green]✓[/green] {extension_user_id} verified as a student")
    if user.get("studentVerificationExpiresAt"):
        console.print(f"  Expires: [dim]{user['studentVerificationExpiresAt']}[/dim]")


@users_app.command("reject-student")
def users_reject_student(
    extension_user_id: str = typer.Argument(..., help="Extension user id"),
    reason: str = typer.Option(None, "--reason", "-r", help="Recorded in the audit log"),
):
    """Deny or revoke a user's student status.

    Example: summarizer users reject-student abc123 --reason "Document unreadable"
    """
    data = {"reason": reason} if reason else None
    api_request("POST", f"/api/admin/users/{path_segment(extension_user_id)}/student/reject", data)
    console.print(f"[green]✓[/green] {extension_user_id} is no longer a verified student")


@users_app.command("set-tier")
def users_set_tier(
    extension_user_id: str = typer.Argument(..., help="Extension user id"),
    tier: str = typer.Argument(..., help="New tier"),
    plan_name: str = typer.Option(None, "--plan", "-p", help="Plan name to show the user"),
):
    """Set a user's tier directly. Later billing events may change it again.

    Example: summarizer users set-tier abc123 premium --plan "Comp"
    """
    data = {"tier": tier}
    if plan_name:
        data["planName"] = plan_name

    result = api_request("PUT", f"/api/admin/users/{path_segment(extension_user_id)}/tier", data)
    user = result.get("user", {})
    console.print(f"[green]✓[/green] {extension_user_id}: [cyan]{user.get('tier', tier)}[/cyan]")
    if user.get("planName"):
        console.print(f"  Plan: [dim]{user['planName']}[/dim]")


@users_app.command("delete")
def users_delete(
    extension_user_id: str = typer.Argument(..., help="Extension user id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a user and their usage history. Stripe records are not touched.

    Example: summarizer users delete abc123 --yes
    """
    if not yes:
        typer.confirm(f"Delete {extension_user_id} and all their usage?", abort=True)

    api_request("DELETE", f"/api/admin/users/{path_segment(extension_user_id)}")
    console.print(f"[green]✓[/green] Deleted {extension_user_id}")


# =============================================================================
# Usage Commands
# =============================================================================

@usage_app.command("show")
def usage_show(
    extension_user_id: str = typer.Argument(..., help="Extension user id"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show one user's usage totals.

    Example: summarizer usage show abc123
    """
    result = api_request("GET", f"/api/user/{path_segment(extension_user_id)}/stats")
    stats = result.get("stats", {})

    if as_json:
        console.print(json.dumps(result, indent=2))
        return

    console.print(f"[bold]Usage for {extension_user_id}[/bold]\n")
    console.print(f"  Videos: [cyan]{stats.get('total_videos', 0):,}[/cyan]")
    console.print(
        f"    today {stats.get('videos_today', 0):,} / "
        f"7d {stats.get('videos_7d', 0):,} / 30d {stats.get('videos_30d', 0):,}"
    )
    console.print(f"  Tokens: [dim]{stats.get('total_tokens', 0):,}[/dim]")
    console.print(f"  API Calls: [dim]{stats.get('total_api_calls', 0):,}[/dim]")
    console.print(f"  Cost: [cyan]${stats.get('total_cost', 0):.4f}[/cyan]")


@usage_app.command("analytics")
def usage_analytics(
    days: int = typer.Option(30, "--days", "-d", help="Days to include"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show per-day usage across all users.

    Example: summarizer usage analytics --days 7
    """
    result = api_request("GET", f"/api/admin/usage?days={days}")

    if as_json:
        console.print(json.dumps(result, indent=2))
        return

    totals = result.get("totals", {})
    console.print(f"[bold]Last {days} days[/bold]")
    console.print(
        f"  {totals.get('videos_processed', 0):,} videos, {totals.get('tokens_used', 0):,} tokens, "
        f"{totals.get('api_calls', 0):,} calls, ${totals.get('cost_incurred', 0):.4f}\n"
    )

    daily = result.get("daily", [])
    if not daily:
        console.print("No usage recorded.")
        return

    table = Table()
    table.add_column("Date", style="cyan")
    table.add_column("Users", justify="right")
    table.add_column("Videos", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Calls", justify="right", style="dim")
    table.add_column("Cost", justify="right")

    for day in daily:
        table.add_row(
            day.get("date"),
            str(day.get("active_users", 0)),
            f"{day.get('videos_processed', 0):,}",
            f"{day.get('tokens_used', 0):,}",
            f"{day.get('api_calls', 0):,}",
            f"${day.get('cost_incurred', 0):.4f}",
        )

    console.print(table)


@usage_app.command("clear")
def usage_clear(
    extension_user_id: str = typer.Option(None, "--user", "-u", help="Only clear this user"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Clear usage history for one user, or everyone.

    Example: summarizer usage clear --user abc123
    """
    target = extension_user_id or "ALL users"
    if not yes:
        typer.confirm(f"Clear usage history for {target}?", abort=True)

    endpoint = "/api/admin/usage"
    if extension_user_id:
        endpoint += f"?extensionUserId={path_segment(extension_user_id)}"
    result = api_request("DELETE", endpoint)
    console.print(f"[green]✓[/green] Cleared {result.get('deleted', 0)} usage rows for {target}")


# =============================================================================
# Dashboard Commands
# =============================================================================

@app.command("stats")
def stats(
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show user counts per tier and usage totals.

    Example: summarizer stats
    """
    result = api_request("GET", "/api/admin/stats")
    data = result.get("stats", {})

    if as_json:
        console.print(json.dumps(result, indent=2))
        return

    console.print(f"[bold]Users:[/bold] {data.get('total_users', 0):,}")
    for key, count in data.items():
        if key.endswith("_users") and key != "total_users":
            console.print(f"  {key[:-len('_users')]}: [cyan]{count:,}[/cyan]")
    console.print(
        f"\n[bold]Videos:[/bold] {data.get('total_videos', 0):,} "
        f"([cyan]{data.get('videos_today', 0):,}[/cyan] today)"
    )
    console.print(
        f"[bold]Cost:[/bold] ${data.get('total_cost', 0):.4f} "
        f"([cyan]${data.get('cost_today', 0):.4f}[/cyan] today)"
    )


@app.command("logs")
def logs(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries"),
    action: str = typer.Option(None, "--action", "-a", help="Only this action (e.g. UPDATE_TIER)"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show the admin audit trail, most recent first.

    Example: summarizer logs --action update_setting
    """
    endpoint = f"/api/admin/logs?limit={limit}"
    if action:
        endpoint += f"&action={path_segment(action)}"
    result = api_request("GET", endpoint)
    entries = result.get("logs", [])

    if as_json:
        console.print(json.dumps(result, indent=2))
        return

    if not entries:
        console.print("No admin actions recorded.")
        return

    table = Table()
    table.add_column("When", style="dim")
    table.add_column("Admin")
    table.add_column("Action", style="cyan")
    table.add_column("Target")
    table.add_column("Details", style="dim")

    for entry in entries:
        table.add_row(
            entry.get("createdAt") or "-",
            entry.get("adminEmail") or "-",
            entry.get("action"),
            entry.get("targetEntity") or "-",
            json.dumps(entry.get("details") or {}),
        )

    console.print(table)


# =============================================================================
# Health Command
# =============================================================================

@app.command("health")
def health(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show full response"),
):
    """Check backend health.

    Example: summarizer health
    """
    url = f"{get_url().rstrip('/')}/health"
    req = Request(url)

    try:
        with urlopen(req, timeout=10) as resp:
            result = json.loads(resp.read().decode())
    except HTTPError as e:
        # 503 when degraded still carries the health body
        try:
            result = json.loads(e.read().decode())
        except ValueError:
            err_console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
    except (URLError, ValueError) as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    status = result.get("status", "unknown")
    service = result.get("service", "summarizer")
    version = result.get("version", "?")

    if status == "healthy":
        console.print(f"[green]✓[/green] {service} v{version}: [green]{status}[/green]")
    else:
        console.print(f"[yellow]⚠[/yellow] {service} v{version}: [yellow]{status}[/yellow]")

    checks = result.get("checks", {})
    database = checks.get("database", {})
    if database:
        icon = "[green]✓[/green]" if database.get("status") == "ok" else "[red]✗[/red]"
        console.print(f"  {icon} Database: {database.get('status')}")
    stripe = checks.get("stripe", {})
    if stripe:
        icon = "[green]✓[/green]" if stripe.get("configured") else "[red]✗[/red]"
        console.print(f"  {icon} Stripe: {'configured' if stripe.get('configured') else 'not configured'}")

    if verbose:
        console.print(json.dumps(result, indent=2))


@app.command("version")
def version():
    """Show CLI version."""
    console.print("summarizer-cli [cyan]v1.0.0[/cyan] (Typer)")


# =============================================================================
# Main
# =============================================================================

def main():
    app()


if __name__ == "__main__":
    main()
