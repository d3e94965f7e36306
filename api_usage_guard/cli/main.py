"""
CLI interface for API Usage Guard.

Provides command-line access to quota status, reports, alerts and error logs.
"""

import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from api_usage_guard.core.reports import build_quota_report, build_weekly_report
from api_usage_guard.core.tracker import get_tracker
from api_usage_guard.demo.seed_demo_data import seed_demo_data
from api_usage_guard.logging_config import setup_logging
from api_usage_guard.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_SEVERITY_STYLES = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "dim",
}


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (defaults to API_USAGE_GUARD_LOG_LEVEL)"
    )
):
    """API Usage Guard CLI."""
    setup_logging(log_level)
    if ctx.invoked_subcommand is None:
        console.print("API Usage Guard - Use --help to see available commands")


@app.command()
def init():
    """Initialize the API Usage Guard database."""
    try:
        initialize_schema(get_tracker().repository.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _format_limit(limit: Optional[dict]) -> str:
    if not limit:
        return "-"
    text = f"{limit['used']:,}/{limit['limit']:,}"
    if "percent_used" in limit:
        text += f" ({limit['percent_used']}%)"
    return text


@app.command()
def status():
    """Show quota usage for every configured service."""
    try:
        report = build_quota_report(get_tracker())
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Service Quotas")
    table.add_column("Service")
    table.add_column("Daily")
    table.add_column("Monthly")
    table.add_column("Per hour")
    table.add_column("Per minute")
    for quota in report["services"]:
        if not quota["has_quota"]:
            continue
        limits = quota["limits"]
        table.add_row(
            quota["service_name"],
            _format_limit(limits.get("daily")),
            _format_limit(limits.get("monthly")),
            _format_limit(limits.get("per_hour")),
            _format_limit(limits.get("per_minute")),
        )
    console.print(table)

    for warning in report["warnings"]:
        console.print(
            f"[yellow]![/] {warning['service_name']} at {warning['percent_used']}% "
            f"of daily limit ({warning['remaining']:,} remaining)"
        )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def report():
    """Print the weekly usage report."""
    try:
        weekly = build_weekly_report(get_tracker())
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    summary = weekly["summary"]
    console.print("\n[bold]Weekly API Usage Report[/bold]")
    console.print("-" * 40)
    console.print(f"Period: {weekly['period']['start'][:10]} to {weekly['period']['end'][:10]}")
    console.print(f"Total requests: {summary['total_requests']:,}")
    console.print(f"Success rate: {summary['success_rate']:.2f}%")
    console.print(f"Rate limit hits: {summary['rate_limit_hits']:,}")
    console.print(f"Services used: {summary['services_used']}")

    if weekly["by_service"]:
        table = Table()
        table.add_column("Service")
        table.add_column("Requests", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Success rate", justify="right")
        table.add_column("Avg ms", justify="right")
        for row in weekly["by_service"]:
            table.add_row(
                row["service_name"],
                f"{row['total_requests']:,}",
                f"{row['failed_requests']:,}",
                f"{row['success_rate']:.2f}%",
                f"{row['avg_response_time'] or 0:,.0f}",
            )
        console.print(table)

    alerts = weekly["alerts"]
    console.print(
        f"Alerts: {alerts['total']} ({alerts['unacknowledged']} unacknowledged)"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def alerts(
    show_all: bool = typer.Option(
        False, "--all", "-a", help="Include acknowledged alerts"
    ),
    service: Optional[str] = typer.Option(None, "--service", "-s", help="Filter by service"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum alerts to show"),
):
    """List alerts, newest first."""
    try:
        rows, total = get_tracker().repository.find_alerts(
            service=service,
            acknowledged=None if show_all else False,
            limit=limit,
        )
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not rows:
        console.print("[green]✓[/] No alerts")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Alerts ({total})")
    table.add_column("ID", justify="right")
    table.add_column("Time")
    table.add_column("Severity")
    table.add_column("Type")
    table.add_column("Message")
    for alert in rows:
        style = _SEVERITY_STYLES.get(alert.severity, "")
        table.add_row(
            str(alert.id),
            alert.timestamp.strftime("%Y-%m-%d %H:%M"),
            f"[{style}]{alert.severity}[/]" if style else alert.severity,
            alert.alert_type,
            alert.message + (" (ack)" if alert.acknowledged else ""),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def ack(
    alert_id: int = typer.Argument(..., help="Alert to acknowledge"),
    by: Optional[str] = typer.Option(None, "--by", help="Who acknowledged it"),
):
    """Acknowledge an alert."""
    tracker = get_tracker()
    alert = tracker.repository.acknowledge_alert(alert_id, acknowledged_by=by, at=tracker.now())
    if alert is None:
        console.print(f"[red]Error:[/] Alert {alert_id} not found")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Alert {alert_id} acknowledged")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def errors(
    service: Optional[str] = typer.Option(None, "--service", "-s", help="Filter by service"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum errors to show"),
):
    """List unresolved error logs, newest first."""
    rows, total = get_tracker().repository.find_error_logs(
        service=service, resolved=False, limit=limit
    )
    if not rows:
        console.print("[green]✓[/] No unresolved errors")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Unresolved errors ({total})")
    table.add_column("ID", justify="right")
    table.add_column("Time")
    table.add_column("Service")
    table.add_column("Status", justify="right")
    table.add_column("Endpoint")
    table.add_column("Message")
    for error in rows:
        table.add_row(
            str(error.id),
            error.timestamp.strftime("%Y-%m-%d %H:%M"),
            error.service,
            str(error.status_code or error.error_code or "-"),
            error.endpoint,
            error.error_message,
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def resolve(
    error_id: int = typer.Argument(..., help="Error log to resolve"),
    by: Optional[str] = typer.Option(None, "--by", help="Who resolved it"),
    notes: Optional[str] = typer.Option(None, "--notes", help="Resolution notes"),
):
    """Mark an error log as resolved."""
    tracker = get_tracker()
    error = tracker.repository.resolve_error(
        error_id, resolved_by=by, notes=notes, at=tracker.now()
    )
    if error is None:
        console.print(f"[red]Error:[/] Error log {error_id} not found")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Error {error_id} marked as resolved")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
):
    """Run the monitoring API."""
    import uvicorn

    from api_usage_guard.api.app import create_fastapi_app

    uvicorn.run(create_fastapi_app(get_tracker()), host=host, port=port)


@app.command("seed-demo")
def seed_demo(
    days: int = typer.Option(3, "--days", "-d", help="Days of history to generate")
):
    """Insert demo usage data."""
    try:
        count = seed_demo_data(get_tracker(), days=days)
    except Exception as e:
        console.print(f"[red]Error seeding demo data:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Demo usage data inserted ({count} calls)")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
