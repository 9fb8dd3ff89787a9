"""Slipway CLI — talks to the daemon over HTTP."""

import json
import subprocess
from typing import Optional

import httpx
import typer
from rich.console import Console
from rich.table import Table

from slipway import __version__
from slipway.core.config import get_client_settings

app = typer.Typer(
    name="slipway",
    help="Push-triggered build and publish pipeline for slide decks",
    no_args_is_help=True,
)
console = Console()

STATUS_COLORS = {
    "succeeded": "green",
    "failed": "red",
    "cancelled": "yellow",
    "skipped": "dim",
    "running": "cyan",
    "pending": "dim",
}


def _colored(status: str) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def _client() -> httpx.Client:
    settings = get_client_settings()
    return httpx.Client(
        base_url=settings.host,
        headers={"Authorization": f"Bearer {settings.api_key}"},
        timeout=900,
    )


def _api(method: str, path: str, **kwargs) -> dict:
    """Make an API call to the daemon."""
    with _client() as client:
        try:
            resp = client.request(method, f"/api/v1{path}", **kwargs)
        except httpx.ConnectError:
            settings = get_client_settings()
            console.print(f"[red]Error:[/red] Cannot connect to Slipway daemon at {settings.host}")
            console.print("Start the daemon with: [bold]slipwayd[/bold]")
            raise typer.Exit(1)

        if resp.status_code >= 400:
            detail = resp.json().get("detail", resp.text) if resp.headers.get("content-type", "").startswith("application/json") else resp.text
            console.print(f"[red]Error {resp.status_code}:[/red] {detail}")
            raise typer.Exit(1)

        if resp.status_code == 204:
            return {}
        return resp.json()


def _git_head() -> Optional[str]:
    try:
        out = subprocess.run(
            ["git", "rev-parse", "HEAD"], capture_output=True, text=True, check=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    return out.stdout.strip() or None


def _print_outcome(outcome: dict) -> None:
    console.print(f"\n{_colored(outcome['status'])} run {outcome['run_id']}")
    console.print(f"  build:  {_colored(outcome['build_status'])}")
    console.print(f"  deploy: {_colored(outcome['deploy_status'])}")
    if outcome.get("published_url"):
        console.print(f"  url:    [bold]{outcome['published_url']}[/bold]")
    error = outcome.get("error")
    if error:
        console.print(f"  [red]Error ({error.get('stage')}/{error.get('code')}):[/red] {error.get('message', '')[:200]}")


# ─── Trigger ───


@app.command()
def push(
    branch: str = typer.Option("main", "--branch", "-b", help="Branch the push landed on"),
    commit: Optional[str] = typer.Option(None, "--commit", "-c", help="Commit ref (default: git HEAD)"),
    background: bool = typer.Option(False, "--background", help="Return once the run is admitted"),
):
    """Send a push event to the daemon and show the run outcome."""
    commit = commit or _git_head()
    if not commit:
        console.print("[red]Error:[/red] No commit given and git HEAD could not be read")
        raise typer.Exit(1)

    result = _api(
        "POST",
        "/events/push",
        params={"wait": str(not background).lower()},
        json={"branch": branch, "commit_ref": commit},
    )
    if not result["admitted"]:
        console.print(f"[yellow]●[/yellow] Not admitted: {result.get('reason')}")
        return

    _print_outcome(result["run"])
    if result["run"]["status"] == "failed":
        raise typer.Exit(1)


# ─── Runs ───


@app.command()
def runs(
    last: int = typer.Option(10, "--last", "-l", help="Number of runs to show"),
    environment: Optional[str] = typer.Option(None, "--env", "-e", help="Only runs for this environment"),
):
    """Show recent runs."""
    params = {"limit": last}
    if environment:
        params["environment"] = environment
    result = _api("GET", "/runs", params=params)

    table = Table(title="Runs")
    table.add_column("ID", style="dim", max_width=8)
    table.add_column("Status")
    table.add_column("Build")
    table.add_column("Deploy")
    table.add_column("Commit", max_width=12)
    table.add_column("Duration")
    table.add_column("Time")

    for r in result["runs"]:
        duration = f"{r['duration_ms']}ms" if r.get("duration_ms") is not None else "—"
        table.add_row(
            r["id"][:8],
            _colored(r["status"]),
            _colored(r["build_status"]),
            _colored(r["deploy_status"]),
            r["commit_ref"][:12],
            duration,
            r.get("created_at", "—") or "—",
        )

    console.print(table)


@app.command()
def show(run_id: str = typer.Argument(..., help="Run ID")):
    """Show a run's outcome and per-stage trace."""
    outcome = _api("GET", f"/runs/{run_id}/outcome")
    _print_outcome(outcome)

    run = _api("GET", f"/runs/{run_id}")
    stages = (run.get("trace") or {}).get("stages", {})
    for name, stage in stages.items():
        duration = f"{stage['duration_ms']}ms" if stage.get("duration_ms") is not None else "—"
        console.print(f"\n  [bold]{name}[/bold] {_colored(stage['status'])} ({duration})")
        for step in stage.get("steps", []):
            console.print(f"    {step['name']}: {_colored(step['status'])}")


@app.command()
def logs(run_id: str = typer.Argument(..., help="Run ID")):
    """Show logs for a run."""
    result = _api("GET", f"/runs/{run_id}/logs")
    if result.get("logs"):
        console.print(result["logs"])
    else:
        console.print("[dim]No logs available[/dim]")


@app.command()
def errors(limit: int = typer.Option(20, "--limit", "-l", help="Number of errors to show")):
    """Show recent failed runs."""
    result = _api("GET", "/runs/errors", params={"limit": limit})
    runs = result["runs"]

    if not runs:
        console.print("[green]No recent errors[/green]")
        return

    for r in runs:
        console.print(f"\n[red]●[/red] {r['id'][:8]} {r['branch']}@{r['commit_ref'][:12]} — {r.get('created_at', '')}")
        if r.get("error"):
            console.print(f"  {r['error'][:200]}")


@app.command()
def cancel(run_id: str = typer.Argument(..., help="Run ID to cancel")):
    """Cancel an in-flight run."""
    result = _api("POST", f"/runs/{run_id}/cancel")
    if result.get("status") == "cancelled":
        console.print(f"[yellow]●[/yellow] Cancelled run {run_id}")
    else:
        console.print(f"Run {run_id} finished as {_colored(result.get('status', 'unknown'))} before it could be stopped")
    if result.get("run"):
        _print_outcome(result["run"])


# ─── Environments ───


@app.command()
def env(name: Optional[str] = typer.Argument(None, help="Environment name (default: all)")):
    """Show environments and the URL each currently serves."""
    if name:
        environments = [_api("GET", f"/environments/{name}")]
    else:
        environments = _api("GET", "/environments")["environments"]

    if not environments:
        console.print("[dim]No environments yet[/dim]")
        return

    table = Table(title="Environments")
    table.add_column("Name", style="bold")
    table.add_column("URL")
    table.add_column("Last Run", style="dim", max_width=8)
    table.add_column("Updated")
    for e in environments:
        table.add_row(
            e["name"],
            e.get("current_url") or "—",
            (e.get("last_run_id") or "—")[:8],
            e.get("updated_at") or "—",
        )
    console.print(table)


@app.command()
def webhook(
    url: str = typer.Argument(..., help="Endpoint to notify"),
    events: str = typer.Option("run.failed", "--events", help="Comma-separated events, or *"),
    remove: bool = typer.Option(False, "--remove", help="Remove the webhook instead"),
):
    """Register (or remove) a webhook for run events."""
    if remove:
        _api("DELETE", "/webhooks", params={"url": url})
        console.print(f"[yellow]Removed webhook[/yellow] {url}")
        return
    result = _api("POST", "/webhooks", json={"url": url, "events": events.split(",")})
    console.print(f"[green]✓[/green] Webhook registered: {result['url']} ({json.dumps(result['events'])})")


@app.command()
def version():
    """Show Slipway version."""
    console.print(f"slipway v{__version__}")


@app.command()
def status():
    """Show daemon status."""
    with _client() as client:
        try:
            resp = client.get("/health")
            data = resp.json()
            console.print(f"[green]●[/green] Slipway daemon v{data['version']} — running")
            active = data.get("active_runs", [])
            console.print(f"  Active runs: {len(active)}")
            for run_id in active:
                console.print(f"    {run_id}")
            jobs = data.get("scheduler_jobs", [])
            if jobs:
                console.print(f"  Scheduled jobs: {len(jobs)}")
                for j in jobs:
                    console.print(f"    {j['id']} → next: {j.get('next_run', '—')}")
            else:
                console.print("  No scheduled jobs")
        except httpx.ConnectError:
            settings = get_client_settings()
            console.print(f"[red]●[/red] Daemon not running at {settings.host}")


if __name__ == "__main__":
    app()
