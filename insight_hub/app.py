"""Typer CLI entrypoint for insight-hub."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, ScheduleConfig, ScheduleType
from .engine import RenewalResult
from .errors import ConflictError, InsightHubError
from .logging_conf import available_logs, configure_logging, default_log_dir, tail_log
from .models import Channel, Job, JobStatus, Subscription, format_timestamp
from .orchestrator import Orchestrator, build_orchestrator
from .scheduler import APSchedulerAdapter

app = typer.Typer(help="insight-hub command line tool", no_args_is_help=True, rich_markup_mode=None)
channel_app = typer.Typer(name="channel", help="Tracked channel management.", no_args_is_help=True)
jobs_app = typer.Typer(name="jobs", help="Enrichment job queue.", no_args_is_help=True)
sub_app = typer.Typer(name="sub", help="Hub subscription leases.", no_args_is_help=True)
log_app = typer.Typer(name="log", help="Log viewing.", no_args_is_help=True)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    orchestrator: Orchestrator
    scheduler: APSchedulerAdapter


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    orchestrator = build_orchestrator(repository)
    return AppState(repository=repository, orchestrator=orchestrator, scheduler=APSchedulerAdapter())


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _fail(message: str) -> None:
    console.print(message, style="red")
    raise typer.Exit(code=1)


def _format_schedule(schedule: ScheduleConfig) -> str:
    if not schedule.enabled:
        return "disabled"
    if schedule.type is ScheduleType.CRON:
        return f"cron ({schedule.value})"
    if schedule.type is ScheduleType.INTERVAL:
        return f"interval ({schedule.value})"
    return f"{schedule.type.value} ({schedule.value or 'now'})"


def _render_channels_table(channels: Sequence[Channel]) -> Table:
    table = Table(title=f"Channels · {len(channels)}", box=box.SIMPLE_HEAD)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("External ID", style="magenta")
    table.add_column("Handle")
    table.add_column("Enabled", style="green")
    for channel in channels:
        table.add_row(
            channel.id,
            channel.name,
            channel.external_id or "-",
            channel.handle or "-",
            "yes" if channel.enabled else "no",
        )
    return table


def _render_jobs_table(jobs: Iterable[Job]) -> Table:
    table = Table(title="Jobs", box=box.SIMPLE_HEAD)
    table.add_column("Job ID", style="cyan", no_wrap=True)
    table.add_column("Item")
    table.add_column("Status", style="magenta")
    table.add_column("Created")
    table.add_column("Finished")
    table.add_column("Error / Doc", overflow="fold")
    for job in jobs:
        detail = job.error or (job.result.doc_url if job.result and job.result.doc_url else "")
        table.add_row(
            job.id,
            job.item_id,
            job.status.value,
            format_timestamp(job.created_at) or "-",
            format_timestamp(job.finished_at) or "-",
            detail or "-",
        )
    return table


def _render_results_table(title: str, results: Sequence[RenewalResult]) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("Channel", style="cyan", no_wrap=True)
    table.add_column("Result")
    table.add_column("Lease expires")
    table.add_column("Error", style="red", overflow="fold")
    for result in results:
        table.add_row(
            result.channel_id,
            "[green]ok[/green]" if result.success else "[red]failed[/red]",
            format_timestamp(result.lease_expires_at) or "-",
            result.error or "",
        )
    return table


def _render_subscriptions_table(
    subscriptions: Sequence[Subscription], trusted: Callable[[str], bool]
) -> Table:
    table = Table(title="Subscriptions", box=box.SIMPLE_HEAD)
    table.add_column("Channel", style="cyan", no_wrap=True)
    table.add_column("Status", style="magenta")
    table.add_column("Lease expires")
    table.add_column("Last renewed")
    table.add_column("Push trusted")
    table.add_column("Topic", overflow="fold")
    for subscription in subscriptions:
        table.add_row(
            subscription.channel_id,
            subscription.status.value,
            format_timestamp(subscription.lease_expires_at) or "-",
            format_timestamp(subscription.last_renewed_at) or "-",
            "yes" if trusted(subscription.channel_id) else "no",
            subscription.topic_url,
        )
    return table


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging.")
) -> None:
    ctx.obj = build_state(verbose)


# ----------------------------------------------------------------------
# channel
# ----------------------------------------------------------------------
@channel_app.command("add", help="Register a channel by catalog id or @handle.")
def channel_add(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Display name."),
    external_id: Optional[str] = typer.Option(None, "--external-id", help="Catalog channel id (UC...)."),
    handle: Optional[str] = typer.Option(None, "--handle", help="Channel @handle."),
) -> None:
    state = _get_state(ctx)
    try:
        channel = state.orchestrator.add_channel(name, external_id=external_id, handle=handle)
    except ConflictError:
        _fail(f"Channel with external id `{external_id}` already exists.")
    except InsightHubError as exc:
        _fail(str(exc))
    console.print(f"Channel `{channel.name}` registered as {channel.id}.", style="green")
    if not channel.external_id:
        console.print("External id unresolved; the next poll will retry.", style="yellow")


@channel_app.command("list", help="List tracked channels and the schedule plan.")
def channel_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    channels = state.orchestrator.store.list_channels()
    if not channels:
        console.print("No channels yet. Use `insight-hub channel add` first.", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_channels_table(channels))
    schedules = Table(title="Schedules", box=box.SIMPLE_HEAD)
    schedules.add_column("Task", style="cyan")
    schedules.add_column("Trigger", style="yellow")
    for name, schedule in state.orchestrator.config.schedules.items():
        schedules.add_row(name, _format_schedule(schedule))
    console.print(schedules)


def _set_enabled(ctx: typer.Context, channel_id: str, enabled: bool) -> None:
    state = _get_state(ctx)
    try:
        channel = state.orchestrator.set_channel_enabled(channel_id, enabled)
    except InsightHubError as exc:
        _fail(str(exc))
    console.print(f"Channel `{channel.name}` {'enabled' if enabled else 'disabled'}.", style="green")


@channel_app.command("enable", help="Include a channel in polls and subscriptions.")
def channel_enable(ctx: typer.Context, channel_id: str = typer.Argument(...)) -> None:
    _set_enabled(ctx, channel_id, True)


@channel_app.command("disable", help="Exclude a channel from polls and subscriptions.")
def channel_disable(ctx: typer.Context, channel_id: str = typer.Argument(...)) -> None:
    _set_enabled(ctx, channel_id, False)


@channel_app.command("remove", help="Delete a channel that has no stored items.")
def channel_remove(ctx: typer.Context, channel_id: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    try:
        state.orchestrator.store.delete_channel(channel_id)
    except ConflictError:
        _fail(f"Channel {channel_id} still has items; disable it instead.")
    except InsightHubError as exc:
        _fail(str(exc))
    console.print(f"Channel {channel_id} removed.", style="green")


# ----------------------------------------------------------------------
# poll
# ----------------------------------------------------------------------
@app.command("poll", help="Poll enabled channels for recent items.")
def poll(
    ctx: typer.Context,
    channel: Optional[List[str]] = typer.Option(None, "--channel", help="Limit to channel id(s)."),
    max_results: Optional[int] = typer.Option(None, "--max-results", min=1, max=50),
) -> None:
    state = _get_state(ctx)
    report = state.orchestrator.poll(channel_ids=channel or None, max_results=max_results)
    table = Table(title="Poll result", box=box.SIMPLE_HEAD)
    table.add_column("Channels", justify="right")
    table.add_column("New items", justify="right", style="green")
    table.add_column("Errors", justify="right", style="red")
    table.add_row(str(report.processed), str(report.new_items), str(len(report.errors)))
    console.print(table)
    for error in report.errors:
        console.print(f"- {error}", style="red")
    if report.errors:
        raise typer.Exit(code=1)


# ----------------------------------------------------------------------
# jobs
# ----------------------------------------------------------------------
@jobs_app.command("run", help="Claim and process one batch of pending jobs.")
def jobs_run(
    ctx: typer.Context,
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Batch size."),
) -> None:
    state = _get_state(ctx)
    report = state.orchestrator.process_jobs(limit)
    console.print(
        f"Processed {report.processed} job(s): {report.succeeded} done, {len(report.errors)} failed.",
        style="green" if not report.errors else "yellow",
    )
    for error in report.errors:
        console.print(f"- {error}", style="red")


@jobs_app.command("list", help="Show recent jobs.")
def jobs_list(
    ctx: typer.Context,
    status: Optional[JobStatus] = typer.Option(None, "--status", case_sensitive=False),
    limit: int = typer.Option(50, "--limit", min=1),
) -> None:
    state = _get_state(ctx)
    jobs = state.orchestrator.jobs.list_jobs(status=status, limit=limit)
    if not jobs:
        console.print("No jobs.", style="dim")
        return
    console.print(_render_jobs_table(jobs))


@jobs_app.command("retry", help="Reset a failed job to pending.")
def jobs_retry(ctx: typer.Context, job_id: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    try:
        state.orchestrator.jobs.retry(job_id)
    except ConflictError as exc:
        _fail(f"Job cannot be retried: {exc}")
    except InsightHubError as exc:
        _fail(str(exc))
    console.print(f"Job {job_id} requeued.", style="green")


@jobs_app.command("sweep", help="Requeue jobs stuck in processing.")
def jobs_sweep(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    moved = state.orchestrator.sweep()
    console.print(f"Requeued {moved} stale job(s).", style="green" if moved == 0 else "yellow")


# ----------------------------------------------------------------------
# sub
# ----------------------------------------------------------------------
@sub_app.command("subscribe", help="Subscribe enabled channels at the hub.")
def sub_subscribe(
    ctx: typer.Context,
    channel: Optional[List[str]] = typer.Option(None, "--channel", help="Limit to channel id(s)."),
) -> None:
    state = _get_state(ctx)
    results = state.orchestrator.subscribe(channel or None)
    if not results:
        console.print("No enabled channels to subscribe.", style="dim")
        return
    console.print(_render_results_table("Subscribe", results))
    if not all(result.success for result in results):
        raise typer.Exit(code=1)


@sub_app.command("renew", help="Renew leases expiring within the horizon.")
def sub_renew(
    ctx: typer.Context,
    within: Optional[int] = typer.Option(None, "--within", min=0, help="Horizon in seconds."),
) -> None:
    state = _get_state(ctx)
    results = state.orchestrator.resubscribe(within_seconds=within)
    if not results:
        console.print("No leases due for renewal.", style="dim")
        return
    console.print(_render_results_table("Renew", results))
    if not all(result.success for result in results):
        raise typer.Exit(code=1)


@sub_app.command("list", help="Show subscription leases.")
def sub_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    subscriptions = state.orchestrator.leases.list_subscriptions()
    if not subscriptions:
        console.print("No subscriptions yet.", style="dim")
        return
    console.print(
        _render_subscriptions_table(subscriptions, state.orchestrator.leases.is_push_trusted)
    )


@sub_app.command("unsubscribe", help="Ask the hub to end a channel's subscription.")
def sub_unsubscribe(ctx: typer.Context, channel_id: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    try:
        channel = state.orchestrator.store.get_channel(channel_id)
        accepted = state.orchestrator.leases.unsubscribe(channel)
    except InsightHubError as exc:
        _fail(str(exc))
    if not accepted:
        _fail(f"Hub rejected unsubscribe for {channel_id}.")
    console.print(f"Unsubscribe requested for {channel_id}; awaiting hub verification.", style="green")


# ----------------------------------------------------------------------
# serve
# ----------------------------------------------------------------------
@app.command("serve", help="Run the HTTP service with the background scheduler.")
def serve(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
    no_scheduler: bool = typer.Option(False, "--no-scheduler", help="Skip periodic tasks."),
) -> None:
    from .web import create_app

    state = _get_state(ctx)
    server = state.orchestrator.config.server
    flask_app = create_app(state.orchestrator)
    if not no_scheduler:
        state.orchestrator.register_schedules(state.scheduler)
    console.print(f"Serving on {host or server.host}:{port or server.port}", style="cyan")
    try:
        flask_app.run(host=host or server.host, port=port or server.port, use_reloader=False)
    finally:
        state.scheduler.shutdown()
        state.orchestrator.close()


# ----------------------------------------------------------------------
# log
# ----------------------------------------------------------------------
@log_app.command("show", help="Show the tail of a log file.")
def log_show(
    name: str = typer.Option("insight_hub", "--name", help="Log file stem (insight_hub, error)."),
    tail: int = typer.Option(100, "--tail", min=1, help="Show the last N lines."),
) -> None:
    path = default_log_dir() / f"{name}.log"
    lines = tail_log(path, tail)
    if not lines:
        known = ", ".join(p.stem for p in available_logs()) or "none"
        console.print(f"No log lines yet (available: {known}).", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


app.add_typer(channel_app, name="channel")
app.add_typer(jobs_app, name="jobs")
app.add_typer(sub_app, name="sub")
app.add_typer(log_app, name="log")


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
