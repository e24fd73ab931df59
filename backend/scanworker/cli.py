# scanworker/cli.py
"""
Operator commands, registered on the Flask CLI by the app factory.

    flask --app scanworker init-db
    flask --app scanworker worker [--concurrency N]
    flask --app scanworker enqueue https://example.com [--project-id ID]
    flask --app scanworker run-tool katana https://example.com
    flask --app scanworker reap-stalled --hours 6 [--commit]
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import timedelta

import click
import redis
from flask import Flask, current_app
from flask.cli import with_appcontext

from scanworker.errors import ScanWorkerError
from scanworker.extensions import db
from scanworker.models import ScanRecord, now_utc
from scanworker.scanner.adapters import KatanaAdapter, NucleiAdapter
from scanworker.scanner.normalizers import normalize
from scanworker.scanner.store import ScanStore

PROCESS_TOOLS = {
    "nuclei": NucleiAdapter,
    "katana": KatanaAdapter,
}


@click.command("init-db")
@with_appcontext
def init_db_command():
    """Create all tables (development and tests; production uses flask db upgrade)."""
    db.create_all()
    click.echo("Database initialized.")


@click.command("worker")
@with_appcontext
@click.option("--concurrency", type=int, default=None, help="Parallel scan jobs.")
def worker_command(concurrency):
    """Run the scan worker until interrupted."""
    from scanworker.worker import create_worker

    app = current_app._get_current_object()
    if concurrency:
        app.config["WORKER_CONCURRENCY"] = concurrency
    create_worker(app).run_forever()


@click.command("enqueue")
@with_appcontext
@click.argument("urls", nargs=-1, required=True)
@click.option("--project-id", default=None)
@click.option("--severity", multiple=True, help="Severity filter; repeatable.")
@click.option("--rate-limit", type=int, default=None)
@click.option("--timeout", type=int, default=None, help="Minutes.")
def enqueue_command(urls, project_id, severity, rate_limit, timeout):
    """Create a pending scan for URLS and put it on the queue."""
    record = ScanStore().create_scan(
        list(urls), project_id=project_id, rate_limit=rate_limit, timeout=timeout
    )
    request = {"targetUrls": list(urls)}
    if severity:
        request["severityLevels"] = list(severity)
    if rate_limit:
        request["rateLimit"] = rate_limit
    if timeout:
        request["timeout"] = timeout

    try:
        job_id = current_app.extensions["scan_queue"].enqueue(
            {"scanId": record.id, "request": request}
        )
    except redis.RedisError as e:
        ScanStore().update_scan_status(record.id, "failed", error=f"Failed to enqueue scan: {e}")
        raise click.ClickException(f"Failed to enqueue scan {record.id}: {e}")
    click.echo(json.dumps({"scanId": record.id, "jobId": job_id}))


@click.command("run-tool")
@with_appcontext
@click.argument("tool", type=click.Choice(sorted(PROCESS_TOOLS)))
@click.argument("urls", nargs=-1, required=True)
@click.option("--timeout", type=int, default=None, help="Wall clock in minutes.")
def run_tool_command(tool, urls, timeout):
    """Run one process tool directly and print normalized findings as JSON lines."""
    adapter = PROCESS_TOOLS[tool]()
    options = {"timeout_minutes": timeout} if timeout else {}
    try:
        result = adapter.execute(list(urls), options)
    except ScanWorkerError as e:
        raise click.ClickException(str(e))

    for draft in normalize(result.findings, scan_id="adhoc"):
        click.echo(json.dumps(asdict(draft), default=str))
    click.echo(
        f"{len(result.findings)} record(s), {result.dropped} dropped", err=True
    )


@click.command("reap-stalled")
@with_appcontext
@click.option("--hours", type=float, default=6.0, show_default=True)
@click.option("--commit", is_flag=True, help="Actually mark the scans failed.")
def reap_stalled_command(hours, commit):
    """Fail scans stuck in_progress for longer than --hours. Dry run unless --commit."""
    if not commit:
        cutoff = now_utc() - timedelta(hours=hours)
        stalled = ScanRecord.query.filter(
            ScanRecord.status == "in_progress",
            ScanRecord.started_at < cutoff,
        ).all()
        for record in stalled:
            click.echo(f"would fail {record.id} (started {record.started_at.isoformat()})")
        click.echo(f"{len(stalled)} stalled scan(s). Re-run with --commit to fail them.")
        return

    reaped = ScanStore().fail_stalled_scans(timedelta(hours=hours))
    for scan_id in reaped:
        click.echo(f"failed {scan_id}")
    click.echo(f"{len(reaped)} stalled scan(s) marked failed.")


def register_commands(app: Flask) -> None:
    for command in (
        init_db_command,
        worker_command,
        enqueue_command,
        run_tool_command,
        reap_stalled_command,
    ):
        app.cli.add_command(command)
