"""CLI commands for Trustline API."""

import json
import os
import signal
import threading

import click

from trustline_api.auth.api_key import issue_operator_key
from trustline_api.auth.context import CallerContext
from trustline_api.auth.scopes import PLATFORM_SCOPE, VALID_SCOPES
from trustline_api.db.session import SessionLocal
from trustline_api.errors import ExportCancelled, TrustlineError
from trustline_api.settings import get_settings

CLI_CALLER = CallerContext(user_id="trustline-cli", scopes=frozenset({PLATFORM_SCOPE}))


@click.group()
def cli():
    """Trustline API CLI."""
    pass


@cli.command("init-db")
def init_db():
    """Apply database migrations up to head."""
    from alembic import command
    from alembic.config import Config

    alembic_ini = os.path.join(os.path.dirname(__file__), "..", "alembic.ini")
    click.echo("Applying migrations...")
    command.upgrade(Config(alembic_ini), "head")
    click.echo("✓ Database at head.")


@cli.command()
@click.option("--host", default=None, help="Bind address (default: API_HOST).")
@click.option("--port", default=None, type=int, help="Port (default: API_PORT).")
@click.option("--reload", is_flag=True, help="Reload on code changes (development only).")
def serve(host, port, reload):
    """Run the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    if reload and settings.is_production:
        raise click.UsageError("--reload is not available in production")
    uvicorn.run(
        "trustline_api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


@cli.command("create-key")
@click.option("--user-id", required=True, help="Operator user id the key belongs to.")
@click.option("--tenant-id", default=None, help="Home tenant; omit for platform operators.")
@click.option(
    "--scope",
    "scopes",
    multiple=True,
    required=True,
    type=click.Choice(sorted(VALID_SCOPES)),
    help="Scope to grant (repeatable).",
)
@click.option("--label", default=None)
def create_key(user_id, tenant_id, scopes, label):
    """Issue an operator API key. The raw key is printed once."""
    db = SessionLocal()
    try:
        raw_key, key = issue_operator_key(db, user_id, list(scopes), tenant_id=tenant_id, label=label)
        click.echo(f"✓ Key {key.prefix}… issued for {user_id}")
        click.echo(raw_key)
    except ValueError as e:
        db.rollback()
        raise click.ClickException(str(e))
    finally:
        db.close()


@cli.command("expire-sessions")
def expire_sessions():
    """Mark sessions past their expiry as inactive."""
    from trustline_api.sessions.registry import SessionRegistry

    db = SessionLocal()
    try:
        count = SessionRegistry(db).expire_stale_sessions()
        click.echo(f"✓ Expired {count} session(s).")
    finally:
        db.close()


@cli.command()
@click.option("--from", "start", required=True, type=click.DateTime(), help="Window start (UTC).")
@click.option("--to", "end", required=True, type=click.DateTime(), help="Window end (UTC).")
@click.option("--tenant-id", default=None)
@click.option("--user-id", default=None)
def detect(start, end, tenant_id, user_id):
    """Run an anomaly scan and print the report as JSON."""
    from trustline_api.detection.service import DetectionService

    db = SessionLocal()
    try:
        report = DetectionService(db).detect_anomalies(
            CLI_CALLER,
            {"start": start, "end": end, "tenant_id": tenant_id, "user_id": user_id},
        )
        click.echo(json.dumps(report.model_dump(mode="json"), indent=2))
    except TrustlineError as e:
        raise click.ClickException(e.message)
    finally:
        db.close()


@cli.command("export-case")
@click.option("--case-id", required=True)
@click.option("--format", "fmt", default="json", type=click.Choice(["json", "csv", "pdf"]))
@click.option("--out-name", default=None, help="File name inside EXPORT_DIR (default: <case number>.<format>).")
def export_case(case_id, fmt, out_name):
    """Write a case audit trail into the export directory.

    Ctrl-C cancels the export; the partial file is discarded.
    """
    from trustline_api.export.files import write_export
    from trustline_api.investigations.service import CaseManager

    cancel_event = threading.Event()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: cancel_event.set())
    db = SessionLocal()
    try:
        manager = CaseManager(db)
        chunks = manager.export_audit_trail(CLI_CALLER, case_id, fmt, cancel_event=cancel_event)
        filename = out_name or f"{manager.get_case(CLI_CALLER, case_id).case.case_number}.{fmt}"
        path = write_export(chunks, filename, cancel_event)
        click.echo(f"✓ Export written to {path}")
    except ExportCancelled:
        raise click.ClickException("Export cancelled; no file written.")
    except TrustlineError as e:
        raise click.ClickException(e.message)
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        db.close()


if __name__ == "__main__":
    cli()
