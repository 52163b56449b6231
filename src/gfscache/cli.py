from __future__ import annotations

import json
import sys
from typing import Any

import click
from dateutil import parser as dtparser

from .config import load_settings
from .errors import ConfigurationError, GribCacheError
from .models import ServeResult, ServeStatus
from .service import SnapshotService, build_service
from .util.logging import setup_logging

EXIT_CODES = {
    ServeStatus.READY: 0,
    ServeStatus.NOT_FOUND: 2,
    ServeStatus.UNAVAILABLE: 2,
    ServeStatus.PENDING: 3,
}


def _service(ctx: click.Context) -> SnapshotService:
    try:
        settings = load_settings(ctx.obj)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc
    setup_logging(settings.logs_dir, settings.log_level)
    return build_service(settings)


def _emit(result: ServeResult, print_data: bool) -> None:
    if print_data and result.status is ServeStatus.READY and result.path is not None:
        with result.path.open("r", encoding="utf-8") as fh:
            for chunk in iter(lambda: fh.read(65536), ""):
                sys.stdout.write(chunk)
        sys.stdout.flush()
    else:
        click.echo(json.dumps(result.as_dict(), indent=2))
    sys.exit(EXIT_CODES[result.status])


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--cache-dir", type=click.Path(path_type=str), help="Root of grib-data/ and json-data/")
@click.option("--converter", "converter_command", type=str, help="grib2json command line")
@click.option("--logs-dir", type=click.Path(path_type=str), help="Log directory")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
@click.option("--lookback-days", type=click.FloatRange(min=0, min_open=True), help="How far back fetches may step")
@click.option("--user-agent", type=str, help="Custom user agent")
@click.pass_context
def main(ctx: click.Context, **kwargs: Any) -> None:
    """Fetch, convert and serve GFS snapshots."""
    ctx.obj = {k: v for k, v in kwargs.items() if v is not None}


@main.command()
@click.option("--print-data", is_flag=True, help="Write the JSON snapshot to stdout")
@click.option("--harvest/--no-harvest", default=True, help="Wait for background backfill of older cycles")
@click.pass_context
def latest(ctx: click.Context, print_data: bool, harvest: bool) -> None:
    """Serve the most recent published snapshot."""
    service = _service(ctx)
    try:
        result = service.get_latest()
    except GribCacheError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        service.close(cancel_pending=not harvest)
    _emit(result, print_data)


@main.command()
@click.option("--time", "time_iso", required=True, help="ISO-8601 timestamp to search around")
@click.option("--search-limit", type=click.FloatRange(min=0, min_open=True), help="Search window in days")
@click.option("--print-data", is_flag=True, help="Write the JSON snapshot to stdout")
@click.option("--harvest/--no-harvest", default=True, help="Wait for background backfill of older cycles")
@click.pass_context
def nearest(ctx: click.Context, time_iso: str, search_limit: float | None, print_data: bool, harvest: bool) -> None:
    """Serve the snapshot nearest to --time."""
    try:
        when = dtparser.isoparse(time_iso)
    except ValueError as exc:
        raise click.BadParameter("expecting an ISO time string", param_hint="--time") from exc

    service = _service(ctx)
    try:
        result = service.get_nearest(when, search_limit)
    except GribCacheError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        service.close(cancel_pending=not harvest)
    _emit(result, print_data)


@main.command()
@click.pass_context
def reconcile(ctx: click.Context) -> None:
    """Delete orphaned raw and partial artifacts."""
    service = _service(ctx)
    try:
        removed = service.reconcile()
    except GribCacheError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        service.close()
    click.echo(json.dumps({"removed": [str(p) for p in removed]}, indent=2))


@main.command()
@click.option("--max-age-hours", type=click.FloatRange(min=0, min_open=True), help="Refresh entries older than this")
@click.pass_context
def refresh(ctx: click.Context, max_age_hours: float | None) -> None:
    """Re-download snapshots whose JSON is older than the freshness threshold."""
    service = _service(ctx)
    try:
        stale = service.check_freshness(max_age_hours)
    finally:
        # waits for the queued refreshes
        service.close()
    click.echo(json.dumps({"refreshed": [entry.key for entry in stale]}, indent=2))


if __name__ == "__main__":  # pragma: no cover
    main()
