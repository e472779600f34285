import subprocess
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from prometheus_client import start_http_server

from nsedata.errors import InvalidTask
from nsedata.expiry import extract_expiries, normalize_expiry
from nsedata.models import Task
from nseworker.bootstrap import build_worker
from nseworker.config import get_settings
from nseworker.runner import load_batch, run_batch, run_task

app = typer.Typer(help="NSE data worker CLI (tasks, batches, migrations)")


@app.callback()
def main(log_level: Optional[str] = typer.Option(None, help="Override LOG_LEVEL")):
    """Configure logging for every command."""
    logger.remove()
    logger.add(sys.stderr, level=(log_level or get_settings().LOG_LEVEL).upper())


def _start_metrics() -> None:
    port = get_settings().METRICS_PORT
    if port:
        start_http_server(port)
        logger.info(f"Prometheus metrics on :{port}")


def _finish(result: str) -> None:
    typer.echo(result)
    if result.startswith("Error"):
        raise typer.Exit(code=1)


@app.command()
def run(
    kind: str,
    symbol: Optional[str] = None,
    expiry_count: Optional[int] = None,
    timeout_ms: Optional[int] = None,
    retries: int = 0,
    delay_ms: int = 0,
    api_call_pause_ms: Optional[int] = None,
    server_name: Optional[str] = None,
    exchange: Optional[str] = None,
    expiry: Optional[str] = None,
    strike_range: Optional[int] = None,
):
    """Run a single task (allindices, equity, optionchain, ltp)."""
    payload = {
        "kind": kind,
        "symbol": symbol,
        "expiry_count": expiry_count,
        "timeout_ms": timeout_ms,
        "retries": retries,
        "delay_ms": delay_ms,
        "api_call_pause_ms": api_call_pause_ms,
        "server_name": server_name,
        "exchange": exchange,
        "expiry": expiry,
        "strike_range": strike_range,
    }
    try:
        task = Task.from_payload({k: v for k, v in payload.items() if v is not None})
    except InvalidTask as e:
        _finish(f"Error: {e}")
        return

    _start_metrics()
    try:
        with build_worker(get_settings()) as worker:
            result = run_task(worker.router, task)
    except Exception as e:
        logger.error(f"Task {kind} failed: {e}")
        sys.exit(1)
    _finish(result)


@app.command()
def batch(path: Path, inter_task_delay_ms: Optional[int] = None):
    """Run the tasks listed in a JSON batch file, in order."""
    try:
        tasks, file_delay_ms = load_batch(path)
    except InvalidTask as e:
        _finish(f"Error: {e}")
        return

    _start_metrics()
    delay = inter_task_delay_ms if inter_task_delay_ms is not None else file_delay_ms
    with build_worker(get_settings()) as worker:
        result = run_batch(worker.router, tasks, inter_task_delay_ms=delay)
    _finish(result)


@app.command()
def expiries(symbol: str = "NIFTY", count: int = 3, timeout_ms: int = 30_000):
    """Show the next expiry dates for a symbol (uses the daily expiry cache)."""
    with build_worker(get_settings()) as worker:
        try:
            contract_info = worker.expiry_cache.get_expiries(symbol.upper(), timeout_ms)
        except Exception as e:
            logger.error(f"Failed to fetch expiry dates for {symbol}: {e}")
            sys.exit(1)
    dates = extract_expiries(contract_info, count)
    if not dates:
        _finish(f"Error: Could not extract expiry dates for symbol {symbol.upper()}")
        return
    for d in dates:
        typer.echo(f"{d}\t{normalize_expiry(d)}")


@app.command()
def migrate(target: str = "head"):
    """Run Alembic migrations to the specified target (default: head)."""
    try:
        logger.info(f"Running migrations to {target}")

        result = subprocess.run(
            ["alembic", "-c", get_settings().ALEMBIC_INI, "upgrade", target],
            capture_output=True,
            text=True,
            cwd=Path(__file__).parent.parent.parent,
        )

        if result.returncode == 0:
            logger.success(f"Successfully migrated to {target}")
            if result.stdout:
                logger.info(f"Migration output: {result.stdout}")
        else:
            logger.error(f"Migration failed: {result.stderr}")
            sys.exit(1)

    except Exception as e:
        logger.error(f"Failed to run migrations: {e}")
        sys.exit(1)


if __name__ == "__main__":
    app()
