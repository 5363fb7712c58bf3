"""Database subcommand: init."""

from __future__ import annotations

import typer

from crowdcast.storage.db import get_connection, init_schema

app = typer.Typer(help="Local database management")


@app.command("init")
def init(ctx: typer.Context) -> None:
    """Create the DuckDB file and all tables (safe to re-run)."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    try:
        init_schema(conn)
    finally:
        conn.close()
    typer.echo(f"Schema ready at {settings.db_path}")
