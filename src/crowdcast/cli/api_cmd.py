"""API server command."""

import typer

from crowdcast.api.main import run_api

app = typer.Typer(help="Start the HTTP API server")


@app.callback(invoke_without_command=True)
def api(
    ctx: typer.Context,
    host: str = typer.Option(None, "--host", help="Bind host (default: [api].host)"),
    port: int = typer.Option(None, "--port", help="Bind port (default: [api].port)"),
    with_monitor: bool = typer.Option(
        False, "--with-monitor", help="Run the X monitoring loop in the same process",
    ),
) -> None:
    if ctx.invoked_subcommand is not None:
        return
    settings = ctx.obj["settings"]
    run_api(
        host=host or settings.api_host,
        port=port or settings.api_port,
        with_monitor=with_monitor,
        profile=ctx.obj.get("profile"),
        config_dir=ctx.obj.get("config_dir"),
    )


if __name__ == "__main__":
    app()
