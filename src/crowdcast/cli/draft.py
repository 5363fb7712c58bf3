"""Draft command: turn a casual idea into a market draft."""

from __future__ import annotations

import json

import typer

from crowdcast.ai.drafts import generate_market_draft


def draft(
    ctx: typer.Context,
    idea: str = typer.Argument(..., help="Free-text idea, e.g. 'will it rain at the picnic'"),
) -> None:
    """Print a generated market draft as JSON. Works offline with a local fallback."""
    settings = ctx.obj["settings"]
    provider = None
    if settings.ai_api_key:
        from crowdcast.ai.provider import OpenAIDraftProvider

        provider = OpenAIDraftProvider(
            api_key=settings.ai_api_key,
            model=settings.ai_model,
            base_url=settings.ai_base_url,
            temperature=settings.ai_temperature,
            default_end_days=settings.default_end_days,
        )
    else:
        typer.echo("No AI api key configured; using local fallback draft.", err=True)
    result = generate_market_draft(idea, provider, default_days=settings.default_end_days)
    typer.echo(json.dumps(result.model_dump(mode="json"), indent=2))
