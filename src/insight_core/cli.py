import asyncio
import json
import sys
from typing import Any, List, Optional

import typer

from insight_core.config import Config
from insight_core.engine import build_cache, build_engine, clear_insights
from insight_core.evidence.priority import score_priority
from insight_core.ingest.source import MessageSourceError
from insight_core.observability.logs import setup_logging
from insight_core.observability.metrics import MetricsCollector

app = typer.Typer(add_completion=False)

DATA_HELP = "JSON document with conversations and users (overrides source.data_path)"
REFRESH_HELP = "Bypass today's cache and recompute"
LOG_LEVEL_HELP = "Log level (DEBUG, INFO, WARNING, ERROR)"
GLOBAL_HELP = "Treat ID as a user id and scan their recent conversations"
METRICS_HELP = "Export Prometheus metrics on observability.prometheus_port while running"


def _config(data: Optional[str]) -> Config:
    config = Config()
    if data:
        config.source.data_path = data
    return config


def _metrics(config: Config, enabled: bool) -> Optional[MetricsCollector]:
    if not enabled:
        return None
    metrics = MetricsCollector(config.observability.prometheus_port)
    metrics.start_server()
    return metrics


def _engine(data: Optional[str], metrics: bool = False):
    config = _config(data)
    return build_engine(config, metrics=_metrics(config, metrics))


def _emit(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))


def _run(coro_factory) -> Any:
    try:
        return asyncio.run(coro_factory())
    except MessageSourceError as e:
        typer.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _as_dicts(items: List) -> List[dict]:
    return [item.to_dict() for item in items]


@app.command()
def actions(
    target: str = typer.Argument(..., metavar="ID", help="Conversation id (user id with --global)"),
    global_scope: bool = typer.Option(False, "--global", help=GLOBAL_HELP),
    refresh: bool = typer.Option(False, "--refresh", help=REFRESH_HELP),
    data: str = typer.Option(None, "--data", help=DATA_HELP),
    metrics: bool = typer.Option(False, "--metrics", help=METRICS_HELP),
    log_level: str = typer.Option("WARNING", "--log-level", help=LOG_LEVEL_HELP),
):
    """Extract action items."""
    setup_logging(log_level=log_level)

    async def go():
        async with _engine(data, metrics) as engine:
            if global_scope:
                return await engine.extract_actions_global(target, force_refresh=refresh)
            return await engine.extract_actions(target, force_refresh=refresh)

    _emit(_as_dicts(_run(go)))


@app.command()
def decisions(
    target: str = typer.Argument(..., metavar="ID", help="Conversation id (user id with --global)"),
    global_scope: bool = typer.Option(False, "--global", help=GLOBAL_HELP),
    refresh: bool = typer.Option(False, "--refresh", help=REFRESH_HELP),
    data: str = typer.Option(None, "--data", help=DATA_HELP),
    metrics: bool = typer.Option(False, "--metrics", help=METRICS_HELP),
    log_level: str = typer.Option("WARNING", "--log-level", help=LOG_LEVEL_HELP),
):
    """Extract decisions."""
    setup_logging(log_level=log_level)

    async def go():
        async with _engine(data, metrics) as engine:
            if global_scope:
                return await engine.extract_decisions_global(target, force_refresh=refresh)
            return await engine.extract_decisions(target, force_refresh=refresh)

    _emit(_as_dicts(_run(go)))


@app.command("priority-messages")
def priority_messages(
    conversation_id: str = typer.Argument(None, help="Conversation id; omit with --user to scan all"),
    viewer: str = typer.Option(None, "--viewer", help="Exclude messages sent by this user"),
    user: str = typer.Option(None, "--user", help="Scan this user's recent conversations, skipping their messages"),
    data: str = typer.Option(None, "--data", help=DATA_HELP),
    metrics: bool = typer.Option(False, "--metrics", help=METRICS_HELP),
    log_level: str = typer.Option("WARNING", "--log-level", help=LOG_LEVEL_HELP),
):
    """List high and urgent messages from the last days."""
    setup_logging(log_level=log_level)

    if conversation_id is None and user is None:
        typer.echo("Error: give a conversation id or --user", err=True)
        sys.exit(2)

    async def go():
        async with _engine(data, metrics) as engine:
            if user:
                return await engine.extract_priority_messages_for_user(user, conversation_id=conversation_id)
            return await engine.extract_priority_messages(conversation_id, viewer_id=viewer)

    _emit(_as_dicts(_run(go)))


@app.command()
def score(
    text: str = typer.Argument(..., help="Message text to score"),
):
    """Score a single message text."""
    _emit(score_priority(text).to_dict())


@app.command("clear-cache")
def clear_cache(
    conversation_id: str = typer.Argument(None, help="Conversation id; omit to clear every entry"),
    log_level: str = typer.Option("WARNING", "--log-level", help=LOG_LEVEL_HELP),
):
    """Invalidate cached insights."""
    setup_logging(log_level=log_level)

    removed = asyncio.run(clear_insights(build_cache(Config()), conversation_id))
    _emit({"cleared": removed, "conversation_id": conversation_id})


if __name__ == "__main__":
    app()
