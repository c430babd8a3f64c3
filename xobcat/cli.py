"""Command-line interface for XOB CAT."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console

from xobcat import __version__
from xobcat.config import load_settings

if TYPE_CHECKING:
    from xobcat.engine.manager import AnalysisManager

app = typer.Typer(
    name="xobcat",
    help="Chatbot session analysis: sample, classify, and summarise conversations.",
    no_args_is_help=True,
)
console = Console(width=min(80, Console().width))

_POLL_INTERVAL = 0.5  # seconds


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"xobcat {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version", "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Chatbot session analysis: sample, classify, and summarise conversations."""


# ---------------------------------------------------------------------------
# Serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Port to serve on."),
    ] = 3001,
    host: Annotated[
        str,
        typer.Option("--host", help="Interface to bind."),
    ] = "127.0.0.1",
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Launch the Auto-Analyze API server."""
    import uvicorn

    from xobcat.logging import setup_logging
    from xobcat.server.app import create_app

    settings = load_settings()
    setup_logging(data_dir=settings.data_dir, verbose=verbose)

    console.print(f"\n  API: [bold cyan]http://{host}:{port}/api/docs[/bold cyan]\n")
    app_instance = create_app(settings, verbose=verbose)
    uvicorn.run(
        app_instance,
        host=host,
        port=port,
        log_level="info" if verbose else "warning",
    )


# ---------------------------------------------------------------------------
# Import sessions
# ---------------------------------------------------------------------------


@app.command(name="import-sessions")
def import_sessions_cmd(
    path: Annotated[
        Path,
        typer.Argument(
            help="JSON file of exported chat sessions.",
            exists=True,
            file_okay=True,
            dir_okay=False,
        ),
    ],
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Import chat sessions from a JSON export into the local database."""
    from xobcat.config import database_url
    from xobcat.logging import setup_logging
    from xobcat.server.db import create_session_factory, get_engine, init_db
    from xobcat.sources.database import import_sessions, load_sessions_json

    settings = load_settings()
    setup_logging(data_dir=settings.data_dir, verbose=verbose)

    try:
        sessions = load_sessions_json(path)
    except ValueError as exc:
        console.print(f"[red]Could not read {path.name}:[/red] {exc}")
        raise typer.Exit(1)

    engine = get_engine(database_url(settings))
    init_db(engine)
    db = create_session_factory(engine)()
    try:
        added = import_sessions(db, sessions)
    finally:
        db.close()

    console.print(
        f"Imported [bold]{added}[/bold] of {len(sessions)} sessions "
        f"({len(sessions) - added} already present)."
    )


# ---------------------------------------------------------------------------
# Analyze
# ---------------------------------------------------------------------------


async def _run_analysis(manager: AnalysisManager, raw_config: dict[str, object]) -> str:
    from xobcat.models import TERMINAL_PHASES

    analysis_id = manager.start(raw_config)

    with console.status("Preparing analysis") as status_line:
        while True:
            progress = manager.progress(analysis_id)
            status_line.update(f"[{progress.percentage:3d}%] {progress.display_step}")
            if progress.phase in TERMINAL_PHASES:
                break
            await asyncio.sleep(_POLL_INTERVAL)
        await manager.wait(analysis_id)
    return analysis_id


@app.command()
def analyze(
    start_date: Annotated[
        str,
        typer.Option("--date", "-d", help="Start date, YYYY-MM-DD (dashboard time zone)."),
    ],
    start_time: Annotated[
        str,
        typer.Option("--time", "-t", help="Start time, HH:MM 24-hour."),
    ] = "09:00",
    session_count: Annotated[
        int,
        typer.Option("--count", "-n", help="Number of sessions to analyze (5-1000)."),
    ] = 100,
    model_id: Annotated[
        str,
        typer.Option("--model", "-m", help="Model id, e.g. gpt-4o-mini."),
    ] = "gpt-4o-mini",
    api_key: Annotated[
        str,
        typer.Option("--api-key", envvar="OPENAI_API_KEY", help="LLM API key."),
    ] = "",
    context: Annotated[
        str,
        typer.Option("--context", help="Additional instructions for the classifier."),
    ] = "",
    input_file: Annotated[
        Path | None,
        typer.Option(
            "--input", "-i",
            help="Analyze sessions from a JSON export instead of the database.",
            exists=True,
            dir_okay=False,
        ),
    ] = None,
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Where to write the results JSON."),
    ] = Path("analysis-results.json"),
    no_summary: Annotated[
        bool,
        typer.Option("--no-summary", help="Skip the LLM-written analysis summary."),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Run Auto-Analyze in the foreground and write the results to a file."""
    from xobcat.config import database_url
    from xobcat.engine.manager import AnalysisManager
    from xobcat.errors import ConfigValidationError
    from xobcat.logging import setup_logging
    from xobcat.models import Phase
    from xobcat.sources import InMemorySessionSource, SessionSource

    settings = load_settings(generate_summary=False if no_summary else None)
    setup_logging(data_dir=settings.data_dir, verbose=verbose)

    source: SessionSource
    if input_file is not None:
        from xobcat.sources.database import load_sessions_json

        source = InMemorySessionSource(load_sessions_json(input_file))
    elif settings.session_api_url:
        from xobcat.sources.http import HttpSessionSource

        source = HttpSessionSource(
            settings.session_api_url,
            token=settings.session_api_token,
            timeout=settings.session_api_timeout,
        )
    else:
        from xobcat.server.db import create_session_factory, get_engine, init_db
        from xobcat.sources.database import DatabaseSessionSource

        engine = get_engine(database_url(settings))
        init_db(engine)
        source = DatabaseSessionSource(create_session_factory(engine))

    manager = AnalysisManager(settings, source)
    raw_config: dict[str, object] = {
        "startDate": start_date,
        "startTime": start_time,
        "sessionCount": session_count,
        "modelId": model_id,
        "openaiApiKey": api_key,
        "additionalContext": context,
    }

    try:
        analysis_id = asyncio.run(_run_analysis(manager, raw_config))
    except ConfigValidationError as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(2)

    progress = manager.progress(analysis_id)
    if progress.phase is not Phase.COMPLETE:
        console.print(f"[red]Analysis failed:[/red] {progress.error}")
        raise typer.Exit(1)

    results = manager.results(analysis_id)
    output.write_text(results.model_dump_json(by_alias=True, indent=2), encoding="utf-8")

    if progress.no_sessions_found:
        console.print(f"[yellow]{results.message}[/yellow]")
    else:
        console.print(
            f"Analyzed [bold]{len(results.sessions)}[/bold] sessions: "
            f"{len(results.taxonomy.general_intents)} intents, "
            f"{progress.tokens_used:,} tokens, ~${progress.estimated_cost:.4f}"
        )
    console.print(f"Results written to [bold]{output}[/bold]")


# British English alias for analyze
analyse = app.command(name="analyse", hidden=True)(analyze)
