import asyncio
import os
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, NamedTuple, TypeVar

import typer

from revsight.config import settings
from revsight.core.errors import RevsightError
from revsight.core.models import Analysis, ItemIdentifier, ItemType
from revsight.core.registry import ComponentRegistry
from revsight.infrastructure.host.github import GitHubClient
from revsight.infrastructure.oracle.gemini import GeminiOracle
from revsight.infrastructure.oracle.local import LocalEmbeddingOracle
from revsight.infrastructure.storage.mappers import RecordMapper
from revsight.logger import configure_logger
from revsight.services.aggregation import Aggregator
from revsight.services.file_analyzer import FileAnalyzer
from revsight.services.fanout import FanOutOrchestrator
from revsight.services.lifecycle import AnalysisCoordinator
from revsight.services.search import SimilaritySearchService
from revsight.services.selection import ContentSelector
from revsight.services.triage import TriageService

T = TypeVar("T")

app = typer.Typer(
    help="revsight: AI change-set analysis with semantic similarity over past findings",
    no_args_is_help=True,
)


class Services(NamedTuple):
    """Container for resolved service dependencies."""

    host: Any
    store: Any
    coordinator: AnalysisCoordinator
    search: SimilaritySearchService
    triage: TriageService


def version_callback(value: bool) -> None:
    if value:
        from revsight import __version__

        typer.echo(f"revsight version: {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config_file: Annotated[
        str, typer.Option("--config-file", "-c", help="Path to config.yaml file.")
    ] = "config.yaml",
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show the version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """revsight: analyse pull requests and snapshots, then search past findings."""
    from revsight.config import load_settings

    # Export to environment so uvicorn subprocesses (in API mode) inherit it
    os.environ["REVSIGHT_CONFIG_FILE"] = config_file

    # Dynamically update the current process global settings singleton
    new_settings = load_settings(config_file)
    for field in type(new_settings).model_fields:
        setattr(settings, field, getattr(new_settings, field))

    configure_logger(settings.log_level, settings.log_serialize)


def _build_oracle() -> Any:
    oracle_config = settings.oracle
    oracle: Any = GeminiOracle(
        api_key=oracle_config.api_key,
        analysis_model=oracle_config.analysis_model,
        summary_model=oracle_config.summary_model,
        embedding_model=oracle_config.embedding_model,
        timeout_seconds=oracle_config.timeout_seconds,
    )

    if oracle_config.embedder != "remote":
        EmbedderClass = ComponentRegistry.get_embedder(oracle_config.embedder)
        embedder = EmbedderClass(
            model_name=oracle_config.mlx_model_name,
            max_token_length=oracle_config.max_token_length,
            dimension=settings.search.vector_dimension,
        )
        oracle = LocalEmbeddingOracle(oracle, embedder)
    return oracle


def _build_dependencies() -> Services:
    """Dependency Injection Factory driven by config.yaml configuration."""
    host = GitHubClient(
        api_url=settings.host.api_url,
        token=settings.host.token,
        timeout_seconds=settings.host.timeout_seconds,
        per_page=settings.host.per_page,
    )
    oracle = _build_oracle()

    StoreClass = ComponentRegistry.get_store(settings.store_type)
    if settings.store_type == "lancedb":
        store = StoreClass(
            db_path=settings.db_path,
            mapper=RecordMapper(vector_dimension=settings.search.vector_dimension),
        )
    else:
        store = StoreClass()

    analysis_config = settings.analysis
    orchestrator = FanOutOrchestrator(
        selector=ContentSelector(host, analysis_config),
        analyzer=FileAnalyzer(oracle, settings.search.vector_dimension),
        concurrency=analysis_config.concurrency,
    )
    coordinator = AnalysisCoordinator(
        host=host,
        store=store,
        orchestrator=orchestrator,
        aggregator=Aggregator(oracle),
        max_files=analysis_config.max_files,
        max_scan_files=analysis_config.max_scan_files,
    )
    return Services(
        host=host,
        store=store,
        coordinator=coordinator,
        search=SimilaritySearchService(store, oracle, settings.search),
        triage=TriageService(store),
    )


def _execute(action: Callable[[Services], Awaitable[T]]) -> T:
    """Runs one async action against freshly built services, mapping domain errors to exit codes."""
    services = _build_dependencies()

    async def _main() -> T:
        try:
            return await action(services)
        finally:
            await services.host.aclose()

    try:
        return asyncio.run(_main())
    except RevsightError as e:
        typer.echo(f"Error ({e.status_code}): {e}", err=True)
        raise typer.Exit(code=1) from e


def _echo_analysis(analysis: Analysis) -> None:
    typer.echo(f"Analysis {analysis.id} ({len(analysis.file_results)} files)")
    typer.echo(
        f"  quality {analysis.quality_score:.1f} | complexity {analysis.complexity:.1f} "
        f"| maintainability {analysis.maintainability:.1f}"
    )
    typer.echo(
        f"  {len(analysis.security_issues)} security issues, {len(analysis.suggestions)} suggestions"
    )
    for result in analysis.file_results:
        marker = "+" if result.embedding is not None else "-"
        typer.echo(f"  [{marker}] {result.filename}: {result.quality_score:.1f}")
    typer.echo(f"\n{analysis.insight}")


@app.command()
def analyze(
    owner: Annotated[str, typer.Argument(help="Repository owner.")],
    repo: Annotated[str, typer.Argument(help="Repository name.")],
    number: Annotated[int, typer.Argument(help="Pull request number.")],
) -> None:
    """Analyses a pull request, replacing any earlier analysis of it."""
    analysis = _execute(lambda s: s.coordinator.request_analysis(owner, repo, number))
    _echo_analysis(analysis)


@app.command()
def scan(
    owner: Annotated[str, typer.Argument(help="Repository owner.")],
    repo: Annotated[str, typer.Argument(help="Repository name.")],
    ref: Annotated[
        str | None,
        typer.Option("--ref", "-r", help="Branch or commit to scan (default branch if omitted)."),
    ] = None,
) -> None:
    """Analyses a repository snapshot."""
    analysis = _execute(lambda s: s.coordinator.request_scan(owner, repo, ref))
    _echo_analysis(analysis)


@app.command()
def summary(
    analysis_id: Annotated[str, typer.Argument(help="Analysis to summarise again.")],
) -> None:
    """Regenerates the narrative summary of a stored analysis."""
    result = _execute(lambda s: s.coordinator.summarize_analysis(analysis_id))
    typer.echo(f"{result.title} ({result.analysis_id})")
    typer.echo(result.summary)


@app.command()
def similar(
    analysis_id: Annotated[str, typer.Argument(help="Analysis holding the query file.")],
    filename: Annotated[str, typer.Argument(help="File whose embedding is the query.")],
    limit: Annotated[
        int | None, typer.Option("--limit", "-l", help="Maximum number of results to return.")
    ] = None,
) -> None:
    """Finds stored files similar to one already analysed file."""

    async def _action(s: Services) -> None:
        s.search.print_results(await s.search.find_similar(analysis_id, filename, limit))

    _execute(_action)


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Free text or code to search for.")],
    limit: Annotated[
        int | None, typer.Option("--limit", "-l", help="Maximum number of results to return.")
    ] = None,
) -> None:
    """Searches stored files semantically with free text."""

    async def _action(s: Services) -> None:
        s.search.print_results(await s.search.search_text(query, limit))

    _execute(_action)


@app.command()
def resolve(
    analysis_id: Annotated[str, typer.Argument(help="Analysis containing the item.")],
    title: Annotated[str, typer.Option("--title", help="Item title.")],
    file: Annotated[str, typer.Option("--file", help="File the item refers to.")],
    description: Annotated[str, typer.Option("--description", help="Item description.")],
    line: Annotated[int | None, typer.Option("--line", help="Item line, if any.")] = None,
    item_type: Annotated[
        ItemType, typer.Option("--type", "-t", help="Kind of item.")
    ] = ItemType.SECURITY,
    reopen: Annotated[
        bool, typer.Option("--reopen", help="Mark the item as open again.")
    ] = False,
) -> None:
    """Marks an issue or suggestion as resolved (or reopens it)."""
    identifier = ItemIdentifier(title=title, file=file, line=line, description=description)
    resolution = _execute(
        lambda s: s.triage.set_resolved(analysis_id, item_type, identifier, not reopen)
    )
    typer.echo(f"{item_type.value} '{title}' resolved={resolution.resolved}")


@app.command()
def serve(
    host: Annotated[
        str, typer.Option("--host", "-h", help="Host to bind the API server to.")
    ] = "127.0.0.1",
    port: Annotated[
        int, typer.Option("--port", "-p", help="Port to bind the API server to.")
    ] = 8000,
    reload: Annotated[
        bool, typer.Option("--reload", help="Enable auto-reload for development.")
    ] = False,
) -> None:
    """Starts the asynchronous FastAPI server."""
    import uvicorn

    typer.echo(f"Starting revsight API server at http://{host}:{port}...")
    uvicorn.run("revsight.api.main:app", host=host, port=port, reload=reload)


@app.command()
def mcp() -> None:
    """Starts the FastMCP standard input/output (stdio) server for integrations."""
    import sys

    from revsight.api.mcp_server import mcp as mcp_server
    from revsight.api.state import _services

    print("[MCP Startup] Initializing GitHub client, oracle and store...", file=sys.stderr)
    try:
        _services.update(_build_dependencies()._asdict())
    except Exception as e:
        print(f"[MCP Startup] Failed to initialize services: {e}", file=sys.stderr)
        raise

    mcp_server.run()


if __name__ == "__main__":
    app()
