"""code-search CLI application with Typer."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer

from codesearch import __version__
from codesearch.app.ports.document import Document
from codesearch.bootstrap import bootstrap_application
from codesearch.config import get_settings, set_settings
from codesearch.errors import CodeSearchError
from codesearch.ingest import iter_source_documents, read_document_jsonl
from codesearch.utils.cli_output import json_response

if TYPE_CHECKING:
    from codesearch.bootstrap import ApplicationContainer

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="code-search",
    help="Semantic code search: embed source snippets and query them by meaning",
    add_completion=False,
    no_args_is_help=True,
)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"code-search version {__version__}")
        raise typer.Exit()


def exit_code_for(exc: CodeSearchError) -> int:
    """1 for bad input or unknown ids, 2 when retrying may succeed."""
    return 2 if exc.retryable else 1


@contextmanager
def open_container(*, recover: bool = True) -> Iterator[ApplicationContainer]:
    """Bootstrap the application and translate core errors into exit codes."""
    container: ApplicationContainer | None = None
    try:
        container = bootstrap_application(get_settings(), recover=recover)
        yield container
    except CodeSearchError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=exit_code_for(exc)) from exc
    finally:
        if container is not None:
            container.close()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", help="Override data directory"),
    ] = None,
    storage_uri: Annotated[
        str | None,
        typer.Option("--storage", help="Vector store location (directory or sqlite:///file.db)"),
    ] = None,
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)"),
    ] = "WARNING",
) -> None:
    """code-search - semantic search over source code."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        typer.secho(f"Invalid log level: {log_level}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    logging.basicConfig(level=level, format=LOG_FORMAT)

    settings = get_settings()
    if data_dir:
        settings.data_dir = data_dir
    if storage_uri:
        settings.storage_uri = storage_uri
    set_settings(settings)


def _collect_documents(
    paths: list[Path], *, jsonl: bool, window: int, overlap: int, repo: str | None
) -> list[Document]:
    documents: list[Document] = []
    for path in paths:
        if jsonl:
            documents.extend(read_document_jsonl(path))
        else:
            documents.extend(iter_source_documents(path, window=window, overlap=overlap, repo=repo))
    return documents


@app.command("ingest")
def ingest(
    paths: Annotated[list[Path], typer.Argument(help="Source files/directories, or JSONL files with --jsonl")],
    jsonl: Annotated[
        bool,
        typer.Option("--jsonl", help="Treat inputs as JSONL documents ({id, text, metadata})"),
    ] = False,
    window: Annotated[int, typer.Option("--window", min=1, help="Lines per snippet")] = 40,
    overlap: Annotated[int, typer.Option("--overlap", min=0, help="Lines shared by adjacent snippets")] = 10,
    repo: Annotated[str | None, typer.Option("--repo", help="Repository name stored in metadata")] = None,
    prune: Annotated[
        bool,
        typer.Option("--prune", help="Delete stored documents not produced by this run"),
    ] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output summary as JSON")] = False,
) -> None:
    """Embed and index source snippets."""
    try:
        documents = _collect_documents(paths, jsonl=jsonl, window=window, overlap=overlap, repo=repo)
    except (FileNotFoundError, ValueError) as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    with open_container() as container:
        outcomes = container.index_service.ingest_many(documents)
        pruned: list[str] = []
        if prune:
            pruned = container.index_service.prune(outcome.id for outcome in outcomes)

    failures = [outcome for outcome in outcomes if not outcome.ok]
    indexed = len(outcomes) - len(failures)

    if json_output:
        typer.echo(
            json_response(
                "ingest_summary",
                1,
                total=len(outcomes),
                indexed=indexed,
                failed=len(failures),
                pruned=pruned,
                receipts=[o.receipt.model_dump(mode="json") for o in outcomes if o.receipt],
                errors=[
                    {"id": o.id, "error": str(o.error), "retryable": o.error.retryable}
                    for o in failures
                    if o.error is not None
                ],
            )
        )
    else:
        typer.secho(f"Indexed {indexed}/{len(outcomes)} snippets", fg=typer.colors.GREEN)
        if pruned:
            typer.echo(f"Pruned {len(pruned)} stale snippets")
        for outcome in failures:
            typer.secho(f"  {outcome.id}: {outcome.error}", fg=typer.colors.YELLOW, err=True)

    if failures:
        retryable = any(o.error is not None and o.error.retryable for o in failures)
        raise typer.Exit(code=2 if retryable else 1)


@app.command("delete")
def delete(
    identifiers: Annotated[list[str], typer.Argument(help="Document ids to delete")],
) -> None:
    """Delete documents from the store and index (unknown ids are ignored)."""
    with open_container() as container:
        removed = [identifier for identifier in identifiers if container.index_service.delete(identifier)]
    typer.echo(f"Deleted {len(removed)} of {len(identifiers)} documents")


def _build_filter(lang: list[str] | None, path_prefix: str | None) -> dict[str, Any] | None:
    conditions: dict[str, Any] = {}
    if lang:
        conditions["lang"] = lang[0] if len(lang) == 1 else list(lang)
    if path_prefix:
        conditions["path"] = {"prefix": path_prefix}
    return conditions or None


@app.command("query")
def query(
    text: Annotated[str, typer.Argument(help="Natural-language or code query")],
    k: Annotated[int, typer.Option("--k", "-k", help="Number of results")] = 10,
    lang: Annotated[
        list[str] | None,
        typer.Option("--lang", help="Restrict to language (repeatable)"),
    ] = None,
    path_prefix: Annotated[
        str | None,
        typer.Option("--path-prefix", help="Restrict to paths starting with this prefix"),
    ] = None,
    metric: Annotated[
        str | None,
        typer.Option("--metric", help="Override metric: cosine, l2 or dot"),
    ] = None,
    diversify: Annotated[
        bool,
        typer.Option("--diversify", help="Drop overlapping snippets and diversify by MMR"),
    ] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Output results as JSON")] = False,
) -> None:
    """Search indexed snippets."""
    with open_container() as container:
        response = container.query_service.query(
            text,
            k,
            filter=_build_filter(lang, path_prefix),
            metric=metric,
            diversify=diversify,
        )

    if json_output:
        typer.echo(json_response("query_results", 1, query=text, **response.model_dump(mode="json")))
        return

    if response.clamped:
        typer.secho(
            f"Note: k={response.requested_k} exceeds the maximum; showing {response.effective_k}",
            fg=typer.colors.YELLOW,
            err=True,
        )
    if not response.results:
        typer.echo("No results.")
        return
    for rank, result in enumerate(response.results, start=1):
        meta = result.metadata
        location = meta.get("path", "")
        if "start_line" in meta and "end_line" in meta:
            location = f"{location}:{meta['start_line']}-{meta['end_line']}"
        typer.secho(f"{rank:>3}. {result.score:.4f}  {result.id}", fg=typer.colors.CYAN)
        if location:
            typer.echo(f"     {location}")


@app.command("rebuild")
def rebuild() -> None:
    """Rebuild the similarity index from the vector store."""
    with open_container(recover=False) as container:
        report = container.index_service.rebuild()
    typer.secho(
        f"Rebuilt index: {report.loaded} entries ({report.skipped} skipped) "
        f"in {report.duration_ms:.1f} ms",
        fg=typer.colors.GREEN,
    )


@app.command("compact")
def compact() -> None:
    """Rewrite the vector store to hold only live records."""
    with open_container(recover=False) as container:
        compactor = getattr(container.store, "compact", None)
        if compactor is None:
            typer.echo("Store does not support compaction.")
            return
        live = compactor()
    typer.secho(f"Compacted store: {live} live records", fg=typer.colors.GREEN)


@app.command("health")
def health(
    json_output: Annotated[bool, typer.Option("--json", help="Output status as JSON")] = False,
) -> None:
    """Report whether the index finished rebuilding from the store."""
    with open_container() as container:
        status = container.index_service.health()

    if json_output:
        typer.echo(json_response("health", 1, **status.model_dump(mode="json")))
    else:
        state = "ready" if status.ready else "rebuilding"
        typer.echo(
            f"{state}: {status.indexed} entries, dim={status.dimensions}, "
            f"model={status.model}, index={status.index_backend}"
        )
    if not status.ready:
        raise typer.Exit(code=2)


if __name__ == "__main__":
    app()
