"""Command-line interface for the exam question bank pipeline."""

import asyncio
import logging
import signal
import sys
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from qbank_pipeline.config import get_settings
from qbank_pipeline.models import RunSummary
from qbank_pipeline.pipeline import build_dependencies, run_audit, run_import
from qbank_pipeline.pipeline.stages import ConsistencyChecker

# Configure structlog for CLI
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(ensure_ascii=False),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

app = typer.Typer(
    name="qbank",
    help="Exam question bank pipeline - extract, validate, store and repair exam questions",
    add_completion=False,
)
console = Console()

INPUT_SUFFIXES = (".pdf", ".txt")


def _configure_logging(verbose: bool) -> None:
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)


def _collect_inputs(paths: list[Path]) -> list[Path]:
    """Expand directories into the PDF / text files they contain."""
    files = []
    for path in paths:
        if path.is_dir():
            files.extend(
                sorted(p for p in path.rglob("*") if p.suffix.lower() in INPUT_SUFFIXES)
            )
        else:
            files.append(path)
    return files


def _install_cancel_handler(cancel_event: asyncio.Event) -> None:
    """Set the cancel event on Ctrl-C so in-flight documents finish cleanly."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        # add_signal_handler is unavailable on Windows event loops
        pass


@app.command()
def ingest(
    paths: list[Path] = typer.Argument(
        ...,
        help="Exam PDFs / text files, or directories containing them",
        exists=True,
        readable=True,
    ),
    strategy: str = typer.Option(
        None,
        "--strategy",
        "-s",
        help="Structuring strategy: auto, regex or llm (default from settings)",
    ),
    mode: str = typer.Option(
        None,
        "--mode",
        "-m",
        help="LLM extraction mode: chunked or paginated (default from settings)",
    ),
    concurrency: int = typer.Option(
        None,
        "--concurrency",
        "-c",
        min=1,
        help="Documents processed concurrently (default from settings)",
    ),
    no_fix: bool = typer.Option(
        False,
        "--no-fix",
        help="Flag audit findings without calling the LLM repair",
    ),
    resolve_keys: bool = typer.Option(
        False,
        "--resolve-keys",
        help="Ask the LLM for answer keys the quality gate defaulted",
    ),
    output: Path = typer.Option(
        None,
        "--output",
        "-o",
        help="Write the run summary as JSON to this file",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Import exam documents into the question bank."""
    _configure_logging(verbose)

    if strategy not in (None, "auto", "regex", "llm"):
        console.print(f"[red]Error:[/red] unknown strategy {strategy!r}")
        raise typer.Exit(code=2)
    if mode not in (None, "chunked", "paginated"):
        console.print(f"[red]Error:[/red] unknown mode {mode!r}")
        raise typer.Exit(code=2)

    files = _collect_inputs(paths)
    if not files:
        console.print("[yellow]No PDF or text files found.[/yellow]")
        raise typer.Exit(code=1)

    console.print(
        Panel.fit(
            "[bold blue]Question Bank Pipeline[/bold blue]\n"
            f"Importing {len(files)} document(s)...",
            border_style="blue",
        )
    )

    async def _run() -> RunSummary:
        deps = build_dependencies(
            strategy=strategy,
            mode=mode,
            auto_fix=not no_fix,
            resolve_answer_keys=True if resolve_keys else None,
        )
        _install_cancel_handler(deps.cancel_event)
        return await run_import(files, deps, max_concurrent_documents=concurrency)

    try:
        summary = asyncio.run(_run())
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        if verbose:
            console.print_exception()
        sys.exit(1)

    _display_summary(summary)

    if output:
        output.write_text(summary.model_dump_json(indent=2), encoding="utf-8")
        console.print(f"\n[green]Summary saved to:[/green] {output}")

    if summary.documents_failed and not summary.documents_processed:
        sys.exit(1)


@app.command()
def audit(
    document_id: int = typer.Argument(None, help="Audit only this document (default: all)"),
    flagged: bool = typer.Option(False, "--flagged", help="Only re-process rows still flagged"),
    no_fix: bool = typer.Option(False, "--no-fix", help="Report findings without repairing"),
    resolve_keys: bool = typer.Option(
        False, "--resolve-keys", help="Also ask the LLM for answer keys the quality gate defaulted"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Audit stored questions and repair defective ones."""
    _configure_logging(verbose)

    async def _run() -> RunSummary:
        deps = build_dependencies(auto_fix=not no_fix)
        _install_cancel_handler(deps.cancel_event)
        return await run_audit(
            deps,
            document_id=document_id,
            flagged_only=flagged,
            fix=not no_fix,
            resolve_keys=resolve_keys,
        )

    try:
        summary = asyncio.run(_run())
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        if verbose:
            console.print_exception()
        sys.exit(1)

    table = Table(title="Audit")
    table.add_column("Document")
    table.add_column("Findings", justify="right")
    table.add_column("Repaired", justify="right")
    table.add_column("Still flagged", justify="right")
    for doc in summary.documents:
        table.add_row(
            f"{doc.document_id} {doc.title}",
            str(doc.audit_findings),
            str(doc.repairs_applied),
            str(doc.repair_failures),
        )
    console.print(table)

    if summary.unresolved_question_ids:
        console.print(f"[yellow]Unresolved questions:[/yellow] {summary.unresolved_question_ids}")
    if summary.answer_keys:
        console.print(
            f"Answer keys resolved: {summary.answer_keys_resolved}, "
            f"unresolved: {summary.answer_keys_unresolved}"
        )


@app.command()
def check() -> None:
    """Run the read-only consistency check on the store."""
    from qbank_pipeline.storage import QuestionRepository

    settings = get_settings()
    report = ConsistencyChecker(QuestionRepository.from_url(settings.database_url)).check()

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Count", justify="right")
    table.add_row("Documents", str(report.documents))
    table.add_row("Questions", str(report.questions))
    table.add_row("Embeddings", str(report.embeddings))
    table.add_row("Flagged questions", str(report.flagged_questions))
    table.add_row("Normalized answer keys", str(report.normalized_answer_keys))
    table.add_row("Documents without questions", str(report.documents_without_questions))
    table.add_row("Documents without embeddings", str(report.documents_without_embeddings))
    console.print(table)

    if report.consistent:
        console.print("[green]Store is consistent.[/green]")
    else:
        console.print("[yellow]Discrepancies:[/yellow]")
        for discrepancy in report.discrepancies:
            console.print(f"  - {discrepancy}")
        sys.exit(1)


@app.command()
def info() -> None:
    """Display system information and configuration."""
    from qbank_pipeline import __version__

    settings = get_settings()

    console.print(Panel.fit("[bold blue]Question Bank Pipeline[/bold blue]", border_style="blue"))

    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Version", __version__)
    table.add_row("Database", settings.database_url)
    table.add_row("LLM Enabled", str(settings.llm_enabled))
    table.add_row("LLM Model", settings.llm_model_name)
    table.add_row("Fallback Model", settings.llm_fallback_model_name or "-")
    table.add_row("Ollama URL", settings.llm_ollama_base_url)
    table.add_row("Strategy", settings.structuring_strategy)
    table.add_row("LLM Mode", settings.llm_extraction_mode)
    table.add_row("Answer Key Policy", settings.answer_key_policy)
    table.add_row("Answer Key Resolution", str(settings.answer_key_resolution_enabled))
    table.add_row("Chunk Target", f"{settings.chunk_target_tokens} tokens")
    table.add_row("Documents in Parallel", str(settings.max_concurrent_documents))
    table.add_row("LLM Calls in Parallel", str(settings.max_concurrent_llm_calls))

    console.print(table)


def _display_summary(summary: RunSummary) -> None:
    console.print("\n[bold]Run Summary[/bold]")
    console.print("-" * 40)
    console.print(f"[dim]Run:[/dim] {summary.run_id}")

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Count", justify="right")

    table.add_row("Documents processed", str(summary.documents_processed))
    table.add_row("Documents failed", str(summary.documents_failed))
    table.add_row("Documents cancelled", str(summary.documents_cancelled))
    table.add_row("Candidates extracted", str(summary.candidates_extracted))
    table.add_row("Accepted", str(summary.accepted))
    table.add_row("Rejected", str(summary.rejected))
    table.add_row("Duplicates", str(summary.duplicates))
    table.add_row("Persisted", str(summary.persisted))
    table.add_row("Answer keys normalized", str(summary.answer_keys_normalized))
    table.add_row("Audit findings", str(summary.audit_findings))
    table.add_row("Repairs applied", str(summary.repairs_applied))
    table.add_row("Repair failures", str(summary.repair_failures))
    if summary.answer_keys:
        table.add_row("Answer keys resolved", str(summary.answer_keys_resolved))
        table.add_row("Answer keys unresolved", str(summary.answer_keys_unresolved))

    console.print(table)

    if summary.rejections_by_reason:
        console.print("\n[bold]Rejections by reason[/bold]")
        for reason, count in sorted(summary.rejections_by_reason.items()):
            console.print(f"  {reason}: {count}")

    failed = [d for d in summary.documents if d.failed]
    if failed:
        console.print("\n[yellow]Failed documents:[/yellow]")
        for doc in failed:
            message = doc.errors[0].message if doc.errors else "unknown error"
            console.print(f"  {doc.title}: {message}")

    if summary.unresolved_question_ids:
        console.print(f"\n[yellow]Unresolved questions:[/yellow] {summary.unresolved_question_ids}")

    if summary.consistency is not None and not summary.consistency.consistent:
        console.print("\n[yellow]Store discrepancies:[/yellow]")
        for discrepancy in summary.consistency.discrepancies:
            console.print(f"  - {discrepancy}")

    console.print(
        f"\n[dim]Processed in {summary.duration_seconds:.1f}s "
        f"with {summary.llm_calls} LLM calls[/dim]"
    )


if __name__ == "__main__":
    app()
