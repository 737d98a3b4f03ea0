"""
Command-line interface for regmatrix.
"""

import asyncio
import json

import click
import structlog

from regmatrix.config import get_settings
from regmatrix.exceptions import RegMatrixError
from regmatrix.logging_config import configure_logging

logger = structlog.get_logger(__name__)


def _run(coro):
    """Run a coroutine and dispose of the store's connections afterwards."""
    from regmatrix.storage.store import get_compliance_store

    async def runner():
        try:
            return await coro
        finally:
            await get_compliance_store().close()

    try:
        return asyncio.run(runner())
    except RegMatrixError as e:
        raise click.ClickException(str(e))


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--json-logs", is_flag=True, help="Render logs as JSON lines")
@click.pass_context
def cli(ctx: click.Context, debug: bool, json_logs: bool) -> None:
    """RegMatrix: regulatory obligation matching and T&Cs analysis."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug

    settings = get_settings()
    configure_logging(
        "DEBUG" if debug else settings.log_level,
        json_logs or settings.json_logs,
    )


# =========================================================================
# Server Commands
# =========================================================================


@cli.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    click.echo(f"Starting RegMatrix API server on {host}:{port}")

    uvicorn.run(
        "regmatrix.api.main:app",
        host=host,
        port=port,
        reload=reload,
    )


@cli.command()
def init_db() -> None:
    """Create database tables."""
    from regmatrix.storage.store import get_compliance_store

    click.echo("Initializing database schema...")
    _run(get_compliance_store().create_all())
    click.echo("Done.")


# =========================================================================
# Batch Commands
# =========================================================================


@cli.command()
@click.argument("document_ids", nargs=-1, required=True)
def submit(document_ids: tuple[str, ...]) -> None:
    """Submit documents for batch analysis."""
    from regmatrix.exceptions import ProviderSubmissionError
    from regmatrix.pipeline.orchestrator import get_batch_orchestrator

    orchestrator = get_batch_orchestrator()

    async def submit_documents():
        try:
            return await orchestrator.create_batch_for_documents(list(document_ids))
        except ProviderSubmissionError as e:
            await orchestrator.reset_documents_to_pending(e.document_ids)
            raise

    job = _run(submit_documents())
    click.echo(f"Batch job: {job.id}")
    click.echo(f"Provider batch: {job.provider_batch_id}")
    click.echo(f"Requests: {job.total_requests}")


@cli.command()
@click.argument("job_id")
def poll(job_id: str) -> None:
    """Poll one batch job."""
    from regmatrix.pipeline.orchestrator import get_batch_orchestrator

    summary = _run(get_batch_orchestrator().poll_batch_job(job_id))
    click.echo(json.dumps(summary.to_dict(), indent=2))


@cli.command()
def resolve() -> None:
    """Poll every outstanding batch job."""
    from regmatrix.pipeline.orchestrator import get_batch_orchestrator

    summaries = _run(get_batch_orchestrator().resolve_outstanding_batches())
    if not summaries:
        click.echo("No outstanding batch jobs.")
        return
    for summary in summaries:
        click.echo(
            f"{summary.id}  {summary.status.value:<10}  "
            f"{summary.succeeded_count} succeeded, {summary.failed_count} failed"
        )


@cli.command()
@click.argument("document_id")
@click.option("--show-prompts", is_flag=True, help="Print full prompt text")
def preview(document_id: str, show_prompts: bool) -> None:
    """Show the requests a batch submission would send for a document."""
    from regmatrix.pipeline.orchestrator import get_batch_orchestrator

    requests = _run(get_batch_orchestrator().preview_requests(document_id))
    if not requests:
        click.echo("No applicable obligations; nothing would be submitted.")
        return

    click.echo(f"\n{len(requests)} request(s):\n")
    for request in requests:
        click.echo(
            f"  {request.custom_id}  {request.regulation_title}  "
            f"max_tokens={request.prompt.max_tokens}  "
            f"message_len={len(request.prompt.user_message)}"
        )
        if show_prompts:
            click.echo(f"\n--- system ---\n{request.prompt.system}")
            click.echo(f"\n--- user ---\n{request.prompt.user_message}\n")


@cli.command()
@click.argument("product_id")
@click.option("--obligation", "obligation_ids", multiple=True, help="Limit to these obligation ids")
def clauses(product_id: str, obligation_ids: tuple[str, ...]) -> None:
    """Print template or drafted T&Cs clauses for a product as JSON."""
    from regmatrix.pipeline.clauses import get_clause_generator

    generated = _run(
        get_clause_generator().generate_clauses_for_product(product_id, list(obligation_ids))
    )
    click.echo(json.dumps([c.model_dump(by_alias=True) for c in generated], indent=2))


# =========================================================================
# Config Commands
# =========================================================================


@cli.command()
def config() -> None:
    """Show current configuration."""
    settings = get_settings()

    click.echo("\n=== RegMatrix Configuration ===\n")
    click.echo(f"Environment: {settings.environment}")
    click.echo(f"Debug: {settings.debug}")
    click.echo(f"\nModel: {settings.llm_model}")
    click.echo(f"API key set: {bool(settings.anthropic_api_key)}")
    click.echo(f"\nAnalysable document type: {settings.analysable_document_type}")
    click.echo(f"Token budget: max({settings.min_max_tokens}, n * {settings.tokens_per_obligation})")
    click.echo(f"Claim lease: {settings.batch_claim_lease_seconds}s")
    click.echo(f"Batch expiry: {settings.batch_expiry_hours or 'disabled'}")


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
