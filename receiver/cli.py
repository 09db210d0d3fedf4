"""
Command-line interface for data-receiver.

Usage:
    data-receiver serve    # Run the ingestion API
    data-receiver init-db  # Create tables
    data-receiver health   # Check Postgres, Redis and blob storage
"""

import asyncio
import sys

import click

from receiver.config.settings import get_settings
from receiver.observability.logging import setup_logging
from receiver.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Data Receiver - authenticated JSON ingestion for registered sources."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
def serve(host: str | None, port: int | None, reload: bool, metrics: bool) -> None:
    """Start the ingestion API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    if metrics:
        get_metrics().start_server()
        click.echo(f"Metrics available on http://localhost:{settings.metrics_port}/metrics")

    click.echo(f"Starting API server on {host}:{port}")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "receiver.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from receiver.sources.repository import SourcesRepository
    from receiver.storage.database import Database
    from receiver.storage.repository import DataEntryRepository

    async def run():
        async with Database() as db:
            # data_entries references sources, so sources goes first
            await SourcesRepository(db).create_table()
            await DataEntryRepository(db).create_tables()

        click.echo("Database initialized successfully")

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        settings = get_settings()
        results: dict[str, bool] = {}

        # Check PostgreSQL
        try:
            from receiver.storage.database import Database
            async with Database() as db:
                results["postgres"] = await db.health_check()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        # Check Redis (only when it backs the rate limiter)
        if settings.rate_limit_enabled and settings.rate_limit_backend == "redis":
            try:
                from receiver.ratelimit.limiter import create_rate_limiter
                limiter = create_rate_limiter(settings)
                results["redis"] = await limiter.health_check()
                await limiter.close()
            except Exception as e:
                results["redis"] = False
                logger.error("Redis health check failed", error=str(e))

        # Check blob storage
        try:
            from receiver.storage.blob import create_blob_store
            results["blob_store"] = await create_blob_store(settings).health_check()
        except Exception as e:
            results["blob_store"] = False
            logger.error("Blob store health check failed", error=str(e))

        results["supabase_configured"] = settings.supabase_configured

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("postgres", "redis") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
