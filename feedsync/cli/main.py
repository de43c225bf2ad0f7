# feedsync/cli/main.py
import asyncio
import sys

import click

from feedsync.core.config import get_settings
from feedsync.core.logging_config import configure_logging
from feedsync.database import Base, get_engine, get_session
from feedsync.services.feed_item_service import FeedItemRepository
from feedsync.services.feed_sources import CsvFeedSource
from feedsync.services.notification_service import EmailNotificationService
from feedsync.services.reconciliation_service import ReconciliationService
from feedsync.services.shopify.client import ShopifyGraphQLClient
from feedsync.services.sync_context import SyncContext
from feedsync.services.sync_service import SyncService


async def _build_and_run(action, feed_path=None, force_update=False):
    settings = get_settings()
    client = ShopifyGraphQLClient.from_settings(settings)
    try:
        async with get_session() as session:
            context = SyncContext.from_settings(
                settings,
                client=client,
                store=FeedItemRepository(session),
                notifier=EmailNotificationService(settings),
            )
            if force_update:
                context.options.force_update = True
            sync_service = SyncService(context, CsvFeedSource(feed_path or settings.FEED_FILE_PATH))
            return await action(sync_service)
    finally:
        await client.aclose()


@click.group()
def cli():
    """Feed to storefront synchronization."""
    configure_logging()


@cli.command()
@click.option('--feed', 'feed_path', type=click.Path(), default=None, help='CSV feed (defaults to FEED_FILE_PATH)')
@click.option('--force-update', is_flag=True, help='Push every matched item even if unchanged')
@click.option('--dry-run', is_flag=True, help='Report the change set without touching the storefront')
def sync(feed_path, force_update, dry_run):
    """Synchronize the storefront with the feed"""

    async def _sync(service: SyncService):
        return await service.run_sync(dry_run=dry_run)

    report = asyncio.run(_build_and_run(_sync, feed_path, force_update))
    report.print_summary()
    if report.aborted or report.failures:
        sys.exit(1)


@cli.command()
@click.option('--repair', is_flag=True, help='Delete orphans and correct stored ids')
@click.option('--force', is_flag=True, help='Repair even above the safety threshold')
@click.option('--with-feed/--without-feed', default=False, help='Include feed counts in the analysis')
def reconcile(repair, force, with_feed):
    """Audit drift between storefront, store and feed"""

    async def _reconcile(service: SyncService):
        reconciler = ReconciliationService(service, feed_source=service.feed_source if with_feed else None)
        analysis = await reconciler.analyze()
        click.echo(analysis.summary())
        for discrepancy in analysis.discrepancies:
            click.echo(f"  {discrepancy}")
        if not repair:
            return None
        return await reconciler.repair(force=force, analysis=analysis)

    result = asyncio.run(_build_and_run(_reconcile))
    if result is not None:
        click.echo(result.message)
        if not result.success:
            sys.exit(1)


@cli.command("create-tables")
def create_tables():
    """Create all database tables directly using SQLAlchemy"""
    from feedsync import models  # noqa: F401 - registers the tables on Base

    async def _create_tables():
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        click.echo("All tables created successfully!")

    asyncio.run(_create_tables())


if __name__ == "__main__":
    cli()
