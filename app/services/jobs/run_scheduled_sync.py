"""
CLI Entry Point for Scheduled Sync
Called by cron; runs the pipeline in-process (no worker needed)

Usage:
    python -m app.services.jobs.run_scheduled_sync gmail
    python -m app.services.jobs.run_scheduled_sync teamleader
    python -m app.services.jobs.run_scheduled_sync          # both
"""
import sys
import asyncio
import logging

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    """
    Run the scheduled pipeline for the providers given on the command line.
    Called by cron: */15 * * * *
    """
    from app.models.schemas.connection import PROVIDERS
    from app.services.jobs.tasks import get_task_dependencies, execute_pipeline

    providers = sys.argv[1:] or list(PROVIDERS)
    unknown = [p for p in providers if p not in PROVIDERS]
    if unknown:
        logger.error(f"❌ Unknown provider(s): {', '.join(unknown)}")
        sys.exit(2)

    logger.info(f"⏰ Scheduled Sync Cron Job Started")
    logger.info(f"   Providers: {', '.join(providers)}")

    failed = False
    for provider in providers:
        http_client, supabase = get_task_dependencies()
        try:
            result = asyncio.run(execute_pipeline(http_client, supabase, provider))
            sync = result["sync"]
            logger.info(f"✅ {provider}: {sync['synced']} synced, {sync['errored']} errored, {sync['skipped']} skipped")
        except Exception as e:
            logger.error(f"❌ {provider} scheduled sync failed: {e}", exc_info=True)
            failed = True

    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
