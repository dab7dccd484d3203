"""
Dramatiq Background Worker
Processes scheduled sync pipelines (token sweep, incremental sync, email analysis)

Usage:
    dramatiq worker -p 2 -t 2

Deployment:
    - Type: Background Worker
    - Start Command: dramatiq worker -p 2 -t 2
    - Environment: Same as main app (REDIS_URL, SUPABASE_URL, etc.)
"""
import logging

from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking (if configured)
if settings.sentry_dsn:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,
            integrations=[
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ]
        )
        logger.info("✅ Sentry initialized in worker")
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry in worker: {e}")
else:
    logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")

# Import tasks (this registers them with Dramatiq)
try:
    from app.services.jobs.broker import broker
    from app.services.jobs.tasks import scheduled_sync_task

    logger.info("✅ Sync worker initialized")
    logger.info("📋 Registered tasks: scheduled_sync")

except Exception as e:
    logger.error(f"❌ Failed to initialize worker: {e}", exc_info=True)
    raise

# This module is imported by Dramatiq CLI
# Dramatiq will find the broker and tasks automatically
