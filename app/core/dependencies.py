"""
Dependency Injection
Provides reusable dependencies for FastAPI routes

DEPENDENCIES:
- Supabase client (database + auth)
- Redis client (job queue)
- HTTP client (for Gmail / TeamLeader)
- LLM client (analysis dispatcher)
"""
import logging
from typing import AsyncGenerator
import httpx
from supabase import create_client, Client
import redis

from app.core.config import settings

logger = logging.getLogger(__name__)

# ============================================================================
# GLOBAL CLIENTS (initialized once, reused across requests)
# ============================================================================

# Supabase client (singleton)
_supabase_client: Client = None

# Redis client (singleton)
_redis_client: redis.Redis = None


# ============================================================================
# INITIALIZATION (called on app startup)
# ============================================================================

async def initialize_clients():
    """
    Initialize all global clients on app startup.

    Called from main.py lifespan event.
    """
    global _supabase_client, _redis_client

    logger.info("Initializing global clients...")

    # Supabase
    try:
        _supabase_client = create_client(
            settings.supabase_url,
            settings.supabase_service_key  # Backend uses service role
        )
        logger.info("✅ Supabase client initialized")
    except Exception as e:
        logger.error(f"❌ Failed to initialize Supabase: {e}")
        raise

    # Redis (optional for local dev)
    if settings.redis_url:
        try:
            _redis_client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=5
            )
            _redis_client.ping()
            logger.info("✅ Redis client initialized")
        except Exception as e:
            logger.warning(f"⚠️  Redis not available: {e}")
            logger.warning("⚠️  Background jobs will not work (OK for local dev)")
            _redis_client = None

    logger.info("✅ All clients initialized successfully")


async def shutdown_clients():
    """
    Shutdown all global clients on app shutdown.

    Called from main.py lifespan event.
    """
    global _supabase_client, _redis_client

    logger.info("Shutting down global clients...")

    if _redis_client:
        try:
            _redis_client.close()
            logger.info("✅ Redis client closed")
        except Exception as e:
            logger.error(f"Error closing Redis: {e}")

    # Supabase doesn't need explicit cleanup
    _supabase_client = None
    _redis_client = None

    logger.info("✅ All clients shutdown complete")


# ============================================================================
# DEPENDENCY FUNCTIONS (injected into routes)
# ============================================================================

def get_supabase() -> Client:
    """
    Get Supabase client for dependency injection.

    Returns:
        Supabase client (service role)
    """
    if _supabase_client is None:
        logger.error("Supabase client not initialized")
        raise RuntimeError("Supabase client not initialized. Call initialize_clients() first.")

    return _supabase_client


def build_http_client() -> httpx.AsyncClient:
    """Outbound client for provider APIs. Caller owns closing it."""
    return httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout_seconds))


async def get_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Get HTTP client for external API calls.

    Yields:
        httpx.AsyncClient (closed after the request)
    """
    client = build_http_client()
    try:
        yield client
    finally:
        await client.aclose()


def get_llm_client():
    """
    Get the LLM client used by the analysis dispatcher.

    Returns:
        LLMClient wrapping openai.AsyncOpenAI
    """
    from app.services.analysis.llm import LLMClient

    return LLMClient.from_settings(settings)
