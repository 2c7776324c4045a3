"""
MongoDB connection and Beanie initialization.

Connection settings come from the validated DatabaseConfig; the client is
tz-aware so stored expiry timestamps compare correctly with aware "now".
"""

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie
from paylink.models import MerchantSettings, Order, Transaction
from paylink.core.config import DatabaseConfig
from paylink.core.exceptions import DatabaseError
from paylink.core.monitoring import monitor_errors
import logging
import asyncio
from datetime import datetime, timezone
from tenacity import retry, stop_after_attempt, wait_exponential
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [Transaction, MerchantSettings, Order]

_db_client: Optional[AsyncIOMotorClient] = None


@monitor_errors("database_init")
@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)
async def init_db(config: DatabaseConfig) -> AsyncIOMotorClient:
    """
    Connect to MongoDB and register the document models with Beanie.

    Raises:
        DatabaseError: If the server cannot be reached or Beanie fails to initialize
    """
    global _db_client

    logger.info(
        f"Connecting to MongoDB (pool: min={config.min_pool_size}, max={config.max_pool_size})"
    )

    try:
        client = AsyncIOMotorClient(
            config.url,
            tz_aware=True,
            maxPoolSize=config.max_pool_size,
            minPoolSize=config.min_pool_size,
            maxIdleTimeMS=config.max_idle_time_ms,
            serverSelectionTimeoutMS=config.server_selection_timeout_ms,
            connectTimeoutMS=config.connect_timeout_ms,
            socketTimeoutMS=config.socket_timeout_ms,
            retryWrites=config.retry_writes,
            w=config.write_concern,
        )

        try:
            await asyncio.wait_for(client.admin.command("ping"), timeout=5.0)
        except asyncio.TimeoutError:
            raise DatabaseError("Database connection timeout", operation="ping_test")

        await init_beanie(
            database=client.get_default_database(),
            document_models=DOCUMENT_MODELS,
        )
    except DatabaseError:
        raise
    except Exception as e:
        logger.error("Failed to initialize database", exc_info=True)
        raise DatabaseError("Database initialization failed", operation="init_db") from e

    _db_client = client
    logger.info("MongoDB connected and Beanie initialized successfully")
    return client


async def close_database():
    """Close the database connection gracefully."""
    global _db_client

    if _db_client:
        _db_client.close()
        _db_client = None
        logger.info("Database connection closed")


async def health_check() -> Dict[str, Any]:
    """Ping the database; never raises."""
    timestamp = datetime.now(timezone.utc).isoformat()
    if _db_client is None:
        return {"status": "unhealthy", "database": "not_initialized", "timestamp": timestamp}

    try:
        await _db_client.admin.command("ping")
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return {"status": "unhealthy", "database": "disconnected", "timestamp": timestamp}

    return {"status": "healthy", "database": "connected", "timestamp": timestamp}
