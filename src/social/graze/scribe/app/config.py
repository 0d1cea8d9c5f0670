"""
Configuration Module for Scribe

This module defines the configuration system for the Scribe document resolver, using Pydantic for settings
validation and dependency injection through AppKeys.

The Settings class serves as the central configuration point, loaded from environment variables with defaults
suitable for development environments. All application components access settings and shared resources through
typed AppKeys to maintain clean dependency injection.

Key configuration areas include:
- Service identification and networking
- Database and queue connections
- Resolution freshness (PDS cache TTL, staleness window, sweep cadence)
- Work queue batching and retry policy
- Monitoring and observability
"""

import asyncio
from datetime import timedelta
from typing import Final, Optional
import logging
from aiohttp import web
from pydantic import (
    AliasChoices,
    Field,
    PostgresDsn,
    RedisDsn,
)
from pydantic_settings import BaseSettings
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from aiohttp import ClientSession
from redis import asyncio as redis

from social.graze.scribe.app.metrics import MetricsClient
from social.graze.scribe.atproto.pds import PdsResolver
from social.graze.scribe.model.health import HealthGauge
from social.graze.scribe.resolve.document import DocumentResolver


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the Scribe service.

    Environment variables are automatically mapped to settings fields, with aliases provided where an ecosystem
    convention exists. For example, the database connection string can be set with either PG_DSN or DATABASE_URL.
    """

    debug: bool = False
    """
    Enable debug mode for verbose logging and request tracing.
    Set with DEBUG=true environment variable.
    """

    http_port: int = Field(alias="port", default=5200)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    plc_hostname: str = "plc.directory"
    """
    Hostname for the PLC directory service for did:plc resolution.
    Set with PLC_HOSTNAME environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    redis_dsn: RedisDsn = Field(
        "redis://valkey:6379/2?decode_responses=True",
        validation_alias=AliasChoices("redis_dsn", "redis_url"),
    )  # type: ignore
    """
    Redis connection string for the resolution work queue.
    Set with REDIS_DSN or REDIS_URL environment variables.
    """

    pg_dsn: PostgresDsn = Field(
        "postgresql+asyncpg://postgres:password@db/scribe",
        validation_alias=AliasChoices("pg_dsn", "database_url"),
    )  # type: ignore
    """
    PostgreSQL connection string for the record and resolved document store.
    Set with PG_DSN or DATABASE_URL environment variables.
    """

    worker_id: str
    """
    Unique identifier for this worker instance (required, no default).
    Each worker claims its own slice of the resolution queue.
    Set with WORKER_ID environment variable.
    """

    tap_webhook_secret: Optional[str] = None
    """
    Shared secret for the ingestion webhook and admin endpoints. When unset, requests are not authenticated.
    Set with TAP_WEBHOOK_SECRET environment variable.
    """

    resolution_queue: str = "resolution_queue:documents"
    """
    Redis sorted set holding pending resolution work items.
    Set with RESOLUTION_QUEUE environment variable.
    """

    queue_batch_size: int = 5
    """
    Maximum number of work items a worker claims and processes concurrently per poll.
    Set with QUEUE_BATCH_SIZE environment variable.
    """

    queue_poll_interval: int = 5
    """
    Seconds between worker polls of the resolution queue.
    Set with QUEUE_POLL_INTERVAL environment variable.
    """

    resolution_max_retries: int = 5
    """
    Maximum number of redeliveries for a failing work item before it is dropped.
    Set with RESOLUTION_MAX_RETRIES environment variable.
    """

    resolution_retry_base_delay: int = 60
    """
    Base delay in seconds for redelivery (exponential backoff).
    Actual delay = base_delay * (2 ^ retry_attempt)
    Set with RESOLUTION_RETRY_BASE_DELAY environment variable.
    """

    pds_cache_ttl: int = 3600
    """
    Seconds a cached DID to PDS mapping stays authoritative.
    Set with PDS_CACHE_TTL environment variable.
    """

    stale_offset: int = 86400
    """
    Seconds after resolution at which a resolved document becomes stale.
    Set with STALE_OFFSET environment variable.
    """

    sweep_interval: int = 300
    """
    Seconds between staleness sweeps.
    Set with SWEEP_INTERVAL environment variable.
    """

    sweep_limit: int = 1000
    """
    Maximum number of stale documents enqueued per sweep.
    Set with SWEEP_LIMIT environment variable.
    """

    http_timeout: float = 15.0
    """
    Total timeout in seconds for every outbound HTTP request.
    Set with HTTP_TIMEOUT environment variable.
    """

    feed_default_limit: int = 50
    feed_max_limit: int = 100
    raw_feed_max_limit: int = 15

    metrics_backend: str = "telegraf"
    """
    Metrics backend, 'telegraf' or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    @property
    def pds_cache_ttl_delta(self) -> timedelta:
        return timedelta(seconds=self.pds_cache_ttl)

    @property
    def stale_offset_delta(self) -> timedelta:
        return timedelta(seconds=self.stale_offset)


RESOLUTION_RETRY_QUEUE_SUFFIX = ":retry"
"""
Suffix of the Redis hash tracking redelivery attempts for the resolution queue.
Keys are serialized work items, values are retry counts.
"""

ENQUEUE_BATCH_SIZE = 100
"""
Number of work items written to the queue per batch.
"""

# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

DatabaseAppKey: Final = web.AppKey("database", AsyncEngine)
"""AppKey for accessing the SQLAlchemy async database engine"""

DatabaseSessionMakerAppKey: Final = web.AppKey(
    "database_session_maker", async_sessionmaker[AsyncSession]
)
"""AppKey for accessing the SQLAlchemy async session factory"""

SessionAppKey: Final = web.AppKey("http_session", ClientSession)
"""AppKey for accessing the shared aiohttp client session"""

RedisClientAppKey: Final = web.AppKey("redis_client", redis.Redis)
"""AppKey for accessing the Redis client"""

HealthGaugeAppKey: Final = web.AppKey("health_gauge", HealthGauge)
"""AppKey for accessing the health monitoring gauge"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for accessing the metrics client"""

PdsResolverAppKey: Final = web.AppKey("pds_resolver", PdsResolver)
"""AppKey for accessing the cache-backed PDS resolver"""

DocumentResolverAppKey: Final = web.AppKey("document_resolver", DocumentResolver)
"""AppKey for accessing the document resolution pipeline"""

ResolutionWorkerTaskAppKey: Final = web.AppKey(
    "resolution_worker_task", asyncio.Task[None]
)
"""AppKey for the background task that consumes the resolution queue"""

StalenessSweepTaskAppKey: Final = web.AppKey(
    "staleness_sweep_task", asyncio.Task[None]
)
"""AppKey for the background task that enqueues stale documents"""

TickHealthTaskAppKey: Final = web.AppKey("tick_health_task", asyncio.Task[None])
"""AppKey for the background task that drains the health gauge"""
