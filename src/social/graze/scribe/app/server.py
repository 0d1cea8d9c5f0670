import asyncio
import contextlib
import logging
from time import time
from typing import (
    Optional,
)
from aiohttp import web
import aiohttp
import redis.asyncio as redis
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration

from social.graze.scribe.app.config import (
    DatabaseAppKey,
    DatabaseSessionMakerAppKey,
    DocumentResolverAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    PdsResolverAppKey,
    RedisClientAppKey,
    ResolutionWorkerTaskAppKey,
    SessionAppKey,
    Settings,
    SettingsAppKey,
    StalenessSweepTaskAppKey,
    TickHealthTaskAppKey,
)
from social.graze.scribe.app.handlers.admin import (
    handle_admin_mark_stale,
    handle_admin_resolve_all,
)
from social.graze.scribe.app.handlers.feed import (
    handle_feed,
    handle_feed_raw,
    handle_records,
)
from social.graze.scribe.app.handlers.internal import (
    handle_health,
    handle_internal_alive,
    handle_internal_ready,
    handle_stats,
)
from social.graze.scribe.app.handlers.webhook import handle_tap, handle_tap_batch
from social.graze.scribe.app.metrics import create_metrics_client
from social.graze.scribe.app.tasks import (
    resolution_worker_task,
    staleness_sweep_task,
    tick_health_task,
)
from social.graze.scribe.atproto.pds import PdsResolver
from social.graze.scribe.model.health import HealthGauge
from social.graze.scribe.resolve.document import DocumentResolver

logger = logging.getLogger(__name__)


def create_http_session(settings: Settings) -> aiohttp.ClientSession:
    trace_config = aiohttp.TraceConfig()

    if settings.debug:

        async def on_request_start(
            session, trace_config_ctx, params: aiohttp.TraceRequestStartParams
        ):
            logger.info("Starting request: %s", params)

        async def on_request_end(session, trace_config_ctx, params):
            logger.info("Ending request: %s", params)

        trace_config.on_request_start.append(on_request_start)
        trace_config.on_request_end.append(on_request_end)

    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=settings.http_timeout),
        trace_configs=[trace_config],
    )


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    engine = create_async_engine(str(settings.pg_dsn))
    app[DatabaseAppKey] = engine
    database_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    app[DatabaseSessionMakerAppKey] = database_session

    app[SessionAppKey] = create_http_session(settings)

    app[RedisClientAppKey] = redis.Redis(
        connection_pool=redis.ConnectionPool.from_url(str(settings.redis_dsn))
    )

    metrics_client = create_metrics_client(
        settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        debug=settings.debug,
    )
    await metrics_client.connect()
    app[MetricsClientAppKey] = metrics_client

    pds_resolver = PdsResolver(
        app[SessionAppKey],
        database_session,
        settings.plc_hostname,
        settings.pds_cache_ttl_delta,
    )
    app[PdsResolverAppKey] = pds_resolver
    app[DocumentResolverAppKey] = DocumentResolver(
        app[SessionAppKey],
        database_session,
        pds_resolver,
        metrics_client,
        settings.stale_offset_delta,
    )

    logger.info("Startup complete")

    app[TickHealthTaskAppKey] = asyncio.create_task(tick_health_task(app))
    app[ResolutionWorkerTaskAppKey] = asyncio.create_task(resolution_worker_task(app))
    app[StalenessSweepTaskAppKey] = asyncio.create_task(staleness_sweep_task(app))

    yield

    logger.info("Shutting down background tasks")

    app[TickHealthTaskAppKey].cancel()
    app[ResolutionWorkerTaskAppKey].cancel()
    app[StalenessSweepTaskAppKey].cancel()

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[TickHealthTaskAppKey]

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[ResolutionWorkerTaskAppKey]

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[StalenessSweepTaskAppKey]

    await app[DatabaseAppKey].dispose()
    await app[SessionAppKey].close()
    await app[RedisClientAppKey].aclose()
    await app[MetricsClientAppKey].close()


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    route = request.match_info.route.resource
    request_path = route.canonical if route is not None else request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        response_status_code = e.status
        raise e
    except Exception as e:
        metrics_client.increment(
            "scribe.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "scribe.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "scribe.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


async def start_web_server(settings: Optional[Settings] = None):

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=False,
            integrations=[AioHttpIntegration()],
        )
    app = web.Application(middlewares=[statsd_middleware, sentry_middleware])

    app[SettingsAppKey] = settings
    app[HealthGaugeAppKey] = HealthGauge()

    app.add_routes(
        [
            web.get("/health", handle_health),
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/ready", handle_internal_ready),
            web.get("/stats", handle_stats),
        ]
    )

    app.add_routes(
        [
            web.post("/webhook/tap", handle_tap),
            web.post("/webhook/tap/batch", handle_tap_batch),
        ]
    )

    app.add_routes(
        [
            web.get("/feed", handle_feed),
            web.get("/feed/raw", handle_feed_raw),
            web.get("/feed-raw", handle_feed_raw),
            web.get("/records/{did}", handle_records),
        ]
    )

    app.add_routes(
        [
            web.post("/admin/resolve-all", handle_admin_resolve_all),
            web.post("/admin/mark-stale", handle_admin_mark_stale),
        ]
    )

    app.cleanup_ctx.append(background_tasks)

    return app
