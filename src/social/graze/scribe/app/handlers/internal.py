from datetime import datetime, timezone
from aiohttp import web
from sqlalchemy import func, select

from social.graze.scribe.app.config import (
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
)
from social.graze.scribe.app.handlers.helpers import internal_error
from social.graze.scribe.model.documents import ResolvedDocument
from social.graze.scribe.model.pds_cache import PdsCacheEntry
from social.graze.scribe.model.records import RepoRecord


async def handle_internal_ready(request: web.Request):
    health_gauge = request.app[HealthGaugeAppKey]
    if await health_gauge.is_healthy():
        return web.Response(status=200)
    return web.Response(status=503)


async def handle_internal_alive(request: web.Request):
    return web.Response(status=200)


async def handle_health(request: web.Request):
    return web.json_response(
        {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
    )


async def handle_stats(request: web.Request):
    database_session_maker = request.app[DatabaseSessionMakerAppKey]
    try:
        async with database_session_maker() as database_session:
            repo_records = await database_session.scalar(
                select(func.count()).select_from(RepoRecord)
            )
            pds_cache = await database_session.scalar(
                select(func.count()).select_from(PdsCacheEntry)
            )
            resolved_documents = await database_session.scalar(
                select(func.count()).select_from(ResolvedDocument)
            )
            verified_documents = await database_session.scalar(
                select(func.count())
                .select_from(ResolvedDocument)
                .where(ResolvedDocument.verified.is_(True))
            )
    except Exception as e:
        raise internal_error(request, "Failed to fetch stats", e)

    return web.json_response(
        {
            "repo_records": repo_records or 0,
            "pds_cache": pds_cache or 0,
            "resolved_documents": resolved_documents or 0,
            "verified_documents": verified_documents or 0,
        }
    )
