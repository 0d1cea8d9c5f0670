from datetime import datetime, timezone
import logging
from aiohttp import web

from social.graze.scribe.app.config import DatabaseSessionMakerAppKey
from social.graze.scribe.app.handlers.helpers import (
    internal_error,
    require_authorization,
)
from social.graze.scribe.app.tasks import enqueue_all_documents, queue_manager_for
from social.graze.scribe.model.documents import mark_all_stale_stmt

logger = logging.getLogger(__name__)


async def handle_admin_resolve_all(request: web.Request):
    """Queue every indexed document for re-resolution."""
    require_authorization(request)

    try:
        queued = await enqueue_all_documents(
            request.app[DatabaseSessionMakerAppKey],
            queue_manager_for(request.app),
            datetime.now(timezone.utc),
        )
    except Exception as e:
        raise internal_error(request, "Failed to queue documents", e)

    logger.info("Queued %d documents for re-resolution", queued)
    if queued == 0:
        return web.json_response({"message": "No documents to process", "queued": 0})
    return web.json_response(
        {"message": "Documents queued for re-processing", "queued": queued}
    )


async def handle_admin_mark_stale(request: web.Request):
    """Mark every resolved document stale so the next sweep picks it up."""
    require_authorization(request)

    database_session_maker = request.app[DatabaseSessionMakerAppKey]
    try:
        async with database_session_maker() as database_session:
            async with database_session.begin():
                result = await database_session.execute(
                    mark_all_stale_stmt(datetime.now(timezone.utc))
                )
                affected = result.rowcount
    except Exception as e:
        raise internal_error(request, "Failed to mark documents as stale", e)

    return web.json_response(
        {"message": "All documents marked as stale", "affected": affected}
    )
