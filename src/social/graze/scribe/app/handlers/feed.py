from aiohttp import web

from social.graze.scribe.app.config import (
    DatabaseSessionMakerAppKey,
    SettingsAppKey,
)
from social.graze.scribe.app.handlers.helpers import internal_error, query_int
from social.graze.scribe.model.documents import select_feed_stmt, serialize_document
from social.graze.scribe.model.records import select_documents_stmt


async def handle_feed(request: web.Request):
    """Verified documents, newest publication first."""
    settings = request.app[SettingsAppKey]
    database_session_maker = request.app[DatabaseSessionMakerAppKey]

    limit = query_int(
        request, "limit", settings.feed_default_limit, settings.feed_max_limit
    )
    offset = query_int(request, "offset", 0)

    try:
        async with database_session_maker() as database_session:
            documents = (
                await database_session.scalars(select_feed_stmt(limit, offset))
            ).all()
    except Exception as e:
        raise internal_error(request, "Failed to fetch feed", e)

    return web.json_response(
        {
            "count": len(documents),
            "limit": limit,
            "offset": offset,
            "documents": [serialize_document(document) for document in documents],
        }
    )


async def handle_feed_raw(request: web.Request):
    """Indexed document references, for clients that resolve on their own."""
    settings = request.app[SettingsAppKey]
    database_session_maker = request.app[DatabaseSessionMakerAppKey]

    limit = query_int(
        request, "limit", settings.raw_feed_max_limit, settings.raw_feed_max_limit
    )
    offset = query_int(request, "offset", 0)

    try:
        async with database_session_maker() as database_session:
            records = (
                await database_session.scalars(select_documents_stmt(limit, offset))
            ).all()
    except Exception as e:
        raise internal_error(request, "Failed to fetch feed", e)

    return web.json_response(
        {
            "count": len(records),
            "limit": limit,
            "offset": offset,
            "records": [{"did": record.did, "rkey": record.rkey} for record in records],
        }
    )


async def handle_records(request: web.Request):
    did = request.match_info["did"]
    database_session_maker = request.app[DatabaseSessionMakerAppKey]

    limit = query_int(request, "limit", 20, 100)
    offset = query_int(request, "offset", 0)

    try:
        async with database_session_maker() as database_session:
            records = (
                await database_session.scalars(
                    select_documents_stmt(limit, offset, did=did)
                )
            ).all()
    except Exception as e:
        raise internal_error(request, "Failed to fetch records", e)

    return web.json_response(
        {
            "did": did,
            "count": len(records),
            "limit": limit,
            "offset": offset,
            "records": [
                {
                    "did": record.did,
                    "collection": record.collection,
                    "rkey": record.rkey,
                    "cid": record.cid,
                    "syncedAt": record.synced_at.isoformat(),
                }
                for record in records
            ],
        }
    )
