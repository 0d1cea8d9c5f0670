import logging
from aiohttp import web
from pydantic import ValidationError
import sentry_sdk

from social.graze.scribe.app.config import (
    DatabaseSessionMakerAppKey,
    DocumentResolverAppKey,
    MetricsClientAppKey,
)
from social.graze.scribe.app.handlers.helpers import (
    internal_error,
    require_authorization,
)
from social.graze.scribe.app.tasks import queue_manager_for
from social.graze.scribe.ingest.events import RawEventBatchAdapter, TapEventAdapter
from social.graze.scribe.ingest.intake import EventIntake

logger = logging.getLogger(__name__)


def event_intake_for(app: web.Application) -> EventIntake:
    return EventIntake(
        app[DocumentResolverAppKey],
        app[DatabaseSessionMakerAppKey],
        queue_manager_for(app),
    )


async def handle_tap(request: web.Request):
    require_authorization(request)

    try:
        event = TapEventAdapter.validate_json(await request.read())
    except ValidationError as e:
        return web.json_response(
            {"error": "Invalid event", "details": str(e)},
            status=400,
        )

    try:
        await event_intake_for(request.app).apply(event)
    except Exception as e:
        raise internal_error(request, "Failed to process webhook", e)

    return web.json_response({"ok": True})


async def handle_tap_batch(request: web.Request):
    require_authorization(request)

    try:
        elements = RawEventBatchAdapter.validate_json(await request.read())
    except ValidationError as e:
        return web.json_response(
            {"error": "Invalid event batch", "details": str(e)},
            status=400,
        )

    metrics_client = request.app[MetricsClientAppKey]
    intake = event_intake_for(request.app)

    processed = 0
    errors = 0
    for element in elements:
        try:
            event = TapEventAdapter.validate_python(element)
        except ValidationError as e:
            logger.warning("Skipping invalid batched event: %s", e)
            errors += 1
            continue

        try:
            if await intake.apply(event):
                processed += 1
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Error applying batched event")
            errors += 1

    metrics_client.increment("scribe.intake.batch.processed", processed)
    metrics_client.increment("scribe.intake.batch.errors", errors)

    return web.json_response({"ok": True, "processed": processed, "errors": errors})
