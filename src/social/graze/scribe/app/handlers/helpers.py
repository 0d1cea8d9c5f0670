import json
import logging
import traceback
from typing import Any, Dict, Optional
from aiohttp import web
import sentry_sdk

from social.graze.scribe.app.config import SettingsAppKey
from social.graze.scribe.ingest.intake import is_authorized

logger = logging.getLogger(__name__)


def query_int(
    request: web.Request, name: str, default: int, maximum: Optional[int] = None
) -> int:
    """Read a non-negative integer query parameter, falling back to `default`."""
    try:
        value = int(request.query.get(name, default))
    except (TypeError, ValueError):
        value = default
    if value < 0:
        value = default
    if maximum is not None:
        value = min(value, maximum)
    return value


def require_authorization(request: web.Request) -> None:
    """Reject the request with 401 unless it carries the webhook secret."""
    settings = request.app[SettingsAppKey]
    if not is_authorized(
        request.headers.get("Authorization"), settings.tap_webhook_secret
    ):
        raise web.HTTPUnauthorized(
            body=json.dumps({"error": "Unauthorized"}),
            content_type="application/json",
        )


def internal_error(request: web.Request, message: str, e: Exception) -> web.HTTPException:
    """Build a 500 response for an unexpected handler failure.

    Details of the underlying exception are only included in debug mode.
    """
    logger.error(
        "%s: %s: %s\nTraceback:\n%s",
        message,
        type(e).__name__,
        str(e),
        traceback.format_exc(),
    )
    sentry_sdk.capture_exception(e)

    body: Dict[str, Any] = {"error": message}
    settings = request.app.get(SettingsAppKey)
    if settings and getattr(settings, "debug", False):
        body["details"] = str(e)
        body["error_type"] = type(e).__name__

    return web.HTTPInternalServerError(
        body=json.dumps(body),
        content_type="application/json",
    )
