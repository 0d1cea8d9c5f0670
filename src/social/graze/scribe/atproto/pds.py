"""DID to PDS endpoint resolution.

Resolves the repository-hosting endpoint of a DID from its DID document and
caches it in the `pds_cache` table for a fixed time-to-live.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional
from aiohttp import ClientSession
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import sentry_sdk

from social.graze.scribe.model.pds_cache import (
    select_pds_cache_stmt,
    upsert_pds_cache_stmt,
)

logger = logging.getLogger(__name__)

PDS_CACHE_TTL = timedelta(hours=1)

PDS_SERVICE_ID = "#atproto_pds"


def is_cache_entry_fresh(
    cached_at: Optional[datetime], now: datetime, ttl: timedelta = PDS_CACHE_TTL
) -> bool:
    """Check whether a cache entry written at `cached_at` is still authoritative."""
    if cached_at is None:
        return False
    if cached_at.tzinfo is None:
        cached_at = cached_at.replace(tzinfo=timezone.utc)
    return now - cached_at < ttl


def pds_service_predicate(value: Any) -> bool:
    """Check if a DID document service entry is the repository-hosting service.

    Args:
        value: Service entry from a DID document

    Returns:
        True if the entry id marks it as the atproto PDS and it has an endpoint
    """
    return (
        isinstance(value, dict)
        and isinstance(value.get("id"), str)
        and value["id"].endswith(PDS_SERVICE_ID)
        and isinstance(value.get("serviceEndpoint"), str)
    )


def did_document_url(plc_hostname: str, did: str) -> Optional[str]:
    """Build the URL of the public DID document for a did:plc or did:web DID."""
    if did.startswith("did:plc:"):
        return f"https://{plc_hostname}/{did}"
    if did.startswith("did:web:"):
        parts = did.removeprefix("did:web:").split(":")
        if len(parts) == 1:
            parts.append(".well-known")
        return "https://{inner}/did.json".format(inner="/".join(parts))
    return None


def pds_endpoint_from_document(document: Any) -> Optional[str]:
    if not isinstance(document, dict):
        return None
    services = document.get("service")
    if not isinstance(services, list):
        return None
    service: Optional[Dict[str, Any]] = next(
        filter(pds_service_predicate, services), None
    )
    if service is None:
        return None
    return service["serviceEndpoint"]


async def fetch_pds_endpoint(
    session: ClientSession, plc_hostname: str, did: str
) -> Optional[str]:
    """Fetch the DID document for a DID and extract its PDS endpoint.

    Args:
        session: HTTP client session
        plc_hostname: PLC directory hostname for did:plc resolution
        did: DID to resolve

    Returns:
        PDS endpoint if found, None if resolution fails
    """
    url = did_document_url(plc_hostname, did)
    if url is None:
        logger.debug("Unsupported DID method for %s", did)
        return None
    try:
        async with session.get(url) as resp:
            if resp.status != 200:
                return None
            body = await resp.json(content_type=None)
            return pds_endpoint_from_document(body)
    except Exception as e:
        sentry_sdk.capture_exception(e)
        logger.warning("Error fetching DID document for %s: %s", did, e)
        return None


class PdsResolver:
    """
    Cache-backed DID to PDS endpoint resolver.

    A cached endpoint younger than the TTL is returned without touching the identity directory. Otherwise the DID
    document is fetched, and a discovered endpoint is upserted into the cache. Failure to resolve is never an error:
    callers receive None and are expected to retry on a later pass.
    """

    def __init__(
        self,
        http_session: ClientSession,
        database_session_maker: async_sessionmaker[AsyncSession],
        plc_hostname: str = "plc.directory",
        ttl: timedelta = PDS_CACHE_TTL,
    ):
        self.http_session = http_session
        self.database_session_maker = database_session_maker
        self.plc_hostname = plc_hostname
        self.ttl = ttl

    async def cached(self, did: str, now: datetime) -> Optional[str]:
        async with self.database_session_maker() as database_session:
            entry = (
                await database_session.scalars(select_pds_cache_stmt(did))
            ).one_or_none()
        if entry is not None and is_cache_entry_fresh(entry.cached_at, now, self.ttl):
            return entry.pds_endpoint
        return None

    async def resolve(self, did: str, now: Optional[datetime] = None) -> Optional[str]:
        if now is None:
            now = datetime.now(timezone.utc)

        cached_endpoint = await self.cached(did, now)
        if cached_endpoint is not None:
            return cached_endpoint

        endpoint = await fetch_pds_endpoint(self.http_session, self.plc_hostname, did)
        if endpoint is None:
            return None

        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                await database_session.execute(
                    upsert_pds_cache_stmt(did, endpoint, now)
                )

        logger.debug("Resolved PDS for %s: %s", did, endpoint)
        return endpoint
