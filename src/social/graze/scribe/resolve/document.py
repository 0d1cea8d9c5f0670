"""Document resolution pipeline.

Turns a bare `(did, collection, rkey)` reference into a resolved document row:
the record is fetched from its PDS, its publication resolved, its canonical view
URL computed, its ownership verified, and the result upserted in one
transaction with a fresh staleness deadline.

The pipeline performs no retries of its own. A raised exception leaves the work
item with the delivery layer, which must redeliver it; the idempotent upserts
make redelivery safe.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional
from urllib.parse import urljoin
from aiohttp import ClientSession
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social.graze.scribe.app.metrics import MetricsClient
from social.graze.scribe.atproto.blob import build_blob_url, extract_cid
from social.graze.scribe.atproto.lexicon import RawDocumentRecord, parse_datetime
from social.graze.scribe.atproto.pds import PdsResolver
from social.graze.scribe.atproto.publication import Publication, fetch_publication
from social.graze.scribe.atproto.repo import get_record
from social.graze.scribe.atproto.uri import RecordReference, is_at_uri
from social.graze.scribe.model.documents import (
    delete_resolved_document_stmt,
    upsert_resolved_document_stmt,
)
from social.graze.scribe.model.records import (
    delete_repo_record_stmt,
    upsert_repo_record_stmt,
)
from social.graze.scribe.verify.challenge import has_http_scheme, verify_document_record

logger = logging.getLogger(__name__)

STALE_OFFSET = timedelta(hours=24)


class ResolutionException(Exception):
    """
    Retryable failure while resolving a document.

    Raising this (or any other exception) out of `process_document` tells the delivery layer to redeliver the work
    item later.
    """

    @staticmethod
    def record_fetch_failed(uri: str, status: int) -> "ResolutionException":
        """The PDS answered the record read with a non-success, non-404 status."""
        return ResolutionException(
            f"error-resolve-document-1000 Record fetch for {uri} failed with status {status}"
        )

    @staticmethod
    def record_value_missing(uri: str) -> "ResolutionException":
        """The PDS answered successfully but the body carried no record value."""
        return ResolutionException(
            f"error-resolve-document-1001 Record fetch for {uri} returned no value"
        )


class SiteResolution(BaseModel):
    """Where a document lives on the web, as far as it could be resolved."""

    pub_url: Optional[str] = None
    publication: Optional[Publication] = None
    view_url: Optional[str] = None


def compute_view_url(base_url: Optional[str], path: Optional[str]) -> Optional[str]:
    """Resolve a document path against its publication base URL.

    Bare hosts are treated as https. Resolution follows standard relative
    reference rules, so a base without a trailing slash drops its last segment.
    """
    if not base_url or path is None:
        return None
    if not has_http_scheme(base_url):
        base_url = f"https://{base_url}"
    return urljoin(base_url, path)


def build_resolved_document(
    reference: RecordReference,
    record: RawDocumentRecord,
    pds: str,
    site: SiteResolution,
    verified: bool,
    now: datetime,
    stale_offset: timedelta = STALE_OFFSET,
) -> Dict[str, Any]:
    """Project a document record and its resolved context into a stored row."""
    cover_image_cid = extract_cid(record.cover_image)
    publication = site.publication
    pub_icon_cid = publication.icon_cid if publication is not None else None
    return {
        "uri": reference.uri,
        "did": reference.did,
        "collection": reference.collection,
        "rkey": reference.rkey,
        "title": record.title,
        "description": record.description,
        "path": record.path,
        "site": record.site,
        "content": record.content,
        "text_content": record.text_content,
        "cover_image_cid": cover_image_cid,
        "cover_image_url": (
            build_blob_url(pds, reference.did, cover_image_cid)
            if cover_image_cid
            else None
        ),
        "bsky_post_ref": record.bsky_post_ref,
        "tags": record.tags,
        "published_at": parse_datetime(record.published_at),
        "updated_at": parse_datetime(record.updated_at),
        "pub_url": site.pub_url,
        "pub_name": publication.name if publication is not None else None,
        "pub_description": (
            publication.description if publication is not None else None
        ),
        "pub_icon_cid": pub_icon_cid,
        "pub_icon_url": publication.icon_url if publication is not None else None,
        "view_url": site.view_url,
        "pds_endpoint": pds,
        "resolved_at": now,
        "stale_at": now + stale_offset,
        "verified": verified,
    }


class DocumentResolver:
    """
    Resolves document records and keeps the resolved document store in sync.

    Each call is independent and holds no state between invocations beyond the shared HTTP session and database
    session factory, so concurrent calls for different records never interfere.
    """

    def __init__(
        self,
        http_session: ClientSession,
        database_session_maker: async_sessionmaker[AsyncSession],
        pds_resolver: PdsResolver,
        metrics_client: MetricsClient,
        stale_offset: timedelta = STALE_OFFSET,
    ):
        self.http_session = http_session
        self.database_session_maker = database_session_maker
        self.pds_resolver = pds_resolver
        self.metrics_client = metrics_client
        self.stale_offset = stale_offset

    async def process_document(self, did: str, collection: str, rkey: str) -> None:
        """
        Fetch, resolve, verify, and store one document record.

        Safe to re-run. A PDS that cannot be resolved aborts without touching stored state. A 404 from the PDS
        deletes the record and its resolved document. Any other non-success status, and any unexpected error after
        the record is fetched, is raised for redelivery.
        """
        reference = RecordReference(did=did, collection=collection, rkey=rkey)

        pds = await self.pds_resolver.resolve(did)
        if pds is None:
            logger.warning("Could not resolve PDS for %s", did)
            self.metrics_client.increment("scribe.resolve.pds_unresolved", 1)
            return

        response = await get_record(self.http_session, pds, did, collection, rkey)
        if response.not_found:
            logger.info("Record not found upstream, deleting %s", reference.uri)
            await self.delete_document(reference)
            self.metrics_client.increment("scribe.resolve.deleted", 1)
            return
        if not response.ok:
            raise ResolutionException.record_fetch_failed(
                reference.uri, response.status
            )
        if response.value is None:
            raise ResolutionException.record_value_missing(reference.uri)

        await self.store_record(reference, pds, response.value, response.cid)

    async def apply_record(
        self, reference: RecordReference, value: Dict[str, Any], cid: Optional[str]
    ) -> bool:
        """
        Resolve and store a record whose value was delivered inline.

        Returns False without writing anything when the PDS cannot be resolved, in which case the caller should
        enqueue the record for a later pass instead.
        """
        pds = await self.pds_resolver.resolve(reference.did)
        if pds is None:
            logger.warning("Could not resolve PDS for %s", reference.did)
            self.metrics_client.increment("scribe.resolve.pds_unresolved", 1)
            return False
        await self.store_record(reference, pds, value, cid)
        return True

    async def store_record(
        self,
        reference: RecordReference,
        pds: str,
        value: Dict[str, Any],
        cid: Optional[str],
    ) -> None:
        now = datetime.now(timezone.utc)

        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                await database_session.execute(
                    upsert_repo_record_stmt(
                        reference.did, reference.collection, reference.rkey, cid, now
                    )
                )

        record = RawDocumentRecord.model_validate(value)
        site = await self.resolve_site(record)
        verified = await verify_document_record(
            self.http_session, site.pub_url, record.site, site.view_url, reference.uri
        )

        values = build_resolved_document(
            reference, record, pds, site, verified, now, self.stale_offset
        )
        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                await database_session.execute(upsert_resolved_document_stmt(values))

        logger.debug(
            "Resolved %s view_url=%s verified=%s", reference.uri, site.view_url, verified
        )
        self.metrics_client.increment(
            "scribe.resolve.stored", 1, tag_dict={"verified": str(verified).lower()}
        )

    async def resolve_site(self, record: RawDocumentRecord) -> SiteResolution:
        """Resolve the document's site into a publication and a view URL.

        A site that is a record address is resolved as a publication; any other
        site value is used as the publication base URL directly.
        """
        if not record.site:
            return SiteResolution()

        if is_at_uri(record.site):
            publication = await fetch_publication(
                self.http_session, self.pds_resolver, record.site
            )
            if publication is None:
                return SiteResolution()
            return SiteResolution(
                pub_url=publication.url,
                publication=publication,
                view_url=compute_view_url(publication.url, record.path),
            )

        return SiteResolution(
            pub_url=record.site,
            view_url=compute_view_url(record.site, record.path),
        )

    async def delete_document(self, reference: RecordReference) -> None:
        """Remove a record from the raw record index and the resolved store."""
        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                await database_session.execute(
                    delete_repo_record_stmt(
                        reference.did, reference.collection, reference.rkey
                    )
                )
                await database_session.execute(
                    delete_resolved_document_stmt(reference.uri)
                )
