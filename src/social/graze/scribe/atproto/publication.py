"""Publication metadata resolution.

Fetches a `site.standard.publication` record by address and normalizes it into
the fields a resolved document carries about its publisher.
"""

import logging
from typing import Optional
from aiohttp import ClientSession
from pydantic import BaseModel
import sentry_sdk

from social.graze.scribe.atproto.blob import build_blob_url, extract_cid
from social.graze.scribe.atproto.lexicon import RawPublicationRecord
from social.graze.scribe.atproto.pds import PdsResolver
from social.graze.scribe.atproto.repo import get_record
from social.graze.scribe.atproto.uri import parse_at_uri

logger = logging.getLogger(__name__)


class Publication(BaseModel):
    """Resolved publisher metadata."""

    url: str
    name: str
    description: Optional[str] = None
    icon_cid: Optional[str] = None
    icon_url: Optional[str] = None


def publication_from_record(
    record: RawPublicationRecord, pds: str, did: str
) -> Optional[Publication]:
    """Normalize a raw publication record.

    A publication without both a URL and a name is unusable and yields None.
    """
    if not record.url or not record.name:
        return None
    icon_cid = extract_cid(record.icon)
    return Publication(
        url=record.url,
        name=record.name,
        description=record.description,
        icon_cid=icon_cid,
        icon_url=build_blob_url(pds, did, icon_cid) if icon_cid else None,
    )


async def fetch_publication(
    session: ClientSession, pds_resolver: PdsResolver, address: str
) -> Optional[Publication]:
    """Resolve a publication record address to its metadata.

    Args:
        session: HTTP client session
        pds_resolver: Resolver for the publisher's PDS
        address: `at://` address of the publication record

    Returns:
        Publication if resolved, None on any failure
    """
    reference = parse_at_uri(address)
    if reference is None:
        return None

    try:
        pds = await pds_resolver.resolve(reference.did)
        if pds is None:
            logger.debug("Could not resolve PDS for publication %s", address)
            return None

        response = await get_record(
            session, pds, reference.did, reference.collection, reference.rkey
        )
        if not response.ok or response.value is None:
            logger.debug(
                "Publication %s not available: status %d", address, response.status
            )
            return None

        record = RawPublicationRecord.model_validate(response.value)
        return publication_from_record(record, pds, reference.did)
    except Exception as e:
        sentry_sdk.capture_exception(e)
        logger.warning("Error fetching publication %s: %s", address, e)
        return None
