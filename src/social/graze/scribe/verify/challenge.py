"""Publication and document ownership challenges."""

import logging
from typing import Optional, Union
from urllib.parse import urlparse
from aiohttp import ClientSession
from lxml import html as lxml_html
import sentry_sdk

from social.graze.scribe.atproto.uri import is_at_uri

logger = logging.getLogger(__name__)

PUBLICATION_WELL_KNOWN_PATH = "/.well-known/site.standard.publication"
DOCUMENT_LINK_REL = "site.standard.document"


def has_http_scheme(url: str) -> bool:
    return urlparse(url).scheme in ("http", "https")


def normalize_base_url(url: str) -> str:
    """Prefix a bare host with https:// and drop one trailing slash."""
    base_url = url if has_http_scheme(url) else f"https://{url}"
    return base_url.removesuffix("/")


def find_document_link(page: Union[str, bytes]) -> Optional[str]:
    """Find the href of the first `site.standard.document` link in an HTML page.

    Args:
        page: HTML source. Raw bytes let the parser honour a declared encoding.

    Returns:
        The raw href attribute value, or None if no matching link exists
    """
    tree = lxml_html.fromstring(page)
    for link in tree.iter("link"):
        rel = link.get("rel") or ""
        if DOCUMENT_LINK_REL in rel.lower().split():
            return link.get("href")
    return None


async def verify_publication(
    session: ClientSession, pub_url: str, site_address: str
) -> bool:
    """Check the publication's well-known endpoint against its record address.

    Args:
        session: HTTP client session
        pub_url: Publication base URL, with or without scheme
        site_address: Expected `at://` address of the publication

    Returns:
        True if the trimmed body equals the trimmed address exactly
    """
    well_known_url = f"{normalize_base_url(pub_url)}{PUBLICATION_WELL_KNOWN_PATH}"
    try:
        async with session.get(
            well_known_url, headers={"Accept": "text/plain"}
        ) as resp:
            if resp.status < 200 or resp.status >= 300:
                return False
            body = await resp.text()
            if body is None:
                return False
            return body.strip() == site_address.strip()
    except Exception as e:
        sentry_sdk.capture_exception(e)
        logger.debug("Publication challenge failed for %s: %s", well_known_url, e)
        return False


async def verify_document(
    session: ClientSession, view_url: str, document_address: str
) -> bool:
    """Check the document page for a link tag naming its record address.

    Args:
        session: HTTP client session
        view_url: Canonical URL of the document
        document_address: Expected `at://` address of the document

    Returns:
        True if the page's document link href, trimmed, equals the address
    """
    try:
        async with session.get(view_url, headers={"Accept": "text/html"}) as resp:
            if resp.status < 200 or resp.status >= 300:
                return False
            page = await resp.read()
        if not page:
            return False
        href = find_document_link(page)
        if href is None:
            return False
        return href.strip() == document_address.strip()
    except Exception as e:
        sentry_sdk.capture_exception(e)
        logger.debug("Document challenge failed for %s: %s", view_url, e)
        return False


async def verify_document_record(
    session: ClientSession,
    pub_url: Optional[str],
    site_address: Optional[str],
    view_url: Optional[str],
    document_address: str,
) -> bool:
    """Verify a document through its publication or its own page.

    The publication challenge is attempted only when the document's site is a
    record address. A passing publication challenge verifies the document
    without consulting the page.
    """
    if pub_url and site_address and is_at_uri(site_address):
        if await verify_publication(session, pub_url, site_address):
            logger.debug("Verified %s via publication %s", document_address, site_address)
            return True

    if view_url:
        if await verify_document(session, view_url, document_address):
            logger.debug("Verified %s via document link at %s", document_address, view_url)
            return True

    return False
