"""
Common testing utilities for Scribe model tests.

Provides row builders and lookups shared by the database-backed tests.
"""

from datetime import datetime, timezone, timedelta
from typing import Any, Dict, Optional, Type
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from ulid import ULID

from social.graze.scribe.atproto.uri import build_at_uri
from social.graze.scribe.model.base import Base
from social.graze.scribe.model.documents import ResolvedDocument
from social.graze.scribe.model.records import DOCUMENT_COLLECTION


def generate_ulid_string() -> str:
    """Generate a ULID string for testing."""
    return str(ULID())


def generate_test_datetime(offset_minutes: int = 0) -> datetime:
    """Generate a timezone-aware datetime for testing."""
    return datetime.now(timezone.utc) + timedelta(minutes=offset_minutes)


def resolved_document_values(
    rkey: str,
    did: str = "did:plc:abc",
    verified: bool = True,
    published_at: Optional[datetime] = None,
    resolved_at: Optional[datetime] = None,
    **overrides: Any,
) -> Dict[str, Any]:
    """Build a full column mapping for a resolved document upsert."""
    if resolved_at is None:
        resolved_at = generate_test_datetime()
    values: Dict[str, Any] = {
        "uri": build_at_uri(did, DOCUMENT_COLLECTION, rkey),
        "did": did,
        "collection": DOCUMENT_COLLECTION,
        "rkey": rkey,
        "title": f"Post {rkey}",
        "description": None,
        "path": f"/{rkey}",
        "site": "https://blog.example",
        "content": None,
        "text_content": "Body",
        "cover_image_cid": None,
        "cover_image_url": None,
        "bsky_post_ref": None,
        "tags": ["essay"],
        "published_at": published_at,
        "updated_at": None,
        "pub_url": "https://blog.example",
        "pub_name": None,
        "pub_description": None,
        "pub_icon_cid": None,
        "pub_icon_url": None,
        "view_url": f"https://blog.example/{rkey}",
        "pds_endpoint": "https://pds.example",
        "resolved_at": resolved_at,
        "stale_at": resolved_at + timedelta(hours=24),
        "verified": verified,
    }
    values.update(overrides)
    return values


async def count_rows(session: AsyncSession, model_class: Type[Base]) -> int:
    """Count every row of a model's table."""
    result = await session.scalar(select(func.count()).select_from(model_class))
    return result or 0


async def get_resolved_document(
    session: AsyncSession, uri: str
) -> Optional[ResolvedDocument]:
    """Fetch a resolved document by record address, bypassing the identity map."""
    result = await session.execute(
        select(ResolvedDocument)
        .where(ResolvedDocument.uri == uri)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
