"""Resolved document data models.

Provides the denormalized, servable projection of a document record: the raw
record fields, resolved publication metadata, computed view URL, and the
verification outcome. Rows are keyed by record address and only ever written
through an upsert, so re-resolution replaces rather than duplicates.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    String,
    Text,
    delete,
    or_,
    select,
    update,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSON, insert
from ulid import ULID

from social.graze.scribe.model.base import Base, str512, guidpk


class ResolvedDocument(Base):
    """Fully resolved document record ready for public serving.

    `stale_at` is always `resolved_at` plus the staleness window. Rows with
    `verified` false are kept for debugging but never served by the feed.
    """

    __tablename__ = "resolved_documents"

    guid: Mapped[guidpk]
    uri: Mapped[str] = mapped_column(String(1024), nullable=False)
    did: Mapped[str512]
    collection: Mapped[str512]
    rkey: Mapped[str512]

    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    path: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    site: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    content: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    text_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cover_image_cid: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    cover_image_url: Mapped[Optional[str]] = mapped_column(
        String(2048), nullable=True
    )
    bsky_post_ref: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    tags: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    pub_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    pub_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pub_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pub_icon_cid: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    pub_icon_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    view_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    pds_endpoint: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    resolved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    stale_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_resolved_documents_uri", "uri", unique=True),
        Index("idx_resolved_documents_stale_at", "stale_at"),
        Index("idx_resolved_documents_feed", "verified", "published_at"),
    )


# Columns never overwritten by an upsert.
_IMMUTABLE_COLUMNS = frozenset({"guid", "uri"})


def upsert_resolved_document_stmt(values: Dict[str, Any]):
    """Create PostgreSQL upsert statement for a resolved document.

    Every derived column is replaced together, so a row is either fully
    refreshed or left untouched.
    """
    row = {"guid": str(ULID()), **values}
    stmt = insert(ResolvedDocument).values(row)
    return stmt.on_conflict_do_update(
        index_elements=["uri"],
        set_={
            key: stmt.excluded[key]
            for key in row.keys()
            if key not in _IMMUTABLE_COLUMNS
        },
    )


def delete_resolved_document_stmt(uri: str):
    return delete(ResolvedDocument).where(ResolvedDocument.uri == uri)


def select_resolved_document_stmt(uri: str):
    return select(ResolvedDocument).where(ResolvedDocument.uri == uri)


def select_feed_stmt(limit: int, offset: int):
    """Select verified documents for the public feed, newest first."""
    return (
        select(ResolvedDocument)
        .where(ResolvedDocument.verified.is_(True))
        .order_by(
            ResolvedDocument.published_at.desc().nulls_last(),
            ResolvedDocument.uri,
        )
        .limit(limit)
        .offset(offset)
    )


def select_stale_documents_stmt(now: datetime, limit: int):
    """Select references of documents whose freshness deadline passed or is unset."""
    return (
        select(
            ResolvedDocument.did,
            ResolvedDocument.collection,
            ResolvedDocument.rkey,
        )
        .where(
            or_(
                ResolvedDocument.stale_at.is_(None),
                ResolvedDocument.stale_at <= now,
            )
        )
        .order_by(ResolvedDocument.stale_at.asc().nulls_first())
        .limit(limit)
    )


def mark_all_stale_stmt(now: datetime):
    return update(ResolvedDocument).values(stale_at=now - timedelta(hours=1))


def serialize_document(document: ResolvedDocument) -> Dict[str, Any]:
    """Render a resolved document in the feed's JSON shape."""
    publication = None
    if document.pub_url is not None or document.pub_name is not None:
        publication = {
            "url": document.pub_url,
            "name": document.pub_name,
            "description": document.pub_description,
            "iconCid": document.pub_icon_cid,
            "iconUrl": document.pub_icon_url,
        }
    return {
        "uri": document.uri,
        "did": document.did,
        "rkey": document.rkey,
        "title": document.title or "Untitled",
        "description": document.description,
        "path": document.path,
        "site": document.site,
        "content": document.content,
        "textContent": document.text_content,
        "coverImageCid": document.cover_image_cid,
        "coverImageUrl": document.cover_image_url,
        "bskyPostRef": document.bsky_post_ref,
        "tags": document.tags,
        "publishedAt": _isoformat(document.published_at),
        "updatedAt": _isoformat(document.updated_at),
        "publication": publication,
        "viewUrl": document.view_url,
        "pdsEndpoint": document.pds_endpoint,
        "verified": document.verified,
    }


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()
