"""Raw record index data models.

Tracks every document record reference seen upstream along with the content
identifier of the last synced version.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import DateTime, Index, String, delete, select
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import insert
from ulid import ULID

from social.graze.scribe.model.base import Base, str512, guidpk


DOCUMENT_COLLECTION = "site.standard.document"
PUBLICATION_COLLECTION = "site.standard.publication"


class RepoRecord(Base):
    """Index entry for a record in a user's repository.

    Unique per (did, collection, rkey). The `cid` is the content identifier
    reported by the PDS or the ingestion event, when known.
    """

    __tablename__ = "repo_records"

    guid: Mapped[guidpk]
    did: Mapped[str512]
    collection: Mapped[str512]
    rkey: Mapped[str512]
    cid: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        Index(
            "idx_repo_records_did_collection_rkey",
            "did",
            "collection",
            "rkey",
            unique=True,
        ),
        Index("idx_repo_records_collection_rkey", "collection", "rkey"),
    )


def upsert_repo_record_stmt(
    did: str, collection: str, rkey: str, cid: Optional[str], synced_at: datetime
):
    """Create PostgreSQL upsert statement for raw record index entries.

    Updates the cid and sync time for an existing record reference or inserts
    a new entry.
    """
    stmt = insert(RepoRecord).values(
        {
            "guid": str(ULID()),
            "did": did,
            "collection": collection,
            "rkey": rkey,
            "cid": cid,
            "synced_at": synced_at,
        }
    )
    return stmt.on_conflict_do_update(
        index_elements=["did", "collection", "rkey"],
        set_={
            "cid": stmt.excluded.cid,
            "synced_at": stmt.excluded.synced_at,
        },
    )


def delete_repo_record_stmt(did: str, collection: str, rkey: str):
    return delete(RepoRecord).where(
        RepoRecord.did == did,
        RepoRecord.collection == collection,
        RepoRecord.rkey == rkey,
    )


def select_documents_stmt(limit: int, offset: int, did: Optional[str] = None):
    """Select indexed document records, newest record key first."""
    stmt = select(RepoRecord).where(RepoRecord.collection == DOCUMENT_COLLECTION)
    if did is not None:
        stmt = stmt.where(RepoRecord.did == did)
    return stmt.order_by(RepoRecord.rkey.desc()).limit(limit).offset(offset)


def select_all_document_references_stmt():
    return select(RepoRecord.did, RepoRecord.collection, RepoRecord.rkey).where(
        RepoRecord.collection == DOCUMENT_COLLECTION
    )
