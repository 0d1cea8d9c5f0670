"""DID to PDS endpoint cache.

Caches the repository-hosting endpoint advertised in a DID document so that
repeated resolutions for the same DID skip the identity directory.
"""

from datetime import datetime
from sqlalchemy import DateTime, Index, select
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import insert

from social.graze.scribe.model.base import Base, str512, str1024


class PdsCacheEntry(Base):
    """Cached PDS endpoint for a DID.

    An entry is authoritative only while it is younger than the cache TTL.
    """

    __tablename__ = "pds_cache"

    did: Mapped[str512] = mapped_column(primary_key=True)
    pds_endpoint: Mapped[str1024]
    cached_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (Index("idx_pds_cache_cached_at", "cached_at"),)


def select_pds_cache_stmt(did: str):
    return select(PdsCacheEntry).where(PdsCacheEntry.did == did)


def upsert_pds_cache_stmt(did: str, pds_endpoint: str, cached_at: datetime):
    """Create PostgreSQL upsert statement for PDS cache entries.

    Replaces the endpoint and cache time for an existing DID or inserts a new
    entry.
    """
    stmt = insert(PdsCacheEntry).values(
        {
            "did": did,
            "pds_endpoint": pds_endpoint,
            "cached_at": cached_at,
        }
    )
    return stmt.on_conflict_do_update(
        index_elements=["did"],
        set_={
            "pds_endpoint": stmt.excluded.pds_endpoint,
            "cached_at": stmt.excluded.cached_at,
        },
    )
