"""
Database tests for the record and document models in social.graze.scribe.model

Tests cover upsert semantics, feed filtering and ordering, staleness selection,
the PDS cache, and cascading deletion against PostgreSQL. They are skipped when
no database is available.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, Mock
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from social.graze.scribe.atproto.pds import PdsResolver
from social.graze.scribe.atproto.uri import RecordReference
from social.graze.scribe.model.documents import (
    ResolvedDocument,
    mark_all_stale_stmt,
    select_feed_stmt,
    select_stale_documents_stmt,
    upsert_resolved_document_stmt,
)
from social.graze.scribe.model.pds_cache import PdsCacheEntry, upsert_pds_cache_stmt
from social.graze.scribe.model.records import (
    DOCUMENT_COLLECTION,
    RepoRecord,
    select_documents_stmt,
    upsert_repo_record_stmt,
)
from social.graze.scribe.resolve.document import DocumentResolver

from test_helpers import (
    count_rows,
    generate_test_datetime,
    get_resolved_document,
    resolved_document_values,
)


class TestResolvedDocumentUpsert:
    async def test_upsert_never_duplicates(self, session: AsyncSession):
        first = resolved_document_values("r1", verified=False)
        await session.execute(upsert_resolved_document_stmt(first))
        await session.commit()

        second = resolved_document_values(
            "r1", verified=True, title="Renamed", resolved_at=generate_test_datetime(5)
        )
        await session.execute(upsert_resolved_document_stmt(second))
        await session.commit()

        assert await count_rows(session, ResolvedDocument) == 1
        document = await get_resolved_document(session, first["uri"])
        assert document is not None
        assert document.title == "Renamed"
        assert document.verified is True
        assert document.stale_at - document.resolved_at == timedelta(hours=24)

    async def test_upsert_keeps_guid(self, session: AsyncSession):
        values = resolved_document_values("r1")
        await session.execute(upsert_resolved_document_stmt(values))
        await session.commit()
        guid = (await get_resolved_document(session, values["uri"])).guid

        await session.execute(upsert_resolved_document_stmt(values))
        await session.commit()

        assert (await get_resolved_document(session, values["uri"])).guid == guid


class TestFeedQuery:
    async def test_feed_excludes_unverified(self, session: AsyncSession):
        await session.execute(
            upsert_resolved_document_stmt(resolved_document_values("r1", verified=True))
        )
        await session.execute(
            upsert_resolved_document_stmt(resolved_document_values("r2", verified=False))
        )
        await session.commit()

        documents = (await session.scalars(select_feed_stmt(50, 0))).all()

        assert [document.rkey for document in documents] == ["r1"]

    async def test_feed_ordered_by_publish_time(self, session: AsyncSession):
        for rkey, offset in (("old", -120), ("new", -10), ("mid", -60)):
            await session.execute(
                upsert_resolved_document_stmt(
                    resolved_document_values(
                        rkey, published_at=generate_test_datetime(offset)
                    )
                )
            )
        await session.execute(
            upsert_resolved_document_stmt(resolved_document_values("undated"))
        )
        await session.commit()

        documents = (await session.scalars(select_feed_stmt(50, 0))).all()
        assert [document.rkey for document in documents] == [
            "new",
            "mid",
            "old",
            "undated",
        ]

        page = (await session.scalars(select_feed_stmt(2, 1))).all()
        assert [document.rkey for document in page] == ["mid", "old"]


class TestStaleness:
    async def test_select_stale_documents(self, session: AsyncSession):
        now = generate_test_datetime()
        await session.execute(
            upsert_resolved_document_stmt(
                resolved_document_values("fresh", resolved_at=now)
            )
        )
        await session.execute(
            upsert_resolved_document_stmt(
                resolved_document_values(
                    "stale", resolved_at=now - timedelta(hours=25)
                )
            )
        )
        await session.execute(
            upsert_resolved_document_stmt(
                resolved_document_values("unset", stale_at=None)
            )
        )
        await session.commit()

        rows = (await session.execute(select_stale_documents_stmt(now, 100))).all()

        assert sorted(row.rkey for row in rows) == ["stale", "unset"]

    async def test_mark_all_stale(self, session: AsyncSession):
        now = generate_test_datetime()
        await session.execute(
            upsert_resolved_document_stmt(resolved_document_values("r1", resolved_at=now))
        )
        await session.commit()

        await session.execute(mark_all_stale_stmt(now))
        await session.commit()

        rows = (await session.execute(select_stale_documents_stmt(now, 100))).all()
        assert [row.rkey for row in rows] == ["r1"]


class TestRepoRecords:
    async def test_upsert_updates_cid(self, session: AsyncSession):
        synced_at = generate_test_datetime()
        await session.execute(
            upsert_repo_record_stmt("did:plc:abc", DOCUMENT_COLLECTION, "r1", "cid1", synced_at)
        )
        await session.execute(
            upsert_repo_record_stmt("did:plc:abc", DOCUMENT_COLLECTION, "r1", "cid2", synced_at)
        )
        await session.commit()

        records = (await session.scalars(select_documents_stmt(10, 0))).all()

        assert len(records) == 1
        assert records[0].cid == "cid2"

    async def test_select_by_did(self, session: AsyncSession):
        synced_at = generate_test_datetime()
        await session.execute(
            upsert_repo_record_stmt("did:plc:abc", DOCUMENT_COLLECTION, "r1", None, synced_at)
        )
        await session.execute(
            upsert_repo_record_stmt("did:plc:xyz", DOCUMENT_COLLECTION, "r2", None, synced_at)
        )
        await session.commit()

        records = (
            await session.scalars(select_documents_stmt(10, 0, did="did:plc:xyz"))
        ).all()

        assert [record.rkey for record in records] == ["r2"]


class TestPdsCache:
    async def test_upsert_replaces_endpoint(self, session: AsyncSession):
        cached_at = generate_test_datetime()
        await session.execute(
            upsert_pds_cache_stmt("did:plc:abc", "https://old.example", cached_at)
        )
        await session.execute(
            upsert_pds_cache_stmt("did:plc:abc", "https://new.example", cached_at)
        )
        await session.commit()

        entries = (await session.scalars(select(PdsCacheEntry))).all()

        assert len(entries) == 1
        assert entries[0].pds_endpoint == "https://new.example"

    async def test_resolver_reads_fresh_entry(self, session_maker):
        now = generate_test_datetime()
        async with session_maker() as session:
            await session.execute(
                upsert_pds_cache_stmt(
                    "did:plc:abc", "https://cached.example", now - timedelta(minutes=59)
                )
            )
            await session.commit()
        http_session = AsyncMock()
        resolver = PdsResolver(http_session, session_maker)

        assert await resolver.resolve("did:plc:abc", now=now) == "https://cached.example"
        http_session.get.assert_not_called()


class TestCascadingDelete:
    async def test_delete_document_removes_both_rows(self, session_maker):
        values = resolved_document_values("r1")
        async with session_maker() as session:
            await session.execute(
                upsert_repo_record_stmt(
                    "did:plc:abc", DOCUMENT_COLLECTION, "r1", None, values["resolved_at"]
                )
            )
            await session.execute(upsert_resolved_document_stmt(values))
            await session.commit()

        resolver = DocumentResolver(AsyncMock(), session_maker, AsyncMock(), Mock())
        await resolver.delete_document(
            RecordReference(did="did:plc:abc", collection=DOCUMENT_COLLECTION, rkey="r1")
        )

        async with session_maker() as session:
            assert await count_rows(session, RepoRecord) == 0
            assert await count_rows(session, ResolvedDocument) == 0
