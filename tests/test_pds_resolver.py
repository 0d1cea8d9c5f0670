"""
Unit tests for PDS resolution in social.graze.scribe.atproto.pds

Tests cover DID document URLs, service entry selection, cache freshness, and
the cache-backed resolver with mocked HTTP and database sessions.
"""

from datetime import datetime, timedelta, timezone
import pytest
from unittest.mock import AsyncMock, patch
from aiohttp import ClientSession

from social.graze.scribe.atproto.pds import (
    PDS_CACHE_TTL,
    PdsResolver,
    did_document_url,
    fetch_pds_endpoint,
    is_cache_entry_fresh,
    pds_endpoint_from_document,
    pds_service_predicate,
)
from social.graze.scribe.model.pds_cache import PdsCacheEntry

from conftest import FakeSessionMaker


NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

DID_DOCUMENT = {
    "id": "did:plc:abc123",
    "alsoKnownAs": ["at://writer.example"],
    "service": [
        {
            "id": "#atproto_labeler",
            "type": "AtprotoLabeler",
            "serviceEndpoint": "https://labeler.example",
        },
        {
            "id": "#atproto_pds",
            "type": "AtprotoPersonalDataServer",
            "serviceEndpoint": "https://pds.example",
        },
    ],
}


def mock_http_session(status=200, body=None):
    mock_session = AsyncMock(spec=ClientSession)
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.json.return_value = body
    mock_session.get.return_value.__aenter__.return_value = mock_response
    return mock_session


class TestDidDocumentUrl:
    def test_plc(self):
        assert (
            did_document_url("plc.directory", "did:plc:abc123")
            == "https://plc.directory/did:plc:abc123"
        )

    def test_web(self):
        assert (
            did_document_url("plc.directory", "did:web:blog.example")
            == "https://blog.example/.well-known/did.json"
        )

    def test_web_with_path(self):
        assert (
            did_document_url("plc.directory", "did:web:blog.example:users:alice")
            == "https://blog.example/users/alice/did.json"
        )

    def test_unsupported_method(self):
        assert did_document_url("plc.directory", "did:key:z6Mk") is None


class TestServiceSelection:
    def test_predicate_matches_pds(self):
        assert pds_service_predicate(DID_DOCUMENT["service"][1]) is True

    def test_predicate_rejects_other_services(self):
        assert pds_service_predicate(DID_DOCUMENT["service"][0]) is False
        assert pds_service_predicate({"id": "#atproto_pds"}) is False
        assert pds_service_predicate("not-a-service") is False

    def test_endpoint_from_document(self):
        assert pds_endpoint_from_document(DID_DOCUMENT) == "https://pds.example"

    def test_endpoint_missing_service(self):
        assert pds_endpoint_from_document({"id": "did:plc:abc123"}) is None
        assert pds_endpoint_from_document({"service": "nope"}) is None
        assert pds_endpoint_from_document(None) is None


class TestCacheFreshness:
    def test_fresh_just_before_ttl(self):
        cached_at = NOW - timedelta(minutes=59)
        assert is_cache_entry_fresh(cached_at, NOW) is True

    def test_stale_after_ttl(self):
        cached_at = NOW - timedelta(minutes=61)
        assert is_cache_entry_fresh(cached_at, NOW) is False

    def test_stale_at_exact_ttl(self):
        assert is_cache_entry_fresh(NOW - PDS_CACHE_TTL, NOW) is False

    def test_naive_cached_at_is_utc(self):
        cached_at = (NOW - timedelta(minutes=5)).replace(tzinfo=None)
        assert is_cache_entry_fresh(cached_at, NOW) is True

    def test_missing(self):
        assert is_cache_entry_fresh(None, NOW) is False


class TestFetchPdsEndpoint:
    async def test_fetch_success(self):
        mock_session = mock_http_session(body=DID_DOCUMENT)

        result = await fetch_pds_endpoint(mock_session, "plc.directory", "did:plc:abc123")

        assert result == "https://pds.example"
        mock_session.get.assert_called_once_with("https://plc.directory/did:plc:abc123")

    async def test_fetch_not_found(self):
        mock_session = mock_http_session(status=404)

        result = await fetch_pds_endpoint(mock_session, "plc.directory", "did:plc:abc123")

        assert result is None

    @patch("social.graze.scribe.atproto.pds.sentry_sdk")
    async def test_fetch_network_error(self, mock_sentry):
        mock_session = AsyncMock(spec=ClientSession)
        mock_session.get.side_effect = Exception("connection reset")

        result = await fetch_pds_endpoint(mock_session, "plc.directory", "did:plc:abc123")

        assert result is None
        mock_sentry.capture_exception.assert_called_once()

    async def test_fetch_unsupported_method(self):
        mock_session = AsyncMock(spec=ClientSession)

        result = await fetch_pds_endpoint(mock_session, "plc.directory", "did:key:z6Mk")

        assert result is None
        mock_session.get.assert_not_called()


class TestPdsResolver:
    async def test_fresh_cache_hit_skips_directory(self):
        entry = PdsCacheEntry(
            did="did:plc:abc123",
            pds_endpoint="https://cached.example",
            cached_at=NOW - timedelta(minutes=59),
        )
        session_maker = FakeSessionMaker(scalar_result=entry)
        mock_session = mock_http_session(body=DID_DOCUMENT)
        resolver = PdsResolver(mock_session, session_maker)

        result = await resolver.resolve("did:plc:abc123", now=NOW)

        assert result == "https://cached.example"
        mock_session.get.assert_not_called()
        assert "pds_cache" not in session_maker.tables_written()

    async def test_stale_cache_refetches_and_upserts(self):
        entry = PdsCacheEntry(
            did="did:plc:abc123",
            pds_endpoint="https://cached.example",
            cached_at=NOW - timedelta(minutes=61),
        )
        session_maker = FakeSessionMaker(scalar_result=entry)
        mock_session = mock_http_session(body=DID_DOCUMENT)
        resolver = PdsResolver(mock_session, session_maker)

        result = await resolver.resolve("did:plc:abc123", now=NOW)

        assert result == "https://pds.example"
        mock_session.get.assert_called_once()
        assert session_maker.tables_written() == ["pds_cache"]

    async def test_cache_miss_without_endpoint(self):
        session_maker = FakeSessionMaker()
        mock_session = mock_http_session(body={"id": "did:plc:abc123", "service": []})
        resolver = PdsResolver(mock_session, session_maker)

        result = await resolver.resolve("did:plc:abc123", now=NOW)

        assert result is None
        assert session_maker.tables_written() == []

    async def test_custom_ttl(self):
        entry = PdsCacheEntry(
            did="did:plc:abc123",
            pds_endpoint="https://cached.example",
            cached_at=NOW - timedelta(minutes=10),
        )
        session_maker = FakeSessionMaker(scalar_result=entry)
        mock_session = mock_http_session(body=DID_DOCUMENT)
        resolver = PdsResolver(
            mock_session, session_maker, ttl=timedelta(minutes=5)
        )

        result = await resolver.resolve("did:plc:abc123", now=NOW)

        assert result == "https://pds.example"

    async def test_plc_hostname_is_used(self):
        session_maker = FakeSessionMaker()
        mock_session = mock_http_session(body=DID_DOCUMENT)
        resolver = PdsResolver(mock_session, session_maker, "plc.test")

        await resolver.resolve("did:plc:abc123", now=NOW)

        mock_session.get.assert_called_once_with("https://plc.test/did:plc:abc123")
