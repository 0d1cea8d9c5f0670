"""
Unit tests for record models in social.graze.scribe.atproto.lexicon
"""

from datetime import datetime, timezone

from social.graze.scribe.atproto.lexicon import (
    RawDocumentRecord,
    RawPublicationRecord,
    parse_datetime,
)


class TestRawDocumentRecord:
    def test_camel_case_fields(self):
        record = RawDocumentRecord.model_validate(
            {
                "$type": "site.standard.document",
                "site": "at://did:plc:abc/site.standard.publication/self",
                "path": "/x",
                "title": "Hello",
                "coverImage": {"cid": "bafkrei"},
                "textContent": "Body",
                "bskyPostRef": {"uri": "at://did:plc:abc/app.bsky.feed.post/1", "cid": "c"},
                "tags": ["a", "b"],
                "publishedAt": "2025-01-02T03:04:05Z",
            }
        )
        assert record.site == "at://did:plc:abc/site.standard.publication/self"
        assert record.path == "/x"
        assert record.cover_image == {"cid": "bafkrei"}
        assert record.text_content == "Body"
        assert record.bsky_post_ref["cid"] == "c"
        assert record.tags == ["a", "b"]
        assert record.published_at == "2025-01-02T03:04:05Z"

    def test_wrong_types_are_absent(self):
        record = RawDocumentRecord.model_validate(
            {
                "title": 12,
                "path": ["x"],
                "coverImage": "bafkrei",
                "tags": "a,b",
                "publishedAt": 1700000000,
            }
        )
        assert record.title is None
        assert record.path is None
        assert record.cover_image is None
        assert record.tags is None
        assert record.published_at is None

    def test_non_string_tags_are_dropped(self):
        record = RawDocumentRecord.model_validate({"tags": ["a", 1, None, "b"]})
        assert record.tags == ["a", "b"]

    def test_empty_record(self):
        record = RawDocumentRecord.model_validate({})
        assert record.site is None
        assert record.content is None


class TestRawPublicationRecord:
    def test_fields(self):
        record = RawPublicationRecord.model_validate(
            {
                "url": "https://blog.example",
                "name": "Blog",
                "icon": {"ref": {"$link": "bafkreiicon"}},
            }
        )
        assert record.url == "https://blog.example"
        assert record.name == "Blog"
        assert record.description is None
        assert record.icon == {"ref": {"$link": "bafkreiicon"}}

    def test_wrong_types_are_absent(self):
        record = RawPublicationRecord.model_validate({"url": 1, "icon": "x"})
        assert record.url is None
        assert record.icon is None


class TestParseDatetime:
    def test_zulu(self):
        assert parse_datetime("2025-01-02T03:04:05Z") == datetime(
            2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc
        )

    def test_unparseable(self):
        assert parse_datetime("yesterday") is None

    def test_empty(self):
        assert parse_datetime(None) is None
        assert parse_datetime("") is None
