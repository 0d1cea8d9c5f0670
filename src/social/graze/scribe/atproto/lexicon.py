"""Partially validated models for standard.site records.

Upstream records are authored by arbitrary clients, so every field is
optional and a value of the wrong JSON type is treated as absent rather than
rejecting the whole record.
"""

from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _string_or_none(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    return None


def _object_or_none(value: Any) -> Optional[Any]:
    if isinstance(value, dict):
        return value
    return None


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, returning None when it is unparseable."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class RawDocumentRecord(BaseModel):
    """The `value` of a `site.standard.document` record."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    site: Optional[str] = None
    path: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    cover_image: Optional[Any] = Field(default=None, alias="coverImage")
    content: Optional[Any] = None
    text_content: Optional[str] = Field(default=None, alias="textContent")
    bsky_post_ref: Optional[Any] = Field(default=None, alias="bskyPostRef")
    tags: Optional[List[str]] = None
    published_at: Optional[str] = Field(default=None, alias="publishedAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    @field_validator(
        "site",
        "path",
        "title",
        "description",
        "text_content",
        "published_at",
        "updated_at",
        mode="before",
    )
    @classmethod
    def coerce_string(cls, v):
        return _string_or_none(v)

    @field_validator("cover_image", "bsky_post_ref", mode="before")
    @classmethod
    def coerce_object(cls, v):
        return _object_or_none(v)

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_tags(cls, v):
        if not isinstance(v, list):
            return None
        return [tag for tag in v if isinstance(tag, str)]


class RawPublicationRecord(BaseModel):
    """The `value` of a `site.standard.publication` record."""

    model_config = ConfigDict(extra="ignore")

    url: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[Any] = None

    @field_validator("url", "name", "description", mode="before")
    @classmethod
    def coerce_string(cls, v):
        return _string_or_none(v)

    @field_validator("icon", mode="before")
    @classmethod
    def coerce_object(cls, v):
        return _object_or_none(v)
