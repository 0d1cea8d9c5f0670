"""Record references and `at://` record addresses."""

import re
from typing import Optional
from pydantic import BaseModel


AT_URI_PATTERN = re.compile(r"^at://([^/]+)/([^/]+)/([^/]+)$")


class RecordReference(BaseModel, frozen=True):
    """A `(did, collection, rkey)` triple naming one record."""

    did: str
    collection: str
    rkey: str

    @property
    def uri(self) -> str:
        return build_at_uri(self.did, self.collection, self.rkey)


def build_at_uri(did: str, collection: str, rkey: str) -> str:
    return f"at://{did}/{collection}/{rkey}"


def parse_at_uri(uri: Optional[str]) -> Optional[RecordReference]:
    """Parse a record address into its components.

    Args:
        uri: Candidate `at://{did}/{collection}/{rkey}` string

    Returns:
        RecordReference if the address is well formed, None otherwise
    """
    if not isinstance(uri, str):
        return None
    match = AT_URI_PATTERN.match(uri)
    if match is None:
        return None
    return RecordReference(
        did=match.group(1), collection=match.group(2), rkey=match.group(3)
    )


def is_at_uri(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith("at://")
