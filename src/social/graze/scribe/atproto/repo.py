"""Repository record reads.

Wraps `com.atproto.repo.getRecord` on a PDS. Unlike the other lookups in this
package the status code is surfaced to the caller, because a 404 for a
document means the record was deleted upstream.
"""

from typing import Any, Dict, Optional
from urllib.parse import urlencode
from aiohttp import ClientSession
from pydantic import BaseModel


class RecordResponse(BaseModel):
    """Outcome of a repository record read."""

    status: int
    uri: Optional[str] = None
    cid: Optional[str] = None
    value: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def not_found(self) -> bool:
        return self.status == 404


def get_record_url(pds: str, did: str, collection: str, rkey: str) -> str:
    query = urlencode({"repo": did, "collection": collection, "rkey": rkey})
    return f"{pds.removesuffix('/')}/xrpc/com.atproto.repo.getRecord?{query}"


async def get_record(
    session: ClientSession, pds: str, did: str, collection: str, rkey: str
) -> RecordResponse:
    """Fetch a record from a PDS.

    Network errors propagate to the caller. A successful response whose body
    is not a JSON object is reported with an empty value.

    Args:
        session: HTTP client session
        pds: PDS endpoint hosting the repository
        did: Repository DID
        collection: Record collection NSID
        rkey: Record key

    Returns:
        RecordResponse carrying the HTTP status and, on success, the record
    """
    async with session.get(get_record_url(pds, did, collection, rkey)) as resp:
        if resp.status < 200 or resp.status >= 300:
            return RecordResponse(status=resp.status)
        body = await resp.json(content_type=None)
        if not isinstance(body, dict):
            return RecordResponse(status=resp.status)
        value = body.get("value")
        cid = body.get("cid")
        uri = body.get("uri")
        return RecordResponse(
            status=resp.status,
            uri=uri if isinstance(uri, str) else None,
            cid=cid if isinstance(cid, str) else None,
            value=value if isinstance(value, dict) else None,
        )
