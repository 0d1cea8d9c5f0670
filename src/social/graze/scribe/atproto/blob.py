"""Blob reference decoding and blob URL construction.

Blob references appear in three shapes depending on the client that wrote
the record:

- `{"ref": {"$link": cid}}` (current)
- `{"$link": cid}` (legacy)
- `{"cid": cid}` (simple)

They are tried in that order and the first match wins.
"""

from typing import Any, Optional
from urllib.parse import quote


def extract_cid(blob_ref: Any) -> Optional[str]:
    """Extract the content identifier from a blob reference.

    Args:
        blob_ref: Blob reference in any of the accepted shapes

    Returns:
        CID string, or None if the input is not a recognized blob reference
    """
    if not isinstance(blob_ref, dict):
        return None

    ref = blob_ref.get("ref")
    if isinstance(ref, dict) and isinstance(ref.get("$link"), str):
        return ref["$link"]

    if isinstance(blob_ref.get("$link"), str):
        return blob_ref["$link"]

    if isinstance(blob_ref.get("cid"), str):
        return blob_ref["cid"]

    return None


def build_blob_url(pds: str, did: str, cid: str) -> str:
    """Build the `com.atproto.sync.getBlob` URL for a blob on a PDS."""
    base_url = pds.removesuffix("/")
    return (
        f"{base_url}/xrpc/com.atproto.sync.getBlob"
        f"?did={quote(did, safe='')}&cid={quote(cid, safe='')}"
    )


def resolve_blob_url(pds: Optional[str], did: str, blob_ref: Any) -> Optional[str]:
    cid = extract_cid(blob_ref)
    if cid is None or pds is None:
        return None
    return build_blob_url(pds, did, cid)
