"""
Document Resolution

This package turns document record references into resolved, verified documents.

Key Components:
- document.py: The resolution pipeline, view URL computation, and stored row projection
- __main__.py: CLI interface for resolving record addresses by hand

The resolution flow follows these steps:
1. Resolve the record owner's DID to a PDS endpoint, through the PDS cache
2. Fetch the document record from the PDS, deleting it locally if the PDS no longer has it
3. Resolve the document's site into a publication base URL
4. Compute the canonical view URL and verify ownership of the publication and the document
5. Upsert the resolved document with a fresh staleness deadline
"""
