"""
AT Protocol Integration

This package holds the small slice of the AT Protocol that document resolution
needs: addressing records, reading them from a Personal Data Server (PDS), and
decoding the loosely shaped JSON those records carry.

Key Components:
- uri.py: Record references and `at://` record addresses
- blob.py: Blob reference decoding and blob URL construction
- lexicon.py: Partially validated models for document and publication records
- repo.py: Repository record reads via `com.atproto.repo.getRecord`
- pds.py: DID to PDS endpoint resolution backed by the database cache
- publication.py: Publication metadata resolution

Every lookup here fails soft: an identity, record, or publication that cannot
be resolved comes back as None rather than raising, so callers can degrade
gracefully and retry on a later pass. The single exception is the document
record read in repo.py, whose status code the resolution pipeline inspects.
"""
