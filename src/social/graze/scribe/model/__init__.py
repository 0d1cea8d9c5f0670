"""
Database Models

This package defines the persistent data structures for the Scribe service using
the SQLAlchemy ORM, along with the statement builders used to write them.

Key Models:
- base.py: Base SQLAlchemy model with common type definitions
- pds_cache.py: DID to PDS endpoint cache with a fixed time-to-live
- records.py: Raw record index of document records seen upstream
- documents.py: Resolved, denormalized documents served by the feed
- health.py: Health monitoring gauge

The data models follow these relationships:
- PdsCacheEntry: One row per DID, refreshed when older than the cache TTL
- RepoRecord: One row per (did, collection, rkey) record reference
- ResolvedDocument: One row per record address, written only by resolution

Writes are expressed as PostgreSQL upserts keyed on the natural unique key of
each table, so repeated resolution of the same record never duplicates rows.
"""
