"""
Scribe - Long-form Document Resolver

This module implements a service that keeps a queryable store of long-form documents published on the AT Protocol
network. It receives record change events, resolves each document record against its owner's PDS and its
publication, verifies ownership, and serves the verified results as a feed.

Key Components:
- app: Web application layer with request handlers, background tasks, and server configuration
- atproto: Integration with AT Protocol, handling PDS discovery, record reads, and blob URLs
- ingest: Change event parsing and dispatch from the ingestion webhook
- model: Database models for the PDS cache, the raw record index, and resolved documents
- resolve: The document resolution pipeline and its CLI
- verify: Ownership verification challenges against publication and document web pages

Architecture Overview:
1. Ingestion:
   - Upstream change events arrive on a webhook
   - Document records are resolved inline or queued for resolution
   - Deletions cascade to the resolved store

2. Resolution:
   - DIDs are resolved to PDS endpoints through a cache with a fixed TTL
   - Records and publications are fetched from their PDS
   - Canonical view URLs are computed and ownership is verified

3. Freshness:
   - Every resolved document carries a staleness deadline
   - A periodic sweep re-queues stale documents
   - Task distribution using Redis work queues with retry and backoff
"""
