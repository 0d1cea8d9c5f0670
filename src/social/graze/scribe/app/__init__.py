"""
Scribe Application Layer

This package implements the service around the resolution pipeline using the aiohttp framework: the ingestion
webhook, the public feed, operational endpoints, and the background tasks that drive resolution.

Key Components:
- cli.py: Entry point for running the application
- server.py: Web server configuration, middleware, and resource lifecycle
- config.py: Configuration management using Pydantic settings
- handlers/: Request handlers for the webhook, feed, admin, and internal endpoints
- tasks.py: Resolution work queue, worker, staleness sweep, and health tasks
- metrics.py: Metrics abstraction over StatsD/Telegraf

It provides the following main endpoints:
- Ingestion webhook (/webhook/tap, /webhook/tap/batch)
- Feed of verified documents (/feed) and raw record listings (/feed/raw, /records/{did})
- Admin operations (/admin/resolve-all, /admin/mark-stale)
- Health and statistics (/health, /internal/alive, /internal/ready, /stats)
"""
