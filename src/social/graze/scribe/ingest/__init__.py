"""
Event Ingestion

This package accepts change events from the upstream relay (Tap) and turns them
into store updates or resolution work items.

Key Components:
- events.py: Tagged union of record and identity events
- intake.py: Event dispatch and webhook authorization

Only `site.standard.document` record events are acted on. Deletes are applied
directly; creates and updates are either resolved inline, when the event embeds
the record value, or enqueued for the resolution workers.
"""
