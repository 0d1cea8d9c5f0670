"""Ingestion event dispatch and webhook authorization."""

import base64
from datetime import datetime, timezone
import hmac
import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social.graze.scribe.app.tasks import QueueManager
from social.graze.scribe.ingest.events import (
    FlatRecordEvent,
    IdentityEvent,
    RecordAction,
    RecordChange,
    RecordEvent,
    TapEvent,
    WorkItem,
)
from social.graze.scribe.model.records import DOCUMENT_COLLECTION, upsert_repo_record_stmt
from social.graze.scribe.resolve.document import DocumentResolver

logger = logging.getLogger(__name__)


def is_authorized(authorization: Optional[str], secret: Optional[str]) -> bool:
    """Check an Authorization header against the webhook secret.

    Accepts `Basic base64("admin:{secret}")`, which is what Tap sends, and
    `Bearer {secret}`. Everything is accepted when no secret is configured.
    """
    if not secret:
        return True
    if authorization is None:
        return False

    credentials = base64.b64encode(f"admin:{secret}".encode()).decode()
    expected_basic = f"Basic {credentials}"
    expected_bearer = f"Bearer {secret}"

    return hmac.compare_digest(
        authorization.encode(), expected_basic.encode()
    ) or hmac.compare_digest(authorization.encode(), expected_bearer.encode())


class EventIntake:
    """
    Applies upstream change events to the store and the resolution queue.
    """

    def __init__(
        self,
        document_resolver: DocumentResolver,
        database_session_maker: async_sessionmaker[AsyncSession],
        queue_manager: QueueManager,
    ):
        self.document_resolver = document_resolver
        self.database_session_maker = database_session_maker
        self.queue_manager = queue_manager

    async def apply(self, event: TapEvent) -> bool:
        """
        Apply one event. Returns True if the event changed anything.

        Errors propagate so that the sender can redeliver.
        """
        match event:
            case RecordEvent(record=change):
                return await self.apply_record_change(change)
            case FlatRecordEvent():
                return await self.apply_record_change(event.to_change())
            case IdentityEvent(identity=identity):
                logger.debug("Ignoring identity event for %s", identity.did)
                return False

    async def apply_record_change(self, change: RecordChange) -> bool:
        if change.collection != DOCUMENT_COLLECTION:
            return False

        reference = change.reference

        match change.action:
            case RecordAction.delete:
                await self.document_resolver.delete_document(reference)
                logger.info("Deleted %s", reference.uri)
                return True

            case RecordAction.create | RecordAction.update:
                if change.record is not None:
                    applied = await self.document_resolver.apply_record(
                        reference, change.record, change.cid
                    )
                    if applied:
                        return True

                async with self.database_session_maker() as database_session:
                    async with database_session.begin():
                        await database_session.execute(
                            upsert_repo_record_stmt(
                                reference.did,
                                reference.collection,
                                reference.rkey,
                                change.cid,
                                datetime.now(timezone.utc),
                            )
                        )

                now = int(datetime.now(timezone.utc).timestamp())
                await self.queue_manager.enqueue(
                    [WorkItem.from_reference(reference)], now
                )
                return True
