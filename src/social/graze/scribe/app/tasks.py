import asyncio
from datetime import datetime, timezone
import logging
from time import time
from typing import Any, Iterable, List, NoReturn, Optional, Tuple
from aiohttp import web
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import sentry_sdk

from social.graze.scribe.app.config import (
    ENQUEUE_BATCH_SIZE,
    RESOLUTION_RETRY_QUEUE_SUFFIX,
    DatabaseSessionMakerAppKey,
    DocumentResolverAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    RedisClientAppKey,
    SettingsAppKey,
)
from social.graze.scribe.ingest.events import WorkItem
from social.graze.scribe.model.documents import select_stale_documents_stmt
from social.graze.scribe.model.health import HealthGauge
from social.graze.scribe.model.records import select_all_document_references_stmt

logger = logging.getLogger(__name__)


def normalize_redis_string(value: Any) -> str:
    """
    Normalize Redis value to string, handling bytes conversion.
    """
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


class QueueManager:
    """
    Redis sorted-set work queue with at-least-once delivery.

    Work items are members of the global queue scored by the time they become due. A worker claims a batch of due
    items by moving them into its own worker queue, and an item leaves the worker queue only once it has been
    handled, either acknowledged on success or rescheduled into the global queue for redelivery. Identical items
    collapse into a single member.
    """

    def __init__(
        self,
        redis_client: Any,
        metrics_client: Any,
        queue_name: str,
        worker_id: str,
        batch_size: int = 5,
    ):
        self.redis_client = redis_client
        self.metrics_client = metrics_client
        self.queue_name = queue_name
        self.worker_id = worker_id
        self.batch_size = batch_size
        self.worker_queue = f"{queue_name}:{worker_id}"
        self.workers_heartbeat = f"{queue_name}:workers"

    async def enqueue(
        self, items: Iterable[WorkItem], timestamp: int, replace: bool = True
    ) -> int:
        """
        Add work items to the global queue, due at `timestamp`, in batches.

        With `replace` false, items already pending keep their existing due time.
        Returns number of items written.
        """
        batch: List[WorkItem] = []
        queued = 0
        for item in items:
            batch.append(item)
            if len(batch) >= ENQUEUE_BATCH_SIZE:
                queued += await self._enqueue_batch(batch, timestamp, replace)
                batch = []
        if batch:
            queued += await self._enqueue_batch(batch, timestamp, replace)
        return queued

    async def _enqueue_batch(
        self, batch: List[WorkItem], timestamp: int, replace: bool
    ) -> int:
        await self.redis_client.zadd(
            self.queue_name,
            {item.serialize(): timestamp for item in batch},
            nx=not replace,
        )
        self.metrics_client.increment(
            "scribe.queue.enqueued", len(batch), tag_dict={"queue": self.queue_name}
        )
        return len(batch)

    async def update_heartbeat(self, timestamp: int) -> None:
        """
        Update worker heartbeat in Redis.
        """
        await self.redis_client.hset(
            self.workers_heartbeat, self.worker_id, str(timestamp)
        )

    async def get_queue_metrics(self, timestamp: int) -> Tuple[int, int]:
        """
        Get worker and global queue counts for metrics.
        Returns (worker_queue_count, global_queue_count).
        """
        worker_queue_count = await self.redis_client.zcount(
            self.worker_queue, 0, timestamp
        )
        global_queue_count = await self.redis_client.zcount(
            self.queue_name, 0, timestamp
        )
        return worker_queue_count, global_queue_count

    async def populate_worker_queue(self, timestamp: int) -> int:
        """
        Claim due work from the global queue into this worker's queue.
        Returns number of items claimed.
        """
        async with self.redis_client.pipeline() as redis_pipe:
            redis_pipe.zrangestore(
                self.worker_queue,
                self.queue_name,
                0,
                timestamp,
                num=self.batch_size,
                offset=0,
                byscore=True,
            )
            redis_pipe.zdiffstore(self.queue_name, [self.queue_name, self.worker_queue])
            zrangestore_res, _ = await redis_pipe.execute()
            return zrangestore_res

    async def get_pending_tasks(self, timestamp: int) -> List[Tuple[str, float]]:
        """
        Get claimed tasks from worker queue.
        """
        return await self.redis_client.zrange(
            self.worker_queue, 0, timestamp, byscore=True, withscores=True
        )

    async def remove_task(self, task_id: Any) -> None:
        """
        Acknowledge a handled task by removing it from the worker queue.
        """
        await self.redis_client.zrem(self.worker_queue, task_id)


class RetryHandler:
    """
    Redelivers failed work items with exponential backoff.
    """

    def __init__(
        self,
        redis_client: Any,
        metrics_client: Any,
        queue_name: str,
        retry_queue_name: str,
        worker_id: str,
        max_retries: int,
        base_delay: int,
    ):
        self.redis_client = redis_client
        self.metrics_client = metrics_client
        self.queue_name = queue_name
        self.retry_queue_name = retry_queue_name
        self.worker_id = worker_id
        self.max_retries = max_retries
        self.base_delay = base_delay

    async def get_retry_count(self, task_id: str) -> int:
        """
        Get current retry count for a task.
        """
        current_retries = await self.redis_client.hget(self.retry_queue_name, task_id)
        return int(current_retries) if current_retries else 0

    async def schedule_retry(self, task_id: str, current_time: int) -> bool:
        """
        Schedule redelivery of a failed task with exponential backoff.
        Returns True if retry was scheduled, False if max retries exceeded.
        """
        current_retries = await self.get_retry_count(task_id)

        if current_retries < self.max_retries:
            retry_delay = self.base_delay * (2**current_retries)
            retry_timestamp = current_time + retry_delay

            await self.redis_client.zadd(self.queue_name, {task_id: retry_timestamp})
            await self.redis_client.hset(
                self.retry_queue_name, task_id, current_retries + 1
            )

            logger.info(
                "Scheduled retry %d/%d for task %s in %d seconds",
                current_retries + 1,
                self.max_retries,
                task_id,
                retry_delay,
            )

            self.metrics_client.increment(
                "scribe.task.retry_scheduled",
                1,
                tag_dict={
                    "retry_attempt": str(current_retries + 1),
                    "worker_id": self.worker_id,
                },
            )
            return True

        await self.clear_retry_count(task_id)
        logger.error(
            "Max retries exceeded for task %s, giving up after %d attempts",
            task_id,
            self.max_retries,
        )
        self.metrics_client.increment(
            "scribe.task.max_retries_exceeded",
            1,
            tag_dict={"worker_id": self.worker_id},
        )
        return False

    async def clear_retry_count(self, task_id: str) -> None:
        """
        Clear retry count for a task (on success or max retries exceeded).
        """
        await self.redis_client.hdel(self.retry_queue_name, task_id)


class TaskProcessor:
    """
    Generic task processor with timing, metrics, and error handling.
    """

    def __init__(
        self,
        metrics_client: Any,
        worker_id: str,
        task_type: str,
        health_gauge: Optional[HealthGauge] = None,
    ):
        self.metrics_client = metrics_client
        self.worker_id = worker_id
        self.task_type = task_type
        self.health_gauge = health_gauge

    async def process_task(
        self,
        task_id: Any,
        task_func,
        *args,
        **kwargs,
    ) -> bool:
        """
        Process a single task with timing and metrics.
        Returns True on success, False on failure.
        """
        start_time = time()
        task_id_str = normalize_redis_string(task_id)

        try:
            await task_func(*args, **kwargs)
            return True
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("Error processing task %s", task_id_str)

            self.metrics_client.increment(
                f"scribe.task.{self.task_type}.exception",
                1,
                tag_dict={
                    "exception": type(e).__name__,
                    "worker_id": self.worker_id,
                },
            )
            if self.health_gauge is not None:
                await self.health_gauge.record_failure()
            return False
        finally:
            self.metrics_client.timer(
                f"scribe.task.{self.task_type}.time",
                time() - start_time,
                tag_dict={"worker_id": self.worker_id},
            )
            self.metrics_client.increment(
                f"scribe.task.{self.task_type}.count",
                1,
                tag_dict={"worker_id": self.worker_id},
            )


async def handle_work_item(
    queue_manager: QueueManager,
    retry_handler: RetryHandler,
    task_processor: TaskProcessor,
    document_resolver: Any,
    member: Any,
    timestamp: int,
) -> None:
    """
    Run the resolution pipeline for one claimed work item, then acknowledge it.

    A failed item is rescheduled for redelivery before it is acknowledged, so it is never lost.
    """
    member_str = normalize_redis_string(member)
    try:
        item = WorkItem.deserialize(member_str)
    except ValidationError:
        logger.error("Dropping malformed work item %s", member_str)
        await queue_manager.remove_task(member)
        return

    success = await task_processor.process_task(
        member_str,
        document_resolver.process_document,
        item.did,
        item.collection,
        item.rkey,
    )

    if success:
        await retry_handler.clear_retry_count(member_str)
    else:
        await retry_handler.schedule_retry(member_str, timestamp)

    await queue_manager.remove_task(member)


async def enqueue_stale_documents(
    database_session_maker: async_sessionmaker[AsyncSession],
    queue_manager: QueueManager,
    now: datetime,
    limit: int,
) -> int:
    """
    Enqueue resolved documents whose freshness deadline has passed.
    Returns number of items enqueued.
    """
    async with database_session_maker() as database_session:
        rows = (
            await database_session.execute(select_stale_documents_stmt(now, limit))
        ).all()

    items = [
        WorkItem(did=row.did, collection=row.collection, rkey=row.rkey)
        for row in rows
    ]
    return await queue_manager.enqueue(items, int(now.timestamp()), replace=False)


async def enqueue_all_documents(
    database_session_maker: async_sessionmaker[AsyncSession],
    queue_manager: QueueManager,
    now: datetime,
) -> int:
    """
    Enqueue every indexed document record for re-resolution.
    Returns number of items enqueued.
    """
    async with database_session_maker() as database_session:
        rows = (
            await database_session.execute(select_all_document_references_stmt())
        ).all()

    items = [
        WorkItem(did=row.did, collection=row.collection, rkey=row.rkey)
        for row in rows
    ]
    return await queue_manager.enqueue(items, int(now.timestamp()))


def queue_manager_for(app: web.Application) -> QueueManager:
    settings = app[SettingsAppKey]
    return QueueManager(
        app[RedisClientAppKey],
        app[MetricsClientAppKey],
        settings.resolution_queue,
        settings.worker_id,
        settings.queue_batch_size,
    )


async def tick_health_task(app: web.Application) -> NoReturn:
    """
    Drain the health gauge every 30 seconds.
    """

    logger.info("Starting health gauge task")

    health_gauge = app[HealthGaugeAppKey]
    while True:
        await health_gauge.drain()
        await asyncio.sleep(30)


async def resolution_worker_task(app: web.Application) -> NoReturn:
    """
    Background process that consumes the resolution queue.

    The process:
    1. Claim due work items from the global queue into this worker's queue
    2. Resolve the claimed items concurrently
    3. Reschedule failures with exponential backoff
    4. Acknowledge every handled item by removing it from the worker queue

    Items left in a worker queue by a crashed worker are picked up again by that worker on restart.
    """
    logger.info("Starting resolution worker task")

    settings = app[SettingsAppKey]
    redis_client = app[RedisClientAppKey]
    metrics_client = app[MetricsClientAppKey]
    document_resolver = app[DocumentResolverAppKey]

    queue_manager = queue_manager_for(app)
    retry_handler = RetryHandler(
        redis_client,
        metrics_client,
        settings.resolution_queue,
        f"{settings.resolution_queue}{RESOLUTION_RETRY_QUEUE_SUFFIX}",
        settings.worker_id,
        settings.resolution_max_retries,
        settings.resolution_retry_base_delay,
    )
    task_processor = TaskProcessor(
        metrics_client, settings.worker_id, "resolve_document", app[HealthGaugeAppKey]
    )

    while True:
        try:
            await asyncio.sleep(settings.queue_poll_interval)

            now = datetime.now(timezone.utc)
            timestamp = int(now.timestamp())

            await queue_manager.update_heartbeat(timestamp)

            worker_queue_count, global_queue_count = (
                await queue_manager.get_queue_metrics(timestamp)
            )
            metrics_client.gauge(
                "scribe.task.resolve_document.worker_queue_count",
                worker_queue_count,
                tag_dict={"worker_id": settings.worker_id},
            )
            metrics_client.gauge(
                "scribe.task.resolve_document.global_queue_count",
                global_queue_count,
                tag_dict={"worker_id": settings.worker_id},
            )

            if worker_queue_count == 0 and global_queue_count > 0:
                try:
                    logger.debug(
                        "tick_task: processing %s up to %d",
                        settings.resolution_queue,
                        timestamp,
                    )
                    work_queued = await queue_manager.populate_worker_queue(timestamp)
                    metrics_client.increment(
                        "scribe.task.resolve_document.work_queued",
                        work_queued,
                        tag_dict={"worker_id": settings.worker_id},
                    )
                except Exception as e:
                    sentry_sdk.capture_exception(e)
                    logger.exception("error populating worker queue")

            tasks = await queue_manager.get_pending_tasks(timestamp)
            if len(tasks) > 0:
                async with asyncio.TaskGroup() as tg:
                    for member, _ in tasks:
                        tg.create_task(
                            handle_work_item(
                                queue_manager,
                                retry_handler,
                                task_processor,
                                document_resolver,
                                member,
                                timestamp,
                            )
                        )

        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("resolution worker tick failed")


async def staleness_sweep_task(app: web.Application) -> NoReturn:
    """
    Background process that enqueues stale resolved documents for re-resolution.

    This is the only mechanism that refreshes documents without an upstream change event.
    """
    logger.info("Starting staleness sweep task")

    settings = app[SettingsAppKey]
    database_session_maker = app[DatabaseSessionMakerAppKey]
    metrics_client = app[MetricsClientAppKey]
    queue_manager = queue_manager_for(app)

    while True:
        try:
            await asyncio.sleep(settings.sweep_interval)

            now = datetime.now(timezone.utc)
            enqueued = await enqueue_stale_documents(
                database_session_maker, queue_manager, now, settings.sweep_limit
            )
            if enqueued > 0:
                logger.info("Enqueued %d stale documents", enqueued)

            metrics_client.increment(
                "scribe.task.staleness_sweep.enqueued",
                enqueued,
                tag_dict={"worker_id": settings.worker_id},
            )

        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("staleness sweep failed")
