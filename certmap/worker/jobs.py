"""
In-process background job queue.

One consumer task drains a bounded FIFO strictly one job at a time, so at
most one document is being parsed by the background path at any moment.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from certmap.config import settings
from certmap.engines.base import DocumentSource
from certmap.models.enums import DocStatus
from certmap.observability import metrics
from certmap.pipeline.orchestrator import MappingPipeline, PipelineError

logger = structlog.get_logger(__name__)


class QueueFullError(PipelineError):
    def __init__(self, max_size: int):
        super().__init__(f"Job queue is full ({max_size} jobs waiting)", "ERR_QUEUE_FULL")


@dataclass
class Job:
    doc_id: str
    source: DocumentSource


class JobQueue:
    def __init__(self, pipeline: MappingPipeline, max_size: Optional[int] = None):
        self.pipeline = pipeline
        self.max_size = max_size or settings.QUEUE_MAX_SIZE
        self._queue: Optional[asyncio.Queue] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self.processed = 0
        self.failed = 0
        self.current: Optional[str] = None
        # Slots claimed by enqueue calls still writing the queued status
        self._reserved = 0

    @property
    def running(self) -> bool:
        return self._consumer_task is not None and not self._consumer_task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.max_size)
        self._consumer_task = asyncio.create_task(self._consume())
        logger.info("job_queue_started", max_size=self.max_size)

    async def stop(self) -> None:
        """Cancel the consumer. Jobs still waiting are dropped."""
        if self._consumer_task is not None:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None
        dropped = self._queue.qsize() if self._queue is not None else 0
        metrics.worker_queue_depth.set(0)
        logger.info("job_queue_stopped", processed=self.processed, failed=self.failed, dropped=dropped)

    async def enqueue(self, doc_id: str, source: DocumentSource) -> None:
        """
        Schedule a document for background processing.
        Marks it queued and wakes the worker; the outcome is delivered via
        status broadcast and the audit trail.
        """
        if self._queue is None:
            raise RuntimeError("JobQueue.start() has not been called")
        if self._queue.qsize() + self._reserved >= self.max_size:
            raise QueueFullError(self.max_size)

        # Claimed before the first await, released once the job is queued
        self._reserved += 1
        try:
            await self.pipeline.set_status(doc_id, DocStatus.QUEUED)
        finally:
            self._reserved -= 1
        self._queue.put_nowait(Job(doc_id=doc_id, source=source))
        metrics.worker_queue_depth.set(self._queue.qsize())
        logger.info("job_enqueued", doc_id=doc_id, depth=self._queue.qsize())

    async def join(self) -> None:
        """Wait until every job enqueued so far has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def _consume(self) -> None:
        assert self._queue is not None
        while True:
            job = await self._queue.get()
            metrics.worker_queue_depth.set(self._queue.qsize())
            metrics.worker_jobs_active.inc()
            self.current = job.doc_id
            try:
                await self._run(job)
            finally:
                self.current = None
                metrics.worker_jobs_active.dec()
                self._queue.task_done()

    async def _run(self, job: Job) -> None:
        logger.info("job_started", doc_id=job.doc_id)
        try:
            outcome = await self.pipeline.process(job.doc_id, job.source)
        except Exception:
            self.failed += 1
            logger.exception("job_failed", doc_id=job.doc_id)
            return

        if outcome.status == DocStatus.ERROR:
            self.failed += 1
        else:
            self.processed += 1
        logger.info("job_completed", doc_id=job.doc_id, status=outcome.status.value)

    def stats(self) -> dict:
        return {
            "running": self.running,
            "depth": self._queue.qsize() if self._queue is not None else 0,
            "maxSize": self.max_size,
            "processed": self.processed,
            "failed": self.failed,
            "current": self.current,
        }
