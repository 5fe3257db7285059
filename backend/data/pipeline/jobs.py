"""In-memory embedding queue.

Implements:
- Priority scheduling (lower value first, FIFO within a priority)
- Single-flight per document (one queued copy, one active run)
- Bounded worker pool on the running event loop
- Status write-back through a status sink
"""

import asyncio
import itertools
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Protocol

from prometheus_client import Counter, Gauge, Histogram

from config import Settings, settings as default_settings
from services.errors import NotFoundError, ValidationError

# Configure logging
logger = logging.getLogger(__name__)

EMBED_TASKS_TOTAL = Counter(
    "embed_tasks_total",
    "Embedding tasks finished, by outcome.",
    labelnames=("status",),
)
EMBED_TASK_DURATION_SECONDS = Histogram(
    "embed_task_duration_seconds",
    "Wall time of one chunk/embed/upsert run.",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120),
)
EMBED_QUEUE_DEPTH = Gauge(
    "embed_queue_depth",
    "Tasks waiting in the embedding queue.",
)


class StatusSink(Protocol):
    def mark_status(self, document_id: int, status: str, error: Optional[str] = None) -> None:
        ...


class Pipeline(Protocol):
    def run(self, document_id: int, title: str, content: str, visible: bool = True):
        ...


@dataclass
class EmbedTask:
    """A snapshot of a document waiting to be embedded."""

    document_id: int
    title: str
    content: str
    visible: bool = True
    priority: int = 10
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0
    sequence: int = field(default=0, repr=False)

    def sort_key(self):
        return (self.priority, self.enqueued_at, self.sequence)


@dataclass(frozen=True)
class QueuedTaskView:
    document_id: int
    title: str
    priority: int
    enqueued_at: datetime


@dataclass(frozen=True)
class QueueSnapshot:
    """Read-only view of the queue, most urgent task first."""

    queued_tasks: tuple
    processing_tasks: frozenset
    running: bool = False

    @property
    def queue_length(self) -> int:
        return len(self.queued_tasks)

    @property
    def processing_count(self) -> int:
        return len(self.processing_tasks)

    def is_queued(self, document_id: int) -> bool:
        return any(t.document_id == document_id for t in self.queued_tasks)

    def is_processing(self, document_id: int) -> bool:
        return document_id in self.processing_tasks


class EmbeddingQueue:
    """Priority queue of embedding tasks drained by a bounded pool of workers."""

    def __init__(
        self,
        pipeline: Pipeline,
        status_sink: StatusSink,
        concurrency: int = 2,
        poll_interval: float = 1.0,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1.")
        self.pipeline = pipeline
        self.status_sink = status_sink
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.running = False

        # Guards _queue and _processing.
        self._lock = threading.Lock()
        self._queue: List[EmbedTask] = []
        self._processing: set[int] = set()
        self._sequence = itertools.count()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._workers: List[asyncio.Task] = []

    # --- Producer side ---

    def enqueue(self, task: EmbedTask) -> None:
        """Queue a task, replacing any queued task for the same document.

        A document that is currently processing keeps its queued copy until
        the in-flight run finishes.
        """
        task = replace(task)
        with self._lock:
            existing = next((t for t in self._queue if t.document_id == task.document_id), None)
            if existing is not None:
                self._queue.remove(existing)
                task.priority = min(task.priority, existing.priority)
                task.enqueued_at = min(task.enqueued_at, existing.enqueued_at)
                task.attempts = max(task.attempts, existing.attempts)
                task.sequence = existing.sequence
            else:
                task.sequence = next(self._sequence)
            self._queue.append(task)
            self._queue.sort(key=EmbedTask.sort_key)
            in_flight = task.document_id in self._processing
            queue_length = len(self._queue)

        EMBED_QUEUE_DEPTH.set(queue_length)
        if existing is not None:
            logger.info(f"♻️ Document {task.document_id} was already queued; keeping latest content")
        if in_flight:
            logger.info(f"⏳ Document {task.document_id} is processing; re-run deferred until it finishes")
        logger.info(
            f"📥 Document {task.document_id} queued (priority {task.priority}), queue length: {queue_length}"
        )
        if not self.running:
            logger.warning("⚠️ Embedding queue is not running; task will wait for start()")
        self._notify()

    def enqueue_many(self, tasks: Iterable[EmbedTask]) -> int:
        count = 0
        for task in tasks:
            self.enqueue(task)
            count += 1
        return count

    def get_queue_status(self) -> QueueSnapshot:
        with self._lock:
            queued = tuple(
                QueuedTaskView(
                    document_id=t.document_id,
                    title=t.title,
                    priority=t.priority,
                    enqueued_at=t.enqueued_at,
                )
                for t in self._queue
            )
            processing = frozenset(self._processing)
        return QueueSnapshot(queued_tasks=queued, processing_tasks=processing, running=self.running)

    def is_queued(self, document_id: int) -> bool:
        with self._lock:
            return any(t.document_id == document_id for t in self._queue)

    def is_processing(self, document_id: int) -> bool:
        with self._lock:
            return document_id in self._processing

    # --- Lifecycle ---

    def start(self) -> None:
        """Spawn the workers on the running event loop."""
        if self.running:
            logger.warning("⚠️ Embedding queue already running")
            return
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self.running = True
        self._workers = [
            self._loop.create_task(self._worker_loop(f"embed-worker-{i + 1}"))
            for i in range(self.concurrency)
        ]
        logger.info(f"🚀 Embedding queue started (concurrency={self.concurrency})")

    async def shutdown(self) -> None:
        """Stop dequeuing and wait for in-flight tasks to finish."""
        if not self._workers:
            self.running = False
            return
        logger.info("⏸️ Stopping embedding queue...")
        self.running = False
        self._notify()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        with self._lock:
            left = len(self._queue)
        if left:
            logger.warning(f"⚠️ Embedding queue stopped with {left} tasks left unprocessed")
        else:
            logger.info("✅ Embedding queue stopped")

    async def wait_idle(self, timeout: float = 10.0, interval: float = 0.01) -> None:
        """Wait until nothing is queued or processing."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                if not self._queue and not self._processing:
                    return
            if time.monotonic() >= deadline:
                raise asyncio.TimeoutError("Embedding queue did not drain in time")
            await asyncio.sleep(interval)

    # --- Worker side ---

    def _notify(self) -> None:
        if self._loop is None or self._wakeup is None:
            return
        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        if current is self._loop:
            self._wakeup.set()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._wakeup.set)

    def _claim_next(self) -> Optional[EmbedTask]:
        """Pop the most urgent task whose document is not already processing."""
        with self._lock:
            for position, task in enumerate(self._queue):
                if task.document_id not in self._processing:
                    del self._queue[position]
                    self._processing.add(task.document_id)
                    EMBED_QUEUE_DEPTH.set(len(self._queue))
                    return task
        return None

    def _release(self, task: EmbedTask) -> None:
        with self._lock:
            self._processing.discard(task.document_id)
            # A deferred copy inherits the failure count of the run it waited on
            for queued in self._queue:
                if queued.document_id == task.document_id:
                    queued.attempts = max(queued.attempts, task.attempts)
        self._notify()

    async def _worker_loop(self, worker_id: str) -> None:
        logger.info(f"👷 {worker_id} started.")
        while self.running:
            task = self._claim_next()
            if task is None:
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
                continue

            logger.info(f"🎯 {worker_id} picked document {task.document_id} ({task.title})")
            try:
                await asyncio.to_thread(self._process_task, task)
            finally:
                self._release(task)
        logger.info(f"👋 {worker_id} stopped.")

    def _process_task(self, task: EmbedTask) -> bool:
        """Run one task to completion. Errors end up in the status sink, never above."""
        started = time.monotonic()
        document_id = task.document_id
        logger.info(f"🔄 Processing document {document_id} (attempt {task.attempts + 1})...")
        try:
            self.status_sink.mark_status(document_id, "processing")
            result = self.pipeline.run(
                document_id=document_id,
                title=task.title,
                content=task.content,
                visible=task.visible,
            )
            self.status_sink.mark_status(document_id, "completed")
        except Exception as e:
            task.attempts += 1
            message = str(e) or e.__class__.__name__
            logger.error(f"❌ Document {document_id} failed: {message}")
            EMBED_TASKS_TOTAL.labels(status="failed").inc()
            try:
                self.status_sink.mark_status(document_id, "failed", error=message)
            except Exception as status_error:
                logger.error(f"❌ Could not record failure for document {document_id}: {status_error}")
            return False
        finally:
            EMBED_TASK_DURATION_SECONDS.observe(time.monotonic() - started)

        EMBED_TASKS_TOTAL.labels(status="completed").inc()
        logger.info(
            f"✅ Document {document_id} embedded: {getattr(result, 'inserted_count', 0)} chunks stored"
        )
        return True


@dataclass(frozen=True)
class EmbedStatusView:
    document_id: int
    title: str
    status: str
    error: Optional[str]
    updated_at: Optional[datetime]
    queued: bool
    processing: bool


class EmbedJobManager:
    """API-facing manager for queueing documents and reading their status."""

    def __init__(self, queue: EmbeddingQueue, document_store, vector_store=None, settings: Settings = None):
        self.queue = queue
        self.document_store = document_store
        self.vector_store = vector_store
        self.settings = settings or default_settings

    def enqueue_document(
        self,
        document_id: int,
        priority: Optional[int] = None,
        force_content: Optional[str] = None,
    ) -> EmbedTask:
        """Snapshot a document, mark it pending and queue it.

        ``force_content`` replaces the stored content in the snapshot, for
        callers that enqueue from inside a save before it is committed.
        """
        doc = self.document_store.get_document(document_id)
        if doc is None:
            raise NotFoundError(document_id)

        # An in-flight run owns the status column until it is released
        if not self.queue.is_processing(document_id):
            self.document_store.mark_status(document_id, "pending")
        task = EmbedTask(
            document_id=doc.id,
            title=doc.title,
            content=doc.content if force_content is None else force_content,
            visible=doc.visible,
            priority=self.settings.default_priority if priority is None else priority,
        )
        self.queue.enqueue(task)
        return task

    def reprocess_document(self, document_id: int) -> EmbedTask:
        """Manual re-embed; jumps ahead of routine work."""
        doc = self.document_store.get_document(document_id)
        if doc is None:
            raise NotFoundError(document_id)
        if not doc.content or not doc.content.strip():
            raise ValidationError(f"Document {document_id} has no content to embed.")
        return self.enqueue_document(document_id, priority=self.settings.manual_priority)

    def enqueue_documents(self, document_ids: Optional[List[int]] = None) -> int:
        """Bulk re-index at routine priority. ``None`` means every live document."""
        if document_ids is None:
            document_ids = self.document_store.list_document_ids()
        docs = self.document_store.get_documents(document_ids)
        if not docs:
            return 0

        logger.info(f"📦 Queueing {len(docs)} documents for embedding...")
        self.document_store.mark_many_pending(
            [i for i in docs if not self.queue.is_processing(i)]
        )
        tasks = [
            EmbedTask(
                document_id=doc.id,
                title=doc.title,
                content=doc.content,
                visible=doc.visible,
                priority=self.settings.default_priority,
            )
            for doc in sorted(docs.values(), key=lambda d: d.id)
        ]
        return self.queue.enqueue_many(tasks)

    def get_status(self, document_id: int) -> EmbedStatusView:
        doc = self.document_store.get_document(document_id)
        if doc is None:
            raise NotFoundError(document_id)
        snapshot = self.queue.get_queue_status()
        return EmbedStatusView(
            document_id=doc.id,
            title=doc.title,
            status=doc.rag_status or "pending",
            error=doc.rag_error,
            updated_at=doc.rag_updated_at,
            queued=snapshot.is_queued(document_id),
            processing=snapshot.is_processing(document_id),
        )

    def remove_document(self, document_id: int) -> int:
        """Drop a document's vectors (document deleted or hidden)."""
        if self.vector_store is None:
            raise RuntimeError("EmbedJobManager was built without a vector store.")
        return self.vector_store.delete_document(document_id)
