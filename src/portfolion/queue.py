"""
=============================================================================
JOB QUEUE
=============================================================================

Background work handed off by request handlers ("send the welcome mail",
"index the new task") so the response does not wait for it.

    queue.enqueue({"event": "task.created", "task_id": 7})

Two implementations share one interface:

    SyncQueue     runs the handler immediately, inside enqueue()
                  (development, tests, small deployments)
    MemoryQueue   in-process FIFO drained by a Worker on its own thread

=============================================================================
JOB LIFECYCLE (MemoryQueue)
=============================================================================

    enqueue ──► ready ──dequeue──► reserved ──ack──► gone
                  ▲                    │
                  └────release(delay)──┘   (handler failed, attempts left)

A job becomes visible again only after its `available_at`, so a failed
job is retried after a back-off instead of immediately.

=============================================================================
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional
import logging
import threading
import time
import uuid

logger = logging.getLogger(__name__)

JobHandler = Callable[["Job"], None]


@dataclass
class Job:
    payload: Dict[str, Any]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempts: int = 0
    available_at: float = 0.0
    reserved: bool = False

    @property
    def name(self) -> str:
        return str(self.payload.get("event") or self.payload.get("job") or "job")


class MemoryQueue:
    """Thread-safe FIFO with delayed availability."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._jobs: Deque[Job] = deque()
        self._reserved: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def enqueue(self, payload: Dict[str, Any], delay: float = 0) -> Job:
        job = Job(payload=dict(payload), available_at=self._clock() + max(0, delay))
        with self._lock:
            self._jobs.append(job)
        logger.debug("Queued %s (%s)", job.name, job.id)
        return job

    def dequeue(self) -> Optional[Job]:
        """Reserve the oldest available job, or return None."""
        now = self._clock()
        with self._lock:
            for job in self._jobs:
                if job.available_at <= now:
                    self._jobs.remove(job)
                    job.reserved = True
                    job.attempts += 1
                    self._reserved[job.id] = job
                    return job
        return None

    def ack(self, job: Job) -> None:
        with self._lock:
            self._reserved.pop(job.id, None)
        job.reserved = False

    def release(self, job: Job, delay: float = 0) -> None:
        """Put a reserved job back, visible again after `delay` seconds."""
        with self._lock:
            self._reserved.pop(job.id, None)
            job.reserved = False
            job.available_at = self._clock() + max(0, delay)
            self._jobs.append(job)

    def size(self) -> int:
        with self._lock:
            return len(self._jobs)

    def reserved_count(self) -> int:
        with self._lock:
            return len(self._reserved)


class SyncQueue:
    """
    Runs jobs as soon as they are queued.

    Handler failures are logged and do not reach the caller: a failed
    side job must not fail the request that queued it.
    """

    def __init__(self, handler: Optional[JobHandler] = None):
        self.handler = handler
        self.processed: List[Job] = []

    def enqueue(self, payload: Dict[str, Any], delay: float = 0) -> Job:
        job = Job(payload=dict(payload), attempts=1)
        if self.handler is not None:
            try:
                self.handler(job)
            except Exception:
                logger.exception("Job %s (%s) failed", job.name, job.id)
                return job
        self.processed.append(job)
        return job

    def size(self) -> int:
        return 0


class Worker:
    """
    Drains a MemoryQueue.

    Args:
        queue: The queue to drain
        handler: Called with each job; raising marks the attempt failed
        max_attempts: Attempts before a job is dropped
        retry_after: Seconds before a failed job is visible again
    """

    def __init__(
        self,
        queue: MemoryQueue,
        handler: JobHandler,
        max_attempts: int = 3,
        retry_after: float = 60,
    ):
        self.queue = queue
        self.handler = handler
        self.max_attempts = max_attempts
        self.retry_after = retry_after
        self.failed: List[Job] = []
        self._stop = threading.Event()

    def run_once(self) -> int:
        """Process every job available right now. Returns how many ran."""
        processed = 0
        while True:
            job = self.queue.dequeue()
            if job is None:
                return processed
            processed += 1
            self._process(job)

    def _process(self, job: Job) -> None:
        try:
            self.handler(job)
        except Exception:
            if job.attempts >= self.max_attempts:
                logger.exception("Job %s (%s) failed permanently after %d attempts", job.name, job.id, job.attempts)
                self.queue.ack(job)
                self.failed.append(job)
            else:
                logger.warning("Job %s (%s) failed, retrying in %ss", job.name, job.id, self.retry_after)
                self.queue.release(job, self.retry_after)
            return
        self.queue.ack(job)

    def run(self, poll_interval: float = 1.0) -> None:
        """Loop until stop() is called."""
        logger.info("Queue worker started")
        while not self._stop.is_set():
            if not self.run_once():
                self._stop.wait(poll_interval)
        logger.info("Queue worker stopped")

    def stop(self) -> None:
        self._stop.set()
