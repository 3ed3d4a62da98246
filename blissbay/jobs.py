"""
Background job queue.

Jobs are plain JSON documents ``{id, name, payload, attempts, max_attempts}``.
``RedisJobQueue`` keeps ready jobs in a list and retries in a sorted set
scored by their due time; a job being worked on sits in a processing list
until the runner acknowledges, reschedules or fails it. ``InMemoryJobQueue``
is the in-process stand-in used when Redis is disabled: it only records
jobs, and a background ``Worker`` thread drains it outside the request.
"""

import json
import logging
import threading
import time
import uuid
from collections import deque
from typing import Callable, Dict, List, Optional

import redis

logger = logging.getLogger(__name__)

READY_KEY = "blissbay:jobs:ready"
DELAYED_KEY = "blissbay:jobs:delayed"
PROCESSING_KEY = "blissbay:jobs:processing"
FAILED_KEY = "blissbay:jobs:failed"
FAILED_KEEP = 1000

# notification fan-out gives up sooner than payment/email work
NOTIFICATION_MAX_ATTEMPTS = 3


def _new_job(name: str, payload: dict, max_attempts: Optional[int]) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "name": name,
        "payload": payload,
        "attempts": 0,
        "max_attempts": max_attempts,
        "enqueued_at": time.time(),
    }


# =====================================================
# REDIS QUEUE
# =====================================================

class RedisJobQueue:
    def __init__(self, host: str = "localhost", port: int = 6379, db: int = 0, client: Optional[redis.Redis] = None):
        self.client = client or redis.Redis(host=host, port=port, db=db, decode_responses=True)
        # job id -> the exact entry sitting in the processing list
        self._claimed: Dict[str, str] = {}

    def enqueue(self, name: str, payload: dict, max_attempts: Optional[int] = None) -> dict:
        job = _new_job(name, payload, max_attempts)
        self.client.rpush(READY_KEY, json.dumps(job))
        logger.info("Job enqueued", extra={"job": name})
        return job

    def _promote_due(self) -> None:
        now = time.time()
        for raw in self.client.zrangebyscore(DELAYED_KEY, 0, now):
            # only the worker that removes the entry re-queues it
            if self.client.zrem(DELAYED_KEY, raw):
                self.client.rpush(READY_KEY, raw)

    def recover(self) -> int:
        """Put jobs left in the processing list by a dead worker back on the ready list."""
        moved = 0
        while self.client.lmove(PROCESSING_KEY, READY_KEY, "RIGHT", "LEFT") is not None:
            moved += 1
        if moved:
            logger.warning("Re-queued %s interrupted job(s)", moved)
        return moved

    def dequeue(self, timeout: float = 1.0) -> Optional[dict]:
        self._promote_due()
        raw = self.client.blmove(READY_KEY, PROCESSING_KEY, max(int(timeout), 1), "LEFT", "RIGHT")
        if raw is None:
            return None
        job = json.loads(raw)
        self._claimed[job["id"]] = raw
        return job

    def _release(self, pipe, job: dict) -> None:
        raw = self._claimed.pop(job["id"], None)
        if raw is not None:
            pipe.lrem(PROCESSING_KEY, 1, raw)

    def ack(self, job: dict) -> None:
        pipe = self.client.pipeline()
        self._release(pipe, job)
        pipe.execute()

    def retry_later(self, job: dict, delay: float) -> None:
        pipe = self.client.pipeline()
        pipe.zadd(DELAYED_KEY, {json.dumps(job): time.time() + delay})
        self._release(pipe, job)
        pipe.execute()

    def fail(self, job: dict, error: str) -> None:
        record = dict(job, error=error, failed_at=time.time())
        pipe = self.client.pipeline()
        pipe.lpush(FAILED_KEY, json.dumps(record))
        pipe.ltrim(FAILED_KEY, 0, FAILED_KEEP - 1)
        self._release(pipe, job)
        pipe.execute()

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        self.client.close()


# =====================================================
# IN-PROCESS QUEUE
# =====================================================

class InMemoryJobQueue:
    """Keeps jobs in process memory. Enqueueing never runs anything."""

    def __init__(self):
        self.jobs: List[dict] = []
        self.failed: List[dict] = []
        self._ready = deque()
        self._delayed: List[tuple] = []
        self._cond = threading.Condition()
        self._closed = False

    def enqueue(self, name: str, payload: dict, max_attempts: Optional[int] = None) -> dict:
        job = _new_job(name, payload, max_attempts)
        with self._cond:
            self.jobs.append(job)
            self._ready.append(job)
            self._cond.notify()
        return job

    def _promote_due(self) -> None:
        now = time.time()
        due = [entry for entry in self._delayed if entry[0] <= now]
        for entry in due:
            self._delayed.remove(entry)
            self._ready.append(entry[1])

    def dequeue(self, timeout: float = 0) -> Optional[dict]:
        deadline = time.monotonic() + timeout
        with self._cond:
            while True:
                self._promote_due()
                if self._ready:
                    return self._ready.popleft()
                remaining = deadline - time.monotonic()
                if remaining <= 0 or self._closed:
                    return None
                self._cond.wait(remaining)

    def ack(self, job: dict) -> None:
        pass

    def retry_later(self, job: dict, delay: float) -> None:
        with self._cond:
            self._delayed.append((time.time() + delay, job))

    def fail(self, job: dict, error: str) -> None:
        with self._cond:
            self.failed.append(dict(job, error=error))

    def names(self) -> List[str]:
        return [job["name"] for job in self.jobs]

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._ready.clear()
            self._delayed.clear()
            self._cond.notify_all()


# =====================================================
# RUNNER
# =====================================================

class JobRunner:
    def __init__(
        self,
        queue,
        handlers: Dict[str, Callable[[dict], None]],
        max_attempts: int = 5,
        backoff_seconds: float = 5.0,
    ):
        self.queue = queue
        self.handlers = handlers
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    def backoff_for(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** (attempt - 1))

    def run_job(self, job: dict) -> bool:
        name = job["name"]
        handler = self.handlers.get(name)
        limit = job.get("max_attempts") or self.max_attempts

        job["attempts"] = job.get("attempts", 0) + 1
        extra = {"job": name, "attempt": job["attempts"]}

        if handler is None:
            logger.error("No handler registered for job %s", name, extra=extra)
            self.queue.fail(job, "unknown job")
            return False

        try:
            handler(job["payload"])
        except Exception as exc:
            if job["attempts"] >= limit:
                logger.error(
                    "Job %s permanently failed after %s attempts: %s",
                    name, job["attempts"], exc,
                    extra=extra,
                    exc_info=True,
                )
                self.queue.fail(job, str(exc))
            else:
                delay = self.backoff_for(job["attempts"])
                logger.warning(
                    "Job %s failed (attempt %s/%s), retrying in %.1fs: %s",
                    name, job["attempts"], limit, delay, exc,
                    extra=extra,
                )
                self.queue.retry_later(job, delay)
            return False

        self.queue.ack(job)
        logger.info("Job %s completed", name, extra=extra)
        return True

    def run_once(self, timeout: float = 0) -> bool:
        job = self.queue.dequeue(timeout)
        if job is None:
            return False
        self.run_job(job)
        return True


def dispatch(queue, name: str, payload: dict, max_attempts: Optional[int] = None) -> None:
    """Enqueue without letting queue trouble reach the caller."""
    try:
        queue.enqueue(name, payload, max_attempts=max_attempts)
    except Exception:
        logger.exception("Failed to enqueue job %s", name)
