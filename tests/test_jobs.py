import threading
from collections import defaultdict

import pytest

from blissbay.jobs import (
    DELAYED_KEY,
    FAILED_KEY,
    PROCESSING_KEY,
    READY_KEY,
    InMemoryJobQueue,
    JobRunner,
    RedisJobQueue,
    dispatch,
)
from blissbay.models import Notification
from blissbay.tasks import (
    NOTIFY_USER,
    ORDER_SHIPPED,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    SEND_EMAIL,
    build_handlers,
)
from blissbay.worker import Worker
from tests.factories import make_order


class FakeMailer:
    def __init__(self, enabled=True, accept=True):
        self.enabled = enabled
        self.accept = accept
        self.sent = []

    def send_email(self, to, subject, html, text=None):
        self.sent.append({"to": to, "subject": subject})
        return self.accept


class FakeRedis:
    """The list and sorted-set commands the queue uses, kept in dicts."""

    def __init__(self):
        self.lists = defaultdict(list)
        self.zsets = defaultdict(dict)

    def rpush(self, key, *values):
        self.lists[key].extend(values)
        return len(self.lists[key])

    def lpush(self, key, *values):
        for value in values:
            self.lists[key].insert(0, value)
        return len(self.lists[key])

    def ltrim(self, key, start, end):
        self.lists[key] = self.lists[key][start:end + 1]

    def lrem(self, key, count, value):
        if value in self.lists[key]:
            self.lists[key].remove(value)
            return 1
        return 0

    def lmove(self, source, destination, src="LEFT", dest="RIGHT"):
        if not self.lists[source]:
            return None
        value = self.lists[source].pop(0 if src == "LEFT" else -1)
        if dest == "LEFT":
            self.lists[destination].insert(0, value)
        else:
            self.lists[destination].append(value)
        return value

    def blmove(self, source, destination, timeout, src="LEFT", dest="RIGHT"):
        return self.lmove(source, destination, src, dest)

    def zadd(self, key, mapping):
        self.zsets[key].update(mapping)

    def zrangebyscore(self, key, low, high):
        ordered = sorted(self.zsets[key].items(), key=lambda item: item[1])
        return [member for member, score in ordered if low <= score <= high]

    def zrem(self, key, member):
        return 1 if self.zsets[key].pop(member, None) is not None else 0

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.calls = []

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.calls.append((name, args, kwargs))
        return record

    def execute(self):
        for name, args, kwargs in self.calls:
            getattr(self.client, name)(*args, **kwargs)
        self.calls = []


class Flaky:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    def __call__(self, payload):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"boom {self.calls}")


class TestJobRunner:
    def test_backoff_doubles(self):
        runner = JobRunner(InMemoryJobQueue(), {}, backoff_seconds=2)
        assert [runner.backoff_for(n) for n in (1, 2, 3, 4)] == [2, 4, 8, 16]

    def test_retries_until_success(self):
        queue = InMemoryJobQueue()
        handler = Flaky(failures=2)
        runner = JobRunner(queue, {"work": handler}, max_attempts=5, backoff_seconds=0)

        queue.enqueue("work", {})
        while runner.run_once():
            pass

        assert handler.calls == 3
        assert queue.failed == []

    def test_gives_up_after_max_attempts(self):
        queue = InMemoryJobQueue()
        handler = Flaky(failures=10)
        runner = JobRunner(queue, {"work": handler}, max_attempts=3, backoff_seconds=0)

        queue.enqueue("work", {"n": 1})
        while runner.run_once():
            pass

        assert handler.calls == 3
        assert len(queue.failed) == 1
        assert queue.failed[0]["attempts"] == 3
        assert queue.failed[0]["error"] == "boom 3"

    def test_job_limit_overrides_runner_limit(self):
        queue = InMemoryJobQueue()
        handler = Flaky(failures=10)
        runner = JobRunner(queue, {"work": handler}, max_attempts=5, backoff_seconds=0)

        queue.enqueue("work", {}, max_attempts=1)
        while runner.run_once():
            pass
        assert handler.calls == 1

    def test_failed_job_waits_for_backoff(self):
        queue = InMemoryJobQueue()
        runner = JobRunner(queue, {"work": Flaky(failures=1)}, backoff_seconds=60)

        queue.enqueue("work", {})
        assert runner.run_once() is True
        # the retry is not due yet
        assert runner.run_once() is False

    def test_unknown_job_fails_immediately(self):
        queue = InMemoryJobQueue()
        runner = JobRunner(queue, {})
        queue.enqueue("mystery", {})
        runner.run_once()
        assert queue.failed[0]["error"] == "unknown job"

    def test_dispatch_swallows_queue_errors(self):
        class BrokenQueue:
            def enqueue(self, *args, **kwargs):
                raise ConnectionError("redis down")

        dispatch(BrokenQueue(), "work", {})

    def test_enqueue_never_runs_the_handler(self):
        queue = InMemoryJobQueue()
        seen = []
        JobRunner(queue, {"work": seen.append})
        queue.enqueue("work", {"x": 1})
        assert seen == []
        assert queue.names() == ["work"]


class TestRedisQueue:
    def test_job_is_held_until_it_completes(self):
        client = FakeRedis()
        queue = RedisJobQueue(client=client)
        runner = JobRunner(queue, {"work": lambda payload: None})

        queue.enqueue("work", {})
        job = queue.dequeue()
        assert client.lists[READY_KEY] == []
        assert len(client.lists[PROCESSING_KEY]) == 1

        runner.run_job(job)
        assert client.lists[PROCESSING_KEY] == []

    def test_interrupted_job_is_recovered(self):
        client = FakeRedis()
        queue = RedisJobQueue(client=client)
        enqueued = queue.enqueue("work", {"n": 1})
        queue.dequeue()

        # a new worker on the same Redis after the first one died mid-job
        restarted = RedisJobQueue(client=client)
        assert restarted.recover() == 1
        assert client.lists[PROCESSING_KEY] == []
        assert restarted.dequeue()["id"] == enqueued["id"]

    def test_retry_leaves_processing_list(self):
        client = FakeRedis()
        queue = RedisJobQueue(client=client)
        runner = JobRunner(queue, {"work": Flaky(failures=1)}, backoff_seconds=60)

        queue.enqueue("work", {})
        runner.run_once()
        assert client.lists[PROCESSING_KEY] == []
        assert len(client.zsets[DELAYED_KEY]) == 1

    def test_failure_leaves_processing_list(self):
        client = FakeRedis()
        queue = RedisJobQueue(client=client)
        runner = JobRunner(queue, {})

        queue.enqueue("mystery", {})
        runner.run_once()
        assert client.lists[PROCESSING_KEY] == []
        assert len(client.lists[FAILED_KEY]) == 1


class TestHandlers:
    def test_notify_user_creates_notification(self, database, db, user):
        handlers = build_handlers(database, FakeMailer())
        handlers[NOTIFY_USER]({"user_id": user.id, "type": "promo", "title": "Hello", "message": "Hi"})

        note = db.query(Notification).one()
        assert (note.type, note.title, note.is_read) == ("promo", "Hello", False)

    def test_payment_failed_notification(self, database, db, user):
        handlers = build_handlers(database, FakeMailer())
        handlers[PAYMENT_FAILED]({"user_id": user.id, "order_id": "o-1", "error": "declined"})

        note = db.query(Notification).one()
        assert note.message == "declined"
        assert note.data == {"order_id": "o-1"}

    def test_rejected_email_is_retryable(self, database):
        handlers = build_handlers(database, FakeMailer(accept=False))
        with pytest.raises(RuntimeError):
            handlers[SEND_EMAIL]({"to": "a@example.com", "subject": "s", "html": "<p>x</p>"})

    def test_disabled_mailer_skips_delivery(self, database):
        mailer = FakeMailer(enabled=False)
        handlers = build_handlers(database, mailer)
        handlers[SEND_EMAIL]({"to": "a@example.com", "subject": "s", "html": "<p>x</p>"})
        assert mailer.sent == []

    def test_retried_shipment_notifies_once(self, database, db, user):
        order = make_order(db, user)
        queue = InMemoryJobQueue()
        mailer = FakeMailer(accept=False)
        runner = JobRunner(queue, build_handlers(database, mailer), max_attempts=3, backoff_seconds=0)

        queue.enqueue(ORDER_SHIPPED, {"order_id": order.id})
        while runner.run_once():
            pass

        assert len(mailer.sent) == 3
        assert queue.failed[0]["attempts"] == 3
        assert db.query(Notification).filter(Notification.type == "order_shipped").count() == 1

    def test_retried_payment_confirmation_notifies_once(self, database, db, user):
        order = make_order(db, user)
        queue = InMemoryJobQueue()
        runner = JobRunner(queue, build_handlers(database, FakeMailer(accept=False)), max_attempts=2, backoff_seconds=0)

        queue.enqueue(PAYMENT_COMPLETED, {"order_id": order.id})
        while runner.run_once():
            pass

        assert db.query(Notification).filter(Notification.type == "payment_completed").count() == 1

    def test_order_shipped_for_missing_order(self, database):
        mailer = FakeMailer()
        build_handlers(database, mailer)[ORDER_SHIPPED]({"order_id": "gone"})
        assert mailer.sent == []


class TestWorker:
    def test_sweep_runs_on_interval(self):
        calls = []
        worker = Worker(JobRunner(InMemoryJobQueue(), {}), sweep=lambda: calls.append(1) or 0, sweep_interval=60)

        worker.maybe_sweep(100.0)
        worker.maybe_sweep(130.0)
        worker.maybe_sweep(161.0)
        assert len(calls) == 2

    def test_sweep_errors_do_not_stop_worker(self):
        def broken():
            raise RuntimeError("db gone")

        worker = Worker(JobRunner(InMemoryJobQueue(), {}), sweep=broken)
        worker.maybe_sweep(1000.0)

    def test_background_thread_drains_queue(self):
        queue = InMemoryJobQueue()
        done = threading.Event()
        worker = Worker(JobRunner(queue, {"work": lambda payload: done.set()}), poll_timeout=0.05)

        worker.start_background()
        try:
            queue.enqueue("work", {})
            assert done.wait(2)
        finally:
            worker.stop_background()
