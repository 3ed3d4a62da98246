"""Queue worker process: ``python -m blissbay.worker``."""

import logging
import signal
import threading
import time
from typing import Callable, Optional

from blissbay.config import get_settings
from blissbay.database import Database
from blissbay.jobs import JobRunner, RedisJobQueue
from blissbay.logging_config import setup_logging
from blissbay.services.cart import release_expired_reservations
from blissbay.tasks import build_handlers
from blissbay.utils.email import MailgunClient

logger = logging.getLogger(__name__)


SWEEP_INTERVAL_SECONDS = 60


class Worker:
    def __init__(
        self,
        runner: JobRunner,
        poll_timeout: float = 1.0,
        sweep: Optional[Callable[[], int]] = None,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
    ):
        self.runner = runner
        self.poll_timeout = poll_timeout
        self.sweep = sweep
        self.sweep_interval = sweep_interval
        self.running = False
        self._last_sweep = 0.0
        self._thread: Optional[threading.Thread] = None

    def stop(self, signum=None, frame=None) -> None:
        logger.info("Worker stopping (signal=%s)", signum)
        self.running = False

    def maybe_sweep(self, now: float) -> None:
        if self.sweep is None or now - self._last_sweep < self.sweep_interval:
            return
        self._last_sweep = now
        try:
            self.sweep()
        except Exception:
            logger.exception("Reservation sweep failed")

    def run(self) -> None:
        if self._thread is None:
            self.running = True
        logger.info("Worker started")
        while self.running:
            self.maybe_sweep(time.monotonic())
            self.runner.run_once(timeout=self.poll_timeout)
        logger.info("Worker stopped")

    def start_background(self) -> None:
        """Run the loop on a daemon thread inside the API process."""
        self.running = True
        self._thread = threading.Thread(target=self.run, name="blissbay-jobs", daemon=True)
        self._thread.start()

    def stop_background(self, timeout: float = 5.0) -> None:
        self.stop()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


def _reservation_sweep(database: Database) -> Callable[[], int]:
    def sweep() -> int:
        db = database.session()
        try:
            return release_expired_reservations(db)
        finally:
            db.close()
    return sweep


def main() -> None:
    settings = get_settings()
    setup_logging("blissbay.worker", settings.LOG_LEVEL, settings.LOG_JSON)

    database = Database(settings.sqlalchemy_url)
    queue = RedisJobQueue(settings.REDIS_HOST, settings.REDIS_PORT, settings.REDIS_DB)
    mailer = MailgunClient(settings.MAILGUN_API_KEY, settings.MAILGUN_DOMAIN, settings.EMAIL_FROM)

    runner = JobRunner(
        queue,
        build_handlers(database, mailer),
        max_attempts=settings.JOB_MAX_ATTEMPTS,
        backoff_seconds=settings.JOB_BACKOFF_SECONDS,
    )
    queue.recover()
    worker = Worker(runner, sweep=_reservation_sweep(database))

    signal.signal(signal.SIGTERM, worker.stop)
    signal.signal(signal.SIGINT, worker.stop)

    try:
        worker.run()
    finally:
        queue.close()
        database.dispose()


if __name__ == "__main__":
    main()
