"""RQ queues for notification, webhook, messaging and mailbox sync jobs."""

import redis as redis_lib
import structlog
from rq import Queue, Retry

from helpdesk.config import settings

logger = structlog.get_logger()

NOTIFICATIONS = "notifications"
WEBHOOKS = "webhooks"
MESSAGING = "messaging"
EMAIL = "email"

_redis = None


def get_redis() -> redis_lib.Redis:
    global _redis
    if _redis is None:
        _redis = redis_lib.from_url(settings.redis_url)
    return _redis


def get_queue(name: str) -> Queue:
    return Queue(name, connection=get_redis())


class JobQueue:
    """Enqueues job functions by dotted path.

    ``max_attempts`` counts the first run, so 3 attempts means two RQ retries.
    """

    def __init__(self, connection: redis_lib.Redis | None = None):
        self._connection = connection
        self._queues: dict[str, Queue] = {}

    def _queue(self, name: str) -> Queue:
        if name not in self._queues:
            self._queues[name] = Queue(name, connection=self._connection or get_redis())
        return self._queues[name]

    def enqueue(
        self,
        queue_name: str,
        func_path: str,
        *args,
        max_attempts: int = 1,
        intervals: int | list[int] = 0,
        job_timeout: int | None = None,
    ):
        retry = Retry(max=max_attempts - 1, interval=intervals) if max_attempts > 1 else None
        job = self._queue(queue_name).enqueue(
            func_path, *args,
            job_timeout=job_timeout or settings.notification_job_timeout,
            retry=retry,
        )
        logger.debug("job_enqueued", queue=queue_name, func=func_path, job_id=job.id)
        return job

    def notification(self, func_name: str, *args):
        return self.enqueue(
            NOTIFICATIONS, f"helpdesk.workers.notifications.{func_name}", *args,
            max_attempts=settings.notification_max_attempts,
            intervals=settings.notification_retry_interval,
            job_timeout=settings.notification_job_timeout,
        )

    def webhook(self, webhook_id: str, event: str, payload: dict):
        return self.enqueue(
            WEBHOOKS, "helpdesk.workers.webhooks.deliver_webhook", webhook_id, event, payload,
            max_attempts=settings.webhook_max_attempts,
            intervals=list(settings.webhook_retry_intervals),
            job_timeout=settings.webhook_job_timeout,
        )

    def messaging(self, channel_id: str, payload: dict):
        return self.enqueue(
            MESSAGING, "helpdesk.workers.messaging.process_messaging_webhook", channel_id, payload,
            max_attempts=settings.messaging_max_attempts,
            intervals=list(settings.messaging_retry_intervals),
        )

    def email_sync(self, channel_id: str):
        return self.enqueue(
            EMAIL, "helpdesk.workers.email_sync.sync_email_channel", channel_id,
            max_attempts=settings.email_sync_max_attempts,
            intervals=settings.email_sync_retry_interval,
        )
