"""Durable credit job queues (Redis/RQ)."""

from __future__ import annotations

from redis import Redis
from rq import Queue, Retry
from rq.job import Job

from config import settings


CREDIT_QUEUE_NAME = "credit_jobs"
NOTIFICATION_QUEUE_NAME = "notifications"


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_credit_queue() -> Queue:
    """Return the queue for staging consumption and expiry sweep jobs."""
    return Queue(
        name=CREDIT_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=300,
    )


def get_notification_queue() -> Queue:
    """Return the queue for low-balance alert delivery."""
    return Queue(
        name=NOTIFICATION_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=60,
    )


def enqueue_staging_job(job_id: str, user_id: str, photo_count: int = 1) -> Job:
    """Enqueue credit consumption for a staging job; job_id doubles as the idempotency key."""
    queue = get_credit_queue()
    return queue.enqueue(
        "services.jobs.process_staging_job",
        job_id,
        user_id,
        photo_count,
        job_id=f"staging:{job_id}",
        retry=Retry(max=3, interval=[10, 30, 120]),
        job_timeout=300,
        result_ttl=86400,
        failure_ttl=86400,
    )


def enqueue_low_balance_alert(user_id: str, threshold: int, balance: int) -> Job:
    """Enqueue delivery of a low-balance alert. Delivery is at-least-once."""
    queue = get_notification_queue()
    return queue.enqueue(
        "services.notifications.deliver_low_balance_alert",
        user_id,
        threshold,
        balance,
        job_id=f"alert:{user_id}:{threshold}",
        retry=Retry(max=5, interval=[15, 60, 180, 600, 1800]),
        job_timeout=60,
        result_ttl=86400,
        failure_ttl=7 * 86400,
    )


def enqueue_expiry_sweep() -> Job:
    """Enqueue a one-off expiry sweep (the API process also sweeps on a timer)."""
    queue = get_credit_queue()
    return queue.enqueue(
        "services.jobs.run_expiry_sweep",
        retry=Retry(max=2, interval=[60, 300]),
        job_timeout=900,
        result_ttl=86400,
        failure_ttl=86400,
    )
