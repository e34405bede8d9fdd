# storyline/queue_client.py
"""
RQ queue client.
Enqueues background jobs (the daily expiration check) onto Redis.
Schedule `enqueue_expiration_check` once a day from cron or rq-scheduler.
"""
from typing import Optional

from redis import Redis
from rq import Queue

from storyline.core.config import settings
from storyline.workers.subscription_expiry import expiration_check_job

QUEUE_NAME = "default"


def get_queue(redis_url: Optional[str] = None) -> Queue:
    redis_conn = Redis.from_url(redis_url or settings.REDIS_URL)
    return Queue(QUEUE_NAME, connection=redis_conn)


def enqueue_expiration_check(limit: int = 500, queue: Optional[Queue] = None) -> str:
    """
    Enqueue the daily subscription expiration check.

    Returns:
        Job ID
    """
    queue = queue or get_queue()
    job = queue.enqueue(
        expiration_check_job,
        limit,
        job_timeout="30m",
        result_ttl=86400,  # Keep the report for a day
    )
    return job.id


if __name__ == "__main__":
    print(f"Enqueued job: {enqueue_expiration_check()}")
