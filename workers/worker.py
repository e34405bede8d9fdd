# Run this with: rq worker -u redis://localhost:6379 default
# or: python workers/worker.py (which will spin a small worker loop for dev)
import logging

from redis import Redis
from rq import Queue, Worker

from storyline.core.config import settings
from storyline.core.database import init_engine
from storyline.core.logging import configure_logging

configure_logging(settings.ENV)
logger = logging.getLogger("storyline")

listen = ["default"]

conn = Redis.from_url(settings.REDIS_URL)

if __name__ == "__main__":
    init_engine()
    worker = Worker([Queue(name, connection=conn) for name in listen], connection=conn)
    logger.info("Starting RQ worker (interactive).")
    worker.work()
