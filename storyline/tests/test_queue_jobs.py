"""RQ wiring for the daily expiration check."""

from unittest.mock import Mock

from storyline.queue_client import enqueue_expiration_check
from storyline.workers import subscription_expiry


def test_enqueue_expiration_check():
    queue = Mock()
    queue.enqueue.return_value = Mock(id="job-1")

    assert enqueue_expiration_check(limit=50, queue=queue) == "job-1"

    args, kwargs = queue.enqueue.call_args
    assert args[0] is subscription_expiry.expiration_check_job
    assert args[1] == 50
    assert kwargs["job_timeout"] == "30m"


def test_job_skips_without_billing(monkeypatch):
    monkeypatch.setattr(subscription_expiry, "get_provider", lambda: None)

    assert subscription_expiry.expiration_check_job()["skipped"] is True
