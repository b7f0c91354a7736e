"""Retry policy and pending upload state machine tests."""

from datetime import datetime, timedelta, timezone

import pytest

from flockcount.client.models import InvalidStateTransition, PendingUpload, UploadStatus
from flockcount.client.retry import RetryPolicy

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
IMAGE = "data:image/png;base64,AA=="


class TestRetryPolicy:
    def test_exponential_delays_are_capped(self):
        policy = RetryPolicy(max_attempts=None, base_delay=2, multiplier=2, max_delay=30)

        delays = [policy.delay_for(n).total_seconds() for n in range(0, 7)]

        assert delays == [0, 2, 4, 8, 16, 30, 30]
        assert policy.delay_for(10_000) == timedelta(seconds=30)

    def test_exhaustion(self):
        policy = RetryPolicy(max_attempts=3)
        assert not policy.is_exhausted(2)
        assert policy.is_exhausted(3)
        assert not RetryPolicy(max_attempts=None).is_exhausted(10_000)

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_attempts": 0}, {"base_delay": -1}, {"multiplier": 0.5}],
    )
    def test_rejects_invalid_configuration(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestPendingUploadTransitions:
    def test_failure_requeues_with_backoff(self):
        policy = RetryPolicy(max_attempts=3, base_delay=2)
        upload = PendingUpload(image=IMAGE).start()

        failed = upload.fail("timeout", policy, NOW)

        assert failed.status == UploadStatus.QUEUED
        assert failed.retry_count == 1
        assert failed.next_attempt_at == NOW + timedelta(seconds=2)
        assert failed.last_error == "timeout"
        assert not failed.is_due(NOW)
        assert failed.is_due(NOW + timedelta(seconds=2))

    def test_exhausted_retries_become_dead(self):
        policy = RetryPolicy(max_attempts=2)
        upload = PendingUpload(image=IMAGE)

        upload = upload.start().fail("503", policy, NOW)
        assert upload.status == UploadStatus.QUEUED
        upload = upload.start().fail("503", policy, NOW)

        assert upload.status == UploadStatus.DEAD
        assert upload.retry_count == 2

    def test_reject_is_immediately_dead(self):
        rejected = PendingUpload(image=IMAGE).start().reject("400 bad image")
        assert rejected.status == UploadStatus.DEAD
        assert rejected.retry_count == 1

    def test_release_does_not_charge_an_attempt(self):
        released = PendingUpload(image=IMAGE, retry_count=1).start().release()
        assert released.status == UploadStatus.QUEUED
        assert released.retry_count == 1

    def test_revive_only_from_dead(self):
        dead = PendingUpload(image=IMAGE).start().reject("bad")
        revived = dead.revive()
        assert revived.status == UploadStatus.QUEUED
        assert revived.next_attempt_at is None
        assert revived.retry_count == 1

        with pytest.raises(InvalidStateTransition):
            revived.revive()

    @pytest.mark.parametrize("method", ["release", "reject"])
    def test_queued_upload_cannot_finish(self, method):
        upload = PendingUpload(image=IMAGE)
        with pytest.raises(InvalidStateTransition):
            getattr(upload, method)(*(["err"] if method == "reject" else []))

    def test_in_flight_cannot_start_again(self):
        with pytest.raises(InvalidStateTransition):
            PendingUpload(image=IMAGE).start().start()
