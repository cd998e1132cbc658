"""Tests for the auto-destroy scheduler."""

from datetime import timedelta

import pytest

from vpn_deploy.orchestrator.scheduler import AutoDestroyScheduler, SchedulerState
from vpn_deploy.state.models import DeploymentRecord, DeploymentStatus, ProviderKind, utcnow
from vpn_deploy.utils.errors import OperationInProgressError, PartialFailure


class RecordingDestroy:
    def __init__(self, failures=None):
        self.calls = 0
        self.failures = list(failures or [])

    def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)


@pytest.fixture
def deadline():
    return utcnow() + timedelta(hours=2)


@pytest.fixture
def deployed(store, deadline):
    record = DeploymentRecord(
        status=DeploymentStatus.DEPLOYED,
        provider=ProviderKind.AWS,
        region="us-east-1",
        auto_destroy_at=deadline,
    )
    store.save(record)
    return record


class TestAutoDestroyScheduler:
    """Test deadline evaluation."""

    def test_disabled_without_deployment(self, store):
        scheduler = AutoDestroyScheduler(store, RecordingDestroy())

        assert scheduler.state == SchedulerState.DISABLED
        assert scheduler.evaluate() is False

    def test_disabled_without_deadline(self, store):
        store.save(DeploymentRecord(status=DeploymentStatus.DEPLOYED, provider=ProviderKind.BYO))

        assert AutoDestroyScheduler(store, RecordingDestroy()).state == SchedulerState.DISABLED

    def test_armed_but_not_due(self, store, deployed, deadline):
        destroy = RecordingDestroy()
        scheduler = AutoDestroyScheduler(store, destroy)

        assert scheduler.state == SchedulerState.ARMED
        assert scheduler.evaluate(now=deadline - timedelta(seconds=1)) is False
        assert destroy.calls == 0

    def test_fires_once_after_deadline(self, store, deployed, deadline):
        destroy = RecordingDestroy()
        scheduler = AutoDestroyScheduler(store, destroy)

        assert scheduler.evaluate(now=deadline) is True
        assert scheduler.evaluate(now=deadline + timedelta(minutes=5)) is False
        assert destroy.calls == 1

    def test_deferred_while_operation_runs(self, store, deployed, deadline):
        destroy = RecordingDestroy(failures=[OperationInProgressError()])
        scheduler = AutoDestroyScheduler(store, destroy)

        assert scheduler.evaluate(now=deadline) is False
        assert scheduler.evaluate(now=deadline + timedelta(seconds=30)) is True
        assert destroy.calls == 2

    def test_failed_destroy_is_not_retried(self, store, deployed, deadline):
        destroy = RecordingDestroy(failures=[PartialFailure("vpc still in use", remaining=["vpc"])])
        scheduler = AutoDestroyScheduler(store, destroy)

        assert scheduler.evaluate(now=deadline) is True
        assert scheduler.evaluate(now=deadline + timedelta(minutes=1)) is False
        assert destroy.calls == 1

    def test_restarted_process_picks_up_deadline(self, store, deployed, deadline):
        AutoDestroyScheduler(store, RecordingDestroy())
        destroy = RecordingDestroy()

        restarted = AutoDestroyScheduler(store, destroy)

        assert restarted.state == SchedulerState.ARMED
        assert restarted.evaluate(now=deadline + timedelta(hours=1)) is True
        assert destroy.calls == 1

    def test_end_to_end_destroy(self, orchestrator, store, aws_request, fake_ec2):
        aws_request.auto_destroy_hours = 1
        record = orchestrator.deploy(aws_request)
        scheduler = AutoDestroyScheduler(store, orchestrator.destroy)

        assert scheduler.evaluate(now=record.auto_destroy_at + timedelta(seconds=1)) is True
        assert store.load().status == DeploymentStatus.NOT_DEPLOYED
        assert scheduler.state == SchedulerState.DISABLED
        assert fake_ec2.total_resources() == 0

    def test_background_thread_stops(self, store):
        scheduler = AutoDestroyScheduler(store, RecordingDestroy(), poll_interval=0.01)

        scheduler.start()
        scheduler.stop(timeout=5)

        assert scheduler._thread is None
