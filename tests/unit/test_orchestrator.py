"""Tests for mutual exclusion, recovery and reset."""

import threading

import pytest

from tests.conftest import FakeSessionFactory
from vpn_deploy.orchestrator.orchestrator import DeploymentOrchestrator
from vpn_deploy.providers.factory import PipelineFactory
from vpn_deploy.state.models import DeploymentRecord, DeploymentStatus, ProviderKind, ResourceHandle
from vpn_deploy.utils.errors import OperationInProgressError, OperationRejected


class GatedSessionFactory(FakeSessionFactory):
    """Blocks every connection until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gate = threading.Event()
        self.entered = threading.Event()

    def __call__(self, access, timeout):
        self.entered.set()
        if not self.gate.wait(timeout=10):
            raise RuntimeError("gate never opened")
        return super().__call__(access, timeout)


@pytest.fixture
def gated():
    return GatedSessionFactory()


@pytest.fixture
def gated_orchestrator(store, credentials, settings_store, bus, gated):
    orch = DeploymentOrchestrator(store, PipelineFactory(credentials, session_factory=gated), settings_store, bus=bus)
    yield orch
    gated.gate.set()
    orch.shutdown()


class TestExclusion:
    """Test that only one deploy or destroy runs at a time."""

    def test_lock_held_by_another_process(self, orchestrator, store, aws_request, fake_ec2):
        with store.operation_lock():
            with pytest.raises(OperationInProgressError):
                orchestrator.deploy(aws_request)
            with pytest.raises(OperationInProgressError):
                orchestrator.reset()

        assert fake_ec2.calls["create_vpc"] == 0
        assert not store.exists()

    def test_async_deploy_blocks_other_operations(self, gated_orchestrator, gated, byo_request, store):
        future = gated_orchestrator.deploy_async(byo_request)
        assert gated.entered.wait(timeout=10)

        assert gated_orchestrator.is_busy()
        before = store.load()
        assert before.status == DeploymentStatus.DEPLOYING
        with pytest.raises(OperationInProgressError):
            gated_orchestrator.deploy_async(byo_request)
        with pytest.raises(OperationInProgressError):
            gated_orchestrator.destroy()
        assert store.load() == before

        gated.gate.set()
        record = future.result(timeout=10)

        assert record.status == DeploymentStatus.DEPLOYED
        assert not gated_orchestrator.is_busy()

    def test_recover_skips_running_operation(self, gated_orchestrator, gated, byo_request):
        future = gated_orchestrator.deploy_async(byo_request)
        assert gated.entered.wait(timeout=10)

        assert gated_orchestrator.recover().status == DeploymentStatus.DEPLOYING

        gated.gate.set()
        future.result(timeout=10)

    def test_async_destroy(self, orchestrator, byo_request, sessions):
        orchestrator.deploy(byo_request)

        record = orchestrator.destroy_async().result(timeout=10)

        assert record.status == DeploymentStatus.NOT_DEPLOYED


class TestRecovery:
    """Test recover() and reset()."""

    def _save(self, store, status, resources=True):
        record = DeploymentRecord(status=status, provider=ProviderKind.AWS, region="us-east-1")
        if resources:
            record.put_handle(ResourceHandle(kind="vpc", id="vpc-1"))
        store.save(record)
        return record

    @pytest.mark.parametrize("status,operation", [
        (DeploymentStatus.DEPLOYING, "deploy"),
        (DeploymentStatus.DESTROYING, "destroy"),
    ])
    def test_recover_marks_interrupted_operation_failed(self, orchestrator, store, status, operation):
        self._save(store, status)

        record = orchestrator.recover()

        assert record.status == DeploymentStatus.FAILED
        assert f"The {operation} operation was interrupted" in record.error_message
        assert record.handle_kinds() == ["vpc"]
        assert store.load().status == DeploymentStatus.FAILED

    def test_recover_leaves_settled_states(self, orchestrator, store):
        self._save(store, DeploymentStatus.DEPLOYED)

        assert orchestrator.recover().status == DeploymentStatus.DEPLOYED

    def test_recover_while_locked(self, orchestrator, store):
        self._save(store, DeploymentStatus.DEPLOYING)

        with store.operation_lock():
            assert orchestrator.recover().status == DeploymentStatus.DEPLOYING

    def test_reset_from_failed(self, orchestrator, store):
        self._save(store, DeploymentStatus.FAILED)

        record = orchestrator.reset()

        assert record.status == DeploymentStatus.NOT_DEPLOYED
        assert store.load().resources == []

    @pytest.mark.parametrize("status", [DeploymentStatus.NOT_DEPLOYED, DeploymentStatus.DEPLOYED])
    def test_reset_rejected_outside_failed(self, orchestrator, store, status):
        self._save(store, status, resources=False)

        with pytest.raises(OperationRejected, match="only allowed from failed"):
            orchestrator.reset()

    def test_corrupt_state_is_reported(self, orchestrator, store):
        store.state_path.write_text("\x00\x01garbage")

        record = orchestrator.get_state()

        assert record.status == DeploymentStatus.NOT_DEPLOYED
        assert len(orchestrator.integrity_warnings) == 1
        assert "moved" in orchestrator.integrity_warnings[0].message

    def test_destroy_runs_cleanup(self, store, factory, settings_store, byo_request):
        cleaned = []
        orch = DeploymentOrchestrator(store, factory, settings_store, cleanup=lambda: cleaned.append(True))
        try:
            orch.deploy(byo_request)
            orch.destroy()
        finally:
            orch.shutdown()

        assert cleaned == [True]

    def test_cleanup_failure_marks_destroy_failed(self, store, factory, settings_store, byo_request, events, bus):
        def broken():
            raise OSError("disk full")

        orch = DeploymentOrchestrator(store, factory, settings_store, bus=bus, cleanup=broken)
        try:
            orch.deploy(byo_request)
            record = orch.destroy()
        finally:
            orch.shutdown()

        assert record.status == DeploymentStatus.FAILED
        assert record.error_message.startswith("Destroy failed: disk full")
        assert [e.status for e in events if e.operation == "destroy"][-1] == "error"
