"""Tests for the deployment record and its store."""

import json
import stat
from pathlib import Path

import pydantic
import pytest

from vpn_deploy.state.models import (
    DeploymentRecord,
    DeploymentStatus,
    KeyMaterial,
    ProviderKind,
    ResourceHandle,
)
from vpn_deploy.state.store import DeploymentStore
from vpn_deploy.utils.errors import OperationInProgressError


def _record() -> DeploymentRecord:
    record = DeploymentRecord(status=DeploymentStatus.FAILED, provider=ProviderKind.AWS, region="eu-west-1")
    record.put_handle(ResourceHandle(kind="vpc", id="vpc-1"))
    record.put_handle(ResourceHandle(kind="subnet", id="subnet-1", properties={"cidr": "10.0.1.0/24"}))
    return record


class TestDeploymentRecord:
    """Test handle bookkeeping on the record."""

    def test_put_handle_replaces_same_kind_in_place(self):
        record = _record()
        record.put_handle(ResourceHandle(kind="vpc", id="vpc-2"))

        assert record.handle_kinds() == ["vpc", "subnet"]
        assert record.get_handle("vpc").id == "vpc-2"

    def test_remove_handle(self):
        record = _record()
        removed = record.remove_handle("vpc")

        assert removed.id == "vpc-1"
        assert record.get_handle("vpc") is None
        assert record.remove_handle("vpc") is None

    def test_is_active(self):
        assert DeploymentRecord(status=DeploymentStatus.DEPLOYED).is_active
        assert DeploymentRecord(status=DeploymentStatus.DESTROYING).is_active
        assert not DeploymentRecord(status=DeploymentStatus.FAILED).is_active
        assert not DeploymentRecord().is_active

    def test_key_material_has_no_server_private_key(self):
        with pytest.raises(pydantic.ValidationError):
            KeyMaterial(server_private_key="secret")


class TestDeploymentStore:
    """Test DeploymentStore persistence and locking."""

    def test_missing_file_loads_fresh_record(self, store):
        record = store.load()

        assert record.status == DeploymentStatus.NOT_DEPLOYED
        assert record.resources == []
        assert not store.exists()

    def test_save_and_load_round_trip(self, store):
        store.save(_record())
        loaded = store.load()

        assert loaded.status == DeploymentStatus.FAILED
        assert loaded.region == "eu-west-1"
        assert loaded.handle_kinds() == ["vpc", "subnet"]
        assert loaded.get_handle("subnet").properties == {"cidr": "10.0.1.0/24"}

    def test_state_file_is_owner_only(self, store):
        store.save(_record())

        mode = stat.S_IMODE(store.state_path.stat().st_mode)
        assert mode == 0o600

    def test_save_leaves_no_temp_files(self, store):
        store.save(_record())
        store.save(_record())

        leftovers = [p.name for p in store.state_path.parent.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_corrupt_file_is_quarantined(self, store):
        store.state_path.write_text("{not json")

        record = store.load()

        assert record.status == DeploymentStatus.NOT_DEPLOYED
        assert not store.state_path.exists()
        assert len(store.integrity_warnings) == 1
        warning = store.integrity_warnings[0]
        quarantined = Path(warning.quarantined_path)
        assert quarantined.exists()
        assert quarantined.read_text() == "{not json"
        assert quarantined.name.startswith("state.json.corrupt-")

    def test_invalid_schema_is_quarantined(self, store):
        store.state_path.write_text(json.dumps({"status": "exploded"}))

        record = store.load()

        assert record.status == DeploymentStatus.NOT_DEPLOYED
        assert len(store.integrity_warnings) == 1

    def test_reset(self, store):
        store.save(_record())

        fresh = store.reset()

        assert fresh.status == DeploymentStatus.NOT_DEPLOYED
        assert store.load().resources == []

    def test_operation_lock_is_exclusive(self, store, paths):
        other = DeploymentStore(paths.state_file, paths.lock_file)

        with store.operation_lock():
            assert other.is_locked()
            with pytest.raises(OperationInProgressError):
                with other.operation_lock():
                    pass

        assert not other.is_locked()
        with other.operation_lock():
            pass
