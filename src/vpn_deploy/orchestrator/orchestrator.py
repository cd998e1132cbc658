"""Main orchestrator coordinating deploy, destroy, reset and recovery."""

import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import ExitStack
from datetime import timedelta
from typing import Callable, List, Optional, Tuple

from vpn_deploy.config.models import Settings
from vpn_deploy.config.store import SettingsStore
from vpn_deploy.orchestrator.executor import PipelineExecutor
from vpn_deploy.orchestrator.progress import OperationChannel, ProgressBus
from vpn_deploy.orchestrator.teardown import TeardownEngine
from vpn_deploy.providers.base import DeployRequest, Pipeline
from vpn_deploy.providers.factory import PipelineFactory
from vpn_deploy.state.models import (
    DeploymentRecord,
    DeploymentStatus,
    KeyMaterial,
    ProviderKind,
    SshAccess,
    utcnow,
)
from vpn_deploy.state.store import DeploymentStore
from vpn_deploy.tunnel.keys import generate_keypair, generate_ssh_keypair
from vpn_deploy.utils.errors import (
    ErrorContext,
    OperationInProgressError,
    OperationRejected,
    PartialFailure,
    StateCorruption,
    error_handler,
)
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)

INTERRUPTED_MESSAGE = (
    "The {operation} operation was interrupted before it finished. "
    "Destroy to clean up any resources it created, or reset if none remain."
)

# Droplets are reached as root; AWS Ubuntu images use the ubuntu user
DIGITALOCEAN_SSH_USER = "root"


class DeploymentOrchestrator:
    """Owns the single deployment and serializes every operation on it."""

    def __init__(
        self,
        store: DeploymentStore,
        factory: PipelineFactory,
        settings_store: SettingsStore,
        bus: Optional[ProgressBus] = None,
        cleanup: Optional[Callable[[], None]] = None,
    ):
        """Initialize deployment orchestrator.

        Args:
            store: Deployment state store
            factory: Builds provider pipelines
            settings_store: Settings read at the start of each operation
            bus: Progress bus; a private one is created when None
            cleanup: Local cleanup run as the last teardown step
        """
        self.store = store
        self.factory = factory
        self.settings_store = settings_store
        self.bus = bus or ProgressBus()
        self.cleanup = cleanup
        self._flag = threading.Lock()
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vpn-deploy-op")

    @property
    def integrity_warnings(self) -> List[StateCorruption]:
        return list(self.store.integrity_warnings)

    def get_state(self) -> DeploymentRecord:
        return self.store.load()

    # Mutual exclusion

    def _exclusive(self) -> ExitStack:
        """Take the in-process flag and the cross-process lock.

        Raises:
            OperationInProgressError: If either is already held
        """
        if not self._flag.acquire(blocking=False):
            raise OperationInProgressError()
        guard = ExitStack()
        guard.callback(self._flag.release)
        try:
            guard.enter_context(self.store.operation_lock())
        except BaseException:
            guard.close()
            raise
        return guard

    def is_busy(self) -> bool:
        return self._flag.locked() or self.store.is_locked()

    # Deploy

    def deploy(self, request: DeployRequest) -> DeploymentRecord:
        """Deploy and block until the pipeline finishes.

        Args:
            request: Deploy request

        Returns:
            Final record: deployed, or failed with error_message and handles retained

        Raises:
            ValidationError: If the request is invalid
            OperationRejected: If the current status does not allow a deploy
            CredentialError: If provider credentials are missing
        """
        guard, record, pipeline, settings = self._begin_deploy(request)
        return self._run_deploy(guard, record, pipeline, settings, request)

    def deploy_async(self, request: DeployRequest) -> "Future[DeploymentRecord]":
        """Deploy in the background; rejection is raised here, synchronously."""
        guard, record, pipeline, settings = self._begin_deploy(request)
        return self._worker.submit(self._run_deploy, guard, record, pipeline, settings, request)

    def _begin_deploy(self, request: DeployRequest) -> Tuple[ExitStack, DeploymentRecord, Pipeline, Settings]:
        request.validate()
        guard = self._exclusive()
        try:
            record = self.store.load()
            if record.is_active:
                raise OperationRejected(
                    f"A deployment is already {record.status.value}",
                    suggestions=["Destroy the current deployment first"],
                )

            settings = self.settings_store.load()
            resume = record.status == DeploymentStatus.FAILED and bool(record.resources)
            if resume and record.provider != request.provider:
                raise OperationRejected(
                    f"A failed {record.provider.value} deployment still has resources",
                    suggestions=["Destroy it before deploying to a different provider"],
                )
            if resume:
                self._check_resume_target(record, request)

            pipeline = self.factory.build(request.provider, request.region, record if resume else None)

            if resume:
                logger.info(f"Resuming failed {record.provider.value} deployment")
                record.deployed_at = None
                record.auto_destroy_at = None
            else:
                record = self._new_record(request, settings)

            record.status = DeploymentStatus.DEPLOYING
            record.error_message = None
            self.store.save(record)
        except BaseException:
            guard.close()
            raise
        logger.info(f"Deploy started: provider={request.provider.value} region={record.region}")
        return guard, record, pipeline, settings

    @staticmethod
    def _check_resume_target(record: DeploymentRecord, request: DeployRequest) -> None:
        """Reject a resume that points at a different region or host than the failed deployment."""
        if request.provider == ProviderKind.BYO:
            recorded = record.ssh.host if record.ssh and record.ssh.host else record.endpoint
            if request.host.strip() != (recorded or "").strip():
                raise OperationRejected(
                    f"A failed deployment on {recorded} still has resources",
                    suggestions=[f"Retry with host {recorded}", "Destroy it before deploying to another host"],
                )
        elif request.region != record.region:
            raise OperationRejected(
                f"A failed deployment in {record.region} still has resources",
                suggestions=[f"Retry in region {record.region}", "Destroy it before deploying to another region"],
            )

    def _new_record(self, request: DeployRequest, settings: Settings) -> DeploymentRecord:
        client_keys = generate_keypair()
        record = DeploymentRecord(
            provider=request.provider,
            keys=KeyMaterial(
                client_private_key=client_keys.private_key,
                client_public_key=client_keys.public_key,
            ),
            parameters={
                "wireguard_port": settings.wireguard_port,
                "dns": settings.dns,
            },
        )

        if request.provider == ProviderKind.BYO:
            record.endpoint = request.host
            record.ssh = SshAccess(
                host=request.host,
                port=request.ssh_port or settings.ssh_port,
                user=request.ssh_user or settings.ssh_user,
                private_key=request.ssh_private_key,
            )
            return record

        ssh_keys = generate_ssh_keypair()
        record.region = request.region
        record.parameters["ssh_public_key"] = ssh_keys.public_key
        record.parameters["key_pair_name"] = f"vpn-deploy-{uuid.uuid4().hex[:8]}"
        if request.provider == ProviderKind.AWS:
            record.parameters["instance_type"] = request.instance_type or settings.instance_type
            user = settings.ssh_user
        else:
            record.parameters["size"] = request.size or settings.do_size
            user = DIGITALOCEAN_SSH_USER
        record.ssh = SshAccess(port=22, user=user, private_key=ssh_keys.private_key)
        return record

    def _run_deploy(
        self,
        guard: ExitStack,
        record: DeploymentRecord,
        pipeline: Pipeline,
        settings: Settings,
        request: DeployRequest,
    ) -> DeploymentRecord:
        with guard:
            channel = self.bus.open("deploy", len(pipeline.steps()))
            try:
                result = PipelineExecutor(self.store, settings).run(record, pipeline, channel)
                if result.success:
                    now = utcnow()
                    record.status = DeploymentStatus.DEPLOYED
                    record.deployed_at = now
                    record.auto_destroy_at = None
                    if request.auto_destroy_hours:
                        record.auto_destroy_at = now + timedelta(hours=request.auto_destroy_hours)
                        logger.info(f"Auto-destroy scheduled for {record.auto_destroy_at.isoformat()}")
                    logger.info(f"Deployment complete in {result.duration:.0f}s; server {record.endpoint}")
                else:
                    record.status = DeploymentStatus.FAILED
                    record.error_message = result.error_message
                self.store.save(record)
            except Exception as e:
                self._abort(record, channel, "deploy", e)
        return record

    # Destroy

    def destroy(self) -> DeploymentRecord:
        """Tear down every recorded resource and block until done.

        Returns:
            The fresh not_deployed record, or the failed record with remaining handles

        Raises:
            OperationRejected: If there is nothing to destroy or an operation is running
            CredentialError: If provider credentials are missing
        """
        guard, record, pipeline = self._begin_destroy()
        return self._run_destroy(guard, record, pipeline)

    def destroy_async(self) -> "Future[DeploymentRecord]":
        guard, record, pipeline = self._begin_destroy()
        return self._worker.submit(self._run_destroy, guard, record, pipeline)

    def _begin_destroy(self) -> Tuple[ExitStack, DeploymentRecord, Pipeline]:
        guard = self._exclusive()
        try:
            record = self.store.load()
            if record.provider is None or (
                record.status == DeploymentStatus.NOT_DEPLOYED and not record.resources
            ):
                raise OperationRejected("Nothing is deployed")

            pipeline = self.factory.build(record.provider, record.region, record)
            record.status = DeploymentStatus.DESTROYING
            record.error_message = None
            self.store.save(record)
        except BaseException:
            guard.close()
            raise
        logger.info(f"Destroy started: provider={record.provider.value} handles={record.handle_kinds()}")
        return guard, record, pipeline

    def _run_destroy(self, guard: ExitStack, record: DeploymentRecord, pipeline: Pipeline) -> DeploymentRecord:
        with guard:
            engine = TeardownEngine(self.store, cleanup=self.cleanup)
            channel = self.bus.open("destroy", engine.total_steps(record))
            try:
                fresh = engine.run(record, pipeline, channel)
                logger.info("Teardown complete")
                return fresh
            except PartialFailure as e:
                record.status = DeploymentStatus.FAILED
                record.error_message = e.message
                self.store.save(record)
                logger.error(f"Teardown stopped; remaining resources: {e.remaining}")
            except Exception as e:
                self._abort(record, channel, "destroy", e)
        return record

    def _abort(self, record: DeploymentRecord, channel: OperationChannel, operation: str, error: Exception) -> None:
        wrapped = error_handler.handle_exception(error, ErrorContext(operation=operation))
        error_handler.log_error(wrapped)
        record.status = DeploymentStatus.FAILED
        record.error_message = f"{operation.capitalize()} failed: {wrapped.message}"
        if not channel.closed:
            channel.fail(record.error_message)
        self.store.save(record)

    # Recovery

    def reset(self) -> DeploymentRecord:
        """Discard a failed record.

        Raises:
            OperationRejected: If the record is not failed
        """
        with self._exclusive():
            record = self.store.load()
            if record.status != DeploymentStatus.FAILED:
                raise OperationRejected(
                    f"Reset is only allowed from failed (current: {record.status.value})"
                )
            if record.resources:
                abandoned = ", ".join(f"{h.kind}={h.id}" for h in record.resources)
                logger.warning(f"Reset abandons recorded resources: {abandoned}")
            fresh = self.store.reset()
        logger.info("Deployment record reset")
        return fresh

    def recover(self) -> DeploymentRecord:
        """Mark an operation left running by a crashed process as failed.

        Handles and deadlines are kept so destroy() can still clean up.
        """
        record = self.store.load()
        if record.status not in (DeploymentStatus.DEPLOYING, DeploymentStatus.DESTROYING):
            return record
        if self.is_busy():
            return record

        operation = "deploy" if record.status == DeploymentStatus.DEPLOYING else "destroy"
        record.status = DeploymentStatus.FAILED
        record.error_message = INTERRUPTED_MESSAGE.format(operation=operation)
        self.store.save(record)
        logger.warning(f"Recovered interrupted {operation}; {len(record.resources)} resource(s) recorded")
        return record

    def shutdown(self, wait: bool = True) -> None:
        self._worker.shutdown(wait=wait)
