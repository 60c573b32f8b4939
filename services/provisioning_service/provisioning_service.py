"""
Main provisioning service.
Coordinates domain registration, certificate provisioning and instance attachment.
"""

from collections import Counter
from typing import Any, Dict, List, Optional

from cache.cache import TtlCache
from env_config import ProvisioningConfig
from log import init_logger
from provisioning.availability import DomainAvailabilityService
from provisioning.aws_providers import build_collaborators
from provisioning.certificate_workflow import CertificateProvisioningWorkflow
from provisioning.collaborators import (
    CertificateAuthority,
    ComputeDescriptor,
    DnsZoneManager,
    DomainRegistrar,
    LoadBalancerProvisioner,
    call_collaborator,
)
from provisioning.errors import OperationConflictError
from provisioning.instance_attachment import InstanceAttachmentPipeline
from provisioning.models import (
    AttachmentResult,
    Operation,
    OperationStatus,
    RetryPolicy,
    is_valid_domain,
    normalize_domain_name,
    utcnow,
)
from provisioning.operation_store import (
    InMemoryOperationStore,
    JsonFileOperationStore,
    OperationStore,
)
from provisioning.registration_poller import RegistrationStatusPoller
from provisioning.state_machine import KeyedLock, OperationStateMachine

logger = init_logger(__name__)

# Global service instance
_provisioning_service: Optional["ProvisioningService"] = None


def _validated_domain(domain_name: str) -> str:
    name = normalize_domain_name(domain_name)
    if not is_valid_domain(name):
        raise ValueError(f"Invalid domain name: {domain_name}")
    return name


class ProvisioningService:
    """Main service wiring the provisioning core to its collaborators."""

    def __init__(
        self,
        config: ProvisioningConfig,
        store: Optional[OperationStore] = None,
        registrar: Optional[DomainRegistrar] = None,
        certificate_authority: Optional[CertificateAuthority] = None,
        dns_zones: Optional[DnsZoneManager] = None,
        compute: Optional[ComputeDescriptor] = None,
        load_balancers: Optional[LoadBalancerProvisioner] = None,
    ):
        """
        Initialize the provisioning service.

        Collaborators that are not passed in are built from the configuration.
        """
        self.config = config

        given = {
            "registrar": registrar,
            "certificate_authority": certificate_authority,
            "dns_zones": dns_zones,
            "compute": compute,
            "load_balancers": load_balancers,
        }
        if any(c is None for c in given.values()):
            built = build_collaborators(config)
            given = {k: v if v is not None else built[k] for k, v in given.items()}

        self.registrar: DomainRegistrar = given["registrar"]
        self.certificate_authority: CertificateAuthority = given["certificate_authority"]
        self.dns_zones: DnsZoneManager = given["dns_zones"]
        self.compute: ComputeDescriptor = given["compute"]
        self.load_balancers: LoadBalancerProvisioner = given["load_balancers"]

        if store is None:
            store = (
                JsonFileOperationStore(config.store_path)
                if config.store_path
                else InMemoryOperationStore()
            )
        self.store = store

        timeout = config.collaborator_timeout_seconds
        domain_locks = KeyedLock()
        self._registration_locks = KeyedLock()
        self.state_machine = OperationStateMachine(self.store)
        self.certificate_workflow = CertificateProvisioningWorkflow(
            self.store,
            self.state_machine,
            self.certificate_authority,
            self.dns_zones,
            retry_policy=RetryPolicy(
                max_attempts=config.cert_validation_max_attempts,
                delay_seconds=config.cert_validation_delay_seconds,
                timeout_seconds=config.cert_validation_timeout_seconds,
            ),
            call_timeout=timeout,
            domain_locks=domain_locks,
        )
        self.poller = RegistrationStatusPoller(
            self.store,
            self.state_machine,
            self.registrar,
            self.certificate_workflow,
            interval_seconds=config.poll_interval_seconds,
            call_timeout=timeout,
        )
        self.attachment = InstanceAttachmentPipeline(
            self.store,
            self.state_machine,
            self.compute,
            self.load_balancers,
            self.dns_zones,
            call_timeout=timeout,
            domain_locks=domain_locks,
        )
        self.availability = DomainAvailabilityService(
            self.registrar,
            price_cache=TtlCache(ttl_seconds=config.tld_price_cache_ttl_seconds),
            call_timeout=timeout,
        )
        self._initialized = False

    async def initialize(self, start_poller: bool = True) -> bool:
        """
        Start the registration poller.

        Returns:
            True if initialization successful
        """
        if self._initialized:
            logger.debug("Provisioning service already initialized")
            return True

        logger.info("Initializing provisioning service")
        pending = self.store.list_pending()
        if pending:
            logger.info(f"Resuming {len(pending)} pending operations")

        if start_poller:
            self.poller.start()

        self._initialized = True
        logger.info("Provisioning service initialized successfully")
        return True

    async def register_domain(self, domain_name: str) -> Operation:
        """
        Submit a domain registration and record a PENDING operation.

        Raises:
            ValueError: if the domain name is invalid
            OperationConflictError: if the domain already has an operation in flight
            CollaboratorError: if the registrar rejects the request
        """
        name = _validated_domain(domain_name)

        async with self._registration_locks.lock(name):
            pending = [op for op in self.store.list_pending() if op.domain_name == name]
            if pending:
                raise OperationConflictError(
                    f"Domain {name} already has operation {pending[0].id} "
                    f"in status {pending[0].status.value}"
                )

            result = await call_collaborator(
                self.registrar.register_domain,
                name,
                action=f"register domain {name}",
                timeout=self.config.collaborator_timeout_seconds,
            )
            operation = self.store.create(
                Operation(domain_name=name, external_operation_id=result["operation_id"])
            )
        logger.info(
            f"Created operation {operation.id} for {name} "
            f"(registrar operation {operation.external_operation_id})"
        )
        return operation

    async def check_availability(self, domain_name: str) -> Dict[str, Any]:
        return await self.availability.check_availability(domain_name)

    async def create_hosted_zone(self, domain_name: str) -> Dict[str, Any]:
        """
        Create a public hosted zone for a domain.

        Returns:
            ``{"id", "name", "created"}``; an existing zone is returned as is
        """
        name = _validated_domain(domain_name)
        timeout = self.config.collaborator_timeout_seconds

        zone = await call_collaborator(
            self.dns_zones.get_zone_by_domain,
            name,
            action=f"look up hosted zone for {name}",
            timeout=timeout,
        )
        if zone and zone.get("name") == name:
            logger.info(f"Hosted zone {zone['id']} already exists for {name}")
            return {"id": zone["id"], "name": name, "created": False}

        zone = await call_collaborator(
            self.dns_zones.create_zone,
            name,
            action=f"create hosted zone for {name}",
            timeout=timeout,
        )
        logger.info(f"Hosted zone {zone['id']} created for {name}")
        return {"id": zone["id"], "name": name, "created": True}

    async def attach_instance(self, domain_name: str, instance_id: str) -> AttachmentResult:
        name = _validated_domain(domain_name)
        return await self.attachment.attach_instance(name, instance_id)

    def get_operation(self, operation_id: str) -> Operation:
        return self.store.get_by_id(operation_id)

    def get_operation_by_domain(self, domain_name: str) -> Operation:
        return self.store.get_by_domain_name(_validated_domain(domain_name))

    def list_operations(self) -> List[Operation]:
        return self.store.list_all()

    async def get_status(self) -> Dict[str, Any]:
        """
        Get current status of the provisioning service.

        Returns:
            Status dictionary
        """
        counts = Counter(op.status.value for op in self.store.list_all())
        return {
            "initialized": self._initialized,
            "timestamp": utcnow().isoformat(),
            "dns_provider": self.config.dns_provider,
            "operations": {status.value: counts.get(status.value, 0) for status in OperationStatus},
            "poller": self.poller.get_status(),
        }

    async def cleanup(self) -> None:
        """Stop the poller and wait for in-flight certificate workflows."""
        logger.info("Cleaning up provisioning service")
        await self.poller.stop()
        self._initialized = False
        logger.info("Provisioning service cleanup completed")


def get_provisioning_service() -> Optional[ProvisioningService]:
    """
    Get the global provisioning service instance.

    Returns:
        Provisioning service instance or None
    """
    return _provisioning_service


def set_provisioning_service(service: Optional[ProvisioningService]) -> None:
    """
    Set the global provisioning service instance.

    Args:
        service: Provisioning service instance
    """
    global _provisioning_service
    _provisioning_service = service


async def initialize_provisioning_service(config: ProvisioningConfig) -> bool:
    """
    Initialize the global provisioning service.

    Returns:
        True if initialization successful
    """
    global _provisioning_service

    if _provisioning_service is None:
        _provisioning_service = ProvisioningService(config)

    return await _provisioning_service.initialize()


async def cleanup_provisioning_service() -> None:
    """Cleanup the global provisioning service."""
    global _provisioning_service

    if _provisioning_service:
        await _provisioning_service.cleanup()
        _provisioning_service = None
