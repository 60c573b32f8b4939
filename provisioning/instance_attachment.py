"""
Binds a compute instance to a domain with an active certificate: target
group, load balancer, HTTPS/HTTP listeners and alias records.
"""

import re
from typing import Any, Callable, List, Optional

from log import init_logger
from provisioning.collaborators import (
    ComputeDescriptor,
    DnsZoneManager,
    LoadBalancerProvisioner,
    Response,
    call_collaborator,
)
from provisioning.errors import AttachmentError, CollaboratorError, NotFoundError
from provisioning.models import (
    AliasTarget,
    AttachmentResult,
    CERTIFICATE_STATUSES,
    DnsRecord,
    Instance,
    Operation,
    OperationStatus,
)
from provisioning.operation_store import OperationStore
from provisioning.state_machine import KeyedLock, OperationStateMachine

logger = init_logger(__name__)

# Load balancer and target group names: alphanumerics and hyphens, <= 32 chars
MAX_RESOURCE_NAME_LENGTH = 32
ALIAS_RECORD_TYPES = ("A", "AAAA")


def resource_name(domain_name: str, suffix: str) -> str:
    """Build a load balancer resource name from the first domain label."""
    label = re.sub(r"[^a-zA-Z0-9-]", "-", domain_name.split(".")[0]).strip("-")
    label = label[: MAX_RESOURCE_NAME_LENGTH - len(suffix) - 1].rstrip("-")
    return f"{label or 'domain'}-{suffix}"


def _same_name(record_name: str, domain_name: str) -> bool:
    return record_name.lower().rstrip(".") == domain_name.lower().rstrip(".")


class InstanceAttachmentPipeline:
    """
    On-demand saga: each step must succeed before the next one runs.

    A failing step aborts the pipeline with AttachmentError. Resources
    created by earlier steps are not removed.
    """

    def __init__(
        self,
        store: OperationStore,
        state_machine: OperationStateMachine,
        compute: ComputeDescriptor,
        load_balancers: LoadBalancerProvisioner,
        dns_zones: DnsZoneManager,
        call_timeout: float = 30.0,
        domain_locks: Optional[KeyedLock] = None,
    ):
        self._store = store
        self._state_machine = state_machine
        self._compute = compute
        self._load_balancers = load_balancers
        self._dns_zones = dns_zones
        self._call_timeout = call_timeout
        self._domain_locks = domain_locks or KeyedLock()

    async def attach_instance(self, domain_name: str, instance_id: str) -> AttachmentResult:
        """
        Associate a domain with a compute instance.

        Args:
            domain_name: Domain with an active certificate
            instance_id: Id of the compute instance

        Returns:
            Identifiers of the resources that were created

        Raises:
            NotFoundError: if the instance, hosted zone, or an operation with
                an active certificate does not exist
            AttachmentError: if a provisioning step fails
        """
        async with self._domain_locks.lock(domain_name):
            logger.info(f"Associating {domain_name} with instance {instance_id}")

            instance = await self._describe_instance(instance_id)
            zone_id = await self._resolve_zone_id(domain_name)
            operation = self._find_activated_operation(domain_name)
            logger.info(
                f"SSL certificate {operation.certificate_arn} will be used for {domain_name}"
            )

            created: List[str] = []
            result = await self._configure_https_traffic(
                instance, domain_name, operation, zone_id, created
            )

            await self._state_machine.apply(operation, OperationStatus.COMPLETED)
            logger.info(f"{domain_name} has been associated with instance {instance_id}")
            return result

    async def _describe_instance(self, instance_id: str) -> Instance:
        result = await self._call(
            self._compute.describe_instance,
            instance_id,
            action=f"describe instance {instance_id}",
        )
        matches = [
            item
            for reservation in (result or {}).get("reservations", [])
            for item in reservation.get("instances", [])
            if item.get("instance_id") == instance_id
        ]
        if len(matches) != 1:
            raise NotFoundError(f"Instance {instance_id} does not exist")

        found = matches[0]
        security_groups = found.get("security_group_ids") or []
        if not security_groups:
            raise CollaboratorError(f"Instance {instance_id} has no security group")

        logger.info(f"Found instance {instance_id}")
        return Instance(
            instance_id=instance_id,
            security_group_id=security_groups[0],
            public_ip=found.get("public_ip"),
        )

    async def _resolve_zone_id(self, domain_name: str) -> str:
        zone = await self._call(
            self._dns_zones.get_zone_by_domain,
            domain_name,
            action=f"look up hosted zone for {domain_name}",
        )
        if not zone:
            raise NotFoundError(f"Hosted zone with name {domain_name} does not exist")
        return zone["id"]

    def _find_activated_operation(self, domain_name: str) -> Operation:
        return self._store.get_by_domain_name(domain_name, statuses=CERTIFICATE_STATUSES)

    async def _configure_https_traffic(
        self,
        instance: Instance,
        domain_name: str,
        operation: Operation,
        zone_id: str,
        created: List[str],
    ) -> AttachmentResult:
        network = await self._step(
            "discover default network", created, self._compute.get_default_network
        )
        target_group = await self._step(
            "create target group",
            created,
            self._load_balancers.create_target_group,
            resource_name(domain_name, "tg"),
            network["id"],
            80,
            "HTTP",
        )
        created.append(target_group["arn"])
        logger.info(
            f"Target group {target_group.get('name')} created for {domain_name}"
        )

        await self._step(
            "register targets",
            created,
            self._load_balancers.register_targets,
            target_group["arn"],
            instance.instance_id,
            80,
        )

        subnet_ids = await self._step(
            "discover default subnets", created, self._compute.get_default_subnets
        )
        load_balancer = await self._step(
            "create load balancer",
            created,
            self._load_balancers.create_load_balancer,
            resource_name(domain_name, "lb"),
            list(subnet_ids or []),
            [instance.security_group_id],
        )
        created.append(load_balancer["arn"])
        logger.info(
            f"Load balancer {load_balancer['arn']} created for {domain_name} "
            f"with security group {instance.security_group_id}"
        )

        https_listener = await self._step(
            "create HTTPS listener",
            created,
            self._load_balancers.create_listener,
            load_balancer["arn"],
            "HTTPS",
            443,
            {"type": "forward", "target_group_arn": target_group["arn"]},
            operation.certificate_arn,
        )
        created.append(https_listener["arn"])

        http_listener = await self._step(
            "create HTTP listener",
            created,
            self._load_balancers.create_listener,
            load_balancer["arn"],
            "HTTP",
            80,
            {
                "type": "redirect",
                "protocol": "HTTPS",
                "port": "443",
                "status_code": "HTTP_301",
            },
        )
        created.append(http_listener["arn"])

        await self._replace_alias_records(zone_id, domain_name, load_balancer, created)

        return AttachmentResult(
            operation_id=operation.id,
            domain_name=domain_name,
            instance_id=instance.instance_id,
            target_group_arn=target_group["arn"],
            load_balancer_arn=load_balancer["arn"],
            load_balancer_dns_name=load_balancer["dns_name"],
            listener_arns=[https_listener["arn"], http_listener["arn"]],
        )

    async def _replace_alias_records(
        self,
        zone_id: str,
        domain_name: str,
        load_balancer: dict,
        created: List[str],
    ) -> None:
        logger.info(f"Adding load balancer records to hosted zone {zone_id}")
        records = await self._step(
            "list zone records", created, self._dns_zones.list_records, zone_id
        )

        for record in records or []:
            if record.type in ALIAS_RECORD_TYPES and _same_name(record.name, domain_name):
                logger.info(f"{record.type} record for {domain_name} will be deleted")
                await self._step(
                    f"delete {record.type} record",
                    created,
                    self._dns_zones.delete_record,
                    zone_id,
                    record,
                )

        alias = AliasTarget(
            dns_name=load_balancer["dns_name"],
            hosted_zone_id=load_balancer["canonical_hosted_zone_id"],
            evaluate_target_health=True,
        )
        for record_type in ALIAS_RECORD_TYPES:
            await self._step(
                f"create {record_type} alias record",
                created,
                self._dns_zones.upsert_record,
                zone_id,
                DnsRecord(name=domain_name, type=record_type, alias=alias),
            )
        logger.info(f"A & AAAA records of load balancer added in hosted zone {zone_id}")

    async def _step(
        self,
        step: str,
        created: List[str],
        func: Callable[..., Response],
        *args: Any,
    ) -> Any:
        try:
            return await self._call(func, *args, action=step)
        except (CollaboratorError, NotFoundError) as e:
            if created:
                logger.warning(
                    f"Attachment aborted at '{step}'; leaving {', '.join(created)} in place"
                )
            raise AttachmentError(
                f"Instance attachment failed at step '{step}': {e}",
                step=step,
                created_resources=list(created),
            ) from e

    async def _call(self, func: Callable[..., Response], *args: Any, action: str) -> Any:
        return await call_collaborator(
            func, *args, action=action, timeout=self._call_timeout
        )
