"""
Certificate provisioning for domains whose registration succeeded.
Requests a DNS-validated certificate, publishes the validation CNAME and
finalizes the operation status.
"""

import asyncio
from typing import Optional

from log import init_logger
from provisioning.collaborators import (
    CertificateAuthority,
    DnsZoneManager,
    call_collaborator,
)
from provisioning.errors import (
    CollaboratorError,
    InvalidTransitionError,
    NotFoundError,
    ProvisioningTimeoutError,
)
from provisioning.models import (
    CERTIFICATE_STATUSES,
    DnsRecord,
    Operation,
    OperationStatus,
    RetryPolicy,
    ValidationRecord,
)
from provisioning.operation_store import OperationStore
from provisioning.state_machine import KeyedLock, OperationStateMachine

logger = init_logger(__name__)

VALIDATION_RECORD_TTL = 300


class CertificateProvisioningWorkflow:
    """Issues and validates the TLS certificate of a registered domain."""

    def __init__(
        self,
        store: OperationStore,
        state_machine: OperationStateMachine,
        certificate_authority: CertificateAuthority,
        dns_zones: DnsZoneManager,
        retry_policy: Optional[RetryPolicy] = None,
        call_timeout: float = 30.0,
        domain_locks: Optional[KeyedLock] = None,
    ):
        self._store = store
        self._state_machine = state_machine
        self._certificate_authority = certificate_authority
        self._dns_zones = dns_zones
        self.retry_policy = retry_policy or RetryPolicy()
        self._call_timeout = call_timeout
        self._domain_locks = domain_locks or KeyedLock()

    async def run(self, operation_id: str) -> Operation:
        """
        Provision the certificate for an operation.

        The operation always ends in SSL_ACTIVATED or SSL_ACTIVATION_FAILED.
        On failure the error is re-raised after the status is persisted;
        a certificate that was already requested is not revoked.

        Args:
            operation_id: Id of an operation in REGISTRATION_SUCCESSFUL

        Returns:
            The finalized operation
        """
        operation = self._store.get_by_id(operation_id)
        async with self._domain_locks.lock(operation.domain_name):
            # re-read: another workflow may have finished while we waited
            operation = self._store.get_by_id(operation_id)
            return await self._provision(operation)

    async def _provision(self, operation: Operation) -> Operation:
        domain_name = operation.domain_name

        if operation.status in CERTIFICATE_STATUSES:
            logger.info(
                f"Certificate for {domain_name} already active, skipping request"
            )
            return operation
        if operation.status != OperationStatus.REGISTRATION_SUCCESSFUL:
            raise InvalidTransitionError(
                f"Cannot provision a certificate for {domain_name} in status "
                f"{operation.status.value}"
            )

        certificate_arn: Optional[str] = None
        try:
            certificate_arn = await self._request_certificate(domain_name)
            record = await self._wait_for_validation_record(certificate_arn)
            zone_id = await self._resolve_zone_id(domain_name)
            await self._publish_validation_record(zone_id, record, domain_name)
        except asyncio.CancelledError:
            logger.warning(f"Certificate provisioning for {domain_name} was cancelled")
            await self._mark_failed(operation, certificate_arn)
            raise
        except Exception as e:
            logger.error(f"Certificate provisioning failed for {domain_name}: {e}")
            await self._mark_failed(operation, certificate_arn)
            raise

        return await self._state_machine.apply(
            operation, OperationStatus.SSL_ACTIVATED, certificate_arn=certificate_arn
        )

    async def _mark_failed(
        self, operation: Operation, certificate_arn: Optional[str]
    ) -> None:
        if certificate_arn:
            logger.warning(
                f"Certificate {certificate_arn} for {operation.domain_name} was "
                "requested but not activated; it is left in place"
            )
        await self._state_machine.apply(
            operation, OperationStatus.SSL_ACTIVATION_FAILED
        )

    async def _request_certificate(self, domain_name: str) -> str:
        logger.info(f"Requesting SSL certificate for {domain_name}")
        result = await call_collaborator(
            self._certificate_authority.request_certificate,
            domain_name,
            action=f"request certificate for {domain_name}",
            timeout=self._call_timeout,
        )
        certificate_arn = (result or {}).get("certificate_arn")
        if not certificate_arn:
            raise CollaboratorError(
                f"Certificate request for {domain_name} returned no ARN"
            )
        logger.info(f"SSL certificate {certificate_arn} requested for {domain_name}")
        return certificate_arn

    async def _wait_for_validation_record(self, certificate_arn: str) -> ValidationRecord:
        policy = self.retry_policy
        if policy.timeout_seconds is None:
            return await self._poll_validation_record(certificate_arn)

        try:
            return await asyncio.wait_for(
                self._poll_validation_record(certificate_arn),
                timeout=policy.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ProvisioningTimeoutError(
                f"Validation record for {certificate_arn} not available after "
                f"{policy.timeout_seconds}s"
            )

    async def _poll_validation_record(self, certificate_arn: str) -> ValidationRecord:
        policy = self.retry_policy

        for attempt in range(1, policy.max_attempts + 1):
            details = await call_collaborator(
                self._certificate_authority.describe_certificate,
                certificate_arn,
                action=f"describe certificate {certificate_arn}",
                timeout=self._call_timeout,
            ) or {}

            if details.get("status") == "FAILED":
                raise CollaboratorError(
                    f"Certificate {certificate_arn} was rejected by the authority"
                )

            for record in details.get("validation_records") or []:
                if record.get("name") and record.get("value"):
                    return ValidationRecord.from_dict(record)

            logger.debug(
                f"Validation record for {certificate_arn} not ready "
                f"(attempt {attempt}/{policy.max_attempts})"
            )
            if attempt < policy.max_attempts:
                await asyncio.sleep(policy.delay_seconds)

        raise ProvisioningTimeoutError(
            f"Validation record for {certificate_arn} not available after "
            f"{policy.max_attempts} attempts"
        )

    async def _resolve_zone_id(self, domain_name: str) -> str:
        zone = await call_collaborator(
            self._dns_zones.get_zone_by_domain,
            domain_name,
            action=f"look up hosted zone for {domain_name}",
            timeout=self._call_timeout,
        )
        if not zone:
            raise NotFoundError(f"Hosted zone for {domain_name} does not exist")
        return zone["id"]

    async def _publish_validation_record(
        self, zone_id: str, record: ValidationRecord, domain_name: str
    ) -> None:
        logger.info(f"Adding SSL certificate validation record to {domain_name}")
        dns_record = DnsRecord(
            name=record.name,
            type=record.type,
            ttl=VALIDATION_RECORD_TTL,
            values=[record.value],
        )
        await call_collaborator(
            self._dns_zones.upsert_record,
            zone_id,
            dns_record,
            action=f"publish validation record for {domain_name}",
            timeout=self._call_timeout,
        )
        logger.info(f"Validation record {record.name} added for {domain_name}")
