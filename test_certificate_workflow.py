"""
Tests for the certificate provisioning workflow.
"""

import asyncio

import pytest

from conftest import FAST_RETRY, FakeCertificateAuthority
from provisioning.certificate_workflow import (
    VALIDATION_RECORD_TTL,
    CertificateProvisioningWorkflow,
)
from provisioning.errors import (
    CollaboratorError,
    InvalidTransitionError,
    NotFoundError,
    ProvisioningTimeoutError,
)
from provisioning.models import Operation, OperationStatus, RetryPolicy


def _registered(store, domain_name="foo.test"):
    return store.create(
        Operation(
            domain_name=domain_name,
            external_operation_id="reg-1",
            status=OperationStatus.REGISTRATION_SUCCESSFUL,
        )
    )


def _workflow(store, state_machine, certificate_authority, dns_zones, retry_policy=FAST_RETRY):
    return CertificateProvisioningWorkflow(
        store,
        state_machine,
        certificate_authority,
        dns_zones,
        retry_policy=retry_policy,
        call_timeout=2.0,
    )


def test_successful_run_activates_certificate(store, state_machine, dns_zones):
    authority = FakeCertificateAuthority(ready_after=3)
    operation = _registered(store)

    result = asyncio.run(_workflow(store, state_machine, authority, dns_zones).run(operation.id))

    assert result.status == OperationStatus.SSL_ACTIVATED
    assert result.certificate_arn.startswith("arn:aws:acm")
    assert authority.count("request_certificate") == 1
    assert authority.count("describe_certificate") == 3

    upserts = [call for call in dns_zones.calls if call[0] == "upsert_record"]
    assert len(upserts) == 1
    _, zone_id, record = upserts[0]
    assert zone_id == "Z0FOO"
    assert record.type == "CNAME"
    assert record.name == "_abc123.foo.test."
    assert record.values == ["_def456.acm-validations.aws."]
    assert record.ttl == VALIDATION_RECORD_TTL


def test_never_ready_validation_fails_after_max_attempts(store, state_machine, dns_zones):
    authority = FakeCertificateAuthority(ready_after=None)
    operation = _registered(store)
    policy = RetryPolicy(max_attempts=4, delay_seconds=0.0, timeout_seconds=5.0)

    with pytest.raises(ProvisioningTimeoutError):
        asyncio.run(
            _workflow(store, state_machine, authority, dns_zones, policy).run(operation.id)
        )

    assert store.get_by_id(operation.id).status == OperationStatus.SSL_ACTIVATION_FAILED
    assert authority.count("describe_certificate") == 4
    assert dns_zones.count("upsert_record") == 0


def test_overall_timeout_bounds_the_wait(store, state_machine, dns_zones):
    authority = FakeCertificateAuthority(ready_after=None)
    operation = _registered(store)
    policy = RetryPolicy(max_attempts=1000, delay_seconds=0.05, timeout_seconds=0.2)

    with pytest.raises(ProvisioningTimeoutError):
        asyncio.run(
            _workflow(store, state_machine, authority, dns_zones, policy).run(operation.id)
        )

    assert store.get_by_id(operation.id).status == OperationStatus.SSL_ACTIVATION_FAILED
    assert authority.count("describe_certificate") < 1000


def test_rejected_certificate_aborts(store, state_machine, dns_zones):
    authority = FakeCertificateAuthority(ready_after=None, status="FAILED")
    operation = _registered(store)

    with pytest.raises(CollaboratorError):
        asyncio.run(_workflow(store, state_machine, authority, dns_zones).run(operation.id))

    assert store.get_by_id(operation.id).status == OperationStatus.SSL_ACTIVATION_FAILED
    assert authority.count("describe_certificate") == 1


def test_missing_zone_marks_failure(store, state_machine, certificate_authority, dns_zones):
    operation = _registered(store, domain_name="nozone.test")

    with pytest.raises(NotFoundError):
        asyncio.run(
            _workflow(store, state_machine, certificate_authority, dns_zones).run(operation.id)
        )

    failed = store.get_by_id(operation.id)
    assert failed.status == OperationStatus.SSL_ACTIVATION_FAILED
    assert failed.certificate_arn is None


def test_failed_record_publish_marks_failure(
    store, state_machine, certificate_authority, dns_zones
):
    dns_zones.fail_on.add("upsert_record")
    operation = _registered(store)

    with pytest.raises(CollaboratorError):
        asyncio.run(
            _workflow(store, state_machine, certificate_authority, dns_zones).run(operation.id)
        )

    assert store.get_by_id(operation.id).status == OperationStatus.SSL_ACTIVATION_FAILED


def test_rerun_after_activation_requests_nothing(
    store, state_machine, certificate_authority, dns_zones
):
    operation = _registered(store)
    workflow = _workflow(store, state_machine, certificate_authority, dns_zones)

    async def run_twice():
        first = await workflow.run(operation.id)
        second = await workflow.run(operation.id)
        return first, second

    first, second = asyncio.run(run_twice())

    assert second.certificate_arn == first.certificate_arn
    assert certificate_authority.count("request_certificate") == 1


def test_run_before_registration_succeeds_is_rejected(
    store, state_machine, certificate_authority, dns_zones
):
    operation = store.create(Operation(domain_name="foo.test", external_operation_id="reg-1"))

    with pytest.raises(InvalidTransitionError):
        asyncio.run(
            _workflow(store, state_machine, certificate_authority, dns_zones).run(operation.id)
        )

    assert certificate_authority.count("request_certificate") == 0
    assert store.get_by_id(operation.id).status == OperationStatus.PENDING


def test_cancellation_still_finalizes(store, state_machine, dns_zones):
    authority = FakeCertificateAuthority(ready_after=None)
    operation = _registered(store)
    policy = RetryPolicy(max_attempts=1000, delay_seconds=0.05, timeout_seconds=None)
    workflow = _workflow(store, state_machine, authority, dns_zones, policy)

    async def run_and_cancel():
        task = asyncio.create_task(workflow.run(operation.id))
        while authority.count("describe_certificate") == 0:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run_and_cancel())

    assert store.get_by_id(operation.id).status == OperationStatus.SSL_ACTIVATION_FAILED
