"""
Shared fixtures: in-memory collaborators that record every call.
"""

import itertools
import threading
from typing import Any, Dict, List, Optional

import pytest

from env_config import ProvisioningConfig
from provisioning.collaborators import (
    NOT_FOUND_CODE,
    CertificateAuthority,
    ComputeDescriptor,
    DnsZoneManager,
    DomainRegistrar,
    LoadBalancerProvisioner,
    failure,
    success,
)
from provisioning.models import DnsRecord, RetryPolicy
from provisioning.operation_store import InMemoryOperationStore
from provisioning.state_machine import KeyedLock, OperationStateMachine


class CallRecorder:
    def __init__(self):
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def record(self, name: str, *args: Any) -> None:
        with self._lock:
            self.calls.append((name,) + args)

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakeRegistrar(CallRecorder, DomainRegistrar):
    def __init__(self):
        super().__init__()
        self.statuses: Dict[str, str] = {}
        self.raising: set = set()
        self.missing: set = set()
        self.available: set = set()
        self.suggestions: List[Dict[str, Any]] = []
        self.prices: Dict[str, Dict[str, Any]] = {}
        self._ids = itertools.count(1)

    def register_domain(self, domain_name: str):
        self.record("register_domain", domain_name)
        operation_id = f"reg-{next(self._ids)}"
        self.statuses[operation_id] = "SUBMITTED"
        return success({"operation_id": operation_id})

    def get_operation_status(self, external_operation_id: str):
        self.record("get_operation_status", external_operation_id)
        if external_operation_id in self.raising:
            raise RuntimeError(f"registrar unavailable for {external_operation_id}")
        if external_operation_id in self.missing:
            return failure("Operation not found", NOT_FOUND_CODE)
        return success({"status": self.statuses.get(external_operation_id, "SUBMITTED")})

    def check_availability(self, domain_name: str):
        self.record("check_availability", domain_name)
        return success({"available": domain_name in self.available})

    def get_domain_suggestions(self, domain_name: str, count: int):
        self.record("get_domain_suggestions", domain_name, count)
        return success(list(self.suggestions))

    def get_tld_price(self, tld: str):
        self.record("get_tld_price", tld)
        if tld not in self.prices:
            return failure(f"No prices listed for {tld}", NOT_FOUND_CODE)
        return success(self.prices[tld])


class FakeCertificateAuthority(CallRecorder, CertificateAuthority):
    def __init__(self, ready_after: Optional[int] = 1, status: str = "PENDING_VALIDATION"):
        super().__init__()
        # describe_certificate calls needed before a validation record shows up;
        # None never produces one
        self.ready_after = ready_after
        self.status = status
        self._ids = itertools.count(1)

    def request_certificate(self, domain_name: str):
        self.record("request_certificate", domain_name)
        return success(
            {"certificate_arn": f"arn:aws:acm:us-east-1:123456789012:certificate/{next(self._ids)}"}
        )

    def describe_certificate(self, certificate_arn: str):
        self.record("describe_certificate", certificate_arn)
        records = []
        if self.ready_after is not None and self.count("describe_certificate") >= self.ready_after:
            records.append(
                {
                    "name": "_abc123.foo.test.",
                    "value": "_def456.acm-validations.aws.",
                    "type": "CNAME",
                }
            )
        return success({"status": self.status, "validation_records": records})


class FakeDnsZones(CallRecorder, DnsZoneManager):
    def __init__(self):
        super().__init__()
        self.zones: Dict[str, str] = {}
        self.records: Dict[str, List[DnsRecord]] = {}
        self.fail_on: set = set()

    def add_zone(self, domain_name: str, zone_id: str, records: Optional[List[DnsRecord]] = None):
        self.zones[domain_name] = zone_id
        self.records[zone_id] = list(records or [])

    def get_zone_by_domain(self, domain_name: str):
        self.record("get_zone_by_domain", domain_name)
        if domain_name not in self.zones:
            return success(None)
        return success({"id": self.zones[domain_name], "name": domain_name})

    def create_zone(self, domain_name: str):
        self.record("create_zone", domain_name)
        zone_id = f"Z{len(self.zones) + 1:04d}"
        self.add_zone(domain_name, zone_id)
        return success({"id": zone_id, "name": domain_name})

    def upsert_record(self, zone_id: str, record: DnsRecord):
        self.record("upsert_record", zone_id, record)
        if "upsert_record" in self.fail_on:
            return failure("Throttling", "Throttling")
        kept = [
            r
            for r in self.records.setdefault(zone_id, [])
            if not (r.name == record.name and r.type == record.type)
        ]
        self.records[zone_id] = kept + [record]
        return success(None)

    def delete_record(self, zone_id: str, record: DnsRecord):
        self.record("delete_record", zone_id, record)
        self.records[zone_id] = [r for r in self.records.get(zone_id, []) if r != record]
        return success(None)

    def list_records(self, zone_id: str):
        self.record("list_records", zone_id)
        return success(list(self.records.get(zone_id, [])))


class FakeCompute(CallRecorder, ComputeDescriptor):
    def __init__(self):
        super().__init__()
        self.instances: Dict[str, Dict[str, Any]] = {}

    def add_instance(self, instance_id: str, security_group_id: str = "sg-0001"):
        self.instances[instance_id] = {
            "instance_id": instance_id,
            "public_ip": "203.0.113.10",
            "security_group_ids": [security_group_id],
        }

    def describe_instance(self, instance_id: str):
        self.record("describe_instance", instance_id)
        if instance_id not in self.instances:
            return success({"reservations": []})
        return success({"reservations": [{"instances": [self.instances[instance_id]]}]})

    def get_default_network(self):
        self.record("get_default_network")
        return success({"id": "vpc-0001"})

    def get_default_subnets(self):
        self.record("get_default_subnets")
        return success(["subnet-a", "subnet-f"])


class FakeLoadBalancers(CallRecorder, LoadBalancerProvisioner):
    def __init__(self):
        super().__init__()
        self.fail_on: set = set()
        self._ids = itertools.count(1)

    def _arn(self, kind: str) -> str:
        return f"arn:aws:elasticloadbalancing:us-east-1:123456789012:{kind}/{next(self._ids)}"

    def create_target_group(self, name, network_id, port=80, protocol="HTTP"):
        self.record("create_target_group", name, network_id, port, protocol)
        if "create_target_group" in self.fail_on:
            return failure("Target group quota exceeded", "TooManyTargetGroups")
        return success({"arn": self._arn("targetgroup"), "name": name})

    def register_targets(self, target_group_arn, instance_id, port=80):
        self.record("register_targets", target_group_arn, instance_id, port)
        return success(None)

    def create_load_balancer(self, name, subnet_ids, security_group_ids):
        self.record("create_load_balancer", name, list(subnet_ids), list(security_group_ids))
        if "create_load_balancer" in self.fail_on:
            return failure("Load balancer quota exceeded", "TooManyLoadBalancers")
        return success(
            {
                "arn": self._arn("loadbalancer"),
                "dns_name": f"{name}-1234.us-east-1.elb.amazonaws.com",
                "canonical_hosted_zone_id": "Z35SXDOTRQ7X7K",
            }
        )

    def create_listener(
        self, load_balancer_arn, protocol, port, default_action, certificate_arn=None
    ):
        self.record(
            "create_listener", load_balancer_arn, protocol, port, default_action, certificate_arn
        )
        return success({"arn": self._arn("listener")})


def make_config(**overrides: Any) -> ProvisioningConfig:
    values = {
        "poll_interval_seconds": 0.01,
        "collaborator_timeout_seconds": 2.0,
        "cert_validation_max_attempts": 5,
        "cert_validation_delay_seconds": 0.0,
        "cert_validation_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return ProvisioningConfig(**values)


FAST_RETRY = RetryPolicy(max_attempts=5, delay_seconds=0.0, timeout_seconds=5.0)


@pytest.fixture
def store():
    return InMemoryOperationStore()


@pytest.fixture
def state_machine(store):
    return OperationStateMachine(store)


@pytest.fixture
def domain_locks():
    return KeyedLock()


@pytest.fixture
def registrar():
    return FakeRegistrar()


@pytest.fixture
def certificate_authority():
    return FakeCertificateAuthority()


@pytest.fixture
def dns_zones():
    zones = FakeDnsZones()
    zones.add_zone("foo.test", "Z0FOO")
    return zones


@pytest.fixture
def compute():
    descriptor = FakeCompute()
    descriptor.add_instance("i-0abc")
    return descriptor


@pytest.fixture
def load_balancers():
    return FakeLoadBalancers()
