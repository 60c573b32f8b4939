"""
Data model for domain provisioning operations.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OperationStatus(str, enum.Enum):
    PENDING = "PENDING"
    REGISTRATION_IN_PROGRESS = "REGISTRATION_IN_PROGRESS"
    REGISTRATION_SUCCESSFUL = "REGISTRATION_SUCCESSFUL"
    REGISTRATION_FAILED = "REGISTRATION_FAILED"
    SSL_ACTIVATED = "SSL_ACTIVATED"
    SSL_ACTIVATION_FAILED = "SSL_ACTIVATION_FAILED"
    COMPLETED = "COMPLETED"


# Statuses the registration poller no longer advances.
TERMINAL_STATUSES: FrozenSet[OperationStatus] = frozenset(
    {
        OperationStatus.REGISTRATION_FAILED,
        OperationStatus.SSL_ACTIVATED,
        OperationStatus.SSL_ACTIVATION_FAILED,
        OperationStatus.COMPLETED,
    }
)

ALLOWED_TRANSITIONS: Dict[OperationStatus, FrozenSet[OperationStatus]] = {
    OperationStatus.PENDING: frozenset(
        {
            OperationStatus.REGISTRATION_IN_PROGRESS,
            OperationStatus.REGISTRATION_SUCCESSFUL,
            OperationStatus.REGISTRATION_FAILED,
        }
    ),
    OperationStatus.REGISTRATION_IN_PROGRESS: frozenset(
        {
            OperationStatus.REGISTRATION_SUCCESSFUL,
            OperationStatus.REGISTRATION_FAILED,
        }
    ),
    OperationStatus.REGISTRATION_SUCCESSFUL: frozenset(
        {
            OperationStatus.SSL_ACTIVATED,
            OperationStatus.SSL_ACTIVATION_FAILED,
        }
    ),
    OperationStatus.SSL_ACTIVATED: frozenset({OperationStatus.COMPLETED}),
    OperationStatus.REGISTRATION_FAILED: frozenset(),
    OperationStatus.SSL_ACTIVATION_FAILED: frozenset(),
    OperationStatus.COMPLETED: frozenset(),
}

# certificate_arn is present exactly in these statuses
CERTIFICATE_STATUSES: FrozenSet[OperationStatus] = frozenset(
    {OperationStatus.SSL_ACTIVATED, OperationStatus.COMPLETED}
)


class RegistrarStatus(str, enum.Enum):
    """Registration status as reported by the domain registrar."""

    SUBMITTED = "SUBMITTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"
    ERROR = "ERROR"


@dataclass
class Operation:
    """Tracks one domain's journey through registration and certificate provisioning."""

    domain_name: str
    external_operation_id: str
    status: OperationStatus = OperationStatus.PENDING
    certificate_arn: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "external_operation_id": self.external_operation_id,
            "domain_name": self.domain_name,
            "status": self.status.value,
            "certificate_arn": self.certificate_arn,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Operation":
        return cls(
            id=data["id"],
            external_operation_id=data["external_operation_id"],
            domain_name=data["domain_name"],
            status=OperationStatus(data["status"]),
            certificate_arn=data.get("certificate_arn"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(
                data.get("updated_at") or data["created_at"]
            ),
        )


@dataclass
class ValidationRecord:
    """DNS record the certificate authority expects to find for validation."""

    name: str
    value: str
    type: str = "CNAME"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationRecord":
        return cls(
            name=data["name"],
            value=data["value"],
            type=data.get("type") or "CNAME",
        )


@dataclass
class AliasTarget:
    dns_name: str
    hosted_zone_id: str
    evaluate_target_health: bool = True


@dataclass
class DnsRecord:
    name: str
    type: str
    ttl: Optional[int] = None
    values: List[str] = field(default_factory=list)
    alias: Optional[AliasTarget] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "type": self.type}
        if self.ttl is not None:
            data["ttl"] = self.ttl
        if self.values:
            data["values"] = list(self.values)
        if self.alias:
            data["alias"] = {
                "dns_name": self.alias.dns_name,
                "hosted_zone_id": self.alias.hosted_zone_id,
                "evaluate_target_health": self.alias.evaluate_target_health,
            }
        return data


@dataclass
class Instance:
    instance_id: str
    security_group_id: str
    public_ip: Optional[str] = None


@dataclass
class RetryPolicy:
    """Bounds a wait loop by attempt count and by overall elapsed time."""

    max_attempts: int = 30
    delay_seconds: float = 2.0
    timeout_seconds: Optional[float] = 120.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must not be negative")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


@dataclass
class AttachmentResult:
    operation_id: str
    domain_name: str
    instance_id: str
    target_group_arn: str
    load_balancer_arn: str
    load_balancer_dns_name: str
    listener_arns: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "domain_name": self.domain_name,
            "instance_id": self.instance_id,
            "target_group_arn": self.target_group_arn,
            "load_balancer_arn": self.load_balancer_arn,
            "load_balancer_dns_name": self.load_balancer_dns_name,
            "listener_arns": list(self.listener_arns),
        }


def is_valid_domain(domain: str) -> bool:
    """Basic domain validation."""
    if not domain or len(domain) > 253:
        return False

    parts = domain.split(".")
    if len(parts) < 2:
        return False

    for part in parts:
        if not part or len(part) > 63:
            return False
        if part.startswith("-") or part.endswith("-"):
            return False

    return True


def normalize_domain_name(domain: str) -> str:
    """Lower-case the name and drop a trailing root dot."""
    return domain.strip().lower().rstrip(".")
