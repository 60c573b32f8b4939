"""
Contracts for the external providers the provisioning core depends on.

Every method returns a response envelope shaped like the Cloudflare v4 API:

    {"success": True, "result": ...}
    {"success": False, "errors": [{"code": ..., "message": ...}]}

Implementations are synchronous; the core runs them in a worker thread with
a timeout through ``call_collaborator``.
"""

import abc
import asyncio
from typing import Any, Callable, Dict, List, Optional

from log import init_logger
from provisioning.errors import CollaboratorError, NotFoundError, ProvisioningError
from provisioning.models import DnsRecord

logger = init_logger(__name__)

Response = Dict[str, Any]

NOT_FOUND_CODE = 404


def success(result: Any = None) -> Response:
    return {"success": True, "result": result, "errors": []}


def failure(message: str, code: Any = None) -> Response:
    return {"success": False, "errors": [{"code": code, "message": message}]}


def ensure_success(response: Optional[Response], action: str) -> Any:
    """
    Unwrap a response envelope.

    Returns:
        The ``result`` field

    Raises:
        NotFoundError: if an error carries code 404
        CollaboratorError: for any other non-success response
    """
    if not isinstance(response, dict):
        raise CollaboratorError(f"{action} returned no response")

    if not response.get("success", False):
        errors = response.get("errors") or []
        error_msg = "; ".join(
            f"Code: {e.get('code')}, Message: {e.get('message')}" for e in errors
        )
        if any(e.get("code") == NOT_FOUND_CODE for e in errors):
            raise NotFoundError(f"{action}: {error_msg}")
        raise CollaboratorError(
            f"{action} failed: {error_msg or 'no error details'}", errors=errors
        )

    return response.get("result")


async def call_collaborator(
    func: Callable[..., Response],
    *args: Any,
    action: str,
    timeout: float,
    **kwargs: Any,
) -> Any:
    """Run a blocking collaborator call in a thread, bounded by ``timeout``."""
    try:
        response = await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs), timeout=timeout
        )
    except asyncio.TimeoutError:
        raise CollaboratorError(f"{action} timed out after {timeout}s")
    except ProvisioningError:
        raise
    except Exception as e:
        raise CollaboratorError(f"{action} raised {type(e).__name__}: {e}") from e

    return ensure_success(response, action)


class DomainRegistrar(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def register_domain(self, domain_name: str) -> Response:
        """Result: ``{"operation_id": str}``."""
        pass

    @abc.abstractmethod
    def get_operation_status(self, external_operation_id: str) -> Response:
        """Result: ``{"status": "SUBMITTED" | "IN_PROGRESS" | "SUCCESSFUL" | "FAILED" | "ERROR"}``."""
        pass

    @abc.abstractmethod
    def check_availability(self, domain_name: str) -> Response:
        """Result: ``{"available": bool}``."""
        pass

    @abc.abstractmethod
    def get_domain_suggestions(self, domain_name: str, count: int) -> Response:
        """Result: list of ``{"domain_name": str, "available": bool}``."""
        pass

    @abc.abstractmethod
    def get_tld_price(self, tld: str) -> Response:
        """Result: ``{"amount": float, "currency": str}``."""
        pass


class CertificateAuthority(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def request_certificate(self, domain_name: str) -> Response:
        """Request a DNS-validated certificate. Result: ``{"certificate_arn": str}``."""
        pass

    @abc.abstractmethod
    def describe_certificate(self, certificate_arn: str) -> Response:
        """Result: ``{"status": str, "validation_records": [{"name", "value", "type"}]}``."""
        pass


class DnsZoneManager(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def get_zone_by_domain(self, domain_name: str) -> Response:
        """Result: ``{"id": str, "name": str}`` or None when no zone exists."""
        pass

    @abc.abstractmethod
    def create_zone(self, domain_name: str) -> Response:
        """Result: ``{"id": str, "name": str}``."""
        pass

    @abc.abstractmethod
    def upsert_record(self, zone_id: str, record: DnsRecord) -> Response:
        pass

    @abc.abstractmethod
    def delete_record(self, zone_id: str, record: DnsRecord) -> Response:
        pass

    @abc.abstractmethod
    def list_records(self, zone_id: str) -> Response:
        """Result: list of ``DnsRecord``."""
        pass


class ComputeDescriptor(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def describe_instance(self, instance_id: str) -> Response:
        """
        Result: ``{"reservations": [{"instances": [{"instance_id", "public_ip",
        "security_group_ids"}]}]}``.
        """
        pass

    @abc.abstractmethod
    def get_default_network(self) -> Response:
        """Result: ``{"id": str}``."""
        pass

    @abc.abstractmethod
    def get_default_subnets(self) -> Response:
        """Result: list of subnet ids."""
        pass


class LoadBalancerProvisioner(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def create_target_group(
        self, name: str, network_id: str, port: int = 80, protocol: str = "HTTP"
    ) -> Response:
        """Result: ``{"arn": str, "name": str}``."""
        pass

    @abc.abstractmethod
    def register_targets(
        self, target_group_arn: str, instance_id: str, port: int = 80
    ) -> Response:
        pass

    @abc.abstractmethod
    def create_load_balancer(
        self, name: str, subnet_ids: List[str], security_group_ids: List[str]
    ) -> Response:
        """Result: ``{"arn": str, "dns_name": str, "canonical_hosted_zone_id": str}``."""
        pass

    @abc.abstractmethod
    def create_listener(
        self,
        load_balancer_arn: str,
        protocol: str,
        port: int,
        default_action: Dict[str, Any],
        certificate_arn: Optional[str] = None,
    ) -> Response:
        """
        ``default_action`` is either ``{"type": "forward", "target_group_arn": ...}``
        or ``{"type": "redirect", "protocol": "HTTPS", "port": "443",
        "status_code": "HTTP_301"}``. Result: ``{"arn": str}``.
        """
        pass
