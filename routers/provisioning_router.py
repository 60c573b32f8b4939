"""
API endpoints for domain provisioning.
Registration, availability, hosted zones, instance attachment and operation status.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from log import init_logger
from middleware.admin_auth import require_admin_token
from provisioning.errors import (
    AttachmentError,
    CollaboratorError,
    InvalidTransitionError,
    NotFoundError,
    OperationConflictError,
    ProvisioningTimeoutError,
)
from provisioning.models import Operation
from services.provisioning_service import get_provisioning_service

logger = init_logger(__name__)

provisioning_router = APIRouter(tags=["provisioning"])


# Response models
class OperationResponse(BaseModel):
    """Response model for a provisioning operation."""

    id: str
    external_operation_id: str
    domain_name: str
    status: str
    certificate_arn: Optional[str] = None
    created_at: str
    updated_at: str


class OperationListResponse(BaseModel):
    operations: List[OperationResponse]
    count: int


class PriceResponse(BaseModel):
    amount: Optional[float] = None
    currency: Optional[str] = None


class SuggestionResponse(BaseModel):
    name: str
    available: bool
    price: PriceResponse


class AvailabilityResponse(BaseModel):
    """Response model for the availability check."""

    name: str
    available: bool
    price: PriceResponse
    suggestions: List[SuggestionResponse]


class ZoneResponse(BaseModel):
    id: str
    name: str
    created: bool


class AttachmentResponse(BaseModel):
    """Response model for instance attachment."""

    operation_id: str
    domain_name: str
    instance_id: str
    target_group_arn: str
    load_balancer_arn: str
    load_balancer_dns_name: str
    listener_arns: List[str]


class StatusResponse(BaseModel):
    """Response model for status endpoint."""

    initialized: bool
    timestamp: str
    dns_provider: str
    operations: Dict[str, int]
    poller: Dict[str, Any]


def get_service_or_503():
    """Get provisioning service or raise 503."""
    service = get_provisioning_service()
    if not service:
        raise HTTPException(
            status_code=503, detail="Provisioning service not available"
        )
    return service


def to_http_exception(e: Exception) -> HTTPException:
    """Map a provisioning error to the HTTP status returned to the caller."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (OperationConflictError, InvalidTransitionError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, AttachmentError):
        return HTTPException(
            status_code=502,
            detail={
                "message": str(e),
                "step": e.step,
                "created_resources": e.created_resources,
            },
        )
    if isinstance(e, (CollaboratorError, ProvisioningTimeoutError)):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _operation_response(operation: Operation) -> OperationResponse:
    return OperationResponse(**operation.to_dict())


@provisioning_router.get("/domain/available/{name}", response_model=AvailabilityResponse)
async def check_availability(name: str):
    """
    Check whether a domain can be registered.

    A bare name is looked up under ``.com``. The response includes the TLD
    price and a list of available alternatives with their prices.
    """
    try:
        service = get_service_or_503()
        return AvailabilityResponse(**await service.check_availability(name))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to check availability of {name}: {e}")
        raise to_http_exception(e)


@provisioning_router.post(
    "/domain/register/{name}", response_model=OperationResponse, status_code=202
)
async def register_domain(name: str, _auth: None = Depends(require_admin_token())):
    """
    Submit a domain registration.

    Registration completes asynchronously; poll the returned operation for
    progress. The certificate is provisioned once the registrar confirms.
    """
    try:
        service = get_service_or_503()
        operation = await service.register_domain(name)
        return _operation_response(operation)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to register domain {name}: {e}")
        raise to_http_exception(e)


@provisioning_router.post("/domain/{name}/zone", response_model=ZoneResponse)
async def create_hosted_zone(name: str, _auth: None = Depends(require_admin_token())):
    """Create a public hosted zone for a domain, or return the existing one."""
    try:
        service = get_service_or_503()
        return ZoneResponse(**await service.create_hosted_zone(name))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to create hosted zone for {name}: {e}")
        raise to_http_exception(e)


@provisioning_router.post(
    "/domain/{name}/instances/{instance_id}", response_model=AttachmentResponse
)
async def attach_instance(
    name: str, instance_id: str, _auth: None = Depends(require_admin_token())
):
    """
    Put a compute instance behind a load balancer serving the domain over HTTPS.

    Requires an operation with an active certificate for the domain. On a
    failed step the response lists the resources already created.
    """
    try:
        service = get_service_or_503()
        result = await service.attach_instance(name, instance_id)
        return AttachmentResponse(**result.to_dict())
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to attach instance {instance_id} to {name}: {e}")
        raise to_http_exception(e)


@provisioning_router.get("/domain/{name}/operation", response_model=OperationResponse)
async def get_domain_operation(name: str):
    """Get the most recent operation for a domain."""
    try:
        service = get_service_or_503()
        return _operation_response(service.get_operation_by_domain(name))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get operation for {name}: {e}")
        raise to_http_exception(e)


@provisioning_router.get("/operations", response_model=OperationListResponse)
async def list_operations():
    try:
        service = get_service_or_503()
        operations = [_operation_response(op) for op in service.list_operations()]
        return OperationListResponse(operations=operations, count=len(operations))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to list operations: {e}")
        raise to_http_exception(e)


@provisioning_router.get("/operations/{operation_id}", response_model=OperationResponse)
async def get_operation(operation_id: str):
    try:
        service = get_service_or_503()
        return _operation_response(service.get_operation(operation_id))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get operation {operation_id}: {e}")
        raise to_http_exception(e)


@provisioning_router.get("/provisioning/status", response_model=StatusResponse)
async def get_status():
    """
    Get provisioning status.

    Returns operation counts by status and the registration poller state.
    """
    try:
        service = get_service_or_503()
        return StatusResponse(**await service.get_status())
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get provisioning status: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@provisioning_router.get("/health")
async def health():
    """
    Endpoint to check the health status of the provisioning service.

    Returns 503 if the service is not available or the registration poller
    is not running, 200 otherwise.
    """
    service = get_provisioning_service()
    if not service:
        return JSONResponse(
            content={"status": "Provisioning service is down."}, status_code=503
        )
    if not service.poller.get_status()["running"]:
        return JSONResponse(
            content={"status": "Registration poller is down."}, status_code=503
        )

    return JSONResponse(content={"status": "healthy"}, status_code=200)
