"""
Provisioning service.
Integrates domain registration, certificate provisioning and instance attachment.
"""

from .provisioning_service import (
    ProvisioningService,
    get_provisioning_service,
    initialize_provisioning_service,
    cleanup_provisioning_service,
    set_provisioning_service,
)

__all__ = [
    "ProvisioningService",
    "get_provisioning_service",
    "initialize_provisioning_service",
    "cleanup_provisioning_service",
    "set_provisioning_service",
]
