"""
Error taxonomy for provisioning operations.
"""

from typing import Any, Dict, List, Optional


class ProvisioningError(Exception):
    """Base class for every error raised by the provisioning core."""


class CollaboratorError(ProvisioningError):
    """An external provider returned a non-success signal or failed in transport."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class NotFoundError(ProvisioningError):
    """A referenced operation, zone, or instance does not exist."""


class InvalidTransitionError(ProvisioningError):
    """A status change would violate the forward-only operation graph."""


class ProvisioningTimeoutError(ProvisioningError):
    """A bounded wait ran out of attempts or time."""


class OperationConflictError(ProvisioningError):
    """A non-terminal operation already exists for the domain."""


class AttachmentError(ProvisioningError):
    """A step of the instance attachment pipeline failed.

    Resources created by earlier steps are listed in ``created_resources``;
    they are left in place.
    """

    def __init__(
        self,
        message: str,
        step: str,
        created_resources: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.step = step
        self.created_resources = created_resources or []
