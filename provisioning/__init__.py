"""
Provisioning core: domain registration tracking, certificate provisioning
and instance attachment behind a load balancer.
"""

from .errors import (
    AttachmentError,
    CollaboratorError,
    InvalidTransitionError,
    NotFoundError,
    OperationConflictError,
    ProvisioningError,
    ProvisioningTimeoutError,
)
from .models import Operation, OperationStatus, RetryPolicy
from .operation_store import InMemoryOperationStore, JsonFileOperationStore
from .state_machine import OperationStateMachine
from .certificate_workflow import CertificateProvisioningWorkflow
from .registration_poller import RegistrationStatusPoller
from .instance_attachment import InstanceAttachmentPipeline

__all__ = [
    "AttachmentError",
    "CollaboratorError",
    "InvalidTransitionError",
    "NotFoundError",
    "OperationConflictError",
    "ProvisioningError",
    "ProvisioningTimeoutError",
    "Operation",
    "OperationStatus",
    "RetryPolicy",
    "InMemoryOperationStore",
    "JsonFileOperationStore",
    "OperationStateMachine",
    "CertificateProvisioningWorkflow",
    "RegistrationStatusPoller",
    "InstanceAttachmentPipeline",
]
