"""
Persistent registry of provisioning operations.
Pure data access: whole-record writes, no workflow policy.
"""

import abc
import dataclasses
import json
import os
import tempfile
from threading import Lock
from typing import Dict, Iterable, List, Optional

from log import init_logger
from provisioning.errors import NotFoundError, OperationConflictError
from provisioning.models import Operation, OperationStatus, utcnow

logger = init_logger(__name__)


class OperationStore(metaclass=abc.ABCMeta):
    @abc.abstractmethod
    def create(self, operation: Operation) -> Operation:
        """
        Persist a new operation.

        Raises:
            OperationConflictError: if a non-terminal operation already
                exists for the same domain, or the id is taken
        """
        pass

    @abc.abstractmethod
    def update(self, operation: Operation) -> Operation:
        """
        Replace the stored record with the given one.

        Raises:
            NotFoundError: if no operation has this id
        """
        pass

    @abc.abstractmethod
    def get_by_id(self, operation_id: str) -> Operation:
        pass

    @abc.abstractmethod
    def get_by_domain_name(
        self,
        domain_name: str,
        statuses: Optional[Iterable[OperationStatus]] = None,
    ) -> Operation:
        """
        Get the most recently created operation for a domain.

        Args:
            domain_name: Domain name
            statuses: Only consider operations in one of these statuses

        Raises:
            NotFoundError: if no operation matches
        """
        pass

    @abc.abstractmethod
    def list_all(self) -> List[Operation]:
        pass

    def list_pending(self) -> List[Operation]:
        """Operations the registration poller still has to advance."""
        return [op for op in self.list_all() if not op.is_terminal()]


class InMemoryOperationStore(OperationStore):
    """Thread-safe dictionary store. Records are copied in and out."""

    def __init__(self):
        self._operations: Dict[str, Operation] = {}
        self._lock = Lock()

    def create(self, operation: Operation) -> Operation:
        with self._lock:
            if operation.id in self._operations:
                raise OperationConflictError(
                    f"Operation {operation.id} already exists"
                )
            for existing in self._operations.values():
                if (
                    existing.domain_name == operation.domain_name
                    and not existing.is_terminal()
                ):
                    raise OperationConflictError(
                        f"Operation {existing.id} for {operation.domain_name} "
                        f"is still {existing.status.value}"
                    )
            self._operations[operation.id] = dataclasses.replace(operation)
            self._persist()
        logger.debug(f"Created operation {operation.id} for {operation.domain_name}")
        return dataclasses.replace(operation)

    def update(self, operation: Operation) -> Operation:
        with self._lock:
            if operation.id not in self._operations:
                raise NotFoundError(f"Operation {operation.id} does not exist")
            stored = dataclasses.replace(operation, updated_at=utcnow())
            self._operations[operation.id] = stored
            self._persist()
        logger.debug(f"Updated operation {operation.id} to {operation.status.value}")
        return dataclasses.replace(stored)

    def get_by_id(self, operation_id: str) -> Operation:
        with self._lock:
            operation = self._operations.get(operation_id)
            if operation is None:
                raise NotFoundError(f"Operation {operation_id} does not exist")
            return dataclasses.replace(operation)

    def get_by_domain_name(
        self,
        domain_name: str,
        statuses: Optional[Iterable[OperationStatus]] = None,
    ) -> Operation:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            matches = [
                op
                for op in self._operations.values()
                if op.domain_name == domain_name
                and (wanted is None or op.status in wanted)
            ]
            if not matches:
                if wanted:
                    names = ", ".join(sorted(s.value for s in wanted))
                    raise NotFoundError(
                        f"No operation for {domain_name} with status {names}"
                    )
                raise NotFoundError(f"No operation for {domain_name}")
            latest = max(matches, key=lambda op: op.created_at)
            return dataclasses.replace(latest)

    def list_all(self) -> List[Operation]:
        with self._lock:
            operations = sorted(self._operations.values(), key=lambda op: op.created_at)
            return [dataclasses.replace(op) for op in operations]

    def _persist(self) -> None:
        """Called with the lock held after every write."""
        pass


class JsonFileOperationStore(InMemoryOperationStore):
    """In-memory store mirrored to a JSON file after every write."""

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        self._load()

    def _load(self) -> None:
        if not os.path.isfile(self.path):
            logger.info(f"No operation store at {self.path}, starting empty")
            return

        with open(self.path, "r") as f:
            data = json.load(f)

        for item in data.get("operations", []):
            operation = Operation.from_dict(item)
            self._operations[operation.id] = operation
        logger.info(f"Loaded {len(self._operations)} operations from {self.path}")

    def _persist(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        payload = {
            "operations": [op.to_dict() for op in self._operations.values()],
        }

        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
