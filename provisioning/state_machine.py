"""
Forward-only status transitions for provisioning operations.
"""

import asyncio
import dataclasses
import weakref
from typing import Awaitable, Callable, Iterable, Optional

from log import init_logger
from provisioning.errors import InvalidTransitionError
from provisioning.models import (
    ALLOWED_TRANSITIONS,
    CERTIFICATE_STATUSES,
    Operation,
    OperationStatus,
)
from provisioning.operation_store import OperationStore

logger = init_logger(__name__)

SideEffect = Callable[[Operation], Awaitable[None]]


class KeyedLock:
    """
    One asyncio.Lock per key, created on first use.

    Locks are held weakly: a lock nobody holds or waits on is dropped.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


def can_transition(current: OperationStatus, new_status: OperationStatus) -> bool:
    return new_status in ALLOWED_TRANSITIONS[current]


class OperationStateMachine:
    """Single writer of operation status."""

    def __init__(self, store: OperationStore, locks: Optional[KeyedLock] = None):
        self._store = store
        self._locks = locks or KeyedLock()

    async def apply(
        self,
        operation: Operation,
        new_status: OperationStatus,
        side_effects: Optional[Iterable[SideEffect]] = None,
        certificate_arn: Optional[str] = None,
    ) -> Operation:
        """
        Move an operation to a new status and persist it.

        The stored record is re-read under the operation's lock, so the
        caller's copy may be stale. Applying the status that is already
        stored is a no-op and runs no side effects. Side effects run after
        the new status has been persisted.

        Args:
            operation: Operation to transition
            new_status: Target status
            side_effects: Async callables receiving the persisted operation
            certificate_arn: Required when moving to SSL_ACTIVATED

        Returns:
            The persisted operation

        Raises:
            InvalidTransitionError: if the move is not a forward edge
            NotFoundError: if the operation is not in the store
        """
        async with self._locks.lock(operation.id):
            current = self._store.get_by_id(operation.id)

            if current.status == new_status:
                logger.debug(
                    f"Operation {current.id} already {new_status.value}, nothing to apply"
                )
                return current

            if not can_transition(current.status, new_status):
                raise InvalidTransitionError(
                    f"Operation {current.id} ({current.domain_name}) cannot move "
                    f"from {current.status.value} to {new_status.value}"
                )

            arn = current.certificate_arn
            if new_status in CERTIFICATE_STATUSES:
                arn = certificate_arn or current.certificate_arn
                if not arn:
                    raise InvalidTransitionError(
                        f"Operation {current.id} cannot reach {new_status.value} "
                        "without a certificate ARN"
                    )

            updated = self._store.update(
                dataclasses.replace(current, status=new_status, certificate_arn=arn)
            )

        logger.info(
            f"Operation {updated.id} ({updated.domain_name}): "
            f"{current.status.value} -> {new_status.value}"
        )

        for effect in side_effects or ():
            await effect(updated)

        return updated
