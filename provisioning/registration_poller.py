"""
Background control loop advancing operations whose domain registration is
still pending at the registrar.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from log import init_logger
from provisioning.certificate_workflow import CertificateProvisioningWorkflow
from provisioning.collaborators import DomainRegistrar, call_collaborator
from provisioning.errors import (
    InvalidTransitionError,
    NotFoundError,
    ProvisioningError,
)
from provisioning.models import (
    Operation,
    OperationStatus,
    RegistrarStatus,
    utcnow,
)
from provisioning.operation_store import OperationStore
from provisioning.state_machine import OperationStateMachine

logger = init_logger(__name__)


class RegistrationStatusPoller:
    """
    Polls the registrar for every pending operation on a fixed interval.

    Ticks never overlap. Each operation is processed independently; a
    failure on one is logged and the tick moves on. Certificate workflows
    started by a tick run as separate tasks, at most one per operation.
    """

    def __init__(
        self,
        store: OperationStore,
        state_machine: OperationStateMachine,
        registrar: DomainRegistrar,
        certificate_workflow: CertificateProvisioningWorkflow,
        interval_seconds: float = 5.0,
        call_timeout: float = 30.0,
    ):
        self._store = store
        self._state_machine = state_machine
        self._registrar = registrar
        self._certificate_workflow = certificate_workflow
        self.interval_seconds = interval_seconds
        self._call_timeout = call_timeout

        self._tick_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._workflow_tasks: Dict[str, asyncio.Task] = {}
        self._running = False
        self._tick_count = 0
        self._last_tick: Optional[datetime] = None

    def start(self) -> None:
        """Start the polling loop on the running event loop."""
        if self._task is not None and not self._task.done():
            logger.debug("Registration poller already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Started registration poller (interval {self.interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the loop and wait for in-flight certificate workflows."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        await self.wait_for_workflows()
        logger.info("Registration poller stopped")

    async def _run(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                logger.info("Registration poller cancelled")
                break
            except Exception as e:
                logger.error(f"Error in registration poller: {e}")
            await asyncio.sleep(self.interval_seconds)

    async def tick(self) -> bool:
        """
        Run one polling pass.

        Returns:
            False if skipped because a previous tick is still running
        """
        if self._tick_lock.locked():
            logger.warning("Previous registration poll still running, skipping tick")
            return False

        async with self._tick_lock:
            operations = self._store.list_pending()
            if operations:
                logger.debug(f"Polling {len(operations)} pending operations")

            for operation in operations:
                try:
                    await self._process_operation(operation)
                except InvalidTransitionError:
                    logger.exception(
                        f"Invalid transition while processing operation {operation.id}"
                    )
                except ProvisioningError as e:
                    logger.warning(
                        f"Operation {operation.id} ({operation.domain_name}) left "
                        f"unchanged, will retry: {e}"
                    )
                except Exception:
                    logger.exception(
                        f"Unexpected error processing operation {operation.id}"
                    )

            self._tick_count += 1
            self._last_tick = utcnow()
        return True

    async def _process_operation(self, operation: Operation) -> None:
        if self._workflow_in_flight(operation.id):
            return

        if operation.status == OperationStatus.REGISTRATION_SUCCESSFUL:
            # registration already recorded; the workflow did not finish
            logger.info(
                f"Resuming certificate provisioning for {operation.domain_name}"
            )
            await self._launch_certificate_workflow(operation)
            return

        try:
            status = await self._fetch_registrar_status(operation)
        except NotFoundError as e:
            logger.error(
                f"Registrar has no record of operation {operation.external_operation_id} "
                f"for {operation.domain_name}: {e}"
            )
            await self._state_machine.apply(
                operation, OperationStatus.REGISTRATION_FAILED
            )
            return

        if status in (RegistrarStatus.SUBMITTED, RegistrarStatus.IN_PROGRESS):
            logger.info(
                f"{operation.domain_name}'s registration is pending with status {status.value}"
            )
            await self._state_machine.apply(
                operation, OperationStatus.REGISTRATION_IN_PROGRESS
            )
        elif status == RegistrarStatus.SUCCESSFUL:
            logger.info(f"Domain '{operation.domain_name}' has been registered")
            await self._state_machine.apply(
                operation,
                OperationStatus.REGISTRATION_SUCCESSFUL,
                side_effects=[self._launch_certificate_workflow],
            )
        elif status in (RegistrarStatus.FAILED, RegistrarStatus.ERROR):
            logger.error(f"Domain registration for '{operation.domain_name}' has failed")
            await self._state_machine.apply(
                operation, OperationStatus.REGISTRATION_FAILED
            )

    async def _fetch_registrar_status(self, operation: Operation) -> RegistrarStatus:
        result = await call_collaborator(
            self._registrar.get_operation_status,
            operation.external_operation_id,
            action=f"get registration status of {operation.domain_name}",
            timeout=self._call_timeout,
        )
        raw_status = str((result or {}).get("status", "")).upper()
        try:
            return RegistrarStatus(raw_status)
        except ValueError:
            raise ProvisioningError(
                f"Unknown registrar status '{raw_status}' for {operation.domain_name}"
            )

    def _workflow_in_flight(self, operation_id: str) -> bool:
        task = self._workflow_tasks.get(operation_id)
        return task is not None and not task.done()

    async def _launch_certificate_workflow(self, operation: Operation) -> None:
        if self._workflow_in_flight(operation.id):
            return

        task = asyncio.create_task(self._certificate_workflow.run(operation.id))
        self._workflow_tasks[operation.id] = task
        task.add_done_callback(
            lambda t, op=operation: self._on_workflow_done(op, t)
        )

    def _on_workflow_done(self, operation: Operation, task: asyncio.Task) -> None:
        if self._workflow_tasks.get(operation.id) is task:
            del self._workflow_tasks[operation.id]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Certificate workflow for {operation.domain_name} failed: {error}"
            )

    async def wait_for_workflows(self) -> None:
        """Wait until every in-flight certificate workflow has finished."""
        while self._workflow_tasks:
            await asyncio.gather(
                *list(self._workflow_tasks.values()), return_exceptions=True
            )

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._task is not None and not self._task.done(),
            "interval_seconds": self.interval_seconds,
            "tick_count": self._tick_count,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "workflows_in_flight": len(self._workflow_tasks),
        }
