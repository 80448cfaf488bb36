"""
Apply Runner - reconcile a whole declaration file against the remote service.

This module drives the Record Reconciler for every declared record:
1. Load tracked state
2. Refresh tracked records from the remote (drift detection)
3. Create, update or leave alone each declared record
4. Delete tracked records that are no longer declared (prune)
5. Persist the resulting state

Records are independent: several are reconciled at once (bounded by
``max_concurrent_records``), while the operations of a single record run
strictly one after another. Transient gateway errors are retried here and
nowhere else.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import ReconcilerConfig, RetryConfig
from ..core.planner import ChangePlanner
from ..core.reconciler import RecordReconciler, new_internal_id
from ..gateway.base import RecordGateway
from ..models.record import DeclaredRecord
from ..models.results import ApplySummary, ReconcileAction, ReconcileResult
from ..models.state import RecordState
from ..observability.logger import bind_record_context
from ..persistence.state_store import StateStore
from ..utils.exceptions import NotFoundError, ReconcilerError, TransientGatewayError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Transient gateway error, retrying",
        attempt=retry_state.attempt_number,
        error=str(error),
    )


class ApplyRunner:
    """
    Reconcile declared records and keep the state store in sync.

    Failures are per record: one record failing never stops the others, and a
    failed record keeps its previous tracked state.
    """

    def __init__(
        self,
        gateway: RecordGateway,
        store: StateStore,
        config: ReconcilerConfig | None = None,
        retry: RetryConfig | None = None,
        console: Console | None = None,
    ) -> None:
        """
        Initialize ApplyRunner.

        Args:
            gateway: Remote record gateway
            store: Tracked-state store
            config: Reconciliation settings
            retry: Retry policy for transient gateway errors
            console: Rich console for progress output (silent if omitted)
        """
        self.config = config or ReconcilerConfig()
        self.retry = retry or RetryConfig()
        self.store = store
        self.console = console
        self.reconciler = RecordReconciler(gateway, self.config)
        self.planner = ChangePlanner(self.config)

    async def apply(
        self,
        declared: dict[str, DeclaredRecord],
        dry_run: bool = False,
        prune: bool = False,
    ) -> ApplySummary:
        """
        Reconcile every declared record.

        Args:
            declared: Declared records by name
            dry_run: Plan only; no remote calls, no state written
            prune: Delete tracked records that are no longer declared

        Returns:
            ApplySummary with one result per record
        """
        tracked = self.store.all()
        logger.info(
            "Starting apply",
            declared=len(declared),
            tracked=len(tracked),
            dry_run=dry_run,
            prune=prune,
        )

        if dry_run:
            return self._dry_run(declared, tracked, prune)

        semaphore = asyncio.Semaphore(self.config.max_concurrent_records)
        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=self.console,
            disable=self.console is None,
        )
        task_id = progress.add_task("[cyan]Reconciling records...", total=None)

        async def bounded(coro: Awaitable[ReconcileResult]) -> ReconcileResult:
            async with semaphore:
                result = await coro
            progress.advance(task_id)
            return result

        tasks = [
            bounded(self.reconcile_record(name, record, tracked.get(name)))
            for name, record in declared.items()
        ]
        if prune:
            tasks.extend(
                bounded(self.delete_record(name, state))
                for name, state in tracked.items()
                if name not in declared
            )

        progress.update(task_id, total=len(tasks))
        with progress:
            results = await asyncio.gather(*tasks)
        summary = ApplySummary(results=list(results))
        logger.info(
            "Apply finished",
            created=summary.count(ReconcileAction.CREATE),
            updated=summary.count(ReconcileAction.UPDATE),
            deleted=summary.count(ReconcileAction.DELETE),
            unchanged=summary.count(ReconcileAction.NOOP),
            failed=len(summary.failed),
        )
        return summary

    async def reconcile_record(
        self, name: str, declared: DeclaredRecord, current: RecordState | None
    ) -> ReconcileResult:
        """
        Bring one record in line with its declaration.

        - Not tracked: create with a fresh internal id.
        - Tracked: refresh from the remote; update when anything differs.
        - Tracked but gone remotely: create again under the same internal id.
        """
        action = ReconcileAction.CREATE if current is None else ReconcileAction.UPDATE
        with bind_record_context(name, declared.fqdn):
            start = time.monotonic()
            attempts = 0

            async def run(operation: Callable[[], Awaitable[T]]) -> T:
                async def counted() -> T:
                    nonlocal attempts
                    attempts += 1
                    return await operation()

                result, _ = await self._with_retry(counted)
                return result

            try:
                if current is None:
                    internal_id = new_internal_id()
                    state = await run(lambda: self.reconciler.create(declared, internal_id))
                else:
                    try:
                        refreshed = await run(lambda: self.reconciler.read(current))
                    except NotFoundError:
                        logger.warning("Tracked record missing remotely, recreating")
                        action = ReconcileAction.CREATE
                        state = await run(
                            lambda: self.reconciler.create(declared, current.internal_id)
                        )
                    else:
                        planned = self.planner.plan_record(name, declared, refreshed)
                        if planned.valid and planned.action == ReconcileAction.NOOP:
                            action = ReconcileAction.NOOP
                            state = refreshed
                        else:
                            for change in planned.field_changes:
                                logger.debug("Field change", change=str(change))
                            state = await self._update(run, refreshed, declared)
            except ReconcilerError as e:
                logger.error("Record failed", action=action.value, error=str(e))
                return ReconcileResult(
                    name=name,
                    action=action,
                    success=False,
                    error_message=str(e),
                    attempts=max(attempts, 1),
                    duration_ms=(time.monotonic() - start) * 1000,
                )

            self.store.put(name, state)
            logger.info("Record reconciled", action=action.value, ref=state.ref)
            return ReconcileResult(
                name=name,
                action=action,
                success=True,
                state=state,
                attempts=max(attempts, 1),
                duration_ms=(time.monotonic() - start) * 1000,
            )

    async def _update(
        self,
        run: Callable[[Callable[[], Awaitable[Any]]], Awaitable[Any]],
        current: RecordState,
        declared: DeclaredRecord,
    ) -> RecordState:
        """
        Update one record. A CIDR change runs as three separately retried
        steps, so a retry after the old object is gone still carries the
        external attributes captured before it.
        """
        if not self.reconciler.needs_recreate(current, declared):
            return await run(lambda: self.reconciler.update(current, declared))

        pending = await run(lambda: self.reconciler.begin_recreate(current, declared))
        await run(lambda: self.reconciler.release(pending))
        return await run(lambda: self.reconciler.finish_recreate(pending))

    async def delete_record(self, name: str, state: RecordState) -> ReconcileResult:
        """Delete one tracked record and forget it."""
        with bind_record_context(name, state.fqdn):
            start = time.monotonic()
            try:
                _, attempts = await self._with_retry(lambda: self.reconciler.delete(state))
            except ReconcilerError as e:
                logger.error("Record delete failed", error=str(e))
                return ReconcileResult(
                    name=name,
                    action=ReconcileAction.DELETE,
                    success=False,
                    error_message=str(e),
                    duration_ms=(time.monotonic() - start) * 1000,
                )

            self.store.delete(name)
            return ReconcileResult(
                name=name,
                action=ReconcileAction.DELETE,
                success=True,
                attempts=attempts,
                duration_ms=(time.monotonic() - start) * 1000,
            )

    async def destroy(self, name: str) -> ReconcileResult:
        """
        Delete a single tracked record by name.

        Raises:
            NotFoundError: If the name is not tracked
        """
        state = self.store.get(name)
        if state is None:
            raise NotFoundError("tracked record", name)
        return await self.delete_record(name, state)

    async def refresh(self) -> ApplySummary:
        """
        Re-read every tracked record from the remote.

        Records that no longer exist remotely are dropped from the store, so
        the next apply creates them again.
        """
        summary = ApplySummary()
        for name, state in self.store.all().items():
            with bind_record_context(name, state.fqdn):
                try:
                    refreshed, attempts = await self._with_retry(
                        lambda state=state: self.reconciler.read(state)
                    )
                except NotFoundError:
                    logger.warning("Tracked record missing remotely, dropping state")
                    self.store.delete(name)
                    summary.results.append(
                        ReconcileResult(name=name, action=ReconcileAction.DELETE, success=True)
                    )
                    continue
                except ReconcilerError as e:
                    logger.error("Refresh failed", error=str(e))
                    summary.results.append(
                        ReconcileResult(
                            name=name,
                            action=ReconcileAction.NOOP,
                            success=False,
                            error_message=str(e),
                        )
                    )
                    continue

                action = ReconcileAction.NOOP if refreshed == state else ReconcileAction.UPDATE
                self.store.put(name, refreshed)
                summary.results.append(
                    ReconcileResult(
                        name=name, action=action, success=True, state=refreshed, attempts=attempts
                    )
                )
        return summary

    def _dry_run(
        self,
        declared: dict[str, DeclaredRecord],
        tracked: dict[str, RecordState],
        prune: bool,
    ) -> ApplySummary:
        summary = ApplySummary()
        for planned in self.planner.plan(declared, tracked, prune=prune):
            summary.results.append(
                ReconcileResult(
                    name=planned.name,
                    action=planned.action,
                    success=planned.valid,
                    state=tracked.get(planned.name),
                    error_message=planned.error,
                    attempts=0,
                )
            )
        return summary

    async def _with_retry(self, operation: Callable[[], Awaitable[Any]]) -> tuple[Any, int]:
        """
        Run an operation, retrying transient gateway errors.

        Returns:
            (result, number of attempts made)
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientGatewayError),
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_exponential(
                multiplier=self.retry.multiplier,
                min=self.retry.wait_min,
                max=self.retry.wait_max,
            ),
            before_sleep=_log_retry,
            reraise=True,
        )
        attempts = 0
        result = None
        async for attempt in retrying:
            with attempt:
                attempts += 1
                result = await operation()
        return result, attempts
