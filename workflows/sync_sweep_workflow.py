"""Bank Sync Sweep Workflow.

Periodic housekeeping over every connection:
1. Expire connections whose consent validity lapsed
2. Poll the bank for pending and active consent status
3. Sync active connections concurrently

Started on a Temporal schedule (see scripts/start_sync_sweep.py).
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.banking import (
        BankingActivities,
        ConnectionInput,
        ConnectionOutcome,
        SweepOutcome,
    )
    from banking.models import ConnectionStatus


@dataclass
class SweepInput:
    """Input for the sweep.

    Attributes:
        refresh_status: Poll the bank for pending/active consent status
        sync: Sync active connections after the status poll
    """
    refresh_status: bool = True
    sync: bool = True


@dataclass
class SweepResult:
    expired: List[int] = field(default_factory=list)
    refreshed: List[ConnectionOutcome] = field(default_factory=list)
    synced: List[ConnectionOutcome] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def deferred(self) -> List[int]:
        return [o.connection_id for o in self.synced if o.outcome == SweepOutcome.DEFERRED]


# Database-only activities
LOCAL_OPTIONS = {
    "start_to_close_timeout": timedelta(seconds=30),
    "retry_policy": RetryPolicy(
        maximum_attempts=3,
        initial_interval=timedelta(seconds=1),
        backoff_coefficient=2.0,
    ),
}

# Activities that call the bank; the connector already retries each request
BANK_OPTIONS = {
    "start_to_close_timeout": timedelta(minutes=5),
    "retry_policy": RetryPolicy(
        maximum_attempts=3,
        initial_interval=timedelta(seconds=30),
        maximum_interval=timedelta(minutes=5),
        backoff_coefficient=2.0,
        non_retryable_error_types=["ProviderNotConfiguredError"],
    ),
}


@workflow.defn
class BankSyncSweepWorkflow:
    """Expire, refresh and sync every bank connection once."""

    @workflow.run
    async def run(self, input: SweepInput) -> SweepResult:
        result = SweepResult()

        expired = await workflow.execute_activity_method(
            BankingActivities.expire_stale_connections,
            **LOCAL_OPTIONS,
        )
        result.expired = expired.expired_ids

        targets = await workflow.execute_activity_method(
            BankingActivities.list_connections_to_refresh,
            **LOCAL_OPTIONS,
        )
        workflow.logger.info(
            f"Sweep: {len(result.expired)} expired, {len(targets.pending_ids)} pending, "
            f"{len(targets.active_ids)} active"
        )

        active_ids = list(targets.active_ids)
        if input.refresh_status:
            refreshed = await self._for_each(
                BankingActivities.refresh_connection_status,
                targets.pending_ids + targets.active_ids,
                result,
            )
            result.refreshed = refreshed
            # Newly activated connections were synced by the activation hook
            active_ids = [
                o.connection_id for o in refreshed
                if o.outcome == SweepOutcome.UNCHANGED and o.status == ConnectionStatus.ACTIVE.value
            ]

        if input.sync and active_ids:
            result.synced = await self._for_each(BankingActivities.sync_connection, active_ids, result)

        workflow.logger.info(
            f"Sweep done: {len(result.synced)} synced, {len(result.deferred)} deferred, "
            f"{len(result.failed)} failed"
        )
        return result

    async def _for_each(self, activity_method, connection_ids: List[int], result: SweepResult) -> List[ConnectionOutcome]:
        """Run one activity per connection concurrently; failures are collected, not raised."""
        tasks = [
            workflow.execute_activity_method(activity_method, ConnectionInput(connection_id=cid), **BANK_OPTIONS)
            for cid in connection_ids
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        collected = []
        for cid, outcome in zip(connection_ids, outcomes):
            if isinstance(outcome, BaseException):
                workflow.logger.warning(f"Connection {cid}: {outcome}")
                result.failed[str(cid)] = str(outcome)
            else:
                collected.append(outcome)
        return collected
