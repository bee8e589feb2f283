"""Start the bank sync sweep on Temporal.

By default creates (or replaces) a schedule that runs BankSyncSweepWorkflow
every SWEEP_INTERVAL_MINUTES. With --once, runs a single sweep and prints
its result.
"""

import argparse
import asyncio
import sys
import uuid
from datetime import timedelta
from pathlib import Path

from temporalio.client import (
    Client,
    Schedule,
    ScheduleActionStartWorkflow,
    ScheduleAlreadyRunningError,
    ScheduleIntervalSpec,
    ScheduleSpec,
)

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import BankingSettings
from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.sync_sweep_workflow import BankSyncSweepWorkflow, SweepInput

logger = get_logger(__name__)

SCHEDULE_ID = "bank-sync-sweep"


async def run_once(client: Client, task_queue: str, sweep: SweepInput):
    handle = await client.start_workflow(
        BankSyncSweepWorkflow.run,
        sweep,
        id=f"bank-sync-sweep-{uuid.uuid4().hex[:8]}",
        task_queue=task_queue,
    )
    logger.info("Sweep started", extra_fields={"workflow_id": handle.id})
    return await handle.result()


async def ensure_schedule(client: Client, task_queue: str, interval_minutes: int, sweep: SweepInput) -> None:
    schedule = Schedule(
        action=ScheduleActionStartWorkflow(
            BankSyncSweepWorkflow.run,
            sweep,
            id="bank-sync-sweep-scheduled",
            task_queue=task_queue,
        ),
        spec=ScheduleSpec(intervals=[ScheduleIntervalSpec(every=timedelta(minutes=interval_minutes))]),
    )
    try:
        await client.create_schedule(SCHEDULE_ID, schedule)
        logger.info("Schedule created", extra_fields={"schedule_id": SCHEDULE_ID, "every_minutes": interval_minutes})
    except ScheduleAlreadyRunningError:
        handle = client.get_schedule_handle(SCHEDULE_ID)
        await handle.delete()
        await client.create_schedule(SCHEDULE_ID, schedule)
        logger.info("Schedule replaced", extra_fields={"schedule_id": SCHEDULE_ID, "every_minutes": interval_minutes})


async def start(once: bool, no_sync: bool) -> int:
    settings = BankingSettings.from_env()
    sweep = SweepInput(sync=not no_sync)
    client = await get_temporal_client()
    logger.info("Connected to Temporal", extra_fields={"namespace": client.namespace})

    if once:
        result = await run_once(client, settings.task_queue, sweep)
        print(f"expired={result.expired} synced={len(result.synced)} "
              f"deferred={result.deferred} failed={result.failed}")
    else:
        await ensure_schedule(client, settings.task_queue, settings.sweep_interval_minutes, sweep)
    return 0


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Start the bank sync sweep")
    parser.add_argument("--once", action="store_true", help="Run a single sweep instead of scheduling")
    parser.add_argument("--no-sync", action="store_true", help="Only expire and refresh connection status")
    args = parser.parse_args()

    configure_logging(level="INFO")
    try:
        return asyncio.run(start(args.once, args.no_sync))
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
