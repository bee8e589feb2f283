"""Worker for the bank sync sweep.

Connects to Temporal, builds the banking services once and polls the
banking task queue for BankSyncSweepWorkflow runs and their activities.

Run with --queue <name> to override the task queue from BANKING_TASK_QUEUE.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from activities.banking import BankingActivities
from banking.services import BankingServices
from core.config import BankingSettings
from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.sync_sweep_workflow import BankSyncSweepWorkflow

logger = get_logger(__name__)


async def run_worker(settings: BankingSettings, queue: str = None):
    """Start a worker listening on the banking task queue.

    Args:
        settings: Banking settings (database, provider, retry policy)
        queue: Task queue override

    Raises:
        Exception: If connection to Temporal fails
    """
    task_queue = queue or settings.task_queue
    services = BankingServices.build(settings)
    activities = BankingActivities(services)

    try:
        client = await get_temporal_client()
        logger.info("Connected to Temporal", extra_fields={"namespace": client.namespace})

        worker = Worker(
            client,
            task_queue=task_queue,
            workflows=[BankSyncSweepWorkflow],
            activities=activities.all(),
        )
        logger.info(
            "Worker running (Ctrl+C to stop)",
            extra_fields={"task_queue": task_queue, "activities": len(activities.all())},
        )
        await worker.run()

    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise
    finally:
        await services.aclose()


def main():
    """Entry point for worker with CLI args."""
    settings = BankingSettings.from_env()
    parser = argparse.ArgumentParser(description="Banking sync sweep Temporal worker")
    parser.add_argument(
        "--queue", "-q",
        default=settings.task_queue,
        help=f"Task queue to poll (default: {settings.task_queue})",
    )
    args = parser.parse_args()

    configure_logging(level=settings.log_level, json_format=settings.log_json)
    asyncio.run(run_worker(settings, queue=args.queue))


if __name__ == "__main__":
    main()
